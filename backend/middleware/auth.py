"""
Bearer-token authentication for order endpoints.

Callers present `Authorization: Bearer <jwt>` issued by the platform's
identity service. Claims used here:
    sub   user id (order owner)
    role  "customer" | "admin"

Token issuance belongs to the identity service; issue_access_token exists
for tests and local tooling and signs with the same secret.
"""
import logging
from datetime import datetime, timezone, timedelta
from fastapi import Header
from typing import Optional

import jwt

from config import settings
from domain.actor import Actor
from domain.enums import Role
from domain.errors import PermissionDeniedError, UnauthorizedError

logger = logging.getLogger(__name__)

def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _parse_bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    parts = authorization.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    token = parts[1].strip()
    return token or None


def decode_access_token(token: str) -> dict:
    if not settings.jwt_secret:
        logger.error("JWT_SECRET not configured — rejecting authenticated request")
        raise UnauthorizedError("Server auth misconfigured (JWT secret missing).")
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=["HS256"],
            issuer=settings.jwt_issuer,
            options={"require": ["exp", "iat", "iss", "sub"]},
        )
        return payload
    except jwt.ExpiredSignatureError:
        raise UnauthorizedError("Access token expired.")
    except jwt.InvalidTokenError:
        raise UnauthorizedError("Invalid access token.")


def issue_access_token(*, user_id: str, role: str = Role.CUSTOMER.value) -> str:
    now = _now_utc()
    exp = now.replace(microsecond=0) + timedelta(minutes=settings.jwt_access_ttl_minutes)
    payload = {
        "iss": settings.jwt_issuer,
        "sub": user_id,
        "role": role,
        "iat": int(now.timestamp()),
        "exp": int(exp.timestamp()),
    }
    if not settings.jwt_secret:
        raise UnauthorizedError("Server auth misconfigured (JWT secret missing).")
    return jwt.encode(payload, settings.jwt_secret, algorithm="HS256")


def actor_from_claims(payload: dict) -> Actor:
    user_id = payload.get("sub")
    if not user_id:
        raise UnauthorizedError("Access token has no subject.")
    try:
        role = Role(payload.get("role") or Role.CUSTOMER.value)
    except ValueError:
        logger.warning(f"Token for {user_id} carries unknown role {payload.get('role')!r}")
        raise PermissionDeniedError("Unknown role in access token.")
    return Actor(user_id=str(user_id), role=role)


async def require_actor(
    authorization: Optional[str] = Header(None, alias="Authorization"),
) -> Actor:
    """Dependency: the authenticated caller. 401 without a valid bearer token."""
    token = _parse_bearer_token(authorization)
    if not token:
        raise UnauthorizedError("Authentication required. Provide Authorization: Bearer <token>.")
    return actor_from_claims(decode_access_token(token))


async def require_admin(
    authorization: Optional[str] = Header(None, alias="Authorization"),
) -> Actor:
    actor = await require_actor(authorization)
    if not actor.is_admin:
        raise PermissionDeniedError("Admin access required")
    return actor
