"""
Bullion Order Backend — FastAPI Application

Order lifecycle for precious-metals buy/sell orders: stock-checked creation
with deterministic pricing, an explicit fulfillment workflow, and
idempotent reconciliation of payment processor webhooks.
"""
import logging
import os
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi import HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import Settings, settings
from database import Database
from domain.errors import DomainError
from routes import health, orders, payments
from services.calculation_service import CalculationConfig
from services.catalog_service import CatalogService
from services.notification_service import Notifier, build_notifier
from services.order_repository import OrderRepository
from services.order_service import OrderService
from services.reconciliation_service import PaymentReconciliationService

# ── Logging ─────────────────────────────────────────────────────────

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# ── Composition ─────────────────────────────────────────────────────

def wire_services(
    app: FastAPI,
    database: Database,
    config: Settings = settings,
    notifier: Notifier | None = None,
) -> OrderService:
    """Build the service graph on top of a store handle and attach it to app.state."""
    repository = OrderRepository(database)
    notifier = notifier or build_notifier(config.notification_url, config.notification_timeout_seconds)

    reconciliation = PaymentReconciliationService(
        repository,
        webhook_secret=config.payment_webhook_secret,
        tolerance_seconds=config.webhook_tolerance_seconds,
        notifier=notifier,
    )
    order_service = OrderService(
        repository,
        CatalogService(database, timeout_seconds=config.catalog_timeout_seconds),
        reconciliation=reconciliation,
        calculation_config=CalculationConfig.from_settings(config),
        notifier=notifier,
    )

    app.state.database = database
    app.state.order_service = order_service
    return order_service


# ── Lifespan ────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: validate settings, open the store, create tables. Shutdown: dispose the engine."""
    # Ensure data/ directory exists for SQLite
    if settings.database_url.startswith("sqlite:///./data/"):
        os.makedirs("data", exist_ok=True)

    settings.validate_production_settings()

    database = Database(settings.database_url)
    await database.init_db()
    logger.info("Database initialized")

    wire_services(app, database)

    yield  # app runs here

    await database.dispose()
    logger.info("Shutting down")


# ── App Factory ─────────────────────────────────────────────────────

app = FastAPI(
    title="Bullion Order API",
    description="Order lifecycle and payment reconciliation for precious-metals trading",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Routes ──────────────────────────────────────────────────────────

app.include_router(health.router)
app.include_router(orders.router)
app.include_router(payments.router)


# ── Exception Handlers ──────────────────────────────────────────────

def _error_body(code: str, message: str, details=None) -> dict:
    return {
        "success": False,
        "error": {
            "code": code,
            "message": message,
            "details": details,
        },
    }


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """
    Catch-all for unhandled exceptions.

    Never return raw exception details (store errors included) to clients.
    The correlation id ties the response to the server-side traceback.
    """
    correlation_id = uuid.uuid4().hex
    logger.error(
        f"Unhandled exception on {request.url.path} [correlation_id={correlation_id}]: {exc}",
        exc_info=True,
    )
    return JSONResponse(
        status_code=500,
        content=_error_body(
            "internal_server_error",
            "Internal server error",
            {"correlation_id": correlation_id},
        ),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request, exc: RequestValidationError):
    """Malformed request bodies/params are invalid input (400), like service-level checks."""
    errors = [
        {"field": ".".join(str(p) for p in err.get("loc", ())), "message": err.get("msg")}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content=_error_body("invalid_input", "Request validation failed", {"errors": errors}),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request, exc: HTTPException):
    """
    Standardize HTTPException responses for API consumers.

    Keeps the original HTTP status code, but wraps the payload.
    """
    if isinstance(exc, DomainError):
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(exc.code, exc.message, exc.details),
            headers=exc.headers,
        )

    # Regular HTTPException
    detail = exc.detail
    message = detail if isinstance(detail, str) else "Request failed"
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body("http_error", message, detail if not isinstance(detail, str) else None),
        headers=getattr(exc, "headers", None),
    )


# ── Entrypoint ──────────────────────────────────────────────────────

if __name__ == "__main__":
    import uvicorn
    port = int(os.environ.get("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port, log_level="info")
