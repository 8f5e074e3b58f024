"""
Pytest test suite for the order backend.

Test categories:
- Unit tests: pricing, workflow, enrichment, signature verification
- Integration tests: repository/services against SQLite (in-memory and temp-file)
- API tests: FastAPI app through httpx ASGITransport
"""
