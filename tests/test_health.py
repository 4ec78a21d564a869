"""Tests for the liveness and readiness endpoints."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
from httpx import ASGITransport, AsyncClient


def _make_app(training_service=None):
    from fastapi import FastAPI

    from src.app.api.v1.health import router

    app = FastAPI()
    app.include_router(router)
    app.state.training_service = training_service
    return app


def _service(started: bool) -> MagicMock:
    service = MagicMock()
    service.orchestrator.started = started
    return service


@pytest.mark.asyncio
async def test_health_check():
    """GET /health -> 200 without touching dependencies."""
    transport = ASGITransport(app=_make_app())
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_ready_when_database_and_workers_up(engine):
    """GET /health/ready -> 200 when the database answers and workers run."""
    with patch("src.app.api.v1.health.get_engine", return_value=engine):
        transport = ASGITransport(app=_make_app(_service(started=True)))
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/health/ready")

    assert response.status_code == 200
    assert response.json() == {"status": "ready", "checks": {"database": "ok", "ingestion": "ok"}}


@pytest.mark.asyncio
async def test_not_ready_when_workers_stopped(engine):
    """GET /health/ready -> 503 when the ingestion pool is not running."""
    with patch("src.app.api.v1.health.get_engine", return_value=engine):
        transport = ASGITransport(app=_make_app(_service(started=False)))
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/health/ready")

    assert response.status_code == 503
    assert response.json()["checks"]["ingestion"] == "stopped"


@pytest.mark.asyncio
async def test_not_ready_without_training_service(engine):
    """GET /health/ready -> 503 before the lifespan wired the service."""
    with patch("src.app.api.v1.health.get_engine", return_value=engine):
        transport = ASGITransport(app=_make_app())
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/health/ready")

    assert response.status_code == 503
    assert response.json()["checks"]["ingestion"] == "not_initialized"


@pytest.mark.asyncio
async def test_not_ready_when_database_down():
    """GET /health/ready -> 503 with the database error reported."""
    broken = MagicMock()
    broken.connect.side_effect = ConnectionRefusedError("connection refused")
    with patch("src.app.api.v1.health.get_engine", return_value=broken):
        transport = ASGITransport(app=_make_app(_service(started=True)))
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/health/ready")

    assert response.status_code == 503
    checks = response.json()["checks"]
    assert checks["database"] == "error"
    assert "connection refused" in checks["database_error"]
