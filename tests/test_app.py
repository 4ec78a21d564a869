"""Tests for the assembled application: middleware stack and routes.

The lifespan is not run here, so the training service is absent and
training endpoints answer 503 once the tenant header is accepted.
"""

from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient

from src.app.main import create_app


@pytest.mark.asyncio
async def test_health_skips_tenant_resolution():
    """GET /health without X-Tenant-ID -> 200 with X-Request-ID header."""
    transport = ASGITransport(app=create_app())
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/health")

    assert response.status_code == 200
    assert response.headers.get("X-Request-ID")


@pytest.mark.asyncio
async def test_training_routes_require_tenant():
    """GET /api/v1/training/documents without X-Tenant-ID -> 400."""
    transport = ASGITransport(app=create_app())
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/api/v1/training/documents")

    assert response.status_code == 400
    assert response.json()["detail"] == "Missing X-Tenant-ID header"


@pytest.mark.asyncio
async def test_training_routes_503_before_startup():
    """GET /api/v1/training/documents with a tenant but no service -> 503."""
    transport = ASGITransport(app=create_app())
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get(
            "/api/v1/training/documents", headers={"X-Tenant-ID": "club-paris"}
        )

    assert response.status_code == 503


@pytest.mark.asyncio
async def test_metrics_endpoint_exposes_http_and_pipeline_metrics():
    """GET /metrics -> Prometheus text with HTTP and training series."""
    transport = ASGITransport(app=create_app())
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        await client.get("/health")
        response = await client.get("/metrics")

    assert response.status_code == 200
    body = response.text
    assert "http_requests_total" in body
    assert "training_ingestion_runs_total" in body
    assert "training_search_requests_total" in body


@pytest.mark.asyncio
async def test_incoming_request_id_is_echoed():
    """A caller-supplied X-Request-ID is reused on the response."""
    transport = ASGITransport(app=create_app())
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/health", headers={"X-Request-ID": "gateway-123"})

    assert response.headers["X-Request-ID"] == "gateway-123"
