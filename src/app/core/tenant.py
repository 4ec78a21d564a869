"""Tenant context propagation via Python contextvars.

Every training operation is scoped to one club (tenant). TenantMiddleware
reads the X-Tenant-ID header at the start of each request and stores a
TenantContext that is accessible anywhere in the call stack via
get_current_tenant(). Identity is asserted by the upstream gateway; this
service does not authenticate it.
"""

from __future__ import annotations

import contextvars
import re
from dataclasses import dataclass

import structlog
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

logger = structlog.get_logger(__name__)

# ── Tenant Context ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class TenantContext:
    """Immutable tenant context for the current request."""

    tenant_id: str


_tenant_context: contextvars.ContextVar[TenantContext] = contextvars.ContextVar("tenant_context")

_TENANT_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.:-]{0,63}$")


def get_current_tenant() -> TenantContext:
    """Get the tenant context for the current request.

    Raises RuntimeError if no tenant context has been set (i.e., the call
    is not within a tenant-scoped request).
    """
    try:
        return _tenant_context.get()
    except LookupError:
        raise RuntimeError("No tenant context set -- request is not tenant-scoped")


def set_tenant_context(ctx: TenantContext) -> contextvars.Token[TenantContext]:
    """Set the tenant context for the current request. Returns a token for reset."""
    return _tenant_context.set(ctx)


def reset_tenant_context(token: contextvars.Token[TenantContext]) -> None:
    _tenant_context.reset(token)


# ── Paths that skip tenant resolution ───────────────────────────────────────

SKIP_TENANT_PATHS = (
    "/health",
    "/docs",
    "/openapi.json",
    "/redoc",
    "/metrics",
)


# ── Tenant Middleware ───────────────────────────────────────────────────────


class TenantMiddleware(BaseHTTPMiddleware):
    """Middleware that resolves tenant from X-Tenant-ID header and sets context.

    Paths in SKIP_TENANT_PATHS are excluded from tenant resolution (health
    checks, docs, metrics).
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        # Skip tenant resolution for excluded paths
        path = request.url.path
        if any(path.startswith(skip) for skip in SKIP_TENANT_PATHS):
            return await call_next(request)

        # Extract tenant ID from header
        tenant_id = (request.headers.get("X-Tenant-ID") or "").strip()
        if not tenant_id:
            return JSONResponse(status_code=400, content={"detail": "Missing X-Tenant-ID header"})
        if not _TENANT_ID_PATTERN.match(tenant_id):
            return JSONResponse(status_code=400, content={"detail": "Malformed X-Tenant-ID header"})

        # Set context and process request
        token = set_tenant_context(TenantContext(tenant_id=tenant_id))
        try:
            response = await call_next(request)
            return response
        finally:
            reset_tenant_context(token)
