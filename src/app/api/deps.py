"""FastAPI dependency injection for tenant and caller identity.

These dependencies are used in endpoint function signatures to inject the
tenant context (set by TenantMiddleware) and the identity of the calling
user, both asserted by the upstream gateway.
"""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request, status

from src.app.core.tenant import TenantContext, get_current_tenant


@dataclass(frozen=True)
class CallerIdentity:
    """The user on whose behalf a request is made."""

    user_id: str
    tenant_id: str


async def get_tenant() -> TenantContext:
    """Get the current tenant context (set by TenantMiddleware)."""
    try:
        return get_current_tenant()
    except RuntimeError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing X-Tenant-ID header",
        )


async def get_current_user(
    request: Request,
    tenant: TenantContext = Depends(get_tenant),
) -> CallerIdentity:
    """Extract the caller identity from the X-User-ID header.

    Raises:
        HTTPException(401): If no user identity is provided.
    """
    user_id = (request.headers.get("X-User-ID") or "").strip()
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-ID header",
        )
    return CallerIdentity(user_id=user_id, tenant_id=tenant.tenant_id)


# Alias for cleaner endpoint signatures
require_user = Depends(get_current_user)
