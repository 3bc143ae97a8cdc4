"""FastAPI dependency wrappers around the authenticator and rbac guards."""

from __future__ import annotations

from typing import Any, Callable, Optional

from fastapi import Depends, Header, Request

from wayfare.logging import bind_request_identity
from wayfare.service import rbac
from wayfare.service.authenticator import RequestContext
from wayfare.service.runtime import get_runtime


async def get_principal(
    authorization: Optional[str] = Header(None),
) -> RequestContext:
    ctx = await get_runtime().authenticator.authenticate(authorization)
    bind_request_identity(ctx.user_id, ctx.tenant_id)
    return ctx


async def get_optional_principal(
    authorization: Optional[str] = Header(None),
) -> RequestContext:
    return await get_runtime().authenticator.optional_authenticate(authorization)


def require_permission(permission: str) -> Callable[..., Any]:
    async def _dependency(ctx: RequestContext = Depends(get_principal)) -> RequestContext:
        return rbac.check_permission(ctx, permission)

    return _dependency


def require_role(*roles: str) -> Callable[..., Any]:
    async def _dependency(ctx: RequestContext = Depends(get_principal)) -> RequestContext:
        return rbac.check_role(ctx, *roles)

    return _dependency


def require_role_level(min_role: str) -> Callable[..., Any]:
    async def _dependency(ctx: RequestContext = Depends(get_principal)) -> RequestContext:
        return rbac.check_role_level(ctx, min_role)

    return _dependency


def require_ownership(owner: rbac.OwnerSource) -> Callable[..., Any]:
    """``owner`` is an id or ``owner(ctx, request)``, sync or async."""

    async def _dependency(
        request: Request, ctx: RequestContext = Depends(get_principal)
    ) -> RequestContext:
        return await rbac.check_ownership(ctx, owner, request)

    return _dependency


async def require_super_admin(
    ctx: RequestContext = Depends(get_principal),
) -> RequestContext:
    return rbac.is_super_admin(ctx)


async def require_tenant_admin(
    ctx: RequestContext = Depends(get_principal),
) -> RequestContext:
    return rbac.is_tenant_admin(ctx)
