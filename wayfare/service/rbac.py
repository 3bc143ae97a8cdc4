"""Role hierarchy, permission matrix and the guards built on them.

Guards take the :class:`RequestContext` produced by the authenticator, raise a
:class:`ServiceError` on failure and hand the context back on success so they
can be chained in dependency wrappers.
"""

from __future__ import annotations

import inspect
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from wayfare.logging import get_logger
from wayfare.service.authenticator import RequestContext
from wayfare.service.errors import AuthenticationError, ForbiddenError, NotFoundError
from wayfare.storage.models import Role

logger = get_logger(__name__)

ROLE_HIERARCHY: Dict[str, int] = {
    Role.SUPER_ADMIN.value: 6,
    Role.TENANT_ADMIN.value: 5,
    Role.OPERATOR.value: 4,
    Role.AGENT.value: 3,
    Role.SUPPLIER.value: 2,
    Role.CUSTOMER.value: 1,
}

PERMISSIONS: Dict[str, List[str]] = {
    Role.SUPER_ADMIN.value: ["*"],
    Role.TENANT_ADMIN.value: [
        "tenant:read",
        "tenant:update",
        "users:create",
        "users:read",
        "users:update",
        "users:delete",
        "suppliers:*",
        "rate-lists:*",
        "packages:*",
        "queries:*",
        "itineraries:*",
        "quotes:*",
        "bookings:*",
        "payments:read",
        "reports:read",
        "settings:*",
    ],
    Role.OPERATOR.value: [
        "queries:read",
        "queries:update",
        "queries:assign",
        "itineraries:create",
        "itineraries:read",
        "itineraries:update",
        "quotes:create",
        "quotes:read",
        "quotes:update",
        "bookings:create",
        "bookings:read",
        "bookings:update",
        "suppliers:read",
        "rate-lists:read",
        "packages:read",
        "customers:read",
    ],
    Role.AGENT.value: [
        "queries:create",
        "queries:read",
        "itineraries:create",
        "itineraries:read",
        "quotes:create",
        "quotes:read",
        "packages:read",
        "customers:create",
        "customers:read",
        "customers:update",
        "bookings:read",
    ],
    Role.SUPPLIER.value: [
        "rate-lists:create",
        "rate-lists:read",
        "rate-lists:update",
        "rate-lists:delete",
        "bookings:read",
        "bookings:confirm",
    ],
    Role.CUSTOMER.value: [
        "queries:create",
        "queries:read:own",
        "itineraries:read:own",
        "quotes:read:own",
        "bookings:read:own",
        "bookings:pay",
        "documents:read:own",
        "reviews:create",
    ],
}

_ADMIN_ROLES = frozenset({Role.SUPER_ADMIN.value, Role.TENANT_ADMIN.value})

OwnerSource = Union[str, int, None, Callable[..., Any]]


def role_level(role: Optional[str]) -> int:
    return ROLE_HIERARCHY.get(role or "", 0)


def has_permission(role: Optional[str], permission: str) -> bool:
    granted = PERMISSIONS.get(role or "", [])
    if "*" in granted or permission in granted:
        return True
    resource = permission.split(":", 1)[0]
    return f"{resource}:*" in granted


def has_role_level(role: Optional[str], min_role: str) -> bool:
    return role_level(role) >= role_level(min_role)


def _require_identity(ctx: Optional[RequestContext]) -> RequestContext:
    if ctx is None or not ctx.is_authenticated:
        raise AuthenticationError("Authentication required", "AUTH_REQUIRED")
    return ctx


def check_permission(ctx: Optional[RequestContext], permission: str) -> RequestContext:
    ctx = _require_identity(ctx)
    if not has_permission(ctx.role, permission):
        logger.warning(
            "permission_denied",
            user_id=ctx.user_id,
            role=ctx.role,
            required_permission=permission,
        )
        raise ForbiddenError(
            "You do not have permission to perform this action",
            "PERMISSION_DENIED",
            detail={"required_permission": permission},
        )
    return ctx


def check_role(ctx: Optional[RequestContext], *roles: str) -> RequestContext:
    ctx = _require_identity(ctx)
    if ctx.role not in roles:
        logger.warning(
            "role_check_failed", user_id=ctx.user_id, role=ctx.role, required_roles=list(roles)
        )
        raise ForbiddenError(
            "You do not have the required role to access this resource",
            "ROLE_REQUIRED",
            detail={"required_roles": list(roles)},
        )
    return ctx


def check_role_level(ctx: Optional[RequestContext], min_role: str) -> RequestContext:
    ctx = _require_identity(ctx)
    if not has_role_level(ctx.role, min_role):
        logger.warning(
            "role_level_check_failed", user_id=ctx.user_id, role=ctx.role, min_role=min_role
        )
        raise ForbiddenError(
            "Insufficient privileges to access this resource",
            "INSUFFICIENT_ROLE_LEVEL",
            detail={"minimum_role": min_role},
        )
    return ctx


async def check_ownership(
    ctx: Optional[RequestContext], owner: OwnerSource, request: Any = None
) -> RequestContext:
    """Allow admins, or the caller whose id string-equals the resource owner.

    ``owner`` is either the owner id itself or a callable ``owner(ctx, request)``
    that may return the id or an awaitable resolving to it.
    """
    ctx = _require_identity(ctx)
    if ctx.role in _ADMIN_ROLES:
        return ctx

    owner_id = owner(ctx, request) if callable(owner) else owner
    if inspect.isawaitable(owner_id):
        owner_id = await owner_id

    if owner_id is None or str(owner_id) != str(ctx.user_id):
        logger.warning("ownership_check_failed", user_id=ctx.user_id, owner_id=owner_id)
        raise ForbiddenError("You can only access your own resources", "OWNERSHIP_REQUIRED")
    return ctx


def is_super_admin(ctx: Optional[RequestContext]) -> RequestContext:
    # No identity is reported as forbidden here, not unauthenticated
    if ctx is None or ctx.role != Role.SUPER_ADMIN.value:
        raise ForbiddenError(
            "This action requires super administrator privileges", "SUPER_ADMIN_REQUIRED"
        )
    return ctx


def is_tenant_admin(ctx: Optional[RequestContext]) -> RequestContext:
    if ctx is None or ctx.role not in _ADMIN_ROLES:
        raise ForbiddenError(
            "This action requires tenant administrator privileges", "TENANT_ADMIN_REQUIRED"
        )
    return ctx


def require_same_tenant(ctx: Optional[RequestContext], tenant_id: Optional[str]) -> RequestContext:
    """Scope a resource to the caller's tenant.

    Super-admins cross tenants freely. A foreign tenant's resource is reported
    as missing so its existence does not leak.
    """
    ctx = _require_identity(ctx)
    if ctx.role == Role.SUPER_ADMIN.value:
        return ctx
    if not ctx.tenant_id:
        raise ForbiddenError("Tenant context required", "TENANT_REQUIRED")
    if tenant_id is None or str(tenant_id) != str(ctx.tenant_id):
        logger.warning(
            "cross_tenant_access_blocked",
            user_id=ctx.user_id,
            tenant_id=ctx.tenant_id,
            resource_tenant_id=tenant_id,
        )
        raise NotFoundError("Resource not found", "RESOURCE_NOT_FOUND")
    return ctx


def permissions_for(role: Optional[str]) -> Iterable[str]:
    return tuple(PERMISSIONS.get(role or "", ()))
