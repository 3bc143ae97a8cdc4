from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header, Path

from wayfare.api.dependencies import get_principal
from wayfare.api.schemas import (
    ChangePasswordRequest,
    Envelope,
    ForgotPasswordRequest,
    LoginRequest,
    LogoutRequest,
    RefreshRequest,
    RegisterRequest,
    ResetPasswordRequest,
    VerifyEmailRequest,
)
from wayfare.service.authenticator import RequestContext
from wayfare.service.rbac import permissions_for
from wayfare.service.runtime import get_runtime

router = APIRouter(prefix="/v1")


def _tenant(body_tenant: Optional[str], header_tenant: Optional[str]) -> Optional[str]:
    return body_tenant or header_tenant or None


@router.post("/auth/register", response_model=Envelope, status_code=201, tags=["auth"])
async def register(
    body: RegisterRequest,
    x_tenant_id: Optional[str] = Header(None),
):
    """Create an unverified, active account in an active tenant.

    The tenant comes from the body or, failing that, the ``X-Tenant-ID`` header.
    """
    user = await get_runtime().auth.register(
        email=body.email,
        password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
        role=body.role,
        tenant_id=_tenant(body.tenant_id, x_tenant_id),
    )
    return Envelope(status="ok", data=user)


@router.post("/auth/login", response_model=Envelope, tags=["auth"])
async def login(body: LoginRequest, x_tenant_id: Optional[str] = Header(None)):
    """Exchange credentials for an access/refresh token pair.

    Omitting the tenant selects the tenant-less (super-admin) account.
    """
    result = await get_runtime().auth.login(
        body.email, body.password, _tenant(body.tenant_id, x_tenant_id)
    )
    return Envelope(status="ok", data=result)


@router.post("/auth/verify-email", response_model=Envelope, tags=["auth"])
async def verify_email(body: VerifyEmailRequest):
    return Envelope(status="ok", data=await get_runtime().auth.verify_email(body.token))


@router.post("/auth/password/forgot", response_model=Envelope, tags=["auth"])
async def forgot_password(
    body: ForgotPasswordRequest, x_tenant_id: Optional[str] = Header(None)
):
    """Always answers with the same message whether or not the account exists."""
    result = await get_runtime().auth.request_password_reset(
        body.email, _tenant(body.tenant_id, x_tenant_id)
    )
    return Envelope(status="ok", data=result)


@router.post("/auth/password/reset", response_model=Envelope, tags=["auth"])
async def reset_password(body: ResetPasswordRequest):
    result = await get_runtime().auth.reset_password(body.token, body.new_password)
    return Envelope(status="ok", data=result)


@router.post("/auth/refresh", response_model=Envelope, tags=["auth"])
async def refresh(body: RefreshRequest):
    result = await get_runtime().auth.refresh_access_token(body.refresh_token)
    return Envelope(status="ok", data=result)


@router.post("/auth/logout", response_model=Envelope, tags=["auth"])
async def logout(body: LogoutRequest, ctx: RequestContext = Depends(get_principal)):
    result = await get_runtime().auth.logout(ctx.user_id, body.refresh_token)
    return Envelope(status="ok", data=result)


@router.get("/auth/me", response_model=Envelope, tags=["auth"])
async def me(ctx: RequestContext = Depends(get_principal)):
    return Envelope(
        status="ok",
        data={"user": ctx.user, "permissions": list(permissions_for(ctx.role))},
    )


@router.put("/profile/password", response_model=Envelope, tags=["profile"])
async def change_password(
    body: ChangePasswordRequest, ctx: RequestContext = Depends(get_principal)
):
    result = await get_runtime().auth.change_password(
        ctx.user_id, body.current_password, body.new_password
    )
    return Envelope(status="ok", data=result)


@router.get("/profile/sessions", response_model=Envelope, tags=["profile"])
async def list_sessions(
    ctx: RequestContext = Depends(get_principal),
    x_refresh_token: Optional[str] = Header(None),
):
    """List live refresh sessions.

    Sending the caller's refresh token in ``X-Refresh-Token`` marks it as current.
    """
    result = await get_runtime().auth.list_sessions(ctx.user_id, x_refresh_token)
    return Envelope(status="ok", data=result)


@router.delete("/profile/sessions/{session_id}", response_model=Envelope, tags=["profile"])
async def revoke_session(
    session_id: str = Path(..., min_length=64, max_length=64),
    ctx: RequestContext = Depends(get_principal),
    x_refresh_token: Optional[str] = Header(None),
):
    result = await get_runtime().auth.revoke_session(
        ctx.user_id, session_id, x_refresh_token
    )
    return Envelope(status="ok", data=result)
