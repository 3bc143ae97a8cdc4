from __future__ import annotations

import hashlib
import re
import secrets
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Protocol

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError

from wayfare.config import Settings
from wayfare.logging import get_logger
from wayfare.service.email import EmailDeliveryError, NotificationSender, redact_email
from wayfare.service.errors import (
    AuthenticationError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ServerError,
    ServiceError,
    ValidationError,
)
from wayfare.service.tokens import TokenCodec
from wayfare.storage.errors import ConstraintViolation
from wayfare.storage.models import (
    Role,
    SessionEntry,
    SessionRecord,
    Tenant,
    User,
    UserStatus,
    utcnow,
)

logger = get_logger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

INVALID_CREDENTIALS_MESSAGE = "Invalid email or password"
RESET_REQUESTED_MESSAGE = (
    "If an account exists with this email, a password reset link has been sent"
)


class AuthStore(Protocol):
    def find_user_by_email_and_tenant(
        self, email: str, tenant_id: Optional[str]
    ) -> Optional[User]: ...

    def find_user_by_id(self, user_id: str) -> Optional[User]: ...

    def find_user_by_verification_token(self, token: str) -> Optional[User]: ...

    def find_user_by_reset_token(self, token: str, now: datetime) -> Optional[User]: ...

    def create_user(
        self,
        email: str,
        password_hash: str,
        *,
        first_name: str,
        last_name: str,
        tenant_id: Optional[str] = None,
        role: str = Role.CUSTOMER.value,
        status: str = UserStatus.ACTIVE.value,
        email_verified: bool = False,
        verification_token: Optional[str] = None,
    ) -> User: ...

    def save_user(self, user: User) -> User: ...

    def find_tenant_by_id(self, tenant_id: str) -> Optional[Tenant]: ...


class SessionRegistry(Protocol):
    async def put(
        self, user_id: str, refresh_token: str, record: SessionRecord, ttl_seconds: int
    ) -> None: ...

    async def get(self, user_id: str, refresh_token: str) -> Optional[SessionRecord]: ...

    async def delete(self, user_id: str, refresh_token: str) -> bool: ...

    async def delete_all_for_user(self, user_id: str) -> int: ...

    async def list_for_user(self, user_id: str) -> List[SessionEntry]: ...


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def session_fingerprint(refresh_token: str) -> str:
    """Stable public identifier for a session that never reveals the token."""
    return hashlib.sha256(refresh_token.encode("utf-8")).hexdigest()


def _generate_token() -> str:
    return secrets.token_hex(32)


class AuthService:
    """Credential exchange and refresh-session lifecycle.

    Every operation returns a plain ``dict`` or raises a
    :class:`~wayfare.service.errors.ServiceError`. The only failures swallowed
    here are notification deliveries on registration and, when
    ``reset_email_best_effort`` is set, on password-reset requests.
    """

    def __init__(
        self,
        store: AuthStore,
        sessions: SessionRegistry,
        tokens: TokenCodec,
        notifier: NotificationSender,
        settings: Settings,
        *,
        password_hasher: Optional[PasswordHasher] = None,
    ) -> None:
        self.store = store
        self.sessions = sessions
        self.tokens = tokens
        self.notifier = notifier
        self.settings = settings
        self._pwd_hasher = password_hasher or PasswordHasher(type=Type.ID)

    def _now(self) -> datetime:
        return utcnow()

    # credentials
    def _hash_password(self, password: str) -> str:
        return self._pwd_hasher.hash(password)

    def verify_password(self, user: User, password: str) -> bool:
        if not user.password_hash or not password:
            return False
        try:
            return self._pwd_hasher.verify(user.password_hash, password)
        except (InvalidHash, VerifyMismatchError, VerificationError):
            return False

    def _check_password_strength(self, password: str) -> None:
        min_length = self.settings.password_min_length
        if len(password) < min_length:
            raise ValidationError(
                f"Password must be at least {min_length} characters long",
                detail={"field": "password"},
            )

    @staticmethod
    def _require(message: str, **fields: Any) -> None:
        missing = [name for name, value in fields.items() if not value]
        if missing:
            raise ValidationError(message, detail={"missing_fields": missing})

    # registration
    async def register(
        self,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
        role: Optional[str] = None,
        tenant_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        self._require(
            "Email, password, first name, and last name are required",
            email=email,
            password=password,
            first_name=first_name,
            last_name=last_name,
        )
        email = normalize_email(email)
        if not EMAIL_PATTERN.match(email):
            raise ValidationError("Invalid email format", detail={"field": "email"})
        self._check_password_strength(password)
        role = role or Role.CUSTOMER.value
        if role not in {r.value for r in Role}:
            raise ValidationError("Unknown role", detail={"field": "role", "role": role})
        if role == Role.SUPER_ADMIN.value:
            # Super-admins are tenant-less and only provisioned by create_super_admin
            raise ValidationError(
                "This role cannot be self-assigned",
                "ROLE_NOT_ALLOWED",
                detail={"field": "role", "role": role},
            )
        if not tenant_id:
            raise ValidationError(
                "Tenant ID is required", detail={"missing_fields": ["tenant_id"]}
            )

        tenant = self.store.find_tenant_by_id(tenant_id)
        if tenant is None:
            raise NotFoundError(
                "Tenant not found", "TENANT_NOT_FOUND", detail={"tenant_id": tenant_id}
            )
        if not tenant.is_active:
            raise ValidationError(
                "Cannot register users for inactive tenant",
                "TENANT_INACTIVE",
                detail={"tenant_status": tenant.status},
            )

        if self.store.find_user_by_email_and_tenant(email, tenant_id) is not None:
            raise ConflictError(
                "User with this email already exists in this tenant",
                "USER_ALREADY_EXISTS",
                detail={"email": email},
            )

        verification_token = _generate_token()
        try:
            user = self.store.create_user(
                email,
                self._hash_password(password),
                first_name=first_name.strip(),
                last_name=last_name.strip(),
                tenant_id=tenant_id,
                role=role,
                status=UserStatus.ACTIVE.value,
                email_verified=False,
                verification_token=verification_token,
            )
        except ConstraintViolation as exc:
            # Lost a race with a concurrent registration
            raise ConflictError(
                "User with this email already exists in this tenant",
                "USER_ALREADY_EXISTS",
                detail={"email": email},
            ) from exc

        try:
            await self.notifier.send_verification_email(
                user.email,
                verification_token,
                {"first_name": user.first_name, "tenant_name": tenant.name},
            )
        except EmailDeliveryError as exc:
            logger.error(
                "verification_email_failed", user_id=user.id, error=str(exc)
            )

        logger.info("user_registered", user_id=user.id, tenant_id=tenant_id, role=role)
        return user.to_public_dict()

    async def create_super_admin(
        self, email: str, password: str, first_name: str, last_name: str
    ) -> Dict[str, Any]:
        """Provision a tenant-less, pre-verified super-admin account."""
        self._require(
            "Email, password, first name, and last name are required",
            email=email,
            password=password,
            first_name=first_name,
            last_name=last_name,
        )
        email = normalize_email(email)
        if not EMAIL_PATTERN.match(email):
            raise ValidationError("Invalid email format", detail={"field": "email"})
        self._check_password_strength(password)
        if self.store.find_user_by_email_and_tenant(email, None) is not None:
            raise ConflictError(
                "A tenant-less account with this email already exists",
                "USER_ALREADY_EXISTS",
                detail={"email": email},
            )
        user = self.store.create_user(
            email,
            self._hash_password(password),
            first_name=first_name,
            last_name=last_name,
            tenant_id=None,
            role=Role.SUPER_ADMIN.value,
            email_verified=True,
        )
        logger.info("super_admin_created", user_id=user.id)
        return user.to_public_dict()

    # credential exchange
    async def login(
        self, email: str, password: str, tenant_id: Optional[str] = None
    ) -> Dict[str, Any]:
        self._require("Email and password are required", email=email, password=password)
        email = normalize_email(email)

        user = self.store.find_user_by_email_and_tenant(email, tenant_id or None)
        if user is None:
            logger.info("login_failed", reason="unknown_user", tenant_id=tenant_id)
            raise AuthenticationError(INVALID_CREDENTIALS_MESSAGE, "INVALID_CREDENTIALS")
        if not user.is_active:
            logger.info("login_failed", reason="inactive", user_id=user.id)
            raise AuthenticationError(
                "Your account is not active. Please contact support.",
                "ACCOUNT_INACTIVE",
                detail={"status": user.status},
            )
        if not self.verify_password(user, password):
            logger.info("login_failed", reason="bad_password", user_id=user.id)
            raise AuthenticationError(INVALID_CREDENTIALS_MESSAGE, "INVALID_CREDENTIALS")
        if user.tenant_id:
            tenant = self.store.find_tenant_by_id(user.tenant_id)
            if tenant is None or not tenant.is_active:
                logger.info("login_failed", reason="tenant_inactive", user_id=user.id)
                raise AuthenticationError(
                    "Your organization's account is not active",
                    "TENANT_INACTIVE",
                    detail={"tenant_status": tenant.status if tenant else None},
                )

        pair = self.tokens.issue_token_pair(user.auth_claims())
        await self.sessions.put(
            user.id,
            pair.refresh_token,
            SessionRecord(user_id=user.id, tenant_id=user.tenant_id, created_at=self._now()),
            self.tokens.refresh_ttl_seconds,
        )

        user.last_login_at = self._now()
        self.store.save_user(user)

        logger.info("login_succeeded", user_id=user.id, tenant_id=user.tenant_id)
        return {"user": user.to_public_dict(), **pair.as_dict()}

    async def verify_email(self, token: str) -> Dict[str, Any]:
        self._require("Verification token is required", token=token)
        user = self.store.find_user_by_verification_token(token)
        if user is None:
            raise NotFoundError(
                "Invalid or expired verification token", "INVALID_VERIFICATION_TOKEN"
            )
        user.email_verified = True
        user.verification_token = None
        self.store.save_user(user)
        logger.info("email_verified", user_id=user.id)
        return {"message": "Email verified successfully", "email_verified": True}

    # password reset
    async def request_password_reset(
        self, email: str, tenant_id: Optional[str]
    ) -> Dict[str, Any]:
        self._require("Email is required", email=email)
        self._require("Tenant ID is required", tenant_id=tenant_id)
        email = normalize_email(email)

        user = self.store.find_user_by_email_and_tenant(email, tenant_id)
        if user is None:
            logger.warning(
                "password_reset_unknown_user",
                email=redact_email(email),
                tenant_id=tenant_id,
            )
            return {"message": RESET_REQUESTED_MESSAGE}

        reset_token = _generate_token()
        user.reset_token = reset_token
        user.reset_token_expiry = self._now() + timedelta(
            minutes=self.settings.reset_token_ttl_minutes
        )
        self.store.save_user(user)

        tenant = self.store.find_tenant_by_id(tenant_id)
        try:
            await self.notifier.send_password_reset_email(
                user.email,
                reset_token,
                {
                    "first_name": user.first_name,
                    "tenant_name": tenant.name if tenant else self.settings.app_name,
                    "tenant_id": tenant_id,
                },
            )
        except EmailDeliveryError as exc:
            logger.error("password_reset_email_failed", user_id=user.id, error=str(exc))
            if not self.settings.reset_email_best_effort:
                raise ServerError(
                    "Failed to send password reset email", "EMAIL_DELIVERY_FAILED"
                ) from exc

        logger.info("password_reset_requested", user_id=user.id)
        return {"message": RESET_REQUESTED_MESSAGE}

    async def reset_password(self, token: str, new_password: str) -> Dict[str, Any]:
        self._require("Reset token is required", token=token)
        self._require("New password is required", new_password=new_password)
        # Strength is checked before the token lookup touches the store
        self._check_password_strength(new_password)

        user = self.store.find_user_by_reset_token(token, self._now())
        if user is None:
            raise NotFoundError("Invalid or expired reset token", "INVALID_RESET_TOKEN")

        user.password_hash = self._hash_password(new_password)
        user.reset_token = None
        user.reset_token_expiry = None
        user.last_password_change = self._now()
        self.store.save_user(user)

        revoked = await self.sessions.delete_all_for_user(user.id)
        logger.info("password_reset_completed", user_id=user.id, sessions_revoked=revoked)
        return {"message": "Password reset successfully"}

    # refresh sessions
    async def refresh_access_token(self, refresh_token: str) -> Dict[str, Any]:
        self._require("Refresh token is required", refresh_token=refresh_token)
        try:
            claims = self.tokens.verify_refresh_token(refresh_token)
        except ServiceError as exc:
            raise AuthenticationError(
                "Invalid or expired refresh token", "INVALID_REFRESH_TOKEN"
            ) from exc

        user_id = claims.get("userId")
        if not user_id:
            raise AuthenticationError(
                "Invalid or expired refresh token", "INVALID_REFRESH_TOKEN"
            )

        if await self.sessions.get(str(user_id), refresh_token) is None:
            logger.info("refresh_token_revoked", user_id=user_id)
            raise AuthenticationError("Refresh token has been revoked", "TOKEN_REVOKED")

        user = self.store.find_user_by_id(str(user_id))
        if user is None or not user.is_active:
            raise AuthenticationError("User not found or inactive", "USER_INACTIVE")

        access_token = self.tokens.issue_access_token(user.auth_claims())
        logger.debug("access_token_refreshed", user_id=user.id)
        # The refresh token is handed back unchanged; there is no rotation
        return {
            "access_token": access_token,
            "refresh_token": refresh_token,
            "expires_in": self.tokens.access_ttl_seconds,
            "token_type": "Bearer",
        }

    async def logout(self, user_id: str, refresh_token: str) -> Dict[str, Any]:
        self._require("Refresh token is required", refresh_token=refresh_token)
        await self.sessions.delete(user_id, refresh_token)
        logger.info("user_logged_out", user_id=user_id)
        return {"message": "Logged out successfully"}

    # profile
    async def change_password(
        self, user_id: str, current_password: str, new_password: str
    ) -> Dict[str, Any]:
        self._require(
            "Current and new password are required",
            current_password=current_password,
            new_password=new_password,
        )
        user = self.store.find_user_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found", "USER_NOT_FOUND")
        if not self.verify_password(user, current_password):
            raise ValidationError("Current password is incorrect", "INVALID_PASSWORD")
        if self.verify_password(user, new_password):
            raise ValidationError(
                "New password must be different from current password", "SAME_PASSWORD"
            )
        self._check_password_strength(new_password)

        user.password_hash = self._hash_password(new_password)
        user.last_password_change = self._now()
        self.store.save_user(user)
        logger.info("password_changed", user_id=user.id)
        return {"message": "Password changed successfully"}

    async def list_sessions(
        self, user_id: str, current_refresh_token: Optional[str] = None
    ) -> Dict[str, Any]:
        current = session_fingerprint(current_refresh_token) if current_refresh_token else None
        sessions = []
        for entry in await self.sessions.list_for_user(user_id):
            session_id = session_fingerprint(entry.refresh_token)
            sessions.append(
                {
                    "session_id": session_id,
                    "created_at": entry.record.created_at,
                    "expires_in": entry.ttl_seconds,
                    "is_current": session_id == current,
                }
            )
        sessions.sort(key=lambda s: s["created_at"], reverse=True)
        return {"sessions": sessions}

    async def revoke_session(
        self,
        user_id: str,
        session_id: str,
        current_refresh_token: Optional[str] = None,
    ) -> Dict[str, Any]:
        self._require("Session ID is required", session_id=session_id)
        if current_refresh_token and session_fingerprint(current_refresh_token) == session_id:
            raise ForbiddenError(
                "Cannot revoke current session. Use logout instead.",
                "CANNOT_REVOKE_CURRENT_SESSION",
            )
        for entry in await self.sessions.list_for_user(user_id):
            if session_fingerprint(entry.refresh_token) == session_id:
                if await self.sessions.delete(user_id, entry.refresh_token):
                    logger.info("session_revoked", user_id=user_id, session_id=session_id)
                    return {"message": "Session revoked successfully"}
                break
        raise NotFoundError("Session not found", "SESSION_NOT_FOUND")
