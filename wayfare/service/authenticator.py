from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from wayfare.logging import get_logger
from wayfare.service.auth import AuthStore
from wayfare.service.errors import AuthenticationError, ServiceError
from wayfare.service.tokens import TokenCodec

logger = get_logger(__name__)


@dataclass
class RequestContext:
    """Identity attached to a request once its bearer token checks out."""

    user: Optional[Dict[str, Any]] = None
    user_id: Optional[str] = None
    role: Optional[str] = None
    tenant_id: Optional[str] = None
    claims: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def anonymous(cls) -> "RequestContext":
        return cls()

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None


def extract_bearer(header: Optional[str]) -> Optional[str]:
    if not header:
        return None
    scheme, _, token = header.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    token = token.strip()
    return token or None


class Authenticator:
    def __init__(self, store: AuthStore, tokens: TokenCodec) -> None:
        self.store = store
        self.tokens = tokens

    async def authenticate(self, authorization: Optional[str]) -> RequestContext:
        """Resolve ``Authorization: Bearer <access token>`` to a live user.

        Token verification failures propagate with their own codes
        (``TOKEN_EXPIRED`` / ``INVALID_TOKEN``).
        """
        token = extract_bearer(authorization)
        if not token:
            raise AuthenticationError("No token provided", "NO_TOKEN")

        claims = self.tokens.verify_access_token(token)
        user_id = claims.get("userId")
        user = self.store.find_user_by_id(str(user_id)) if user_id else None
        if user is None:
            logger.info("authentication_failed", reason="user_not_found", user_id=user_id)
            raise AuthenticationError("User not found", "USER_NOT_FOUND")
        if not user.is_active:
            logger.info("authentication_failed", reason="inactive", user_id=user.id)
            raise AuthenticationError("User account is not active", "USER_INACTIVE")

        return RequestContext(
            user=user.to_public_dict(),
            user_id=user.id,
            role=user.role,
            tenant_id=user.tenant_id,
            claims=claims,
        )

    async def optional_authenticate(self, authorization: Optional[str]) -> RequestContext:
        try:
            return await self.authenticate(authorization)
        except ServiceError as exc:
            if authorization:
                logger.debug("optional_authentication_ignored", code=exc.code)
            return RequestContext.anonymous()
