from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt

from wayfare.config import Settings, parse_duration
from wayfare.logging import get_logger
from wayfare.service.errors import TokenExpiredError, TokenInvalidError

logger = get_logger(__name__)

JWT_ALGORITHM = "HS256"

# Claims the codec owns; callers cannot override them
_RESERVED_CLAIMS = frozenset({"iss", "aud", "iat", "exp", "jti"})


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int
    token_type: str = "Bearer"

    def as_dict(self) -> Dict[str, Any]:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_in": self.expires_in,
            "token_type": self.token_type,
        }


class TokenCodec:
    """Signs and verifies access and refresh JWTs.

    The two token classes use independent secrets, so a key that verifies one
    class never verifies the other.
    """

    def __init__(
        self,
        *,
        access_secret: str,
        refresh_secret: str,
        access_expiry: str = "15m",
        refresh_expiry: str = "7d",
        issuer: str = "travel-crm",
    ) -> None:
        if access_secret == refresh_secret:
            raise ValueError("access and refresh secrets must differ")
        self._access_secret = access_secret
        self._refresh_secret = refresh_secret
        self.access_ttl_seconds = parse_duration(access_expiry)
        self.refresh_ttl_seconds = parse_duration(refresh_expiry)
        self.issuer = issuer
        self.audience = issuer

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenCodec":
        return cls(
            access_secret=settings.jwt_access_secret,
            refresh_secret=settings.jwt_refresh_secret,
            access_expiry=settings.jwt_access_expiry,
            refresh_expiry=settings.jwt_refresh_expiry,
            issuer=settings.app_name,
        )

    def _sign(self, claims: Dict[str, Any], secret: str, ttl_seconds: int) -> str:
        now = datetime.now(timezone.utc)
        payload = {k: v for k, v in claims.items() if k not in _RESERVED_CLAIMS}
        payload.update(
            {
                "iss": self.issuer,
                "aud": self.audience,
                "iat": now,
                "exp": now + timedelta(seconds=ttl_seconds),
                "jti": uuid.uuid4().hex,
            }
        )
        return jwt.encode(payload, secret, algorithm=JWT_ALGORITHM)

    def _verify(self, token: str, secret: str, token_class: str) -> Dict[str, Any]:
        try:
            return jwt.decode(
                token,
                secret,
                algorithms=[JWT_ALGORITHM],
                issuer=self.issuer,
                audience=self.audience,
                options={"require": ["exp", "iss", "aud"]},
            )
        except jwt.ExpiredSignatureError as exc:
            logger.debug("token_expired", credential=token_class)
            raise TokenExpiredError(f"{token_class.capitalize()} token has expired") from exc
        except jwt.InvalidTokenError as exc:
            logger.debug(
                "token_invalid", credential=token_class, reason=type(exc).__name__
            )
            raise TokenInvalidError(f"Invalid {token_class} token") from exc

    def issue_access_token(self, claims: Dict[str, Any]) -> str:
        return self._sign(claims, self._access_secret, self.access_ttl_seconds)

    def issue_refresh_token(self, claims: Dict[str, Any]) -> str:
        return self._sign(claims, self._refresh_secret, self.refresh_ttl_seconds)

    def issue_token_pair(self, claims: Dict[str, Any]) -> TokenPair:
        return TokenPair(
            access_token=self.issue_access_token(claims),
            refresh_token=self.issue_refresh_token(claims),
            expires_in=self.access_ttl_seconds,
        )

    def verify_access_token(self, token: str) -> Dict[str, Any]:
        return self._verify(token, self._access_secret, "access")

    def verify_refresh_token(self, token: str) -> Dict[str, Any]:
        return self._verify(token, self._refresh_secret, "refresh")

    @staticmethod
    def decode(token: str) -> Optional[Dict[str, Any]]:
        """Read claims without verifying anything. Never use for authorization."""
        try:
            return jwt.decode(
                token,
                options={"verify_signature": False, "verify_exp": False, "verify_aud": False},
                algorithms=[JWT_ALGORITHM],
            )
        except jwt.DecodeError:
            return None
