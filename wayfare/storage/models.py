from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, Enum):
    SUPER_ADMIN = "super_admin"
    TENANT_ADMIN = "tenant_admin"
    OPERATOR = "operator"
    AGENT = "agent"
    SUPPLIER = "supplier"
    CUSTOMER = "customer"
    AGENT_CUSTOMER = "agent_customer"


class UserStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class TenantStatus(str, Enum):
    ACTIVE = "active"
    TRIAL = "trial"
    SUSPENDED = "suspended"
    CANCELLED = "cancelled"
    INACTIVE = "inactive"


# Never leave the identity store
_PRIVATE_USER_FIELDS = frozenset(
    {"password_hash", "verification_token", "reset_token", "reset_token_expiry"}
)


@dataclass
class Tenant:
    id: str
    name: str
    slug: Optional[str] = None
    status: str = TenantStatus.ACTIVE.value
    created_at: datetime = field(default_factory=utcnow)

    @property
    def is_active(self) -> bool:
        return self.status == TenantStatus.ACTIVE.value


@dataclass
class User:
    id: str
    email: str
    first_name: str
    last_name: str
    password_hash: str
    tenant_id: Optional[str] = None
    role: str = Role.CUSTOMER.value
    status: str = UserStatus.ACTIVE.value
    email_verified: bool = False
    verification_token: Optional[str] = None
    reset_token: Optional[str] = None
    reset_token_expiry: Optional[datetime] = None
    last_login_at: Optional[datetime] = None
    last_password_change: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @classmethod
    def new(cls, **kwargs: Any) -> "User":
        return cls(id=str(uuid.uuid4()), **kwargs)

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE.value

    def auth_claims(self) -> Dict[str, Any]:
        """Claims embedded in both access and refresh tokens."""
        return {
            "userId": self.id,
            "tenantId": self.tenant_id,
            "email": self.email,
            "role": self.role,
        }

    def to_public_dict(self) -> Dict[str, Any]:
        """Serialize without the credential or single-use token fields."""
        data = asdict(self)
        for name in _PRIVATE_USER_FIELDS:
            data.pop(name, None)
        return data


@dataclass
class SessionRecord:
    """Value stored in the session registry for one refresh token."""

    user_id: str
    tenant_id: Optional[str]
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "userId": self.user_id,
            "tenantId": self.tenant_id,
            "createdAt": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionRecord":
        created_raw = data.get("createdAt")
        created_at = utcnow()
        if isinstance(created_raw, str):
            try:
                created_at = datetime.fromisoformat(created_raw)
            except ValueError:
                pass
        return cls(
            user_id=str(data.get("userId")),
            tenant_id=data.get("tenantId"),
            created_at=created_at,
        )


@dataclass
class SessionEntry:
    """A session record together with its key material and remaining TTL."""

    refresh_token: str
    record: SessionRecord
    ttl_seconds: Optional[int] = None
