"""Tenant, user and usage records."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from core.api_keys import ApiKey


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class TenantStatus(str, Enum):
    TRIAL = "trial"
    ACTIVE = "active"
    SUSPENDED = "suspended"
    CANCELLED = "cancelled"


class TenantPlan(str, Enum):
    FREE = "free"
    STARTER = "starter"
    PROFESSIONAL = "professional"
    ENTERPRISE = "enterprise"


class UserRole(str, Enum):
    OWNER = "owner"
    ADMIN = "admin"
    MANAGER = "manager"
    DEVELOPER = "developer"
    VIEWER = "viewer"


class UserStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    PENDING = "pending"
    SUSPENDED = "suspended"


class QuotaKind(str, Enum):
    """Usage dimensions that can be checked against a limit."""

    API_CALLS = "api_calls"
    STORAGE = "storage"
    USERS = "users"
    CONCURRENT_EXECUTIONS = "concurrent_executions"


@dataclass
class Tenant:
    name: str
    slug: str
    plan: TenantPlan
    limits: Dict[str, int]
    features: Dict[str, bool]
    status: TenantStatus = TenantStatus.TRIAL
    metadata: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=_new_id)
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    trial_ends_at: Optional[datetime] = None

    @property
    def can_run_work(self) -> bool:
        return self.status in (TenantStatus.TRIAL, TenantStatus.ACTIVE)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "status": self.status.value,
            "plan": self.plan.value,
            "limits": dict(self.limits),
            "features": dict(self.features),
            "metadata": dict(self.metadata),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "trial_ends_at": self.trial_ends_at.isoformat() if self.trial_ends_at else None,
        }


@dataclass
class User:
    tenant_id: str
    email: str
    name: str
    role: UserRole = UserRole.DEVELOPER
    status: UserStatus = UserStatus.PENDING
    api_keys: List[ApiKey] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=_new_id)
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    last_login_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "email": self.email,
            "name": self.name,
            "role": self.role.value,
            "status": self.status.value,
            "api_keys": [key.to_dict() for key in self.api_keys],
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "last_login_at": self.last_login_at.isoformat() if self.last_login_at else None,
        }


@dataclass
class UsageCounter:
    """Per-tenant usage for the current billing period."""

    tenant_id: str
    period_start: datetime
    api_calls: int = 0
    storage: int = 0
    executions: int = 0
    running_executions: int = 0

    def reset(self, period_start: datetime) -> None:
        self.period_start = period_start
        self.api_calls = 0
        self.storage = 0
        self.executions = 0

    def to_dict(self, users: int = 0) -> dict:
        return {
            "tenant_id": self.tenant_id,
            "period_start": self.period_start.isoformat(),
            "api_calls": self.api_calls,
            "storage": self.storage,
            "executions": self.executions,
            "running_executions": self.running_executions,
            "users": users,
        }
