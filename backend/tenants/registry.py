"""
Tenant Registry: tenants, users, API keys and usage quotas.

All state lives in process memory. Every mutation of a primary map and
its secondary indexes (slug → id, email → user id) happens under a single
re-entrant lock, so concurrent callers never observe a half-applied
change and usage increments never lose updates. Events are emitted after
the lock is released.
"""

import re
import threading
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import structlog

from app.config import Settings, get_settings
from core.api_keys import ApiKey, extract_prefix, generate_api_key, hash_api_key, verify_api_key
from core.events import EventEmitter
from core.exceptions import (
    ApiLimitExceededError,
    DuplicateEmailError,
    DuplicateSlugError,
    ExecutionLimitExceededError,
    NotFoundError,
    StorageLimitExceededError,
    TenantInactiveError,
    UserLimitExceededError,
    ValidationError,
)
from tenants.models import (
    QuotaKind,
    Tenant,
    TenantPlan,
    TenantStatus,
    UsageCounter,
    User,
    UserRole,
    UserStatus,
)
from tenants.plans import exceeds, plan_defaults, reaches, usage_percentage

logger = structlog.get_logger(__name__)

SLUG_MAX_LENGTH = 50

TENANT_MUTABLE_FIELDS = {"name", "slug", "status", "plan", "metadata", "limits", "features"}
USER_MUTABLE_FIELDS = {"name", "email", "role", "status", "metadata", "last_login_at"}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def slugify(name: str) -> str:
    """Lower-case, collapse non-alphanumerics to ``-``, trim, cap length."""
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    return slug[:SLUG_MAX_LENGTH]


def _check_slug(slug: str) -> str:
    if not slug or slugify(slug) != slug:
        raise ValidationError(
            f"Invalid slug '{slug}': use lower-case letters, digits and single hyphens",
            details={"field": "slug"},
        )
    return slug


def _coerce_enum(enum_cls, value, field_name: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = [member.value for member in enum_cls]
        raise ValidationError(
            f"Invalid {field_name}: {value!r}",
            details={"field": field_name, "allowed": allowed},
        )


class TenantRegistry:
    """In-memory store of tenants, their users and usage counters."""

    def __init__(
        self,
        events: Optional[EventEmitter] = None,
        settings: Optional[Settings] = None,
        email_scope: Optional[str] = None,
        default_plan: Optional[str] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        settings = settings or get_settings()
        self.events = events or EventEmitter()
        self.email_scope = email_scope or settings.EMAIL_UNIQUENESS_SCOPE
        if self.email_scope not in ("global", "tenant"):
            raise ValidationError(f"Unknown email uniqueness scope: {self.email_scope}")
        self.default_plan = _coerce_enum(TenantPlan, default_plan or settings.DEFAULT_PLAN, "plan")
        self.trial_days = settings.TRIAL_DAYS
        self.default_permissions = list(settings.API_KEY_DEFAULT_PERMISSIONS)
        self._clock = clock or _utcnow

        self._lock = threading.RLock()
        self._tenants: Dict[str, Tenant] = {}
        self._tenants_by_slug: Dict[str, str] = {}
        self._users: Dict[str, User] = {}
        self._users_by_email: Dict[Tuple[str, str], str] = {}
        self._usage: Dict[str, UsageCounter] = {}

    # ─── Internals ────────────────────────────────────────────

    def _emit(self, event: str, payload: Dict[str, Any]) -> None:
        self.events.emit(event, payload)

    def _period_start(self) -> datetime:
        now = self._clock()
        return datetime(now.year, now.month, 1, tzinfo=timezone.utc)

    def _email_key(self, email: str, tenant_id: str) -> Tuple[str, str]:
        return ("*" if self.email_scope == "global" else tenant_id, email)

    @staticmethod
    def _normalize_email(email: str) -> str:
        normalized = (email or "").strip().lower()
        if not normalized or "@" not in normalized:
            raise ValidationError(f"Invalid email: {email!r}", details={"field": "email"})
        return normalized

    def _require_tenant(self, tenant_id: str) -> Tenant:
        tenant = self._tenants.get(tenant_id)
        if tenant is None:
            raise NotFoundError(f"Tenant not found: {tenant_id}", resource="tenant", resource_id=tenant_id)
        return tenant

    def _require_user(self, user_id: str) -> User:
        user = self._users.get(user_id)
        if user is None:
            raise NotFoundError(f"User not found: {user_id}", resource="user", resource_id=user_id)
        return user

    def _usage_for(self, tenant_id: str) -> UsageCounter:
        """Current-period counter for a tenant, rolling it over if needed."""
        period_start = self._period_start()
        counter = self._usage.get(tenant_id)
        if counter is None:
            counter = UsageCounter(tenant_id=tenant_id, period_start=period_start)
            self._usage[tenant_id] = counter
        elif counter.period_start != period_start:
            logger.info("Usage period rolled over", tenant_id=tenant_id, period_start=period_start.isoformat())
            counter.reset(period_start)
        return counter

    def _user_count(self, tenant_id: str) -> int:
        return sum(1 for user in self._users.values() if user.tenant_id == tenant_id)

    # ─── Tenants ──────────────────────────────────────────────

    def create_tenant(
        self,
        name: str,
        slug: Optional[str] = None,
        plan: Optional[Union[TenantPlan, str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
        limits: Optional[Dict[str, int]] = None,
        features: Optional[Dict[str, bool]] = None,
    ) -> Tenant:
        """Create a tenant in ``trial`` status with plan-derived limits.

        An empty slug is generated from the name; an explicit one must
        already be URL-safe.

        Raises:
            DuplicateSlugError: If the slug is already taken
            ValidationError: If the name is blank or the slug is not URL-safe
        """
        if not name or not name.strip():
            raise ValidationError("Tenant name is required", details={"field": "name"})
        tenant_plan = _coerce_enum(TenantPlan, plan or self.default_plan, "plan")
        if not slug:
            slug = f"{slugify(name)}-{uuid.uuid4().hex[:8]}"
        else:
            _check_slug(slug)

        defaults = plan_defaults(tenant_plan)
        now = self._clock()
        tenant = Tenant(
            name=name,
            slug=slug,
            plan=tenant_plan,
            limits={**defaults["limits"], **(limits or {})},
            features={**defaults["features"], **(features or {})},
            metadata=dict(metadata or {}),
            created_at=now,
            updated_at=now,
            trial_ends_at=now + timedelta(days=self.trial_days),
        )

        with self._lock:
            if slug in self._tenants_by_slug:
                raise DuplicateSlugError(slug)
            self._tenants[tenant.id] = tenant
            self._tenants_by_slug[slug] = tenant.id
            self._usage[tenant.id] = UsageCounter(tenant_id=tenant.id, period_start=self._period_start())

        logger.info("Tenant created", tenant_id=tenant.id, slug=slug, plan=tenant_plan.value)
        self._emit("tenant:created", {"tenant": tenant})
        return tenant

    def get_tenant(self, tenant_id: str) -> Optional[Tenant]:
        with self._lock:
            return self._tenants.get(tenant_id)

    def get_tenant_by_slug(self, slug: str) -> Optional[Tenant]:
        with self._lock:
            tenant_id = self._tenants_by_slug.get(slug)
            return self._tenants.get(tenant_id) if tenant_id else None

    def list_tenants(
        self,
        status: Optional[Union[TenantStatus, str]] = None,
        plan: Optional[Union[TenantPlan, str]] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Tenant]:
        with self._lock:
            tenants = list(self._tenants.values())
        if status is not None:
            status = _coerce_enum(TenantStatus, status, "status")
            tenants = [t for t in tenants if t.status == status]
        if plan is not None:
            plan = _coerce_enum(TenantPlan, plan, "plan")
            tenants = [t for t in tenants if t.plan == plan]
        return tenants[offset:offset + limit]

    def update_tenant(self, tenant_id: str, **changes: Any) -> Tenant:
        """Apply changes to a tenant.

        ``metadata``, ``limits`` and ``features`` are merged into the
        existing maps. A plan change resets limits and features to the
        new plan's defaults before explicit overrides are applied.

        Raises:
            NotFoundError: If the tenant does not exist
            DuplicateSlugError: If the new slug is taken by another tenant
            ValidationError: On unknown fields or invalid enum values
        """
        unknown = set(changes) - TENANT_MUTABLE_FIELDS
        if unknown:
            raise ValidationError(
                f"Cannot update tenant fields: {', '.join(sorted(unknown))}",
                details={"fields": sorted(unknown)},
            )
        if "status" in changes:
            changes["status"] = _coerce_enum(TenantStatus, changes["status"], "status")
        if "plan" in changes:
            changes["plan"] = _coerce_enum(TenantPlan, changes["plan"], "plan")
        if "slug" in changes:
            _check_slug(changes["slug"])

        with self._lock:
            tenant = self._require_tenant(tenant_id)
            new_slug = changes.get("slug")
            if new_slug is not None and new_slug != tenant.slug:
                if new_slug in self._tenants_by_slug:
                    raise DuplicateSlugError(new_slug)
                del self._tenants_by_slug[tenant.slug]
                self._tenants_by_slug[new_slug] = tenant_id
                tenant.slug = new_slug

            if "plan" in changes and changes["plan"] != tenant.plan:
                defaults = plan_defaults(changes["plan"])
                tenant.plan = changes["plan"]
                tenant.limits = defaults["limits"]
                tenant.features = defaults["features"]

            if "name" in changes:
                tenant.name = changes["name"]
            if "status" in changes:
                tenant.status = changes["status"]
            for key in ("metadata", "limits", "features"):
                if changes.get(key):
                    getattr(tenant, key).update(changes[key])
            tenant.updated_at = self._clock()

        self._emit("tenant:updated", {"tenant": tenant, "changes": changes})
        return tenant

    def suspend_tenant(self, tenant_id: str, reason: Optional[str] = None) -> Tenant:
        tenant = self.update_tenant(
            tenant_id,
            status=TenantStatus.SUSPENDED,
            metadata={
                "suspension_reason": reason,
                "suspended_at": self._clock().isoformat(),
            },
        )
        logger.warning("Tenant suspended", tenant_id=tenant_id, reason=reason)
        self._emit("tenant:suspended", {"tenant_id": tenant_id, "reason": reason})
        return tenant

    def resume_tenant(self, tenant_id: str) -> Tenant:
        """Reactivate a suspended or trial tenant. Cancelled tenants stay cancelled."""
        with self._lock:
            tenant = self._require_tenant(tenant_id)
            if tenant.status == TenantStatus.CANCELLED:
                raise TenantInactiveError(tenant_id, tenant.status.value)
        tenant = self.update_tenant(
            tenant_id,
            status=TenantStatus.ACTIVE,
            metadata={"resumed_at": self._clock().isoformat()},
        )
        logger.info("Tenant resumed", tenant_id=tenant_id)
        self._emit("tenant:resumed", {"tenant_id": tenant_id})
        return tenant

    def delete_tenant(self, tenant_id: str) -> Tenant:
        """Soft delete: the tenant is kept with status ``cancelled``."""
        tenant = self.update_tenant(tenant_id, status=TenantStatus.CANCELLED)
        logger.info("Tenant deleted", tenant_id=tenant_id)
        self._emit("tenant:deleted", {"tenant_id": tenant_id})
        return tenant

    def ensure_tenant_active(self, tenant_id: str) -> Tenant:
        """Return the tenant if it may run work.

        Raises:
            NotFoundError: If the tenant does not exist
            TenantInactiveError: If the tenant is suspended or cancelled
        """
        with self._lock:
            tenant = self._require_tenant(tenant_id)
        if not tenant.can_run_work:
            raise TenantInactiveError(tenant_id, tenant.status.value)
        return tenant

    # ─── Users ────────────────────────────────────────────────

    def create_user(
        self,
        tenant_id: str,
        email: str,
        name: str,
        role: Optional[Union[UserRole, str]] = None,
    ) -> User:
        """Create a ``pending`` user inside a tenant.

        Nothing is stored when any check fails.

        Raises:
            NotFoundError: If the tenant does not exist
            UserLimitExceededError: If the tenant is at its user limit
            DuplicateEmailError: If the email is already registered
        """
        normalized = self._normalize_email(email)
        user_role = _coerce_enum(UserRole, role or UserRole.DEVELOPER, "role")

        with self._lock:
            tenant = self._require_tenant(tenant_id)
            current = self._user_count(tenant_id)
            limit = tenant.limits.get("users", -1)
            if reaches(current, limit):
                raise UserLimitExceededError(tenant_id, limit, current)

            email_key = self._email_key(normalized, tenant_id)
            if email_key in self._users_by_email:
                raise DuplicateEmailError(normalized, tenant_id)

            now = self._clock()
            user = User(
                tenant_id=tenant_id,
                email=normalized,
                name=name,
                role=user_role,
                created_at=now,
                updated_at=now,
            )
            self._users[user.id] = user
            self._users_by_email[email_key] = user.id

        logger.info("User created", tenant_id=tenant_id, user_id=user.id, role=user_role.value)
        self._emit("user:created", {"user": user})
        return user

    def get_user(self, user_id: str) -> Optional[User]:
        with self._lock:
            return self._users.get(user_id)

    def get_user_by_email(self, email: str, tenant_id: Optional[str] = None) -> Optional[User]:
        """Look up a user by email (case-insensitive).

        With per-tenant uniqueness and no ``tenant_id`` the first match
        across tenants is returned.
        """
        normalized = (email or "").strip().lower()
        with self._lock:
            if self.email_scope == "global" or tenant_id is not None:
                user_id = self._users_by_email.get(self._email_key(normalized, tenant_id or ""))
                user = self._users.get(user_id) if user_id else None
                if user and tenant_id is not None and user.tenant_id != tenant_id:
                    return None
                return user
            for user in self._users.values():
                if user.email == normalized:
                    return user
        return None

    def list_tenant_users(self, tenant_id: str) -> List[User]:
        with self._lock:
            return [user for user in self._users.values() if user.tenant_id == tenant_id]

    def update_user(self, user_id: str, **changes: Any) -> User:
        """Apply changes to a user; email changes are re-indexed.

        Raises:
            NotFoundError: If the user does not exist
            DuplicateEmailError: If the new email is taken
        """
        unknown = set(changes) - USER_MUTABLE_FIELDS
        if unknown:
            raise ValidationError(
                f"Cannot update user fields: {', '.join(sorted(unknown))}",
                details={"fields": sorted(unknown)},
            )
        if "role" in changes:
            changes["role"] = _coerce_enum(UserRole, changes["role"], "role")
        if "status" in changes:
            changes["status"] = _coerce_enum(UserStatus, changes["status"], "status")
        if "email" in changes:
            changes["email"] = self._normalize_email(changes["email"])

        with self._lock:
            user = self._require_user(user_id)
            new_email = changes.get("email")
            if new_email is not None and new_email != user.email:
                new_key = self._email_key(new_email, user.tenant_id)
                if new_key in self._users_by_email:
                    raise DuplicateEmailError(new_email, user.tenant_id)
                del self._users_by_email[self._email_key(user.email, user.tenant_id)]
                self._users_by_email[new_key] = user_id
                user.email = new_email

            for key in ("name", "role", "status", "last_login_at"):
                if key in changes:
                    setattr(user, key, changes[key])
            if changes.get("metadata"):
                user.metadata.update(changes["metadata"])
            user.updated_at = self._clock()

        self._emit("user:updated", {"user": user, "changes": changes})
        return user

    def activate_user(self, user_id: str) -> User:
        return self.update_user(user_id, status=UserStatus.ACTIVE)

    # ─── API keys ─────────────────────────────────────────────

    def create_api_key(
        self,
        user_id: str,
        name: str,
        permissions: Optional[List[str]] = None,
        expires_at: Optional[datetime] = None,
    ) -> Tuple[str, str]:
        """Issue an API key for a user.

        Returns:
            (plaintext_key, prefix) - the plaintext is never stored
        """
        raw_key, prefix = generate_api_key()
        api_key = ApiKey(
            name=name,
            prefix=prefix,
            key_hash=hash_api_key(raw_key),
            permissions=list(permissions) if permissions is not None else list(self.default_permissions),
            expires_at=expires_at,
            created_at=self._clock(),
        )
        with self._lock:
            user = self._require_user(user_id)
            user.api_keys.append(api_key)

        logger.info("API key created", user_id=user_id, key_id=api_key.id, prefix=prefix)
        self._emit("api-key:created", {"user_id": user_id, "key_id": api_key.id})
        return raw_key, prefix

    def validate_api_key(self, key: str) -> Optional[Tuple[User, List[str]]]:
        """Resolve a plaintext key to its (active) user and permissions."""
        prefix = extract_prefix(key or "")
        if prefix is None:
            return None

        now = self._clock()
        with self._lock:
            for user in self._users.values():
                if user.status != UserStatus.ACTIVE:
                    continue
                for api_key in user.api_keys:
                    if api_key.prefix != prefix or api_key.is_expired(now):
                        continue
                    if not verify_api_key(key, api_key.key_hash):
                        continue
                    api_key.last_used_at = now
                    return user, list(api_key.permissions)
        return None

    # ─── Usage & quotas ───────────────────────────────────────

    def _limit_exceeded(self, tenant_id: str, kind: str, limit: int, current: int) -> None:
        logger.warning("Usage limit exceeded", tenant_id=tenant_id, kind=kind, limit=limit, current=current)
        self._emit("usage:limit-exceeded", {"tenant_id": tenant_id, "type": kind, "limit": limit, "current": current})

    def track_api_call(self, tenant_id: str) -> int:
        """Count one API call.

        The increment persists even when it crosses the limit.

        Raises:
            ApiLimitExceededError: If the new count is over the limit
        """
        with self._lock:
            tenant = self._require_tenant(tenant_id)
            counter = self._usage_for(tenant_id)
            counter.api_calls += 1
            current = counter.api_calls
            limit = tenant.limits.get("api_calls", -1)

        if exceeds(current, limit):
            self._limit_exceeded(tenant_id, QuotaKind.API_CALLS.value, limit, current)
            raise ApiLimitExceededError(tenant_id, limit, current)
        self._emit("usage:api-call", {"tenant_id": tenant_id, "count": current})
        return current

    def track_storage(self, tenant_id: str, bytes_used: int) -> int:
        """Add stored bytes to the tenant's usage.

        Raises:
            StorageLimitExceededError: If the new total is over the limit
        """
        if bytes_used < 0:
            raise ValidationError("Storage usage cannot decrease", details={"bytes": bytes_used})
        with self._lock:
            tenant = self._require_tenant(tenant_id)
            counter = self._usage_for(tenant_id)
            counter.storage += bytes_used
            current = counter.storage
            limit = tenant.limits.get("storage", -1)

        if exceeds(current, limit):
            self._limit_exceeded(tenant_id, QuotaKind.STORAGE.value, limit, current)
            raise StorageLimitExceededError(tenant_id, limit, current)
        return current

    def check_quota(self, tenant_id: str, kind: Union[QuotaKind, str], amount: int = 1) -> None:
        """Reject an operation that would push usage over a limit.

        Nothing is incremented; call the matching ``track_*`` method once
        the operation has happened.
        """
        kind = _coerce_enum(QuotaKind, kind, "quota kind")
        errors = {
            QuotaKind.API_CALLS: ApiLimitExceededError,
            QuotaKind.STORAGE: StorageLimitExceededError,
            QuotaKind.USERS: UserLimitExceededError,
            QuotaKind.CONCURRENT_EXECUTIONS: ExecutionLimitExceededError,
        }
        with self._lock:
            tenant = self._require_tenant(tenant_id)
            counter = self._usage_for(tenant_id)
            current = {
                QuotaKind.API_CALLS: counter.api_calls,
                QuotaKind.STORAGE: counter.storage,
                QuotaKind.USERS: self._user_count(tenant_id),
                QuotaKind.CONCURRENT_EXECUTIONS: counter.running_executions,
            }[kind]
            limit = tenant.limits.get(kind.value, -1)

        if exceeds(current + amount, limit):
            raise errors[kind](tenant_id, limit, current)

    def acquire_execution_slot(self, tenant_id: str) -> int:
        """Reserve a concurrent-execution slot for an active tenant.

        Raises:
            TenantInactiveError: If the tenant is suspended or cancelled
            ExecutionLimitExceededError: If all slots are taken
        """
        with self._lock:
            tenant = self.ensure_tenant_active(tenant_id)
            counter = self._usage_for(tenant_id)
            limit = tenant.limits.get("concurrent_executions", -1)
            current = counter.running_executions
            if not reaches(current, limit):
                counter.running_executions += 1
                return counter.running_executions

        self._limit_exceeded(tenant_id, QuotaKind.CONCURRENT_EXECUTIONS.value, limit, current)
        raise ExecutionLimitExceededError(tenant_id, limit, current)

    def release_execution_slot(self, tenant_id: str) -> None:
        with self._lock:
            counter = self._usage.get(tenant_id)
            if counter is not None and counter.running_executions > 0:
                counter.running_executions -= 1

    def track_execution(self, tenant_id: str) -> int:
        with self._lock:
            self._require_tenant(tenant_id)
            counter = self._usage_for(tenant_id)
            counter.executions += 1
            return counter.executions

    def get_usage(self, tenant_id: str) -> Dict[str, Any]:
        with self._lock:
            self._require_tenant(tenant_id)
            return self._usage_for(tenant_id).to_dict(users=self._user_count(tenant_id))

    def get_usage_summary(self, tenant_id: str) -> Dict[str, Dict[str, Any]]:
        """Used / limit / percentage per quota (percentage 0 when unlimited)."""
        with self._lock:
            tenant = self._require_tenant(tenant_id)
            counter = self._usage_for(tenant_id)
            used = {
                "api_calls": counter.api_calls,
                "storage": counter.storage,
                "users": self._user_count(tenant_id),
            }
            limits = dict(tenant.limits)

        return {
            key: {
                "used": value,
                "limit": limits.get(key, -1),
                "percentage": usage_percentage(value, limits.get(key, -1)),
            }
            for key, value in used.items()
        }

    # ─── Housekeeping ─────────────────────────────────────────

    def size(self) -> int:
        with self._lock:
            return len(self._tenants)

    def clear(self) -> None:
        with self._lock:
            self._tenants.clear()
            self._tenants_by_slug.clear()
            self._users.clear()
            self._users_by_email.clear()
            self._usage.clear()
