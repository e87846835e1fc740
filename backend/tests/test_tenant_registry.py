"""Tests for the tenant registry: tenants, users, API keys and usage quotas."""

import threading
from datetime import datetime, timedelta, timezone

import pytest

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
from tenants.models import TenantPlan, TenantStatus, UserRole, UserStatus
from tenants.plans import PLAN_LIMITS, UNLIMITED
from tenants.registry import TenantRegistry, slugify


@pytest.mark.unit
class TestSlugify:

    def test_collapses_non_alphanumerics(self):
        assert slugify("Acme  Corp, Inc.") == "acme-corp-inc"

    def test_trims_and_caps_length(self):
        assert slugify("--Hello--") == "hello"
        assert len(slugify("x" * 80)) == 50


@pytest.mark.unit
class TestTenants:

    def test_create_defaults(self, tenant_registry, recorded_events):
        tenant = tenant_registry.create_tenant("Acme Corp", slug="acme")
        assert tenant.status == TenantStatus.TRIAL
        assert tenant.plan == TenantPlan.STARTER
        assert tenant.limits == PLAN_LIMITS[TenantPlan.STARTER]
        assert tenant.trial_ends_at == tenant.created_at + timedelta(days=14)
        assert ("tenant:created", {"tenant": tenant}) in recorded_events

    def test_generated_slug_has_random_suffix(self, tenant_registry):
        tenant = tenant_registry.create_tenant("Acme Corp")
        assert tenant.slug.startswith("acme-corp-")
        assert len(tenant.slug) == len("acme-corp-") + 8

    def test_limit_overrides_merge_with_plan(self, tenant_registry):
        tenant = tenant_registry.create_tenant("Acme", slug="acme", plan="free", limits={"users": 10})
        assert tenant.limits["users"] == 10
        assert tenant.limits["api_calls"] == PLAN_LIMITS[TenantPlan.FREE]["api_calls"]

    def test_duplicate_slug_rejected(self, tenant_registry, tenant):
        with pytest.raises(DuplicateSlugError) as exc_info:
            tenant_registry.create_tenant("Other", slug="acme")
        assert exc_info.value.code == "DUPLICATE_SLUG"
        assert tenant_registry.size() == 1

    def test_invalid_plan_rejected(self, tenant_registry):
        with pytest.raises(ValidationError):
            tenant_registry.create_tenant("Acme", plan="platinum")

    def test_lookup_by_slug(self, tenant_registry, tenant):
        assert tenant_registry.get_tenant_by_slug("acme") is tenant
        assert tenant_registry.get_tenant_by_slug("missing") is None

    def test_list_filters(self, tenant_registry, tenant):
        other = tenant_registry.create_tenant("Big Co", slug="big", plan="enterprise")
        tenant_registry.suspend_tenant(other.id)
        assert tenant_registry.list_tenants(status="suspended") == [other]
        assert tenant_registry.list_tenants(plan=TenantPlan.STARTER) == [tenant]
        assert len(tenant_registry.list_tenants(limit=1)) == 1
        assert tenant_registry.list_tenants(offset=2) == []

    def test_plan_change_resets_limits(self, tenant_registry, tenant):
        tenant_registry.update_tenant(tenant.id, limits={"users": 99})
        updated = tenant_registry.update_tenant(tenant.id, plan="professional")
        assert updated.limits == PLAN_LIMITS[TenantPlan.PROFESSIONAL]
        assert updated.features["sso_enabled"] is True

    def test_empty_slug_is_generated(self, tenant_registry):
        tenant = tenant_registry.create_tenant("Globex Inc", slug="")
        assert tenant.slug.startswith("globex-inc-")
        assert tenant_registry.get_tenant_by_slug("") is None

    @pytest.mark.parametrize("slug", ["Acme Corp", "acme_corp", "-acme", "acme--corp", "ACME"])
    def test_unsafe_slug_rejected(self, tenant_registry, slug):
        with pytest.raises(ValidationError):
            tenant_registry.create_tenant("Acme", slug=slug)
        assert tenant_registry.list_tenants() == []

    @pytest.mark.parametrize("slug", ["", "Acme 2"])
    def test_unsafe_slug_change_rejected(self, tenant_registry, tenant, slug):
        with pytest.raises(ValidationError):
            tenant_registry.update_tenant(tenant.id, slug=slug)
        assert tenant_registry.get_tenant_by_slug("acme") is tenant

    def test_slug_change_is_reindexed(self, tenant_registry, tenant):
        tenant_registry.update_tenant(tenant.id, slug="acme-2")
        assert tenant_registry.get_tenant_by_slug("acme") is None
        assert tenant_registry.get_tenant_by_slug("acme-2") is tenant

    def test_unknown_update_field_rejected(self, tenant_registry, tenant):
        with pytest.raises(ValidationError):
            tenant_registry.update_tenant(tenant.id, id="other")

    def test_update_missing_tenant(self, tenant_registry):
        with pytest.raises(NotFoundError):
            tenant_registry.update_tenant("nope", name="x")


@pytest.mark.unit
class TestTenantLifecycle:

    def test_suspend_records_reason(self, tenant_registry, tenant, recorded_events):
        tenant_registry.suspend_tenant(tenant.id, reason="unpaid")
        assert tenant.status == TenantStatus.SUSPENDED
        assert tenant.metadata["suspension_reason"] == "unpaid"
        assert "suspended_at" in tenant.metadata
        assert ("tenant:suspended", {"tenant_id": tenant.id, "reason": "unpaid"}) in recorded_events

    def test_resume_activates(self, tenant_registry, tenant):
        tenant_registry.suspend_tenant(tenant.id)
        tenant_registry.resume_tenant(tenant.id)
        assert tenant.status == TenantStatus.ACTIVE
        assert "resumed_at" in tenant.metadata

    def test_delete_is_soft(self, tenant_registry, tenant):
        tenant_registry.delete_tenant(tenant.id)
        assert tenant_registry.get_tenant(tenant.id).status == TenantStatus.CANCELLED

    def test_cancelled_tenant_cannot_resume(self, tenant_registry, tenant):
        tenant_registry.delete_tenant(tenant.id)
        with pytest.raises(TenantInactiveError):
            tenant_registry.resume_tenant(tenant.id)

    def test_ensure_active(self, tenant_registry, tenant):
        assert tenant_registry.ensure_tenant_active(tenant.id) is tenant
        tenant_registry.suspend_tenant(tenant.id)
        with pytest.raises(TenantInactiveError) as exc_info:
            tenant_registry.ensure_tenant_active(tenant.id)
        assert exc_info.value.status == "suspended"


@pytest.mark.unit
class TestUsers:

    def test_create_user_pending(self, tenant_registry, tenant):
        user = tenant_registry.create_user(tenant.id, "Ops@Acme.io", "Ops")
        assert user.email == "ops@acme.io"
        assert user.status == UserStatus.PENDING
        assert user.role == UserRole.DEVELOPER
        assert tenant_registry.get_user_by_email("OPS@acme.io") is user

    def test_unknown_tenant(self, tenant_registry):
        with pytest.raises(NotFoundError):
            tenant_registry.create_user("nope", "a@b.io", "A")

    def test_invalid_email(self, tenant_registry, tenant):
        with pytest.raises(ValidationError):
            tenant_registry.create_user(tenant.id, "not-an-email", "A")

    def test_duplicate_email_global(self, tenant_registry, tenant):
        other = tenant_registry.create_tenant("Other", slug="other")
        tenant_registry.create_user(tenant.id, "a@b.io", "A")
        with pytest.raises(DuplicateEmailError):
            tenant_registry.create_user(other.id, "A@B.io", "A again")

    def test_duplicate_email_per_tenant_scope(self, events, settings):
        registry = TenantRegistry(events=events, settings=settings, email_scope="tenant")
        first = registry.create_tenant("One", slug="one")
        second = registry.create_tenant("Two", slug="two")
        registry.create_user(first.id, "a@b.io", "A")
        user = registry.create_user(second.id, "a@b.io", "A")
        assert registry.get_user_by_email("a@b.io", tenant_id=second.id) is user
        with pytest.raises(DuplicateEmailError):
            registry.create_user(first.id, "a@b.io", "A")

    def test_user_limit_leaves_no_trace(self, tenant_registry, tenant):
        for i in range(5):
            tenant_registry.create_user(tenant.id, f"user{i}@acme.io", f"User {i}")
        with pytest.raises(UserLimitExceededError) as exc_info:
            tenant_registry.create_user(tenant.id, "extra@acme.io", "Extra")
        assert exc_info.value.limit == 5
        assert len(tenant_registry.list_tenant_users(tenant.id)) == 5
        assert tenant_registry.get_user_by_email("extra@acme.io") is None

    def test_unlimited_users(self, tenant_registry):
        tenant = tenant_registry.create_tenant("Big", slug="big", plan="enterprise")
        assert tenant.limits["users"] == UNLIMITED
        for i in range(30):
            tenant_registry.create_user(tenant.id, f"u{i}@big.io", "U")
        assert len(tenant_registry.list_tenant_users(tenant.id)) == 30

    def test_email_change_reindexed(self, tenant_registry, tenant):
        user = tenant_registry.create_user(tenant.id, "old@acme.io", "A")
        tenant_registry.update_user(user.id, email="new@acme.io", role="admin")
        assert tenant_registry.get_user_by_email("old@acme.io") is None
        assert tenant_registry.get_user_by_email("new@acme.io") is user
        assert user.role == UserRole.ADMIN

    def test_activate(self, tenant_registry, tenant):
        user = tenant_registry.create_user(tenant.id, "a@acme.io", "A")
        tenant_registry.activate_user(user.id)
        assert user.status == UserStatus.ACTIVE


@pytest.mark.unit
class TestApiKeys:

    @pytest.fixture
    def active_user(self, tenant_registry, tenant):
        user = tenant_registry.create_user(tenant.id, "dev@acme.io", "Dev")
        return tenant_registry.activate_user(user.id)

    def test_validate_round_trip(self, tenant_registry, active_user, clock):
        raw, prefix = tenant_registry.create_api_key(active_user.id, "ci")
        assert raw.startswith(prefix + "_")

        result = tenant_registry.validate_api_key(raw)
        assert result is not None
        user, permissions = result
        assert user is active_user
        assert permissions == ["read"]
        assert active_user.api_keys[0].last_used_at == clock.now

    def test_plaintext_not_stored(self, tenant_registry, active_user):
        raw, _ = tenant_registry.create_api_key(active_user.id, "ci")
        assert all(raw not in str(key.to_dict()) for key in active_user.api_keys)

    def test_wrong_key_rejected(self, tenant_registry, active_user):
        raw, prefix = tenant_registry.create_api_key(active_user.id, "ci")
        assert tenant_registry.validate_api_key(prefix + "_forged") is None
        assert tenant_registry.validate_api_key("garbage") is None

    def test_pending_user_rejected(self, tenant_registry, tenant):
        user = tenant_registry.create_user(tenant.id, "p@acme.io", "P")
        raw, _ = tenant_registry.create_api_key(user.id, "ci")
        assert tenant_registry.validate_api_key(raw) is None

    def test_expired_key_rejected(self, tenant_registry, active_user, clock):
        raw, _ = tenant_registry.create_api_key(
            active_user.id, "ci", permissions=["*"], expires_at=clock.now + timedelta(hours=1)
        )
        assert tenant_registry.validate_api_key(raw)[1] == ["*"]
        clock.now += timedelta(hours=2)
        assert tenant_registry.validate_api_key(raw) is None


@pytest.mark.unit
class TestUsage:

    def test_api_calls_counted(self, tenant_registry, tenant, recorded_events):
        assert tenant_registry.track_api_call(tenant.id) == 1
        assert tenant_registry.track_api_call(tenant.id) == 2
        assert tenant_registry.get_usage(tenant.id)["api_calls"] == 2
        assert ("usage:api-call", {"tenant_id": tenant.id, "count": 2}) in recorded_events

    def test_api_limit_exceeded_persists_increment(self, tenant_registry, recorded_events):
        tenant = tenant_registry.create_tenant("Tiny", slug="tiny", limits={"api_calls": 2})
        tenant_registry.track_api_call(tenant.id)
        tenant_registry.track_api_call(tenant.id)
        with pytest.raises(ApiLimitExceededError) as exc_info:
            tenant_registry.track_api_call(tenant.id)
        assert exc_info.value.current == 3
        assert tenant_registry.get_usage(tenant.id)["api_calls"] == 3
        limit_events = [p for e, p in recorded_events if e == "usage:limit-exceeded"]
        assert limit_events == [{"tenant_id": tenant.id, "type": "api_calls", "limit": 2, "current": 3}]

    def test_concurrent_api_calls_all_counted(self, tenant_registry):
        tenant = tenant_registry.create_tenant("Big", slug="big", plan="enterprise")
        seen = []
        seen_lock = threading.Lock()

        def worker():
            counts = [tenant_registry.track_api_call(tenant.id) for _ in range(250)]
            with seen_lock:
                seen.extend(counts)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert tenant_registry.get_usage(tenant.id)["api_calls"] == 2000
        assert sorted(seen) == list(range(1, 2001))

    def test_storage(self, tenant_registry):
        tenant = tenant_registry.create_tenant("Tiny", slug="tiny", limits={"storage": 100})
        assert tenant_registry.track_storage(tenant.id, 60) == 60
        with pytest.raises(StorageLimitExceededError):
            tenant_registry.track_storage(tenant.id, 50)
        with pytest.raises(ValidationError):
            tenant_registry.track_storage(tenant.id, -1)

    def test_check_quota_does_not_increment(self, tenant_registry):
        tenant = tenant_registry.create_tenant("Tiny", slug="tiny", limits={"api_calls": 1})
        tenant_registry.check_quota(tenant.id, "api_calls")
        tenant_registry.track_api_call(tenant.id)
        with pytest.raises(ApiLimitExceededError):
            tenant_registry.check_quota(tenant.id, "api_calls")
        assert tenant_registry.get_usage(tenant.id)["api_calls"] == 1

    def test_execution_slots(self, tenant_registry):
        tenant = tenant_registry.create_tenant("Tiny", slug="tiny", limits={"concurrent_executions": 1})
        assert tenant_registry.acquire_execution_slot(tenant.id) == 1
        with pytest.raises(ExecutionLimitExceededError):
            tenant_registry.acquire_execution_slot(tenant.id)
        tenant_registry.release_execution_slot(tenant.id)
        assert tenant_registry.acquire_execution_slot(tenant.id) == 1

    def test_suspended_tenant_gets_no_slot(self, tenant_registry, tenant):
        tenant_registry.suspend_tenant(tenant.id)
        with pytest.raises(TenantInactiveError):
            tenant_registry.acquire_execution_slot(tenant.id)

    def test_summary(self, tenant_registry, tenant):
        tenant_registry.create_user(tenant.id, "a@acme.io", "A")
        for _ in range(100):
            tenant_registry.track_api_call(tenant.id)
        summary = tenant_registry.get_usage_summary(tenant.id)
        assert summary["api_calls"] == {"used": 100, "limit": 10_000, "percentage": 1.0}
        assert summary["users"] == {"used": 1, "limit": 5, "percentage": 20.0}

    def test_summary_unlimited_is_zero_percent(self, tenant_registry):
        tenant = tenant_registry.create_tenant("Big", slug="big", plan="enterprise")
        tenant_registry.track_api_call(tenant.id)
        assert tenant_registry.get_usage_summary(tenant.id)["api_calls"]["percentage"] == 0

    def test_period_rollover(self, tenant_registry, tenant, clock):
        tenant_registry.track_api_call(tenant.id)
        tenant_registry.track_execution(tenant.id)
        clock.now = datetime(2024, 4, 1, 0, 5, tzinfo=timezone.utc)
        usage = tenant_registry.get_usage(tenant.id)
        assert usage["api_calls"] == 0
        assert usage["executions"] == 0
        assert usage["period_start"] == "2024-04-01T00:00:00+00:00"
