"""Subscription plans and their default limits and features.

A limit of ``UNLIMITED`` (-1) disables the corresponding quota check.
"""

from typing import Any, Dict

from tenants.models import TenantPlan

UNLIMITED = -1

MB = 1024 * 1024
GB = 1024 * MB


PLAN_LIMITS: Dict[TenantPlan, Dict[str, int]] = {
    TenantPlan.FREE: {
        "users": 2,
        "api_calls": 1_000,
        "storage": 100 * MB,
        "agents": 3,
        "tools": 5,
        "integrations": 1,
        "knowledge_base_size": 10 * MB,
        "concurrent_executions": 3,
        "retention_days": 7,
    },
    TenantPlan.STARTER: {
        "users": 5,
        "api_calls": 10_000,
        "storage": 1 * GB,
        "agents": 10,
        "tools": 20,
        "integrations": 2,
        "knowledge_base_size": 100 * MB,
        "concurrent_executions": 10,
        "retention_days": 30,
    },
    TenantPlan.PROFESSIONAL: {
        "users": 25,
        "api_calls": 100_000,
        "storage": 10 * GB,
        "agents": 50,
        "tools": 100,
        "integrations": 5,
        "knowledge_base_size": 1 * GB,
        "concurrent_executions": 50,
        "retention_days": 90,
    },
    TenantPlan.ENTERPRISE: {
        "users": UNLIMITED,
        "api_calls": UNLIMITED,
        "storage": UNLIMITED,
        "agents": UNLIMITED,
        "tools": UNLIMITED,
        "integrations": UNLIMITED,
        "knowledge_base_size": UNLIMITED,
        "concurrent_executions": UNLIMITED,
        "retention_days": 365,
    },
}


_BASE_FEATURES = {
    "custom_agents": True,
    "custom_tools": True,
    "custom_knowledge_base": True,
    "advanced_analytics": False,
    "audit_logs": False,
    "sso_enabled": False,
    "webhook_enabled": False,
    "api_access": True,
    "cli_access": True,
    "white_label": False,
    "priority_support": False,
}

PLAN_FEATURES: Dict[TenantPlan, Dict[str, bool]] = {
    TenantPlan.FREE: dict(_BASE_FEATURES),
    TenantPlan.STARTER: {**_BASE_FEATURES, "audit_logs": True, "webhook_enabled": True},
    TenantPlan.PROFESSIONAL: {
        **_BASE_FEATURES,
        "advanced_analytics": True,
        "audit_logs": True,
        "sso_enabled": True,
        "webhook_enabled": True,
        "priority_support": True,
    },
    TenantPlan.ENTERPRISE: {key: True for key in _BASE_FEATURES},
}


def is_unlimited(limit: int) -> bool:
    return limit == UNLIMITED or limit < 0


def exceeds(value: int, limit: int) -> bool:
    """True when ``value`` is strictly over a (finite) limit."""
    return not is_unlimited(limit) and value > limit


def reaches(value: int, limit: int) -> bool:
    """True when ``value`` has reached a (finite) limit."""
    return not is_unlimited(limit) and value >= limit


def usage_percentage(used: int, limit: int) -> float:
    if is_unlimited(limit) or limit == 0:
        return 0.0
    return round(used / limit * 100, 2)


def plan_defaults(plan: TenantPlan) -> Dict[str, Any]:
    """Fresh copies of a plan's limits and features."""
    return {
        "limits": dict(PLAN_LIMITS[plan]),
        "features": dict(PLAN_FEATURES[plan]),
    }
