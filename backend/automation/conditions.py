"""Condition evaluation for automations.

Conditions are combined strictly left to right. A satisfied ``OR``
condition ends evaluation with True; a failed ``AND`` condition ends it
with False. If neither short-circuit fires, the last evaluated condition
decides. An empty list is always satisfied.
"""

from typing import Any, Dict, List, Optional

from automation.models import Condition, ConditionOperator, LogicConnector

_MISSING = object()


def resolve_path(data: Dict[str, Any], path: str) -> Any:
    """Resolve a dot path like ``contact.address.city``.

    Returns None if any segment is missing. Integer segments index lists.
    """
    current: Any = data
    for part in path.split("."):
        if isinstance(current, dict):
            current = current.get(part, _MISSING)
        elif isinstance(current, (list, tuple)) and part.lstrip("-").isdigit():
            index = int(part)
            current = current[index] if -len(current) <= index < len(current) else _MISSING
        else:
            current = getattr(current, part, _MISSING) if current is not None else _MISSING
        if current is _MISSING:
            return None
    return current


def _to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _contains(container: Any, needle: Any) -> bool:
    if container is None:
        return False
    if isinstance(container, str):
        return str(needle) in container
    if isinstance(container, dict):
        return needle in container
    if isinstance(container, (list, tuple, set)):
        return needle in container
    return str(needle) in str(container)


def evaluate_condition(condition: Condition, context: Dict[str, Any]) -> bool:
    value = resolve_path(context, condition.field)
    op = condition.operator

    if op == ConditionOperator.EQUALS:
        return value == condition.value
    if op == ConditionOperator.NOT_EQUALS:
        return value != condition.value
    if op == ConditionOperator.CONTAINS:
        return _contains(value, condition.value)
    if op in (ConditionOperator.GREATER_THAN, ConditionOperator.LESS_THAN):
        left, right = _to_number(value), _to_number(condition.value)
        if left is None or right is None:
            return False
        return left > right if op == ConditionOperator.GREATER_THAN else left < right
    if op == ConditionOperator.EXISTS:
        return value is not None
    if op == ConditionOperator.NOT_EXISTS:
        return value is None
    raise ValueError(f"Unknown operator: {op}")


def evaluate_conditions(conditions: List[Condition], context: Dict[str, Any]) -> bool:
    result = True
    for condition in conditions:
        result = evaluate_condition(condition, context)
        if condition.logic == LogicConnector.OR:
            if result:
                return True
        elif not result:
            return False
    return result
