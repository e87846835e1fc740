"""Automation definitions and execution records."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class TriggerKind(str, Enum):
    """What starts an automation."""

    SCHEDULE = "SCHEDULE"
    EVENT = "EVENT"
    WEBHOOK = "WEBHOOK"
    MANUAL = "MANUAL"
    CONDITION_MET = "CONDITION_MET"
    DATA_CHANGE = "DATA_CHANGE"


class ConditionOperator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    EXISTS = "exists"
    NOT_EXISTS = "not_exists"


class LogicConnector(str, Enum):
    AND = "AND"
    OR = "OR"


class ActionType(str, Enum):
    SEND_MESSAGE = "SEND_MESSAGE"
    SEND_EMAIL = "SEND_EMAIL"
    CREATE_TASK = "CREATE_TASK"
    UPDATE_FIELD = "UPDATE_FIELD"
    CALL_WEBHOOK = "CALL_WEBHOOK"
    RUN_AGENT = "RUN_AGENT"
    SEND_NOTIFICATION = "SEND_NOTIFICATION"
    SCHEDULE_FOLLOWUP = "SCHEDULE_FOLLOWUP"
    UPDATE_CONTACT = "UPDATE_CONTACT"
    CREATE_DEAL = "CREATE_DEAL"
    CUSTOM = "CUSTOM"


class ExecutionStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


@dataclass
class Condition:
    field: str
    operator: ConditionOperator
    value: Any = None
    logic: LogicConnector = LogicConnector.AND

    def to_dict(self) -> dict:
        return {
            "field": self.field,
            "operator": self.operator.value,
            "value": self.value,
            "logic": self.logic.value,
        }


@dataclass
class Action:
    type: ActionType
    config: Dict[str, Any] = field(default_factory=dict)
    order: int = 0
    id: str = field(default_factory=_new_id)

    @property
    def executor_key(self) -> str:
        """Explicit ``config.executor`` if given, else the action type."""
        return self.config.get("executor") or self.type.value

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type.value,
            "config": dict(self.config),
            "order": self.order,
        }


@dataclass
class Automation:
    tenant_id: str
    name: str
    trigger: TriggerKind
    trigger_config: Dict[str, Any] = field(default_factory=dict)
    conditions: List[Condition] = field(default_factory=list)
    actions: List[Action] = field(default_factory=list)
    description: Optional[str] = None
    enabled: bool = True
    execution_count: int = 0
    last_executed_at: Optional[datetime] = None
    id: str = field(default_factory=_new_id)
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    @property
    def ordered_actions(self) -> List[Action]:
        return sorted(self.actions, key=lambda a: a.order)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "description": self.description,
            "trigger": self.trigger.value,
            "trigger_config": dict(self.trigger_config),
            "conditions": [c.to_dict() for c in self.conditions],
            "actions": [a.to_dict() for a in self.ordered_actions],
            "enabled": self.enabled,
            "execution_count": self.execution_count,
            "last_executed_at": self.last_executed_at.isoformat() if self.last_executed_at else None,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass
class ExecutionRecord:
    """One run of an automation. Appended to history, never removed."""

    automation_id: str
    tenant_id: str
    input: Dict[str, Any] = field(default_factory=dict)
    user_id: Optional[str] = None
    trigger: str = "manual"
    status: ExecutionStatus = ExecutionStatus.PENDING
    output: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    error_details: Optional[Dict[str, Any]] = None
    duration_ms: float = 0
    id: str = field(default_factory=_new_id)
    created_at: datetime = field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "automation_id": self.automation_id,
            "tenant_id": self.tenant_id,
            "user_id": self.user_id,
            "trigger": self.trigger,
            "status": self.status.value,
            "input": self.input,
            "output": self.output,
            "error": self.error,
            "error_details": self.error_details,
            "duration_ms": round(self.duration_ms, 2),
            "created_at": self.created_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }
