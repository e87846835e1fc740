"""Automation definition schemas."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, model_validator

from automation.models import ActionType, ConditionOperator, LogicConnector, TriggerKind


def _split_trigger(data: Any) -> Any:
    """Accept ``trigger: {"type": ..., "config": {...}}`` as well as flat fields."""
    if isinstance(data, dict) and isinstance(data.get("trigger"), dict):
        data = dict(data)
        trigger = data.pop("trigger")
        data["trigger"] = trigger.get("type")
        if "config" in trigger and "trigger_config" not in data:
            data["trigger_config"] = trigger["config"]
    return data


class ConditionSpec(BaseModel):
    """A single condition in an automation definition."""

    field: str = Field(min_length=1, description="Dot path into the run context")
    operator: ConditionOperator = Field(description="Comparison operator")
    value: Any = Field(default=None, description="Value compared against")
    logic: LogicConnector = Field(default=LogicConnector.AND, description="Connector to the next condition")


class ActionSpec(BaseModel):
    """A single action in an automation definition."""

    type: ActionType = Field(description="Action type")
    config: Dict[str, Any] = Field(default={}, description="Executor configuration")
    order: Optional[int] = Field(default=None, ge=0, description="Position hint; renumbered 0..n-1")


class AutomationCreate(BaseModel):
    """Definition of a new automation."""

    name: str = Field(min_length=1, description="Automation name")
    description: Optional[str] = Field(default=None, description="Automation description")
    trigger: TriggerKind = Field(default=TriggerKind.MANUAL, description="Trigger kind")
    trigger_config: Dict[str, Any] = Field(default={}, description="Trigger configuration")
    conditions: List[ConditionSpec] = Field(default=[], description="Ordered conditions")
    actions: List[ActionSpec] = Field(default=[], description="Ordered actions")
    enabled: bool = Field(default=True, description="Whether the automation may run")

    @model_validator(mode="before")
    @classmethod
    def _flatten_trigger(cls, data: Any) -> Any:
        return _split_trigger(data)


class AutomationUpdate(BaseModel):
    """Partial update; only fields that were set are applied."""

    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    trigger: Optional[TriggerKind] = None
    trigger_config: Optional[Dict[str, Any]] = None
    conditions: Optional[List[ConditionSpec]] = None
    actions: Optional[List[ActionSpec]] = None
    enabled: Optional[bool] = None

    @model_validator(mode="before")
    @classmethod
    def _flatten_trigger(cls, data: Any) -> Any:
        return _split_trigger(data)
