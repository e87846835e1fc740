"""
Automation Engine: tenant-scoped trigger → conditions → actions runner.

Execution flow:
1. Look up the automation (NotFound) and reject disabled ones (Disabled)
2. Reserve a tenant execution slot when a Tenant Registry is attached
3. Append a RUNNING execution record
4. Evaluate conditions; a miss ends the run as CANCELLED
5. Run actions in order, feeding each executor the accumulated outputs
6. Mark SUCCESS (or FAILED on the first executor error) and release the slot

Action failures are data: they end up on the record, ``run_automation``
does not raise them.
"""

import asyncio
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Set, Tuple, Union

import structlog
from pydantic import ValidationError as PydanticValidationError

from app.config import Settings, get_settings
from automation.conditions import evaluate_conditions
from automation.executors import BUILTIN_EXECUTORS, BaseActionExecutor
from automation.models import (
    Action,
    ActionType,
    Automation,
    Condition,
    ExecutionRecord,
    ExecutionStatus,
    TriggerKind,
)
from automation.scheduler import AutomationScheduler
from automation.schemas import ActionSpec, AutomationCreate, AutomationUpdate, ConditionSpec
from core.events import EventEmitter
from core.exceptions import (
    AutomationDisabledError,
    ExecutionFailure,
    NotFoundError,
    OrchestrationError,
    ValidationError,
)
from core.logging_config import run_log_context
from registry.component_registry import ComponentRegistry
from tenants.registry import TenantRegistry

logger = structlog.get_logger(__name__)

RECENT_FAILURE_WINDOW = timedelta(hours=24)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _build_actions(specs: List[ActionSpec]) -> List[Action]:
    """Fresh ids and order 0..n-1, keeping any explicit order hints stable."""
    indexed = sorted(
        enumerate(specs),
        key=lambda pair: (pair[1].order if pair[1].order is not None else pair[0], pair[0]),
    )
    return [
        Action(type=spec.type, config=dict(spec.config), order=position)
        for position, (_, spec) in enumerate(indexed)
    ]


def _build_conditions(specs: List[ConditionSpec]) -> List[Condition]:
    return [
        Condition(field=spec.field, operator=spec.operator, value=spec.value, logic=spec.logic)
        for spec in specs
    ]


def _parse(model, data: Any):
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(
            f"Invalid automation definition: {e.error_count()} error(s)",
            details={"errors": e.errors(include_url=False)},
        )


class AutomationEngine:
    """Stores automations, arms their schedules and executes them."""

    def __init__(
        self,
        tenant_registry: Optional[TenantRegistry] = None,
        events: Optional[EventEmitter] = None,
        executors: Optional[ComponentRegistry] = None,
        settings: Optional[Settings] = None,
        serialize_runs: Optional[bool] = None,
        schedule_intervals: Optional[Dict[str, float]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        settings = settings or get_settings()
        self.tenant_registry = tenant_registry
        self.events = events or EventEmitter()
        self.executors: ComponentRegistry = executors if executors is not None else ComponentRegistry("executor")
        self.history_limit = settings.EXECUTION_HISTORY_LIMIT
        self.serialize_runs = settings.SERIALIZE_AUTOMATION_RUNS if serialize_runs is None else serialize_runs
        self.scheduler = AutomationScheduler(self._run_scheduled, schedule_intervals)
        self._clock = clock or _utcnow

        self._lock = threading.RLock()
        self._automations: Dict[str, Automation] = {}
        self._by_tenant: Dict[str, Set[str]] = {}
        self._by_trigger: Dict[Tuple[str, TriggerKind], Set[str]] = {}
        self._history: Dict[str, List[ExecutionRecord]] = {}
        self._run_locks: Dict[str, asyncio.Lock] = {}

        self._register_builtin_executors()

    def _register_builtin_executors(self) -> None:
        for key, executor_class in BUILTIN_EXECUTORS.items():
            if not self.executors.has(key):
                self.executors.register(key, executor_class())

    def register_executor(self, key: Union[ActionType, str], executor: BaseActionExecutor) -> None:
        """Register (or replace) the executor serving an action type or custom key."""
        key = key.value if isinstance(key, ActionType) else key
        self.executors.register(key, executor)
        logger.info("Executor registered", executor_key=key, executor=type(executor).__name__)

    # ─── Indexes ──────────────────────────────────────────────

    def _index(self, automation: Automation) -> None:
        self._automations[automation.id] = automation
        self._by_tenant.setdefault(automation.tenant_id, set()).add(automation.id)
        self._by_trigger.setdefault((automation.tenant_id, automation.trigger), set()).add(automation.id)

    def _unindex(self, automation: Automation) -> None:
        self._automations.pop(automation.id, None)
        self._by_tenant.get(automation.tenant_id, set()).discard(automation.id)
        self._by_trigger.get((automation.tenant_id, automation.trigger), set()).discard(automation.id)

    def _require(self, automation_id: str) -> Automation:
        with self._lock:
            automation = self._automations.get(automation_id)
        if automation is None:
            raise NotFoundError(
                f"Automation not found: {automation_id}",
                resource="automation",
                resource_id=automation_id,
            )
        return automation

    def _sync_schedule(self, automation: Automation) -> None:
        """Tear down any timer, then re-arm if the automation should be scheduled."""
        self.scheduler.disarm(automation.id)
        if automation.enabled and automation.trigger == TriggerKind.SCHEDULE:
            self.scheduler.arm(automation.id, automation.trigger_config)

    # ─── CRUD ─────────────────────────────────────────────────

    async def create_automation(
        self,
        tenant_id: str,
        definition: Union[AutomationCreate, Dict[str, Any]],
    ) -> Automation:
        """Create an automation and arm its schedule when applicable.

        Raises:
            NotFoundError: If a Tenant Registry is attached and the tenant is unknown
            ValidationError: If the definition is malformed
            InvalidScheduleError: If a SCHEDULE trigger has an unsupported expression
        """
        spec = _parse(AutomationCreate, definition)
        if self.tenant_registry is not None and self.tenant_registry.get_tenant(tenant_id) is None:
            raise NotFoundError(f"Tenant not found: {tenant_id}", resource="tenant", resource_id=tenant_id)
        if spec.trigger == TriggerKind.SCHEDULE:
            self.scheduler.validate(spec.trigger_config)

        now = self._clock()
        automation = Automation(
            tenant_id=tenant_id,
            name=spec.name,
            description=spec.description,
            trigger=spec.trigger,
            trigger_config=dict(spec.trigger_config),
            conditions=_build_conditions(spec.conditions),
            actions=_build_actions(spec.actions),
            enabled=spec.enabled,
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            self._index(automation)
            self._history[automation.id] = []
        self._sync_schedule(automation)

        logger.info(
            "Automation created",
            automation_id=automation.id,
            tenant_id=tenant_id,
            trigger=automation.trigger.value,
            actions=len(automation.actions),
        )
        self.events.emit("automation:created", {"automation": automation})
        return automation

    async def update_automation(
        self,
        automation_id: str,
        changes: Union[AutomationUpdate, Dict[str, Any]],
    ) -> Automation:
        """Apply a partial update.

        A new action list replaces the old one wholesale (fresh ids, order
        0..n-1). The schedule is always torn down and re-armed.
        """
        spec = _parse(AutomationUpdate, changes)
        applied = spec.model_dump(exclude_unset=True)
        automation = self._require(automation_id)

        trigger = spec.trigger if spec.trigger is not None else automation.trigger
        trigger_config = spec.trigger_config if spec.trigger_config is not None else automation.trigger_config
        if trigger == TriggerKind.SCHEDULE:
            self.scheduler.validate(trigger_config)

        with self._lock:
            self._unindex(automation)
            automation.trigger = trigger
            automation.trigger_config = dict(trigger_config)
            if spec.name is not None:
                automation.name = spec.name
            if "description" in applied:
                automation.description = spec.description
            if spec.conditions is not None:
                automation.conditions = _build_conditions(spec.conditions)
            if spec.actions is not None:
                automation.actions = _build_actions(spec.actions)
            if spec.enabled is not None:
                automation.enabled = spec.enabled
            automation.updated_at = self._clock()
            self._index(automation)
        self._sync_schedule(automation)

        logger.info("Automation updated", automation_id=automation_id, fields=sorted(applied))
        self.events.emit("automation:updated", {"automation": automation, "changes": applied})
        return automation

    async def toggle_automation(self, automation_id: str, enabled: Optional[bool] = None) -> Automation:
        """Flip (or set) ``enabled``; disabling disarms, enabling re-arms."""
        automation = self._require(automation_id)
        target = (not automation.enabled) if enabled is None else enabled
        return await self.update_automation(automation_id, {"enabled": target})

    async def delete_automation(self, automation_id: str) -> None:
        """Remove an automation, its timer and its execution history."""
        automation = self._require(automation_id)
        self.scheduler.disarm(automation_id)
        with self._lock:
            self._unindex(automation)
            self._history.pop(automation_id, None)
            self._run_locks.pop(automation_id, None)

        logger.info("Automation deleted", automation_id=automation_id)
        self.events.emit("automation:deleted", {"automation_id": automation_id})

    # ─── Queries ──────────────────────────────────────────────

    def get_automation(self, automation_id: str) -> Optional[Automation]:
        with self._lock:
            return self._automations.get(automation_id)

    def find_by_tenant(self, tenant_id: str) -> List[Automation]:
        """All automations of a tenant, newest first."""
        with self._lock:
            automations = [self._automations[i] for i in self._by_tenant.get(tenant_id, set())]
        return sorted(automations, key=lambda a: a.created_at, reverse=True)

    def find_by_trigger(self, tenant_id: str, kind: Union[TriggerKind, str]) -> List[Automation]:
        """Enabled automations of a tenant with the given trigger kind."""
        kind = TriggerKind(kind)
        with self._lock:
            automations = [self._automations[i] for i in self._by_trigger.get((tenant_id, kind), set())]
        return sorted((a for a in automations if a.enabled), key=lambda a: a.created_at)

    def get_execution_history(self, automation_id: str, limit: Optional[int] = None) -> List[ExecutionRecord]:
        """Most recent records first."""
        self._require(automation_id)
        limit = self.history_limit if limit is None else limit
        with self._lock:
            return list(self._history.get(automation_id, [])[:limit])

    def get_statistics(self, tenant_id: str) -> Dict[str, int]:
        automations = self.find_by_tenant(tenant_id)
        since = self._clock() - RECENT_FAILURE_WINDOW
        with self._lock:
            recent_failures = sum(
                1
                for automation in automations
                for record in self._history.get(automation.id, [])
                if record.status == ExecutionStatus.FAILED and record.created_at > since
            )
        return {
            "total": len(automations),
            "enabled": sum(1 for a in automations if a.enabled),
            "total_executions": sum(a.execution_count for a in automations),
            "recent_failures": recent_failures,
        }

    # ─── Execution ────────────────────────────────────────────

    async def run_automation(
        self,
        automation_id: str,
        context: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None,
        trigger: str = "manual",
    ) -> ExecutionRecord:
        """Run an automation to completion and return its execution record.

        Raises:
            NotFoundError: If the automation does not exist
            AutomationDisabledError: If the automation is disabled
            TenantInactiveError: If the owning tenant is suspended or cancelled
            ExecutionLimitExceededError: If the tenant has no free execution slot
        """
        automation = self._require(automation_id)
        if not automation.enabled:
            raise AutomationDisabledError(automation_id)

        if self.tenant_registry is not None:
            self.tenant_registry.acquire_execution_slot(automation.tenant_id)
        try:
            with run_log_context(tenant_id=automation.tenant_id, automation_id=automation_id, user_id=user_id):
                if self.serialize_runs:
                    with self._lock:
                        run_lock = self._run_locks.setdefault(automation_id, asyncio.Lock())
                    async with run_lock:
                        return await self._execute(automation, dict(context or {}), user_id, trigger)
                return await self._execute(automation, dict(context or {}), user_id, trigger)
        finally:
            if self.tenant_registry is not None:
                self.tenant_registry.release_execution_slot(automation.tenant_id)

    async def _execute(
        self,
        automation: Automation,
        context: Dict[str, Any],
        user_id: Optional[str],
        trigger: str,
    ) -> ExecutionRecord:
        record = ExecutionRecord(
            automation_id=automation.id,
            tenant_id=automation.tenant_id,
            input=context,
            user_id=user_id,
            trigger=trigger,
            status=ExecutionStatus.RUNNING,
            created_at=self._clock(),
        )
        with self._lock:
            self._history.setdefault(automation.id, []).insert(0, record)

        start = time.monotonic()
        results: Dict[str, Any] = {}
        log = logger.bind(execution_id=record.id, trigger=trigger)
        log.info("Automation run started")

        try:
            if automation.conditions and not evaluate_conditions(automation.conditions, context):
                self._finish(record, ExecutionStatus.CANCELLED, start)
                log.info("Automation skipped, conditions not met")
                self.events.emit("automation:skipped", {"automation": automation, "record": record})
                return record

            for action in automation.ordered_actions:
                key = action.executor_key
                if not self.executors.has(key):
                    log.warning("No executor for action, skipping", action_id=action.id, executor_key=key)
                    continue
                try:
                    output = await self.executors.invoke(key, action.config, {**context, **results})
                except Exception as e:
                    raise ExecutionFailure(str(e), action_id=action.id, action_type=action.type.value) from e
                results[action.id] = output

        except asyncio.CancelledError:
            record.output = results
            self._finish(record, ExecutionStatus.CANCELLED, start)
            log.warning("Automation run cancelled")
            raise
        except Exception as e:
            record.output = results
            record.error = str(e)
            if isinstance(e, OrchestrationError):
                record.error_details = e.to_dict()
            self._finish(record, ExecutionStatus.FAILED, start)
            log.error("Automation run failed", error=str(e), duration_ms=round(record.duration_ms, 2))
            self.events.emit("automation:failed", {"automation": automation, "record": record, "error": str(e)})
            return record

        record.output = results
        self._finish(record, ExecutionStatus.SUCCESS, start)
        with self._lock:
            automation.execution_count += 1
            automation.last_executed_at = record.completed_at
        if self.tenant_registry is not None:
            self.tenant_registry.track_execution(automation.tenant_id)

        log.info("Automation run succeeded", actions=len(results), duration_ms=round(record.duration_ms, 2))
        self.events.emit("automation:executed", {"automation": automation, "record": record})
        return record

    def _finish(self, record: ExecutionRecord, status: ExecutionStatus, start: float) -> None:
        record.status = status
        record.duration_ms = (time.monotonic() - start) * 1000
        record.completed_at = self._clock()

    async def _run_scheduled(self, automation_id: str) -> ExecutionRecord:
        return await self.run_automation(automation_id, {}, trigger="schedule")

    async def dispatch_event(
        self,
        tenant_id: str,
        kind: Union[TriggerKind, str],
        context: Optional[Dict[str, Any]] = None,
        event_type: Optional[str] = None,
    ) -> List[ExecutionRecord]:
        """Fan an inbound event out to every matching enabled automation.

        Automations whose trigger config names an ``event_type`` only run
        when it equals the dispatched one (``event_type`` argument, else
        ``context["event_type"]``). Automations that cannot start are
        logged and skipped.
        """
        context = context or {}
        event_type = event_type or context.get("event_type")
        kind = TriggerKind(kind)
        records: List[ExecutionRecord] = []

        for automation in self.find_by_trigger(tenant_id, kind):
            wanted = automation.trigger_config.get("event_type")
            if wanted and wanted != event_type:
                continue
            try:
                records.append(await self.run_automation(automation.id, context, trigger=kind.value.lower()))
            except OrchestrationError as e:
                logger.warning(
                    "Automation not started for event",
                    automation_id=automation.id,
                    trigger=kind.value,
                    error_code=e.code,
                    error=e.message,
                )
        return records

    # ─── Lifecycle ────────────────────────────────────────────

    async def shutdown(self) -> None:
        """Cancel every schedule timer."""
        await self.scheduler.shutdown()

    def clear(self) -> None:
        for automation_id in list(self._automations):
            self.scheduler.disarm(automation_id)
        with self._lock:
            self._automations.clear()
            self._by_tenant.clear()
            self._by_trigger.clear()
            self._history.clear()
            self._run_locks.clear()
