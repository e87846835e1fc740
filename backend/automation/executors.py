"""
Action executors.

An executor performs one action type. The engine calls
``execute(config, context)`` where ``context`` is the run input merged
with the outputs of earlier actions (keyed by action id). Raising
signals failure and stops the run.

The built-in executors only log and return a synthetic identifier so the
engine works without any external system. Real integrations replace them
by registering another executor under the same key.
"""

import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Type

import structlog

from automation.models import ActionType
from core.exceptions import NotFoundError, ValidationError
from registry.component_registry import ComponentRegistry

logger = structlog.get_logger(__name__)


class BaseActionExecutor(ABC):
    """Base class for action executors."""

    action_type: str = "base"
    display_name: str = "Base Executor"

    @abstractmethod
    async def execute(self, config: Dict[str, Any], context: Dict[str, Any]) -> Dict[str, Any]:
        """
        Perform the action.

        Args:
            config: The action's configuration
            context: Run input merged with prior action outputs

        Returns:
            Output map stored under the action id
        """
        pass


class _LoggingExecutor(BaseActionExecutor):
    """Stand-in that logs the action and returns a fresh id under ``id_field``."""

    id_field: Optional[str] = None
    extra: Dict[str, Any] = {}

    async def execute(self, config: Dict[str, Any], context: Dict[str, Any]) -> Dict[str, Any]:
        logger.info("Automation action", action_type=self.action_type, config=config)
        result: Dict[str, Any] = {"success": True, **self.extra}
        if self.id_field:
            result[self.id_field] = str(uuid.uuid4())
        return result


class SendMessageExecutor(_LoggingExecutor):
    action_type = ActionType.SEND_MESSAGE.value
    display_name = "Send Message"
    id_field = "message_id"


class SendEmailExecutor(_LoggingExecutor):
    action_type = ActionType.SEND_EMAIL.value
    display_name = "Send Email"
    id_field = "email_id"


class CreateTaskExecutor(_LoggingExecutor):
    action_type = ActionType.CREATE_TASK.value
    display_name = "Create Task"
    id_field = "task_id"


class CallWebhookExecutor(_LoggingExecutor):
    action_type = ActionType.CALL_WEBHOOK.value
    display_name = "Call Webhook"
    extra = {"status": 200}


class SendNotificationExecutor(_LoggingExecutor):
    action_type = ActionType.SEND_NOTIFICATION.value
    display_name = "Send Notification"


class ScheduleFollowupExecutor(_LoggingExecutor):
    action_type = ActionType.SCHEDULE_FOLLOWUP.value
    display_name = "Schedule Follow-up"
    id_field = "followup_id"


class RunAgentExecutor(BaseActionExecutor):
    """Runs an agent from the agent registry.

    Config:
        agent: agent identifier (required)
        input: agent input; defaults to the accumulated context
    """

    action_type = ActionType.RUN_AGENT.value
    display_name = "Run Agent"

    def __init__(self, agent_registry: ComponentRegistry):
        self.agent_registry = agent_registry

    async def execute(self, config: Dict[str, Any], context: Dict[str, Any]) -> Dict[str, Any]:
        agent_id = config.get("agent")
        if not agent_id:
            raise ValidationError("RUN_AGENT action requires 'agent'")
        if not self.agent_registry.has(agent_id):
            raise NotFoundError(f"Agent not found: {agent_id}", resource="agent", resource_id=agent_id)

        result = await self.agent_registry.invoke(agent_id, config.get("input", context), context)
        if not result.success:
            raise RuntimeError(f"Agent {agent_id} failed: {result.error}")
        return {"success": True, "agent": agent_id, "output": result.output}


BUILTIN_EXECUTORS: Dict[str, Type[BaseActionExecutor]] = {
    cls.action_type: cls
    for cls in (
        SendMessageExecutor,
        SendEmailExecutor,
        CreateTaskExecutor,
        CallWebhookExecutor,
        SendNotificationExecutor,
        ScheduleFollowupExecutor,
    )
}
