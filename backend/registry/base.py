"""
Base interfaces for long-lived components.

Every tool, agent, integration and knowledge source inherits from one of
the classes below. Each one gets ``initialize()``/``destroy()`` lifecycle
hooks and an execution entry point that never raises: failures come back
as a ``ComponentResult`` with ``success=False``.
"""

import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import structlog

from registry.component_registry import ComponentRegistry

logger = structlog.get_logger(__name__)


class ComponentResult:
    """Standardized result from a component execution."""

    def __init__(
        self,
        success: bool,
        output: Any = None,
        error: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        duration_ms: float = 0,
    ):
        self.success = success
        self.output = output
        self.error = error
        self.metadata = metadata or {}
        self.duration_ms = duration_ms
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "output": self.output,
            "error": self.error,
            "metadata": self.metadata,
            "duration_ms": self.duration_ms,
            "timestamp": self.timestamp.isoformat(),
        }


class BaseComponent(ABC):
    """Shared lifecycle and execution metrics."""

    component_type: str = "component"
    entry_point: str = "execute"

    def __init__(self, component_id: str, config: Optional[Dict[str, Any]] = None):
        self.id = component_id
        self.config = config or {}
        self.initialized = False
        self.metrics: Dict[str, Any] = {
            "total_executions": 0,
            "successful_executions": 0,
            "failed_executions": 0,
            "average_duration_ms": 0.0,
            "last_duration_ms": 0.0,
        }

    async def initialize(self) -> None:
        await self.on_init()
        self.initialized = True
        logger.debug("Component initialized", component_type=self.component_type, component_id=self.id)

    async def destroy(self) -> None:
        await self.on_destroy()
        self.initialized = False
        logger.debug("Component destroyed", component_type=self.component_type, component_id=self.id)

    async def on_init(self) -> None:
        """Hook for subclass setup."""

    async def on_destroy(self) -> None:
        """Hook for subclass cleanup."""

    def get_metrics(self) -> Dict[str, Any]:
        total = self.metrics["total_executions"]
        return {
            **self.metrics,
            "success_rate": self.metrics["successful_executions"] / total if total else 0,
        }

    def _record(self, duration_ms: float, success: bool) -> None:
        self.metrics["total_executions"] += 1
        self.metrics["last_duration_ms"] = duration_ms
        if success:
            self.metrics["successful_executions"] += 1
        else:
            self.metrics["failed_executions"] += 1
        total = self.metrics["total_executions"]
        previous = self.metrics["average_duration_ms"] * (total - 1)
        self.metrics["average_duration_ms"] = (previous + duration_ms) / total

    async def _timed(self, label: str, coro_factory, metadata: Optional[Dict[str, Any]] = None) -> ComponentResult:
        """Await ``coro_factory()`` and wrap its value or error in a result."""
        if not self.initialized:
            await self.initialize()

        start = time.monotonic()
        try:
            output = await coro_factory()
            duration_ms = (time.monotonic() - start) * 1000
            self._record(duration_ms, True)
            logger.debug(
                "Component call completed",
                component_type=self.component_type,
                component_id=self.id,
                call=label,
                duration_ms=round(duration_ms, 2),
            )
            return ComponentResult(success=True, output=output, metadata=metadata, duration_ms=duration_ms)
        except Exception as e:
            duration_ms = (time.monotonic() - start) * 1000
            self._record(duration_ms, False)
            logger.warning(
                "Component call failed",
                component_type=self.component_type,
                component_id=self.id,
                call=label,
                error=str(e),
            )
            return ComponentResult(success=False, error=str(e), metadata=metadata, duration_ms=duration_ms)


# ─── Tools ────────────────────────────────────────────────────

class BaseTool(BaseComponent):
    """A tool exposes named actions.

    An action ``foo`` is served by an ``action_foo(params, context)``
    coroutine on the subclass; anything else falls through to
    ``execute_action``.
    """

    component_type = "tool"

    @property
    def actions(self) -> List[str]:
        return sorted(name[len("action_"):] for name in dir(self) if name.startswith("action_"))

    async def execute(
        self,
        action: str,
        params: Optional[Dict[str, Any]] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> ComponentResult:
        params = params or {}
        handler = getattr(self, f"action_{action}", None)

        async def _call():
            if handler is not None:
                return await handler(params, context or {})
            return await self.execute_action(action, params, context or {})

        return await self._timed(action, _call, metadata={"action": action})

    async def execute_action(self, action: str, params: Dict[str, Any], context: Dict[str, Any]) -> Any:
        raise ValueError(f"Action '{action}' not found in tool {self.id}")


# ─── Agents ───────────────────────────────────────────────────

class BaseAgent(BaseComponent):
    """An agent processes an input, usually by delegating to its tools.

    Declared tool dependencies come from ``config["tools"]`` (ids or
    ``{"id": ...}`` objects) and are validated at boot. Registries are
    injected through the ``set_*_registry`` hooks after validation.
    """

    component_type = "agent"

    def __init__(self, component_id: str, config: Optional[Dict[str, Any]] = None):
        super().__init__(component_id, config)
        self.tool_registry: Optional[ComponentRegistry] = None
        self.knowledge_registry: Optional[ComponentRegistry] = None
        self.integration_registry: Optional[ComponentRegistry] = None

    @property
    def tools(self) -> List[str]:
        refs = self.config.get("tools") or []
        return [ref["id"] if isinstance(ref, dict) else ref for ref in refs]

    def set_tool_registry(self, registry: ComponentRegistry) -> None:
        self.tool_registry = registry

    def set_knowledge_registry(self, registry: ComponentRegistry) -> None:
        self.knowledge_registry = registry

    def set_integration_registry(self, registry: ComponentRegistry) -> None:
        self.integration_registry = registry

    async def execute(self, input: Any, context: Optional[Dict[str, Any]] = None) -> ComponentResult:
        context = context or {}

        async def _call():
            validated = await self.validate_input(input)
            return await self.on_execute(validated, context)

        return await self._timed("execute", _call, metadata={"request_id": context.get("request_id")})

    async def validate_input(self, input: Any) -> Any:
        return input

    @abstractmethod
    async def on_execute(self, input: Any, context: Dict[str, Any]) -> Any:
        """Process the validated input and return the agent output."""
        pass


# ─── Integrations ─────────────────────────────────────────────

class BaseIntegration(BaseComponent):
    """A connection to an external provider."""

    component_type = "integration"

    def __init__(self, component_id: str, config: Optional[Dict[str, Any]] = None):
        super().__init__(component_id, config)
        self.connected = False

    async def initialize(self) -> None:
        await self.connect()

    async def destroy(self) -> None:
        await self.disconnect()

    async def connect(self) -> None:
        await self.on_connect()
        self.connected = True
        self.initialized = True
        logger.info("Integration connected", integration_id=self.id)

    async def disconnect(self) -> None:
        await self.on_disconnect()
        self.connected = False
        self.initialized = False
        logger.info("Integration disconnected", integration_id=self.id)

    async def execute(self, action: str, params: Optional[Dict[str, Any]] = None) -> ComponentResult:
        return await self._timed(
            action,
            lambda: self.on_execute(action, params or {}),
            metadata={"action": action},
        )

    async def check_health(self) -> bool:
        try:
            return await self.on_health_check()
        except Exception as e:
            logger.warning("Health check failed", integration_id=self.id, error=str(e))
            return False

    def get_info(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.config.get("type", self.component_type),
            "connected": self.connected,
        }

    @abstractmethod
    async def on_connect(self) -> None:
        pass

    @abstractmethod
    async def on_disconnect(self) -> None:
        pass

    @abstractmethod
    async def on_execute(self, action: str, params: Dict[str, Any]) -> Any:
        pass

    @abstractmethod
    async def on_health_check(self) -> bool:
        pass


# ─── Knowledge sources ────────────────────────────────────────

class BaseKnowledgeSource(BaseComponent):
    """A searchable document store."""

    component_type = "knowledge"
    entry_point = "search"

    async def search(self, query: str, top_k: int = 5) -> ComponentResult:
        return await self._timed(
            "search",
            lambda: self.on_search(query, top_k),
            metadata={"query": query, "top_k": top_k},
        )

    @abstractmethod
    async def add_document(self, doc_id: str, content: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        pass

    @abstractmethod
    async def remove_document(self, doc_id: str) -> bool:
        pass

    @abstractmethod
    async def on_search(self, query: str, top_k: int) -> List[Dict[str, Any]]:
        pass
