"""Agent that routes an input to one of its declared tools."""

import re
from typing import Any, Dict, Optional

import structlog

from registry.base import BaseAgent

logger = structlog.get_logger(__name__)


class ToolRouterAgent(BaseAgent):
    """Pick a tool for an input and run it.

    Input is either a dict ``{"tool": ..., "action": ..., "params": {...}}``
    or free text. Free text is matched against ``config["routes"]``, a map
    of tool id → list of keywords; the first tool with a matching keyword
    wins, falling back to ``config["default_tool"]``.
    """

    async def validate_input(self, input: Any) -> Dict[str, Any]:
        if isinstance(input, str):
            return {"text": input}
        if isinstance(input, dict):
            return input
        raise ValueError(f"Unsupported input type: {type(input).__name__}")

    def route(self, text: str) -> Optional[str]:
        words = set(re.findall(r"\w+", text.lower()))
        for tool_id, keywords in (self.config.get("routes") or {}).items():
            if tool_id in self.tools and words & {k.lower() for k in keywords}:
                return tool_id
        return self.config.get("default_tool")

    async def on_execute(self, input: Dict[str, Any], context: Dict[str, Any]) -> Any:
        if self.tool_registry is None:
            raise RuntimeError(f"Agent {self.id} has no tool registry")

        tool_id = input.get("tool") or self.route(input.get("text", ""))
        if not tool_id:
            raise ValueError(f"Agent {self.id} found no tool for input")
        if tool_id not in self.tools:
            raise ValueError(f"Tool '{tool_id}' is not declared by agent {self.id}")

        action = input.get("action") or self.config.get("default_action", "execute")
        params = input.get("params") or {k: v for k, v in input.items() if k not in ("tool", "action")}
        logger.debug("Routing to tool", agent_id=self.id, tool_id=tool_id, action=action)

        result = await self.tool_registry.invoke(tool_id, action, params, context)
        if not result.success:
            raise RuntimeError(f"Tool {tool_id} failed: {result.error}")
        return {"tool": tool_id, "action": action, "result": result.output}
