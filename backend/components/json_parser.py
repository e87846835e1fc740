"""JSON parsing tool."""

import json
from typing import Any, Dict

from automation.conditions import resolve_path
from registry.base import BaseTool


class JsonParserTool(BaseTool):
    """Parse, stringify and query JSON documents.

    Actions:
        parse: ``{"text": "..."}`` → parsed value
        stringify: ``{"value": ..., "indent": 2}`` → JSON text
        get: ``{"value" | "text": ..., "path": "a.b.0"}`` → value at a dot path
    """

    async def action_parse(self, params: Dict[str, Any], context: Dict[str, Any]) -> Any:
        text = params.get("text")
        if not isinstance(text, str):
            raise ValueError("parse requires a 'text' string")
        return json.loads(text)

    async def action_stringify(self, params: Dict[str, Any], context: Dict[str, Any]) -> str:
        if "value" not in params:
            raise ValueError("stringify requires 'value'")
        return json.dumps(params["value"], indent=params.get("indent"), sort_keys=bool(params.get("sort_keys")))

    async def action_get(self, params: Dict[str, Any], context: Dict[str, Any]) -> Any:
        path = params.get("path")
        if not path:
            raise ValueError("get requires 'path'")
        value = params["value"] if "value" in params else json.loads(params.get("text") or "null")
        return resolve_path({"root": value}, f"root.{path}")
