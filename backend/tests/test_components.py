"""Tests for the component registry, base component classes and shipped components."""

import json

import pytest

from automation.executors import RunAgentExecutor
from components.json_parser import JsonParserTool
from components.knowledge_store import InMemoryKnowledgeSource
from components.tool_router import ToolRouterAgent
from core.exceptions import NotFoundError, ValidationError
from registry.base import BaseAgent
from registry.component_registry import ComponentRegistry


class EchoAgent(BaseAgent):
    async def on_execute(self, input, context):
        return {"echo": input, "request_id": context.get("request_id")}


class BrokenAgent(BaseAgent):
    async def on_execute(self, input, context):
        raise RuntimeError("agent exploded")


@pytest.mark.unit
class TestComponentRegistry:

    def test_register_and_lookup(self):
        registry = ComponentRegistry("tool")
        registry.register("a", object())
        assert registry.has("a")
        assert "a" in registry
        assert len(registry) == 1
        assert registry.ids() == ["a"]
        assert [entry.id for entry in registry.list()] == ["a"]

    def test_replace_keeps_single_entry(self):
        registry = ComponentRegistry()
        first, second = object(), object()
        registry.register("a", first)
        registry.register("a", second)
        assert registry.get("a") is second
        assert registry.size() == 1

    def test_require_missing(self):
        registry = ComponentRegistry("agent")
        with pytest.raises(NotFoundError) as exc_info:
            registry.require("ghost")
        assert exc_info.value.details == {"resource": "agent", "id": "ghost"}

    def test_unregister_and_clear(self):
        registry = ComponentRegistry()
        registry.register("a", 1)
        registry.register("b", 2)
        assert registry.unregister("a") == 1
        assert registry.unregister("a") is None
        registry.clear()
        assert registry.size() == 0

    async def test_invoke_plain_callables(self):
        registry = ComponentRegistry()
        registry.register("sync", lambda x: x * 2)

        async def double(x):
            return x * 2

        registry.register("async", double)
        assert await registry.invoke("sync", 2) == 4
        assert await registry.invoke("async", 3) == 6

    async def test_invoke_uses_entry_point(self):
        registry = ComponentRegistry("knowledge")
        source = InMemoryKnowledgeSource("kb", {"documents": [{"id": "1", "content": "refund policy"}]})
        registry.register("kb", source)
        result = await registry.invoke("kb", "refund")
        assert result.success
        assert result.output[0]["id"] == "1"

    async def test_invoke_missing(self):
        with pytest.raises(NotFoundError):
            await ComponentRegistry().invoke("nope")


@pytest.mark.unit
class TestBaseComponents:

    async def test_agent_result_and_metrics(self):
        agent = EchoAgent("echo")
        result = await agent.execute("hi", {"request_id": "r1"})
        assert agent.initialized
        assert result.success
        assert result.output == {"echo": "hi", "request_id": "r1"}
        assert result.metadata == {"request_id": "r1"}
        assert agent.get_metrics()["successful_executions"] == 1

    async def test_agent_failure_is_captured(self):
        agent = BrokenAgent("broken")
        result = await agent.execute("hi")
        assert not result.success
        assert result.error == "agent exploded"
        metrics = agent.get_metrics()
        assert metrics["failed_executions"] == 1
        assert metrics["success_rate"] == 0

    def test_agent_tool_refs(self):
        agent = EchoAgent("echo", {"tools": ["json", {"id": "search"}]})
        assert agent.tools == ["json", "search"]

    async def test_unknown_tool_action(self):
        tool = JsonParserTool("json")
        result = await tool.execute("explode", {})
        assert not result.success
        assert "explode" in result.error
        assert tool.actions == ["get", "parse", "stringify"]


@pytest.mark.unit
class TestJsonParserTool:

    async def test_parse(self):
        result = await JsonParserTool("json").execute("parse", {"text": '{"a": [1, 2]}'})
        assert result.output == {"a": [1, 2]}

    async def test_parse_invalid(self):
        result = await JsonParserTool("json").execute("parse", {"text": "{nope"})
        assert not result.success

    async def test_stringify(self):
        result = await JsonParserTool("json").execute("stringify", {"value": {"b": 1, "a": 2}, "sort_keys": True})
        assert result.output == json.dumps({"a": 2, "b": 1}, sort_keys=True)

    async def test_get(self):
        tool = JsonParserTool("json")
        assert (await tool.execute("get", {"value": {"a": [{"b": 5}]}, "path": "a.0.b"})).output == 5
        assert (await tool.execute("get", {"text": '{"a": 1}', "path": "missing"})).output is None


@pytest.mark.unit
class TestInMemoryKnowledgeSource:

    async def test_ranking(self):
        source = InMemoryKnowledgeSource("kb")
        await source.initialize()
        await source.add_document("a", "shipping times and shipping costs")
        await source.add_document("b", "shipping to Europe")
        await source.add_document("c", "refund policy")

        result = await source.search("shipping", top_k=2)
        assert [hit["id"] for hit in result.output] == ["a", "b"]
        assert result.output[0]["score"] == 2

    async def test_remove(self):
        source = InMemoryKnowledgeSource("kb", {"documents": [{"id": "a", "content": "x"}]})
        await source.initialize()
        assert source.document_count == 1
        assert await source.remove_document("a") is True
        assert await source.remove_document("a") is False

    async def test_empty_query(self):
        source = InMemoryKnowledgeSource("kb", {"documents": [{"id": "a", "content": "x"}]})
        assert (await source.search("   ")).output == []


@pytest.mark.unit
class TestToolRouterAgent:

    @pytest.fixture
    def tools(self):
        registry = ComponentRegistry("tool")
        registry.register("json", JsonParserTool("json"))
        return registry

    async def test_routes_free_text(self, tools):
        agent = ToolRouterAgent("router", {
            "tools": ["json"],
            "routes": {"json": ["parse"]},
            "default_action": "parse",
        })
        agent.set_tool_registry(tools)
        result = await agent.execute({"text": "please parse this", "params": {"text": "[1]"}})
        assert result.success
        assert result.output == {"tool": "json", "action": "parse", "result": [1]}

    async def test_explicit_tool(self, tools):
        agent = ToolRouterAgent("router", {"tools": ["json"]})
        agent.set_tool_registry(tools)
        result = await agent.execute({"tool": "json", "action": "stringify", "params": {"value": 1}})
        assert result.output["result"] == "1"

    async def test_undeclared_tool_rejected(self, tools):
        agent = ToolRouterAgent("router", {"tools": []})
        agent.set_tool_registry(tools)
        result = await agent.execute({"tool": "json", "action": "parse"})
        assert not result.success
        assert "not declared" in result.error

    async def test_no_route(self, tools):
        agent = ToolRouterAgent("router", {"tools": ["json"]})
        agent.set_tool_registry(tools)
        result = await agent.execute("hello")
        assert not result.success


@pytest.mark.unit
class TestRunAgentExecutor:

    async def test_runs_agent(self):
        agents = ComponentRegistry("agent")
        agents.register("echo", EchoAgent("echo"))
        output = await RunAgentExecutor(agents).execute({"agent": "echo", "input": "hi"}, {})
        assert output == {"success": True, "agent": "echo", "output": {"echo": "hi", "request_id": None}}

    async def test_defaults_input_to_context(self):
        agents = ComponentRegistry("agent")
        agents.register("echo", EchoAgent("echo"))
        output = await RunAgentExecutor(agents).execute({"agent": "echo"}, {"lead": 1})
        assert output["output"]["echo"] == {"lead": 1}

    async def test_missing_agent_config(self):
        with pytest.raises(ValidationError):
            await RunAgentExecutor(ComponentRegistry()).execute({}, {})

    async def test_unknown_agent(self):
        with pytest.raises(NotFoundError):
            await RunAgentExecutor(ComponentRegistry()).execute({"agent": "ghost"}, {})

    async def test_agent_failure_raises(self):
        agents = ComponentRegistry("agent")
        agents.register("broken", BrokenAgent("broken"))
        with pytest.raises(RuntimeError, match="agent exploded"):
            await RunAgentExecutor(agents).execute({"agent": "broken"}, {})
