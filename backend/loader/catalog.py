"""
Component Catalog: explicit identifier → factory table.

Replaces directory scanning: every constructible component is either
registered here in code or referenced from configuration as
``"package.module:attr"`` and resolved with importlib.
"""

import importlib
import inspect
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import httpx
import structlog

from automation.executors import BUILTIN_EXECUTORS, BaseActionExecutor
from components.json_parser import JsonParserTool
from components.knowledge_store import InMemoryKnowledgeSource
from components.tool_router import ToolRouterAgent
from core.exceptions import ConfigurationError
from integrations.http_integration import HttpIntegration, HttpWebhookExecutor

logger = structlog.get_logger(__name__)

COMPONENT_KINDS = ("tool", "integration", "knowledge", "agent", "executor")

Factory = Callable[[str, Dict[str, Any]], Any]


@dataclass
class CatalogBinding:
    """A configured component resolved to its implementation."""

    identifier: str
    reference: str
    export_name: str
    factory: Factory


def _instantiate_reference(target: Any) -> Factory:
    """Turn an imported attribute into a ``(component_id, config)`` factory."""
    if inspect.isclass(target):
        if issubclass(target, BaseActionExecutor):
            return lambda component_id, config: target()
        return lambda component_id, config: target(component_id, config)
    if callable(target):
        return target
    raise ConfigurationError(f"Reference is not constructible: {target!r}")


class ComponentCatalog:
    """Per-kind table of factories taking ``(component_id, config)``."""

    def __init__(self):
        self._factories: Dict[str, Dict[str, Factory]] = {kind: {} for kind in COMPONENT_KINDS}

    def register(self, kind: str, identifier: str, factory: Factory) -> None:
        if kind not in self._factories:
            raise ConfigurationError(f"Unknown component kind: {kind}")
        self._factories[kind][identifier] = factory

    def identifiers(self, kind: str) -> List[str]:
        return sorted(self._factories.get(kind, {}))

    def resolve(self, kind: str, reference: str) -> CatalogBinding:
        """Find the factory for a catalog identifier or ``module:attr`` reference.

        Raises:
            ConfigurationError: If the reference cannot be resolved
        """
        factory = self._factories.get(kind, {}).get(reference)
        if factory is not None:
            export_name = getattr(factory, "__name__", reference)
            return CatalogBinding(reference, reference, export_name, factory)

        if ":" not in reference:
            raise ConfigurationError(
                f"Unknown {kind} implementation: {reference}",
                details={"kind": kind, "reference": reference, "known": self.identifiers(kind)},
            )

        module_name, _, attr = reference.partition(":")
        try:
            module = importlib.import_module(module_name)
        except ImportError as e:
            raise ConfigurationError(
                f"Cannot import {module_name} for {kind} {reference}: {e}",
                details={"kind": kind, "reference": reference},
            )
        target = getattr(module, attr, None)
        if target is None:
            raise ConfigurationError(
                f"{module_name} has no attribute {attr}",
                details={"kind": kind, "reference": reference},
            )
        return CatalogBinding(reference, reference, attr, _instantiate_reference(target))

    def bind(self, kind: str, component_id: str, reference: Optional[str]) -> CatalogBinding:
        """Resolve the implementation of a configured component."""
        binding = self.resolve(kind, reference or component_id)
        binding.identifier = component_id
        return binding

    def create(self, kind: str, component_id: str, config: Dict[str, Any], reference: Optional[str] = None) -> Any:
        binding = self.bind(kind, component_id, reference)
        return binding.factory(component_id, config)

    @classmethod
    def with_builtins(cls, http_transport: Optional[httpx.AsyncBaseTransport] = None) -> "ComponentCatalog":
        """Catalog pre-loaded with every shipped component.

        ``http_transport`` is handed to the HTTP-backed components.
        """
        catalog = cls()
        catalog.register("tool", "json_parser", JsonParserTool)
        catalog.register("knowledge", "in_memory", InMemoryKnowledgeSource)
        catalog.register("agent", "tool_router", ToolRouterAgent)

        def http_integration(component_id, config):
            return HttpIntegration(component_id, config, transport=http_transport)

        def http_webhook(component_id, config):
            return HttpWebhookExecutor(transport=http_transport, timeout=config.get("timeout"))

        catalog.register("integration", "http", http_integration)
        catalog.register("executor", "http_webhook", http_webhook)
        for action_type, executor_class in BUILTIN_EXECUTORS.items():
            catalog.register("executor", action_type, lambda component_id, config, c=executor_class: c())
        return catalog
