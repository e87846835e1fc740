"""
System Loader: bootstrap and teardown of the orchestration core.

Boot order:
1. Load and validate the system configuration
2. Build the Tenant Registry, provision configured tenants, resolve the
   requested tenant, build the Automation Engine
3. Tools
4. Integrations (best effort: a provider that fails to connect is skipped)
5. Knowledge sources
6. Agents, then action executors
7. Validate cross references (all problems reported in one DependencyError)
8. Inject registries into agents through their setter hooks
9. Provision configured automations

Per-item failures in steps 3-6 are logged and the item skipped (unless
the configuration is strict). Failures in steps 1, 2, 7 and 9 abort boot.
"""

import asyncio
import inspect
import time
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import httpx
import structlog

from app.config import Settings, get_settings
from automation.engine import AutomationEngine
from automation.executors import RunAgentExecutor
from automation.models import ActionType
from core.events import EventEmitter
from core.exceptions import (
    DependencyError,
    ForbiddenError,
    NotFoundError,
)
from loader.catalog import ComponentCatalog
from loader.config_schema import ComponentConfig, SystemConfig, load_system_config
from registry.base import ComponentResult
from registry.component_registry import ComponentRegistry
from tenants.models import Tenant, TenantStatus, User
from tenants.registry import TenantRegistry

logger = structlog.get_logger(__name__)


class SystemLoader:
    """Owns every registry and wires them together."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        catalog: Optional[ComponentCatalog] = None,
        events: Optional[EventEmitter] = None,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings or get_settings()
        self.catalog = catalog or ComponentCatalog.with_builtins(http_transport=http_transport)
        self.events = events or EventEmitter()

        self.tool_registry: ComponentRegistry = ComponentRegistry("tool")
        self.integration_registry: ComponentRegistry = ComponentRegistry("integration")
        self.knowledge_registry: ComponentRegistry = ComponentRegistry("knowledge")
        self.agent_registry: ComponentRegistry = ComponentRegistry("agent")
        self.executor_registry: ComponentRegistry = ComponentRegistry("executor")

        self.config: Optional[SystemConfig] = None
        self.tenant_registry: Optional[TenantRegistry] = None
        self.engine: Optional[AutomationEngine] = None
        self.current_tenant: Optional[Tenant] = None
        self.strict = self.settings.STRICT_CONFIG
        self.booted = False
        self._started_at: Optional[float] = None

    # ─── Boot ─────────────────────────────────────────────────

    async def initialize(
        self,
        config: Union[SystemConfig, Dict[str, Any], str, Path, None] = None,
        tenant_id: Optional[str] = None,
        tenant_slug: Optional[str] = None,
        strict: Optional[bool] = None,
    ) -> "SystemLoader":
        """Run the full boot sequence.

        Args:
            config: Configuration model, dict or JSON file path;
                defaults to ``SYSTEM_CONFIG_PATH`` (empty config when unset)
            tenant_id: Tenant to resolve and cache as the current tenant
            tenant_slug: Same, by slug
            strict: Abort on any component failure instead of skipping it

        Raises:
            ConfigurationError: If the configuration is invalid
            DependencyError: If cross references do not resolve
        """
        boot_start = time.monotonic()
        try:
            # 1. Configuration
            self.config = load_system_config(config if config is not None else self.settings.SYSTEM_CONFIG_PATH)
            if strict is not None:
                self.strict = strict
            elif self.config.system.strict:
                self.strict = True
            logger.info(
                "System boot started",
                system=self.config.system.name,
                environment=self.config.system.environment,
                strict=self.strict,
            )

            # 2. Tenancy and engine
            self.tenant_registry = TenantRegistry(events=self.events, settings=self.settings)
            self._provision_tenants()
            self._resolve_current_tenant(tenant_id, tenant_slug)
            self.engine = AutomationEngine(
                tenant_registry=self.tenant_registry,
                events=self.events,
                executors=self.executor_registry,
                settings=self.settings,
            )

            # 3-6. Components
            await self._load_components("tool", self.config.tools, self.tool_registry)
            await self._load_integrations()
            await self._load_components("knowledge", self.config.knowledge, self.knowledge_registry)
            await self._load_components("agent", self.config.agents, self.agent_registry)
            self._load_executors()

            # 7. Cross references
            self._validate_cross_dependencies()

            # 8. Wiring
            self._connect_components()

            # 9. Automations
            await self._provision_automations()
        except Exception as e:
            logger.error("System boot failed", error=str(e), error_type=type(e).__name__)
            await self.destroy()
            raise

        self.booted = True
        self._started_at = time.monotonic()
        logger.info(
            "System boot completed",
            tools=self.tool_registry.size(),
            integrations=self.integration_registry.size(),
            knowledge=self.knowledge_registry.size(),
            agents=self.agent_registry.size(),
            executors=self.executor_registry.size(),
            tenants=self.tenant_registry.size(),
            tenant=self.current_tenant.slug if self.current_tenant else None,
            duration_ms=round((time.monotonic() - boot_start) * 1000, 2),
        )
        return self

    def _provision_tenants(self) -> None:
        for seed in self.config.tenants:
            tenant = self.tenant_registry.create_tenant(
                seed.name,
                slug=seed.slug,
                plan=seed.plan,
                metadata=seed.metadata,
                limits=seed.limits,
                features=seed.features,
            )
            if seed.active:
                self.tenant_registry.update_tenant(tenant.id, status=TenantStatus.ACTIVE)
            for user_seed in seed.users:
                user = self.tenant_registry.create_user(tenant.id, user_seed.email, user_seed.name, user_seed.role)
                if user_seed.active:
                    self.tenant_registry.activate_user(user.id)
            logger.info("Tenant provisioned", tenant_id=tenant.id, slug=tenant.slug, users=len(seed.users))

    def _resolve_current_tenant(self, tenant_id: Optional[str], tenant_slug: Optional[str]) -> None:
        if not tenant_id and not tenant_slug:
            return
        if tenant_id:
            tenant = self.tenant_registry.get_tenant(tenant_id)
        else:
            tenant = self.tenant_registry.get_tenant_by_slug(tenant_slug)
        if tenant is None:
            ref = tenant_id or tenant_slug
            if self.strict:
                raise NotFoundError(f"Tenant not found: {ref}", resource="tenant", resource_id=ref)
            logger.warning("Requested tenant not found", tenant=ref)
            return
        self.current_tenant = tenant
        logger.info("Tenant loaded", tenant_id=tenant.id, slug=tenant.slug)

    async def _load_components(
        self,
        kind: str,
        configs: Dict[str, ComponentConfig],
        registry: ComponentRegistry,
        best_effort: bool = False,
    ) -> None:
        for component_id, component_config in configs.items():
            if not component_config.enabled:
                logger.debug("Component disabled, skipping", kind=kind, component_id=component_id)
                continue
            try:
                binding = self.catalog.bind(kind, component_id, component_config.type)
                component = binding.factory(component_id, component_config.component_settings())
                await component.initialize()
                registry.register(component_id, component)
                logger.info("Component loaded", kind=kind, component_id=component_id, export=binding.export_name)
            except Exception as e:
                if self.strict and not best_effort:
                    raise
                logger.error("Component failed to load", kind=kind, component_id=component_id, error=str(e))

    async def _load_integrations(self) -> None:
        await self._load_components("integration", self.config.integrations, self.integration_registry, best_effort=True)

    def _load_executors(self) -> None:
        self.engine.register_executor(ActionType.RUN_AGENT, RunAgentExecutor(self.agent_registry))
        for key, executor_config in self.config.executors.items():
            if not executor_config.enabled:
                continue
            try:
                executor = self.catalog.create("executor", key, executor_config.component_settings(), executor_config.type)
                self.engine.register_executor(key, executor)
            except Exception as e:
                if self.strict:
                    raise
                logger.error("Executor failed to load", executor_key=key, error=str(e))

    def _validate_cross_dependencies(self) -> None:
        issues: List[str] = []

        for entry in self.agent_registry.list():
            for tool_id in getattr(entry.item, "tools", []):
                if not self.tool_registry.has(tool_id):
                    issues.append(f"Agent {entry.id} references unknown tool: {tool_id}")

        for slug, definitions in self.config.automations.items():
            if self._find_tenant(slug) is None:
                issues.append(f"Automations reference unknown tenant: {slug}")
            for definition in definitions:
                for action in definition.actions:
                    refs = (
                        ("tool", self.tool_registry),
                        ("agent", self.agent_registry),
                        ("executor", self.executor_registry),
                    )
                    for key, registry in refs:
                        ref = action.config.get(key)
                        if ref and not registry.has(ref):
                            issues.append(f"Automation {definition.name} references unknown {key}: {ref}")

        if issues:
            raise DependencyError(issues)
        logger.info("Dependencies validated")

    def _connect_components(self) -> None:
        for entry in self.agent_registry.list():
            agent = entry.item
            if hasattr(agent, "set_tool_registry"):
                agent.set_tool_registry(self.tool_registry)
            if hasattr(agent, "set_knowledge_registry"):
                agent.set_knowledge_registry(self.knowledge_registry)
            if hasattr(agent, "set_integration_registry"):
                agent.set_integration_registry(self.integration_registry)

    def _find_tenant(self, ref: str) -> Optional[Tenant]:
        return self.tenant_registry.get_tenant_by_slug(ref) or self.tenant_registry.get_tenant(ref)

    async def _provision_automations(self) -> None:
        for slug, definitions in self.config.automations.items():
            tenant = self._find_tenant(slug)
            for definition in definitions:
                automation = await self.engine.create_automation(tenant.id, definition)
                logger.info("Automation provisioned", tenant=slug, automation_id=automation.id, name=automation.name)

    # ─── Runtime ──────────────────────────────────────────────

    def _execution_context(self, context: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        execution_context = {
            "request_id": f"req_{uuid.uuid4().hex[:12]}",
            "started_at": time.time(),
        }
        if self.current_tenant:
            execution_context["tenant_id"] = self.current_tenant.id
        execution_context.update(context or {})
        return execution_context

    async def run_agent(self, agent_id: str, input: Any, context: Optional[Dict[str, Any]] = None) -> ComponentResult:
        agent = self.agent_registry.require(agent_id)
        return await agent.execute(input, self._execution_context(context))

    async def run_tool(
        self,
        tool_id: str,
        action: str,
        params: Optional[Dict[str, Any]] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> ComponentResult:
        tool = self.tool_registry.require(tool_id)
        return await tool.execute(action, params or {}, self._execution_context(context))

    def create_tenant(self, name: str, slug: Optional[str] = None, plan: Optional[str] = None) -> Tenant:
        if self.tenant_registry is None:
            raise ForbiddenError("System is not initialized")
        return self.tenant_registry.create_tenant(name, slug=slug, plan=plan)

    def create_user(self, email: str, name: str, role: Optional[str] = None) -> User:
        """Create a user in the current tenant."""
        if self.current_tenant is None or self.tenant_registry is None:
            raise ForbiddenError("No active tenant; initialize with tenant_id or tenant_slug first")
        return self.tenant_registry.create_user(self.current_tenant.id, email, name, role)

    def get_system_info(self) -> Dict[str, Any]:
        system = self.config.system if self.config else None

        def _summary(registry: ComponentRegistry) -> Dict[str, Any]:
            return {"total": registry.size(), "loaded": registry.ids()}

        return {
            "name": system.name if system else self.settings.APP_NAME,
            "version": system.version if system else self.settings.APP_VERSION,
            "environment": system.environment if system else self.settings.ENVIRONMENT,
            "booted": self.booted,
            "tenant": self.current_tenant.slug if self.current_tenant else None,
            "tenants": self.tenant_registry.size() if self.tenant_registry else 0,
            "components": {
                "tools": _summary(self.tool_registry),
                "integrations": _summary(self.integration_registry),
                "knowledge": _summary(self.knowledge_registry),
                "agents": _summary(self.agent_registry),
                "executors": _summary(self.executor_registry),
            },
            "uptime_seconds": round(time.monotonic() - self._started_at, 3) if self._started_at else 0,
        }

    # ─── Teardown ─────────────────────────────────────────────

    async def destroy(self) -> List[str]:
        """Stop timers and release every component, then clear the registries.

        Never raises; individual failures are logged and returned.
        """
        logger.info("System shutdown started")
        errors: List[str] = []

        if self.engine is not None:
            try:
                await self.engine.shutdown()
            except Exception as e:
                errors.append(f"engine: {e}")

        labelled = []
        for registry, method in (
            (self.agent_registry, "destroy"),
            (self.tool_registry, "destroy"),
            (self.integration_registry, "disconnect"),
            (self.knowledge_registry, "destroy"),
        ):
            for entry in registry.list():
                teardown = getattr(entry.item, method, None)
                if teardown is None:
                    continue
                label = f"{registry.kind} {entry.id}"
                try:
                    result = teardown()
                except Exception as e:
                    errors.append(f"{label}: {e}")
                    continue
                if inspect.isawaitable(result):
                    labelled.append((label, result))

        results = await asyncio.gather(*(awaitable for _, awaitable in labelled), return_exceptions=True)
        for (label, _), result in zip(labelled, results):
            if isinstance(result, Exception):
                errors.append(f"{label}: {result}")

        for message in errors:
            logger.error("Teardown failure", error=message)

        for registry in (
            self.agent_registry,
            self.tool_registry,
            self.integration_registry,
            self.knowledge_registry,
            self.executor_registry,
        ):
            registry.clear()
        if self.engine is not None:
            self.engine.clear()
        self.booted = False
        self._started_at = None
        logger.info("System shutdown completed", failures=len(errors))
        return errors


async def create_system(
    config: Union[SystemConfig, Dict[str, Any], str, Path, None] = None,
    **kwargs: Any,
) -> SystemLoader:
    """Build and boot a system in one call."""
    loader_kwargs = {k: kwargs.pop(k) for k in ("settings", "catalog", "events", "http_transport") if k in kwargs}
    loader = SystemLoader(**loader_kwargs)
    return await loader.initialize(config, **kwargs)
