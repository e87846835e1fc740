"""System configuration file schema.

The configuration is a JSON document (or an equivalent dict)::

    {
      "system": {"name": "...", "environment": "production"},
      "tenants": [{"name": "Acme", "slug": "acme", "plan": "professional",
                   "users": [{"email": "ops@acme.io", "name": "Ops", "active": true}]}],
      "tools": {"json": {"type": "json_parser"}},
      "integrations": {"crm": {"type": "http", "base_url": "https://crm.example.com"}},
      "knowledge": {"faq": {"type": "in_memory", "documents": [...]}},
      "agents": {"router": {"type": "tool_router", "tools": ["json"]}},
      "executors": {"CALL_WEBHOOK": {"type": "http_webhook"}},
      "automations": {"acme": [{"name": "...", "trigger": "MANUAL", "actions": [...]}]}
    }

Component ``type`` is a catalog identifier or a ``"package.module:attr"``
reference; when omitted the component id itself is looked up.
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from automation.schemas import AutomationCreate
from core.exceptions import ConfigurationError


class SystemSection(BaseModel):
    """General system metadata."""

    name: str = Field(default="Orchestration Core")
    version: str = Field(default="1.0.0")
    environment: str = Field(default="development")
    strict: bool = Field(default=False, description="Abort boot on any component failure")


class UserSeed(BaseModel):
    """A user provisioned at boot."""

    email: str = Field(min_length=3)
    name: str = Field(min_length=1)
    role: Optional[str] = None
    active: bool = Field(default=False, description="Activate the user right away")


class TenantSeed(BaseModel):
    """A tenant provisioned at boot."""

    name: str = Field(min_length=1)
    slug: Optional[str] = None
    plan: Optional[str] = None
    active: bool = Field(default=False, description="Move the tenant out of trial right away")
    metadata: Dict[str, Any] = Field(default={})
    limits: Dict[str, int] = Field(default={})
    features: Dict[str, bool] = Field(default={})
    users: List[UserSeed] = Field(default=[])


class ComponentConfig(BaseModel):
    """Configuration of one tool, integration, knowledge source, agent or executor.

    Unknown keys are kept and handed to the component as its config.
    """

    model_config = ConfigDict(extra="allow")

    type: Optional[str] = Field(default=None, description="Catalog identifier or module:attr reference")
    enabled: bool = Field(default=True)
    tools: List[Union[str, Dict[str, Any]]] = Field(default=[], description="Tool dependencies (agents only)")

    def component_settings(self) -> Dict[str, Any]:
        return self.model_dump(exclude={"type", "enabled"})


class SystemConfig(BaseModel):
    """Root configuration document."""

    system: SystemSection = Field(default_factory=SystemSection)
    tenants: List[TenantSeed] = Field(default=[])
    tools: Dict[str, ComponentConfig] = Field(default={})
    integrations: Dict[str, ComponentConfig] = Field(default={})
    knowledge: Dict[str, ComponentConfig] = Field(default={})
    agents: Dict[str, ComponentConfig] = Field(default={})
    executors: Dict[str, ComponentConfig] = Field(default={})
    automations: Dict[str, List[AutomationCreate]] = Field(default={}, description="Automations keyed by tenant slug")


def load_system_config(source: Union[SystemConfig, Dict[str, Any], str, Path, None] = None) -> SystemConfig:
    """Load and validate configuration from a model, a dict or a JSON file path.

    Raises:
        ConfigurationError: If the file is missing, not JSON, or fails validation
    """
    if source is None:
        return SystemConfig()
    if isinstance(source, SystemConfig):
        return source

    if isinstance(source, (str, Path)):
        path = Path(source)
        if not path.is_file():
            raise ConfigurationError(f"Configuration file not found: {path}", details={"path": str(path)})
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ConfigurationError(
                f"Configuration file is not valid JSON: {path}",
                details={"path": str(path), "line": e.lineno, "column": e.colno},
            )
    else:
        data = source

    try:
        return SystemConfig.model_validate(data)
    except PydanticValidationError as e:
        raise ConfigurationError(
            f"Invalid system configuration: {e.error_count()} error(s)",
            details={"errors": e.errors(include_url=False)},
        )
