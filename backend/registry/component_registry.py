"""
Component Registry: generic identifier → live instance store.

One instance per component kind (tools, agents, integrations, knowledge
sources, action executors). ``invoke`` dispatches to the component's
execution entry point so callers never need to know the concrete type.
"""

import inspect
import threading
from dataclasses import dataclass
from typing import Any, Dict, Generic, List, Optional, TypeVar

import structlog

from core.exceptions import NotFoundError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass
class RegistryEntry(Generic[T]):
    id: str
    item: T


class ComponentRegistry(Generic[T]):
    """Thread-safe registry of named component instances."""

    def __init__(self, kind: str = "component"):
        self.kind = kind
        self._items: Dict[str, T] = {}
        self._lock = threading.RLock()

    def register(self, component_id: str, item: T) -> None:
        """Register a component, replacing any previous one with the same id."""
        with self._lock:
            if component_id in self._items:
                logger.warning("Replacing registered component", kind=self.kind, component_id=component_id)
            self._items[component_id] = item

    def unregister(self, component_id: str) -> Optional[T]:
        with self._lock:
            return self._items.pop(component_id, None)

    def get(self, component_id: str) -> Optional[T]:
        with self._lock:
            return self._items.get(component_id)

    def require(self, component_id: str) -> T:
        """Get a component or raise NotFoundError."""
        item = self.get(component_id)
        if item is None:
            raise NotFoundError(
                f"{self.kind.capitalize()} not found: {component_id}",
                resource=self.kind,
                resource_id=component_id,
            )
        return item

    def has(self, component_id: str) -> bool:
        with self._lock:
            return component_id in self._items

    def list(self) -> List[RegistryEntry[T]]:
        with self._lock:
            return [RegistryEntry(id=cid, item=item) for cid, item in self._items.items()]

    def ids(self) -> List[str]:
        with self._lock:
            return list(self._items.keys())

    def size(self) -> int:
        with self._lock:
            return len(self._items)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    async def invoke(self, component_id: str, *args: Any, **kwargs: Any) -> Any:
        """Call the component's execution entry point.

        Components name their entry point through an ``entry_point``
        attribute (``execute`` when absent). Plain callables are called
        directly. Sync results are returned as-is, coroutines are awaited.

        Raises:
            NotFoundError: If no component is registered under the id
        """
        item = self.require(component_id)
        method_name = getattr(item, "entry_point", "execute")
        method = getattr(item, method_name, None)
        if method is None:
            if not callable(item):
                raise TypeError(f"{self.kind} '{component_id}' has no '{method_name}' entry point")
            method = item

        result = method(*args, **kwargs)
        if inspect.isawaitable(result):
            result = await result
        return result

    def __contains__(self, component_id: str) -> bool:
        return self.has(component_id)

    def __len__(self) -> int:
        return self.size()
