"""
BaseLabClient, the abstract interface to the external lab system.

A new backend only needs to:
1. subclass BaseLabClient
2. implement the abstract methods
3. register one line in factory._build_registry

Services and the sync engine never know which backend they are talking to.
Every method raises ExternalSystemError on failure.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from .types import BenchlingEntity, TaskStatus


class BaseLabClient(ABC):

    @abstractmethod
    def create_folder(self, name: str, parent_folder_id: str) -> str:
        """Create a folder and return its id."""

    @abstractmethod
    def create_custom_entity(self, entity: dict[str, Any]) -> str:
        """Create one entity synchronously and return its id."""

    @abstractmethod
    def create_entities_async(self, entities: list[dict[str, Any]]) -> str:
        """Start a bulk-create task and return its task id."""

    @abstractmethod
    def update_entities_async(self, entities: list[dict[str, Any]]) -> str:
        """Start a bulk-update task and return its task id."""

    @abstractmethod
    def get_task_status(self, task_id: str) -> TaskStatus:
        """Current status of a long-running task."""

    @abstractmethod
    def list_entities(self, schema_id: str, registry_id: Optional[str] = None,
                      prefix: Optional[str] = None) -> list[BenchlingEntity]:
        """Every entity of a schema, optionally limited to a registry id prefix."""

    @abstractmethod
    def get_entity(self, entity_id: str) -> Optional[BenchlingEntity]:
        """One entity by API id, or None if it does not exist."""

    @abstractmethod
    def create_entity(self, payload: dict[str, Any]) -> BenchlingEntity:
        """Create one entity and return it as stored."""

    @abstractmethod
    def update_entity(self, entity_id: str, fields: dict[str, Any]) -> BenchlingEntity:
        """Overwrite the given fields of an entity."""

    @abstractmethod
    def delete_entity(self, entity_id: str) -> None:
        """Remove an entity."""
