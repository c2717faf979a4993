"""
Standard shapes returned by lab clients.

Every BaseLabClient implementation returns these objects, so the sync
engine and the approval flow never touch raw Benchling JSON.
"""

from dataclasses import dataclass, field
from typing import Any

SUCCEEDED = 'SUCCEEDED'
FAILED = 'FAILED'


@dataclass
class TaskStatus:
    task_id: str
    status: str                                   # RUNNING / SUCCEEDED / FAILED
    response: dict[str, Any] = field(default_factory=dict)
    message: str = ''

    @property
    def succeeded(self) -> bool:
        return self.status == SUCCEEDED

    @property
    def failed(self) -> bool:
        return self.status == FAILED

    def created_entities(self) -> list[dict[str, Any]]:
        return list(self.response.get('customEntities') or [])

    @classmethod
    def from_api(cls, task_id: str, payload: dict[str, Any]) -> 'TaskStatus':
        return cls(
            task_id=task_id,
            status=payload.get('status') or '',
            response=payload.get('response') or payload.get('data') or {},
            message=payload.get('message') or payload.get('errors') and str(payload['errors']) or '',
        )


@dataclass
class BenchlingEntity:
    id: str
    entity_registry_id: str = ''
    name: str = ''
    schema_id: str = ''
    registry_id: str = ''
    folder_id: str = ''
    fields: dict[str, Any] = field(default_factory=dict)
    created_at: str = ''
    modified_at: str = ''
    archived: bool = False

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> 'BenchlingEntity':
        schema = payload.get('schema') or {}
        return cls(
            id=payload['id'],
            entity_registry_id=payload.get('entityRegistryId') or '',
            name=payload.get('name') or '',
            schema_id=payload.get('schemaId') or schema.get('id') or '',
            registry_id=payload.get('registryId') or '',
            folder_id=payload.get('folderId') or '',
            fields=payload.get('fields') or {},
            created_at=payload.get('createdAt') or '',
            modified_at=payload.get('modifiedAt') or '',
            archived=bool((payload.get('archiveRecord') or {}).get('reason')),
        )
