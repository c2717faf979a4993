"""
Typed inbound payloads.

Adapters turn raw request bodies into these; the sync engine only ever
consumes these, never raw JSON.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional


@dataclass
class WebhookEvent:
    """
    One Benchling change notification.

    fields is None when the payload carried no field values, in which case
    the entity has to be fetched from Benchling.
    """

    event_type: str                      # entity.created / entity.updated / ...
    entity_id: str
    entity_type: str = ''
    entity_registry_id: str = ''
    schema_id: str = ''
    modified_at: Optional[datetime] = None
    fields: Optional[dict[str, Any]] = None
    raw_payload: Any = field(default=None, repr=False)


@dataclass
class SampleRecordInput:
    """
    Admin create/update body for a mirrored sample.

    values only holds the fields the caller actually sent (local names).
    """

    values: dict[str, str] = field(default_factory=dict)
    record_id: str = ''
    order_id: Optional[str] = None
    raw_payload: Any = field(default=None, repr=False)
