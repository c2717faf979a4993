"""
Concrete adapters.

  WebhookIntakeAdapter       Benchling webhook JSON -> WebhookEvent
  SampleRecordIntakeAdapter  admin sample create/update body -> SampleRecordInput
"""

from datetime import timezone as dt_timezone
from typing import Any

from django.conf import settings
from django.utils import timezone
from django.utils.dateparse import parse_date, parse_datetime

from .base import BaseIntakeAdapter
from .types import SampleRecordInput, WebhookEvent


def parse_timestamp(value, allow_date=False):
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = parse_datetime(value)
        if parsed is None and allow_date:
            return parse_date(value)
    except ValueError:
        return None
    if parsed is not None and timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed, dt_timezone.utc)
    return parsed


def webhook_filter_reason(schema_id, entity_type, entity_registry_id):
    """Why a webhook event is not about a configured sample, or None when it is."""
    if schema_id and schema_id != settings.BENCHLING_SCHEMA_ID:
        return 'Ignoring event - not a configured sample schema'
    if entity_type != 'CustomEntity':
        return 'Ignoring event - not a custom entity'
    if entity_registry_id and not entity_registry_id.startswith(settings.BENCHLING_ID_PREFIX):
        return f'Ignoring event - not an {settings.BENCHLING_ID_PREFIX} sample'
    return None


# ── WebhookIntakeAdapter ───────────────────────────────────────────────────
#
# Payload example:
# {
#   "eventType":        "entity.updated",      (or "v2.entity.updated")
#   "entityType":       "CustomEntity",
#   "entityId":         "bfi_Q1kT9",
#   "entityRegistryId": "EBM1042",
#   "schemaId":         "ts_NJDS3UwU",
#   "modifiedAt":       "2024-05-02T10:11:12.000Z",
#   "changes":          { "fields": { "Sample Status": { "value": "processing" } } }
# }

class WebhookIntakeAdapter(BaseIntakeAdapter):

    def transform(self) -> WebhookEvent:
        raw = self._parsed

        event_type = str(raw.get('eventType') or raw.get('detail-type') or '').strip()
        if event_type.startswith('v2.'):
            event_type = event_type[len('v2.'):]

        fields = raw.get('fields')
        if fields is None:
            fields = (raw.get('changes') or {}).get('fields')

        modified_at = raw.get('modifiedAt') or raw.get('timestamp') or ''

        return WebhookEvent(
            event_type=event_type,
            entity_id=str(raw.get('entityId') or '').strip(),
            entity_type=str(raw.get('entityType') or '').strip(),
            entity_registry_id=str(raw.get('entityRegistryId') or '').strip(),
            schema_id=str(raw.get('schemaId') or '').strip(),
            modified_at=parse_timestamp(modified_at),
            fields=fields if isinstance(fields, dict) else None,
            raw_payload=raw,
        )

    def validate(self, event: WebhookEvent) -> None:
        # irrelevant events are acknowledged downstream, never rejected
        if webhook_filter_reason(event.schema_id, event.entity_type, event.entity_registry_id):
            return

        errors = []
        if not event.event_type:
            errors.append({'field': 'eventType', 'message': 'eventType is required.'})
        if not event.entity_id:
            errors.append({'field': 'entityId', 'message': 'entityId is required.'})
        raw_modified = self._parsed.get('modifiedAt')
        if raw_modified and event.modified_at is None:
            errors.append({'field': 'modifiedAt', 'message': f'Invalid ISO 8601 timestamp: {raw_modified!r}.'})
        self.raise_if_errors(errors)


# ── SampleRecordIntakeAdapter ──────────────────────────────────────────────
#
# Body example (create; update additionally carries "id" and may omit fields):
# {
#   "sampleId":     "1042",
#   "clientName":   "Salmon Farms Ltd",
#   "sampleType":   "Gill swab",
#   "sampleFormat": "RNAlater",
#   "sampleDate":   "2024-05-01",
#   "sampleStatus": "collected",
#   "orderId":      "9b1d..."
# }

SAMPLE_BODY_FIELDS = {
    'sampleId': 'sample_id',
    'clientName': 'client_name',
    'sampleType': 'sample_type',
    'sampleFormat': 'sample_format',
    'sampleDate': 'sample_date',
    'sampleStatus': 'sample_status',
}

REQUIRED_ON_CREATE = ('sampleId', 'clientName', 'sampleType', 'sampleDate', 'sampleStatus')


class SampleRecordIntakeAdapter(BaseIntakeAdapter):

    def __init__(self, raw_body: Any, content_type: str = '', partial: bool = False):
        super().__init__(raw_body, content_type)
        self.partial = partial

    def transform(self) -> SampleRecordInput:
        raw = self._parsed
        values = {
            local: str(raw[key]).strip()
            for key, local in SAMPLE_BODY_FIELDS.items()
            if key in raw and raw[key] is not None
        }
        order_id = raw.get('orderId')
        return SampleRecordInput(
            values=values,
            record_id=str(raw.get('id') or '').strip(),
            order_id=str(order_id).strip() if order_id else None,
            raw_payload=raw,
        )

    def validate(self, record: SampleRecordInput) -> None:
        errors = []

        if self.partial:
            if not record.record_id:
                errors.append({'field': 'id', 'message': 'Sample id is required.'})
            if not record.values and record.order_id is None:
                errors.append({'field': '', 'message': 'Nothing to update.'})
        else:
            for key in REQUIRED_ON_CREATE:
                if not record.values.get(SAMPLE_BODY_FIELDS[key]):
                    errors.append({'field': key, 'message': f'{key} is required.'})

        sample_date = record.values.get('sample_date')
        if sample_date and parse_timestamp(sample_date, allow_date=True) is None:
            errors.append({'field': 'sampleDate', 'message': f'Invalid ISO 8601 date: {sample_date!r}.'})

        self.raise_if_errors(errors)
