"""
Two-way sample sync between the local mirror and Benchling.

Entry points:
  import_from_benchling      bulk load, guarded by SyncMetadata.import_in_progress
  handle_benchling_webhook   one inbound change, last-write-wins on modifiedAt
  process_sync_queue         drain pending/failed SyncQueueEntry rows
  CRUD                       local-first writes, pushed out best effort

Local writes never fail because Benchling is unavailable: the push is
queued instead and converges when the queue is drained.
"""

import logging
import uuid

from django.conf import settings
from django.db import DatabaseError, transaction
from django.utils import timezone

from .benchling import get_lab_client
from .benchling.entities import build_benchling_fields, build_sample_entity, parse_benchling_fields
from .exceptions import BaseAppException, BlockError, ExternalSystemError, ImportInProgressError
from .intake.adapters import parse_timestamp, webhook_filter_reason
from .models import SyncedSample, SyncMetadata, SyncQueueEntry
from .services import wait_for_tasks

logger = logging.getLogger(__name__)

PROGRESS_EVERY = 10

UPSERT_EVENTS = {'entity.created', 'entity.updated', 'entity.registered', 'entity.unarchived'}
ARCHIVE_EVENTS = {'entity.deleted', 'entity.archived'}


# ── helpers ────────────────────────────────────────────────────────────────

def _snapshot(record):
    return {
        'id': str(record.pk),
        'benchlingId': record.benchling_id,
        'entityRegistryId': record.entity_registry_id,
        'orderId': record.order_id,
        **{name: getattr(record, name) for name in SyncedSample.MIRRORED_FIELDS},
    }


def _get_record(record_id):
    record = get_sample_by_id(record_id)
    if record is None:
        raise BlockError(
            message='Sample not found',
            code='SAMPLE_NOT_FOUND',
            detail={'id': str(record_id)},
            http_status=404,
        )
    return record


def _find_local(benchling_id='', entity_registry_id=''):
    if benchling_id:
        record = SyncedSample.objects.filter(benchling_id=benchling_id).first()
        if record is not None:
            return record
    if entity_registry_id:
        return SyncedSample.objects.filter(entity_registry_id=entity_registry_id).first()
    return None


def _is_stale(record, modified_at):
    return record is not None and modified_at is not None and modified_at < record.last_modified


def record_sync_error(operation, sample_id, error, benchling_id=''):
    """Append to SyncMetadata.sync_errors, keeping the newest SYNC_ERROR_HISTORY."""
    SyncMetadata.load()
    with transaction.atomic():
        meta = SyncMetadata.objects.select_for_update().get(pk=SyncMetadata.SINGLETON_PK)
        errors = list(meta.sync_errors or [])
        errors.append({
            'timestamp': timezone.now().isoformat(),
            'sampleId': sample_id,
            'benchlingId': benchling_id,
            'operation': operation,
            'error': str(error),
            'retryable': True,
        })
        meta.sync_errors = errors[-settings.SYNC_ERROR_HISTORY:]
        meta.save(update_fields=['sync_errors'])


def queue_operation(operation, record, error=None, payload=None):
    entry = SyncQueueEntry.objects.create(
        operation=operation,
        target_sample_id=str(record.pk),
        benchling_id=record.benchling_id,
        payload=payload if payload is not None else _snapshot(record),
        last_error=str(error) if error else None,
    )
    logger.info('Queued %s for sample %s (entry %s)', operation, record.pk, entry.pk)
    return entry


def _apply_benchling_values(record, values, benchling_id, entity_registry_id, modified_at, now):
    for name, value in values.items():
        setattr(record, name, value)
    record.benchling_id = benchling_id or record.benchling_id
    record.entity_registry_id = entity_registry_id or record.entity_registry_id
    record.last_modified = modified_at or now
    record.last_synced_from_benchling = now
    record.archived = False


def upsert_from_entity(entity, now=None):
    """
    Create or update the local mirror of a Benchling entity.

    Returns (record, outcome) with outcome one of created / updated / stale.
    """
    now = now or timezone.now()
    modified_at = parse_timestamp(entity.modified_at)
    record = _find_local(entity.id, entity.entity_registry_id)

    if _is_stale(record, modified_at):
        return record, 'stale'

    values = parse_benchling_fields(entity.fields)
    if record is None:
        record = SyncedSample(
            created_in='benchling',
            created_at=parse_timestamp(entity.created_at) or now,
            sync_version=1,
        )
        _apply_benchling_values(record, values, entity.id, entity.entity_registry_id, modified_at, now)
        record.save()
        return record, 'created'

    _apply_benchling_values(record, values, entity.id, entity.entity_registry_id, modified_at, now)
    record.sync_version += 1
    record.save()
    return record, 'updated'


# ── push / pull one sample ─────────────────────────────────────────────────

def sync_to_benchling(record_id, client=None):
    """Push one local sample to Benchling, creating the entity if needed."""
    record = _get_record(record_id)
    client = client or get_lab_client()

    if record.benchling_id:
        client.update_entity(record.benchling_id, build_benchling_fields(record))
    else:
        entity = client.create_entity(build_sample_entity(record))
        record.benchling_id = entity.id
        record.entity_registry_id = entity.entity_registry_id or record.entity_registry_id

    record.last_synced_from_webapp = timezone.now()
    record.sync_version += 1
    record.save()
    return record


def sync_from_benchling(benchling_id, client=None):
    """Pull one entity from Benchling into the local mirror."""
    client = client or get_lab_client()
    entity = client.get_entity(benchling_id)
    if entity is None:
        raise BlockError(
            message=f'Sample {benchling_id} not found in Benchling',
            code='SAMPLE_NOT_FOUND',
            detail={'benchling_id': benchling_id},
            http_status=404,
        )
    record, outcome = upsert_from_entity(entity)
    logger.info('Synced %s from Benchling: %s', entity.entity_registry_id or benchling_id, outcome)
    return record


def _push_or_queue(record, operation, client):
    try:
        sync_to_benchling(record.pk, client)
    except ExternalSystemError as exc:
        logger.warning('Push of sample %s to Benchling failed (%s), queued %s',
                       record.pk, exc.code, operation)
        record.refresh_from_db()
        queue_operation(operation, record, error=exc)
        return False
    return True


# ── CRUD ───────────────────────────────────────────────────────────────────

def get_all_samples(include_archived=True):
    samples = SyncedSample.objects.all()
    if not include_archived:
        samples = samples.filter(archived=False)
    return samples


def get_sample_by_id(record_id):
    try:
        pk = uuid.UUID(str(record_id))
    except ValueError:
        return None
    return SyncedSample.objects.filter(pk=pk).first()


def create_sample(data, caller, client=None):
    """
    Create a sample locally, then push it to Benchling (queued on failure).

    `data` is a validated SampleRecordInput.
    """
    values = dict(data.values)
    prefix = settings.BENCHLING_ID_PREFIX
    sample_id = values['sample_id']
    entity_registry_id = sample_id if sample_id.startswith(prefix) else f'{prefix}{sample_id}'

    if SyncedSample.objects.filter(entity_registry_id=entity_registry_id, archived=False).exists():
        raise BlockError(
            message=f'Sample {entity_registry_id} already exists.',
            code='DUPLICATE_SAMPLE',
            detail={'entity_registry_id': entity_registry_id},
        )

    record = SyncedSample.objects.create(
        entity_registry_id=entity_registry_id,
        order_id=data.order_id,
        created_in='webapp',
        created_by=caller.uid,
        last_modified=timezone.now(),
        **values,
    )
    logger.info('Sample %s created by %s', entity_registry_id, caller.uid)

    _push_or_queue(record, 'create', client or get_lab_client())
    record.refresh_from_db()
    return record


def update_sample(record_id, data, caller, client=None):
    record = _get_record(record_id)
    for name, value in data.values.items():
        setattr(record, name, value)
    if data.order_id is not None:
        record.order_id = data.order_id
    record.last_modified = timezone.now()
    record.save()
    logger.info('Sample %s updated by %s', record.entity_registry_id, caller.uid)

    _push_or_queue(record, 'update', client or get_lab_client())
    record.refresh_from_db()
    return record


def delete_sample(record_id, caller):
    """
    Delete a local sample.

    A record known to Benchling leaves a `delete` queue entry carrying a
    snapshot of the record and who deleted it.
    """
    record = _get_record(record_id)
    snapshot = _snapshot(record)

    with transaction.atomic():
        if record.benchling_id:
            queue_operation('delete', record, payload={
                'record': snapshot,
                'deletedBy': caller.uid,
                'deletedAt': timezone.now().isoformat(),
            })
        record.delete()

    logger.info('Sample %s deleted by %s: %s', snapshot['entityRegistryId'], caller.uid, snapshot)
    return snapshot


# ── queue ──────────────────────────────────────────────────────────────────

def _apply_entry(entry, client):
    if entry.operation in ('create', 'update'):
        if get_sample_by_id(entry.target_sample_id) is None:
            logger.info('Queue entry %s: sample %s no longer exists, nothing to push',
                        entry.pk, entry.target_sample_id)
            return
        sync_to_benchling(entry.target_sample_id, client)

    elif entry.operation == 'delete':
        if not entry.benchling_id:
            return
        try:
            client.delete_entity(entry.benchling_id)
        except ExternalSystemError as exc:
            if exc.status_code != 404:
                raise
            logger.info('Queue entry %s: %s already gone from Benchling', entry.pk, entry.benchling_id)

    elif entry.operation == 'submit':
        entity = (entry.payload or {}).get('entity')
        if not entity:
            raise BlockError(f'Queue entry {entry.pk} has no entity to submit.', code='INVALID_QUEUE_ENTRY')
        task_id = client.update_entities_async([entity])
        wait_for_tasks(client, [task_id])

    else:
        raise BlockError(f'Unknown queue operation {entry.operation!r}.', code='UNKNOWN_OPERATION')


def _mark_failed(entry, message):
    entry.status = 'failed'
    entry.last_error = message
    entry.save(update_fields=['status', 'attempts', 'last_error', 'last_attempt_at'])
    record_sync_error(entry.operation, entry.target_sample_id, message, entry.benchling_id)
    return f'Sample {entry.target_sample_id}: {message}'


def process_sync_queue(client=None, limit=50):
    """
    Apply up to `limit` pending/failed entries, oldest first.

    Failed entries stay in the queue and are retried on every call until
    they succeed or an administrator clears them.
    """
    entries = list(
        SyncQueueEntry.objects.filter(status__in=['pending', 'failed']).order_by('created_at')[:limit]
    )
    processed = 0
    failed = 0
    errors = []

    if entries:
        client = client or get_lab_client()

    for entry in entries:
        entry.attempts += 1
        entry.last_attempt_at = timezone.now()
        try:
            _apply_entry(entry, client)
        except BaseAppException as exc:
            logger.warning('Queue entry %s (%s) failed, attempt %d: %s',
                           entry.pk, entry.operation, entry.attempts, exc.message)
            errors.append(_mark_failed(entry, exc.message))
            failed += 1
        except Exception as exc:
            logger.exception('Queue entry %s (%s) raised unexpectedly', entry.pk, entry.operation)
            errors.append(_mark_failed(entry, f'Unexpected error: {exc}'))
            failed += 1
        else:
            entry.status = 'done'
            entry.last_error = None
            entry.completed_at = timezone.now()
            entry.save(update_fields=['status', 'attempts', 'last_error', 'last_attempt_at', 'completed_at'])
            processed += 1

    if processed:
        SyncMetadata.load()
        SyncMetadata.objects.filter(pk=SyncMetadata.SINGLETON_PK).update(last_successful_sync=timezone.now())

    logger.info('Sync queue: %d processed, %d failed', processed, failed)
    return {'processed': processed, 'failed': failed, 'errors': errors}


def clear_sync_queue():
    """Delete every pending/failed entry. Returns how many were removed."""
    deleted, _ = SyncQueueEntry.objects.filter(status__in=['pending', 'failed']).delete()
    logger.info('Sync queue cleared: %d entries', deleted)
    return deleted


def clear_sync_errors():
    SyncMetadata.load()
    SyncMetadata.objects.filter(pk=SyncMetadata.SINGLETON_PK).update(sync_errors=[])


def get_sync_status():
    return {
        'total_samples': SyncedSample.objects.count(),
        'pending_sync': SyncQueueEntry.objects.filter(status='pending').count(),
        'failed_sync': SyncQueueEntry.objects.filter(status='failed').count(),
        'metadata': SyncMetadata.load(),
    }


# ── bulk import ────────────────────────────────────────────────────────────

def _set_progress(total, processed, errors):
    SyncMetadata.objects.filter(pk=SyncMetadata.SINGLETON_PK).update(
        import_progress={'total': total, 'processed': processed, 'errors': errors},
    )


def import_from_benchling(client=None):
    """
    Load every configured sample from Benchling into the local mirror.

    Raises:
        ImportInProgressError: another import holds the flag; nothing is read
            from Benchling in that case
    """
    SyncMetadata.load()
    acquired = SyncMetadata.objects.filter(
        pk=SyncMetadata.SINGLETON_PK, import_in_progress=False,
    ).update(
        import_in_progress=True,
        import_progress={'total': 0, 'processed': 0, 'errors': 0},
        import_started_at=timezone.now(),
    )
    if not acquired:
        meta = SyncMetadata.load()
        raise ImportInProgressError(
            message='An import from Benchling is already in progress.',
            detail={
                'progress': meta.import_progress,
                'started_at': meta.import_started_at.isoformat() if meta.import_started_at else None,
            },
        )

    finished = False
    try:
        client = client or get_lab_client()
        entities = client.list_entities(
            settings.BENCHLING_SCHEMA_ID,
            registry_id=settings.BENCHLING_REGISTRY_ID,
            prefix=settings.BENCHLING_ID_PREFIX,
        )
        total = len(entities)
        _set_progress(total, 0, 0)

        imported = 0
        errors = []
        for index, entity in enumerate(entities, start=1):
            try:
                with transaction.atomic():
                    upsert_from_entity(entity)
                imported += 1
            except (DatabaseError, ValueError) as exc:
                logger.warning('Import of %s failed: %s', entity.entity_registry_id, exc)
                errors.append(f'Sample {entity.entity_registry_id}: {exc}')

            if index % PROGRESS_EVERY == 0:
                _set_progress(total, index, len(errors))

        now = timezone.now()
        SyncMetadata.objects.filter(pk=SyncMetadata.SINGLETON_PK).update(
            import_in_progress=False,
            import_completed_at=now,
            last_successful_sync=now,
            import_progress={'total': total, 'processed': total, 'errors': len(errors)},
        )
        finished = True
    finally:
        if not finished:
            SyncMetadata.objects.filter(pk=SyncMetadata.SINGLETON_PK).update(import_in_progress=False)
            logger.error('Import from Benchling aborted')

    logger.info('Import from Benchling: %d/%d imported, %d errors', imported, total, len(errors))
    return {'total': total, 'imported': imported, 'errors': errors}


# ── webhook ────────────────────────────────────────────────────────────────

def _ignored(event, message):
    logger.info('Benchling webhook %s for %s ignored: %s', event.event_type, event.entity_id, message)
    return {'processed': False, 'message': message, 'eventType': event.event_type}


def handle_benchling_webhook(event, client=None):
    """
    Apply one validated WebhookEvent.

    Filtered, stale and unknown events are acknowledged no-ops. Delete and
    archive events mark the local record archived rather than removing it.
    """
    reason = webhook_filter_reason(event.schema_id, event.entity_type, event.entity_registry_id)
    if reason:
        return _ignored(event, reason)

    now = timezone.now()
    SyncMetadata.load()
    SyncMetadata.objects.filter(pk=SyncMetadata.SINGLETON_PK).update(last_webhook_received=now)

    record = _find_local(event.entity_id, event.entity_registry_id)

    if event.event_type in ARCHIVE_EVENTS:
        if record is None:
            return _ignored(event, 'No local sample for this entity')
        if _is_stale(record, event.modified_at):
            return _ignored(event, 'Stale event discarded')
        record.archived = True
        record.last_modified = event.modified_at or now
        record.last_synced_from_benchling = now
        record.sync_version += 1
        record.save()
        logger.info('Sample %s archived by Benchling %s', record.entity_registry_id, event.event_type)
        return {'processed': True, 'message': 'Sample archived', 'eventType': event.event_type,
                'entityRegistryId': record.entity_registry_id}

    if event.event_type not in UPSERT_EVENTS:
        return _ignored(event, f'Unhandled event type {event.event_type}')

    if _is_stale(record, event.modified_at):
        return _ignored(event, 'Stale event discarded')

    if record is not None and event.fields is not None:
        values = parse_benchling_fields(event.fields, present_only=True)
        _apply_benchling_values(record, values, event.entity_id, event.entity_registry_id,
                                event.modified_at, now)
        record.sync_version += 1
        record.save()
        outcome = 'updated'
    else:
        client = client or get_lab_client()
        entity = client.get_entity(event.entity_id)
        if entity is None:
            return _ignored(event, 'Entity not found in Benchling')
        reason = webhook_filter_reason(entity.schema_id, 'CustomEntity', entity.entity_registry_id)
        if reason:
            return _ignored(event, reason)
        record, outcome = upsert_from_entity(entity, now)
        if outcome == 'stale':
            return _ignored(event, 'Stale event discarded')

    logger.info('Sample %s %s from Benchling %s', record.entity_registry_id, outcome, event.event_type)
    return {'processed': True, 'message': f'Sample {outcome}', 'eventType': event.event_type,
            'entityRegistryId': record.entity_registry_id}
