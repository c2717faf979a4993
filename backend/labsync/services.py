import logging
import time
from collections import defaultdict

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from .benchling import get_lab_client
from .benchling.entities import build_order_entity, build_sample_update, build_service_samples
from .exceptions import (
    AuthorizationError,
    BlockError,
    ExternalSystemError,
    ProvisioningFailedError,
    TaskNotReadyError,
    ValidationError,
)
from .models import Order, OrderStatus, SampleStatus, SyncQueueEntry, now_millis, service_from_id
from .workflow import is_transition_allowed, parse_status, status_update_fields

logger = logging.getLogger(__name__)

NOT_READY_MESSAGE = (
    'Benchling task is not yet fully setup, please wait 1 min before trying to Approve again.'
)


def get_order(order_id):
    """Get order by ID. Raises BlockError (404) if not found."""
    try:
        return Order.objects.get(id=order_id)
    except Order.DoesNotExist:
        raise BlockError(
            message='Order does not exist',
            code='ORDER_NOT_FOUND',
            detail={'order_id': str(order_id)},
            http_status=404,
        )


def _require_owner_or_admin(order, caller):
    if not caller.is_admin and order.user_id != caller.uid:
        raise AuthorizationError('Not authorized.', code='NOT_ORDER_OWNER')


def get_order_for(order_id, caller):
    """Order detail for its owner or an admin."""
    order = get_order(order_id)
    _require_owner_or_admin(order, caller)
    return order


def _require_admin(caller):
    if not caller.is_admin:
        raise AuthorizationError('Not authorized.', code='ADMIN_REQUIRED')


def _transition_denied(current, requested):
    return AuthorizationError(
        message=f'Moving an order from {current} to {requested} is not permitted.',
        code='TRANSITION_NOT_ALLOWED',
        detail={'from': current, 'to': requested},
    )


# ── status changes ─────────────────────────────────────────────────────────

def change_status(order_id, new_status, caller, client=None):
    """
    Move an order to new_status if the caller's role allows it.

    Entering `approved` always goes through approve_order so the status is
    never visible without provisioned samples.
    """
    requested = parse_status(new_status)
    if requested is None:
        raise ValidationError(
            message=f'Unknown order status: {new_status!r}.',
            code='INVALID_STATUS',
            detail={'allowed': [s.value for s in OrderStatus]},
        )

    order = get_order(order_id)
    _require_owner_or_admin(order, caller)

    if not is_transition_allowed(order.status, requested, caller.is_admin):
        raise _transition_denied(order.status, requested.value)

    if requested == OrderStatus.APPROVED:
        return approve_order(order_id, caller, client=client)

    now = timezone.now()
    fields = status_update_fields(requested, now)
    # conditional on the status the guard just checked
    updated = Order.objects.filter(pk=order.pk, status=order.status).update(updated_at=now, **fields)
    if not updated:
        raise BlockError(
            message='Order status changed while the request was being processed. Please reload.',
            code='STATUS_CHANGED',
            detail={'expected': order.status},
        )

    logger.info('Order %s: %s -> %s by %s', order.pk, order.status, requested.value, caller.uid)
    order.refresh_from_db()
    return order


# ── approval ───────────────────────────────────────────────────────────────

def wait_for_tasks(client, task_ids, timeout=None, poll_interval=None,
                   sleep=time.sleep, clock=time.monotonic):
    """
    Poll every task until all have SUCCEEDED, bounded by `timeout` seconds.

    Returns the TaskStatus objects in task_ids order. timeout=0 polls once.

    Raises:
        ProvisioningFailedError: a task reached FAILED
        TaskNotReadyError: some task had not succeeded by the deadline
    """
    timeout = settings.BENCHLING_TASK_TIMEOUT if timeout is None else timeout
    poll_interval = settings.BENCHLING_TASK_POLL_INTERVAL if poll_interval is None else poll_interval

    deadline = clock() + timeout
    finished = {}

    while True:
        for task_id in task_ids:
            if task_id in finished:
                continue
            status = client.get_task_status(task_id)
            if status.failed:
                raise ProvisioningFailedError(
                    message=f'Benchling task {task_id} failed: {status.message or "no reason given"}.',
                    detail={'task_id': task_id},
                )
            if status.succeeded:
                finished[task_id] = status

        pending = [t for t in task_ids if t not in finished]
        if not pending:
            return [finished[t] for t in task_ids]

        if clock() + poll_interval > deadline:
            logger.info('Benchling tasks not ready after %ss: %s', timeout, pending)
            raise TaskNotReadyError(NOT_READY_MESSAGE, detail={'pending_task_ids': pending})

        sleep(poll_interval)


def ordered_samples_from_tasks(statuses):
    """One descriptor per entity created by the bulk-create tasks."""
    return [
        {
            'name': entity.get('entityRegistryId'),
            'apiId': entity.get('id'),
            'service': service_from_id(entity.get('entityRegistryId')),
        }
        for status in statuses
        for entity in status.created_entities()
    ]


def _save_step(order, key, value, index=None):
    """
    Save one issued external id into order.provisioning. If another request
    already saved an id for the same step, that id stands and is returned.
    """
    with transaction.atomic():
        locked = Order.objects.select_for_update().get(pk=order.pk)
        progress = dict(locked.provisioning or {})
        if index is None:
            steps, slot = progress, key
        else:
            steps = progress[key] = dict(progress.get(key) or {})
            slot = str(index)

        if steps.get(slot):
            if steps[slot] != value:
                logger.warning('Order %s: provisioning raced on %s %s, adopting %s (discarding %s)',
                               order.pk, key, slot, steps[slot], value)
            value = steps[slot]
        else:
            steps[slot] = value
            locked.provisioning = progress
            locked.save(update_fields=['provisioning', 'updated_at'])

    order.provisioning = progress
    return value


def _provision(order, client):
    """
    Create the folder, order entity and one bulk-create task per service.

    Every external id is saved to order.provisioning as soon as it is issued,
    so a retry after a failure part way through resumes where it stopped.
    Once all tasks are issued their ids move to task_ids; if another request
    persisted task_ids first, theirs win.
    """
    folder_id = (order.provisioning or {}).get('folderId') or _save_step(
        order, 'folderId', client.create_folder(order.id, settings.BENCHLING_ORDERS_FOLDER_ID),
    )
    order_entity_id = order.provisioning.get('orderEntityId') or _save_step(
        order, 'orderEntityId', client.create_custom_entity(build_order_entity(order, folder_id)),
    )

    task_ids = []
    for index, service_item in enumerate(order.requested_services or []):
        issued = (order.provisioning.get('tasks') or {}).get(str(index))
        if issued:
            task_ids.append(issued)
            continue
        entities = build_service_samples(order_entity_id, folder_id, service_item)
        if not entities:
            logger.warning('Order %s: no Benchling schema for service %r, skipped',
                           order.pk, service_item.get('service'))
            continue
        task_ids.append(_save_step(order, 'tasks', client.create_entities_async(entities), index=index))

    claimed = Order.objects.filter(pk=order.pk, task_ids__isnull=True).update(
        task_ids=task_ids, updated_at=timezone.now(),
    )
    if not claimed:
        winner = Order.objects.values_list('task_ids', flat=True).get(pk=order.pk)
        logger.warning('Order %s: provisioning raced, adopting task ids %s (discarding %s)',
                       order.pk, winner, task_ids)
        return winner

    logger.info('Order %s: provisioning started, task ids %s', order.pk, task_ids)
    return task_ids


def approve_order(order_id, caller, client=None, sleep=time.sleep, clock=time.monotonic):
    """
    Approve an order, provisioning its samples in Benchling.

    Safe to call repeatedly: persisted task ids are reused, so a retry after
    TaskNotReadyError resumes at polling instead of provisioning again.
    """
    _require_admin(caller)
    order = get_order(order_id)

    if order.status == OrderStatus.APPROVED and order.ordered_samples is not None:
        return order

    if order.status != OrderStatus.APPROVED and not is_transition_allowed(
            order.status, OrderStatus.APPROVED, is_admin=True):
        raise _transition_denied(order.status, OrderStatus.APPROVED.value)

    if order.ordered_samples is not None:
        Order.objects.filter(pk=order.pk).update(status=OrderStatus.APPROVED, updated_at=timezone.now())
        logger.info('Order %s re-approved with existing samples', order.pk)
        order.refresh_from_db()
        return order

    client = client or get_lab_client()
    task_ids = order.task_ids if order.task_ids is not None else _provision(order, client)

    statuses = wait_for_tasks(client, task_ids, sleep=sleep, clock=clock)
    ordered_samples = ordered_samples_from_tasks(statuses)

    now = timezone.now()
    written = Order.objects.filter(pk=order.pk, ordered_samples__isnull=True).update(
        status=OrderStatus.APPROVED, ordered_samples=ordered_samples, updated_at=now,
    )
    if not written:
        Order.objects.filter(pk=order.pk).update(status=OrderStatus.APPROVED, updated_at=now)

    logger.info('Order %s approved with %d samples', order.pk, len(ordered_samples))
    order.refresh_from_db()
    return order


# ── samples ────────────────────────────────────────────────────────────────

def _sample_names(samples, field='unsubmittedSamples'):
    if not isinstance(samples, list) or not all(isinstance(s, dict) and s.get('name') for s in samples):
        raise ValidationError(
            message=f'{field} must be a list of samples with a name.',
            code='INVALID_SAMPLES',
        )
    return [s['name'] for s in samples]


def update_unsubmitted_samples(order_id, unsubmitted, caller, submitted=None):
    """
    Record sample metadata ahead of return.

    Customers may only edit unsubmitted samples of their own order; admins
    may also replace the submitted list.
    """
    names = _sample_names(unsubmitted)
    if submitted is not None:
        _sample_names(submitted, 'submittedSamples')

    order = get_order(order_id)
    _require_owner_or_admin(order, caller)
    fields = {'unsubmitted_samples': unsubmitted}

    if caller.is_admin:
        if submitted is not None:
            fields['submitted_samples'] = submitted
    else:
        if submitted is not None:
            raise AuthorizationError('Only administrators can change submitted samples.',
                                     code='ADMIN_REQUIRED')

        errors = []
        if len(names) != len(set(names)):
            errors.append('Sample names are not distinct.')
        ordered = {s.get('name') for s in order.ordered_samples or []}
        if any(n not in ordered for n in names):
            errors.append('Not all samples belong to the order.')
        already = {s.get('name') for s in order.submitted_samples or []}
        if any(n in already for n in names):
            errors.append('Some samples were already submitted.')
        if errors:
            raise ValidationError(
                message=errors[0],
                code='INVALID_SAMPLE_UPDATE',
                detail={'errors': errors, 'samples': names},
            )

    Order.objects.filter(pk=order.pk).update(updated_at=timezone.now(), **fields)
    order.refresh_from_db()
    return order


def _queue_submit_entries(order, updates, error):
    SyncQueueEntry.objects.bulk_create([
        SyncQueueEntry(
            operation='submit',
            target_sample_id=name,
            benchling_id=entity['id'],
            payload={'orderId': order.pk, 'entity': entity},
            last_error=str(error),
        )
        for name, entity in updates
    ])


def push_sample_updates(order, samples, client):
    """
    Push returned samples to Benchling, one bulk update per service.

    If the push fails or cannot be confirmed in time, a `submit` queue entry
    is written per sample instead. Returns True when Benchling confirmed.
    """
    api_ids = {s.get('name'): s.get('apiId') for s in order.ordered_samples or []}
    missing = [s['name'] for s in samples if not api_ids.get(s['name'])]
    if missing:
        raise BlockError(
            message='Some samples have not been provisioned in Benchling.',
            code='SAMPLE_NOT_PROVISIONED',
            detail={'samples': missing},
        )

    by_service = defaultdict(list)
    for sample in samples:
        by_service[sample.get('service')].append(
            (sample['name'], build_sample_update(sample, api_ids[sample['name']]))
        )
    updates = [u for group in by_service.values() for u in group]

    try:
        task_ids = [
            client.update_entities_async([entity for _, entity in group])
            for group in by_service.values()
        ]
        wait_for_tasks(client, task_ids)
    except (ExternalSystemError, TaskNotReadyError, ProvisioningFailedError) as exc:
        logger.warning('Order %s: Benchling sample update not confirmed (%s), queued %d samples',
                       order.pk, exc.code, len(updates))
        _queue_submit_entries(order, updates, exc)
        return False

    return True


def submit_samples(order_id, sample_names, caller, client=None):
    """
    Move the named unsubmitted samples to submitted.

    Admins additionally re-push named samples that were already submitted;
    those keep their single entry in submitted_samples. The Benchling push
    (or its queue entries) happens before the local write.
    """
    if not isinstance(sample_names, list) or not all(isinstance(n, str) for n in sample_names):
        raise ValidationError('sampleIds must be a list of sample names.', code='INVALID_SAMPLES')

    order = get_order(order_id)
    _require_owner_or_admin(order, caller)

    names = set(sample_names)
    to_submit = [s for s in order.unsubmitted_samples or [] if s.get('name') in names]
    to_resubmit = (
        [s for s in order.submitted_samples or [] if s.get('name') in names]
        if caller.is_admin else []
    )
    if not to_submit and not to_resubmit:
        return order

    stamp = now_millis()
    returned = [{**s, 'status': SampleStatus.SAMPLE_RETURNED.value, 'lastUpdated': stamp} for s in to_submit]

    push_sample_updates(order, returned + to_resubmit, client or get_lab_client())

    with transaction.atomic():
        fresh = Order.objects.select_for_update().get(pk=order.pk)
        already = {s.get('name') for s in fresh.submitted_samples or []}
        moved = {s['name'] for s in returned}
        fresh.unsubmitted_samples = [s for s in fresh.unsubmitted_samples or [] if s.get('name') not in moved]
        fresh.submitted_samples = list(fresh.submitted_samples or []) + [
            s for s in returned if s['name'] not in already
        ]
        fresh.save(update_fields=['unsubmitted_samples', 'submitted_samples', 'updated_at'])

    logger.info('Order %s: %d samples submitted, %d resubmitted by %s',
                order.pk, len(returned), len(to_resubmit), caller.uid)
    return fresh


def attach_sample_report(order_id, sample_name, report_url, caller):
    """Attach a sample's report and mark it complete. Admin only."""
    _require_admin(caller)

    with transaction.atomic():
        order = get_order(order_id)
        order = Order.objects.select_for_update().get(pk=order.pk)

        sample = order.submitted_sample(sample_name)
        if sample is None:
            raise BlockError(
                message='Sample does not exist on order.',
                code='SAMPLE_NOT_FOUND',
                detail={'sample': sample_name},
                http_status=404,
            )
        sample['reportUrl'] = report_url or None
        sample['status'] = SampleStatus.COMPLETE.value
        sample['lastUpdated'] = now_millis()
        order.save(update_fields=['submitted_samples', 'updated_at'])

    return order


# ── order reports ──────────────────────────────────────────────────────────

def add_order_report(order_id, filename, download_url, caller):
    _require_admin(caller)
    if not filename or not download_url:
        raise ValidationError('filename and downloadUrl are required.', code='INVALID_REPORT')

    with transaction.atomic():
        order = get_order(order_id)
        order = Order.objects.select_for_update().get(pk=order.pk)
        reports = [r for r in order.order_reports or [] if r.get('filename') != filename]
        reports.append({'filename': filename, 'downloadUrl': download_url})
        order.order_reports = reports
        order.save(update_fields=['order_reports', 'updated_at'])
    return order


def remove_order_report(order_id, filename, caller):
    _require_admin(caller)
    if not filename:
        raise ValidationError('filename is required.', code='INVALID_REPORT')

    with transaction.atomic():
        order = get_order(order_id)
        order = Order.objects.select_for_update().get(pk=order.pk)
        order.order_reports = [r for r in order.order_reports or [] if r.get('filename') != filename]
        order.save(update_fields=['order_reports', 'updated_at'])
    return order
