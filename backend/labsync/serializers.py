"""
Response serializers: ORM objects -> JSON-able dicts.

Output formatting only. Input parsing and validation live in labsync/intake/.
"""

from .workflow import available_moves


def _iso(value):
    return value.isoformat() if value else None


def serialize_move(move):
    return {'admin': move.admin, 'newState': move.new_state.value, 'label': move.label}


def serialize_order(order, caller=None):
    """Order detail; availableMoves lists what this caller may do next."""
    response = {
        'id': order.id,
        'status': order.status,
        'userId': order.user_id,
        'title': order.title,
        'proposal': order.proposal,
        'customer': order.customer,
        'deliveryAddress': order.delivery_address,
        'requestedServices': order.requested_services,
        'questionnaireAnswers': order.questionnaire_answers,
        'orderedSamples': order.ordered_samples,
        'unsubmittedSamples': order.unsubmitted_samples,
        'submittedSamples': order.submitted_samples,
        'orderReports': order.order_reports,
        'dispatchedAt': _iso(order.dispatched_at),
        'createdAt': _iso(order.created_at),
        'updatedAt': _iso(order.updated_at),
    }
    if caller is not None:
        response['availableMoves'] = [serialize_move(m) for m in available_moves(order.status, caller.is_admin)]
        if caller.is_admin:
            response['taskIds'] = order.task_ids
    return response


def serialize_sample(record):
    return {
        'id': str(record.id),
        'benchlingId': record.benchling_id,
        'entityRegistryId': record.entity_registry_id,
        'sampleId': record.sample_id,
        'clientName': record.client_name,
        'sampleType': record.sample_type,
        'sampleFormat': record.sample_format,
        'sampleDate': record.sample_date,
        'sampleStatus': record.sample_status,
        'orderId': record.order_id,
        'lastModified': _iso(record.last_modified),
        'lastSyncedFromWebapp': _iso(record.last_synced_from_webapp),
        'lastSyncedFromBenchling': _iso(record.last_synced_from_benchling),
        'syncVersion': record.sync_version,
        'createdIn': record.created_in,
        'createdBy': record.created_by,
        'createdAt': _iso(record.created_at),
        'archived': record.archived,
    }


def serialize_sync_status(status):
    meta = status['metadata']
    return {
        'totalSamples': status['total_samples'],
        'pendingSync': status['pending_sync'],
        'failedSync': status['failed_sync'],
        'lastSync': _iso(meta.last_successful_sync),
        'lastWebhookReceived': _iso(meta.last_webhook_received),
        'importInProgress': meta.import_in_progress,
        'importProgress': meta.import_progress,
        'importStartedAt': _iso(meta.import_started_at),
        'importCompletedAt': _iso(meta.import_completed_at),
        'syncErrors': meta.sync_errors,
    }
