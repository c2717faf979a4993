"""
HTTP surface. Views authenticate, pull arguments out of the request and
delegate; every failure is raised and rendered by unified_exception_handler.
"""

from rest_framework.response import Response
from rest_framework.views import APIView

from . import services, sync
from .authentication import require_admin, require_caller
from .exceptions import BlockError, ValidationError
from .intake import SampleRecordIntakeAdapter, WebhookIntakeAdapter
from .serializers import serialize_order, serialize_sample, serialize_sync_status
from .webhooks import SIGNATURE_HEADER, verify_signature


def _body(request):
    data = request.data
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object.', code='INVALID_JSON')
    return data


def _ok(**extra):
    return {'message': 'Ok', **extra}


# ── orders ─────────────────────────────────────────────────────────────────

class OrderDetailView(APIView):
    """GET /api/orders/<order_id>/"""

    def get(self, request, order_id):
        caller = require_caller(request)
        order = services.get_order_for(order_id, caller)
        return Response(serialize_order(order, caller))


class OrderStatusView(APIView):
    """PATCH /api/orders/<order_id>/status  body: {status}"""

    def patch(self, request, order_id):
        caller = require_caller(request)
        new_status = _body(request).get('status')
        if not new_status:
            raise ValidationError('status is required.', code='MISSING_STATUS')

        order = services.change_status(order_id, new_status, caller)
        return Response(_ok(status=order.status))


class OrderApproveView(APIView):
    """POST /api/orders/<order_id>/approve"""

    def post(self, request, order_id):
        caller = require_admin(request)
        order = services.approve_order(order_id, caller)
        return Response(_ok(order=serialize_order(order, caller)))


class OrderSamplesView(APIView):
    """PATCH /api/orders/<order_id>/samples  body: {unsubmittedSamples, submittedSamples?}"""

    def patch(self, request, order_id):
        caller = require_caller(request)
        body = _body(request)
        if body.get('unsubmittedSamples') is None:
            raise ValidationError('unsubmittedSamples is required.', code='INVALID_SAMPLES')

        services.update_unsubmitted_samples(
            order_id, body['unsubmittedSamples'], caller, submitted=body.get('submittedSamples'),
        )
        return Response(_ok())


class OrderSubmitSamplesView(APIView):
    """POST /api/orders/<order_id>/samples/submit  body: {sampleIds}"""

    def post(self, request, order_id):
        caller = require_caller(request)
        sample_ids = _body(request).get('sampleIds')
        if sample_ids is None:
            raise ValidationError('sampleIds is required.', code='INVALID_SAMPLES')

        services.submit_samples(order_id, sample_ids, caller)
        return Response(_ok())


class SampleReportView(APIView):
    """PATCH /api/orders/<order_id>/samples/<sample_name>/report  body: {reportUrl}"""

    def patch(self, request, order_id, sample_name):
        caller = require_admin(request)
        services.attach_sample_report(order_id, sample_name, _body(request).get('reportUrl'), caller)
        return Response(_ok())


class OrderReportsView(APIView):
    """
    POST   /api/orders/<order_id>/reports  body: {filename, downloadUrl}
    DELETE /api/orders/<order_id>/reports?filename=...
    """

    def post(self, request, order_id):
        caller = require_admin(request)
        body = _body(request)
        services.add_order_report(order_id, body.get('filename'), body.get('downloadUrl'), caller)
        return Response(_ok())

    def delete(self, request, order_id):
        caller = require_admin(request)
        services.remove_order_report(order_id, request.query_params.get('filename'), caller)
        return Response(_ok())


# ── admin: samples ─────────────────────────────────────────────────────────

class AdminSamplesView(APIView):
    """GET/POST/PATCH/DELETE /api/admin/samples/benchling"""

    def get(self, request):
        require_admin(request)
        record_id = request.query_params.get('id')
        if record_id:
            record = sync.get_sample_by_id(record_id)
            if record is None:
                raise BlockError('Sample not found', code='SAMPLE_NOT_FOUND',
                                 detail={'id': record_id}, http_status=404)
            return Response(serialize_sample(record))
        return Response([serialize_sample(r) for r in sync.get_all_samples()])

    def post(self, request):
        caller = require_admin(request)
        data = SampleRecordIntakeAdapter(request.body, request.content_type).process()
        record = sync.create_sample(data, caller)
        return Response(
            {'message': 'Sample created successfully', 'id': str(record.id), 'sample': serialize_sample(record)},
            status=201,
        )

    def patch(self, request):
        caller = require_admin(request)
        data = SampleRecordIntakeAdapter(request.body, request.content_type, partial=True).process()
        record = sync.update_sample(data.record_id, data, caller)
        return Response({'message': 'Sample updated successfully', 'sample': serialize_sample(record)})

    def delete(self, request):
        caller = require_admin(request)
        record_id = request.query_params.get('id')
        if not record_id:
            raise ValidationError('Sample ID required', code='MISSING_ID')
        sync.delete_sample(record_id, caller)
        return Response({'message': 'Sample deleted successfully'})


class AdminImportView(APIView):
    """POST /api/admin/samples/import"""

    def post(self, request):
        require_admin(request)
        result = sync.import_from_benchling()
        return Response({'message': 'Import completed', **result})


class AdminSyncView(APIView):
    """
    GET    /api/admin/samples/sync                 sync status
    POST   /api/admin/samples/sync  {action}       process-queue | import | clear-errors
    DELETE /api/admin/samples/sync                 clear pending/failed queue entries
    """

    def get(self, request):
        require_admin(request)
        return Response(serialize_sync_status(sync.get_sync_status()))

    def post(self, request):
        require_admin(request)
        action = _body(request).get('action')

        if action == 'process-queue':
            return Response({'message': 'Sync queue processed', **sync.process_sync_queue()})
        if action == 'import':
            return Response({'message': 'Import completed', **sync.import_from_benchling()})
        if action == 'clear-errors':
            sync.clear_sync_errors()
            return Response({'message': 'Sync errors cleared'})

        raise ValidationError('Invalid action', code='INVALID_ACTION',
                              detail={'allowed': ['process-queue', 'import', 'clear-errors']})

    def delete(self, request):
        require_admin(request)
        deleted = sync.clear_sync_queue()
        return Response({'message': 'Sync queue cleared', 'deleted': deleted})


# ── webhooks ───────────────────────────────────────────────────────────────

class BenchlingWebhookView(APIView):
    """
    POST /api/webhooks/benchling

    No user authentication; the HMAC signature is checked instead when a
    secret is configured. Irrelevant events still answer 200.
    """

    authentication_classes = []
    permission_classes = []

    def post(self, request):
        body = request.body
        verify_signature(body, request.headers.get(SIGNATURE_HEADER))
        event = WebhookIntakeAdapter(body, request.content_type).process()
        return Response(sync.handle_benchling_webhook(event))
