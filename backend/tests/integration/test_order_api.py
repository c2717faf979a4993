"""
Integration tests: real HTTP requests against the Django views.

Django test Client runs the whole stack:
  HTTP Request -> urls.py -> View -> Service -> ORM -> DB -> Response

Each test checks status_code and the unified body shape. Benchling is
replaced by FakeLabClient through the fake_client fixture.
"""
import json

import pytest

from labsync.models import Order, SyncQueueEntry
from tests.conftest import OrderFactory, auth_headers, provisioned_order


# -------------------------------------------------------------------
# Helper
# -------------------------------------------------------------------

def call(api_client, method, url, payload=None, headers=None):
    """Send a JSON request, return (status_code, body_dict)."""
    kwargs = dict(headers or {})
    if payload is not None:
        kwargs['data'] = json.dumps(payload)
        kwargs['content_type'] = 'application/json'
    response = getattr(api_client, method)(url, **kwargs)
    return response.status_code, json.loads(response.content)


# ===================================================================
# Authentication
# ===================================================================

@pytest.mark.django_db
class TestAuthentication:

    def test_missing_token_is_401(self, api_client):
        order = OrderFactory()

        status, body = call(api_client, 'get', f'/api/orders/{order.id}/')

        assert status == 401
        assert body['type'] == 'authorization'
        assert body['code'] == 'NOT_AUTHENTICATED'

    def test_invalid_token_is_401(self, api_client):
        order = OrderFactory()

        status, body = call(api_client, 'get', f'/api/orders/{order.id}/',
                            headers={'HTTP_AUTHORIZATION': 'Bearer nope'})

        assert status == 401
        assert body['code'] == 'INVALID_TOKEN'

    def test_other_customer_cannot_read(self, api_client):
        order = OrderFactory(user_id='customer-9')

        status, body = call(api_client, 'get', f'/api/orders/{order.id}/', headers=auth_headers('customer-1'))

        assert status == 401
        assert body['code'] == 'NOT_ORDER_OWNER'


# ===================================================================
# Order detail
# ===================================================================

@pytest.mark.django_db
class TestOrderDetail:

    def test_customer_sees_own_moves(self, api_client, customer_headers):
        order = OrderFactory(status='kit-sent')

        status, body = call(api_client, 'get', f'/api/orders/{order.id}/', headers=customer_headers)

        assert status == 200
        assert 'type' not in body
        assert body['status'] == 'kit-sent'
        assert body['availableMoves'] == [{'admin': False, 'newState': 'kit-arrived', 'label': 'Mark as Kit Arrived'}]
        assert 'taskIds' not in body

    def test_admin_sees_task_ids(self, api_client, admin_headers):
        order = provisioned_order()

        status, body = call(api_client, 'get', f'/api/orders/{order.id}/', headers=admin_headers)

        assert status == 200
        assert body['taskIds'] == ['task_seed']
        assert [m['newState'] for m in body['availableMoves']] == ['kit-sent', 'reviewing']

    def test_unknown_order_is_404(self, api_client, admin_headers):
        status, body = call(api_client, 'get', '/api/orders/nope/', headers=admin_headers)

        assert status == 404
        assert body == {'type': 'block', 'code': 'ORDER_NOT_FOUND', 'message': 'Order does not exist',
                        'detail': {'order_id': 'nope'}}


# ===================================================================
# Status changes
# ===================================================================

@pytest.mark.django_db
class TestStatusChange:

    def test_customer_marks_kit_arrived(self, api_client, customer_headers):
        order = OrderFactory(status='kit-sent')

        status, body = call(api_client, 'patch', f'/api/orders/{order.id}/status',
                            {'status': 'kit-arrived'}, customer_headers)

        assert status == 200
        assert body == {'message': 'Ok', 'status': 'kit-arrived'}
        order.refresh_from_db()
        assert order.status == 'kit-arrived'

    def test_customer_cannot_send_kit(self, api_client, customer_headers):
        order = provisioned_order()

        status, body = call(api_client, 'patch', f'/api/orders/{order.id}/status',
                            {'status': 'kit-sent'}, customer_headers)

        assert status == 401
        assert body['code'] == 'TRANSITION_NOT_ALLOWED'
        order.refresh_from_db()
        assert order.status == 'approved'

    def test_missing_status(self, api_client, admin_headers):
        order = OrderFactory()

        status, body = call(api_client, 'patch', f'/api/orders/{order.id}/status', {}, admin_headers)

        assert status == 400
        assert body['code'] == 'MISSING_STATUS'

    def test_unknown_status(self, api_client, admin_headers):
        order = OrderFactory()

        status, body = call(api_client, 'patch', f'/api/orders/{order.id}/status',
                            {'status': 'lost'}, admin_headers)

        assert status == 400
        assert body['code'] == 'INVALID_STATUS'


# ===================================================================
# Approval
# ===================================================================

@pytest.mark.django_db
class TestApprove:

    def test_admin_approves(self, api_client, admin_headers, fake_client):
        order = OrderFactory(status='reviewing')

        status, body = call(api_client, 'post', f'/api/orders/{order.id}/approve', headers=admin_headers)

        assert status == 200
        assert body['message'] == 'Ok'
        assert body['order']['status'] == 'approved'
        assert len(body['order']['orderedSamples']) == 2

    def test_not_ready_returns_retry_message(self, api_client, admin_headers, fake_client):
        order = OrderFactory(status='reviewing')
        fake_client.task_status = 'RUNNING'

        status, body = call(api_client, 'post', f'/api/orders/{order.id}/approve', headers=admin_headers)

        assert status == 500
        assert body['type'] == 'not_ready'
        assert body['message'] == ('Benchling task is not yet fully setup, please wait 1 min '
                                   'before trying to Approve again.')
        order.refresh_from_db()
        assert order.status == 'reviewing'
        assert order.task_ids

    def test_customer_cannot_approve(self, api_client, customer_headers, fake_client):
        order = OrderFactory(status='reviewing')

        status, body = call(api_client, 'post', f'/api/orders/{order.id}/approve', headers=customer_headers)

        assert status == 401
        assert fake_client.calls == []

    def test_benchling_outage_is_502(self, api_client, admin_headers, fake_client):
        order = OrderFactory(status='reviewing')
        fake_client.fail_on = {'create_folder'}

        status, body = call(api_client, 'post', f'/api/orders/{order.id}/approve', headers=admin_headers)

        assert status == 502
        assert body['type'] == 'external'
        order.refresh_from_db()
        assert order.task_ids is None


# ===================================================================
# Samples
# ===================================================================

@pytest.mark.django_db
class TestSamples:

    def test_update_unsubmitted(self, api_client, customer_headers):
        order = provisioned_order()
        samples = [{'name': 'EBM1', 'metadata': {'Water Temp': '14'}}]

        status, body = call(api_client, 'patch', f'/api/orders/{order.id}/samples',
                            {'unsubmittedSamples': samples}, customer_headers)

        assert status == 200
        order.refresh_from_db()
        assert order.unsubmitted_samples == samples

    def test_update_with_foreign_sample(self, api_client, customer_headers):
        order = provisioned_order()

        status, body = call(api_client, 'patch', f'/api/orders/{order.id}/samples',
                            {'unsubmittedSamples': [{'name': 'EBM404'}]}, customer_headers)

        assert status == 400
        assert body['code'] == 'INVALID_SAMPLE_UPDATE'

    def test_submit(self, api_client, customer_headers, fake_client):
        order = provisioned_order()

        status, body = call(api_client, 'post', f'/api/orders/{order.id}/samples/submit',
                            {'sampleIds': ['EBM1']}, customer_headers)

        assert status == 200
        assert body == {'message': 'Ok'}
        order.refresh_from_db()
        assert [s['name'] for s in order.submitted_samples] == ['EBM1']

    def test_submit_during_outage_still_succeeds(self, api_client, customer_headers, fake_client):
        order = provisioned_order()
        fake_client.fail_on = {'update_entities_async'}

        status, _ = call(api_client, 'post', f'/api/orders/{order.id}/samples/submit',
                         {'sampleIds': ['EBM1', 'EBM2']}, customer_headers)

        assert status == 200
        assert SyncQueueEntry.objects.filter(operation='submit').count() == 2
        assert Order.objects.get(pk=order.pk).unsubmitted_samples == []

    def test_submit_requires_sample_ids(self, api_client, customer_headers):
        order = provisioned_order()

        status, body = call(api_client, 'post', f'/api/orders/{order.id}/samples/submit', {}, customer_headers)

        assert status == 400
        assert body['type'] == 'validation_error'

    def test_report(self, api_client, admin_headers):
        order = provisioned_order(submitted_samples=[{'name': 'EBM1', 'status': 'processing'}])

        status, _ = call(api_client, 'patch', f'/api/orders/{order.id}/samples/EBM1/report',
                         {'reportUrl': 'https://reports/EBM1.pdf'}, admin_headers)

        assert status == 200
        order.refresh_from_db()
        assert order.submitted_sample('EBM1')['status'] == 'complete'


# ===================================================================
# Order reports
# ===================================================================

@pytest.mark.django_db
class TestOrderReports:

    def test_add_then_delete(self, api_client, admin_headers):
        order = OrderFactory()

        status, _ = call(api_client, 'post', f'/api/orders/{order.id}/reports',
                         {'filename': 'summary.pdf', 'downloadUrl': 'https://x/summary.pdf'}, admin_headers)
        assert status == 200

        status, _ = call(api_client, 'delete', f'/api/orders/{order.id}/reports?filename=summary.pdf',
                         headers=admin_headers)
        assert status == 200

        order.refresh_from_db()
        assert order.order_reports == []

    def test_customer_cannot_add(self, api_client, customer_headers):
        order = OrderFactory()

        status, body = call(api_client, 'post', f'/api/orders/{order.id}/reports',
                            {'filename': 'a.pdf', 'downloadUrl': 'https://x'}, customer_headers)

        assert status == 401
        assert body['code'] == 'ADMIN_REQUIRED'
