"""
Unit tests for the exception classes and unified_exception_handler.

No database needed:
1. BaseAppException defaults
2. default type / code / http_status of each subclass
3. code / http_status overrides
4. the handler renders every BaseAppException the same way
"""
import json

from rest_framework.exceptions import MethodNotAllowed, NotFound, ParseError
from rest_framework.exceptions import ValidationError as DRFValidationError

from labsync.exception_handler import unified_exception_handler
from labsync.exceptions import (
    AuthorizationError,
    BaseAppException,
    BlockError,
    ExternalSystemError,
    ImportInProgressError,
    ProvisioningFailedError,
    TaskNotReadyError,
    ValidationError,
)


class TestBaseAppException:

    def test_defaults(self):
        exc = BaseAppException('something broke')
        assert exc.message == 'something broke'
        assert exc.type == 'error'
        assert exc.code == 'UNKNOWN_ERROR'
        assert exc.http_status == 500
        assert exc.detail is None

    def test_override_code_and_status(self):
        exc = BaseAppException('bad', code='CUSTOM_CODE', http_status=418)
        assert exc.code == 'CUSTOM_CODE'
        assert exc.http_status == 418

    def test_override_does_not_leak_to_class(self):
        BlockError('gone', code='ORDER_NOT_FOUND', http_status=404)
        assert BlockError.code == 'BUSINESS_BLOCK'
        assert BlockError.http_status == 409


class TestSubclasses:

    def test_validation_error(self):
        exc = ValidationError('bad input')
        assert (exc.type, exc.code, exc.http_status) == ('validation_error', 'VALIDATION_ERROR', 400)

    def test_authorization_error_is_401(self):
        exc = AuthorizationError('Not authorized.', code='TRANSITION_NOT_ALLOWED')
        assert exc.type == 'authorization'
        assert exc.http_status == 401

    def test_import_in_progress_is_a_block(self):
        exc = ImportInProgressError('busy', detail={'progress': {'total': 5, 'processed': 2, 'errors': 0}})
        assert isinstance(exc, BlockError)
        assert exc.code == 'IMPORT_IN_PROGRESS'
        assert exc.http_status == 409

    def test_task_not_ready_is_distinguished(self):
        exc = TaskNotReadyError('wait')
        assert exc.type == 'not_ready'
        assert exc.code == 'BENCHLING_TASK_NOT_READY'
        assert exc.http_status == 500

    def test_provisioning_failed(self):
        exc = ProvisioningFailedError('task failed')
        assert exc.code == 'BENCHLING_TASK_FAILED'
        assert exc.http_status == 500

    def test_external_system_error_keeps_upstream_status(self):
        exc = ExternalSystemError('denied', code='PERMISSION_ERROR', status_code=403)
        assert exc.http_status == 502
        assert exc.status_code == 403
        assert exc.code == 'PERMISSION_ERROR'


class TestUnifiedExceptionHandler:

    def _render(self, exc):
        response = unified_exception_handler(exc, {})
        return response.status_code, json.loads(response.content)

    def test_app_exception_body(self):
        status, body = self._render(AuthorizationError('Not authorized.', code='ADMIN_REQUIRED'))
        assert status == 401
        assert body == {'type': 'authorization', 'code': 'ADMIN_REQUIRED', 'message': 'Not authorized.'}

    def test_detail_included_when_present(self):
        status, body = self._render(BlockError('gone', code='ORDER_NOT_FOUND', http_status=404,
                                               detail={'order_id': 'x'}))
        assert status == 404
        assert body['detail'] == {'order_id': 'x'}

    def test_not_ready_message_reaches_client(self):
        status, body = self._render(TaskNotReadyError('please wait 1 min'))
        assert status == 500
        assert body['type'] == 'not_ready'
        assert body['message'] == 'please wait 1 min'

    def test_drf_validation_error_is_folded_in(self):
        status, body = self._render(DRFValidationError({'status': ['required']}))
        assert status == 400
        assert body['type'] == 'validation_error'
        assert body['detail'] == {'status': ['required']}

    def test_not_ready_carries_retry_after(self):
        response = unified_exception_handler(TaskNotReadyError('please wait 1 min'), {})
        assert response['Retry-After'] == '60'

    def test_other_api_exceptions_use_the_same_body(self):
        status, body = self._render(NotFound())
        assert status == 404
        assert body == {'type': 'block', 'code': 'NOT_FOUND', 'message': 'Not found.'}

    def test_malformed_json_is_a_validation_error(self):
        status, body = self._render(ParseError('JSON parse error'))
        assert status == 400
        assert body['type'] == 'validation_error'
        assert body['code'] == 'PARSE_ERROR'

    def test_method_not_allowed(self):
        status, body = self._render(MethodNotAllowed('PUT'))
        assert status == 405
        assert body['code'] == 'METHOD_NOT_ALLOWED'

    def test_unknown_exceptions_are_not_handled(self):
        assert unified_exception_handler(RuntimeError('boom'), {}) is None
