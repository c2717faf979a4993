"""
Celery task wrappers: retry policy and skip-on-conflict.
"""
from unittest.mock import patch

import pytest
from celery.exceptions import Retry

from labsync.exceptions import ExternalSystemError, ImportInProgressError, ValidationError
from labsync.tasks import import_from_benchling_task, process_sync_queue_task


class TestProcessSyncQueueTask:

    def test_returns_queue_result(self):
        result = {'processed': 2, 'failed': 1, 'errors': ['Sample x: boom']}

        with patch('labsync.sync.process_sync_queue', return_value=result) as process:
            assert process_sync_queue_task(limit=10) == result

        process.assert_called_once_with(limit=10)

    def test_benchling_unavailable_retries(self):
        error = ExternalSystemError('down', code='DNS_ERROR')

        with patch('labsync.sync.process_sync_queue', side_effect=error), \
                patch.object(process_sync_queue_task, 'retry', side_effect=Retry()) as retry:
            with pytest.raises(Retry):
                process_sync_queue_task()

        assert retry.call_args.kwargs == {'exc': error, 'countdown': 30}


class TestImportFromBenchlingTask:

    def test_returns_import_result(self):
        result = {'total': 3, 'imported': 3, 'errors': []}

        with patch('labsync.sync.import_from_benchling', return_value=result):
            assert import_from_benchling_task() == result

    def test_running_import_is_skipped(self):
        busy = ImportInProgressError('busy', detail={'progress': {}})

        with patch('labsync.sync.import_from_benchling', side_effect=busy), \
                patch.object(import_from_benchling_task, 'retry') as retry:
            assert import_from_benchling_task() is None

        retry.assert_not_called()

    def test_external_error_retries_with_backoff(self):
        error = ExternalSystemError('denied', code='AUTH_ERROR', status_code=401)

        with patch('labsync.sync.import_from_benchling', side_effect=error), \
                patch.object(import_from_benchling_task, 'retry', side_effect=Retry()) as retry:
            with pytest.raises(Retry):
                import_from_benchling_task()

        assert retry.call_args.kwargs == {'exc': error, 'countdown': 60}

    def test_other_errors_are_not_retried(self):
        with patch('labsync.sync.import_from_benchling', side_effect=ValidationError('bad')), \
                patch.object(import_from_benchling_task, 'retry') as retry:
            with pytest.raises(ValidationError):
                import_from_benchling_task()

        retry.assert_not_called()
