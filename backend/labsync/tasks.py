import logging

from celery import shared_task

from .exceptions import BaseAppException, ExternalSystemError, ImportInProgressError

logger = logging.getLogger(__name__)


@shared_task(
    bind=True,
    max_retries=3,
    default_retry_delay=30,
    acks_late=True,
    reject_on_worker_lost=True,
)
def process_sync_queue_task(self, limit: int = 50):
    """
    Drain the Benchling sync queue. Scheduled by Celery beat every
    BENCHLING_SYNC_INTERVAL_MINUTES.

    Entry failures are recorded on the entries themselves; only a failure to
    reach Benchling at all (client construction) is retried here.
    """
    from labsync.sync import process_sync_queue

    logger.info('[Celery][process_sync_queue] start (attempt %d/%d)',
                self.request.retries + 1, self.max_retries + 1)
    try:
        result = process_sync_queue(limit=limit)
    except ExternalSystemError as exc:
        countdown = self.default_retry_delay * (2 ** self.request.retries)
        logger.warning('[Celery][process_sync_queue] Benchling unavailable (%s), retry in %ds',
                       exc.code, countdown)
        raise self.retry(exc=exc, countdown=countdown)

    logger.info('[Celery][process_sync_queue] done: %d processed, %d failed',
                result['processed'], result['failed'])
    return result


@shared_task(
    bind=True,
    max_retries=3,
    default_retry_delay=60,
    acks_late=True,
    reject_on_worker_lost=True,
)
def import_from_benchling_task(self):
    """
    Bulk import from Benchling in the background.

    A concurrent import is a skip, not a failure. Classified Benchling errors
    are retried with exponential backoff: 60s -> 120s -> 240s.
    """
    from labsync.sync import import_from_benchling

    try:
        result = import_from_benchling()
    except ImportInProgressError as exc:
        logger.info('[Celery][import_from_benchling] skipped, import already running: %s', exc.detail)
        return None
    except ExternalSystemError as exc:
        if self.request.retries < self.max_retries:
            countdown = self.default_retry_delay * (2 ** self.request.retries)
            logger.warning('[Celery][import_from_benchling] %s, retry in %ds', exc.code, countdown)
            raise self.retry(exc=exc, countdown=countdown)
        logger.error('[Celery][import_from_benchling] giving up after %d attempts: %s',
                     self.max_retries + 1, exc.message)
        raise
    except BaseAppException as exc:
        logger.error('[Celery][import_from_benchling] %s: %s', exc.code, exc.message)
        raise

    logger.info('[Celery][import_from_benchling] %d/%d imported, %d errors',
                result['imported'], result['total'], len(result['errors']))
    return result
