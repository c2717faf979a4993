"""
Unified exception hierarchy.

Every business exception derives from BaseAppException and carries:
- type:        error category (validation_error / authorization / block / not_ready / external)
- code:        machine-readable code (TRANSITION_NOT_ALLOWED / ORDER_NOT_FOUND / ...)
- message:     short human-readable description
- detail:      optional extra payload (dict / list / None)
- http_status: HTTP status code

Views only raise; exception_handler renders the response.
"""


class BaseAppException(Exception):
    """Base class for all business exceptions."""

    type = 'error'
    code = 'UNKNOWN_ERROR'
    http_status = 500

    def __init__(self, message, code=None, detail=None, http_status=None):
        self.message = message
        if code is not None:
            self.code = code
        if http_status is not None:
            self.http_status = http_status
        self.detail = detail
        super().__init__(message)


class ValidationError(BaseAppException):
    """Malformed or missing input. 400, never retried."""

    type = 'validation_error'
    code = 'VALIDATION_ERROR'
    http_status = 400


class AuthorizationError(BaseAppException):
    """
    Caller is not allowed to perform the action.

    Raised before any state mutation. Always 401, including for transitions
    the caller's role may not invoke: the client is told the action was not
    permitted rather than that the server failed.
    """

    type = 'authorization'
    code = 'NOT_AUTHORIZED'
    http_status = 401


class BlockError(BaseAppException):
    """Business rule blocks the operation. 409 (404 for missing resources)."""

    type = 'block'
    code = 'BUSINESS_BLOCK'
    http_status = 409


class ImportInProgressError(BlockError):
    """A bulk import already holds the import flag; detail carries its progress."""

    code = 'IMPORT_IN_PROGRESS'


class TaskNotReadyError(BaseAppException):
    """
    External provisioning has not finished yet.

    Distinguished from generic failures so the client can retry the whole
    request after a delay.
    """

    type = 'not_ready'
    code = 'BENCHLING_TASK_NOT_READY'
    http_status = 500


class ProvisioningFailedError(BaseAppException):
    """An external task reached a terminal status other than SUCCEEDED."""

    type = 'external'
    code = 'BENCHLING_TASK_FAILED'
    http_status = 500


class ExternalSystemError(BaseAppException):
    """Benchling call failed. code is one of the classified error kinds."""

    type = 'external'
    code = 'UNKNOWN_ERROR'
    http_status = 502

    def __init__(self, message, code=None, detail=None, http_status=None, status_code=None):
        super().__init__(message, code=code, detail=detail, http_status=http_status)
        # upstream HTTP status, None for transport failures
        self.status_code = status_code
