"""
Error taxonomy for workflow operations.

Every error carries the HTTP status code it is rendered with and a
human-readable message. The web layer turns them into ``{"detail": ...}``
responses; nothing in the services retries them.
"""
from fastapi import status


class WorkflowError(Exception):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, status_code: int = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)


class ValidationError(WorkflowError):
    """Missing or malformed input, out-of-range values, unknown fields."""
    status_code = status.HTTP_400_BAD_REQUEST


class ForbiddenError(WorkflowError):
    """Caller may not act on this resource."""
    status_code = status.HTTP_403_FORBIDDEN


class NotFoundError(WorkflowError):
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(WorkflowError):
    """Duplicate unique value, invalid state transition, repeated review action."""
    status_code = status.HTTP_409_CONFLICT


class UpstreamError(WorkflowError):
    """The entity store or blob store failed unexpectedly."""
    status_code = status.HTTP_502_BAD_GATEWAY
