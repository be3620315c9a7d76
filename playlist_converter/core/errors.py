"""Exceptions raised by catalog clients and the conversion pipeline."""

from core.models import Failure, FailureKind, Service, Stage


class ServiceError(Exception):
    """A call to a music service failed."""
    kind = FailureKind.TRANSIENT

    def __init__(self, service: Service, operation: str, message: str = ""):
        super().__init__(f"{service.display_name} {operation}: {message}" if message
                         else f"{service.display_name} {operation}")
        self.service = service
        self.operation = operation
        self.message = message

    @property
    def failure(self) -> Failure:
        return Failure(self.kind, self.service, self.operation, self.message)


class UnauthorizedError(ServiceError):
    """Session for the service has expired."""
    kind = FailureKind.UNAUTHORIZED


class QuotaExceededError(ServiceError):
    """Service rate or usage quota exhausted."""
    kind = FailureKind.QUOTA_EXCEEDED


class NotFoundError(ServiceError):
    """No matching content."""
    kind = FailureKind.NOT_FOUND


class TransientError(ServiceError):
    kind = FailureKind.TRANSIENT


# Errors that must stop a whole job rather than a single track
FATAL_ERRORS = (UnauthorizedError, QuotaExceededError)


class SearchAbortError(Exception):
    """Raised when the search phase must abort (expired session or quota)."""

    def __init__(self, cause: ServiceError):
        super().__init__(f"Search aborted: {cause}")
        self.cause = cause

    @property
    def failure(self) -> Failure:
        return self.cause.failure


class PlaylistWriteError(Exception):
    """Raised when creating or populating the destination playlist fails.

    For the insert stage the compensating delete has already run by the time
    this is raised; ``compensated`` tells whether it succeeded.
    """

    def __init__(self, stage: Stage, failure: Failure,
                 playlist_id: str | None = None, compensated: bool = False):
        super().__init__(f"{stage.value} failed: {failure.describe()}")
        self.stage = stage
        self.failure = failure
        self.playlist_id = playlist_id
        self.compensated = compensated
