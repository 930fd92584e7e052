"""Domain level exceptions and helpers for repository layers."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator

from sqlalchemy import exc as sa_exc

__all__ = [
    "AppError",
    "RepositoryError",
    "NotFoundError",
    "DatabaseOperationError",
    "UnknownDomainError",
    "ReplicaQueryError",
    "QueryTimeoutError",
    "ServiceOverloadError",
    "SchedulerError",
    "QuotaExceededError",
    "JobFailedError",
    "ensure_found",
    "is_query_timeout",
    "handle_sqlalchemy_errors",
    "handle_replica_errors",
    "QUERY_TIMEOUT_ERROR_CODES",
    "SERVICE_OVERLOAD_ERROR_CODE",
]

# MariaDB: ER_STATEMENT_TIMEOUT and CR_SERVER_GONE_ERROR.
QUERY_TIMEOUT_ERROR_CODES = frozenset({1969, 2006})
# MariaDB: ER_USER_LIMIT_REACHED.
SERVICE_OVERLOAD_ERROR_CODE = 1226


class AppError(Exception):
    """Base class for application specific errors."""


class RepositoryError(AppError):
    """Base class for persistence layer failures."""


class NotFoundError(RepositoryError):
    """Raised when a record could not be located."""


class DatabaseOperationError(RepositoryError):
    """Raised for unexpected database errors."""


class UnknownDomainError(RepositoryError):
    """Raised when a wiki domain has no database on the replicas."""


class ReplicaQueryError(RepositoryError):
    """Base class for classified replica failures."""


class QueryTimeoutError(ReplicaQueryError):
    """A replica statement exceeded its allotted time."""

    def __init__(self, timeout_seconds: int | None = None) -> None:
        super().__init__("error-query-timeout")
        self.timeout_seconds = timeout_seconds


class ServiceOverloadError(ReplicaQueryError):
    """The replica refused the connection because the user limit was reached."""

    def __init__(self, retry_after: int = 30) -> None:
        super().__init__("error-service-overload")
        self.retry_after = retry_after


class SchedulerError(AppError):
    """Base class for job scheduling failures."""


class QuotaExceededError(SchedulerError):
    """No database quota is available to start a job."""

    def __init__(self) -> None:
        super().__init__("Database quota exceeded!")


class JobFailedError(SchedulerError):
    """The statistics pipeline failed while running a job."""

    def __init__(self, event_id: int, *, timed_out: bool) -> None:
        outcome = "timed out" if timed_out else "failed"
        super().__init__(f"Job for event {event_id} {outcome}")
        self.event_id = event_id
        self.timed_out = timed_out


@dataclass(slots=True)
class _EntityContext:
    """Internal helper describing the entity for error messages."""

    entity: str | None = None

    def format(self, message: str) -> str:
        if self.entity:
            return f"{self.entity}: {message}"
        return message


def ensure_found(record: object | None, *, entity: str, identifier: object) -> object:
    """Ensure a record exists, otherwise raise :class:`NotFoundError`."""

    if record is None:
        raise NotFoundError(f"{entity} '{identifier}' not found")
    return record


def is_query_timeout(exc: BaseException) -> bool:
    """Return ``True`` when ``exc`` or any exception it wraps is a query timeout."""

    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        if isinstance(current, QueryTimeoutError):
            return True
        seen.add(id(current))
        current = current.__cause__ or current.__context__
    return False


def _driver_error_code(exc: sa_exc.DBAPIError) -> int | None:
    args = getattr(exc.orig, "args", ())
    if args and isinstance(args[0], int):
        return args[0]
    return None


def _translate_sqlalchemy_error(exc: Exception, *, context: _EntityContext) -> RepositoryError:
    if isinstance(exc, sa_exc.DBAPIError):
        return DatabaseOperationError(context.format("database operation failed"))
    return RepositoryError(context.format(str(exc)))


@contextmanager
def handle_sqlalchemy_errors(*, entity: str | None = None) -> Iterator[None]:
    """Translate SQLAlchemy errors from the application database."""

    context = _EntityContext(entity)
    try:
        yield
    except sa_exc.DBAPIError as exc:
        raise _translate_sqlalchemy_error(exc, context=context) from exc


@contextmanager
def handle_replica_errors(*, timeout: int | None = None) -> Iterator[None]:
    """Classify replica driver errors by their MariaDB error code.

    Timeouts and overload are translated; every other driver error propagates
    unchanged.
    """

    try:
        yield
    except sa_exc.DBAPIError as exc:
        code = _driver_error_code(exc)
        if code == SERVICE_OVERLOAD_ERROR_CODE:
            raise ServiceOverloadError() from exc
        if code in QUERY_TIMEOUT_ERROR_CODES:
            raise QueryTimeoutError(timeout) from exc
        raise
