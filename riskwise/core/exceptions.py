"""
Platform-wide exception hierarchy.

Services raise these types; blueprints register handlers against them once
and get consistent HTTP status codes everywhere. The coordinating store
catches them only to reset its loading state before re-raising.

Usage:
    from riskwise.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Goal", resource_id="3f2a...")
    raise ValidationError("sequence_number must be a positive integer",
                          details={"sequence_number": 0})
"""


class NotFoundError(Exception):
    """Raised when a requested record does not exist within the caller's context.

    Args:
        resource: Human-readable entity name (e.g. "Goal", "RiskCause").
        resource_id: The id that was looked up. Included in logs, not in HTTP response.
    """

    def __init__(self, resource: str, resource_id: str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ContextMismatchError(NotFoundError):
    """Raised when a record exists but belongs to another (user_id, period).

    Subclasses NotFoundError so HTTP handlers answer 404 for both cases:
    a 403 would confirm the record exists in another user's register.
    Code paths that need to tell the two apart catch this type first.
    """

    def __init__(self, resource: str, resource_id: str | None = None,
                 user_id: str | None = None, period: str | None = None) -> None:
        super().__init__(resource, resource_id)
        self.user_id = user_id
        self.period = period


class ValidationError(Exception):
    """Raised when input is rejected before any store I/O.

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown. Keys are field names.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class StoreIOError(Exception):
    """Raised when the underlying database call fails.

    The message names the action that failed ("Failed to delete goal ...");
    the original SQLAlchemy exception is chained as ``__cause__``.
    """


class PartialBatchFailure(Exception):
    """Raised when some items of a bulk operation failed.

    Args:
        results: The full list of per-item results, successes included.
    """

    def __init__(self, action: str, results: list) -> None:
        self.action = action
        self.results = results
        failed = [r for r in results if not r.ok]
        super().__init__(f"{action}: {len(failed)} of {len(results)} items failed")

    @property
    def failures(self) -> list:
        return [r for r in self.results if not r.ok]
