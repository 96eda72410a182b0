"""
Domain error taxonomy.

Handlers in ``miturn.core.exception_handlers`` map each family onto an HTTP
status; batch passes catch ``DeferredError`` and record it instead.
"""
from typing import Any


class MiTurnError(Exception):
    status_code: int = 400

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context


class ValidationError(MiTurnError):
    """Malformed schedule, allocation or ledger input, rejected before persistence."""
    status_code = 400


class NotFoundError(MiTurnError):
    status_code = 404


class ConflictError(MiTurnError):
    """Concurrent or duplicate write. The stored state is left untouched."""
    status_code = 409


class CannotReopenTransaction(ConflictError):
    pass


class DeferredError(MiTurnError):
    """A business rule is not fulfilled yet; the next pass tries again."""
    status_code = 200


class PayoutDeferred(DeferredError):
    def __init__(self, message: str, *, reason: str, overdue_members: list | None = None, **context: Any):
        super().__init__(message, reason=reason, **context)
        self.reason = reason
        self.overdue_members = overdue_members or []

    @property
    def overdue_user_ids(self) -> list:
        return [member.user_id for member in self.overdue_members]


class AllocationFailed(DeferredError):
    def __init__(self, message: str, *, allocation: Any = None, **context: Any):
        super().__init__(message, **context)
        self.allocation = allocation


class CollaboratorError(MiTurnError):
    """An external service (bank, mail, analytics) failed."""
    status_code = 502
