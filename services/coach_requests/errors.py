"""
Coach request errors

Store-level failures are exceptions raised by the repository. The request
store catches them at its boundary and hands callers an OperationResult
instead, so nothing past the store ever has to catch.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class ErrorKind(Enum):
    """What went wrong, independent of the user-facing wording"""
    VALIDATION = "validation"
    UNAUTHENTICATED = "unauthenticated"
    DUPLICATE_PENDING = "duplicate_pending"
    ALREADY_ACCEPTED = "already_accepted"
    ALREADY_PROCESSING = "already_processing"
    NOT_FOUND = "not_found"
    ALREADY_RESOLVED = "already_resolved"
    TRANSIENT_NETWORK = "transient_network"
    ASSIGNMENT_FAILED = "assignment_failed"
    UNKNOWN = "unknown"

    @property
    def is_retryable(self) -> bool:
        """Whether a manual retry could plausibly succeed"""
        return self in (ErrorKind.TRANSIENT_NETWORK, ErrorKind.ASSIGNMENT_FAILED, ErrorKind.UNKNOWN)


# ============= STORE EXCEPTIONS =============

class StoreError(Exception):
    """A remote store call failed"""

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code


class UniqueViolationError(StoreError):
    """The write hit a uniqueness constraint (Postgres 23505)"""


class TransientStoreError(StoreError):
    """Network or timeout failure; the same call may succeed later"""


class RecordNotFoundError(StoreError):
    """The addressed row does not exist"""


# ============= RESULT =============

@dataclass(frozen=True)
class OperationResult:
    """Outcome of a request store operation"""
    success: bool
    data: Any = None
    error: Optional[str] = None
    kind: Optional[ErrorKind] = None
    current_status: Optional[str] = None

    @classmethod
    def ok(cls, data: Any = None) -> 'OperationResult':
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, kind: ErrorKind, error: str, current_status: Optional[str] = None) -> 'OperationResult':
        return cls(success=False, error=error, kind=kind, current_status=current_status)

    def to_dict(self) -> dict:
        """Shape used by the view layer: {'success', 'data', 'error', ...}"""
        result = {'success': self.success, 'data': self.data, 'error': self.error}
        if self.kind:
            result['error_code'] = self.kind.value
            result['retry_available'] = self.kind.is_retryable
        if self.current_status:
            result['current_status'] = self.current_status
        return result
