# ballotledger/errors.py
# Error taxonomy shared by the adapters, the coordinator and the HTTP layer.
from enum import Enum
from typing import Optional


class CoordinatorError(Exception):
    """Base class for every error the coordinator surfaces to its caller."""

    category = "error"
    status_code = 500
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {
            "detail": self.message,
            "category": self.category,
            "retryable": self.retryable,
        }


class NotFoundError(CoordinatorError):
    category = "not_found"
    status_code = 404


class PermissionDeniedError(CoordinatorError):
    category = "permission_denied"
    status_code = 403


class StateError(CoordinatorError):
    category = "invalid_state"
    status_code = 409


class VoteInProgressError(StateError):
    category = "vote_in_progress"


class AlreadyVotedError(CoordinatorError):
    category = "already_voted"
    status_code = 409


class NotEligibleError(CoordinatorError):
    category = "not_eligible"
    status_code = 403


class ValidationError(CoordinatorError):
    category = "invalid_input"
    status_code = 422


class AdapterErrorKind(str, Enum):
    UNREACHABLE = "unreachable"
    TIMEOUT = "timeout"
    REJECTED = "rejected"


class AdapterError(CoordinatorError):
    """Transport-level failure reported by a backing store adapter."""

    def __init__(self, kind: AdapterErrorKind, message: str, backend: Optional[str] = None):
        super().__init__(message)
        self.kind = kind
        self.backend = backend

    @property
    def category(self) -> str:
        if self.kind == AdapterErrorKind.REJECTED:
            return "backend_rejected"
        return "backend_unavailable"

    @property
    def retryable(self) -> bool:
        return self.kind in (AdapterErrorKind.UNREACHABLE, AdapterErrorKind.TIMEOUT)

    @property
    def status_code(self) -> int:
        return 502 if self.kind == AdapterErrorKind.REJECTED else 503

    def __repr__(self) -> str:
        return f"AdapterError(kind={self.kind.value!r}, backend={self.backend!r}, message={self.message!r})"


def unreachable(message: str, backend: Optional[str] = None) -> AdapterError:
    return AdapterError(AdapterErrorKind.UNREACHABLE, message, backend)


def timeout(message: str, backend: Optional[str] = None) -> AdapterError:
    return AdapterError(AdapterErrorKind.TIMEOUT, message, backend)


def rejected(message: str, backend: Optional[str] = None) -> AdapterError:
    return AdapterError(AdapterErrorKind.REJECTED, message, backend)
