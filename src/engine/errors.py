"""
Error values returned by engine operations.

Mutating operations return ``(snapshot, error)``. ``error`` is None on success;
otherwise the input snapshot is handed back untouched together with an
``EngineError`` describing what went wrong.
"""
import enum
import functools
import logging
from typing import NamedTuple


class ErrorKind(str, enum.Enum):
    NOT_FOUND = 'NOT_FOUND'
    INVALID_RESULT = 'INVALID_RESULT'
    INVARIANT_VIOLATION = 'INVARIANT_VIOLATION'


class EngineError(NamedTuple):
    kind: ErrorKind
    message: str

    def to_dict(self) -> dict:
        return {'kind': self.kind.value, 'error': self.message}


def not_found(what: str, ident: str) -> EngineError:
    return EngineError(ErrorKind.NOT_FOUND, f"{what} '{ident}' not found")


def invalid_result(message: str) -> EngineError:
    return EngineError(ErrorKind.INVALID_RESULT, message)


class InvariantViolation(Exception):
    """Raised when a topology is structurally broken. Never expected at runtime."""

    def to_error(self) -> EngineError:
        return EngineError(ErrorKind.INVARIANT_VIOLATION, str(self))


def guard_invariants(func):
    """Turn an ``InvariantViolation`` raised inside ``func`` into an error value.

    The wrapped operation takes the snapshot as its first argument; on a
    violation that snapshot is returned unchanged.
    """
    @functools.wraps(func)
    def wrapper(snapshot, *args, **kwargs):
        try:
            return func(snapshot, *args, **kwargs)
        except InvariantViolation as exc:
            logging.getLogger(func.__module__).error(f'{func.__name__} aborted: {exc}')
            return snapshot, exc.to_error()
    return wrapper
