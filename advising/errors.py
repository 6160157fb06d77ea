"""Exceptions raised inside engine transactions and turned into failed results at the boundary."""

from __future__ import annotations

from advising.schema import ErrorKind


class SchedulingError(Exception):
    """A domain rule was violated; nothing has been written."""

    def __init__(self, kind: ErrorKind, reason: str):
        self.kind = kind
        self.reason = reason
        super().__init__(reason)


def not_found(reason: str) -> SchedulingError:
    return SchedulingError(ErrorKind.NOT_FOUND, reason)


def conflict(reason: str) -> SchedulingError:
    return SchedulingError(ErrorKind.CONFLICT, reason)


def invalid(reason: str) -> SchedulingError:
    return SchedulingError(ErrorKind.VALIDATION, reason)


def forbidden(reason: str) -> SchedulingError:
    return SchedulingError(ErrorKind.FORBIDDEN, reason)


def unauthorized(reason: str) -> SchedulingError:
    return SchedulingError(ErrorKind.UNAUTHORIZED, reason)
