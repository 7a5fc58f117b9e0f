"""Outcome type shared by every fallible data operation.

Operations never raise for expected failures (a guard check that did not
pass, a missing row, a full class). They return an :class:`OperationResult`
whose ``kind`` says which class of failure occurred and whose ``error`` is
the message shown to the user. Route handlers serialise the result with
:meth:`OperationResult.to_dict` and pick the HTTP status from
:attr:`OperationResult.http_status`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

DATABASE_ERROR_MESSAGE = 'Database error occurred'


class FailureKind(str, Enum):
    VALIDATION = 'validation'
    UNAUTHORIZED = 'unauthorized'
    NOT_FOUND = 'not_found'
    CONFLICT = 'conflict'
    DATABASE = 'database'


_HTTP_STATUS = {
    FailureKind.VALIDATION: 400,
    FailureKind.UNAUTHORIZED: 403,
    FailureKind.NOT_FOUND: 404,
    FailureKind.CONFLICT: 409,
    FailureKind.DATABASE: 503,
}


@dataclass
class OperationResult:
    success: bool
    error: Optional[str] = None
    kind: Optional[FailureKind] = None
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, **data: Any) -> 'OperationResult':
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, kind: FailureKind, error: str) -> 'OperationResult':
        return cls(success=False, error=error, kind=kind)

    @classmethod
    def invalid(cls, error: str) -> 'OperationResult':
        return cls.fail(FailureKind.VALIDATION, error)

    @classmethod
    def unauthorized(cls, error: str) -> 'OperationResult':
        return cls.fail(FailureKind.UNAUTHORIZED, error)

    @classmethod
    def not_found(cls, error: str) -> 'OperationResult':
        return cls.fail(FailureKind.NOT_FOUND, error)

    @classmethod
    def conflict(cls, error: str) -> 'OperationResult':
        return cls.fail(FailureKind.CONFLICT, error)

    @classmethod
    def database_error(cls) -> 'OperationResult':
        return cls.fail(FailureKind.DATABASE, DATABASE_ERROR_MESSAGE)

    @property
    def http_status(self) -> int:
        if self.success:
            return 200
        return _HTTP_STATUS.get(self.kind, 500)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {'success': self.success}
        if not self.success:
            payload['error'] = self.error
        payload.update(self.data)
        return payload


__all__ = ['DATABASE_ERROR_MESSAGE', 'FailureKind', 'OperationResult']
