"""Discriminated result returned across the analytics engine boundary."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class QueryStatus(str, Enum):
    """Outcome of a top-level analytics computation."""

    SUCCESS = "success"
    ERROR = "error"
    CANCELLED = "cancelled"  # superseded by a newer equivalent request
    INDETERMINATE = "indeterminate"  # no organization context, nothing computed


@dataclass
class QueryResult(Generic[T]):
    """Standardized return from every engine entry point.

    ``data`` is only meaningful when ``status`` is SUCCESS. An ERROR result
    always carries ``error`` (message) and ``error_kind`` (taxonomy tag) so
    callers can tell a failed read apart from "no data".
    """

    status: QueryStatus
    data: T | None = None
    error: str | None = None
    error_kind: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    completed_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def ok(self) -> bool:
        return self.status == QueryStatus.SUCCESS

    @classmethod
    def success(cls, data: T, **metadata: Any) -> "QueryResult[T]":
        return cls(status=QueryStatus.SUCCESS, data=data, metadata=metadata)

    @classmethod
    def failure(cls, error: BaseException | str, kind: str | None = None, **metadata: Any) -> "QueryResult[T]":
        if isinstance(error, BaseException):
            kind = kind or getattr(error, "kind", type(error).__name__)
            message = str(error)
        else:
            message = error
        return cls(status=QueryStatus.ERROR, error=message, error_kind=kind or "error", metadata=metadata)

    @classmethod
    def cancelled(cls, **metadata: Any) -> "QueryResult[T]":
        return cls(status=QueryStatus.CANCELLED, metadata=metadata)

    @classmethod
    def indeterminate(cls, **metadata: Any) -> "QueryResult[T]":
        return cls(status=QueryStatus.INDETERMINATE, metadata=metadata)

    def to_dict(self, serialize_data=None) -> dict[str, Any]:
        payload: dict[str, Any] = {"status": self.status.value}
        if self.status == QueryStatus.SUCCESS:
            payload["data"] = serialize_data(self.data) if serialize_data else self.data
        if self.error is not None:
            payload["error"] = self.error
            payload["error_kind"] = self.error_kind
        return payload
