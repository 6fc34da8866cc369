"""Data models used across the pipeline."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

from geobatch.common.errors import CancelledError

STATUS_OK = "ok"
STATUS_ERROR = "error"
STATUS_CANCELLED = "cancelled"


@dataclass(frozen=True)
class Record:
    source: str
    id: str
    sensor: bool
    address: str

    def __post_init__(self) -> None:
        if not self.source:
            raise ValueError("Record source must be non-empty")
        if not isinstance(self.sensor, bool):
            raise TypeError(f"Record sensor must be a bool, got {type(self.sensor).__name__}")


@dataclass(frozen=True)
class SignedQuery:
    record: Record
    url: str


@dataclass(frozen=True)
class QueryResult:
    record_id: str
    source: str
    status: str
    payload: str | None = None
    error_code: str | None = None
    error: str | None = None

    @classmethod
    def success(cls, record: Record, payload: str) -> "QueryResult":
        return cls(record_id=record.id, source=record.source, status=STATUS_OK, payload=payload)

    @classmethod
    def failure(cls, record: Record, exc: BaseException) -> "QueryResult":
        return cls(
            record_id=record.id,
            source=record.source,
            status=STATUS_ERROR,
            error_code=getattr(exc, "error_code", "UNEXPECTED_ERROR"),
            error=str(exc),
        )

    @classmethod
    def cancelled(cls, record: Record) -> "QueryResult":
        return cls(
            record_id=record.id,
            source=record.source,
            status=STATUS_CANCELLED,
            error_code=CancelledError.error_code,
            error="query abandoned after cancellation grace period",
        )

    @property
    def ok(self) -> bool:
        return self.status == STATUS_OK

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class RunSummary:
    run_id: str
    records_read: int
    succeeded: int
    failed: int
    cancelled: int
    fatal_error: str | None = None
    fatal_error_code: str | None = None

    @property
    def status(self) -> str:
        if self.fatal_error is not None and self.succeeded == 0:
            return "error"
        if self.fatal_error is not None or self.failed or self.cancelled:
            return "partial"
        return "success"

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["status"] = self.status
        return payload
