"""
Handler results and the dispatcher acknowledgment.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


@dataclass(frozen=True)
class HandlerResult:
    success: bool
    message: str = ""
    noop: bool = False
    details: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, message: str = "", **details: Any) -> "HandlerResult":
        return cls(success=True, message=message, details=details)

    @classmethod
    def noop_result(cls, message: str, **details: Any) -> "HandlerResult":
        """Success without side effects (missing or unusable event data)."""
        return cls(success=True, message=message, noop=True, details=details)

    @classmethod
    def failed(cls, message: str, **details: Any) -> "HandlerResult":
        return cls(success=False, message=message, details=details)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "noop": self.noop,
            "details": self.details,
        }


class AckStatus(str, Enum):
    PROCESSED = "processed"
    UNHANDLED = "unhandled"
    DUPLICATE = "duplicate"
    REJECTED = "rejected"
    MALFORMED = "malformed"
    FAILED = "failed"


@dataclass(frozen=True)
class Acknowledgment:
    """What the dispatcher reports back for one delivery."""

    success: bool
    status: AckStatus
    message: str = ""
    event_id: Optional[str] = None
    event_type: Optional[str] = None
    results: dict[str, HandlerResult] = field(default_factory=dict)

    def to_data(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "event_id": self.event_id,
            "event_type": self.event_type,
            "handlers": {name: r.to_dict() for name, r in self.results.items()},
        }
