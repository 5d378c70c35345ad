"""
Signature verification port.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Optional, Protocol, runtime_checkable


class RejectionReason(str, Enum):
    MISSING_HEADERS = "missing_headers"
    NOT_CONFIGURED = "not_configured"
    MALFORMED_BODY = "malformed_body"
    SIGNATURE_MISMATCH = "signature_mismatch"
    TRANSPORT_ERROR = "transport_error"


@dataclass(frozen=True)
class VerificationResult:
    verified: bool
    reason: Optional[RejectionReason] = None
    # Only for logs; never echoed back to the caller
    cause: Optional[str] = None

    @classmethod
    def accepted(cls) -> "VerificationResult":
        return cls(verified=True)

    @classmethod
    def rejected(cls, reason: RejectionReason, cause: Optional[str] = None) -> "VerificationResult":
        return cls(verified=False, reason=reason, cause=cause)


@runtime_checkable
class SignatureVerifier(Protocol):
    async def verify(
        self,
        raw_body: bytes,
        headers: Mapping[str, str],
        webhook_id: Optional[str],
    ) -> VerificationResult: ...
