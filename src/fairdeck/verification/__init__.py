"""Independent verification of published game data."""

from fairdeck.verification.audit import (
    AuditVerifier,
    CheckResult,
    CheckStatus,
    GameVerification,
    audit_transcript,
)

__all__ = [
    "AuditVerifier",
    "CheckResult",
    "CheckStatus",
    "GameVerification",
    "audit_transcript",
]
