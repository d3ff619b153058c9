"""Commit-reveal ceremony records.

A ceremony moves through three states:

    COLLECTING  --complete_commitment_phase-->  REVEAL_READY
    REVEAL_READY --generate_shuffle_seed------>  SEALED

`reset` returns any state to COLLECTING and discards every commitment,
reveal and timestamp value.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any


class CeremonyState(str, enum.Enum):
    """Lifecycle of one randomness ceremony."""
    COLLECTING = "collecting"
    REVEAL_READY = "reveal_ready"
    SEALED = "sealed"


class ProtocolError(str, enum.Enum):
    """Expected protocol violations, returned rather than raised."""
    COMMIT_PHASE_CLOSED = "commit_phase_closed"
    ALREADY_COMMITTED = "already_committed"
    INVALID_COMMITMENT = "invalid_commitment"
    NO_COMMITMENTS = "no_commitments"
    REVEAL_PHASE_NOT_OPEN = "reveal_phase_not_open"
    NO_COMMITMENT = "no_commitment"
    ALREADY_REVEALED = "already_revealed"
    SEED_MISMATCH = "seed_mismatch"
    REVEAL_TIMEOUT = "reveal_timeout"
    TIMESTAMP_NOT_COMMITTED = "timestamp_not_committed"
    INCOMPLETE_REVEALS = "incomplete_reveals"
    ALREADY_SEALED = "already_sealed"


def player_sort_key(player_id: str) -> tuple[str, str]:
    """Order player ids case-insensitively, lowercase first on ties.

    Matches localeCompare ordering for alphanumeric ids: "alice" before
    "Bob", "bob" before "Bob".
    """
    return (player_id.casefold(), player_id.swapcase())


@dataclass(frozen=True)
class PlayerCommitment:
    """H(seed) published by a player before any seed is revealed."""
    player_id: str
    commitment_hash: str


@dataclass(frozen=True)
class PlayerReveal:
    """A seed disclosed after the commit phase closed."""
    player_id: str
    seed_value: str


@dataclass(frozen=True)
class CeremonyResult:
    """Tagged result of a coordinator operation.

    `error_code` is None exactly when `success` is True.
    """
    success: bool
    error_code: ProtocolError | None = None
    error: str = ""
    data: dict[str, Any] = field(default_factory=dict)

    @staticmethod
    def ok(**data: Any) -> CeremonyResult:
        return CeremonyResult(success=True, data=data)

    @staticmethod
    def fail(code: ProtocolError, message: str, **data: Any) -> CeremonyResult:
        return CeremonyResult(success=False, error_code=code, error=message, data=data)
