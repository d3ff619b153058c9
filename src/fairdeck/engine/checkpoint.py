"""Tamper-evident snapshots of game state.

A checkpoint hashes the integrity-relevant subset of the game state:

    H(json({"deckCommitment", "dealtCards", "playerCount", "currentRound"}))

with keys in that fixed order and compact separators. Re-hashing the
current state later and comparing detects any change to those fields.
"""

from __future__ import annotations

import copy
import json
import logging
import secrets
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from fairdeck.crypto.commitments import digests_equal, sha256_hex
from fairdeck.engine.coordinator import Clock, wall_clock_ms


logger = logging.getLogger(__name__)

DEFAULT_CHECKPOINT_INTERVAL_MS = 30_000

# (wire key, python alias). Order is part of the hash preimage.
HASHED_FIELDS: tuple[tuple[str, str], ...] = (
    ("deckCommitment", "deck_commitment"),
    ("dealtCards", "dealt_cards"),
    ("playerCount", "player_count"),
    ("currentRound", "current_round"),
)


@dataclass(frozen=True)
class Checkpoint:
    """Hash of the integrity subset of a game state at one moment."""
    id: str
    game_id: str
    state_hash: str
    state: dict[str, Any]
    timestamp_ms: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "gameId": self.game_id,
            "stateHash": self.state_hash,
            "state": dict(self.state),
            "timestamp": self.timestamp_ms,
        }

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> Checkpoint:
        return Checkpoint(
            id=str(data["id"]),
            game_id=str(data["gameId"]),
            state_hash=str(data["stateHash"]),
            state=dict(data.get("state", {})),
            timestamp_ms=int(data.get("timestamp", 0)),
        )


@dataclass(frozen=True)
class CheckpointVerification:
    """Result of comparing current state against a checkpoint.

    checked=False means the checkpoint could not be found, which is
    neither a pass nor evidence of tampering.
    """
    valid: bool
    tampering: bool
    checked: bool = True
    checkpoint_id: Optional[str] = None
    expected_hash: Optional[str] = None
    actual_hash: Optional[str] = None
    changed_fields: list[str] = field(default_factory=list)
    error: Optional[str] = None


def integrity_subset(state: Mapping[str, Any]) -> dict[str, Any]:
    """Extract the hashed fields, in hash order, under their wire keys."""
    subset: dict[str, Any] = {}
    for wire_key, alias in HASHED_FIELDS:
        if wire_key in state:
            subset[wire_key] = state[wire_key]
        else:
            subset[wire_key] = state.get(alias)
    return subset


def compute_state_hash(state: Mapping[str, Any]) -> str:
    body = json.dumps(integrity_subset(state), separators=(",", ":"), ensure_ascii=False)
    return sha256_hex(body)


def compare_checkpoint(checkpoint: Checkpoint, current_state: Mapping[str, Any]) -> CheckpointVerification:
    """Compare *current_state* to a checkpoint held by the caller."""
    try:
        actual = compute_state_hash(current_state)
    except (TypeError, ValueError) as exc:
        return CheckpointVerification(
            valid=False,
            tampering=False,
            checked=False,
            checkpoint_id=checkpoint.id,
            error=f"Current state is not hashable: {exc}",
        )

    if digests_equal(actual, checkpoint.state_hash):
        return CheckpointVerification(
            valid=True,
            tampering=False,
            checkpoint_id=checkpoint.id,
            expected_hash=checkpoint.state_hash,
            actual_hash=actual,
        )

    recorded = integrity_subset(checkpoint.state)
    current = integrity_subset(current_state)
    changed = [key for key, _ in HASHED_FIELDS if recorded.get(key) != current.get(key)]
    return CheckpointVerification(
        valid=False,
        tampering=True,
        checkpoint_id=checkpoint.id,
        expected_hash=checkpoint.state_hash,
        actual_hash=actual,
        changed_fields=changed,
    )


class IntegrityCheckpoint:
    """Creates and verifies checkpoints for any number of games.

    Usage:
        checkpoints = IntegrityCheckpoint(interval_ms=30_000)
        cp = checkpoints.create_checkpoint("game-1", state)
        checkpoints.verify_checkpoint(cp.id, state).valid    # True
    """

    def __init__(
        self,
        interval_ms: int = DEFAULT_CHECKPOINT_INTERVAL_MS,
        clock: Optional[Clock] = None,
    ) -> None:
        if interval_ms < 0:
            raise ValueError(f"interval_ms must be >= 0, got {interval_ms}")
        self.interval_ms = interval_ms
        self._clock: Clock = clock or wall_clock_ms
        self._checkpoints: dict[str, Checkpoint] = {}
        self._by_game: dict[str, list[str]] = {}

    def create_checkpoint(self, game_id: str, state: Mapping[str, Any]) -> Checkpoint:
        checkpoint = Checkpoint(
            id=secrets.token_hex(8),
            game_id=game_id,
            state_hash=compute_state_hash(state),
            state=copy.deepcopy(integrity_subset(state)),
            timestamp_ms=int(self._clock()),
        )
        self._checkpoints[checkpoint.id] = checkpoint
        self._by_game.setdefault(game_id, []).append(checkpoint.id)
        return checkpoint

    def verify_checkpoint(
        self,
        checkpoint_id: str,
        current_state: Mapping[str, Any],
    ) -> CheckpointVerification:
        checkpoint = self._checkpoints.get(checkpoint_id)
        if checkpoint is None:
            return CheckpointVerification(
                valid=False,
                tampering=False,
                checked=False,
                checkpoint_id=checkpoint_id,
                error="Checkpoint not found",
            )

        result = compare_checkpoint(checkpoint, current_state)
        if result.tampering:
            logger.warning(
                "Checkpoint %s for game %s diverged: %s",
                checkpoint_id, checkpoint.game_id, ", ".join(result.changed_fields),
            )
        return result

    def get_checkpoint(self, checkpoint_id: str) -> Optional[Checkpoint]:
        return self._checkpoints.get(checkpoint_id)

    def get_checkpoints(self, game_id: str) -> list[Checkpoint]:
        return [self._checkpoints[cid] for cid in self._by_game.get(game_id, [])]

    def get_latest_checkpoint(self, game_id: str) -> Optional[Checkpoint]:
        ids = self._by_game.get(game_id)
        if not ids:
            return None
        return self._checkpoints[ids[-1]]

    def should_create_checkpoint(self, game_id: str) -> bool:
        latest = self.get_latest_checkpoint(game_id)
        if latest is None:
            return True
        return int(self._clock()) - latest.timestamp_ms >= self.interval_ms

    def cleanup_game(self, game_id: str) -> None:
        for cid in self._by_game.pop(game_id, []):
            self._checkpoints.pop(cid, None)
