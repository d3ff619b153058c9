"""Commit-reveal randomness ceremony with a committed timestamp.

Each player publishes H(seed), then reveals seed. The coordinator fixes
its own contribution (a timestamp) and publishes H(timestamp) when the
commit phase closes, before any reveal is accepted. The coordinator
therefore cannot grind the timestamp after seeing player seeds.

Protocol violations are returned as CeremonyResult failures. Nothing
here raises for a player's mistake, and a failed seed derivation never
produces a substitute seed.

The coordinator is not internally synchronised. Concurrent callers go
through fairdeck.persistence.ceremony_store.CeremonyRegistry.
"""

from __future__ import annotations

import time
from typing import Any, Callable, Optional

from fairdeck.crypto.commitments import (
    combine_final_seed,
    digests_equal,
    is_sha256_hex,
    seed_commitment,
    timestamp_commitment,
)
from fairdeck.models.ceremony import (
    CeremonyResult,
    CeremonyState,
    PlayerCommitment,
    PlayerReveal,
    ProtocolError,
    player_sort_key,
)


Clock = Callable[[], int]


def wall_clock_ms() -> int:
    return time.time_ns() // 1_000_000


class RandomnessCoordinator:
    """Runs one commit-reveal ceremony.

    Usage:
        coord = RandomnessCoordinator()
        coord.commit_player_seed("alice", sha256_hex(alice_seed))
        coord.commit_player_seed("bob", sha256_hex(bob_seed))
        coord.complete_commitment_phase()     # publishes H(timestamp)
        coord.reveal_player_seed("alice", alice_seed)
        coord.reveal_player_seed("bob", bob_seed)
        result = coord.generate_shuffle_seed()
        result.data["final_seed"]
    """

    def __init__(self, clock: Optional[Clock] = None) -> None:
        self._clock: Clock = clock or wall_clock_ms
        self._reset_fields()

    def _reset_fields(self) -> None:
        self._state = CeremonyState.COLLECTING
        self._commitments: dict[str, PlayerCommitment] = {}
        self._reveals: dict[str, PlayerReveal] = {}
        self._timestamp: Optional[str] = None
        self._timestamp_commitment: Optional[str] = None
        self._final_seed: Optional[str] = None

    @property
    def state(self) -> CeremonyState:
        return self._state

    def now_ms(self) -> int:
        return int(self._clock())

    # ------------------------------------------------------------------
    # Commit phase
    # ------------------------------------------------------------------

    def commit_player_seed(self, player_id: str, commitment_hash: str) -> CeremonyResult:
        """Record H(seed) for *player_id*. Only allowed while collecting."""
        if self._state != CeremonyState.COLLECTING:
            return CeremonyResult.fail(
                ProtocolError.COMMIT_PHASE_CLOSED, "Commitment phase already complete",
            )
        if player_id in self._commitments:
            return CeremonyResult.fail(
                ProtocolError.ALREADY_COMMITTED, "Player already committed",
            )
        if not is_sha256_hex(commitment_hash):
            return CeremonyResult.fail(
                ProtocolError.INVALID_COMMITMENT,
                "Invalid commitment format: expected 64 hex characters",
            )

        self._commitments[player_id] = PlayerCommitment(
            player_id=player_id,
            commitment_hash=commitment_hash.lower(),
        )
        return CeremonyResult.ok(player_id=player_id, commitment_received=True)

    def complete_commitment_phase(self) -> CeremonyResult:
        """Close commitments and publish the timestamp commitment."""
        if self._state != CeremonyState.COLLECTING:
            return CeremonyResult.fail(
                ProtocolError.COMMIT_PHASE_CLOSED, "Commitment phase already complete",
            )
        if not self._commitments:
            return CeremonyResult.fail(
                ProtocolError.NO_COMMITMENTS, "No commitments received",
            )

        self._timestamp = str(self.now_ms())
        self._timestamp_commitment = timestamp_commitment(self._timestamp)
        self._state = CeremonyState.REVEAL_READY

        return CeremonyResult.ok(
            timestamp_commitment=self._timestamp_commitment,
            commitment_count=len(self._commitments),
        )

    def get_timestamp_commitment(self) -> dict[str, Any]:
        return {
            "timestamp_committed": self._timestamp_commitment is not None,
            "timestamp_commitment": self._timestamp_commitment,
        }

    # ------------------------------------------------------------------
    # Reveal phase
    # ------------------------------------------------------------------

    def reveal_player_seed(self, player_id: str, seed_value: str) -> CeremonyResult:
        """Accept *seed_value* only if it hashes to the player's commitment."""
        if self._state != CeremonyState.REVEAL_READY:
            message = (
                "Reveal phase already complete"
                if self._state == CeremonyState.SEALED
                else "Commitment phase not complete"
            )
            return CeremonyResult.fail(ProtocolError.REVEAL_PHASE_NOT_OPEN, message)

        commitment = self._commitments.get(player_id)
        if commitment is None:
            return CeremonyResult.fail(
                ProtocolError.NO_COMMITMENT, "No commitment found for player",
            )
        if player_id in self._reveals:
            return CeremonyResult.fail(
                ProtocolError.ALREADY_REVEALED, "Player already revealed",
            )
        if not isinstance(seed_value, str) or not digests_equal(
            seed_commitment(seed_value), commitment.commitment_hash,
        ):
            return CeremonyResult.fail(
                ProtocolError.SEED_MISMATCH, "Seed does not match commitment",
            )

        self._reveals[player_id] = PlayerReveal(player_id=player_id, seed_value=seed_value)
        return CeremonyResult.ok(player_id=player_id, seed_verified=True)

    def pending_reveals(self) -> list[str]:
        pending = (pid for pid in self._commitments if pid not in self._reveals)
        return sorted(pending, key=player_sort_key)

    # ------------------------------------------------------------------
    # Seal
    # ------------------------------------------------------------------

    def generate_shuffle_seed(self) -> CeremonyResult:
        """Derive the final seed from every reveal and the committed timestamp.

        On failure the state is left unchanged and no seed exists.
        """
        if self._state == CeremonyState.SEALED:
            return CeremonyResult.fail(
                ProtocolError.ALREADY_SEALED, "Shuffle seed already generated",
            )
        if self._timestamp is None or self._timestamp_commitment is None:
            return CeremonyResult.fail(
                ProtocolError.TIMESTAMP_NOT_COMMITTED,
                "Timestamp must be committed before generating shuffle seed",
            )
        missing = self.pending_reveals()
        if missing:
            return CeremonyResult.fail(
                ProtocolError.INCOMPLETE_REVEALS,
                "Not all players revealed their seeds",
                missing_players=missing,
            )

        seeds = {pid: reveal.seed_value for pid, reveal in self._reveals.items()}
        self._final_seed = combine_final_seed(seeds, self._timestamp)
        self._state = CeremonyState.SEALED

        return CeremonyResult.ok(
            final_seed=self._final_seed,
            timestamp=self._timestamp,
            timestamp_commitment=self._timestamp_commitment,
            contributor_count=len(self._reveals),
            message="Seed derived from all player reveals and the pre-committed timestamp",
        )

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_transcript_data(self) -> dict[str, Any]:
        """Values needed to publish the ceremony.

        The timestamp itself stays hidden until the ceremony is sealed.
        """
        sealed = self._state == CeremonyState.SEALED
        return {
            "timestamp": self._timestamp if sealed else None,
            "timestamp_commitment": self._timestamp_commitment,
            "commitments": {
                pid: self._commitments[pid].commitment_hash
                for pid in sorted(self._commitments, key=player_sort_key)
            },
            "reveals": {
                pid: self._reveals[pid].seed_value
                for pid in sorted(self._reveals, key=player_sort_key)
            },
            "final_seed": self._final_seed,
            "state": self._state.value,
        }

    def get_state(self) -> dict[str, Any]:
        return {
            "state": self._state.value,
            "commitment_count": len(self._commitments),
            "reveal_count": len(self._reveals),
            "timestamp_committed": self._timestamp_commitment is not None,
            "sealed": self._state == CeremonyState.SEALED,
        }

    def reset(self) -> None:
        """Discard every commitment, reveal and timestamp value."""
        self._reset_fields()


class TimeLockCoordinator(RandomnessCoordinator):
    """Ceremony that refuses reveals arriving too long after the commit.

    A player whose reveal is later than *max_reveal_delay_ms* after
    their own commitment is recorded as late and the reveal is
    rejected. The ceremony then cannot seal until reset.
    """

    DEFAULT_MAX_REVEAL_DELAY_MS = 30_000

    def __init__(
        self,
        max_reveal_delay_ms: int = DEFAULT_MAX_REVEAL_DELAY_MS,
        clock: Optional[Clock] = None,
    ) -> None:
        if max_reveal_delay_ms <= 0:
            raise ValueError(f"max_reveal_delay_ms must be positive, got {max_reveal_delay_ms}")
        self.max_reveal_delay_ms = max_reveal_delay_ms
        super().__init__(clock=clock)

    def _reset_fields(self) -> None:
        super()._reset_fields()
        self._commit_times: dict[str, int] = {}
        self._reveal_times: dict[str, int] = {}
        self._late: set[str] = set()

    def commit_player_seed(self, player_id: str, commitment_hash: str) -> CeremonyResult:
        result = super().commit_player_seed(player_id, commitment_hash)
        if result.success:
            self._commit_times[player_id] = self.now_ms()
        return result

    def reveal_player_seed(self, player_id: str, seed_value: str) -> CeremonyResult:
        committed_at = self._commit_times.get(player_id)
        if committed_at is not None and self.state == CeremonyState.REVEAL_READY:
            now = self.now_ms()
            delay = now - committed_at
            if delay > self.max_reveal_delay_ms:
                self._late.add(player_id)
                return CeremonyResult.fail(
                    ProtocolError.REVEAL_TIMEOUT,
                    f"Reveal timeout exceeded ({delay}ms > {self.max_reveal_delay_ms}ms)",
                    late=True,
                    delay_ms=delay,
                )
        else:
            now = self.now_ms()

        result = super().reveal_player_seed(player_id, seed_value)
        if result.success and committed_at is not None:
            self._reveal_times[player_id] = now
            result.data["delay_ms"] = now - committed_at
        return result

    def get_time_lock_status(self) -> dict[str, dict[str, Any]]:
        now = self.now_ms()
        status: dict[str, dict[str, Any]] = {}
        for pid, committed_at in sorted(self._commit_times.items()):
            revealed_at = self._reveal_times.get(pid)
            status[pid] = {
                "commit_time": committed_at,
                "reveal_time": revealed_at,
                "delay_ms": revealed_at - committed_at if revealed_at is not None else None,
                "is_late": pid in self._late,
                "time_remaining_ms": (
                    0 if revealed_at is not None
                    else max(0, self.max_reveal_delay_ms - (now - committed_at))
                ),
            }
        return status

    def get_late_reveals(self) -> list[str]:
        return sorted(self._late)

    def get_transcript_data(self) -> dict[str, Any]:
        data = super().get_transcript_data()
        data["time_lock"] = {
            "max_reveal_delay_ms": self.max_reveal_delay_ms,
            "commit_times": dict(sorted(self._commit_times.items())),
            "reveal_times": dict(sorted(self._reveal_times.items())),
            "late_reveals": self.get_late_reveals(),
        }
        return data
