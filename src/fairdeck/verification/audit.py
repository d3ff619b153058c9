"""Zero-trust audit of a finished game.

The verifier trusts nothing but values it recorded itself during the
game (commitments seen before any reveal) and the data published at the
end. Every check recomputes its result from those inputs using the same
pure functions the dealer used.

Each check yields a CheckResult whose status is one of:

    PASSED          recomputation matches
    FAILED          a routine mismatch (wrong card handed out, bad order)
    SECURITY_ALERT  a commitment or derivation does not match, which
                    indicates manipulation rather than a bug
    NOT_CHECKED     the inputs needed for this check were not available

A game verifies only if at least one check ran and every check that ran
passed.
"""

from __future__ import annotations

import enum
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Sequence

from fairdeck.crypto.commitments import (
    combine_final_seed,
    compute_transcript_hash,
    deck_commitment,
    digests_equal,
    seed_commitment,
    timestamp_commitment,
)
from fairdeck.engine.checkpoint import Checkpoint, compare_checkpoint
from fairdeck.engine.shuffle import generate_dealing_order, verify_shuffle as _rerun_shuffle
from fairdeck.models.card import CardLike, as_card, as_deck


logger = logging.getLogger(__name__)


class CheckStatus(str, enum.Enum):
    PASSED = "passed"
    FAILED = "failed"
    SECURITY_ALERT = "security_alert"
    NOT_CHECKED = "not_checked"


@dataclass(frozen=True)
class CheckResult:
    """Outcome of one verification check."""
    check: str
    status: CheckStatus
    errors: list[str] = field(default_factory=list)
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def valid(self) -> bool:
        return self.status == CheckStatus.PASSED

    @property
    def checked(self) -> bool:
        return self.status != CheckStatus.NOT_CHECKED

    def to_dict(self) -> dict[str, Any]:
        return {
            "check": self.check,
            "status": self.status.value,
            "valid": self.valid,
            "checked": self.checked,
            "errors": list(self.errors),
            "details": dict(self.details),
        }


@dataclass(frozen=True)
class GameVerification:
    """Aggregate result of `AuditVerifier.verify_game`."""
    game_id: Optional[str]
    results: dict[str, CheckResult]
    overall: bool
    security_alerts: list[str] = field(default_factory=list)

    @property
    def failed_checks(self) -> list[str]:
        return [name for name, r in self.results.items() if r.checked and not r.valid]

    @property
    def has_security_alert(self) -> bool:
        return bool(self.security_alerts)

    def to_dict(self) -> dict[str, Any]:
        return {
            "gameId": self.game_id,
            "overall": self.overall,
            "securityAlerts": list(self.security_alerts),
            "results": {name: r.to_dict() for name, r in self.results.items()},
        }


# Check names, in the order verify_game runs them.
DECK_COMMITMENT = "deck_commitment"
PLAYER_COMMITMENTS = "player_commitments"
TIMESTAMP_COMMITMENT = "timestamp_commitment"
FINAL_SEED = "final_seed"
SHUFFLE = "shuffle"
CARD_POSITION = "card_position"
DEALING_ORDER = "dealing_order"
CHECKPOINT = "checkpoint"
TRANSCRIPT_HASH = "transcript_hash"

ALL_CHECKS: tuple[str, ...] = (
    DECK_COMMITMENT,
    PLAYER_COMMITMENTS,
    TIMESTAMP_COMMITMENT,
    FINAL_SEED,
    SHUFFLE,
    CARD_POSITION,
    DEALING_ORDER,
    CHECKPOINT,
    TRANSCRIPT_HASH,
)

_ALERT_MESSAGES: dict[str, str] = {
    DECK_COMMITMENT: "Deck commitment verification failed",
    PLAYER_COMMITMENTS: "Player commitment verification failed",
    TIMESTAMP_COMMITMENT: "Timestamp commitment verification failed - possible grinding attack",
    FINAL_SEED: "Final seed verification failed",
    SHUFFLE: "Shuffle does not match the final seed",
    CHECKPOINT: "Checkpoint state diverged - possible state tampering",
    TRANSCRIPT_HASH: "Transcript hash does not match its contents",
}


def _not_checked(check: str, reason: str) -> CheckResult:
    return CheckResult(check=check, status=CheckStatus.NOT_CHECKED, errors=[reason])


class AuditVerifier:
    """Client-side verifier for one game.

    Usage:
        verifier = AuditVerifier()
        verifier.set_deck_commitment(published_commitment, game_id="g1")
        verifier.set_timestamp_commitment(ts_commitment)
        verifier.add_player_commitment("alice", alice_commitment)
        ...                                  # game runs
        verifier.add_player_reveal("alice", alice_seed)
        report = verifier.verify_game(game_end_data)
        report.overall
    """

    def __init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        self.game_id: Optional[str] = None
        self._deck_commitment: Optional[str] = None
        self._timestamp_commitment: Optional[str] = None
        self._player_commitments: dict[str, str] = {}
        self._player_reveals: dict[str, str] = {}
        self._log: list[dict[str, Any]] = []

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def set_deck_commitment(self, commitment: str, game_id: Optional[str] = None) -> None:
        self._deck_commitment = commitment
        if game_id is not None:
            self.game_id = game_id

    def set_timestamp_commitment(self, commitment: str) -> None:
        self._timestamp_commitment = commitment

    def add_player_commitment(self, player_id: str, commitment: str) -> None:
        self._player_commitments[player_id] = commitment

    def add_player_reveal(self, player_id: str, seed_value: str) -> None:
        self._player_reveals[player_id] = seed_value

    def load_transcript(self, wire: Mapping[str, Any]) -> None:
        """Replace recorded values with those published in a transcript.

        Auditing a transcript this way trusts its commitments; a player
        who recorded commitments live should compare those separately.
        """
        self.reset()
        self.game_id = wire.get("gameId")
        if wire.get("deckCommitment"):
            self._deck_commitment = str(wire["deckCommitment"])
        if wire.get("timestampCommitment"):
            self._timestamp_commitment = str(wire["timestampCommitment"])
        for pid, commitment in (wire.get("playerCommitments") or {}).items():
            self._player_commitments[str(pid)] = str(commitment)
        for pid, seed in (wire.get("playerReveals") or {}).items():
            self._player_reveals[str(pid)] = str(seed)

    # ------------------------------------------------------------------
    # Individual checks
    # ------------------------------------------------------------------

    def verify_deck_commitment(
        self,
        deck: Sequence[CardLike],
        nonce: str,
        commitment: Optional[str] = None,
    ) -> CheckResult:
        expected = commitment if commitment is not None else self._deck_commitment
        if not expected:
            return self._record(_not_checked(DECK_COMMITMENT, "No deck commitment recorded"))

        try:
            computed = deck_commitment(deck, nonce)
        except (KeyError, TypeError, ValueError) as exc:
            return self._record(CheckResult(
                check=DECK_COMMITMENT,
                status=CheckStatus.FAILED,
                errors=[f"Revealed deck is unreadable: {exc}"],
            ))

        details = {"expected": expected, "computed": computed}
        if digests_equal(computed, expected):
            return self._record(CheckResult(DECK_COMMITMENT, CheckStatus.PASSED, details=details))
        return self._record(CheckResult(
            DECK_COMMITMENT,
            CheckStatus.SECURITY_ALERT,
            errors=["Revealed deck and nonce do not hash to the deck commitment"],
            details=details,
        ))

    def verify_player_commitments(self) -> CheckResult:
        """Check every recorded reveal against its recorded commitment."""
        return self._record(self._check_player_commitments())

    def _check_player_commitments(self) -> CheckResult:
        if not self._player_commitments:
            return _not_checked(PLAYER_COMMITMENTS, "No player commitments recorded")

        errors: list[str] = []
        per_player: dict[str, bool] = {}
        for pid, commitment in sorted(self._player_commitments.items()):
            seed = self._player_reveals.get(pid)
            if seed is None:
                errors.append(f"No reveal recorded for player {pid}")
                per_player[pid] = False
                continue
            matches = digests_equal(seed_commitment(seed), commitment)
            per_player[pid] = matches
            if not matches:
                errors.append(f"Seed revealed by player {pid} does not match their commitment")

        for pid in sorted(set(self._player_reveals) - set(self._player_commitments)):
            errors.append(f"Reveal from player {pid} who never committed")
            per_player[pid] = False

        status = CheckStatus.PASSED if not errors else CheckStatus.SECURITY_ALERT
        return CheckResult(PLAYER_COMMITMENTS, status, errors=errors, details={"players": per_player})

    def verify_timestamp_commitment(
        self,
        timestamp: str,
        commitment: Optional[str] = None,
    ) -> CheckResult:
        expected = commitment if commitment is not None else self._timestamp_commitment
        if not expected:
            return self._record(_not_checked(TIMESTAMP_COMMITMENT, "No timestamp commitment recorded"))

        computed = timestamp_commitment(str(timestamp))
        details = {"timestamp": str(timestamp), "expected": expected, "computed": computed}
        if digests_equal(computed, expected):
            return self._record(CheckResult(TIMESTAMP_COMMITMENT, CheckStatus.PASSED, details=details))
        return self._record(CheckResult(
            TIMESTAMP_COMMITMENT,
            CheckStatus.SECURITY_ALERT,
            errors=["Published timestamp does not match the commitment made before reveals"],
            details=details,
        ))

    def verify_final_seed(self, final_seed: str, timestamp: str) -> CheckResult:
        """Recompute the final seed from recorded reveals and *timestamp*.

        The reveals must first match their commitments; a seed derived
        from forged reveals is an alert even if it recomputes.
        """
        if not self._player_commitments:
            return self._record(_not_checked(
                FINAL_SEED, "Player commitments must be recorded before verifying the final seed",
            ))

        players = self._check_player_commitments()
        if not players.valid:
            missing = sorted(set(self._player_commitments) - set(self._player_reveals))
            return self._record(CheckResult(
                FINAL_SEED,
                CheckStatus.SECURITY_ALERT,
                errors=["Player commitments must verify before the final seed"] + players.errors,
                details={"players": players.details.get("players", {}), "missing_players": missing},
            ))

        reveals = {pid: self._player_reveals[pid] for pid in self._player_commitments}
        computed = combine_final_seed(reveals, str(timestamp))
        details = {"expected": final_seed, "computed": computed}
        if digests_equal(computed, final_seed):
            return self._record(CheckResult(FINAL_SEED, CheckStatus.PASSED, details=details))
        return self._record(CheckResult(
            FINAL_SEED,
            CheckStatus.SECURITY_ALERT,
            errors=["Final seed does not derive from the revealed seeds and timestamp"],
            details=details,
        ))

    def verify_shuffle(
        self,
        original_deck: Sequence[CardLike],
        shuffled_deck: Sequence[CardLike],
        seed: str,
        permutation: Optional[Sequence[int]] = None,
    ) -> CheckResult:
        outcome = _rerun_shuffle(original_deck, shuffled_deck, seed, permutation)
        details = {
            "shuffle_matches": outcome.shuffle_matches,
            "permutation_matches": outcome.permutation_matches,
            "mismatched_positions": list(outcome.mismatched_positions),
        }
        if outcome.valid:
            return self._record(CheckResult(SHUFFLE, CheckStatus.PASSED, details=details))
        if outcome.error is not None:
            return self._record(CheckResult(SHUFFLE, CheckStatus.FAILED, errors=[outcome.error], details=details))

        errors: list[str] = []
        if not outcome.shuffle_matches:
            errors.append(f"Shuffled deck differs at {len(outcome.mismatched_positions)} position(s)")
        if outcome.permutation_matches is False:
            errors.append("Published permutation does not match the recomputed shuffle")
        return self._record(CheckResult(SHUFFLE, CheckStatus.SECURITY_ALERT, errors=errors, details=details))

    def verify_card_position(
        self,
        revealed_deck: Sequence[CardLike],
        seat_index: int,
        received_card: CardLike,
    ) -> CheckResult:
        """Check the card a player was dealt matches their deck position."""
        try:
            deck = as_deck(revealed_deck)
            received = as_card(received_card)
            seat_index = int(seat_index)
        except (KeyError, TypeError, ValueError) as exc:
            return self._record(CheckResult(
                CARD_POSITION, CheckStatus.FAILED, errors=[f"Unreadable card data: {exc}"],
            ))

        if seat_index < 0 or seat_index >= len(deck):
            return self._record(CheckResult(
                CARD_POSITION,
                CheckStatus.FAILED,
                errors=[f"Invalid seat index: {seat_index}"],
                details={"deck_size": len(deck)},
            ))

        expected = deck[seat_index]
        details = {
            "seat_index": seat_index,
            "expected_card": expected.to_dict(),
            "received_card": received.to_dict(),
        }
        if expected.suit == received.suit and expected.rank == received.rank:
            return self._record(CheckResult(CARD_POSITION, CheckStatus.PASSED, details=details))
        return self._record(CheckResult(
            CARD_POSITION,
            CheckStatus.FAILED,
            errors=[f"Received {received.serialize()} but position {seat_index} holds {expected.serialize()}"],
            details=details,
        ))

    def verify_dealing_order(
        self,
        dealing_order: Sequence[int],
        dealing_seed: str,
        player_count: int,
    ) -> CheckResult:
        try:
            computed = generate_dealing_order(int(player_count), dealing_seed)
            received = [int(i) for i in dealing_order]
        except (TypeError, ValueError) as exc:
            return self._record(CheckResult(
                DEALING_ORDER, CheckStatus.FAILED, errors=[f"Unreadable dealing data: {exc}"],
            ))

        details = {"computed_order": computed, "received_order": received, "player_count": player_count}
        if received == computed:
            return self._record(CheckResult(DEALING_ORDER, CheckStatus.PASSED, details=details))
        return self._record(CheckResult(
            DEALING_ORDER,
            CheckStatus.FAILED,
            errors=["Dealing order does not match the dealing seed"],
            details=details,
        ))

    def verify_checkpoint(
        self,
        checkpoint: Checkpoint | Mapping[str, Any],
        current_state: Mapping[str, Any],
    ) -> CheckResult:
        try:
            cp = checkpoint if isinstance(checkpoint, Checkpoint) else Checkpoint.from_dict(checkpoint)
        except (KeyError, TypeError, ValueError) as exc:
            return self._record(_not_checked(CHECKPOINT, f"Unreadable checkpoint: {exc}"))

        outcome = compare_checkpoint(cp, current_state)
        details = {
            "checkpoint_id": cp.id,
            "expected_hash": outcome.expected_hash,
            "actual_hash": outcome.actual_hash,
            "changed_fields": list(outcome.changed_fields),
        }
        if not outcome.checked:
            return self._record(_not_checked(CHECKPOINT, outcome.error or "Checkpoint could not be checked"))
        if outcome.valid:
            return self._record(CheckResult(CHECKPOINT, CheckStatus.PASSED, details=details))
        return self._record(CheckResult(
            CHECKPOINT,
            CheckStatus.SECURITY_ALERT,
            errors=[f"State changed since checkpoint: {', '.join(outcome.changed_fields) or 'unknown'}"],
            details=details,
        ))

    def verify_transcript_hash(self, transcript: Mapping[str, Any]) -> CheckResult:
        claimed = transcript.get("transcriptHash")
        if not claimed:
            return self._record(_not_checked(TRANSCRIPT_HASH, "Transcript carries no hash"))

        computed = compute_transcript_hash(transcript)
        details = {"expected": claimed, "computed": computed}
        if digests_equal(computed, claimed):
            return self._record(CheckResult(TRANSCRIPT_HASH, CheckStatus.PASSED, details=details))
        return self._record(CheckResult(
            TRANSCRIPT_HASH,
            CheckStatus.SECURITY_ALERT,
            errors=["Transcript contents were modified after hashing"],
            details=details,
        ))

    # ------------------------------------------------------------------
    # Whole-game verification
    # ------------------------------------------------------------------

    def verify_game(self, game_end_data: Mapping[str, Any]) -> GameVerification:
        """Run every check the published data makes possible.

        Recognised keys (all optional): deckReveal {deck, nonce},
        timestamp, finalSeed, originalDeck, shuffledDeck, permutation,
        yourCard, yourSeatIndex, dealingOrder, dealingSeed, playerCount,
        checkpoint, currentState, transcript.
        """
        data = game_end_data
        results: dict[str, CheckResult] = {
            name: _not_checked(name, "Required data not published") for name in ALL_CHECKS
        }

        deck_reveal = data.get("deckReveal")
        timestamp = data.get("timestamp")
        final_seed = data.get("finalSeed")

        if deck_reveal and not isinstance(deck_reveal, Mapping):
            results[DECK_COMMITMENT] = self._record(CheckResult(
                DECK_COMMITMENT, CheckStatus.FAILED, errors=["deckReveal must be an object with deck and nonce"],
            ))
            deck_reveal = None
        elif deck_reveal:
            results[DECK_COMMITMENT] = self.verify_deck_commitment(
                deck_reveal.get("deck", []), str(deck_reveal.get("nonce", "")),
            )

        if self._player_commitments:
            results[PLAYER_COMMITMENTS] = self.verify_player_commitments()

        if timestamp is not None and self._timestamp_commitment:
            results[TIMESTAMP_COMMITMENT] = self.verify_timestamp_commitment(str(timestamp))

        if final_seed and timestamp is not None and self._player_reveals:
            results[FINAL_SEED] = self.verify_final_seed(final_seed, str(timestamp))

        if final_seed and data.get("originalDeck") and data.get("shuffledDeck"):
            results[SHUFFLE] = self.verify_shuffle(
                data["originalDeck"], data["shuffledDeck"], final_seed, data.get("permutation"),
            )

        if data.get("yourCard") and deck_reveal and data.get("yourSeatIndex") is not None:
            results[CARD_POSITION] = self.verify_card_position(
                deck_reveal.get("deck", []), data["yourSeatIndex"], data["yourCard"],
            )

        if data.get("dealingOrder") and data.get("dealingSeed") and data.get("playerCount"):
            results[DEALING_ORDER] = self.verify_dealing_order(
                data["dealingOrder"], data["dealingSeed"], data["playerCount"],
            )

        if data.get("checkpoint") and data.get("currentState") is not None:
            results[CHECKPOINT] = self.verify_checkpoint(data["checkpoint"], data["currentState"])

        if data.get("transcript"):
            results[TRANSCRIPT_HASH] = self.verify_transcript_hash(data["transcript"])

        ran = [r for r in results.values() if r.checked]
        overall = bool(ran) and all(r.valid for r in ran)

        alerts = [
            _ALERT_MESSAGES.get(name, f"{name} verification raised a security alert")
            for name, r in results.items()
            if r.status == CheckStatus.SECURITY_ALERT
        ]
        if alerts:
            logger.warning("Game %s raised security alerts: %s", self.game_id, "; ".join(alerts))

        return GameVerification(
            game_id=self.game_id,
            results=results,
            overall=overall,
            security_alerts=alerts,
        )

    # ------------------------------------------------------------------
    # Log
    # ------------------------------------------------------------------

    def _record(self, result: CheckResult) -> CheckResult:
        self._log.append({
            "type": f"{result.check}_verification",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "result": result.to_dict(),
        })
        return result

    def get_verification_log(self) -> list[dict[str, Any]]:
        return list(self._log)

    def export_verification_log(self) -> str:
        return json.dumps(
            {
                "gameId": self.game_id,
                "verificationResults": self._log,
                "exportedAt": datetime.now(timezone.utc).isoformat(),
            },
            indent=2,
            ensure_ascii=False,
        )


def game_end_data_from_transcript(wire: Mapping[str, Any]) -> dict[str, Any]:
    """Map a published transcript onto `verify_game` inputs.

    The deck commitment covers the shuffled deck, the order cards are
    dealt in.
    """
    data: dict[str, Any] = {
        "timestamp": wire.get("timestamp"),
        "finalSeed": wire.get("finalSeed"),
        "originalDeck": wire.get("originalDeck"),
        "shuffledDeck": wire.get("shuffledDeck"),
        "permutation": wire.get("permutation"),
        "transcript": dict(wire),
    }
    if wire.get("deckCommitment") and wire.get("nonce") is not None:
        data["deckReveal"] = {"deck": wire.get("shuffledDeck") or [], "nonce": wire["nonce"]}
    extra = wire.get("extra") or {}
    if extra.get("dealingOrder") and extra.get("dealingSeed"):
        data["dealingOrder"] = extra["dealingOrder"]
        data["dealingSeed"] = extra["dealingSeed"]
        data["playerCount"] = extra.get("playerCount") or len(extra["dealingOrder"])
    return data


def audit_transcript(wire: Mapping[str, Any]) -> GameVerification:
    """One-shot audit of a published transcript."""
    verifier = AuditVerifier()
    verifier.load_transcript(wire)
    return verifier.verify_game(game_end_data_from_transcript(wire))
