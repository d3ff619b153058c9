"""Tests for integrity checkpoints: proves any change to a hashed field is reported as tampering."""

import hashlib
import json

import pytest

from fairdeck.engine.checkpoint import (
    Checkpoint,
    IntegrityCheckpoint,
    compare_checkpoint,
    compute_state_hash,
)

from conftest import START_MS, FakeClock


STATE = {
    "deckCommitment": "c" * 64,
    "dealtCards": [{"suit": "Hearts", "rank": "A"}, {"suit": "Clubs", "rank": "10"}],
    "playerCount": 4,
    "currentRound": 1,
    "pot": 120,
}


@pytest.fixture
def checkpoints(clock: FakeClock) -> IntegrityCheckpoint:
    return IntegrityCheckpoint(interval_ms=30_000, clock=clock)


class TestStateHash:
    def test_hash_preimage(self) -> None:
        body = json.dumps(
            {
                "deckCommitment": STATE["deckCommitment"],
                "dealtCards": STATE["dealtCards"],
                "playerCount": 4,
                "currentRound": 1,
            },
            separators=(",", ":"),
        )
        assert compute_state_hash(STATE) == hashlib.sha256(body.encode("utf-8")).hexdigest()

    def test_python_aliases_hash_identically(self) -> None:
        aliased = {
            "deck_commitment": STATE["deckCommitment"],
            "dealt_cards": STATE["dealtCards"],
            "player_count": 4,
            "current_round": 1,
        }
        assert compute_state_hash(aliased) == compute_state_hash(STATE)

    def test_unhashed_fields_ignored(self) -> None:
        assert compute_state_hash({**STATE, "pot": 999}) == compute_state_hash(STATE)


class TestCreateAndVerify:
    def test_unchanged_state_verifies(self, checkpoints: IntegrityCheckpoint) -> None:
        cp = checkpoints.create_checkpoint("game-1", STATE)
        result = checkpoints.verify_checkpoint(cp.id, dict(STATE))
        assert result.valid
        assert not result.tampering
        assert result.checked
        assert result.actual_hash == cp.state_hash

    def test_checkpoint_record(self, checkpoints: IntegrityCheckpoint) -> None:
        cp = checkpoints.create_checkpoint("game-1", STATE)
        assert len(cp.id) == 16
        assert cp.game_id == "game-1"
        assert cp.timestamp_ms == START_MS
        assert "pot" not in cp.state

    @pytest.mark.parametrize(
        "field,value",
        [
            ("deckCommitment", "d" * 64),
            ("dealtCards", [{"suit": "Hearts", "rank": "K"}]),
            ("playerCount", 5),
            ("currentRound", 2),
        ],
    )
    def test_each_field_detected(
        self, checkpoints: IntegrityCheckpoint, field: str, value,
    ) -> None:
        cp = checkpoints.create_checkpoint("game-1", STATE)
        result = checkpoints.verify_checkpoint(cp.id, {**STATE, field: value})
        assert not result.valid
        assert result.tampering
        assert result.changed_fields == [field]

    def test_in_place_mutation_reports_field(self, checkpoints: IntegrityCheckpoint) -> None:
        live = json.loads(json.dumps(STATE))
        cp = checkpoints.create_checkpoint("game-1", live)
        live["dealtCards"].append({"suit": "Spades", "rank": "K"})

        assert len(cp.state["dealtCards"]) == 2
        result = checkpoints.verify_checkpoint(cp.id, live)
        assert result.tampering
        assert result.changed_fields == ["dealtCards"]

    def test_unknown_checkpoint_not_checked(self, checkpoints: IntegrityCheckpoint) -> None:
        result = checkpoints.verify_checkpoint("missing", STATE)
        assert not result.valid
        assert not result.tampering
        assert not result.checked
        assert result.error == "Checkpoint not found"

    def test_compare_with_exported_checkpoint(self, checkpoints: IntegrityCheckpoint) -> None:
        cp = checkpoints.create_checkpoint("game-1", STATE)
        restored = Checkpoint.from_dict(cp.to_dict())
        assert restored == cp
        assert compare_checkpoint(restored, STATE).valid


class TestHistory:
    def test_checkpoints_listed_in_order(
        self, checkpoints: IntegrityCheckpoint, clock: FakeClock,
    ) -> None:
        first = checkpoints.create_checkpoint("game-1", STATE)
        clock.advance(1_000)
        second = checkpoints.create_checkpoint("game-1", {**STATE, "currentRound": 2})
        checkpoints.create_checkpoint("game-2", STATE)

        assert [c.id for c in checkpoints.get_checkpoints("game-1")] == [first.id, second.id]
        assert checkpoints.get_latest_checkpoint("game-1") == second
        assert checkpoints.get_latest_checkpoint("game-3") is None

    def test_interval(self, checkpoints: IntegrityCheckpoint, clock: FakeClock) -> None:
        assert checkpoints.should_create_checkpoint("game-1")
        checkpoints.create_checkpoint("game-1", STATE)
        clock.advance(29_999)
        assert not checkpoints.should_create_checkpoint("game-1")
        clock.advance(1)
        assert checkpoints.should_create_checkpoint("game-1")

    def test_cleanup_game(self, checkpoints: IntegrityCheckpoint) -> None:
        cp = checkpoints.create_checkpoint("game-1", STATE)
        checkpoints.cleanup_game("game-1")
        assert checkpoints.get_checkpoints("game-1") == []
        assert checkpoints.get_checkpoint(cp.id) is None
        assert not checkpoints.verify_checkpoint(cp.id, STATE).checked

    def test_negative_interval_rejected(self) -> None:
        with pytest.raises(ValueError):
            IntegrityCheckpoint(interval_ms=-1)
