"""Tests for the append-only event log: proves records are immutable, unique and verified on reload."""

import json
from datetime import datetime, timezone

import pytest

from fairdeck.persistence.event_log import EventKind, EventLog, EventRecord


def _event(n: int, kind: EventKind = EventKind.SEED_COMMITTED, game_id: str = "game-1") -> EventRecord:
    return EventRecord.create(
        event_id=f"EVT-{n:08d}",
        event_kind=kind,
        game_id=game_id,
        actor_id="alice",
        payload={"player_id": "alice", "n": n},
        timestamp_utc=datetime(2026, 10, 18, 12, 0, 0, tzinfo=timezone.utc),
    )


class TestEventRecord:
    def test_hash_format(self) -> None:
        event = _event(1)
        assert event.event_hash.startswith("sha256:")
        assert len(event.event_hash) == len("sha256:") + 64
        assert event.timestamp_utc == "2026-10-18T12:00:00Z"

    def test_hash_depends_on_game(self) -> None:
        assert _event(1, game_id="game-1").event_hash != _event(1, game_id="game-2").event_hash

    def test_frozen(self) -> None:
        event = _event(1)
        with pytest.raises(AttributeError):
            event.actor_id = "mallory"  # type: ignore[misc]


class TestEventLog:
    def test_append_and_filter(self) -> None:
        log = EventLog()
        log.append(_event(1))
        log.append(_event(2, EventKind.SEED_REVEALED))
        log.append(_event(3, EventKind.SEED_REVEALED, game_id="game-2"))

        assert log.count == 3
        assert len(log.events(EventKind.SEED_REVEALED)) == 2
        assert len(log.events(game_id="game-2")) == 1
        assert len(log.events(EventKind.SEED_REVEALED, game_id="game-1")) == 1
        assert log.last_event.event_id == "EVT-00000003"
        assert len(log.event_hashes(game_id="game-1")) == 2

    def test_duplicate_id_rejected(self) -> None:
        log = EventLog()
        log.append(_event(1))
        with pytest.raises(ValueError, match="Duplicate event ID"):
            log.append(_event(1))

    def test_empty_log(self) -> None:
        log = EventLog()
        assert log.count == 0
        assert log.last_event is None


class TestPersistence:
    def test_round_trip(self, tmp_path) -> None:
        path = tmp_path / "events.jsonl"
        log = EventLog(storage_path=path)
        log.append(_event(1))
        log.append(_event(2, EventKind.CEREMONY_SEALED))

        reloaded = EventLog(storage_path=path)
        assert reloaded.count == 2
        assert reloaded.events() == log.events()

    def test_tampered_line_rejected(self, tmp_path) -> None:
        path = tmp_path / "events.jsonl"
        log = EventLog(storage_path=path)
        log.append(_event(1))

        record = json.loads(path.read_text(encoding="utf-8"))
        record["payload"]["player_id"] = "mallory"
        path.write_text(json.dumps(record) + "\n", encoding="utf-8")

        with pytest.raises(ValueError, match="Integrity check failed"):
            EventLog(storage_path=path)

    def test_duplicate_line_rejected(self, tmp_path) -> None:
        path = tmp_path / "events.jsonl"
        EventLog(storage_path=path).append(_event(1))
        line = path.read_text(encoding="utf-8")
        path.write_text(line + line, encoding="utf-8")

        with pytest.raises(ValueError, match="Duplicate event ID on recovery"):
            EventLog(storage_path=path)
