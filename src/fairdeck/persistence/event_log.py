"""Append-only event log: the audit trail of every fairness action.

Each ceremony step, shuffle, checkpoint and key rotation the service
performs produces an event record appended here. Records are immutable
and carry a SHA-256 over their canonical JSON, so a persisted log can be
re-verified line by line when it is loaded back.

Secrets never enter the log: seeds appear only after they were revealed
and encryption keys appear only as fingerprints.
"""

from __future__ import annotations

import enum
import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping, Optional


class EventKind(str, enum.Enum):
    """Classification of fairness events."""
    CEREMONY_OPENED = "ceremony_opened"
    SEED_COMMITTED = "seed_committed"
    COMMITMENT_PHASE_CLOSED = "commitment_phase_closed"
    SEED_REVEALED = "seed_revealed"
    CEREMONY_SEALED = "ceremony_sealed"
    CEREMONY_ABORTED = "ceremony_aborted"
    # Deck events
    DECK_SHUFFLED = "deck_shuffled"
    DECK_SEALED = "deck_sealed"
    # Integrity events
    CHECKPOINT_CREATED = "checkpoint_created"
    CHECKPOINT_VERIFIED = "checkpoint_verified"
    KEY_ROTATED = "key_rotated"
    TRANSCRIPT_EXPORTED = "transcript_exported"
    GAME_CLOSED = "game_closed"


def _event_hash(
    event_id: str,
    event_kind: str,
    timestamp_utc: str,
    game_id: str,
    actor_id: str,
    payload: Mapping[str, Any],
) -> str:
    canonical = json.dumps(
        {
            "event_id": event_id,
            "event_kind": event_kind,
            "timestamp_utc": timestamp_utc,
            "game_id": game_id,
            "actor_id": actor_id,
            "payload": payload,
        },
        sort_keys=True,
        ensure_ascii=False,
    ).encode("utf-8")
    return f"sha256:{hashlib.sha256(canonical).hexdigest()}"


@dataclass(frozen=True)
class EventRecord:
    """A single immutable event.

    actor_id is the player who triggered the event, or "dealer" for
    steps the service performs itself.
    """
    event_id: str
    event_kind: EventKind
    timestamp_utc: str
    game_id: str
    actor_id: str
    payload: dict[str, Any]
    event_hash: str

    @staticmethod
    def create(
        event_id: str,
        event_kind: EventKind,
        game_id: str,
        actor_id: str,
        payload: dict[str, Any],
        timestamp_utc: Optional[datetime] = None,
    ) -> EventRecord:
        """Create a new event record with computed hash."""
        ts = timestamp_utc or datetime.now(timezone.utc)
        ts_str = ts.strftime("%Y-%m-%dT%H:%M:%SZ")
        return EventRecord(
            event_id=event_id,
            event_kind=event_kind,
            timestamp_utc=ts_str,
            game_id=game_id,
            actor_id=actor_id,
            payload=payload,
            event_hash=_event_hash(event_id, event_kind.value, ts_str, game_id, actor_id, payload),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_kind": self.event_kind.value,
            "timestamp_utc": self.timestamp_utc,
            "game_id": self.game_id,
            "actor_id": self.actor_id,
            "payload": self.payload,
            "event_hash": self.event_hash,
        }


class EventLog:
    """Append-only event log with optional JSONL persistence.

    Events can only be appended, never modified or deleted. Loading a
    persisted log is fail-closed: a line whose hash does not match its
    contents, or a repeated event id, raises ValueError.
    """

    def __init__(self, storage_path: Optional[Path] = None) -> None:
        self._events: list[EventRecord] = []
        self._storage_path = storage_path
        self._event_ids: set[str] = set()

        if storage_path and storage_path.exists():
            self._load_from_file(storage_path)

    def append(self, event: EventRecord) -> None:
        """Append an event. Raises ValueError on a duplicate event_id."""
        if event.event_id in self._event_ids:
            raise ValueError(f"Duplicate event ID: {event.event_id}")

        self._events.append(event)
        self._event_ids.add(event.event_id)

        if self._storage_path:
            with self._storage_path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(event.to_dict(), sort_keys=True, ensure_ascii=False) + "\n")

    def events(
        self,
        kind: Optional[EventKind] = None,
        game_id: Optional[str] = None,
    ) -> list[EventRecord]:
        """Return events, optionally filtered by kind and game."""
        return [
            e for e in self._events
            if (kind is None or e.event_kind == kind)
            and (game_id is None or e.game_id == game_id)
        ]

    def event_hashes(self, game_id: Optional[str] = None) -> list[str]:
        return [e.event_hash for e in self.events(game_id=game_id)]

    @property
    def count(self) -> int:
        return len(self._events)

    @property
    def last_event(self) -> Optional[EventRecord]:
        return self._events[-1] if self._events else None

    def _load_from_file(self, path: Path) -> None:
        with path.open("r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                data = json.loads(line)
                event_id = data["event_id"]

                if event_id in self._event_ids:
                    raise ValueError(
                        f"Duplicate event ID on recovery (line {line_num}): {event_id}"
                    )

                expected_hash = _event_hash(
                    event_id,
                    data["event_kind"],
                    data["timestamp_utc"],
                    data["game_id"],
                    data["actor_id"],
                    data["payload"],
                )
                if data["event_hash"] != expected_hash:
                    raise ValueError(
                        f"Integrity check failed (line {line_num}): event {event_id} "
                        f"stored hash {data['event_hash']} != computed {expected_hash}"
                    )

                self._events.append(EventRecord(
                    event_id=event_id,
                    event_kind=EventKind(data["event_kind"]),
                    timestamp_utc=data["timestamp_utc"],
                    game_id=data["game_id"],
                    actor_id=data["actor_id"],
                    payload=data["payload"],
                    event_hash=data["event_hash"],
                ))
                self._event_ids.add(event_id)
