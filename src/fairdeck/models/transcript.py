"""Shuffle transcript: the exportable record of one ceremony and shuffle.

The wire form uses camelCase keys so the same document can be consumed
by verifiers written in other languages:

    {gameId, playerCommitments, playerReveals, timestamp,
     timestampCommitment, finalSeed, deckCommitment, nonce,
     originalDeck, shuffledDeck, permutation, version, transcriptHash}
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from fairdeck.models.card import Card, as_deck, deck_to_wire
from fairdeck.models.ceremony import player_sort_key


TRANSCRIPT_VERSION = "1.0.0"


def _by_player(values: Mapping[str, str]) -> dict[str, str]:
    return {pid: values[pid] for pid in sorted(values, key=player_sort_key)}


@dataclass(frozen=True)
class ShuffleTranscript:
    """Immutable end-of-game record. Created once, never edited."""
    game_id: str
    player_commitments: dict[str, str]
    player_reveals: dict[str, str]
    final_seed: str
    original_deck: tuple[Card, ...]
    shuffled_deck: tuple[Card, ...]
    permutation: tuple[int, ...]
    timestamp: str
    timestamp_commitment: Optional[str] = None
    deck_commitment: Optional[str] = None
    nonce: Optional[str] = None
    version: str = TRANSCRIPT_VERSION
    transcript_hash: str = ""
    extra: dict[str, Any] = field(default_factory=dict)

    def to_wire(self, include_hash: bool = True) -> dict[str, Any]:
        """Return the JSON-ready wire form."""
        wire: dict[str, Any] = {
            "version": self.version,
            "gameId": self.game_id,
            "playerCommitments": _by_player(self.player_commitments),
            "playerReveals": _by_player(self.player_reveals),
            "timestamp": self.timestamp,
            "timestampCommitment": self.timestamp_commitment,
            "finalSeed": self.final_seed,
            "deckCommitment": self.deck_commitment,
            "nonce": self.nonce,
            "originalDeck": deck_to_wire(self.original_deck),
            "shuffledDeck": deck_to_wire(self.shuffled_deck),
            "permutation": list(self.permutation),
        }
        if self.extra:
            wire["extra"] = dict(self.extra)
        if include_hash:
            wire["transcriptHash"] = self.transcript_hash
        return wire

    @staticmethod
    def from_wire(data: Mapping[str, Any]) -> ShuffleTranscript:
        """Rebuild a transcript from its wire form.

        Raises KeyError / ValueError on structurally invalid input.
        """
        return ShuffleTranscript(
            game_id=str(data["gameId"]),
            player_commitments={str(k): str(v) for k, v in data.get("playerCommitments", {}).items()},
            player_reveals={str(k): str(v) for k, v in data.get("playerReveals", {}).items()},
            final_seed=str(data["finalSeed"]),
            original_deck=tuple(as_deck(data.get("originalDeck", []))),
            shuffled_deck=tuple(as_deck(data.get("shuffledDeck", []))),
            permutation=tuple(int(i) for i in data.get("permutation", [])),
            timestamp=str(data["timestamp"]),
            timestamp_commitment=data.get("timestampCommitment"),
            deck_commitment=data.get("deckCommitment"),
            nonce=data.get("nonce"),
            version=str(data.get("version", TRANSCRIPT_VERSION)),
            transcript_hash=str(data.get("transcriptHash", "")),
            extra=dict(data.get("extra", {})),
        )
