"""Core data models for fairdeck."""

from fairdeck.models.card import (
    Card,
    DECK_SIZE,
    STANDARD_RANKS,
    STANDARD_SUITS,
    serialize_deck,
    standard_deck,
    validate_deck,
)
from fairdeck.models.ceremony import (
    CeremonyResult,
    CeremonyState,
    PlayerCommitment,
    PlayerReveal,
    ProtocolError,
)
from fairdeck.models.transcript import ShuffleTranscript, TRANSCRIPT_VERSION

__all__ = [
    "Card",
    "DECK_SIZE",
    "STANDARD_RANKS",
    "STANDARD_SUITS",
    "serialize_deck",
    "standard_deck",
    "validate_deck",
    "CeremonyResult",
    "CeremonyState",
    "PlayerCommitment",
    "PlayerReveal",
    "ProtocolError",
    "ShuffleTranscript",
    "TRANSCRIPT_VERSION",
]
