"""Card and deck models.

A deck is an ordered list of Card values. Its canonical serialization
("suit:rank" joined by "|") is the preimage used for deck commitments
and must match byte-for-byte across every implementation that verifies
a game.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Sequence, Union


STANDARD_SUITS: tuple[str, ...] = ("Hearts", "Diamonds", "Clubs", "Spades")
STANDARD_RANKS: tuple[str, ...] = (
    "A", "2", "3", "4", "5", "6", "7", "8", "9", "10", "J", "Q", "K",
)
DECK_SIZE = 52

CARD_SEPARATOR = "|"
FIELD_SEPARATOR = ":"


@dataclass(frozen=True)
class Card:
    """A single playing card."""
    suit: str
    rank: str

    def serialize(self) -> str:
        """Canonical "suit:rank" form."""
        return f"{self.suit}{FIELD_SEPARATOR}{self.rank}"

    def to_dict(self) -> dict[str, str]:
        return {"suit": self.suit, "rank": self.rank}

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> Card:
        return Card(suit=str(data["suit"]), rank=str(data["rank"]))

    @staticmethod
    def parse(text: str) -> Card:
        """Parse the canonical "suit:rank" form."""
        suit, sep, rank = text.partition(FIELD_SEPARATOR)
        if not sep or not suit or not rank:
            raise ValueError(f"Malformed card string: {text!r}")
        return Card(suit=suit, rank=rank)


CardLike = Union[Card, Mapping[str, Any], str]


def as_card(value: CardLike) -> Card:
    """Coerce a Card, a {suit, rank} mapping or a "suit:rank" string."""
    if isinstance(value, Card):
        return value
    if isinstance(value, str):
        return Card.parse(value)
    return Card.from_dict(value)


def as_deck(values: Iterable[CardLike]) -> list[Card]:
    return [as_card(v) for v in values]


def standard_deck() -> list[Card]:
    """Return the 52-card deck in its canonical unshuffled order."""
    return [Card(suit=s, rank=r) for s in STANDARD_SUITS for r in STANDARD_RANKS]


def serialize_deck(deck: Sequence[CardLike]) -> str:
    """Serialize a deck for hashing: "suit:rank" joined by "|"."""
    return CARD_SEPARATOR.join(as_card(c).serialize() for c in deck)


def deck_to_wire(deck: Sequence[Card]) -> list[dict[str, str]]:
    return [c.to_dict() for c in deck]


def validate_deck(deck: Sequence[CardLike], expected_size: int = DECK_SIZE) -> list[str]:
    """Check a deck is exactly *expected_size* unique cards.

    Returns a list of validation errors. Empty list means valid.
    """
    errors: list[str] = []
    try:
        cards = as_deck(deck)
    except (KeyError, TypeError, ValueError) as exc:
        return [f"Unreadable card in deck: {exc}"]

    if len(cards) != expected_size:
        errors.append(f"Deck must contain {expected_size} cards, got {len(cards)}")

    seen: set[Card] = set()
    for position, card in enumerate(cards):
        if card in seen:
            errors.append(f"Duplicate card at position {position}: {card.serialize()}")
        seen.add(card)
    return errors
