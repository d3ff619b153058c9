"""Deterministic, rejection-sampled Fisher-Yates shuffle.

Given the same deck and seed, every implementation produces the same
shuffle. Swap partners are drawn from

    value = uint32(first 8 hex chars of H(seed + ":" + i + ":" + attempt))

and accepted only when value < floor(0xFFFFFFFF / (i + 1)) * (i + 1),
which removes modulo bias. Rejected draws retry with attempt + 1, up to
MAX_REJECTION_ATTEMPTS. Exhausting every attempt raises rather than
falling back to a biased draw.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Sequence, TypeVar

from fairdeck.crypto.commitments import compute_transcript_hash, sha256_hex
from fairdeck.models.card import CardLike, as_card, as_deck
from fairdeck.models.transcript import ShuffleTranscript


SHUFFLE_VERSION = "1.0.0"
MAX_REJECTION_ATTEMPTS = 100
_UINT32_MAX = 0xFFFFFFFF

T = TypeVar("T")


class RejectionSamplingExhausted(RuntimeError):
    """Every rejection-sampling attempt fell in the biased tail."""


@dataclass(frozen=True)
class ShuffleResult:
    """Output of a deterministic shuffle.

    shuffled[k] == original[permutation[k]] for every position k.
    """
    shuffled: list
    permutation: list[int]


@dataclass(frozen=True)
class ShuffleVerification:
    """Outcome of re-running a shuffle against a claimed result."""
    valid: bool
    shuffle_matches: bool
    permutation_matches: Optional[bool] = None  # None when no permutation was claimed
    mismatched_positions: list[int] = field(default_factory=list)
    error: Optional[str] = None
    shuffle_version: str = SHUFFLE_VERSION


@dataclass(frozen=True)
class DealingStep:
    """One card handed to one player during the deal."""
    card_index: int
    player_index: int
    round: int


# ---------------------------------------------------------------------------
# Index sampling
# ---------------------------------------------------------------------------

def _candidate(seed: str, i: int, attempt: int) -> int:
    digest = sha256_hex(f"{seed}:{i}:{attempt}")
    return int(digest[:8], 16)


def unbiased_index(seed: str, i: int, attempt: int = 0) -> int:
    """Draw an index in [0, i] without modulo bias.

    Raises RejectionSamplingExhausted if no candidate is accepted
    before MAX_REJECTION_ATTEMPTS.
    """
    if i < 0:
        raise ValueError(f"Index must be non-negative, got {i}")
    bound = i + 1
    limit = (_UINT32_MAX // bound) * bound

    while attempt < MAX_REJECTION_ATTEMPTS:
        value = _candidate(seed, i, attempt)
        if value < limit:
            return value % bound
        attempt += 1

    raise RejectionSamplingExhausted(
        f"No unbiased candidate for i={i} after {MAX_REJECTION_ATTEMPTS} attempts"
    )


# ---------------------------------------------------------------------------
# Shuffle
# ---------------------------------------------------------------------------

def deterministic_shuffle(deck: Sequence[T], seed: str) -> ShuffleResult:
    """Shuffle *deck* with Fisher-Yates driven entirely by *seed*.

    Pure: the input is not modified and identical (deck, seed) always
    yields an identical result.
    """
    if not isinstance(seed, str) or not seed:
        raise ValueError("Seed must be a non-empty string")

    shuffled = list(deck)
    permutation = list(range(len(shuffled)))

    for i in range(len(shuffled) - 1, 0, -1):
        j = unbiased_index(seed, i)
        shuffled[i], shuffled[j] = shuffled[j], shuffled[i]
        permutation[i], permutation[j] = permutation[j], permutation[i]

    return ShuffleResult(shuffled=shuffled, permutation=permutation)


def is_permutation(permutation: Sequence[int], size: int) -> bool:
    """True if *permutation* is a bijection over range(size)."""
    if len(permutation) != size:
        return False
    return sorted(permutation) == list(range(size))


def verify_shuffle(
    original_deck: Sequence[CardLike],
    claimed_deck: Sequence[CardLike],
    seed: str,
    claimed_permutation: Optional[Sequence[int]] = None,
) -> ShuffleVerification:
    """Re-run the shuffle and compare suit and rank at every position.

    Never raises: unreadable input is reported as valid=False with an
    error message.
    """
    try:
        original = as_deck(original_deck)
        claimed = as_deck(claimed_deck)
        expected = deterministic_shuffle(original, seed)
    except (KeyError, TypeError, ValueError, RejectionSamplingExhausted) as exc:
        return ShuffleVerification(valid=False, shuffle_matches=False, error=str(exc))

    if len(claimed) != len(expected.shuffled):
        return ShuffleVerification(
            valid=False,
            shuffle_matches=False,
            error=f"Deck size mismatch: expected {len(expected.shuffled)}, got {len(claimed)}",
        )

    mismatched = [
        k for k, (want, got) in enumerate(zip(expected.shuffled, claimed))
        if want.suit != got.suit or want.rank != got.rank
    ]
    shuffle_matches = not mismatched

    permutation_matches: Optional[bool] = None
    if claimed_permutation is not None:
        permutation_matches = list(claimed_permutation) == expected.permutation

    return ShuffleVerification(
        valid=shuffle_matches and permutation_matches is not False,
        shuffle_matches=shuffle_matches,
        permutation_matches=permutation_matches,
        mismatched_positions=mismatched,
    )


# ---------------------------------------------------------------------------
# Dealing order
# ---------------------------------------------------------------------------

def derive_dealing_seed(game_id: str, game_secret: str) -> str:
    """Seed for the seat dealing order, kept apart from the deck seed."""
    return sha256_hex(f"deal:{game_id}:{game_secret}")


def generate_dealing_order(player_count: int, dealing_seed: str) -> list[int]:
    """Seed-driven permutation of seat indices, same algorithm as the deck."""
    if player_count < 1:
        raise ValueError(f"player_count must be >= 1, got {player_count}")
    return deterministic_shuffle(list(range(player_count)), dealing_seed).shuffled


def generate_card_dealing_sequence(
    deck_size: int,
    player_count: int,
    dealing_seed: str,
) -> list[DealingStep]:
    """Expand a dealing order into (card, player, round) steps.

    Each round deals one card to every seat in dealing order; leftover
    cards that do not fill a full round are not dealt.
    """
    order = generate_dealing_order(player_count, dealing_seed)
    cards_per_player = deck_size // player_count
    steps: list[DealingStep] = []
    for rnd in range(cards_per_player):
        for position, player_index in enumerate(order):
            steps.append(DealingStep(
                card_index=rnd * player_count + position,
                player_index=player_index,
                round=rnd,
            ))
    return steps


# ---------------------------------------------------------------------------
# Transcript
# ---------------------------------------------------------------------------

def generate_verification_transcript(
    game_id: str,
    player_commitments: Mapping[str, str],
    player_reveals: Mapping[str, str],
    final_seed: str,
    original_deck: Sequence[CardLike],
    shuffled_deck: Sequence[CardLike],
    permutation: Sequence[int],
    timestamp: str,
    timestamp_commitment: Optional[str] = None,
    deck_commitment: Optional[str] = None,
    nonce: Optional[str] = None,
    extra: Optional[Mapping[str, Any]] = None,
) -> ShuffleTranscript:
    """Assemble an immutable transcript and hash its full contents."""
    original = tuple(as_card(c) for c in original_deck)
    shuffled = tuple(as_card(c) for c in shuffled_deck)
    if len(shuffled) != len(original):
        raise ValueError(
            f"Shuffled deck has {len(shuffled)} cards, original has {len(original)}"
        )
    if not is_permutation(permutation, len(original)):
        raise ValueError("Permutation is not a bijection over the deck positions")

    transcript = ShuffleTranscript(
        game_id=game_id,
        player_commitments=dict(player_commitments),
        player_reveals=dict(player_reveals),
        final_seed=final_seed,
        original_deck=original,
        shuffled_deck=shuffled,
        permutation=tuple(int(i) for i in permutation),
        timestamp=timestamp,
        timestamp_commitment=timestamp_commitment,
        deck_commitment=deck_commitment,
        nonce=nonce,
        version=SHUFFLE_VERSION,
        extra=dict(extra or {}),
    )
    digest = compute_transcript_hash(transcript.to_wire(include_hash=False))
    return dataclasses.replace(transcript, transcript_hash=digest)
