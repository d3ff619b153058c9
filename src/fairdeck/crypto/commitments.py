"""Hash commitments and the byte encodings they are computed over.

Every preimage is a UTF-8 string and every digest is lowercase hex
SHA-256. These encodings are an interoperability contract: a verifier
written in any language must hash the same bytes to reach the same
values.

    seed commitment       H(seed)
    deck commitment       H(serialize_deck(deck) + ":" + nonce)
    timestamp commitment  H(timestamp)
    final seed            H("||".join(reveals sorted by player_sort_key) + "||" + timestamp)
"""

from __future__ import annotations

import hashlib
import hmac
import json
import re
import secrets
from typing import Any, Mapping, Sequence

from fairdeck.models.card import CardLike, serialize_deck
from fairdeck.models.ceremony import player_sort_key


SEED_SEPARATOR = "||"
DECK_NONCE_SEPARATOR = ":"

_SHA256_HEX = re.compile(r"^[0-9a-fA-F]{64}$")


def sha256_hex(data: str | bytes) -> str:
    """SHA-256 of a UTF-8 string (or raw bytes) as lowercase hex."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def is_sha256_hex(value: Any) -> bool:
    return isinstance(value, str) and bool(_SHA256_HEX.match(value))


def digests_equal(a: Any, b: Any) -> bool:
    """Constant-time, case-insensitive comparison of two hex digests."""
    if not isinstance(a, str) or not isinstance(b, str):
        return False
    return hmac.compare_digest(a.lower().encode("ascii", "replace"), b.lower().encode("ascii", "replace"))


def canonical_json(obj: Any) -> str:
    """Canonical JSON: sorted keys, compact separators, Unicode preserved."""
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


# ------------------------------------------------------------------
# Seeds
# ------------------------------------------------------------------

def generate_random_seed(num_bytes: int = 32) -> str:
    """Cryptographically secure random seed as hex."""
    return secrets.token_hex(num_bytes)


def seed_commitment(seed: str) -> str:
    return sha256_hex(seed)


def create_randomness_commitment(seed: str | None = None) -> dict[str, str]:
    """Player-side helper: pick a seed (if not given) and commit to it.

    The seed must stay private until the reveal phase; only the
    commitment is shared during the commit phase.
    """
    if not seed:
        seed = generate_random_seed()
    return {"seed": seed, "commitment": seed_commitment(seed)}


def combine_final_seed(reveals: Mapping[str, str], timestamp: str) -> str:
    """Derive the final seed from revealed seeds and the committed timestamp.

    Reveals are ordered by `player_sort_key` so the result does not
    depend on reveal arrival order.
    """
    ordered = [reveals[player_id] for player_id in sorted(reveals, key=player_sort_key)]
    combined = SEED_SEPARATOR.join(ordered) + SEED_SEPARATOR + timestamp
    return sha256_hex(combined)


# ------------------------------------------------------------------
# Timestamps
# ------------------------------------------------------------------

def timestamp_commitment(timestamp: str) -> str:
    return sha256_hex(timestamp)


# ------------------------------------------------------------------
# Decks
# ------------------------------------------------------------------

def generate_nonce(num_bytes: int = 32) -> str:
    return secrets.token_hex(num_bytes)


def deck_commitment(deck: Sequence[CardLike], nonce: str) -> str:
    return sha256_hex(serialize_deck(deck) + DECK_NONCE_SEPARATOR + nonce)


# ------------------------------------------------------------------
# Transcripts
# ------------------------------------------------------------------

def compute_transcript_hash(wire: Mapping[str, Any]) -> str:
    """Hash every transcript field except the hash itself."""
    body = {k: v for k, v in wire.items() if k != "transcriptHash"}
    return sha256_hex(canonical_json(body))
