"""Cryptographic primitives: hash commitments and authenticated state encryption."""

from fairdeck.crypto.cipher import DecryptionError, EncryptedPayload, StateCipher
from fairdeck.crypto.commitments import (
    combine_final_seed,
    create_randomness_commitment,
    deck_commitment,
    seed_commitment,
    sha256_hex,
    timestamp_commitment,
)

__all__ = [
    "DecryptionError",
    "EncryptedPayload",
    "StateCipher",
    "combine_final_seed",
    "create_randomness_commitment",
    "deck_commitment",
    "seed_commitment",
    "sha256_hex",
    "timestamp_commitment",
]
