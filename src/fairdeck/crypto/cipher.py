"""Authenticated encryption of sensitive game state.

AES-256-GCM with a per-game key derived from master key material via
HKDF-SHA256. Each call draws a fresh 96-bit nonce, so encrypting the
same plaintext twice yields different ciphertext.

Decryption fails closed: a wrong game id, a tampered payload, or a
payload produced before `rotate_key()` raises DecryptionError. It never
returns partially decrypted or substitute data.

Key material is shared mutable state guarded by a lock. Every encrypt
and decrypt observes exactly one key generation, either before or after
a concurrent rotation.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import secrets
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Sequence

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from fairdeck.crypto.commitments import sha256_hex
from fairdeck.models.card import Card, CardLike, as_card


logger = logging.getLogger(__name__)

KEY_LENGTH = 32     # 256-bit keys
NONCE_LENGTH = 12   # 96-bit GCM nonce
TAG_LENGTH = 16     # 128-bit GCM tag


class DecryptionError(Exception):
    """Raised when a payload fails authentication or targets another key."""


@dataclass(frozen=True)
class EncryptedPayload:
    """AES-GCM output bound to a game id and key version."""
    ciphertext: str         # base64
    nonce: str              # base64, 12 bytes
    auth_tag: str           # base64, 16 bytes
    key_version: int
    associated_data: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "ciphertext": self.ciphertext,
            "nonce": self.nonce,
            "authTag": self.auth_tag,
            "keyVersion": self.key_version,
            "associatedData": self.associated_data,
        }

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> EncryptedPayload:
        return EncryptedPayload(
            ciphertext=str(data["ciphertext"]),
            nonce=str(data["nonce"]),
            auth_tag=str(data["authTag"]),
            key_version=int(data["keyVersion"]),
            associated_data=str(data.get("associatedData", "")),
        )


def parse_master_key(value: bytes | str) -> bytes:
    """Accept raw key bytes or a 64-character hex string."""
    if isinstance(value, str):
        try:
            value = bytes.fromhex(value)
        except ValueError as exc:
            raise ValueError("Master key must be hex-encoded") from exc
    if len(value) != KEY_LENGTH:
        raise ValueError(
            f"Master key must be {KEY_LENGTH} bytes ({KEY_LENGTH * 2} hex characters), "
            f"got {len(value)} bytes"
        )
    return bytes(value)


class StateCipher:
    """Per-game AEAD with master key rotation.

    Usage:
        cipher = StateCipher(master_key=config.master_key_hex)
        payload = cipher.encrypt({"pot": 40}, "game-1")
        cipher.decrypt(payload, "game-1")        # {"pot": 40}
        cipher.decrypt(payload, "game-2")        # raises DecryptionError
        cipher.rotate_key()
        cipher.decrypt(payload, "game-1")        # raises DecryptionError
    """

    def __init__(
        self,
        master_key: bytes | str | None = None,
        key_version: int = 1,
        key_source: str | None = None,
    ) -> None:
        if key_version < 1:
            raise ValueError(f"key_version must be >= 1, got {key_version}")

        if master_key is None:
            self._master_key = AESGCM.generate_key(bit_length=KEY_LENGTH * 8)
            self._key_source = key_source or "generated"
        else:
            self._master_key = parse_master_key(master_key)
            self._key_source = key_source or "provided"

        self._key_version = key_version
        self._game_keys: dict[str, bytes] = {}
        self._lock = threading.RLock()

        logger.info(
            "State cipher initialised: source=%s version=%d fingerprint=%s",
            self._key_source, self._key_version, self.key_fingerprint,
        )

    # ------------------------------------------------------------------
    # Key management
    # ------------------------------------------------------------------

    @property
    def key_version(self) -> int:
        with self._lock:
            return self._key_version

    @property
    def key_fingerprint(self) -> str:
        """First 8 hex characters of H(master key). Safe to log."""
        with self._lock:
            return sha256_hex(self._master_key)[:8]

    def derive_game_key(self, game_id: str) -> bytes:
        """Derive (and cache) the key for one game.

        One-way in the master key; distinct game ids yield distinct keys.
        """
        with self._lock:
            key = self._game_keys.get(game_id)
            if key is None:
                key = _hkdf(self._master_key, game_id)
                self._game_keys[game_id] = key
            return key

    def rotate_key(self, new_master_key: bytes | str | None = None) -> int:
        """Replace the master key. Returns the new key version.

        Every payload produced under the previous key stops decrypting.
        """
        replacement = (
            parse_master_key(new_master_key)
            if new_master_key is not None
            else AESGCM.generate_key(bit_length=KEY_LENGTH * 8)
        )
        with self._lock:
            self._master_key = replacement
            self._key_version += 1
            self._game_keys.clear()
            self._key_source = "rotated"
            version = self._key_version
        logger.info("State cipher key rotated: version=%d fingerprint=%s", version, self.key_fingerprint)
        return version

    def cleanup_game(self, game_id: str) -> None:
        """Drop the cached key for a finished game."""
        with self._lock:
            self._game_keys.pop(game_id, None)

    def key_status(self) -> dict[str, Any]:
        with self._lock:
            return {
                "key_version": self._key_version,
                "key_source": self._key_source,
                "key_fingerprint": sha256_hex(self._master_key)[:8],
                "game_keys_cached": len(self._game_keys),
                "persistent": self._key_source == "environment",
            }

    # ------------------------------------------------------------------
    # Encrypt / decrypt
    # ------------------------------------------------------------------

    def encrypt(
        self,
        plaintext: Any,
        game_id: str,
        associated_data: str = "",
    ) -> EncryptedPayload:
        """Encrypt a JSON-serializable value for *game_id*."""
        with self._lock:
            key = self.derive_game_key(game_id)
            version = self._key_version

        nonce = secrets.token_bytes(NONCE_LENGTH)
        body = json.dumps(plaintext, ensure_ascii=False).encode("utf-8")
        sealed = AESGCM(key).encrypt(nonce, body, _aad(game_id, version, associated_data))

        return EncryptedPayload(
            ciphertext=_b64(sealed[:-TAG_LENGTH]),
            nonce=_b64(nonce),
            auth_tag=_b64(sealed[-TAG_LENGTH:]),
            key_version=version,
            associated_data=associated_data,
        )

    def decrypt(
        self,
        payload: EncryptedPayload | Mapping[str, Any],
        game_id: str,
        associated_data: str = "",
    ) -> Any:
        """Authenticate and decrypt a payload produced by `encrypt`.

        Raises DecryptionError on any authentication failure.
        """
        if not isinstance(payload, EncryptedPayload):
            try:
                payload = EncryptedPayload.from_dict(payload)
            except (KeyError, TypeError, ValueError) as exc:
                raise DecryptionError(f"Malformed encrypted payload: {exc}") from exc

        with self._lock:
            version = self._key_version
            if payload.key_version != version:
                logger.warning(
                    "Rejected payload for game %s: key version %d is not active version %d",
                    game_id, payload.key_version, version,
                )
                raise DecryptionError(
                    f"Payload was sealed under key version {payload.key_version}; "
                    f"active version is {version}"
                )
            key = self.derive_game_key(game_id)

        try:
            nonce = _unb64(payload.nonce)
            sealed = _unb64(payload.ciphertext) + _unb64(payload.auth_tag)
        except (binascii.Error, ValueError) as exc:
            raise DecryptionError(f"Malformed encrypted payload: {exc}") from exc

        if len(nonce) != NONCE_LENGTH:
            raise DecryptionError(f"Nonce must be {NONCE_LENGTH} bytes, got {len(nonce)}")

        try:
            body = AESGCM(key).decrypt(nonce, sealed, _aad(game_id, version, associated_data))
        except InvalidTag as exc:
            logger.warning("AEAD authentication failed for game %s", game_id)
            raise DecryptionError("Authentication failed: wrong game, key or tampered payload") from exc

        return json.loads(body.decode("utf-8"))

    # ------------------------------------------------------------------
    # Structured helpers
    # ------------------------------------------------------------------

    def encrypt_deck_state(self, deck: Sequence[CardLike], game_id: str) -> EncryptedPayload:
        """Seal an ordered deck, keeping each card's position."""
        cards = [as_card(c) for c in deck]
        return self.encrypt(
            {
                "cards": [
                    {"suit": c.suit, "rank": c.rank, "position": i}
                    for i, c in enumerate(cards)
                ],
                "timestamp": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
            },
            game_id,
            associated_data=f"deck_state_{game_id}",
        )

    def decrypt_deck_state(
        self,
        payload: EncryptedPayload | Mapping[str, Any],
        game_id: str,
    ) -> list[Card]:
        data = self.decrypt(payload, game_id, associated_data=f"deck_state_{game_id}")
        ordered = sorted(data["cards"], key=lambda c: c["position"])
        return [Card(suit=c["suit"], rank=c["rank"]) for c in ordered]

    def encrypt_card_data(
        self,
        card: CardLike,
        game_id: str,
        player_id: str,
        position: Optional[int] = None,
    ) -> EncryptedPayload:
        """Seal a single card for one player's eyes."""
        c = as_card(card)
        return self.encrypt(
            {"suit": c.suit, "rank": c.rank, "position": position},
            game_id,
            associated_data=f"card_{game_id}_{player_id}",
        )

    def decrypt_card_data(
        self,
        payload: EncryptedPayload | Mapping[str, Any],
        game_id: str,
        player_id: str,
    ) -> Card:
        data = self.decrypt(payload, game_id, associated_data=f"card_{game_id}_{player_id}")
        return Card(suit=data["suit"], rank=data["rank"])

    def encrypt_game_state(self, state: Mapping[str, Any], game_id: str) -> EncryptedPayload:
        return self.encrypt(dict(state), game_id, associated_data=f"game_state_{game_id}")

    def decrypt_game_state(
        self,
        payload: EncryptedPayload | Mapping[str, Any],
        game_id: str,
    ) -> dict[str, Any]:
        return self.decrypt(payload, game_id, associated_data=f"game_state_{game_id}")


def _hkdf(master_key: bytes, game_id: str) -> bytes:
    return HKDF(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=None,
        info=f"game_key_{game_id}".encode("utf-8"),
    ).derive(master_key)


def _aad(game_id: str, key_version: int, associated_data: str) -> bytes:
    return f"fairdeck|v{key_version}|{game_id}|{associated_data}".encode("utf-8")


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _unb64(text: str) -> bytes:
    return base64.b64decode(text.encode("ascii"), validate=True)
