"""Tests for StateCipher: proves payloads are bound to their game, key and associated data."""

import base64
import dataclasses
import threading

import pytest

from fairdeck.crypto.cipher import (
    DecryptionError,
    EncryptedPayload,
    StateCipher,
    parse_master_key,
)
from fairdeck.models.card import Card, standard_deck


MASTER_HEX = "11" * 32


@pytest.fixture
def cipher() -> StateCipher:
    return StateCipher(master_key=MASTER_HEX)


def _flip_first_byte(b64: str) -> str:
    raw = bytearray(base64.b64decode(b64))
    raw[0] ^= 0x01
    return base64.b64encode(bytes(raw)).decode("ascii")


class TestRoundTrip:
    def test_encrypt_decrypt(self, cipher: StateCipher) -> None:
        payload = cipher.encrypt({"pot": 40, "name": "Zoë"}, "game-1")
        assert cipher.decrypt(payload, "game-1") == {"pot": 40, "name": "Zoë"}

    def test_fresh_nonce_per_call(self, cipher: StateCipher) -> None:
        a = cipher.encrypt("same", "game-1")
        b = cipher.encrypt("same", "game-1")
        assert a.nonce != b.nonce
        assert a.ciphertext != b.ciphertext

    def test_payload_shape(self, cipher: StateCipher) -> None:
        payload = cipher.encrypt([1, 2, 3], "game-1")
        assert len(base64.b64decode(payload.nonce)) == 12
        assert len(base64.b64decode(payload.auth_tag)) == 16
        assert payload.key_version == 1

    def test_wire_dict_round_trip(self, cipher: StateCipher) -> None:
        payload = cipher.encrypt({"a": 1}, "game-1")
        wire = payload.to_dict()
        assert set(wire) == {"ciphertext", "nonce", "authTag", "keyVersion", "associatedData"}
        assert cipher.decrypt(wire, "game-1") == {"a": 1}


class TestFailClosed:
    def test_wrong_game_rejected(self, cipher: StateCipher) -> None:
        payload = cipher.encrypt({"a": 1}, "game-1")
        with pytest.raises(DecryptionError):
            cipher.decrypt(payload, "game-2")

    def test_tampered_ciphertext_rejected(self, cipher: StateCipher) -> None:
        payload = cipher.encrypt({"a": 1}, "game-1")
        bad = dataclasses.replace(payload, ciphertext=_flip_first_byte(payload.ciphertext))
        with pytest.raises(DecryptionError):
            cipher.decrypt(bad, "game-1")

    def test_tampered_tag_rejected(self, cipher: StateCipher) -> None:
        payload = cipher.encrypt({"a": 1}, "game-1")
        bad = dataclasses.replace(payload, auth_tag=_flip_first_byte(payload.auth_tag))
        with pytest.raises(DecryptionError):
            cipher.decrypt(bad, "game-1")

    def test_wrong_associated_data_rejected(self, cipher: StateCipher) -> None:
        payload = cipher.encrypt({"a": 1}, "game-1", associated_data="hand")
        with pytest.raises(DecryptionError):
            cipher.decrypt(payload, "game-1", associated_data="board")

    def test_other_master_key_rejected(self, cipher: StateCipher) -> None:
        payload = cipher.encrypt({"a": 1}, "game-1")
        other = StateCipher(master_key="22" * 32)
        with pytest.raises(DecryptionError):
            other.decrypt(payload, "game-1")

    def test_malformed_payload_rejected(self, cipher: StateCipher) -> None:
        with pytest.raises(DecryptionError):
            cipher.decrypt({"ciphertext": "x"}, "game-1")
        payload = cipher.encrypt({"a": 1}, "game-1")
        with pytest.raises(DecryptionError):
            cipher.decrypt(dataclasses.replace(payload, nonce="not base64!"), "game-1")

    def test_short_nonce_rejected(self, cipher: StateCipher) -> None:
        payload = cipher.encrypt({"a": 1}, "game-1")
        short = base64.b64encode(b"\x00" * 8).decode("ascii")
        with pytest.raises(DecryptionError):
            cipher.decrypt(dataclasses.replace(payload, nonce=short), "game-1")


class TestRotation:
    def test_rotation_invalidates_old_payloads(self, cipher: StateCipher) -> None:
        payload = cipher.encrypt({"a": 1}, "game-1")
        assert cipher.rotate_key() == 2
        with pytest.raises(DecryptionError):
            cipher.decrypt(payload, "game-1")

    def test_rotation_to_same_key_still_invalidates(self, cipher: StateCipher) -> None:
        payload = cipher.encrypt({"a": 1}, "game-1")
        cipher.rotate_key(MASTER_HEX)
        with pytest.raises(DecryptionError):
            cipher.decrypt(payload, "game-1")

    def test_new_payloads_work_after_rotation(self, cipher: StateCipher) -> None:
        old_key = cipher.derive_game_key("game-1")
        cipher.rotate_key()
        payload = cipher.encrypt({"a": 1}, "game-1")
        assert payload.key_version == 2
        assert cipher.decrypt(payload, "game-1") == {"a": 1}
        assert cipher.derive_game_key("game-1") != old_key

    def test_rotation_changes_fingerprint_and_source(self, cipher: StateCipher) -> None:
        before = cipher.key_fingerprint
        cipher.rotate_key()
        status = cipher.key_status()
        assert status["key_fingerprint"] != before
        assert status["key_source"] == "rotated"
        assert status["game_keys_cached"] == 0

    def test_concurrent_encrypts_share_one_generation(self, cipher: StateCipher) -> None:
        payloads: list[EncryptedPayload] = []
        lock = threading.Lock()

        def worker(n: int) -> None:
            p = cipher.encrypt({"n": n}, "game-1")
            with lock:
                payloads.append(p)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(16)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(cipher.decrypt(p, "game-1")["n"] for p in payloads) == list(range(16))


class TestKeyDerivation:
    def test_per_game_keys_differ(self, cipher: StateCipher) -> None:
        assert cipher.derive_game_key("game-1") != cipher.derive_game_key("game-2")
        assert len(cipher.derive_game_key("game-1")) == 32

    def test_derivation_is_deterministic(self) -> None:
        a = StateCipher(master_key=MASTER_HEX)
        b = StateCipher(master_key=bytes.fromhex(MASTER_HEX))
        assert a.derive_game_key("game-1") == b.derive_game_key("game-1")
        assert a.key_fingerprint == b.key_fingerprint

    def test_cleanup_drops_cached_key(self, cipher: StateCipher) -> None:
        cipher.derive_game_key("game-1")
        cipher.cleanup_game("game-1")
        assert cipher.key_status()["game_keys_cached"] == 0

    @pytest.mark.parametrize("bad", ["zz" * 32, "11" * 31, b"\x00" * 16])
    def test_bad_master_key(self, bad) -> None:
        with pytest.raises(ValueError):
            parse_master_key(bad)

    def test_key_status_sources(self) -> None:
        assert StateCipher().key_status()["key_source"] == "generated"
        assert StateCipher().key_status()["persistent"] is False
        env_backed = StateCipher(master_key=MASTER_HEX, key_source="environment")
        assert env_backed.key_status()["persistent"] is True
        assert len(env_backed.key_fingerprint) == 8

    def test_invalid_key_version(self) -> None:
        with pytest.raises(ValueError):
            StateCipher(key_version=0)


class TestStructuredHelpers:
    def test_deck_state_keeps_order(self, cipher: StateCipher) -> None:
        deck = list(reversed(standard_deck()))
        payload = cipher.encrypt_deck_state(deck, "game-1")
        assert payload.associated_data == "deck_state_game-1"
        assert cipher.decrypt_deck_state(payload, "game-1") == deck

    def test_deck_state_not_readable_as_game_state(self, cipher: StateCipher) -> None:
        payload = cipher.encrypt_deck_state(standard_deck(), "game-1")
        with pytest.raises(DecryptionError):
            cipher.decrypt_game_state(payload, "game-1")

    def test_card_bound_to_player(self, cipher: StateCipher) -> None:
        card = Card("Spades", "A")
        payload = cipher.encrypt_card_data(card, "game-1", "alice", position=3)
        assert cipher.decrypt_card_data(payload, "game-1", "alice") == card
        with pytest.raises(DecryptionError):
            cipher.decrypt_card_data(payload, "game-1", "bob")

    def test_game_state(self, cipher: StateCipher) -> None:
        payload = cipher.encrypt_game_state({"round": 2, "pot": 15}, "game-1")
        assert cipher.decrypt_game_state(payload, "game-1") == {"round": 2, "pot": 15}
