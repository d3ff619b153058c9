"""Fairness service: unified facade over one or more live games.

Orchestrates every fairness subsystem for a game:
- Randomness ceremony (commit, close, reveal, seal)
- Deterministic shuffle and deck commitment
- Sealed deck storage under the per-game key
- State checkpoints
- Transcript export for independent audit
- Master key rotation

Every operation returns a ServiceResult and appends an EventRecord to
the event log. If the audit event cannot be written, the operation
reports failure. A ceremony that cannot produce a final seed records
CEREMONY_ABORTED and the deck is never shuffled.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional, Sequence

from fairdeck.config import FairnessConfig
from fairdeck.crypto.cipher import DecryptionError, EncryptedPayload, StateCipher
from fairdeck.crypto.commitments import deck_commitment, generate_nonce
from fairdeck.engine.checkpoint import IntegrityCheckpoint
from fairdeck.engine.coordinator import Clock, RandomnessCoordinator, TimeLockCoordinator
from fairdeck.engine.shuffle import (
    RejectionSamplingExhausted,
    ShuffleResult,
    derive_dealing_seed,
    deterministic_shuffle,
    generate_dealing_order,
    generate_verification_transcript,
)
from fairdeck.models.card import Card, CardLike, as_deck, deck_to_wire, standard_deck, validate_deck
from fairdeck.models.ceremony import CeremonyResult, CeremonyState
from fairdeck.persistence.ceremony_store import CeremonyRegistry
from fairdeck.persistence.event_log import EventKind, EventLog, EventRecord


logger = logging.getLogger(__name__)

SERVICE_VERSION = "1.0.0"
DEALER = "dealer"


@dataclass(frozen=True)
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class _Game:
    game_id: str
    original_deck: list[Card]
    shuffle: Optional[ShuffleResult] = None
    nonce: Optional[str] = None
    deck_commitment: Optional[str] = None
    sealed_deck: Optional[EncryptedPayload] = None
    dealing_seed: Optional[str] = None
    dealing_order: Optional[list[int]] = None


class FairnessService:
    """Facade for running provably fair games.

    Usage:
        service = FairnessService(FairnessConfig.from_config_dir(config_dir))
        service.open_game("g1")
        service.commit_seed("g1", "alice", commitment)
        service.close_commitments("g1")
        service.reveal_seed("g1", "alice", seed)
        service.finalize_seed("g1")
        service.shuffle_deck("g1", player_count=4)
        wire = service.export_transcript("g1").data["transcript"]

    Persistence (optional):
        service = FairnessService(config, event_log=EventLog(path))
    """

    def __init__(
        self,
        config: Optional[FairnessConfig] = None,
        event_log: Optional[EventLog] = None,
        cipher: Optional[StateCipher] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._config = config or FairnessConfig()
        self._clock = clock
        self._event_log = event_log if event_log is not None else EventLog()
        self._cipher = cipher or self._config.make_cipher()
        self._registry = CeremonyRegistry(factory=self._new_coordinator)
        self._checkpoints = IntegrityCheckpoint(
            interval_ms=self._config.checkpoint_interval_ms, clock=clock,
        )
        self._games: dict[str, _Game] = {}
        self._lock = threading.RLock()
        self._event_counter = self._event_log.count

    def _new_coordinator(self) -> RandomnessCoordinator:
        if self._config.time_lock_enabled:
            return TimeLockCoordinator(
                max_reveal_delay_ms=self._config.reveal_timeout_ms, clock=self._clock,
            )
        return RandomnessCoordinator(clock=self._clock)

    @property
    def cipher(self) -> StateCipher:
        return self._cipher

    @property
    def event_log(self) -> EventLog:
        return self._event_log

    # ------------------------------------------------------------------
    # Ceremony
    # ------------------------------------------------------------------

    def open_game(self, game_id: str, deck: Optional[Sequence[CardLike]] = None) -> ServiceResult:
        """Open a ceremony for *game_id* over *deck*, which must be 52 unique cards."""
        try:
            cards = standard_deck() if deck is None else as_deck(deck)
        except (KeyError, TypeError, ValueError) as e:
            return ServiceResult(success=False, errors=[f"Unreadable deck: {e}"])
        errors = validate_deck(cards) if deck is not None else []
        if errors:
            return ServiceResult(success=False, errors=errors)

        with self._lock:
            if game_id in self._games:
                return ServiceResult(success=False, errors=[f"Game already open: {game_id}"])
            try:
                self._registry.open(game_id)
            except ValueError as e:
                return ServiceResult(success=False, errors=[str(e)])
            self._games[game_id] = _Game(game_id=game_id, original_deck=cards)

        err = self._record(EventKind.CEREMONY_OPENED, game_id, DEALER, {
            "deck_size": len(cards),
            "time_lock_ms": self._config.reveal_timeout_ms,
        })
        if err:
            self._discard(game_id)
            return ServiceResult(success=False, errors=[err])
        return ServiceResult(success=True, data={"game_id": game_id, "deck_size": len(cards)})

    def commit_seed(self, game_id: str, player_id: str, commitment: str) -> ServiceResult:
        return self._ceremony_step(
            game_id,
            lambda coord: coord.commit_player_seed(player_id, commitment),
            EventKind.SEED_COMMITTED,
            actor_id=player_id,
            payload={"player_id": player_id, "commitment": str(commitment).lower()},
        )

    def close_commitments(self, game_id: str) -> ServiceResult:
        """Close the commit phase and publish the timestamp commitment."""
        return self._ceremony_step(
            game_id,
            lambda coord: coord.complete_commitment_phase(),
            EventKind.COMMITMENT_PHASE_CLOSED,
        )

    def reveal_seed(self, game_id: str, player_id: str, seed: str) -> ServiceResult:
        return self._ceremony_step(
            game_id,
            lambda coord: coord.reveal_player_seed(player_id, seed),
            EventKind.SEED_REVEALED,
            actor_id=player_id,
            payload={"player_id": player_id},
        )

    def finalize_seed(self, game_id: str) -> ServiceResult:
        """Derive the final seed. Failure aborts the ceremony's shuffle."""
        try:
            with self._registry.session(game_id) as coord:
                result = coord.generate_shuffle_seed()
        except KeyError:
            return self._unknown_game(game_id)

        if not result.success:
            logger.warning(
                "Ceremony %s aborted: %s (%s)",
                game_id, result.error, result.error_code.value if result.error_code else "",
            )
            err = self._record(EventKind.CEREMONY_ABORTED, game_id, DEALER, {
                "error_code": result.error_code.value if result.error_code else None,
                "error": result.error,
            })
            errors = [result.error] + ([err] if err else [])
            return ServiceResult(success=False, errors=errors, data=dict(result.data))

        err = self._record(EventKind.CEREMONY_SEALED, game_id, DEALER, {
            "final_seed": result.data["final_seed"],
            "timestamp": result.data["timestamp"],
            "timestamp_commitment": result.data["timestamp_commitment"],
            "contributor_count": result.data["contributor_count"],
        })
        if err:
            return ServiceResult(success=False, errors=[err])
        return ServiceResult(success=True, data=dict(result.data))

    def _ceremony_step(
        self,
        game_id: str,
        step: Callable[[RandomnessCoordinator], CeremonyResult],
        kind: EventKind,
        actor_id: str = DEALER,
        payload: Optional[dict[str, Any]] = None,
    ) -> ServiceResult:
        try:
            with self._registry.session(game_id) as coord:
                result = step(coord)
        except KeyError:
            return self._unknown_game(game_id)

        if not result.success:
            data = dict(result.data)
            if result.error_code is not None:
                data["error_code"] = result.error_code.value
            return ServiceResult(success=False, errors=[result.error], data=data)

        event_payload = dict(payload or {})
        event_payload.update({k: v for k, v in result.data.items() if k not in event_payload})
        err = self._record(kind, game_id, actor_id, event_payload)
        if err:
            return ServiceResult(success=False, errors=[err])
        return ServiceResult(success=True, data=dict(result.data))

    # ------------------------------------------------------------------
    # Deck
    # ------------------------------------------------------------------

    def shuffle_deck(self, game_id: str, player_count: Optional[int] = None) -> ServiceResult:
        """Shuffle with the final seed, commit to the result and seal it.

        The check for an existing shuffle and the assignment of the new
        one happen under one lock, so a game is shuffled at most once.
        """
        if player_count is not None and player_count < 1:
            return ServiceResult(success=False, errors=["player_count must be >= 1"])

        with self._lock:
            game = self._games.get(game_id)
            if game is None:
                return self._unknown_game(game_id)
            if game.shuffle is not None:
                return ServiceResult(success=False, errors=[f"Deck already shuffled for game {game_id}"])

            try:
                with self._registry.session(game_id) as coord:
                    sealed = coord.state == CeremonyState.SEALED
                    final_seed = coord.get_transcript_data()["final_seed"]
            except KeyError:
                return self._unknown_game(game_id)
            if not sealed or not final_seed:
                return ServiceResult(
                    success=False,
                    errors=["Final seed has not been generated; the deck cannot be shuffled"],
                )

            try:
                shuffled = deterministic_shuffle(game.original_deck, final_seed)
            except RejectionSamplingExhausted as e:
                logger.warning("Shuffle for game %s aborted: %s", game_id, e)
                err = self._record(EventKind.CEREMONY_ABORTED, game_id, DEALER, {"error": str(e)})
                return ServiceResult(success=False, errors=[str(e)] + ([err] if err else []))

            nonce = generate_nonce()
            commitment = deck_commitment(shuffled.shuffled, nonce)
            sealed_deck = self._cipher.encrypt_deck_state(shuffled.shuffled, game_id)
            game.shuffle = shuffled
            game.nonce = nonce
            game.deck_commitment = commitment
            game.sealed_deck = sealed_deck
            if player_count is not None:
                game.dealing_seed = derive_dealing_seed(game_id, final_seed)
                game.dealing_order = generate_dealing_order(player_count, game.dealing_seed)
            dealing_order = game.dealing_order

        err = self._record(EventKind.DECK_SHUFFLED, game_id, DEALER, {
            "deck_commitment": commitment,
            "deck_size": len(shuffled.shuffled),
        }) or self._record(EventKind.DECK_SEALED, game_id, DEALER, {
            "key_version": sealed_deck.key_version,
            "key_fingerprint": self._cipher.key_fingerprint,
        })
        if err:
            return ServiceResult(success=False, errors=[err])

        data: dict[str, Any] = {
            "deck_commitment": commitment,
            "sealed_deck": sealed_deck.to_dict(),
        }
        if dealing_order is not None:
            data["dealing_order"] = list(dealing_order)
        return ServiceResult(success=True, data=data)

    def unseal_deck(self, game_id: str) -> ServiceResult:
        """Decrypt the sealed deck held for *game_id*."""
        game = self._games.get(game_id)
        if game is None:
            return self._unknown_game(game_id)
        if game.sealed_deck is None:
            return ServiceResult(success=False, errors=[f"No sealed deck for game {game_id}"])
        try:
            cards = self._cipher.decrypt_deck_state(game.sealed_deck, game_id)
        except DecryptionError as e:
            return ServiceResult(success=False, errors=[str(e)])
        return ServiceResult(success=True, data={"deck": deck_to_wire(cards)})

    # ------------------------------------------------------------------
    # Checkpoints
    # ------------------------------------------------------------------

    def create_checkpoint(self, game_id: str, state: Mapping[str, Any]) -> ServiceResult:
        if game_id not in self._games:
            return self._unknown_game(game_id)
        try:
            checkpoint = self._checkpoints.create_checkpoint(game_id, state)
        except (TypeError, ValueError) as e:
            return ServiceResult(success=False, errors=[f"State is not hashable: {e}"])

        err = self._record(EventKind.CHECKPOINT_CREATED, game_id, DEALER, {
            "checkpoint_id": checkpoint.id,
            "state_hash": checkpoint.state_hash,
        })
        if err:
            return ServiceResult(success=False, errors=[err])
        return ServiceResult(success=True, data={"checkpoint": checkpoint.to_dict()})

    def verify_checkpoint(
        self,
        game_id: str,
        checkpoint_id: str,
        current_state: Mapping[str, Any],
    ) -> ServiceResult:
        if game_id not in self._games:
            return self._unknown_game(game_id)
        outcome = self._checkpoints.verify_checkpoint(checkpoint_id, current_state)
        data = {
            "checkpoint_id": checkpoint_id,
            "valid": outcome.valid,
            "tampering": outcome.tampering,
            "checked": outcome.checked,
            "changed_fields": list(outcome.changed_fields),
        }

        err = self._record(EventKind.CHECKPOINT_VERIFIED, game_id, DEALER, data)
        errors = [err] if err else []
        if not outcome.checked:
            errors.append(outcome.error or f"Checkpoint {checkpoint_id} could not be checked")
        elif outcome.tampering:
            errors.append(f"State changed since checkpoint: {', '.join(outcome.changed_fields)}")
        return ServiceResult(success=not errors and outcome.valid, errors=errors, data=data)

    def should_checkpoint(self, game_id: str) -> bool:
        return game_id in self._games and self._checkpoints.should_create_checkpoint(game_id)

    # ------------------------------------------------------------------
    # Transcript
    # ------------------------------------------------------------------

    def export_transcript(self, game_id: str) -> ServiceResult:
        """Publish the full transcript, revealing the deck nonce."""
        game = self._games.get(game_id)
        if game is None:
            return self._unknown_game(game_id)
        if game.shuffle is None:
            return ServiceResult(success=False, errors=["Deck has not been shuffled yet"])

        try:
            with self._registry.session(game_id) as coord:
                ceremony = coord.get_transcript_data()
        except KeyError:
            return self._unknown_game(game_id)

        extra: dict[str, Any] = {}
        if game.dealing_order is not None:
            extra.update({
                "dealingOrder": list(game.dealing_order),
                "dealingSeed": game.dealing_seed,
                "playerCount": len(game.dealing_order),
            })
        if "time_lock" in ceremony:
            extra["timeLock"] = ceremony["time_lock"]

        transcript = generate_verification_transcript(
            game_id=game_id,
            player_commitments=ceremony["commitments"],
            player_reveals=ceremony["reveals"],
            final_seed=ceremony["final_seed"],
            original_deck=game.original_deck,
            shuffled_deck=game.shuffle.shuffled,
            permutation=game.shuffle.permutation,
            timestamp=ceremony["timestamp"],
            timestamp_commitment=ceremony["timestamp_commitment"],
            deck_commitment=game.deck_commitment,
            nonce=game.nonce,
            extra=extra,
        )

        err = self._record(EventKind.TRANSCRIPT_EXPORTED, game_id, DEALER, {
            "transcript_hash": transcript.transcript_hash,
        })
        if err:
            return ServiceResult(success=False, errors=[err])
        return ServiceResult(success=True, data={"transcript": transcript.to_wire()})

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------

    def rotate_key(self, new_master_key: bytes | str | None = None) -> ServiceResult:
        """Rotate the master key and reseal every held deck under it.

        Payloads handed out before the rotation no longer decrypt.
        """
        with self._lock:
            try:
                version = self._cipher.rotate_key(new_master_key)
            except ValueError as e:
                return ServiceResult(success=False, errors=[str(e)])
            resealed: list[str] = []
            for game in self._games.values():
                if game.shuffle is not None:
                    game.sealed_deck = self._cipher.encrypt_deck_state(game.shuffle.shuffled, game.game_id)
                    resealed.append(game.game_id)

        data = {
            "key_version": version,
            "key_fingerprint": self._cipher.key_fingerprint,
            "resealed_games": sorted(resealed),
        }
        err = self._record(EventKind.KEY_ROTATED, "*", DEALER, data)
        if err:
            return ServiceResult(success=False, errors=[err])
        return ServiceResult(success=True, data=data)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close_game(self, game_id: str) -> ServiceResult:
        if game_id not in self._games:
            return self._unknown_game(game_id)
        self._discard(game_id)
        err = self._record(EventKind.GAME_CLOSED, game_id, DEALER, {})
        if err:
            return ServiceResult(success=False, errors=[err])
        return ServiceResult(success=True, data={"game_id": game_id})

    def status(self, game_id: Optional[str] = None) -> dict[str, Any]:
        """Return a service-wide summary, or one game's progress."""
        if game_id is not None:
            game = self._games.get(game_id)
            coord = self._registry.get(game_id)
            if game is None or coord is None:
                return {"game_id": game_id, "open": False}
            return {
                "game_id": game_id,
                "open": True,
                "ceremony": coord.get_state(),
                "shuffled": game.shuffle is not None,
                "deck_commitment": game.deck_commitment,
                "checkpoints": len(self._checkpoints.get_checkpoints(game_id)),
            }
        return {
            "version": SERVICE_VERSION,
            "games": sorted(self._games),
            "time_lock_ms": self._config.reveal_timeout_ms,
            "checkpoint_interval_ms": self._config.checkpoint_interval_ms,
            "key": self._cipher.key_status(),
            "events": self._event_log.count,
        }

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _discard(self, game_id: str) -> None:
        with self._lock:
            self._games.pop(game_id, None)
        self._registry.close(game_id)
        self._checkpoints.cleanup_game(game_id)
        self._cipher.cleanup_game(game_id)

    def _unknown_game(self, game_id: str) -> ServiceResult:
        return ServiceResult(success=False, errors=[f"Unknown game: {game_id}"])

    def _next_event_id(self) -> str:
        """Generate a monotonically increasing unique event ID."""
        self._event_counter += 1
        return f"EVT-{self._event_counter:08d}"

    def _record(
        self,
        kind: EventKind,
        game_id: str,
        actor_id: str,
        payload: dict[str, Any],
    ) -> Optional[str]:
        """Append an audit event. Returns an error string or None."""
        with self._lock:
            try:
                event = EventRecord.create(
                    event_id=self._next_event_id(),
                    event_kind=kind,
                    game_id=game_id,
                    actor_id=actor_id,
                    payload=payload,
                )
                self._event_log.append(event)
            except (ValueError, OSError) as e:
                logger.warning("Event log failure for %s on game %s: %s", kind.value, game_id, e)
                return f"Event log failure: {e}"
        return None
