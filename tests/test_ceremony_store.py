"""Tests for the ceremony registry: proves per-ceremony access is serialised and ids are unique."""

import threading

import pytest

from fairdeck.crypto.commitments import seed_commitment
from fairdeck.engine.coordinator import TimeLockCoordinator
from fairdeck.persistence.ceremony_store import CeremonyRegistry, InMemoryCeremonyStore


class TestRegistry:
    def test_open_and_session(self) -> None:
        registry = CeremonyRegistry()
        opened = registry.open("game-1")
        with registry.session("game-1") as coord:
            assert coord is opened
            assert coord.commit_player_seed("alice", seed_commitment("s")).success
        assert registry.get("game-1").get_state()["commitment_count"] == 1

    def test_duplicate_open_rejected(self) -> None:
        registry = CeremonyRegistry()
        registry.open("game-1")
        with pytest.raises(ValueError):
            registry.open("game-1")

    def test_unknown_session(self) -> None:
        registry = CeremonyRegistry()
        with pytest.raises(KeyError):
            with registry.session("missing"):
                pass

    def test_close(self) -> None:
        registry = CeremonyRegistry()
        registry.open("game-1")
        assert registry.close("game-1") is True
        assert registry.close("game-1") is False
        assert registry.get("game-1") is None
        registry.open("game-1")

    def test_ids_sorted(self) -> None:
        registry = CeremonyRegistry()
        for gid in ("b", "c", "a"):
            registry.open(gid)
        assert registry.ids() == ["a", "b", "c"]

    def test_custom_factory_and_store(self) -> None:
        store = InMemoryCeremonyStore()
        registry = CeremonyRegistry(
            store=store,
            factory=lambda: TimeLockCoordinator(max_reveal_delay_ms=5_000),
        )
        registry.open("game-1")
        assert isinstance(store.get("game-1"), TimeLockCoordinator)
        assert store.ids() == ["game-1"]


class TestConcurrency:
    def test_parallel_commits_all_recorded(self) -> None:
        registry = CeremonyRegistry()
        registry.open("game-1")
        failures: list[str] = []

        def commit(n: int) -> None:
            with registry.session("game-1") as coord:
                result = coord.commit_player_seed(f"p{n:02d}", seed_commitment(f"seed-{n}"))
                if not result.success:
                    failures.append(result.error)

        threads = [threading.Thread(target=commit, args=(n,)) for n in range(32)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert failures == []
        with registry.session("game-1") as coord:
            assert coord.get_state()["commitment_count"] == 32

    def test_games_are_independent(self) -> None:
        registry = CeremonyRegistry()
        registry.open("game-1")
        registry.open("game-2")
        with registry.session("game-1") as first:
            with registry.session("game-2") as second:
                assert first is not second
