"""Tests for the fairdeck CLI: proves commands wire through to the fairness core and exit codes signal alerts."""

import json

import pytest

from fairdeck.cli import EXIT_FAILURE, EXIT_OK, EXIT_SECURITY_ALERT, build_parser, main
from fairdeck.config import ENV_MASTER_KEY, ENV_REQUIRE_PERSISTENT_KEY
from fairdeck.crypto.commitments import compute_transcript_hash, deck_commitment, sha256_hex
from fairdeck.engine.shuffle import derive_dealing_seed, deterministic_shuffle, generate_dealing_order
from fairdeck.models.card import standard_deck


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (ENV_MASTER_KEY, ENV_REQUIRE_PERSISTENT_KEY):
        monkeypatch.setenv(name, "placeholder")
        monkeypatch.delenv(name)


@pytest.fixture
def transcript_file(tmp_path, capsys: pytest.CaptureFixture) -> object:
    out = tmp_path / "transcript.json"
    code = main(["--config", str(tmp_path / "config"), "demo", "--players", "3", "--out", str(out)])
    assert code == EXIT_OK
    capsys.readouterr()
    return out


class TestParser:
    def test_shuffle_args(self) -> None:
        args = build_parser().parse_args(
            ["shuffle", "--seed", "abc", "--player-count", "4", "--game-id", "g1"]
        )
        assert args.command == "shuffle"
        assert args.seed == "abc"
        assert args.player_count == 4
        assert args.game_id == "g1"

    def test_demo_defaults(self) -> None:
        args = build_parser().parse_args(["demo"])
        assert args.players == 4
        assert args.game_id == "demo-game"
        assert args.out is None

    def test_no_command(self, capsys: pytest.CaptureFixture) -> None:
        assert main([]) == EXIT_OK
        assert "usage" in capsys.readouterr().out.lower()


class TestPlayerTools:
    def test_new_seed(self, capsys: pytest.CaptureFixture) -> None:
        assert main(["new-seed"]) == EXIT_OK
        data = json.loads(capsys.readouterr().out)
        assert data["commitment"] == sha256_hex(data["seed"])

    def test_new_seed_explicit(self, capsys: pytest.CaptureFixture) -> None:
        main(["new-seed", "--seed", "my-seed"])
        assert json.loads(capsys.readouterr().out)["seed"] == "my-seed"

    def test_commit_deck(self, capsys: pytest.CaptureFixture) -> None:
        assert main(["commit-deck", "--nonce", "n1"]) == EXIT_OK
        data = json.loads(capsys.readouterr().out)
        assert data["deck_commitment"] == deck_commitment(standard_deck(), "n1")

    def test_commit_deck_rejects_duplicates(self, tmp_path, capsys: pytest.CaptureFixture) -> None:
        card = {"suit": "Hearts", "rank": "A"}
        deck_file = tmp_path / "deck.json"
        deck_file.write_text(json.dumps([card, card]), encoding="utf-8")
        assert main(["commit-deck", "--deck", str(deck_file)]) == EXIT_FAILURE
        assert "Duplicate card" in capsys.readouterr().err

    def test_commit_deck_rejects_short_deck(self, tmp_path, capsys: pytest.CaptureFixture) -> None:
        deck_file = tmp_path / "deck.json"
        deck_file.write_text(json.dumps([c.to_dict() for c in standard_deck()[:3]]), encoding="utf-8")
        assert main(["commit-deck", "--deck", str(deck_file)]) == EXIT_FAILURE
        assert "Deck must contain 52 cards, got 3" in capsys.readouterr().err

    def test_shuffle_matches_library(self, capsys: pytest.CaptureFixture) -> None:
        assert main(["shuffle", "--seed", "s1", "--player-count", "3", "--game-id", "g1"]) == EXIT_OK
        data = json.loads(capsys.readouterr().out)
        expected = deterministic_shuffle(standard_deck(), "s1")
        assert data["permutation"] == expected.permutation
        assert data["dealingOrder"] == generate_dealing_order(3, derive_dealing_seed("g1", "s1"))

    def test_player_count_needs_game_id(self, capsys: pytest.CaptureFixture) -> None:
        assert main(["shuffle", "--seed", "s1", "--player-count", "3"]) == EXIT_FAILURE
        assert "--game-id" in capsys.readouterr().err


class TestDemoAndAudit:
    def test_demo_output(self, tmp_path, capsys: pytest.CaptureFixture) -> None:
        out = tmp_path / "t.json"
        code = main(["--config", str(tmp_path / "config"), "demo", "--players", "2", "--out", str(out)])
        assert code == EXIT_OK
        summary = json.loads(capsys.readouterr().out)
        assert summary["verified"] is True
        assert summary["players"] == ["player-1", "player-2"]
        assert json.loads(out.read_text(encoding="utf-8"))["transcriptHash"] == summary["transcript_hash"]

    def test_demo_persists_events(self, tmp_path, capsys: pytest.CaptureFixture) -> None:
        log = tmp_path / "events.jsonl"
        main(["--config", str(tmp_path / "config"), "demo", "--players", "2", "--event-log", str(log)])
        summary = json.loads(capsys.readouterr().out)
        assert len(log.read_text(encoding="utf-8").splitlines()) == summary["events"] + 1

    def test_verify_transcript(self, transcript_file, capsys: pytest.CaptureFixture) -> None:
        assert main(["verify-transcript", str(transcript_file)]) == EXIT_OK
        assert json.loads(capsys.readouterr().out)["overall"] is True

    def test_tampered_timestamp_alerts(self, transcript_file, capsys: pytest.CaptureFixture) -> None:
        wire = json.loads(transcript_file.read_text(encoding="utf-8"))
        wire["timestamp"] = str(int(wire["timestamp"]) + 1)
        wire["transcriptHash"] = compute_transcript_hash(wire)
        transcript_file.write_text(json.dumps(wire), encoding="utf-8")

        assert main(["verify-transcript", str(transcript_file)]) == EXIT_SECURITY_ALERT
        assert "SECURITY ALERT" in capsys.readouterr().err

    def test_transcript_hash(self, transcript_file, capsys: pytest.CaptureFixture) -> None:
        assert main(["transcript-hash", str(transcript_file)]) == EXIT_OK
        assert json.loads(capsys.readouterr().out)["matches"] is True

        wire = json.loads(transcript_file.read_text(encoding="utf-8"))
        wire["finalSeed"] = "0" * 64
        transcript_file.write_text(json.dumps(wire), encoding="utf-8")
        assert main(["transcript-hash", str(transcript_file)]) == EXIT_SECURITY_ALERT

    def test_missing_file(self, tmp_path, capsys: pytest.CaptureFixture) -> None:
        assert main(["verify-transcript", str(tmp_path / "nope.json")]) == EXIT_FAILURE
        assert "cannot read transcript" in capsys.readouterr().err


class TestKeyStatus:
    def test_env_key(self, tmp_path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture) -> None:
        monkeypatch.setenv(ENV_MASTER_KEY, "cd" * 32)
        assert main(["--config", str(tmp_path / "config"), "key-status"]) == EXIT_OK
        status = json.loads(capsys.readouterr().out)
        assert status["key_source"] == "environment"
        assert status["key_version"] == 1

    def test_bad_env_key(self, tmp_path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture) -> None:
        monkeypatch.setenv(ENV_MASTER_KEY, "zz")
        assert main(["--config", str(tmp_path / "config"), "key-status"]) == EXIT_FAILURE
