"""fairdeck CLI: player tools, dealer demo and transcript auditing.

Usage:
    python -m fairdeck.cli new-seed
    python -m fairdeck.cli commit-deck --deck deck.json
    python -m fairdeck.cli shuffle --seed <final-seed> --game-id g1 --player-count 4
    python -m fairdeck.cli demo --players 4 --out transcript.json
    python -m fairdeck.cli verify-transcript transcript.json
    python -m fairdeck.cli transcript-hash transcript.json
    python -m fairdeck.cli key-status

Exit codes: 0 success, 1 failure, 2 verification raised a security alert.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Optional

from fairdeck.config import ConfigError, FairnessConfig
from fairdeck.crypto.commitments import (
    compute_transcript_hash,
    create_randomness_commitment,
    deck_commitment,
    digests_equal,
    generate_nonce,
)
from fairdeck.engine.shuffle import (
    derive_dealing_seed,
    deterministic_shuffle,
    generate_dealing_order,
)
from fairdeck.models.card import Card, as_deck, deck_to_wire, standard_deck, validate_deck
from fairdeck.persistence.event_log import EventLog
from fairdeck.service import FairnessService
from fairdeck.verification.audit import audit_transcript


DEFAULT_CONFIG = Path(__file__).resolve().parents[2] / "config"

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_SECURITY_ALERT = 2


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


def _load_json(path: str) -> Any:
    if path == "-":
        return json.load(sys.stdin)
    with Path(path).open("r", encoding="utf-8") as f:
        return json.load(f)


def _load_deck(path: Optional[str]) -> list[Card]:
    if path is None:
        return standard_deck()
    data = _load_json(path)
    if isinstance(data, dict):
        data = data.get("deck", [])
    return as_deck(data)


def cmd_new_seed(args: argparse.Namespace) -> int:
    _print_json(create_randomness_commitment(args.seed))
    return EXIT_OK


def cmd_commit_deck(args: argparse.Namespace) -> int:
    try:
        deck = _load_deck(args.deck)
    except (OSError, ValueError, KeyError, TypeError) as e:
        print(f"Failed: cannot read deck: {e}", file=sys.stderr)
        return EXIT_FAILURE

    errors = validate_deck(deck)
    if errors:
        print(f"Failed: {'; '.join(errors)}", file=sys.stderr)
        return EXIT_FAILURE

    nonce = args.nonce or generate_nonce()
    _print_json({"deck_commitment": deck_commitment(deck, nonce), "nonce": nonce})
    return EXIT_OK


def cmd_shuffle(args: argparse.Namespace) -> int:
    try:
        deck = _load_deck(args.deck)
        result = deterministic_shuffle(deck, args.seed)
    except (OSError, ValueError, KeyError, TypeError) as e:
        print(f"Failed: {e}", file=sys.stderr)
        return EXIT_FAILURE

    output: dict[str, Any] = {
        "seed": args.seed,
        "shuffledDeck": deck_to_wire(result.shuffled),
        "permutation": result.permutation,
    }
    if args.player_count:
        if not args.game_id:
            print("Failed: --player-count requires --game-id", file=sys.stderr)
            return EXIT_FAILURE
        dealing_seed = derive_dealing_seed(args.game_id, args.seed)
        output["dealingSeed"] = dealing_seed
        output["dealingOrder"] = generate_dealing_order(args.player_count, dealing_seed)
    _print_json(output)
    return EXIT_OK


def cmd_verify_transcript(args: argparse.Namespace) -> int:
    try:
        wire = _load_json(args.transcript)
    except (OSError, ValueError) as e:
        print(f"Failed: cannot read transcript: {e}", file=sys.stderr)
        return EXIT_FAILURE
    if not isinstance(wire, dict):
        print("Failed: transcript must be a JSON object", file=sys.stderr)
        return EXIT_FAILURE

    report = audit_transcript(wire)
    _print_json(report.to_dict())

    if report.has_security_alert:
        for alert in report.security_alerts:
            print(f"SECURITY ALERT: {alert}", file=sys.stderr)
        return EXIT_SECURITY_ALERT
    return EXIT_OK if report.overall else EXIT_FAILURE


def cmd_transcript_hash(args: argparse.Namespace) -> int:
    try:
        wire = _load_json(args.transcript)
    except (OSError, ValueError) as e:
        print(f"Failed: cannot read transcript: {e}", file=sys.stderr)
        return EXIT_FAILURE
    if not isinstance(wire, dict):
        print("Failed: transcript must be a JSON object", file=sys.stderr)
        return EXIT_FAILURE

    computed = compute_transcript_hash(wire)
    claimed = wire.get("transcriptHash")
    matches = None if not claimed else digests_equal(computed, claimed)
    _print_json({"computed": computed, "claimed": claimed, "matches": matches})
    return EXIT_SECURITY_ALERT if matches is False else EXIT_OK


def cmd_demo(args: argparse.Namespace) -> int:
    """Run a complete game with simulated players and audit it."""
    try:
        config = FairnessConfig.from_config_dir(args.config)
    except ConfigError as e:
        print(f"Failed: {e}", file=sys.stderr)
        return EXIT_FAILURE

    event_log = EventLog(storage_path=args.event_log) if args.event_log else EventLog()
    service = FairnessService(config, event_log=event_log)
    game_id = args.game_id
    players = {f"player-{i + 1}": create_randomness_commitment() for i in range(args.players)}

    steps = [lambda: service.open_game(game_id)]
    steps += [
        (lambda pid=pid, c=c: service.commit_seed(game_id, pid, c["commitment"]))
        for pid, c in players.items()
    ]
    steps.append(lambda: service.close_commitments(game_id))
    steps += [
        (lambda pid=pid, c=c: service.reveal_seed(game_id, pid, c["seed"]))
        for pid, c in players.items()
    ]
    steps.append(lambda: service.finalize_seed(game_id))
    steps.append(lambda: service.shuffle_deck(game_id, player_count=args.players))

    for step in steps:
        result = step()
        if not result.success:
            print(f"Failed: {'; '.join(result.errors)}", file=sys.stderr)
            return EXIT_FAILURE

    exported = service.export_transcript(game_id)
    if not exported.success:
        print(f"Failed: {'; '.join(exported.errors)}", file=sys.stderr)
        return EXIT_FAILURE
    transcript = exported.data["transcript"]

    if args.out:
        args.out.write_text(json.dumps(transcript, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")

    report = audit_transcript(transcript)
    _print_json({
        "game_id": game_id,
        "players": sorted(players),
        "final_seed": transcript["finalSeed"],
        "deck_commitment": transcript["deckCommitment"],
        "transcript_hash": transcript["transcriptHash"],
        "transcript_file": str(args.out) if args.out else None,
        "verified": report.overall,
        "events": service.event_log.count,
    })
    service.close_game(game_id)
    return EXIT_OK if report.overall else EXIT_FAILURE


def cmd_key_status(args: argparse.Namespace) -> int:
    try:
        config = FairnessConfig.from_config_dir(args.config)
    except ConfigError as e:
        print(f"Failed: {e}", file=sys.stderr)
        return EXIT_FAILURE
    _print_json(config.make_cipher().key_status())
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fairdeck",
        description="fairdeck: verifiable card shuffling",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG,
        help="Path to config directory (default: config/)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command")

    # new-seed
    p_seed = sub.add_parser("new-seed", help="Generate a player seed and its commitment")
    p_seed.add_argument("--seed", help="Use this seed instead of a random one")

    # commit-deck
    p_commit = sub.add_parser("commit-deck", help="Commit to a deck with a fresh nonce")
    p_commit.add_argument("--deck", help="JSON file with the deck (default: standard 52)")
    p_commit.add_argument("--nonce", help="Nonce to use (default: random)")

    # shuffle
    p_shuffle = sub.add_parser("shuffle", help="Deterministically shuffle a deck")
    p_shuffle.add_argument("--seed", required=True, help="Final seed")
    p_shuffle.add_argument("--deck", help="JSON file with the deck (default: standard 52)")
    p_shuffle.add_argument("--player-count", type=int, help="Also derive a dealing order")
    p_shuffle.add_argument("--game-id", help="Game ID the dealing seed is bound to")

    # verify-transcript
    p_verify = sub.add_parser("verify-transcript", help="Audit a published transcript")
    p_verify.add_argument("transcript", help="Transcript JSON file, or - for stdin")

    # transcript-hash
    p_hash = sub.add_parser("transcript-hash", help="Recompute a transcript's hash")
    p_hash.add_argument("transcript", help="Transcript JSON file, or - for stdin")

    # demo
    p_demo = sub.add_parser("demo", help="Run a full ceremony, shuffle and audit")
    p_demo.add_argument("--players", type=int, default=4, help="Number of players (default: 4)")
    p_demo.add_argument("--game-id", default="demo-game", help="Game ID")
    p_demo.add_argument("--out", type=Path, help="Write the transcript to this file")
    p_demo.add_argument("--event-log", type=Path, help="Persist events to this JSONL file")

    # key-status
    sub.add_parser("key-status", help="Show master key source and fingerprint")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        return EXIT_OK

    commands = {
        "new-seed": cmd_new_seed,
        "commit-deck": cmd_commit_deck,
        "shuffle": cmd_shuffle,
        "verify-transcript": cmd_verify_transcript,
        "transcript-hash": cmd_transcript_hash,
        "demo": cmd_demo,
        "key-status": cmd_key_status,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return EXIT_FAILURE

    return handler(args)


if __name__ == "__main__":
    raise SystemExit(main())
