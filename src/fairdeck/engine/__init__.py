"""Ceremony, shuffle and checkpoint engines."""

from fairdeck.engine.checkpoint import (
    Checkpoint,
    CheckpointVerification,
    IntegrityCheckpoint,
)
from fairdeck.engine.coordinator import RandomnessCoordinator, TimeLockCoordinator
from fairdeck.engine.shuffle import (
    RejectionSamplingExhausted,
    ShuffleResult,
    ShuffleVerification,
    deterministic_shuffle,
    generate_verification_transcript,
    verify_shuffle,
)

__all__ = [
    "Checkpoint",
    "CheckpointVerification",
    "IntegrityCheckpoint",
    "RandomnessCoordinator",
    "TimeLockCoordinator",
    "RejectionSamplingExhausted",
    "ShuffleResult",
    "ShuffleVerification",
    "deterministic_shuffle",
    "generate_verification_transcript",
    "verify_shuffle",
]
