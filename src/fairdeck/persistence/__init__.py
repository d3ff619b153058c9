"""Event log and live ceremony storage."""

from fairdeck.persistence.ceremony_store import (
    CeremonyRegistry,
    CeremonyStore,
    InMemoryCeremonyStore,
)
from fairdeck.persistence.event_log import EventKind, EventLog, EventRecord

__all__ = [
    "CeremonyRegistry",
    "CeremonyStore",
    "InMemoryCeremonyStore",
    "EventKind",
    "EventLog",
    "EventRecord",
]
