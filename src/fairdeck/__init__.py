"""fairdeck: verifiable fairness for multiplayer card games."""

__version__ = "1.0.0"
