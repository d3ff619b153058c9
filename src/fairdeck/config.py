"""Runtime configuration for the fairness service.

Tunables live in config/fairness_params.json. Secrets never do: the
master key comes from the environment (or a .env file beside the config
directory, loaded with python-dotenv).

Usage:
    config = FairnessConfig.from_config_dir(Path("config"))
    cipher = config.make_cipher()
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional

from dotenv import load_dotenv

from fairdeck.crypto.cipher import StateCipher, parse_master_key
from fairdeck.engine.checkpoint import DEFAULT_CHECKPOINT_INTERVAL_MS


PARAMS_FILENAME = "fairness_params.json"

ENV_MASTER_KEY = "FAIRDECK_MASTER_KEY"
ENV_REQUIRE_PERSISTENT_KEY = "FAIRDECK_REQUIRE_PERSISTENT_KEY"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


class ConfigError(ValueError):
    """Raised when configuration values are missing or invalid."""


@dataclass(frozen=True)
class FairnessConfig:
    checkpoint_interval_ms: int = DEFAULT_CHECKPOINT_INTERVAL_MS
    reveal_timeout_ms: int = 0  # 0 disables the reveal time lock
    key_version: int = 1
    master_key_hex: Optional[str] = None
    require_persistent_key: bool = False
    event_log_path: Optional[Path] = None

    def __post_init__(self) -> None:
        if self.checkpoint_interval_ms < 0:
            raise ConfigError(
                f"checkpoint_interval_ms must be >= 0, got {self.checkpoint_interval_ms}"
            )
        if self.reveal_timeout_ms < 0:
            raise ConfigError(f"reveal_timeout_ms must be >= 0, got {self.reveal_timeout_ms}")
        if self.key_version < 1:
            raise ConfigError(f"key_version must be >= 1, got {self.key_version}")
        if self.master_key_hex is not None:
            try:
                parse_master_key(self.master_key_hex)
            except ValueError as exc:
                raise ConfigError(f"{ENV_MASTER_KEY}: {exc}") from exc
        if self.require_persistent_key and self.master_key_hex is None:
            raise ConfigError(
                f"{ENV_REQUIRE_PERSISTENT_KEY} is set but {ENV_MASTER_KEY} is not; "
                "refusing to start with an ephemeral key"
            )

    @property
    def time_lock_enabled(self) -> bool:
        return self.reveal_timeout_ms > 0

    @classmethod
    def from_dict(
        cls,
        params: Mapping[str, Any],
        env: Optional[Mapping[str, str]] = None,
        base_dir: Optional[Path] = None,
    ) -> FairnessConfig:
        """Build a config from JSON params plus environment overrides."""
        env = env if env is not None else os.environ
        try:
            checkpoint_interval_ms = int(params.get("checkpoint_interval_ms", DEFAULT_CHECKPOINT_INTERVAL_MS))
            reveal_timeout_ms = int(params.get("reveal_timeout_ms", 0))
            key_version = int(params.get("key_version", 1))
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid numeric parameter: {exc}") from exc

        log_path = params.get("event_log_path")
        event_log_path: Optional[Path] = None
        if log_path:
            event_log_path = Path(log_path)
            if base_dir is not None and not event_log_path.is_absolute():
                event_log_path = base_dir / event_log_path

        return cls(
            checkpoint_interval_ms=checkpoint_interval_ms,
            reveal_timeout_ms=reveal_timeout_ms,
            key_version=key_version,
            master_key_hex=env.get(ENV_MASTER_KEY) or None,
            require_persistent_key=_parse_bool(
                env.get(ENV_REQUIRE_PERSISTENT_KEY, params.get("require_persistent_key", False)),
            ),
            event_log_path=event_log_path,
        )

    @classmethod
    def from_config_dir(cls, config_dir: Path) -> FairnessConfig:
        """Load fairness_params.json and environment overrides.

        A missing params file means defaults. A .env file in the config
        directory's parent is loaded first; variables already set in the
        process environment win.

        Raises:
            ConfigError: If the params file or any override is invalid.
        """
        load_dotenv(config_dir.parent / ".env")

        path = config_dir / PARAMS_FILENAME
        params: dict[str, Any] = {}
        if path.exists():
            try:
                with path.open("r", encoding="utf-8") as f:
                    params = json.load(f)
            except json.JSONDecodeError as exc:
                raise ConfigError(f"{path} is not valid JSON: {exc}") from exc
            if not isinstance(params, dict):
                raise ConfigError(f"{path} must contain a JSON object")

        return cls.from_dict(params, base_dir=config_dir.parent)

    def make_cipher(self) -> StateCipher:
        if self.master_key_hex is not None:
            return StateCipher(
                master_key=self.master_key_hex,
                key_version=self.key_version,
                key_source="environment",
            )
        return StateCipher(key_version=self.key_version)


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise ConfigError(f"Expected a boolean, got {value!r}")
