"""
Runtime settings and logging setup.

Settings come from ``SIGNGATE_*`` environment variables; CLI flags override
them. Logs go to stderr through the standard ``logging`` module.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from typing import Any, Mapping, Optional

from .descriptor import DEFAULT_DERIVATION, DerivationPath
from .errors import ConfigurationError, MalformedSetupError
from .wallet import CHAIN_NAMES, DEFAULT_LOOKAHEAD

ENV_PREFIX = "SIGNGATE_"
DEFAULT_DATA_DIR = "./signgate-data"
DEFAULT_LOG_LEVEL = "INFO"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass(frozen=True)
class Settings:
    data_dir: str = DEFAULT_DATA_DIR
    derivation_path: str = DEFAULT_DERIVATION
    network: str = "bitcoin"
    lookahead: int = DEFAULT_LOOKAHEAD
    log_level: str = DEFAULT_LOG_LEVEL

    def __post_init__(self) -> None:
        if self.network not in CHAIN_NAMES:
            raise ConfigurationError(f"unsupported network {self.network!r}")
        try:
            DerivationPath.parse(self.derivation_path)
        except MalformedSetupError as exc:
            raise ConfigurationError(str(exc)) from exc
        if self.lookahead <= 0:
            raise ConfigurationError("lookahead must be positive")
        if not isinstance(logging.getLevelName(self.log_level.upper()), int):
            raise ConfigurationError(f"unknown log level {self.log_level!r}")

    @property
    def blob_dir(self) -> str:
        return os.path.join(self.data_dir, "blobs")

    @property
    def policy_file(self) -> str:
        return os.path.join(self.data_dir, "policies.json")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        lookahead_raw = env.get(ENV_PREFIX + "LOOKAHEAD", str(DEFAULT_LOOKAHEAD))
        try:
            lookahead = int(lookahead_raw)
        except ValueError as exc:
            raise ConfigurationError(f"{ENV_PREFIX}LOOKAHEAD must be an integer") from exc
        return cls(
            data_dir=env.get(ENV_PREFIX + "DATA_DIR", DEFAULT_DATA_DIR),
            derivation_path=env.get(ENV_PREFIX + "DERIVATION_PATH", DEFAULT_DERIVATION),
            network=env.get(ENV_PREFIX + "NETWORK", "bitcoin"),
            lookahead=lookahead,
            log_level=env.get(ENV_PREFIX + "LOG_LEVEL", DEFAULT_LOG_LEVEL),
        )

    def override(self, **values: Any) -> "Settings":
        """Copy with every non-None value applied (CLI flags)."""
        return replace(self, **{k: v for k, v in values.items() if v is not None})


def configure_logging(level: str = DEFAULT_LOG_LEVEL) -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    logging.getLogger(__name__).debug("logger has been set up")
