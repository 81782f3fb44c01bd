"""
work_ledger/config.py

Runtime configuration. Precedence: explicit overrides (CLI) > environment
(``WORK_LEDGER_*``) > TOML file > defaults.

Example ``work_ledger.toml``:

    data_dir = "./data"
    difficulty = 4
    reward = 10.0
    mine_interval = 10.0

    [seal]
    max_attempts = 100000
    on_exhaustion = "accept"

    [value_model.weights]
    coding = 1.5
    debug = 2.0
"""

from __future__ import annotations

import logging
import os
import tomllib
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, Field, ValidationError

from .mining import DEFAULT_DIFFICULTY, DEFAULT_INTERVAL, DEFAULT_REWARD, SealPolicy
from .valuation import ValueModel

DEFAULT_CONFIG_FILE = "work_ledger.toml"
ENV_PREFIX = "WORK_LEDGER_"

# env suffix -> config path
_ENV_BINDINGS = {
    "DATA_DIR": ("data_dir",),
    "AGENT_ID": ("agent_id",),
    "WALLET_NAME": ("wallet_name",),
    "DIFFICULTY": ("difficulty",),
    "REWARD": ("reward",),
    "MINE_INTERVAL": ("mine_interval",),
    "MAX_ATTEMPTS": ("seal", "max_attempts"),
    "ON_EXHAUSTION": ("seal", "on_exhaustion"),
    "LOG_LEVEL": ("log_level",),
}


class ConfigLoadError(ValueError):
    """Raised when configuration cannot be read or validated."""


class LedgerConfig(BaseModel):
    data_dir: Path = Path("./data")
    agent_id: str = "default"
    wallet_name: str = "default"
    difficulty: int = Field(default=DEFAULT_DIFFICULTY, ge=0, le=64)
    reward: float = Field(default=DEFAULT_REWARD, ge=0.0)
    mine_interval: float = Field(default=DEFAULT_INTERVAL, gt=0.0)
    seal: SealPolicy = Field(default_factory=SealPolicy)
    value_model: ValueModel = Field(default_factory=ValueModel)
    log_level: str = "INFO"

    @property
    def records_dir(self) -> Path:
        return self.data_dir / "records"

    @property
    def wallets_dir(self) -> Path:
        return self.data_dir / "wallets"

    @property
    def chain_path(self) -> Path:
        return self.data_dir / "blocks.json"


def _load_toml(path: Path, required: bool) -> Dict[str, Any]:
    if not path.exists():
        if required:
            raise ConfigLoadError(f"Config file not found: {path}")
        return {}
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigLoadError(f"Cannot read config file {path}: {e}") from e


def _set_path(target: Dict[str, Any], path: tuple, value: Any) -> None:
    for key in path[:-1]:
        target = target.setdefault(key, {})
    target[path[-1]] = value


def _merge(base: Dict[str, Any], overlay: Mapping[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in overlay.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(
    config_path: Optional[str | Path] = None,
    environ: Optional[Mapping[str, str]] = None,
    overrides: Optional[Mapping[str, Any]] = None,
) -> LedgerConfig:
    """Build the effective configuration."""
    env = os.environ if environ is None else environ
    explicit = config_path is not None
    path = Path(config_path) if explicit else Path(env.get(f"{ENV_PREFIX}CONFIG", DEFAULT_CONFIG_FILE))

    data = _load_toml(path, required=explicit)

    env_data: Dict[str, Any] = {}
    for suffix, target in _ENV_BINDINGS.items():
        raw = env.get(ENV_PREFIX + suffix)
        if raw is not None and raw != "":
            _set_path(env_data, target, raw)
    data = _merge(data, env_data)

    if overrides:
        data = _merge(data, {k: v for k, v in overrides.items() if v is not None})

    try:
        config = LedgerConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigLoadError(f"Invalid configuration: {e}") from e

    if logging.getLevelName(config.log_level.upper()) == f"Level {config.log_level.upper()}":
        raise ConfigLoadError(f"Unknown log level: {config.log_level}")
    return config


def configure_logging(level: str = "INFO") -> None:
    """Install a stream handler on the package logger."""
    logger = logging.getLogger("work_ledger")
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(
            "[%(asctime)s] %(levelname)s [%(name)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))
        logger.addHandler(handler)
    logger.setLevel(level.upper())
