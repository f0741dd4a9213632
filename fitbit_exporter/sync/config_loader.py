"""Load, validate, and hot-reload the sync engine configuration.

The config lives in ``sync_config.yaml`` alongside this module.  At startup
it is loaded once and cached.  Call ``reload_sync_config()`` to re-read from
disk after an edit without restarting.

Usage::

    from fitbit_exporter.sync.config_loader import get_sync_config

    config = get_sync_config()
    margin = config.rate_limit.margin_seconds        # 30.0
    batch = config.writer.insert_batch_size          # 200
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from fitbit_exporter.fitbit.client import DETAIL_LEVEL_1MIN, DETAIL_LEVEL_1SEC

logger = logging.getLogger("fitbit_exporter.sync.config")

# Path to the YAML file sitting next to this module
_CONFIG_PATH = Path(__file__).parent / "sync_config.yaml"

_DETAIL_LEVELS = (DETAIL_LEVEL_1SEC, DETAIL_LEVEL_1MIN)


# ---------------------------------------------------------------------------
# Typed config sections
# ---------------------------------------------------------------------------


@dataclass
class RateLimitConfig:
    """How the fetcher waits out Fitbit's hourly quota."""

    margin_seconds: float = 30.0
    fetch_timeout_seconds: float = 3 * 60 * 60


@dataclass
class BackfillConfig:
    """Walk parameters for the backfill driver."""

    empty_day_threshold: int = 2
    detail_level: str = DETAIL_LEVEL_1MIN


@dataclass
class WriterConfig:
    """Persistence parameters."""

    insert_batch_size: int = 200


@dataclass
class SchedulerConfig:
    """Interval between sync runs."""

    interval_seconds: float = 3600.0


@dataclass
class SyncConfig:
    """Complete, validated sync configuration.

    This is the single in-memory representation of sync_config.yaml.

    Attributes:
        version:    Config schema version string.
        rate_limit: Rate-limit wait and per-date timeout settings.
        backfill:   Backward-walk stopping rule and API detail level.
        writer:     Intraday insert batching.
        scheduler:  Run interval.
    """

    version: str = "1.0"
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    backfill: BackfillConfig = field(default_factory=BackfillConfig)
    writer: WriterConfig = field(default_factory=WriterConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)


# ---------------------------------------------------------------------------
# Loader / validation
# ---------------------------------------------------------------------------


class ConfigValidationError(ValueError):
    """Raised when sync_config.yaml fails validation."""


def _load_yaml(path: Path) -> dict:
    """Read and parse a YAML file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigValidationError: If the YAML is malformed.
    """
    if not path.exists():
        raise FileNotFoundError(f"Sync config not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            return yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigValidationError(f"YAML parse error in {path}: {exc}") from exc


def _validate_and_build(raw: dict) -> SyncConfig:
    """Validate the raw YAML dict and construct a SyncConfig.

    Missing sections fall back to defaults; present values must be numbers
    in range.  All problems are collected and reported together.

    Raises:
        ConfigValidationError: If any value is invalid.
    """
    errors: list[str] = []

    def _number(section: dict, key: str, name: str, default: float, minimum: float) -> float:
        value = section.get(key, default)
        try:
            num = float(value)
        except (TypeError, ValueError):
            errors.append(f"{name}.{key} must be a number, got {value!r}")
            return default
        if num < minimum:
            errors.append(f"{name}.{key} = {num} must be >= {minimum}")
        return num

    def _section(key: str) -> dict:
        section = raw.get(key) or {}
        if not isinstance(section, dict):
            errors.append(f"'{key}' must be a mapping")
            return {}
        return section

    version = str(raw.get("version", "1.0"))

    # ── Rate limit ──
    rl_raw = _section("rate_limit")
    rate_limit = RateLimitConfig(
        margin_seconds=_number(rl_raw, "margin_seconds", "rate_limit", 30.0, 0),
        fetch_timeout_seconds=_number(
            rl_raw, "fetch_timeout_seconds", "rate_limit", 10800.0, 1
        ),
    )

    # ── Backfill ──
    bf_raw = _section("backfill")
    detail_level = str(bf_raw.get("detail_level", DETAIL_LEVEL_1MIN))
    if detail_level not in _DETAIL_LEVELS:
        errors.append(
            f"backfill.detail_level must be one of {_DETAIL_LEVELS}, got {detail_level!r}"
        )
    backfill = BackfillConfig(
        empty_day_threshold=int(
            _number(bf_raw, "empty_day_threshold", "backfill", 2, 1)
        ),
        detail_level=detail_level,
    )

    # ── Writer ──
    wr_raw = _section("writer")
    writer = WriterConfig(
        insert_batch_size=int(_number(wr_raw, "insert_batch_size", "writer", 200, 1)),
    )

    # ── Scheduler ──
    sc_raw = _section("scheduler")
    scheduler = SchedulerConfig(
        interval_seconds=_number(sc_raw, "interval_seconds", "scheduler", 3600.0, 1),
    )

    if errors:
        raise ConfigValidationError(
            f"sync_config.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  • {e}" for e in errors)
        )

    return SyncConfig(
        version=version,
        rate_limit=rate_limit,
        backfill=backfill,
        writer=writer,
        scheduler=scheduler,
    )


def load_sync_config(path: Path | None = None) -> SyncConfig:
    """Load and validate the sync config from disk.

    Args:
        path: Override path to YAML. Uses the bundled sync_config.yaml by default.

    Returns:
        Validated SyncConfig instance.
    """
    target = path or _CONFIG_PATH
    raw = _load_yaml(target)
    config = _validate_and_build(raw)
    logger.info("Loaded sync config v%s from %s", config.version, target)
    return config


# ---------------------------------------------------------------------------
# Global singleton with hot-reload support
# ---------------------------------------------------------------------------

_config: SyncConfig | None = None
_config_lock = threading.Lock()


def get_sync_config() -> SyncConfig:
    """Return the global SyncConfig singleton, loading it on first call."""
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:  # double-checked locking
                _config = load_sync_config()
    return _config


def reload_sync_config(path: Path | None = None) -> SyncConfig:
    """Reload the sync config from disk and replace the global singleton.

    If validation fails, the old config is retained and the error is re-raised.

    Raises:
        ConfigValidationError: If the new config is invalid.
        FileNotFoundError:     If the config file is missing.
    """
    global _config
    new_config = load_sync_config(path)  # validate before acquiring lock
    with _config_lock:
        old_version = _config.version if _config else "none"
        _config = new_config
    logger.info("Reloaded sync config: %s → %s", old_version, new_config.version)
    return new_config
