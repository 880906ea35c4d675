"""
mini-kvstore configuration.
Construction-time settings for KeyValueStore, optionally read from the environment.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

from mini_kvstore.expiry import DEFAULT_SWEEP_INTERVAL
from mini_kvstore.locking import DEFAULT_LOCK_TIMEOUT

DEFAULT_FILE_PATH = Path(__file__).resolve().parent / "keystore.json"
DEFAULT_BATCH_LIMIT = 1000

_UNBOUNDED = ("", "none", "unlimited", "inf")


def parse_batch_limit(raw: str) -> int | None:
    if raw.strip().lower() in _UNBOUNDED:
        return None
    limit = int(raw)
    if limit < 0:
        raise ValueError(f"Batch limit must not be negative: {raw}")
    return limit


def _parse_seconds(name: str, raw: str) -> float:
    seconds = float(raw)
    if seconds < 0:
        raise ValueError(f"{name} must not be negative: {raw}")
    return seconds


@dataclass
class StoreConfig:
    """Settings for a KeyValueStore.

    batch_limit=None means batches are unbounded.
    """

    file_path: Path = field(default=DEFAULT_FILE_PATH)
    batch_limit: int | None = DEFAULT_BATCH_LIMIT
    lock_timeout: float = DEFAULT_LOCK_TIMEOUT
    sweep_interval: float = DEFAULT_SWEEP_INTERVAL

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "StoreConfig":
        """Build settings from MINI_KVSTORE_* variables, falling back to defaults."""
        env = os.environ if environ is None else environ
        config = cls()

        file_path = (env.get("MINI_KVSTORE_FILE") or "").strip()
        if file_path:
            config.file_path = Path(file_path)
        if "MINI_KVSTORE_BATCH_LIMIT" in env:
            config.batch_limit = parse_batch_limit(env["MINI_KVSTORE_BATCH_LIMIT"])
        if "MINI_KVSTORE_LOCK_TIMEOUT" in env:
            config.lock_timeout = _parse_seconds(
                "MINI_KVSTORE_LOCK_TIMEOUT", env["MINI_KVSTORE_LOCK_TIMEOUT"]
            )
        if "MINI_KVSTORE_SWEEP_INTERVAL" in env:
            config.sweep_interval = _parse_seconds(
                "MINI_KVSTORE_SWEEP_INTERVAL", env["MINI_KVSTORE_SWEEP_INTERVAL"]
            )
        return config
