"""
Configuration for the Splice Alt backend.

Two layers:
- Settings: process-level knobs read once from the environment / .env file.
- EngineConfig: the user-facing switches (enabled, autoCapture) kept in a
  SettingsStore so the popup can flip them at runtime.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

from dotenv import load_dotenv

logger = logging.getLogger("splice-alt.config")

ENV_PREFIX = "SPLICE_ALT_"

DEFAULT_USER_CONFIG: Dict[str, bool] = {
    "enabled": True,
    "autoCapture": True,
}


def _env(name: str, default: str) -> str:
    return os.getenv(f"{ENV_PREFIX}{name}", default)


@dataclass(frozen=True)
class Settings:
    """Process settings. Immutable once loaded."""
    host: str = "127.0.0.1"
    port: int = 8765
    log_level: str = "INFO"
    log_file: str = "splice_alt.log"
    settings_path: str = "data/settings.json"

    # Correlation cache bounds
    max_keys: int = 50
    keep_keys: int = 30

    # Timers (seconds)
    retry_delay: float = 2.0
    blob_grace: float = 5.0
    sweep_interval: float = 60.0
    write_timeout: float = 10.0

    # Download filtering and sidecar naming
    source_suffix: str = ".wav"
    sidecar_suffix: str = ".json"
    origin_marker: str = "splice"

    # "host": ask the extension to save sidecars, "local": write them directly
    write_mode: str = "host"

    public_base_url: str = "http://127.0.0.1:8765"
    notify_webhook_url: Optional[str] = None
    cors_origins: List[str] = field(default_factory=lambda: ["*"])


_settings_instance: Optional[Settings] = None


def load_settings(env_file: Optional[Path] = None) -> Settings:
    """Build Settings from the environment, reading a .env file first if present."""
    env_path = env_file or Path.cwd() / ".env"
    load_dotenv(dotenv_path=env_path)

    port = int(_env("PORT", "8765"))
    host = _env("HOST", "127.0.0.1")
    return Settings(
        host=host,
        port=port,
        log_level=_env("LOG_LEVEL", "INFO").upper(),
        log_file=_env("LOG_FILE", "splice_alt.log"),
        settings_path=_env("SETTINGS_PATH", "data/settings.json"),
        max_keys=int(_env("MAX_KEYS", "50")),
        keep_keys=int(_env("KEEP_KEYS", "30")),
        retry_delay=float(_env("RETRY_DELAY_SECONDS", "2.0")),
        blob_grace=float(_env("BLOB_GRACE_SECONDS", "5.0")),
        sweep_interval=float(_env("SWEEP_INTERVAL_SECONDS", "60.0")),
        write_timeout=float(_env("WRITE_TIMEOUT_SECONDS", "10.0")),
        source_suffix=_env("SOURCE_SUFFIX", ".wav"),
        sidecar_suffix=_env("SIDECAR_SUFFIX", ".json"),
        origin_marker=_env("ORIGIN_MARKER", "splice"),
        write_mode=_env("WRITE_MODE", "host").lower(),
        public_base_url=_env("PUBLIC_BASE_URL", f"http://{host}:{port}").rstrip("/"),
        notify_webhook_url=_env("NOTIFY_WEBHOOK_URL", "") or None,
        cors_origins=[o.strip() for o in _env("CORS_ORIGINS", "*").split(",") if o.strip()],
    )


def get_settings() -> Settings:
    """
    Load settings from environment variables / .env file.
    Returns the same instance on repeated calls.
    """
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = load_settings()
    return _settings_instance


# ============================================================================
# USER SETTINGS STORE
# ============================================================================

class SettingsStore(Protocol):
    """Key-value store for the user switches (the browser's sync storage)."""

    async def get(self, defaults: Dict[str, Any]) -> Dict[str, Any]:
        """Return stored values, falling back to ``defaults`` per key."""
        ...

    async def set(self, partial: Dict[str, Any]) -> None:
        """Merge ``partial`` into the stored values."""
        ...


class MemorySettingsStore:
    """In-process settings store. Nothing survives a restart."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._values: Dict[str, Any] = dict(initial or {})

    async def get(self, defaults: Dict[str, Any]) -> Dict[str, Any]:
        return {key: self._values.get(key, default) for key, default in defaults.items()}

    async def set(self, partial: Dict[str, Any]) -> None:
        self._values.update(partial)


class JsonFileSettingsStore:
    """Settings persisted as a single JSON object on disk (write-through)."""

    def __init__(self, path: Path | str):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = asyncio.Lock()

    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"[CONFIG] Unreadable settings file {self.path}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    async def get(self, defaults: Dict[str, Any]) -> Dict[str, Any]:
        async with self._lock:
            stored = self._read()
        return {key: stored.get(key, default) for key, default in defaults.items()}

    async def set(self, partial: Dict[str, Any]) -> None:
        async with self._lock:
            stored = self._read()
            stored.update(partial)
            self.path.write_text(json.dumps(stored, indent=2), encoding="utf-8")
        logger.debug(f"[CONFIG] Settings written to {self.path}")
