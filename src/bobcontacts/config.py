"""Settings read from the environment (after loading .env with python-dotenv)."""

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


@dataclass(frozen=True)
class Settings:
    api_url: str = ""
    api_token: str | None = None
    data_dir: str | None = None
    sync_batch_size: int = 100
    delete_batch_size: int = 50
    sync_concurrency: int = 4
    rate_limit_per_second: float = 5.0
    batch_pause_seconds: float = 0.5
    cache_ttl_seconds: float = 300.0
    http_timeout_seconds: float = 20.0
    log_level: str = "INFO"

    @property
    def remote_enabled(self) -> bool:
        return bool(self.api_url)


def load_env_file() -> None:
    """Load .env from repo root (when run from repo root or from Docker)."""
    for path in (
        Path(__file__).resolve().parent.parent.parent / ".env",
        Path.cwd() / ".env",
    ):
        if path.exists():
            load_dotenv(path)
            break


def _int(environ, name: str, default: int) -> int:
    raw = (environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc
    if value < 1:
        raise ValueError(f"{name} must be >= 1, got {value}")
    return value


def _float(environ, name: str, default: float) -> float:
    raw = (environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc
    if value < 0:
        raise ValueError(f"{name} must be >= 0, got {value}")
    return value


def load_settings(environ=None) -> Settings:
    if environ is None:
        load_env_file()
        environ = os.environ
    rate = _float(environ, "BOB_RATE_LIMIT_PER_SECOND", 5.0)
    if rate == 0:
        raise ValueError("BOB_RATE_LIMIT_PER_SECOND must be > 0")
    return Settings(
        api_url=(environ.get("BOB_API_URL") or "").strip().rstrip("/"),
        api_token=(environ.get("BOB_API_TOKEN") or "").strip() or None,
        data_dir=(environ.get("BOB_DATA_DIR") or "").strip() or None,
        sync_batch_size=_int(environ, "BOB_SYNC_BATCH_SIZE", 100),
        delete_batch_size=_int(environ, "BOB_DELETE_BATCH_SIZE", 50),
        sync_concurrency=_int(environ, "BOB_SYNC_CONCURRENCY", 4),
        rate_limit_per_second=rate,
        batch_pause_seconds=_float(environ, "BOB_BATCH_PAUSE_SECONDS", 0.5),
        cache_ttl_seconds=_float(environ, "BOB_CACHE_TTL_SECONDS", 300.0),
        http_timeout_seconds=_float(environ, "BOB_HTTP_TIMEOUT_SECONDS", 20.0),
        log_level=(environ.get("LOG_LEVEL") or "INFO").strip().upper(),
    )
