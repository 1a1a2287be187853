from __future__ import annotations

import os
from pathlib import Path


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def server_url() -> str:
    return os.getenv("SPLAT_SERVER_URL", "http://127.0.0.1:5000").rstrip("/")


def data_dir() -> Path:
    """
    Resolve the directory holding models.json and downloaded artifacts.
    Priority: SPLAT_DATA_DIR env -> <repo>/data.
    """
    env_path = os.getenv("SPLAT_DATA_DIR")
    if env_path:
        return Path(env_path).expanduser()
    return Path(__file__).resolve().parent.parent.parent / "data"


def poll_interval() -> float:
    return _env_float("SPLAT_POLL_INTERVAL", 2.0)


def request_timeout() -> float:
    return _env_float("SPLAT_REQUEST_TIMEOUT", 60.0)


def resource_timeout() -> float:
    return _env_float("SPLAT_RESOURCE_TIMEOUT", 600.0)


def max_upload_bytes() -> int:
    return int(_env_float("SPLAT_MAX_UPLOAD_MB", 500) * 1024 * 1024)
