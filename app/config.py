"""
app/config.py -- Environment-driven configuration.

Values come from the process environment, optionally seeded from a ``.env``
file in the project root.  The file never overrides variables that are
already set.  Bad numeric values fail loudly at load time.

    AUTHORIO_API_URL        REST base URL          http://localhost:5000/api
    AUTHORIO_MODE           offline | cloud        offline
    AUTHORIO_DEBOUNCE_MS    small-field debounce   500
    AUTHORIO_LONG_FORM_MS   long-form window       1200000 (20 min)
    AUTHORIO_ECHO_GRACE_MS  post-commit grace      150
    AUTHORIO_DATA_DIR       data directory         platformdirs user data dir
    AUTHORIO_HTTP_TIMEOUT   request timeout (s)    unset: no timeout
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Literal, Mapping, Optional

from pydantic import BaseModel

from app.paths import get_project_root, get_user_data_dir

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "http://localhost:5000/api"


def load_env_file(path: Path | None = None, environ: dict[str, str] | None = None) -> None:
    """Read KEY=VALUE lines from *path* into *environ* without overriding."""
    path = path or Path(get_project_root()) / ".env"
    environ = os.environ if environ is None else environ
    if not path.exists():
        return
    for raw in path.read_text(encoding="utf-8").splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        if not key or key in environ:
            continue
        environ[key] = value.strip().strip('"').strip("'")


def _positive_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer") from exc
    if value <= 0:
        raise ValueError(f"{name} must be > 0")
    return value


def _optional_seconds(env: Mapping[str, str], name: str) -> Optional[float]:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return None
    try:
        value = float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number") from exc
    if value <= 0:
        raise ValueError(f"{name} must be > 0")
    return value


class AppConfig(BaseModel):
    api_url: str = DEFAULT_API_URL
    mode: Literal["offline", "cloud"] = "offline"
    debounce_ms: int = 500
    long_form_ms: int = 20 * 60 * 1000
    echo_grace_ms: int = 150
    data_dir: str = ""
    http_timeout: Optional[float] = None


def load_config(env: Mapping[str, str] | None = None) -> AppConfig:
    """Build an AppConfig from *env* (defaults to ``os.environ`` + ``.env``)."""
    if env is None:
        load_env_file()
        env = os.environ

    mode = (env.get("AUTHORIO_MODE") or "offline").strip().lower()
    if mode not in ("offline", "cloud"):
        raise ValueError("AUTHORIO_MODE must be 'offline' or 'cloud'")

    data_dir = env.get("AUTHORIO_DATA_DIR") or get_user_data_dir()

    config = AppConfig(
        api_url=(env.get("AUTHORIO_API_URL") or DEFAULT_API_URL).rstrip("/"),
        mode=mode,
        debounce_ms=_positive_int(env, "AUTHORIO_DEBOUNCE_MS", 500),
        long_form_ms=_positive_int(env, "AUTHORIO_LONG_FORM_MS", 20 * 60 * 1000),
        echo_grace_ms=_positive_int(env, "AUTHORIO_ECHO_GRACE_MS", 150),
        data_dir=data_dir,
        http_timeout=_optional_seconds(env, "AUTHORIO_HTTP_TIMEOUT"),
    )
    logger.debug("Loaded config: mode=%s data_dir=%s", config.mode, config.data_dir)
    return config
