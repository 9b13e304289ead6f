# src/taskflow/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app.
- No secrets required at import time (without Firebase keys the app runs on the
  in-memory backend).
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

ENV_PREFIX = "TASKFLOW"

BACKEND_CHOICES = ("auto", "firebase", "memory")


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _load_dotenv_if_available() -> None:
    """Load .env locally if python-dotenv is installed. Safe no-op otherwise."""
    try:
        from dotenv import load_dotenv  # type: ignore
    except Exception:
        return
    load_dotenv(override=False)


_load_dotenv_if_available()


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _first_env(*names: str, default: str | None = None) -> str | None:
    for n in names:
        v = os.getenv(n)
        if v is not None and v.strip() != "":
            return v
    return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str
    data_dir: Path

    # ---- Backend selection ----
    backend: str

    # ---- Firebase ----
    firebase_api_key: str | None
    firebase_project_id: str | None
    firebase_auth_url: str
    firebase_token_url: str
    firestore_url: str
    tasks_collection: str
    session_path: Path

    # ---- Tuning ----
    feed_poll_seconds: float
    http_timeout_seconds: float
    min_password_length: int

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "TaskFlow")
        log_level = _env(_k("LOG_LEVEL"), "WARNING")
        data_dir = _env_path(_k("DATA_DIR"), Path(".local/taskflow"))

        backend = _env(_k("BACKEND"), "auto").strip().lower()
        if backend not in BACKEND_CHOICES:
            backend = "auto"

        # Accept the plain FIREBASE_* names too (handy when sharing a .env with web builds).
        firebase_api_key = _first_env(_k("FIREBASE_API_KEY"), "FIREBASE_API_KEY", default=None)
        firebase_project_id = _first_env(
            _k("FIREBASE_PROJECT_ID"), "FIREBASE_PROJECT_ID", default=None
        )

        firebase_auth_url = _env(
            _k("FIREBASE_AUTH_URL"), "https://identitytoolkit.googleapis.com/v1"
        ).rstrip("/")
        firebase_token_url = _env(
            _k("FIREBASE_TOKEN_URL"), "https://securetoken.googleapis.com/v1"
        ).rstrip("/")
        firestore_url = _env(_k("FIRESTORE_URL"), "https://firestore.googleapis.com/v1").rstrip("/")
        tasks_collection = _env(_k("TASKS_COLLECTION"), "todos").strip() or "todos"
        session_path = _env_path(_k("SESSION_PATH"), data_dir / "session.json")

        feed_poll_seconds = max(0.1, _env_float(_k("FEED_POLL_SECONDS"), 2.0))
        http_timeout_seconds = max(1.0, _env_float(_k("HTTP_TIMEOUT_SECONDS"), 10.0))
        min_password_length = max(1, _env_int(_k("MIN_PASSWORD_LENGTH"), 6))

        return Settings(
            app_name=app_name,
            log_level=log_level,
            data_dir=data_dir,
            backend=backend,
            firebase_api_key=firebase_api_key,
            firebase_project_id=firebase_project_id,
            firebase_auth_url=firebase_auth_url,
            firebase_token_url=firebase_token_url,
            firestore_url=firestore_url,
            tasks_collection=tasks_collection,
            session_path=session_path,
            feed_poll_seconds=feed_poll_seconds,
            http_timeout_seconds=http_timeout_seconds,
            min_password_length=min_password_length,
        )


SETTINGS = Settings.from_env()

# ---- Optional local overrides (never committed) ----
# Prefer .env for secrets; use config_local.py only for safe overrides.
try:
    import config_local as _config_local  # type: ignore

    if hasattr(_config_local, "BACKEND") and _config_local.BACKEND in BACKEND_CHOICES:
        object.__setattr__(SETTINGS, "backend", str(_config_local.BACKEND))  # type: ignore[misc]
    if hasattr(_config_local, "FEED_POLL_SECONDS"):
        object.__setattr__(  # type: ignore[misc]
            SETTINGS, "feed_poll_seconds", max(0.1, float(_config_local.FEED_POLL_SECONDS))
        )
except Exception:
    pass


def get_settings() -> Settings:
    return SETTINGS
