"""
Environment configuration.

Rationale:
- Secrets come from the process environment (or a local .env loaded by main.py).
- Values are read lazily so tests can monkeypatch the environment.
- A missing Gemini credential is fatal at startup, not on the first request.
"""

import os
from typing import Optional


class ConfigError(RuntimeError):
    """Raised when required configuration is missing or invalid."""


DEFAULT_MODEL = "gemini-2.5-flash"


def get_api_key() -> Optional[str]:
    return os.getenv("GEMINI_API_KEY") or os.getenv("LLM_API_KEY")


def require_api_key() -> str:
    api_key = get_api_key()
    if not api_key:
        raise ConfigError("GEMINI_API_KEY or LLM_API_KEY must be set in environment")
    return api_key


def get_model_name() -> str:
    return os.getenv("GEMINI_MODEL") or DEFAULT_MODEL


def get_temperature() -> float:
    return _float_env("LLM_TEMPERATURE", 0.1)


def get_analysis_timeout() -> float:
    return _float_env("ANALYSIS_TIMEOUT_S", 60.0)


def get_max_file_size_bytes() -> int:
    return int(_float_env("MAX_FILE_SIZE_MB", 10.0) * 1024 * 1024)


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}")


def get_max_sessions() -> int:
    return int(_float_env("MAX_SESSIONS", 1000))


def get_session_idle_ttl() -> float:
    return _float_env("SESSION_IDLE_TTL_S", 3600.0)
