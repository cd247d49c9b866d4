from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

from docstore.utils.env import resolve_env_path
from docstore.utils.logging import get_logger

logger = get_logger("config")

_ENV_PATH = resolve_env_path()

if _ENV_PATH.exists():
    load_dotenv(str(_ENV_PATH), override=True)
    logger.info("Loaded environment variables from file", extra={"path": str(_ENV_PATH)})
else:
    logger.warning(
        ".env file is missing; relying on existing environment variables",
        extra={"path": str(_ENV_PATH)},
    )


def _strip_inline_comment(raw: str) -> str:
    """Remove inline shell-style comments from a value string."""

    comment_pos = raw.find("#")
    if comment_pos == -1:
        return raw.strip()
    return raw[:comment_pos].strip()


def _parse_int(name: str, default: int, *, minimum: int | None = None) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        cleaned = _strip_inline_comment(raw)
        if cleaned == "":
            return default
        value = int(cleaned)
    except ValueError as exc:
        logger.error(
            "Failed to parse int from env",
            extra={"env_name": name, "env_value": raw},
        )
        raise RuntimeError(f"Environment variable {name} must be an integer") from exc
    if minimum is not None and value < minimum:
        raise RuntimeError(f"Environment variable {name} must be at least {minimum}")
    return value


def _parse_float(name: str, default: float, *, minimum: float | None = None) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        cleaned = _strip_inline_comment(raw)
        if cleaned == "":
            return default
        value = float(cleaned)
    except ValueError as exc:
        logger.error(
            "Failed to parse float from env",
            extra={"env_name": name, "env_value": raw},
        )
        raise RuntimeError(f"Environment variable {name} must be a number") from exc
    if minimum is not None and value < minimum:
        raise RuntimeError(f"Environment variable {name} must be at least {minimum}")
    return value


BASE_DIR = Path(os.getenv("APP_ROOT", Path(__file__).resolve().parents[1]))
DEFAULT_DATABASE_URL = f"sqlite:///{BASE_DIR / 'documents.db'}"

DATABASE_URL = os.getenv("DATABASE_URL", "").strip() or DEFAULT_DATABASE_URL
DB_POOL_MAX_SIZE = _parse_int("DB_POOL_MAX_SIZE", 10, minimum=1)
DB_POOL_TIMEOUT = _parse_float("DB_POOL_TIMEOUT", 30.0, minimum=0.0)
DB_BUSY_TIMEOUT = _parse_float("DB_BUSY_TIMEOUT", 5.0, minimum=0.0)

HOST = os.getenv("HOST", "127.0.0.1").strip() or "127.0.0.1"
PORT = _parse_int("PORT", 8080, minimum=1)
WORKERS = _parse_int("WORKERS", os.cpu_count() or 1, minimum=1)

logger.info(
    "Configuration loaded",
    extra={
        "DATABASE_URL": DATABASE_URL,
        "DB_POOL_MAX_SIZE": DB_POOL_MAX_SIZE,
        "DB_POOL_TIMEOUT": DB_POOL_TIMEOUT,
        "HOST": HOST,
        "PORT": PORT,
        "WORKERS": WORKERS,
    },
)


__all__ = [
    "DATABASE_URL",
    "DEFAULT_DATABASE_URL",
    "DB_POOL_MAX_SIZE",
    "DB_POOL_TIMEOUT",
    "DB_BUSY_TIMEOUT",
    "HOST",
    "PORT",
    "WORKERS",
]
