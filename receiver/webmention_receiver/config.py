from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


class ConfigError(RuntimeError):
    pass


@dataclass
class Settings:
    mentions_file: Path
    failures_file: Path
    allowed_targets_file: Path | None
    host: str
    port: int
    verify_interval_ms: int
    request_timeout_seconds: float
    max_failures: int
    freshness_hours: int
    max_queue_depth: int
    max_body_bytes: int
    user_agent: str
    debug: bool

    @property
    def verify_interval_seconds(self) -> float:
        return self.verify_interval_ms / 1000


def _to_bool(value: str | None, *, default: bool) -> bool:
    if value is None:
        return default
    return value.lower() in {"1", "true", "yes", "on"}


def _to_positive_int(name: str, default: str) -> int:
    raw = os.getenv(name, default)
    try:
        parsed = int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc
    if parsed < 1:
        raise ConfigError(f"{name} must be at least 1, got {parsed}")
    return parsed


def _to_optional_path(value: str | None) -> Path | None:
    if value is None:
        return None
    stripped = value.strip()
    if not stripped:
        return None
    return Path(stripped)


def load_settings(
    mentions_file: str | None = None,
    failures_file: str | None = None,
    allowed_targets_file: str | None = None,
) -> Settings:
    """Build settings from the environment.

    Explicit file arguments (the positional command line arguments) take
    precedence over ``MENTIONS_FILE``, ``FAILURES_FILE`` and
    ``ALLOWED_TARGETS_FILE``.
    """
    # Explicitly load .env.local first, fallback to .env
    dotenv_path = Path(__file__).parent.parent / ".env.local"
    if dotenv_path.exists():
        load_dotenv(dotenv_path=dotenv_path)
    else:
        load_dotenv()

    mentions = mentions_file or os.getenv("MENTIONS_FILE") or "webmentions.json"
    failures = failures_file or os.getenv("FAILURES_FILE") or "validation-failures.json"
    allowed = _to_optional_path(allowed_targets_file or os.getenv("ALLOWED_TARGETS_FILE"))

    try:
        timeout = float(os.getenv("REQUEST_TIMEOUT_SECONDS", "10"))
    except ValueError as exc:
        raise ConfigError("REQUEST_TIMEOUT_SECONDS must be a number") from exc
    if timeout <= 0:
        raise ConfigError("REQUEST_TIMEOUT_SECONDS must be positive")

    return Settings(
        mentions_file=Path(mentions),
        failures_file=Path(failures),
        allowed_targets_file=allowed,
        host=os.getenv("HOST", "0.0.0.0"),
        port=_to_positive_int("PORT", "12117"),
        verify_interval_ms=_to_positive_int("VERIFY_INTERVAL_MS", "500"),
        request_timeout_seconds=timeout,
        max_failures=_to_positive_int("MAX_FAILURES", "5"),
        freshness_hours=_to_positive_int("FRESHNESS_HOURS", "24"),
        max_queue_depth=_to_positive_int("MAX_QUEUE_DEPTH", "1000"),
        max_body_bytes=_to_positive_int("MAX_BODY_BYTES", "1048576"),
        user_agent=os.getenv("USER_AGENT", "webmention-receiver/1.0"),
        debug=_to_bool(os.getenv("DEBUG"), default=False),
    )
