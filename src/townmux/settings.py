"""Runtime settings read from TOWNMUX_* environment variables."""

import os
from collections.abc import Mapping
from dataclasses import dataclass

from .session.base import NudgeTiming


_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _number(env: Mapping[str, str], key: str, default: float | None) -> float | None:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{key} must be a number, got {raw!r}") from None
    if value < 0:
        raise ValueError(f"{key} must not be negative, got {raw!r}")
    return value


def _flag(env: Mapping[str, str], key: str, default: bool) -> bool:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    lowered = raw.strip().lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise ValueError(f"{key} must be a boolean, got {raw!r}")


@dataclass
class Settings:
    """Configuration for session drivers and agent managers.

    Durations are seconds. ``ready_timeout`` of None keeps each preset's own
    timeout (30 s unless the preset says otherwise). Use :meth:`from_env` to
    read the environment.
    """

    ready_timeout: float | None = None
    paste_drain: float = 0.5
    escape_delay: float = 0.1
    retry_backoff: float = 0.2
    enter_attempts: int = 3
    legacy_fallback: bool = True
    log_level: str = "INFO"
    log_dir: str | None = None

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        """Build settings from TOWNMUX_* variables.

        Raises:
            ValueError: If a variable holds an invalid value; the message names it.
        """
        env = os.environ if environ is None else environ

        attempts = _number(env, "TOWNMUX_NUDGE_ENTER_ATTEMPTS", 3)
        if attempts < 1 or attempts != int(attempts):
            raise ValueError(
                f"TOWNMUX_NUDGE_ENTER_ATTEMPTS must be a positive integer, got {attempts!r}"
            )

        return cls(
            ready_timeout=_number(env, "TOWNMUX_READY_TIMEOUT", None),
            paste_drain=_number(env, "TOWNMUX_NUDGE_PASTE_DRAIN_MS", 500) / 1000,
            escape_delay=_number(env, "TOWNMUX_NUDGE_ESCAPE_DELAY_MS", 100) / 1000,
            retry_backoff=_number(env, "TOWNMUX_NUDGE_RETRY_BACKOFF_MS", 200) / 1000,
            enter_attempts=int(attempts),
            legacy_fallback=_flag(env, "TOWNMUX_LEGACY_FALLBACK", True),
            log_level=env.get("TOWNMUX_LOG_LEVEL", "INFO").upper() or "INFO",
            log_dir=env.get("TOWNMUX_LOG_DIR") or None,
        )

    def nudge_timing(self) -> NudgeTiming:
        return NudgeTiming(
            paste_drain=self.paste_drain,
            escape_delay=self.escape_delay,
            retry_backoff=self.retry_backoff,
            enter_attempts=self.enter_attempts,
        )
