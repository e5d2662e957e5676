"""Portable contract for a collection of named terminal sessions.

The primary implementation is tmux (local or over ssh); the in-memory double
implements the same contract for tests. Agent-specific behaviour (readiness,
hooks, zombie handling) lives in the agent layer, not here.
"""

import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass

from ..errors import TransportError
from ..models import SessionInfo

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NudgeTiming:
    """Delays (seconds) and retry count used by reliable nudge delivery.

    The defaults were found empirically against Claude Code in tmux.
    """

    paste_drain: float = 0.5
    escape_delay: float = 0.1
    retry_backoff: float = 0.2
    enter_attempts: int = 3

    @classmethod
    def instant(cls) -> "NudgeTiming":
        """Timing with no sleeps, for in-memory drivers."""
        return cls(paste_drain=0.0, escape_delay=0.0, retry_backoff=0.0)


def reliable_nudge(
    send_literal: Callable[[str], None],
    send_key: Callable[[str], None],
    message: str,
    timing: NudgeTiming,
) -> None:
    """Deliver ``message`` so it survives editor modes and paste debouncing.

    1. Paste the message in literal mode.
    2. Wait for the paste buffer to drain.
    3. Send Escape (ignored by shells, leaves vim insert mode).
    4. Short pause.
    5. Send Enter, retrying with backoff.

    Raises:
        TransportError: If every Enter attempt failed.
    """
    send_literal(message)
    time.sleep(timing.paste_drain)

    try:
        send_key("Escape")
    except Exception as e:
        logger.debug(f"Escape during nudge failed (ignored): {e}")
    time.sleep(timing.escape_delay)

    attempts = max(1, timing.enter_attempts)
    last_error: Exception | None = None
    for attempt in range(attempts):
        if attempt > 0:
            time.sleep(timing.retry_backoff)
        try:
            send_key("Enter")
            return
        except Exception as e:
            last_error = e
            logger.warning(f"Nudge Enter attempt {attempt + 1}/{attempts} failed: {e}")

    raise TransportError(f"failed to send Enter after {attempts} attempts: {last_error}")


class Sessions(ABC):
    """A collection of named terminal sessions.

    Methods that operate on one session take its id; ``start`` returns a new id
    and ``list_sessions`` returns all of them. Durations are in seconds.
    """

    # Lifecycle

    @abstractmethod
    def start(self, name: str, work_dir: str, command: str) -> str:
        """Create a detached session running ``command`` in ``work_dir``.

        Raises:
            InvalidSessionError: If name is empty.
            DuplicateSessionError: If a session with this name already exists.
        """

    @abstractmethod
    def stop(self, session_id: str) -> None:
        """Destroy a session. Missing sessions are not an error."""

    @abstractmethod
    def respawn(self, session_id: str, command: str) -> None:
        """Atomically replace the session's process with ``command``.

        Raises:
            NotRunningError: If the session does not exist.
        """

    @abstractmethod
    def exists(self, session_id: str) -> bool:
        """Return whether the session exists. Raises only on transport failure."""

    # Communication

    @abstractmethod
    def send(self, session_id: str, text: str) -> None:
        """Send text followed by Enter (fire-and-forget)."""

    @abstractmethod
    def send_control(self, session_id: str, key: str) -> None:
        """Send a symbolic key such as "C-c", "Escape" or "Down" without Enter."""

    @abstractmethod
    def nudge(self, session_id: str, message: str) -> None:
        """Deliver a message reliably (see :func:`reliable_nudge`)."""

    # Observation

    @abstractmethod
    def capture(self, session_id: str, lines: int) -> str:
        """Return up to the last ``lines`` lines of pane output."""

    @abstractmethod
    def capture_all(self, session_id: str) -> str:
        """Return the full scrollback."""

    @abstractmethod
    def is_running(self, session_id: str, *process_names: str) -> bool:
        """True iff the pane's foreground process matches one of ``process_names``.

        Never raises; a missing session or empty ``process_names`` gives False.
        """

    @abstractmethod
    def wait_for(self, session_id: str, timeout: float, *process_names: str) -> None:
        """Block until one of ``process_names`` runs in the session.

        Raises:
            ReadinessTimeoutError: If no matching process appeared by the deadline.
        """

    # Management

    @abstractmethod
    def list_sessions(self) -> list[str]:
        """Return the ids of all sessions known to this driver."""

    def list(self) -> list[str]:
        return self.list_sessions()

    @abstractmethod
    def get_info(self, session_id: str) -> SessionInfo:
        """Return session details. Raises SessionNotFoundError if missing."""

    @abstractmethod
    def get_start_command(self, session_id: str) -> str:
        """Return the command line the session was started with."""

    @abstractmethod
    def attach(self, session_id: str) -> None:
        """Hand the current terminal to the session until the user detaches."""

    @abstractmethod
    def switch_to(self, session_id: str) -> None:
        """Switch the current multiplexer client to the session.

        Raises:
            NotInClientError: If not running inside a multiplexer client.
        """
