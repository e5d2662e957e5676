"""In-memory test double for the Sessions contract.

Implements the same contract as real tmux without subprocess overhead. The
conformance tests run against it so manager logic can be tested quickly and
deterministically.
"""

import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime

from ..errors import (
    DuplicateSessionError,
    InvalidSessionError,
    NotRunningError,
    ReadinessTimeoutError,
    SessionNotFoundError,
)
from ..models import SessionInfo
from .base import NudgeTiming, Sessions, reliable_nudge

READY_PROMPT = "> "


class _ReadWriteLock:
    """Many readers or one writer."""

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False

    @contextmanager
    def read(self):
        with self._cond:
            while self._writer:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self):
        with self._cond:
            while self._writer or self._readers:
                self._cond.wait()
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


@dataclass
class _DoubleSession:
    name: str
    work_dir: str
    command: str
    created: str
    env: dict[str, str] = field(default_factory=dict)
    buffer: list[str] = field(default_factory=lambda: [READY_PROMPT])
    running: bool = True
    control_log: list[str] = field(default_factory=list)
    nudge_log: list[str] = field(default_factory=list)
    attach_count: int = 0


class SessionsDouble(Sessions):
    """In-memory Sessions implementation.

    The pane buffer starts as a single ``"> "`` line so a default prompt
    checker reports ready immediately. ``is_running`` reflects a simulated
    "process alive" flag that tests flip with :meth:`set_running`.
    """

    def __init__(self, poll_interval: float = 0.01):
        self._lock = _ReadWriteLock()
        self._sessions: dict[str, _DoubleSession] = {}
        self._poll_interval = poll_interval

    def _get(self, session_id: str) -> _DoubleSession:
        sess = self._sessions.get(session_id)
        if sess is None:
            raise SessionNotFoundError(f"session not found: {session_id}")
        return sess

    # --- Lifecycle ---

    def start(self, name: str, work_dir: str, command: str) -> str:
        if not name:
            raise InvalidSessionError("session name cannot be empty")

        with self._lock.write():
            if name in self._sessions:
                raise DuplicateSessionError(f"duplicate session: {name}")
            self._sessions[name] = _DoubleSession(
                name=name,
                work_dir=work_dir,
                command=command,
                created=datetime.now(UTC).isoformat(),
            )
        return name

    def stop(self, session_id: str) -> None:
        with self._lock.write():
            sess = self._sessions.pop(session_id, None)
            if sess is not None:
                sess.running = False

    def respawn(self, session_id: str, command: str) -> None:
        with self._lock.write():
            sess = self._sessions.get(session_id)
            if sess is None:
                raise NotRunningError(f"session not running: {session_id}")
            sess.command = command
            sess.buffer = [READY_PROMPT]
            sess.running = True

    def exists(self, session_id: str) -> bool:
        with self._lock.read():
            return session_id in self._sessions

    # --- Communication ---

    def send(self, session_id: str, text: str) -> None:
        with self._lock.write():
            self._get(session_id).buffer.extend(text.split("\n"))

    def send_control(self, session_id: str, key: str) -> None:
        with self._lock.write():
            self._get(session_id).control_log.append(key)

    def nudge(self, session_id: str, message: str) -> None:
        with self._lock.write():
            sess = self._get(session_id)

            def send_literal(text: str) -> None:
                sess.nudge_log.append(text)
                sess.buffer.extend(text.split("\n"))

            reliable_nudge(send_literal, sess.control_log.append, message, NudgeTiming.instant())

    # --- Observation ---

    def capture(self, session_id: str, lines: int) -> str:
        with self._lock.read():
            buffer = self._get(session_id).buffer
            if lines <= 0:
                return ""
            return "\n".join(buffer[-lines:])

    def capture_all(self, session_id: str) -> str:
        with self._lock.read():
            return "\n".join(self._get(session_id).buffer)

    def is_running(self, session_id: str, *process_names: str) -> bool:
        if not process_names:
            return False
        with self._lock.read():
            sess = self._sessions.get(session_id)
            return sess is not None and sess.running

    def wait_for(self, session_id: str, timeout: float, *process_names: str) -> None:
        if not process_names:
            return
        if not self.exists(session_id):
            raise SessionNotFoundError(f"session not found: {session_id}")

        deadline = time.monotonic() + timeout
        while True:
            if self.is_running(session_id, *process_names):
                return
            if time.monotonic() >= deadline:
                raise ReadinessTimeoutError(f"timeout waiting for process {list(process_names)}")
            time.sleep(self._poll_interval)

    # --- Management ---

    def list_sessions(self) -> list[str]:
        with self._lock.read():
            return list(self._sessions)

    def get_info(self, session_id: str) -> SessionInfo:
        with self._lock.read():
            sess = self._get(session_id)
            return SessionInfo(
                name=sess.name,
                created=sess.created,
                attached=sess.attach_count > 0,
                windows=1,
            )

    def get_start_command(self, session_id: str) -> str:
        with self._lock.read():
            return self._get(session_id).command

    def attach(self, session_id: str) -> None:
        with self._lock.write():
            self._get(session_id).attach_count += 1

    def switch_to(self, session_id: str) -> None:
        with self._lock.read():
            self._get(session_id)

    # --- Test helpers (not part of the Sessions contract) ---

    def set_env(self, session_id: str, key: str, value: str) -> None:
        with self._lock.write():
            self._get(session_id).env[key] = value

    def set_env_vars(self, session_id: str, env: dict[str, str]) -> None:
        with self._lock.write():
            self._get(session_id).env.update(env)

    def get_env(self, session_id: str, key: str) -> str:
        with self._lock.read():
            return self._get(session_id).env.get(key, "")

    def environment(self, session_id: str) -> dict[str, str]:
        """Key-sorted copy of the session's environment."""
        with self._lock.read():
            env = self._get(session_id).env
            return {k: env[k] for k in sorted(env)}

    def set_buffer(self, session_id: str, lines: list[str]) -> None:
        with self._lock.write():
            self._get(session_id).buffer = list(lines)

    def set_running(self, session_id: str, running: bool) -> None:
        with self._lock.write():
            self._get(session_id).running = running

    def clear(self) -> None:
        with self._lock.write():
            self._sessions = {}

    def session_count(self) -> int:
        with self._lock.read():
            return len(self._sessions)

    def control_log(self, session_id: str) -> list[str]:
        with self._lock.read():
            sess = self._sessions.get(session_id)
            return list(sess.control_log) if sess else []

    def nudge_log(self, session_id: str) -> list[str]:
        with self._lock.read():
            sess = self._sessions.get(session_id)
            return list(sess.nudge_log) if sess else []

    def get_command(self, session_id: str) -> str:
        with self._lock.read():
            sess = self._sessions.get(session_id)
            return sess.command if sess else ""

    def get_work_dir(self, session_id: str) -> str:
        with self._lock.read():
            sess = self._sessions.get(session_id)
            return sess.work_dir if sess else ""

    def attach_count(self, session_id: str) -> int:
        with self._lock.read():
            sess = self._sessions.get(session_id)
            return sess.attach_count if sess else 0
