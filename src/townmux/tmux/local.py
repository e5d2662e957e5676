"""Tmux on this host, driven through libtmux."""

import logging
import os
import subprocess
import sys
import time

import libtmux
import psutil

from ..errors import (
    InvalidSessionError,
    NotInClientError,
    NotRunningError,
    ReadinessTimeoutError,
    SessionNotFoundError,
    TownmuxError,
    TransportError,
)
from ..models import SessionInfo
from ..session.base import NudgeTiming, Sessions, reliable_nudge
from .errors import classify, is_missing
from .remote import (
    INFO_FORMAT,
    exact_pane,
    exact_session,
    parse_info_line,
    unquote_start_command,
)

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.1
SEND_DEBOUNCE = 0.1
KILL_GRACE = 0.1

SHELLS = frozenset({"bash", "zsh", "sh", "fish", "dash", "ksh"})


class LocalTmux(Sessions):
    """Sessions on the local tmux server.

    Uses the ``cmd()`` verb interface of a :class:`libtmux.Server` so every
    call maps one-to-one onto a tmux command.

    Args:
        server: Server to drive; a new one is created if omitted.
        socket_name: tmux socket (``-L``) for a newly created server.
        nudge_timing: Delays for :meth:`nudge`.
    """

    def __init__(
        self,
        server: libtmux.Server | None = None,
        socket_name: str | None = None,
        nudge_timing: NudgeTiming | None = None,
    ):
        if server is None:
            server = libtmux.Server(socket_name=socket_name) if socket_name else libtmux.Server()
        self.server = server
        self.socket_name = socket_name
        self.nudge_timing = nudge_timing or NudgeTiming()

    def _run(self, *args: str) -> list[str]:
        result = self.server.cmd(*args)
        if result.returncode != 0:
            raise classify("\n".join(result.stderr), op=f"tmux {args[0]}")
        return result.stdout

    def _first(self, *args: str) -> str:
        out = self._run(*args)
        return out[0].strip() if out else ""

    # --- Lifecycle ---

    def start(self, name: str, work_dir: str, command: str) -> str:
        if not name:
            raise InvalidSessionError("session name cannot be empty")

        args = ["new-session", "-d", "-s", name]
        if work_dir:
            args += ["-c", work_dir]
        if command:
            args.append(command)
        self._run(*args)
        logger.debug(f"Created tmux session: {name}")
        return name

    def stop(self, session_id: str) -> None:
        try:
            pid = self._first("list-panes", "-t", exact_pane(session_id), "-F", "#{pane_pid}")
        except TownmuxError:
            pid = ""
        if pid.isdigit():
            self._kill_descendants(int(pid))

        try:
            self._run("kill-session", "-t", exact_session(session_id))
        except TownmuxError as e:
            if is_missing(e):
                return
            raise
        logger.debug(f"Killed tmux session: {session_id}")

    def _kill_descendants(self, pid: int) -> None:
        """TERM the pane's descendants, then KILL whatever survived the grace period."""
        try:
            children = psutil.Process(pid).children(recursive=True)
        except psutil.Error as e:
            logger.debug(f"Could not list children of pane process {pid}: {e}")
            return

        for child in children:
            try:
                child.terminate()
            except psutil.Error:
                pass
        _, alive = psutil.wait_procs(children, timeout=KILL_GRACE)
        for child in alive:
            try:
                child.kill()
            except psutil.Error:
                pass

    def respawn(self, session_id: str, command: str) -> None:
        try:
            pane_id = self._first("list-panes", "-t", exact_pane(session_id), "-F", "#{pane_id}")
        except TownmuxError as e:
            if is_missing(e):
                raise NotRunningError(f"session not running: {session_id}") from e
            raise e.during("getting pane ID") from e

        try:
            self._run("clear-history", "-t", pane_id)
        except TownmuxError as e:
            logger.debug(f"clear-history for {session_id} failed (ignored): {e}")

        self._run("respawn-pane", "-k", "-t", pane_id, command)

    def exists(self, session_id: str) -> bool:
        try:
            self._run("has-session", "-t", exact_session(session_id))
        except TownmuxError as e:
            if is_missing(e):
                return False
            raise
        return True

    # --- Environment ---

    def set_environment(self, session_id: str, key: str, value: str) -> None:
        self._run("set-environment", "-t", exact_session(session_id), key, value)

    def set_env_vars(self, session_id: str, env: dict[str, str]) -> None:
        for key in sorted(env):
            self.set_environment(session_id, key, env[key])

    # --- Communication ---

    def send(self, session_id: str, text: str) -> None:
        self._run("send-keys", "-t", exact_pane(session_id), "-l", text)
        time.sleep(SEND_DEBOUNCE)
        self._run("send-keys", "-t", exact_pane(session_id), "Enter")

    def send_control(self, session_id: str, key: str) -> None:
        self._run("send-keys", "-t", exact_pane(session_id), key)

    def nudge(self, session_id: str, message: str) -> None:
        reliable_nudge(
            lambda text: self._run("send-keys", "-t", exact_pane(session_id), "-l", text),
            lambda key: self._run("send-keys", "-t", exact_pane(session_id), key),
            message,
            self.nudge_timing,
        )

    # --- Observation ---

    def capture(self, session_id: str, lines: int) -> str:
        out = self._run("capture-pane", "-p", "-t", exact_pane(session_id), "-S", f"-{lines}")
        return "\n".join(out)

    def capture_all(self, session_id: str) -> str:
        out = self._run("capture-pane", "-p", "-t", exact_pane(session_id), "-S", "-")
        return "\n".join(out)

    def is_running(self, session_id: str, *process_names: str) -> bool:
        if not process_names:
            return False
        try:
            current = self._first(
                "list-panes", "-t", exact_pane(session_id), "-F", "#{pane_current_command}"
            )
        except TownmuxError:
            return False
        if current in process_names:
            return True
        if current not in SHELLS:
            return False

        # The agent may run under a wrapper shell; look at the pane's descendants
        try:
            pid = int(self._first("list-panes", "-t", exact_pane(session_id), "-F", "#{pane_pid}"))
            children = psutil.Process(pid).children(recursive=True)
        except (TownmuxError, ValueError, psutil.Error):
            return False
        for child in children:
            try:
                if child.name() in process_names:
                    return True
            except psutil.Error:
                continue
        return False

    def wait_for(self, session_id: str, timeout: float, *process_names: str) -> None:
        if not process_names:
            return
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if self.is_running(session_id, *process_names):
                return
            time.sleep(POLL_INTERVAL)
        raise ReadinessTimeoutError(f"timeout waiting for process {list(process_names)}")

    # --- Management ---

    def list_sessions(self) -> list[str]:
        try:
            out = self._run("list-sessions", "-F", "#{session_name}")
        except TownmuxError as e:
            if is_missing(e):
                return []
            raise
        return [line for line in out if line]

    def get_info(self, session_id: str) -> SessionInfo:
        out = self._run(
            "list-sessions",
            "-F",
            INFO_FORMAT,
            "-f",
            f"#{{==:#{{session_name}},{session_id}}}",
        )
        if not out:
            raise SessionNotFoundError(f"session not found: {session_id}")
        return parse_info_line(out[0])

    def get_start_command(self, session_id: str) -> str:
        try:
            raw = self._first(
                "display-message", "-t", exact_pane(session_id), "-p", "#{pane_start_command}"
            )
        except TownmuxError as e:
            raise e.during("getting start command") from e
        return unquote_start_command(raw)

    def attach(self, session_id: str) -> None:
        if not self.exists(session_id):
            raise SessionNotFoundError(f"session not found: {session_id}")
        if os.environ.get("TMUX"):
            self.switch_to(session_id)
            return

        argv = ["tmux"]
        if self.socket_name:
            argv += ["-L", self.socket_name]
        argv += ["attach-session", "-t", exact_session(session_id)]
        result = subprocess.run(argv, stdin=sys.stdin, stdout=sys.stdout, stderr=sys.stderr)
        if result.returncode != 0:
            raise TransportError(f"tmux attach exited with status {result.returncode}")

    def switch_to(self, session_id: str) -> None:
        if not os.environ.get("TMUX"):
            raise NotInClientError()
        if not self.exists(session_id):
            raise SessionNotFoundError(f"session not found: {session_id}")
        if self._first("display-message", "-p", "#{session_name}") == session_id:
            return
        self._run("switch-client", "-t", exact_session(session_id))
