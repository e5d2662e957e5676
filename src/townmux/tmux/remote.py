"""Tmux on a remote host, driven over ssh."""

import base64
import logging
import shlex
import subprocess
import sys
import time

from ..errors import (
    InvalidSessionError,
    NoServerError,
    NotRunningError,
    ReadinessTimeoutError,
    SessionNotFoundError,
    TownmuxError,
    TransportError,
)
from ..models import SessionInfo
from ..session.base import NudgeTiming, Sessions, reliable_nudge
from .errors import classify, is_missing

logger = logging.getLogger(__name__)

INFO_FORMAT = (
    "#{session_name}|#{session_windows}|#{session_created_string}|"
    "#{session_attached}|#{session_activity}|#{session_last_attached}"
)

POLL_INTERVAL = 0.1
SEND_DEBOUNCE = 0.1


def shell_escape(s: str) -> str:
    """Single-quote ``s`` for a POSIX shell."""
    return "'" + s.replace("'", "'\"'\"'") + "'"


def shell_join(args: list[str]) -> str:
    return " ".join(shell_escape(a) for a in args)


def exact_session(name: str) -> str:
    """Session target that tmux matches exactly instead of by prefix."""
    return f"={name}"


def exact_pane(name: str) -> str:
    """Pane target for the active pane of exactly session ``name``."""
    return f"={name}:"


def unquote_start_command(text: str) -> str:
    """Undo the quoting newer tmux applies to ``#{pane_start_command}``.

    tmux 3.3 reports ``sleep 300`` as ``"sleep 300"``. A single quoted token
    is unwrapped; anything else is returned as is.
    """
    text = text.strip()
    if not text or text[0] not in "\"'":
        return text
    try:
        tokens = shlex.split(text)
    except ValueError:
        return text
    return tokens[0] if len(tokens) == 1 else text


class RemoteTmux(Sessions):
    """Sessions on a remote tmux server reached through ``ssh_cmd``.

    Every tmux verb becomes ``sh -c "<ssh_cmd> 'tmux <escaped args>'"``.

    Args:
        ssh_cmd: ssh prefix, e.g. ``"ssh user@devbox"``.
        local_ssh: ssh command the remote side uses to call back to this
            host. When set it is exported as ``GT_LOCAL_SSH`` in every
            launched command.
        nudge_timing: Delays for :meth:`nudge`.
    """

    def __init__(
        self,
        ssh_cmd: str,
        local_ssh: str | None = None,
        nudge_timing: NudgeTiming | None = None,
    ):
        self.ssh_cmd = ssh_cmd
        self.local_ssh = local_ssh
        self.nudge_timing = nudge_timing or NudgeTiming()

    # --- Transport ---

    def _ssh(self, remote_command: str) -> subprocess.CompletedProcess:
        return subprocess.run(
            ["sh", "-c", f"{self.ssh_cmd} {shell_escape(remote_command)}"],
            capture_output=True,
            text=True,
        )

    def _run(self, *args: str) -> str:
        result = self._ssh("tmux " + shell_join(list(args)))
        if result.returncode != 0:
            raise classify(result.stderr, op=f"remote tmux {args[0]}")
        return result.stdout.strip()

    def run_remote(self, command: str) -> str:
        """Run an arbitrary shell command on the remote host and return stdout.

        Raises:
            TransportError: If the command exits non-zero.
        """
        result = self._ssh(command)
        if result.returncode != 0:
            raise TransportError(result.stderr.strip() or f"exit status {result.returncode}")
        return result.stdout

    def write_file(self, path: str, data: bytes) -> None:
        """Write ``data`` to ``path`` on the remote host (base64 on the wire)."""
        encoded = base64.b64encode(data).decode("ascii")
        self.run_remote(f"echo {encoded} | base64 -d > {shell_escape(path)}")

    def _with_callback(self, command: str) -> str:
        # Respawned commands were read back with the assignment already in place
        if self.local_ssh and not command.startswith("GT_LOCAL_SSH="):
            return f"GT_LOCAL_SSH={shell_escape(self.local_ssh)} {command}"
        return command

    # --- Lifecycle ---

    def start(self, name: str, work_dir: str, command: str) -> str:
        if not name:
            raise InvalidSessionError("session name cannot be empty")

        args = ["new-session", "-d", "-s", name]
        if work_dir:
            args += ["-c", work_dir]
        args.append(self._with_callback(command))
        self._run(*args)
        logger.info(f"Started remote session {name} via {self.ssh_cmd}")
        return name

    def stop(self, session_id: str) -> None:
        try:
            pid = self._run("list-panes", "-t", exact_pane(session_id), "-F", "#{pane_pid}")
        except TownmuxError:
            pid = ""
        if pid:
            kill_cmd = (
                f"for p in $(pgrep -P {pid} 2>/dev/null); do kill -TERM $p 2>/dev/null; done; "
                "sleep 0.1; "
                f"for p in $(pgrep -P {pid} 2>/dev/null); do kill -KILL $p 2>/dev/null; done"
            )
            try:
                self.run_remote(kill_cmd)
            except TownmuxError as e:
                logger.debug(f"Remote descendant kill for {session_id} failed (ignored): {e}")

        try:
            self._run("kill-session", "-t", exact_session(session_id))
        except TownmuxError as e:
            if not is_missing(e):
                raise

    def respawn(self, session_id: str, command: str) -> None:
        try:
            pane_id = self._run("list-panes", "-t", exact_pane(session_id), "-F", "#{pane_id}")
        except TownmuxError as e:
            if is_missing(e):
                raise NotRunningError(f"session not running: {session_id}") from e
            raise e.during("getting pane ID") from e

        try:
            self._run("clear-history", "-t", pane_id)
        except TownmuxError as e:
            logger.debug(f"clear-history for {session_id} failed (ignored): {e}")

        self._run("respawn-pane", "-k", "-t", pane_id, self._with_callback(command))

    def exists(self, session_id: str) -> bool:
        try:
            self._run("has-session", "-t", exact_session(session_id))
        except TownmuxError as e:
            if is_missing(e):
                return False
            raise
        return True

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
        return self._run("capture-pane", "-p", "-t", exact_pane(session_id), "-S", f"-{lines}")

    def capture_all(self, session_id: str) -> str:
        return self._run("capture-pane", "-p", "-t", exact_pane(session_id), "-S", "-")

    def is_running(self, session_id: str, *process_names: str) -> bool:
        if not process_names:
            return False
        try:
            current = self._run(
                "list-panes", "-t", exact_pane(session_id), "-F", "#{pane_current_command}"
            )
        except TownmuxError:
            return False
        return current in process_names

    def wait_for(self, session_id: str, timeout: float, *process_names: str) -> None:
        if not process_names:
            return
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if self.is_running(session_id, *process_names):
                return
            time.sleep(POLL_INTERVAL)
        raise ReadinessTimeoutError(f"timeout waiting for process {list(process_names)} on remote")

    # --- Management ---

    def list_sessions(self) -> list[str]:
        try:
            out = self._run("list-sessions", "-F", "#{session_name}")
        except NoServerError:
            return []
        return out.splitlines() if out else []

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
        return parse_info_line(out.splitlines()[0])

    def get_start_command(self, session_id: str) -> str:
        try:
            raw = self._run(
                "display-message", "-t", exact_pane(session_id), "-p", "#{pane_start_command}"
            )
        except TownmuxError as e:
            raise e.during("getting start command") from e
        return unquote_start_command(raw)

    def attach(self, session_id: str) -> None:
        # Inherit our stdio so the user gets an interactive remote tty
        target = shell_escape(exact_session(session_id))
        result = subprocess.run(
            ["sh", "-c", f"{self.ssh_cmd} -t tmux attach -t {target}"],
            stdin=sys.stdin,
            stdout=sys.stdout,
            stderr=sys.stderr,
        )
        if result.returncode != 0:
            raise TransportError(f"remote attach exited with status {result.returncode}")

    def switch_to(self, session_id: str) -> None:
        raise TransportError("switch_to not supported for remote sessions")


def parse_info_line(line: str) -> SessionInfo:
    """Parse one line produced by :data:`INFO_FORMAT`."""
    parts = line.split("|")
    if len(parts) < 4:
        raise TransportError(f"unexpected session info format: {line}")
    try:
        windows = int(parts[1])
    except ValueError:
        windows = 0
    return SessionInfo(
        name=parts[0],
        windows=windows,
        created=parts[2],
        attached=parts[3] == "1",
        activity=parts[4] if len(parts) > 4 else "",
        last_attached=parts[5] if len(parts) > 5 else "",
    )
