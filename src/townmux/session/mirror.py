"""Remote session with a local mirror for attach UX."""

import logging

from ..errors import TownmuxError
from ..models import SessionInfo
from .base import Sessions

logger = logging.getLogger(__name__)

MIRROR_SUFFIX = "-mirror"


def mirror_name(name: str) -> str:
    return name + MIRROR_SUFFIX


class MirroredSessions(Sessions):
    """Routes a session to a remote driver and mirrors it locally.

    The remote is the source of truth. ``start`` also creates a local session
    that ssh-attaches to the remote one, so ``attach`` has no ssh latency.
    Everything except start/stop/attach/switch_to goes to the remote.
    """

    def __init__(self, remote: Sessions, local: Sessions, ssh_cmd: str):
        self.remote = remote
        self.local = local
        self.ssh_cmd = ssh_cmd

    def _mirror_exists(self, name: str) -> bool:
        try:
            return self.local.exists(mirror_name(name))
        except TownmuxError as e:
            logger.debug(f"Mirror lookup for {name} failed: {e}")
            return False

    def start(self, name: str, work_dir: str, command: str) -> str:
        session_id = self.remote.start(name, work_dir, command)

        mirror_cmd = f"{self.ssh_cmd} -t tmux attach-session -t ={name}"
        try:
            self.local.start(mirror_name(name), "", mirror_cmd)
        except TownmuxError as e:
            # Remote session still works; the user can attach over ssh directly
            logger.warning(f"Failed to create local mirror for {name}: {e}")

        return session_id

    def stop(self, session_id: str) -> None:
        try:
            self.local.stop(mirror_name(session_id))
        except TownmuxError as e:
            logger.debug(f"Stopping mirror for {session_id} failed (ignored): {e}")
        self.remote.stop(session_id)

    def respawn(self, session_id: str, command: str) -> None:
        self.remote.respawn(session_id, command)

    def exists(self, session_id: str) -> bool:
        return self.remote.exists(session_id)

    def send(self, session_id: str, text: str) -> None:
        self.remote.send(session_id, text)

    def send_control(self, session_id: str, key: str) -> None:
        self.remote.send_control(session_id, key)

    def nudge(self, session_id: str, message: str) -> None:
        self.remote.nudge(session_id, message)

    def capture(self, session_id: str, lines: int) -> str:
        return self.remote.capture(session_id, lines)

    def capture_all(self, session_id: str) -> str:
        return self.remote.capture_all(session_id)

    def is_running(self, session_id: str, *process_names: str) -> bool:
        return self.remote.is_running(session_id, *process_names)

    def wait_for(self, session_id: str, timeout: float, *process_names: str) -> None:
        self.remote.wait_for(session_id, timeout, *process_names)

    def list_sessions(self) -> list[str]:
        return self.remote.list_sessions()

    def get_info(self, session_id: str) -> SessionInfo:
        return self.remote.get_info(session_id)

    def get_start_command(self, session_id: str) -> str:
        return self.remote.get_start_command(session_id)

    def attach(self, session_id: str) -> None:
        if self._mirror_exists(session_id):
            self.local.attach(mirror_name(session_id))
            return
        self.remote.attach(session_id)

    def switch_to(self, session_id: str) -> None:
        if self._mirror_exists(session_id):
            self.local.switch_to(mirror_name(session_id))
            return
        self.remote.switch_to(session_id)
