"""Town-aware wrapper: logical agent addresses over a raw session driver."""

import dataclasses
import logging

from ..errors import InvalidSessionError, NotRunningError, SessionNotFoundError, TownmuxError
from ..models import SessionInfo
from .base import Sessions
from .mirror import MIRROR_SUFFIX
from .names import (
    extract_town_id,
    owned_address,
    parse_session_name,
    session_name_for,
    town_id,
    town_suffix,
)

logger = logging.getLogger(__name__)


class TownSessions(Sessions):
    """Sessions keyed by logical address ("mayor", "myrig/witness", ...).

    ``start`` creates the town-suffixed session name. Every other operation
    looks the session up optimistically: the suffixed name first, then the
    legacy unsuffixed name (unless ``legacy_fallback`` is off). An empty
    town root is legacy single-town mode: no suffix and no filtering.
    """

    def __init__(self, sessions: Sessions, town_root: str, legacy_fallback: bool = True):
        self._sessions = sessions
        self._town_root = town_root
        self._town_id = town_id(town_root)
        self._suffix = town_suffix(town_root)
        self._legacy_fallback = legacy_fallback

    @property
    def town_root(self) -> str:
        return self._town_root

    @property
    def town_id(self) -> str:
        return self._town_id

    @property
    def sessions(self) -> Sessions:
        """The wrapped driver."""
        return self._sessions

    # --- Resolution ---

    def _candidates(self, address: str) -> list[str]:
        base = session_name_for(address)
        # Names outside the grammar that already carry a town id are used as-is
        if base == address and extract_town_id(address):
            return [address]
        if not self._suffix:
            return [base]
        if self._legacy_fallback:
            return [base + self._suffix, base]
        return [base + self._suffix]

    def resolve(self, address: str) -> str | None:
        """Return the driver session name for ``address``, or None if absent."""
        if not address:
            return None
        for candidate in self._candidates(address):
            if self._sessions.exists(candidate):
                return candidate
        return None

    def _require(self, address: str) -> str:
        name = self.resolve(address)
        if name is None:
            raise SessionNotFoundError(f"session not found: {address}")
        return name

    # --- Lifecycle ---

    def start(self, name: str, work_dir: str, command: str) -> str:
        if not name:
            raise InvalidSessionError("session name cannot be empty")
        unique = self._candidates(name)[0]
        logger.debug(f"Starting {name} as tmux session {unique}")
        self._sessions.start(unique, work_dir, command)
        return name

    def stop(self, session_id: str) -> None:
        name = self.resolve(session_id)
        if name is None:
            return
        self._sessions.stop(name)

    def respawn(self, session_id: str, command: str) -> None:
        name = self.resolve(session_id)
        if name is None:
            raise NotRunningError(f"session not running: {session_id}")
        self._sessions.respawn(name, command)

    def exists(self, session_id: str) -> bool:
        return self.resolve(session_id) is not None

    # --- Communication ---

    def send(self, session_id: str, text: str) -> None:
        self._sessions.send(self._require(session_id), text)

    def send_control(self, session_id: str, key: str) -> None:
        self._sessions.send_control(self._require(session_id), key)

    def nudge(self, session_id: str, message: str) -> None:
        self._sessions.nudge(self._require(session_id), message)

    # --- Observation ---

    def capture(self, session_id: str, lines: int) -> str:
        return self._sessions.capture(self._require(session_id), lines)

    def capture_all(self, session_id: str) -> str:
        return self._sessions.capture_all(self._require(session_id))

    def is_running(self, session_id: str, *process_names: str) -> bool:
        try:
            name = self.resolve(session_id)
        except TownmuxError as e:
            logger.debug(f"Could not resolve {session_id}: {e}")
            return False
        if name is None:
            return False
        return self._sessions.is_running(name, *process_names)

    def wait_for(self, session_id: str, timeout: float, *process_names: str) -> None:
        self._sessions.wait_for(self._require(session_id), timeout, *process_names)

    # --- Management ---

    def list_sessions(self) -> list[str]:
        """Return the logical addresses of this town's sessions.

        Sessions owned by other towns are hidden. Legacy unsuffixed sessions
        belong to every town. In town mode names outside the grammar are
        skipped; in legacy mode they are returned raw.
        """
        result: list[str] = []
        seen: set[str] = set()
        for raw in self._sessions.list_sessions():
            entry = self._translate(raw)
            if entry is None or entry in seen:
                continue
            seen.add(entry)
            result.append(entry)
        return result

    def _translate(self, raw: str) -> str | None:
        # Local mirrors of remote sessions are an attach detail, not agents
        if raw.endswith(MIRROR_SUFFIX):
            return None
        if self._town_root:
            return owned_address(raw, self._town_root)
        if extract_town_id(raw):
            return raw
        try:
            return parse_session_name(raw).address
        except InvalidSessionError:
            return raw

    def list_all(self) -> list[str]:
        """Return every raw session name on the driver, across all towns."""
        return self._sessions.list_sessions()

    def get_info(self, session_id: str) -> SessionInfo:
        info = self._sessions.get_info(self._require(session_id))
        return dataclasses.replace(info, name=session_id)

    def get_start_command(self, session_id: str) -> str:
        return self._sessions.get_start_command(self._require(session_id))

    def attach(self, session_id: str) -> None:
        self._sessions.attach(self._require(session_id))

    def switch_to(self, session_id: str) -> None:
        self._sessions.switch_to(self._require(session_id))
