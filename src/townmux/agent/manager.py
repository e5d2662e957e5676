"""Agent lifecycle on top of a session driver.

The manager turns a session-id based driver (usually a TownSessions wrapper)
into address-based operations with zombie detection, env-var injection,
post-create callbacks and a background readiness probe.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod

from ..errors import (
    AlreadyRunningError,
    NotRunningError,
    ReadinessTimeoutError,
    TownmuxError,
)
from ..logging_manager import LoggingManager
from ..models import SessionInfo
from ..session.base import Sessions
from .config import AgentConfig, StartConfig, claude_config, prepend_env_vars

logger = logging.getLogger(__name__)

CAPTURE_LINES = 50
POLL_INTERVAL = 0.1
GRACEFUL_STOP_DRAIN = 0.1


class Agents(ABC):
    """Address-based agent lifecycle operations."""

    @abstractmethod
    def start(self, address: str, work_dir: str, command: str) -> None:
        """Launch an agent in a new session.

        Raises:
            AlreadyRunningError: If the agent's session has a live process.
        """

    @abstractmethod
    def start_with_config(self, address: str, cfg: StartConfig) -> None:
        """Like :meth:`start`, with per-start env vars and callback."""

    @abstractmethod
    def stop(self, address: str, graceful: bool = False) -> None:
        """Terminate the agent. Missing agents are not an error."""

    @abstractmethod
    def respawn(self, address: str) -> None:
        """Replace the agent's process in place, reusing its start command."""

    @abstractmethod
    def exists(self, address: str) -> bool:
        """True if the session exists and (when hints are set) its process is alive."""

    @abstractmethod
    def wait_ready(self, address: str) -> None:
        """Block until the agent accepts input.

        Raises:
            NotRunningError: If the session does not exist.
            ReadinessTimeoutError: If readiness was not reached in time.
        """

    @abstractmethod
    def get_info(self, address: str) -> SessionInfo: ...

    @abstractmethod
    def nudge(self, address: str, message: str) -> None: ...

    @abstractmethod
    def capture(self, address: str, lines: int) -> str: ...

    @abstractmethod
    def capture_all(self, address: str) -> str: ...

    @abstractmethod
    def list_agents(self) -> list[str]:
        """Return the addresses of live agents."""

    def list(self) -> list[str]:
        return self.list_agents()

    @abstractmethod
    def attach(self, address: str) -> None: ...


class ReadinessProbe:
    """Outcome of one readiness wait, shared between the probe thread and waiters."""

    def __init__(self, address: str):
        self.address = address
        self.done = threading.Event()
        self.error: BaseException | None = None
        self.thread: threading.Thread | None = None

    def wait(self, timeout: float) -> None:
        if not self.done.wait(timeout):
            raise ReadinessTimeoutError(f"timeout waiting for agent ready: {self.address}")
        if self.error is not None:
            raise self.error


class AgentManager(Agents):
    """Agents implementation backed by a :class:`Sessions` driver.

    Args:
        sessions: Driver that maps addresses to sessions.
        config: Agent behaviour; defaults to the Claude preset.
        logging_manager: Receives audit events for lifecycle changes.
        poll_interval: Seconds between readiness polls.
    """

    def __init__(
        self,
        sessions: Sessions,
        config: AgentConfig | None = None,
        logging_manager: LoggingManager | None = None,
        poll_interval: float = POLL_INTERVAL,
    ):
        self.sessions = sessions
        self.config = config if config is not None else claude_config()
        self.logging_manager = logging_manager
        self.poll_interval = poll_interval
        self._probes: dict[str, ReadinessProbe] = {}
        self._lock = threading.Lock()

    def _audit(self, event_type: str, address: str, **details) -> None:
        if self.logging_manager:
            self.logging_manager.log_audit_event(event_type, address, details)

    # --- Start ---

    def start(self, address: str, work_dir: str, command: str) -> None:
        self.start_with_config(address, StartConfig(work_dir=work_dir, command=command))

    def start_with_config(self, address: str, cfg: StartConfig) -> None:
        names = self.config.process_names

        try:
            existing = self.sessions.exists(address)
        except TownmuxError as e:
            raise e.during("checking session") from e

        if existing:
            if self.sessions.is_running(address, *names):
                raise AlreadyRunningError(f"agent already running: {address}")
            logger.info(f"Zombie session detected for {address}, killing it")
            try:
                self.sessions.stop(address)
            except TownmuxError as e:
                raise e.during("killing zombie session") from e
            self._audit("zombie_cleaned", address)

        env_vars = {**self.config.env_vars, **cfg.env_vars}
        command = prepend_env_vars(env_vars, cfg.command)

        try:
            self.sessions.start(address, cfg.work_dir, command)
        except TownmuxError as e:
            logger.error(f"Failed to start session for {address}: {e}")
            raise e.during("starting session") from e

        for callback in (self.config.on_session_created, cfg.on_created):
            if callback is None:
                continue
            try:
                callback(self.sessions, address)
            except Exception as e:
                logger.error(f"Session setup for {address} failed: {e}")
                self._stop_quietly(address)
                if isinstance(e, TownmuxError):
                    raise e.during("session setup") from e
                raise TownmuxError(str(e), op="session setup") from e

        self._audit("agent_started", address, work_dir=cfg.work_dir)
        logger.info(f"Started agent {address}")
        self._spawn_probe(address)

    def _stop_quietly(self, address: str) -> None:
        try:
            self.sessions.stop(address)
        except TownmuxError as e:
            logger.debug(f"Cleanup stop for {address} failed (ignored): {e}")

    # --- Readiness ---

    def _spawn_probe(self, address: str) -> ReadinessProbe:
        probe = ReadinessProbe(address)
        probe.thread = threading.Thread(
            target=self._run_probe,
            args=(probe,),
            name=f"townmux-ready-{address}",
            daemon=True,
        )
        with self._lock:
            self._probes[address] = probe
        probe.thread.start()
        return probe

    def _run_probe(self, probe: ReadinessProbe) -> None:
        try:
            self._await_ready(probe.address)
            self._audit("agent_ready", probe.address)
        except ReadinessTimeoutError as e:
            probe.error = e
            logger.warning(f"Agent {probe.address} did not become ready: {e}")
            self._audit("agent_ready_timeout", probe.address)
        except Exception as e:
            probe.error = e
            logger.error(f"Readiness probe for {probe.address} failed: {e}")
        finally:
            probe.done.set()

    def _await_ready(self, address: str) -> None:
        if self.config.startup_hook is not None:
            try:
                self.config.startup_hook(self.sessions, address)
            except Exception as e:
                logger.warning(f"Startup hook for {address} failed (ignored): {e}")

        checker = self.config.checker
        if checker is None:
            if self.config.startup_delay > 0:
                time.sleep(self.config.startup_delay)
            return

        deadline = time.monotonic() + self.config.effective_timeout
        while time.monotonic() < deadline:
            try:
                output = self.sessions.capture(address, CAPTURE_LINES)
            except TownmuxError as e:
                logger.debug(f"Capture for {address} failed while waiting: {e}")
            else:
                if checker.is_ready(output):
                    return
            time.sleep(self.poll_interval)
        self._snapshot_pane(address)
        raise ReadinessTimeoutError(f"timeout waiting for agent ready: {address}")

    def _snapshot_pane(self, address: str) -> None:
        """Keep what the pane showed when readiness gave up, for later debugging."""
        if not self.logging_manager:
            return
        try:
            output = self.sessions.capture(address, CAPTURE_LINES)
        except TownmuxError as e:
            logger.debug(f"Could not capture {address} after readiness timeout: {e}")
            return
        self.logging_manager.log_pane_output(address, output)

    def wait_ready(self, address: str) -> None:
        if not self.sessions.exists(address):
            raise NotRunningError(f"agent not running: {address}")

        with self._lock:
            probe = self._probes.get(address)
            # A failed probe is stale; poll again rather than replay its error
            if probe is not None and probe.done.is_set() and probe.error is not None:
                del self._probes[address]
                probe = None
        if probe is None:
            self._await_ready(address)
            return

        # The hook may run before polling starts, so allow for it
        budget = self.config.startup_delay + self.config.effective_timeout + 1.0
        probe.wait(budget)

    # --- Stop / respawn ---

    def stop(self, address: str, graceful: bool = False) -> None:
        if not self.sessions.exists(address):
            return

        if graceful:
            try:
                self.sessions.send_control(address, "C-c")
            except TownmuxError as e:
                logger.debug(f"Interrupt before stopping {address} failed: {e}")
            time.sleep(GRACEFUL_STOP_DRAIN)

        try:
            self.sessions.stop(address)
        except TownmuxError as e:
            logger.error(f"Failed to stop {address}: {e}")
            raise e.during("stopping session") from e

        with self._lock:
            self._probes.pop(address, None)
        self._audit("agent_stopped", address, graceful=graceful)
        logger.info(f"Stopped agent {address}")

    def respawn(self, address: str) -> None:
        """Respawn the agent with its original start command.

        Respawning the agent that is running this code terminates it inside
        the driver call, so nothing after it runs. For any other agent a
        fresh readiness probe is spawned.
        """
        if not self.sessions.exists(address):
            raise NotRunningError(f"agent not running: {address}")

        try:
            command = self.sessions.get_start_command(address)
        except TownmuxError as e:
            raise e.during("getting start command") from e

        try:
            self.sessions.respawn(address, command)
        except TownmuxError as e:
            raise e.during("respawning session") from e

        self._audit("agent_respawned", address)
        self._spawn_probe(address)

    # --- Queries and passthroughs ---

    def exists(self, address: str) -> bool:
        if not self.sessions.exists(address):
            return False
        names = self.config.process_names
        if not names:
            return True
        return self.sessions.is_running(address, *names)

    def get_info(self, address: str) -> SessionInfo:
        return self.sessions.get_info(address)

    def nudge(self, address: str, message: str) -> None:
        self.sessions.nudge(address, message)

    def capture(self, address: str, lines: int) -> str:
        return self.sessions.capture(address, lines)

    def capture_all(self, address: str) -> str:
        return self.sessions.capture_all(address)

    def get_logs(self, address: str, log_type: str = "agent", tail: int = 100) -> list[str]:
        """Return recent lines of an agent's log.

        Args:
            address: Agent address
            log_type: ``agent`` for lifecycle events, ``pane_output`` for pane snapshots
            tail: Number of recent lines to return (0 for all)
        """
        if not self.logging_manager:
            logger.warning("Logging manager not configured")
            return []
        return self.logging_manager.get_agent_logs(address, log_type, tail)

    def list_agents(self) -> list[str]:
        names = self.config.process_names
        ids = self.sessions.list_sessions()
        if not names:
            return ids
        return [sid for sid in ids if self.sessions.is_running(sid, *names)]

    def attach(self, address: str) -> None:
        # Inside a client this is a switch; otherwise a blocking attach
        try:
            self.sessions.switch_to(address)
            return
        except TownmuxError as e:
            logger.debug(f"switch_to {address} failed, attaching instead: {e}")
        self.sessions.attach(address)
