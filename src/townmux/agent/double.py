"""In-memory test doubles for the Agents contract.

``AgentsDouble`` is a drop-in replacement for testing role-manager logic;
``AgentsStub`` wraps any Agents and injects errors for the failure paths a
pure double cannot reach.
"""

import threading
from dataclasses import dataclass, field

from ..errors import AlreadyRunningError, NotRunningError
from ..models import SessionInfo
from .config import StartConfig, prepend_env_vars
from .manager import Agents


@dataclass
class _DoubleAgent:
    name: str
    work_dir: str = ""
    command: str = ""
    nudge_log: list[str] = field(default_factory=list)
    buffer: list[str] = field(default_factory=list)


class AgentsDouble(Agents):
    """Agents kept in a dict. Every started agent is immediately ready."""

    def __init__(self):
        self._lock = threading.RLock()
        self._agents: dict[str, _DoubleAgent] = {}

    def _get(self, address: str) -> _DoubleAgent:
        agent = self._agents.get(address)
        if agent is None:
            raise NotRunningError(f"agent not running: {address}")
        return agent

    def start(self, address: str, work_dir: str, command: str) -> None:
        self.start_with_config(address, StartConfig(work_dir=work_dir, command=command))

    def start_with_config(self, address: str, cfg: StartConfig) -> None:
        with self._lock:
            if address in self._agents:
                raise AlreadyRunningError(f"agent already running: {address}")
            self._agents[address] = _DoubleAgent(
                name=address,
                work_dir=cfg.work_dir,
                command=prepend_env_vars(cfg.env_vars, cfg.command),
            )

    def stop(self, address: str, graceful: bool = False) -> None:
        with self._lock:
            self._agents.pop(address, None)

    def respawn(self, address: str) -> None:
        with self._lock:
            self._get(address).buffer = []

    def exists(self, address: str) -> bool:
        with self._lock:
            return address in self._agents

    def wait_ready(self, address: str) -> None:
        with self._lock:
            self._get(address)

    def get_info(self, address: str) -> SessionInfo:
        with self._lock:
            agent = self._get(address)
            return SessionInfo(name=agent.name, created="2024-01-01T00:00:00Z", windows=1)

    def nudge(self, address: str, message: str) -> None:
        with self._lock:
            agent = self._get(address)
            agent.nudge_log.append(message)
            agent.buffer.append(message)

    def capture(self, address: str, lines: int) -> str:
        with self._lock:
            buffer = self._get(address).buffer
            return "\n".join(buffer[-lines:]) if lines > 0 else ""

    def capture_all(self, address: str) -> str:
        with self._lock:
            return "\n".join(self._get(address).buffer)

    def list_agents(self) -> list[str]:
        with self._lock:
            return sorted(self._agents)

    def attach(self, address: str) -> None:
        with self._lock:
            self._get(address)

    # --- Test helpers ---

    def clear(self) -> None:
        with self._lock:
            self._agents = {}

    def agent_count(self) -> int:
        with self._lock:
            return len(self._agents)

    def create_agent(self, address: str) -> None:
        """Add an agent without going through start."""
        with self._lock:
            self._agents[address] = _DoubleAgent(name=address)

    def get_work_dir(self, address: str) -> str:
        with self._lock:
            agent = self._agents.get(address)
            return agent.work_dir if agent else ""

    def get_command(self, address: str) -> str:
        with self._lock:
            agent = self._agents.get(address)
            return agent.command if agent else ""

    def nudge_log(self, address: str) -> list[str]:
        with self._lock:
            agent = self._agents.get(address)
            return list(agent.nudge_log) if agent else []


class AgentsStub(Agents):
    """Delegates to ``wrapped`` unless an error is injected for the operation."""

    def __init__(self, wrapped: Agents):
        self.wrapped = wrapped
        self.start_error: Exception | None = None
        self.stop_error: Exception | None = None
        self.wait_ready_error: Exception | None = None
        self.get_info_error: Exception | None = None

    def start(self, address: str, work_dir: str, command: str) -> None:
        if self.start_error is not None:
            raise self.start_error
        self.wrapped.start(address, work_dir, command)

    def start_with_config(self, address: str, cfg: StartConfig) -> None:
        if self.start_error is not None:
            raise self.start_error
        self.wrapped.start_with_config(address, cfg)

    def stop(self, address: str, graceful: bool = False) -> None:
        if self.stop_error is not None:
            raise self.stop_error
        self.wrapped.stop(address, graceful)

    def respawn(self, address: str) -> None:
        self.wrapped.respawn(address)

    def exists(self, address: str) -> bool:
        return self.wrapped.exists(address)

    def wait_ready(self, address: str) -> None:
        if self.wait_ready_error is not None:
            raise self.wait_ready_error
        self.wrapped.wait_ready(address)

    def get_info(self, address: str) -> SessionInfo:
        if self.get_info_error is not None:
            raise self.get_info_error
        return self.wrapped.get_info(address)

    def nudge(self, address: str, message: str) -> None:
        self.wrapped.nudge(address, message)

    def capture(self, address: str, lines: int) -> str:
        return self.wrapped.capture(address, lines)

    def capture_all(self, address: str) -> str:
        return self.wrapped.capture_all(address)

    def list_agents(self) -> list[str]:
        return self.wrapped.list_agents()

    def attach(self, address: str) -> None:
        self.wrapped.attach(address)
