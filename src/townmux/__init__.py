"""townmux - tmux-backed lifecycle core for multi-agent towns."""

__version__ = "0.1.0"

from .agent import (
    AgentConfig,
    AgentManager,
    Agents,
    AgentsDouble,
    PromptChecker,
    StartConfig,
    claude_config,
    from_preset,
)
from .errors import (
    AlreadyRunningError,
    DuplicateSessionError,
    InvalidAddressError,
    InvalidSessionError,
    NoServerError,
    NotInClientError,
    NotRunningError,
    ReadinessTimeoutError,
    SessionNotFoundError,
    TownmuxError,
    TransportError,
    UnknownRoleError,
)
from .factory import AgentFactory, RemoteConfig, SessionFactory, agent_env, work_dir_for
from .logging_manager import LoggingManager, setup_logging
from .models import (
    AgentAddress,
    Role,
    SessionInfo,
    boot_address,
    crew_address,
    deacon_address,
    mayor_address,
    polecat_address,
    refinery_address,
    self_address,
    witness_address,
)
from .session import MirroredSessions, NudgeTiming, Sessions, SessionsDouble, TownSessions
from .settings import Settings
from .tmux import LocalTmux, RemoteTmux

__all__ = [
    "AgentAddress",
    "AgentConfig",
    "AgentFactory",
    "AgentManager",
    "Agents",
    "AgentsDouble",
    "AlreadyRunningError",
    "DuplicateSessionError",
    "InvalidAddressError",
    "InvalidSessionError",
    "LocalTmux",
    "LoggingManager",
    "MirroredSessions",
    "NoServerError",
    "NotInClientError",
    "NotRunningError",
    "NudgeTiming",
    "PromptChecker",
    "ReadinessTimeoutError",
    "RemoteConfig",
    "RemoteTmux",
    "Role",
    "SessionFactory",
    "SessionInfo",
    "SessionNotFoundError",
    "Sessions",
    "SessionsDouble",
    "Settings",
    "StartConfig",
    "TownSessions",
    "TownmuxError",
    "TransportError",
    "UnknownRoleError",
    "agent_env",
    "boot_address",
    "claude_config",
    "crew_address",
    "deacon_address",
    "from_preset",
    "mayor_address",
    "polecat_address",
    "refinery_address",
    "self_address",
    "setup_logging",
    "witness_address",
    "work_dir_for",
]
