"""Assembles town-aware, role-configured agent managers.

Role managers (witness, refinery, polecat, crew, ...) live outside this
package. They get an :class:`AgentFactory` for their town and compose start
as: work dir -> start -> optional wait_ready.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

import yaml

from .agent.config import AgentConfig, SessionCallback, StartConfig, from_preset
from .agent.manager import AgentManager
from .errors import InvalidAddressError, TownmuxError
from .logging_manager import LoggingManager
from .models import AgentAddress, Role
from .session.base import Sessions
from .session.mirror import MirroredSessions
from .session.town import TownSessions
from .settings import Settings
from .tmux.local import LocalTmux
from .tmux.remote import RemoteTmux

logger = logging.getLogger(__name__)

DEFAULT_PRESET = "claude"


# --- Work directories and environment ---


def work_dir_for(town_root: str, address: str) -> str:
    """Working directory for an agent, following the town's directory layout.

    Rig-level agents check the filesystem to prefer the current layout over
    the legacy one.

    Raises:
        InvalidAddressError: If the role is unknown or lacks a rig or worker.
    """
    role, rig, worker = AgentAddress(address).parse()
    root = Path(town_root)

    if role == Role.MAYOR:
        return str(root / "mayor")
    if role == Role.DEACON:
        return str(root / "deacon")
    if role == Role.BOOT:
        return str(root / "deacon" / "dogs" / "boot")

    if not rig:
        raise InvalidAddressError(f"unknown role in address: {address}")
    rig_path = root / rig

    if role == Role.WITNESS:
        for candidate in (rig_path / "witness" / "rig", rig_path / "witness"):
            if candidate.exists():
                return str(candidate)
        return str(rig_path)

    if role == Role.REFINERY:
        refinery_rig = rig_path / "refinery" / "rig"
        if refinery_rig.exists():
            return str(refinery_rig)
        return str(rig_path / "mayor" / "rig")

    if role in (Role.POLECAT, Role.CREW) and not worker:
        raise InvalidAddressError(f"{role} requires rig and worker name: {address}")

    if role == Role.POLECAT:
        new_layout = rig_path / "polecats" / worker / rig
        if new_layout.is_dir():
            return str(new_layout)
        return str(rig_path / "polecats" / worker)

    if role == Role.CREW:
        return str(rig_path / "crew" / worker)

    raise InvalidAddressError(f"unknown role in address: {address}")


def agent_env(address: str, town_root: str) -> dict[str, str]:
    """GT_* variables that let an agent identify itself (see ``self_address``)."""
    role, rig, worker = AgentAddress(address).parse()
    env = {"GT_ROLE": role}
    if rig:
        env["GT_RIG"] = rig
    if worker:
        env["GT_CREW" if role == Role.CREW else "GT_POLECAT"] = worker
    if town_root:
        env["GT_ROOT"] = town_root
    return env


def parse_env_overrides(overrides: list[str] | None) -> dict[str, str]:
    """Turn ``["KEY=VALUE", ...]`` into a dict; entries without ``=`` are dropped."""
    result = {}
    for override in overrides or []:
        key, sep, value = override.partition("=")
        if sep:
            result[key] = value
    return result


def session_env_configurer(env: dict[str, str]) -> SessionCallback:
    """Post-create callback that records ``env`` in the session environment.

    Drivers without a session environment (e.g. a remote mirror) are skipped.
    """

    def configure(sessions: Sessions, session_id: str) -> None:
        target, name = sessions, session_id
        if isinstance(sessions, TownSessions):
            name = sessions.resolve(session_id) or session_id
            target = sessions.sessions
        setter = getattr(target, "set_env_vars", None)
        if setter is None:
            return
        setter(name, env)

    return configure


# --- Driver routing ---


@dataclass
class RemoteConfig:
    """How to reach a rig whose polecats run on another host."""

    ssh_cmd: str
    local_ssh: str | None = None


def load_remote_configs(path: str | Path) -> dict[str, RemoteConfig]:
    """Load per-rig remote settings from YAML.

    Expected shape::

        rigs:
          myrig:
            ssh_cmd: "ssh user@devbox"
            local_ssh: "ssh user@laptop"   # optional

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If YAML parsing fails or an entry has no ssh_cmd
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Remote configuration file not found: {path}")

    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ValueError(f"Failed to parse remote configuration YAML: {e}") from e

    remotes = {}
    for rig, entry in (data.get("rigs") or {}).items():
        if not isinstance(entry, dict) or not entry.get("ssh_cmd"):
            raise ValueError(f"Remote configuration for rig '{rig}' needs an ssh_cmd")
        remotes[rig] = RemoteConfig(ssh_cmd=entry["ssh_cmd"], local_ssh=entry.get("local_ssh"))

    logger.debug(f"Loaded {len(remotes)} remote rig configs from {path}")
    return remotes


class SessionFactory:
    """Chooses the raw session driver for an agent.

    Polecats of rigs with a remote config run on the remote host behind a
    local mirror; everything else uses the local driver.
    """

    def __init__(
        self,
        town_root: str,
        remotes: dict[str, RemoteConfig] | None = None,
        local: Sessions | None = None,
        settings: Settings | None = None,
    ):
        self.town_root = town_root
        self.remotes = dict(remotes or {})
        self.settings = settings or Settings()
        self._local = local
        self._remote_drivers: dict[str, Sessions] = {}

    @property
    def local(self) -> Sessions:
        if self._local is None:
            self._local = LocalTmux(nudge_timing=self.settings.nudge_timing())
        return self._local

    def sessions_for(self, address: str) -> Sessions:
        try:
            role, rig, _ = AgentAddress(address).parse()
        except InvalidAddressError:
            return self.local

        remote = self.remotes.get(rig) if role == Role.POLECAT else None
        if remote is None:
            return self.local

        if rig not in self._remote_drivers:
            driver = RemoteTmux(
                remote.ssh_cmd,
                local_ssh=remote.local_ssh,
                nudge_timing=self.settings.nudge_timing(),
            )
            self._remote_drivers[rig] = MirroredSessions(driver, self.local, remote.ssh_cmd)
        return self._remote_drivers[rig]


# --- Agent managers ---


class AgentFactory:
    """Builds town-aware agent managers configured per role.

    Args:
        town_root: Town root path; empty means legacy single-town mode.
        sessions: Raw driver for every agent (tests pass a SessionsDouble).
            Without it agents are routed through a :class:`SessionFactory`.
        settings: Runtime settings; read from the environment if omitted.
        logging_manager: Receives lifecycle audit events.
        session_factory: Routing for drivers when ``sessions`` is not given.
    """

    def __init__(
        self,
        town_root: str,
        sessions: Sessions | None = None,
        settings: Settings | None = None,
        logging_manager: LoggingManager | None = None,
        session_factory: SessionFactory | None = None,
    ):
        self.town_root = town_root
        self.settings = settings or Settings.from_env()
        self.logging_manager = logging_manager
        self._sessions = sessions
        self.session_factory = session_factory or SessionFactory(town_root, settings=self.settings)

    def _driver_for(self, address: str | None) -> Sessions:
        if self._sessions is not None:
            return self._sessions
        if address is None:
            return self.session_factory.local
        return self.session_factory.sessions_for(address)

    def _town(self, driver: Sessions) -> TownSessions:
        return TownSessions(driver, self.town_root, legacy_fallback=self.settings.legacy_fallback)

    def _config(self, preset: str) -> AgentConfig:
        config = from_preset(preset)
        if self.settings.ready_timeout is not None:
            config.timeout = self.settings.ready_timeout
        return config

    def agents(self, preset: str = DEFAULT_PRESET) -> AgentManager:
        """Manager for any agent in the town, without role-specific env vars."""
        return AgentManager(
            self._town(self._driver_for(None)),
            self._config(preset),
            logging_manager=self.logging_manager,
        )

    def agents_for(
        self,
        address: str,
        preset: str = DEFAULT_PRESET,
        env_overrides: dict[str, str] | None = None,
    ) -> AgentManager:
        """Manager configured for one agent: its driver and its GT_* env vars."""
        env = {**agent_env(address, self.town_root), **(env_overrides or {})}
        return AgentManager(
            self._town(self._driver_for(address)),
            self._config(preset).with_env_vars(env),
            logging_manager=self.logging_manager,
        )

    def start(
        self,
        address: str,
        command: str,
        preset: str = DEFAULT_PRESET,
        kill_existing: bool = False,
        wait: bool = False,
        env_overrides: dict[str, str] | None = None,
    ) -> AgentManager:
        """Start an agent with production setup and return its manager.

        Raises:
            AlreadyRunningError: If the agent is live and ``kill_existing`` is off.
            ReadinessTimeoutError: If ``wait`` is set and the agent never became ready.
        """
        work_dir = work_dir_for(self.town_root, address)
        agents = self.agents_for(address, preset, env_overrides)

        if kill_existing:
            try:
                agents.stop(address, graceful=True)
            except TownmuxError as e:
                logger.warning(f"Failed to stop existing {address}: {e}")

        if not os.path.isdir(work_dir):
            logger.warning(f"Work directory for {address} does not exist: {work_dir}")

        agents.start_with_config(
            address,
            StartConfig(
                work_dir=work_dir,
                command=command,
                on_created=session_env_configurer(agents.config.env_vars),
            ),
        )
        if wait:
            agents.wait_ready(address)
        return agents
