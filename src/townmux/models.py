"""Core data models: agent addresses, roles and session info."""

import os
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum

from .errors import InvalidAddressError, UnknownRoleError


class Role(str, Enum):
    """Agent roles known to a town."""

    MAYOR = "mayor"
    DEACON = "deacon"
    BOOT = "boot"
    WITNESS = "witness"
    REFINERY = "refinery"
    POLECAT = "polecat"
    CREW = "crew"


TOWN_ROLES = frozenset({Role.MAYOR, Role.DEACON, Role.BOOT})
RIG_ROLES = frozenset({Role.WITNESS, Role.REFINERY})
NAMED_ROLES = frozenset({Role.POLECAT, Role.CREW})


class AgentAddress(str):
    """Logical, hierarchical address of an agent.

    Canonical forms:
        "role"              town-level ("mayor", "deacon", "boot")
        "rig/role"          rig-level singleton ("myrig/witness")
        "rig/role/worker"   named worker ("myrig/polecat/toast")
    """

    __slots__ = ()

    def parse(self) -> tuple[str, str, str]:
        """Split into (role, rig, worker); missing components are empty strings.

        Raises:
            InvalidAddressError: If the address has more than three segments
                or an empty segment.
        """
        parts = self.split("/")
        if len(parts) > 3 or any(not p for p in parts):
            raise InvalidAddressError(f"invalid agent address: {str(self)!r}")
        if len(parts) == 1:
            return parts[0], "", ""
        if len(parts) == 2:
            return parts[1], parts[0], ""
        return parts[1], parts[0], parts[2]

    @property
    def role(self) -> str:
        return self.parse()[0]

    @property
    def rig(self) -> str:
        return self.parse()[1]

    @property
    def worker(self) -> str:
        return self.parse()[2]

    @property
    def tier(self) -> int:
        """Number of segments: 1 town, 2 rig, 3 named."""
        self.parse()
        return self.count("/") + 1

    def __repr__(self) -> str:
        return f"AgentAddress({str(self)!r})"


def _require(value: str, what: str) -> str:
    if not value or "/" in value:
        raise InvalidAddressError(f"invalid {what}: {value!r}")
    return value


def mayor_address() -> AgentAddress:
    return AgentAddress(Role.MAYOR.value)


def deacon_address() -> AgentAddress:
    return AgentAddress(Role.DEACON.value)


def boot_address() -> AgentAddress:
    return AgentAddress(Role.BOOT.value)


def witness_address(rig: str) -> AgentAddress:
    return AgentAddress(f"{_require(rig, 'rig')}/{Role.WITNESS.value}")


def refinery_address(rig: str) -> AgentAddress:
    return AgentAddress(f"{_require(rig, 'rig')}/{Role.REFINERY.value}")


def polecat_address(rig: str, name: str) -> AgentAddress:
    return AgentAddress(f"{_require(rig, 'rig')}/{Role.POLECAT.value}/{_require(name, 'name')}")


def crew_address(rig: str, name: str) -> AgentAddress:
    return AgentAddress(f"{_require(rig, 'rig')}/{Role.CREW.value}/{_require(name, 'name')}")


def self_address(environ: Mapping[str, str] | None = None) -> AgentAddress:
    """Return the address of the current process from GT_* environment variables.

    Lets a spawned agent identify itself without querying tmux.

    Required variables by role:
        mayor, deacon, boot: GT_ROLE
        witness, refinery:   GT_ROLE, GT_RIG
        crew:                GT_ROLE, GT_RIG, GT_CREW
        polecat:             GT_ROLE, GT_RIG, GT_POLECAT

    Raises:
        UnknownRoleError: If the role is missing, unknown, or lacks a required variable.
    """
    env = os.environ if environ is None else environ
    role = env.get("GT_ROLE", "")
    rig = env.get("GT_RIG", "")

    if not role:
        raise UnknownRoleError()
    try:
        parsed = Role(role)
    except ValueError:
        raise UnknownRoleError(f"unknown or missing GT_ROLE: {role}") from None

    if parsed in TOWN_ROLES:
        return AgentAddress(parsed.value)
    if parsed in RIG_ROLES:
        if not rig:
            raise UnknownRoleError(f"unknown or missing GT_ROLE: {role} requires GT_RIG")
        return AgentAddress(f"{rig}/{parsed.value}")

    name_var = "GT_CREW" if parsed is Role.CREW else "GT_POLECAT"
    name = env.get(name_var, "")
    if not rig or not name:
        raise UnknownRoleError(
            f"unknown or missing GT_ROLE: {role} requires GT_RIG and {name_var}"
        )
    return AgentAddress(f"{rig}/{parsed.value}/{name}")


@dataclass
class SessionInfo:
    """Information about a multiplexer session.

    Attributes:
        name: Session name as known to the driver.
        created: Free-form creation timestamp.
        attached: Whether a client is attached.
        windows: Number of windows (at least 1).
        activity: Last activity, multiplexer-defined.
        last_attached: Last attach time, multiplexer-defined.
    """

    name: str
    created: str = ""
    attached: bool = False
    windows: int = 1
    activity: str = ""
    last_attached: str = ""
