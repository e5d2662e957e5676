"""Session naming: logical agent addresses <-> unique tmux session names.

Grammar (kept bit-exact for compatibility with existing sessions):

    mayor                 -> hq-mayor[-<townid>]
    deacon                -> hq-deacon[-<townid>]
    boot                  -> gt-boot[-<townid>]
    <rig>/witness         -> gt-<rig>-witness[-<townid>]
    <rig>/refinery        -> gt-<rig>-refinery[-<townid>]
    <rig>/polecat/<name>  -> gt-<rig>-<name>[-<townid>]
    <rig>/crew/<name>     -> gt-<rig>-crew-<name>[-<townid>]

The town id is the first six hex characters of SHA-256(town root). An empty
town root means legacy single-town mode: no suffix and no filtering.
"""

import hashlib
import re
from dataclasses import dataclass

from ..errors import InvalidAddressError, InvalidSessionError
from ..models import AgentAddress, Role

PREFIX = "gt-"
HQ_PREFIX = "hq-"
TOWN_ID_LENGTH = 6

TOWN_ID_PATTERN = re.compile(r"-([0-9a-f]{6})$")


def town_id(town_root: str) -> str:
    """Return the 6-hex-char town id for a town root ("" for an empty root)."""
    if not town_root:
        return ""
    return hashlib.sha256(town_root.encode("utf-8")).hexdigest()[:TOWN_ID_LENGTH]


def town_suffix(town_root: str) -> str:
    tid = town_id(town_root)
    return f"-{tid}" if tid else ""


# --- Per-role session names (unsuffixed) ---


def mayor_session_name() -> str:
    return HQ_PREFIX + "mayor"


def deacon_session_name() -> str:
    return HQ_PREFIX + "deacon"


def boot_session_name() -> str:
    return PREFIX + "boot"


def witness_session_name(rig: str) -> str:
    return f"{PREFIX}{rig}-witness"


def refinery_session_name(rig: str) -> str:
    return f"{PREFIX}{rig}-refinery"


def crew_session_name(rig: str, name: str) -> str:
    return f"{PREFIX}{rig}-crew-{name}"


def polecat_session_name(rig: str, name: str) -> str:
    return f"{PREFIX}{rig}-{name}"


# --- Suffix handling ---


def extract_town_id(session_name: str) -> str:
    """Return the town id suffix of a session name, or "" for legacy names."""
    match = TOWN_ID_PATTERN.search(session_name)
    return match.group(1) if match else ""


def strip_town_id(session_name: str) -> str:
    return TOWN_ID_PATTERN.sub("", session_name)


def matches_town(session_name: str, town_root: str) -> bool:
    """True if the session belongs to the town or carries no town id at all.

    With an empty town root every session matches.
    """
    if not town_root:
        return True
    sid = extract_town_id(session_name)
    if not sid:
        return True
    return sid == town_id(town_root)


def filter_sessions_by_town(session_names: list[str], town_root: str) -> list[str]:
    if not town_root:
        return list(session_names)
    return [s for s in session_names if matches_town(s, town_root)]


# --- Address <-> name ---


def session_name_for(address: str) -> str:
    """Map a logical address to its unsuffixed session name.

    Addresses outside the role table fall through unchanged.
    """
    try:
        role, rig, worker = AgentAddress(address).parse()
    except InvalidAddressError:
        return address

    if not rig:
        if role == Role.MAYOR:
            return mayor_session_name()
        if role == Role.DEACON:
            return deacon_session_name()
        if role == Role.BOOT:
            return boot_session_name()
        return address

    if not worker:
        if role == Role.WITNESS:
            return witness_session_name(rig)
        if role == Role.REFINERY:
            return refinery_session_name(rig)
        return address

    if role == Role.POLECAT:
        return polecat_session_name(rig, worker)
    if role == Role.CREW:
        return crew_session_name(rig, worker)
    return address


def unique_name(address: str, town_root: str) -> str:
    """Map a logical address to the unique session name for a town."""
    return session_name_for(address) + town_suffix(town_root)


@dataclass(frozen=True)
class ParsedSessionName:
    """Result of reverse-parsing a unique session name."""

    address: AgentAddress
    town_id: str


def parse_session_name(session_name: str) -> ParsedSessionName:
    """Invert the naming grammar.

    Raises:
        InvalidSessionError: If the name does not follow the grammar.
    """
    tid = extract_town_id(session_name)
    base = strip_town_id(session_name)

    if base == mayor_session_name():
        return ParsedSessionName(AgentAddress(Role.MAYOR.value), tid)
    if base == deacon_session_name():
        return ParsedSessionName(AgentAddress(Role.DEACON.value), tid)
    if base == boot_session_name():
        return ParsedSessionName(AgentAddress(Role.BOOT.value), tid)

    if not base.startswith(PREFIX):
        raise InvalidSessionError(f"not an agent session name: {session_name}")
    rest = base[len(PREFIX) :]

    for role in (Role.WITNESS, Role.REFINERY):
        suffix = f"-{role.value}"
        if rest.endswith(suffix) and len(rest) > len(suffix):
            rig = rest[: -len(suffix)]
            return ParsedSessionName(AgentAddress(f"{rig}/{role.value}"), tid)

    if "-crew-" in rest:
        rig, name = rest.split("-crew-", 1)
        if rig and name:
            return ParsedSessionName(AgentAddress(f"{rig}/{Role.CREW.value}/{name}"), tid)

    rig, sep, name = rest.partition("-")
    if sep and rig and name:
        return ParsedSessionName(AgentAddress(f"{rig}/{Role.POLECAT.value}/{name}"), tid)

    raise InvalidSessionError(f"not an agent session name: {session_name}")


def owned_address(session_name: str, town_root: str) -> AgentAddress | None:
    """Reverse-map a session name, returning None if another town owns it.

    Legacy names without a town id are owned by every town. Names that do not
    follow the grammar also give None.
    """
    if not matches_town(session_name, town_root):
        return None
    try:
        return parse_session_name(session_name).address
    except InvalidSessionError:
        return None
