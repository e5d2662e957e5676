"""Map tmux stderr onto townmux error kinds."""

from ..errors import (
    DuplicateSessionError,
    NoServerError,
    SessionNotFoundError,
    TownmuxError,
    TransportError,
)

_NO_SERVER = ("no server running", "error connecting to")
_DUPLICATE = ("duplicate session",)
_NOT_FOUND = ("session not found", "can't find session", "can't find pane", "can't find window")


def classify(stderr: str, op: str | None = None) -> TownmuxError:
    """Build the error for a failed tmux invocation from its stderr text."""
    message = stderr.strip()
    lowered = message.lower()
    if any(s in lowered for s in _NO_SERVER):
        return NoServerError(message or "no server running", op=op)
    if any(s in lowered for s in _DUPLICATE):
        return DuplicateSessionError(message or "duplicate session", op=op)
    if any(s in lowered for s in _NOT_FOUND):
        return SessionNotFoundError(message or "session not found", op=op)
    return TransportError(message or "tmux command failed", op=op)


def is_missing(err: Exception) -> bool:
    """True for errors meaning the session (or the whole server) is gone."""
    return isinstance(err, (SessionNotFoundError, NoServerError))
