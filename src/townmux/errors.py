"""Error kinds for session and agent lifecycle operations.

Every error carries an optional operation context so callers can compose tidy
messages ("starting session: duplicate session: gt-myrig-witness") while still
catching by kind.
"""


class TownmuxError(Exception):
    """Base class for all townmux errors."""

    def __init__(self, message: str = "", *, op: str | None = None):
        super().__init__(message)
        self.message = message
        self.op = op

    def __str__(self) -> str:
        if self.op:
            return f"{self.op}: {self.message}" if self.message else self.op
        return self.message

    def during(self, op: str) -> "TownmuxError":
        """Return a copy of this error with ``op`` prefixed to its message.

        The copy keeps the concrete class, so ``except AlreadyRunningError``
        still matches after context has been added.
        """
        return type(self)(str(self), op=op)


class AlreadyRunningError(TownmuxError):
    """Start attempted for an agent whose session has a live process."""

    def __init__(self, message: str = "agent already running", *, op: str | None = None):
        super().__init__(message, op=op)


class NotRunningError(TownmuxError):
    """Operation requires a live agent but none exists."""

    def __init__(self, message: str = "agent not running", *, op: str | None = None):
        super().__init__(message, op=op)


class SessionNotFoundError(TownmuxError):
    """Operation requires a session but the driver has none."""

    def __init__(self, message: str = "session not found", *, op: str | None = None):
        super().__init__(message, op=op)


class DuplicateSessionError(TownmuxError):
    """Driver-level start called with a name that is already present."""

    def __init__(self, message: str = "duplicate session", *, op: str | None = None):
        super().__init__(message, op=op)


class InvalidSessionError(TownmuxError, ValueError):
    """Empty or non-conforming session name."""


class InvalidAddressError(TownmuxError, ValueError):
    """Ill-formed agent address."""


class ReadinessTimeoutError(TownmuxError, TimeoutError):
    """Readiness probe or process wait exceeded its deadline."""

    def __init__(self, message: str = "timeout waiting for agent ready", *, op: str | None = None):
        super().__init__(message, op=op)


class UnknownRoleError(TownmuxError):
    """Self-identification could not determine the address from the environment."""

    def __init__(self, message: str = "unknown or missing GT_ROLE", *, op: str | None = None):
        super().__init__(message, op=op)


class TransportError(TownmuxError):
    """Subprocess or remote-shell invocation failed; message is the stderr."""


class NoServerError(TransportError):
    """No multiplexer server is running on the target host."""

    def __init__(self, message: str = "no server running", *, op: str | None = None):
        super().__init__(message, op=op)


class NotInClientError(TownmuxError):
    """switch_to called outside a multiplexer client."""

    def __init__(self, message: str = "not inside a tmux client", *, op: str | None = None):
        super().__init__(message, op=op)
