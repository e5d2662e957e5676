"""Session drivers and the town-aware naming layer."""

from .base import NudgeTiming, Sessions, reliable_nudge
from .double import SessionsDouble
from .mirror import MirroredSessions
from .town import TownSessions

__all__ = [
    "MirroredSessions",
    "NudgeTiming",
    "Sessions",
    "SessionsDouble",
    "TownSessions",
    "reliable_nudge",
]
