"""Tmux session drivers (local via libtmux, remote via ssh)."""

from .local import LocalTmux
from .remote import (
    RemoteTmux,
    exact_pane,
    exact_session,
    shell_escape,
    shell_join,
    unquote_start_command,
)

__all__ = [
    "LocalTmux",
    "RemoteTmux",
    "exact_pane",
    "exact_session",
    "shell_escape",
    "shell_join",
    "unquote_start_command",
]
