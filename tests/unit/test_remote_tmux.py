"""Unit tests for the ssh-backed tmux driver with mocked subprocess calls."""

from unittest.mock import MagicMock, patch

import pytest

from townmux.errors import (
    DuplicateSessionError,
    InvalidSessionError,
    NotRunningError,
    ReadinessTimeoutError,
    SessionNotFoundError,
    TransportError,
)
from townmux.session.base import NudgeTiming
from townmux.tmux.remote import (
    RemoteTmux,
    parse_info_line,
    shell_escape,
    shell_join,
    unquote_start_command,
)


def completed(stdout="", stderr="", returncode=0):
    return MagicMock(stdout=stdout, stderr=stderr, returncode=returncode)


def expected_argv(ssh_cmd, *tmux_args):
    return ["sh", "-c", f"{ssh_cmd} {shell_escape('tmux ' + shell_join(list(tmux_args)))}"]


@pytest.fixture
def mock_run():
    with patch("townmux.tmux.remote.subprocess.run") as run:
        run.return_value = completed()
        yield run


@pytest.fixture
def remote():
    return RemoteTmux("ssh user@devbox", nudge_timing=NudgeTiming.instant())


class TestShellEscape:
    """Test POSIX single-quote escaping."""

    def test_plain(self):
        """Test plain strings are wrapped in single quotes."""
        assert shell_escape("hello world") == "'hello world'"

    def test_embedded_quote(self):
        """Test embedded single quotes are closed, escaped and reopened."""
        assert shell_escape("it's") == "'it'\"'\"'s'"

    def test_metacharacters_are_inert(self):
        """Test shell metacharacters stay inside the quotes."""
        assert shell_escape("$(rm -rf /); `x`") == "'$(rm -rf /); `x`'"

    def test_join(self):
        """Test joined args are each quoted."""
        assert shell_join(["send-keys", "-t", "a b"]) == "'send-keys' '-t' 'a b'"


class TestUnquoteStartCommand:
    """Test undoing tmux's quoting of pane start commands."""

    @pytest.mark.parametrize(
        "raw,command",
        [
            ('"sleep 300"', "sleep 300"),
            ("'sleep 300'", "sleep 300"),
            ("\"GT_LOCAL_SSH='ssh me@laptop' claude\"", "GT_LOCAL_SSH='ssh me@laptop' claude"),
            ("claude", "claude"),
            ("GT_ROLE=mayor claude", "GT_ROLE=mayor claude"),
            ("'a b' c", "'a b' c"),
            ('"unbalanced', '"unbalanced'),
            ("", ""),
        ],
    )
    def test_unquote(self, raw, command):
        """Test only a single quoted token is unwrapped."""
        assert unquote_start_command(raw) == command


class TestLifecycle:
    """Test start, stop, respawn and exists over ssh."""

    def test_start(self, remote, mock_run):
        """Test start runs new-session through the ssh command."""
        assert remote.start("gt-myrig-toast", "/work", "claude") == "gt-myrig-toast"

        mock_run.assert_called_once_with(
            expected_argv(
                "ssh user@devbox", "new-session", "-d", "-s", "gt-myrig-toast", "-c", "/work", "claude"
            ),
            capture_output=True,
            text=True,
        )

    def test_start_with_local_ssh_callback(self, mock_run):
        """Test GT_LOCAL_SSH is exported to the launched command."""
        remote = RemoteTmux("ssh user@devbox", local_ssh="ssh me@laptop")

        remote.start("s", "", "claude")

        argv = mock_run.call_args.args[0]
        assert argv == expected_argv(
            "ssh user@devbox", "new-session", "-d", "-s", "s", "GT_LOCAL_SSH='ssh me@laptop' claude"
        )

    def test_start_empty_name(self, remote, mock_run):
        """Test empty names are rejected without touching ssh."""
        with pytest.raises(InvalidSessionError):
            remote.start("", "/work", "claude")
        mock_run.assert_not_called()

    def test_start_duplicate(self, remote, mock_run):
        """Test tmux's duplicate error is classified."""
        mock_run.return_value = completed(stderr="duplicate session: s\n", returncode=1)

        with pytest.raises(DuplicateSessionError):
            remote.start("s", "/work", "claude")

    def test_exists(self, remote, mock_run):
        """Test has-session uses exact matching."""
        assert remote.exists("s")
        assert mock_run.call_args.args[0] == expected_argv(
            "ssh user@devbox", "has-session", "-t", "=s"
        )

    @pytest.mark.parametrize(
        "stderr", ["can't find session: s", "no server running on /tmp/tmux-1000/default"]
    )
    def test_exists_missing(self, remote, mock_run, stderr):
        """Test missing sessions and missing servers both mean absent."""
        mock_run.return_value = completed(stderr=stderr, returncode=1)

        assert remote.exists("s") is False

    def test_exists_transport_failure(self, remote, mock_run):
        """Test ssh failures propagate as TransportError."""
        mock_run.return_value = completed(stderr="ssh: connect to host devbox: refused", returncode=255)

        with pytest.raises(TransportError, match="refused"):
            remote.exists("s")

    def test_stop_kills_descendants_then_session(self, remote, mock_run):
        """Test stop signals the pane's children before kill-session."""
        mock_run.side_effect = [completed(stdout="4242\n"), completed(), completed()]

        remote.stop("s")

        assert mock_run.call_count == 3
        kill_cmd = mock_run.call_args_list[1].args[0][2]
        assert "pgrep -P 4242" in kill_cmd
        assert "kill -TERM" in kill_cmd
        assert "kill -KILL" in kill_cmd
        assert mock_run.call_args_list[2].args[0] == expected_argv(
            "ssh user@devbox", "kill-session", "-t", "=s"
        )

    def test_stop_missing(self, remote, mock_run):
        """Test stopping a missing session succeeds."""
        missing = completed(stderr="can't find session: s", returncode=1)
        mock_run.side_effect = [missing, missing]

        remote.stop("s")

        assert mock_run.call_count == 2

    def test_stop_failure(self, remote, mock_run):
        """Test other kill-session failures propagate."""
        mock_run.side_effect = [
            completed(stdout=""),
            completed(stderr="permission denied", returncode=1),
        ]

        with pytest.raises(TransportError):
            remote.stop("s")

    def test_respawn(self, remote, mock_run):
        """Test respawn clears history and respawns the pane by id."""
        mock_run.side_effect = [completed(stdout="%3\n"), completed(), completed()]

        remote.respawn("s", "claude --resume")

        calls = [c.args[0] for c in mock_run.call_args_list]
        assert calls[0] == expected_argv(
            "ssh user@devbox", "list-panes", "-t", "=s:", "-F", "#{pane_id}"
        )
        assert calls[1] == expected_argv("ssh user@devbox", "clear-history", "-t", "%3")
        assert calls[2] == expected_argv(
            "ssh user@devbox", "respawn-pane", "-k", "-t", "%3", "claude --resume"
        )

    def test_respawn_keeps_single_callback(self, mock_run):
        """Test a read-back command keeps exactly one GT_LOCAL_SSH assignment."""
        remote = RemoteTmux("ssh user@devbox", local_ssh="ssh me@laptop")
        mock_run.side_effect = [
            completed(stdout="\"GT_LOCAL_SSH='ssh me@laptop' claude\"\n"),
            completed(stdout="%3\n"),
            completed(),
            completed(),
        ]

        remote.respawn("s", remote.get_start_command("s"))

        assert mock_run.call_args.args[0] == expected_argv(
            "ssh user@devbox", "respawn-pane", "-k", "-t", "%3", "GT_LOCAL_SSH='ssh me@laptop' claude"
        )

    def test_respawn_adds_callback_to_plain_command(self, mock_run):
        """Test a command without the assignment still gets it."""
        remote = RemoteTmux("ssh user@devbox", local_ssh="ssh me@laptop")
        mock_run.side_effect = [completed(stdout="%3\n"), completed(), completed()]

        remote.respawn("s", "claude")

        assert mock_run.call_args.args[0] == expected_argv(
            "ssh user@devbox", "respawn-pane", "-k", "-t", "%3", "GT_LOCAL_SSH='ssh me@laptop' claude"
        )

    def test_respawn_missing(self, remote, mock_run):
        """Test respawn of a missing session raises NotRunningError."""
        mock_run.return_value = completed(stderr="can't find session: s", returncode=1)

        with pytest.raises(NotRunningError):
            remote.respawn("s", "claude")


class TestCommunication:
    """Test key sending."""

    def test_send(self, remote, mock_run):
        """Test send pastes literally then presses Enter."""
        with patch("townmux.tmux.remote.time.sleep"):
            remote.send("s", "hello")

        calls = [c.args[0] for c in mock_run.call_args_list]
        assert calls == [
            expected_argv("ssh user@devbox", "send-keys", "-t", "=s:", "-l", "hello"),
            expected_argv("ssh user@devbox", "send-keys", "-t", "=s:", "Enter"),
        ]

    def test_send_control(self, remote, mock_run):
        """Test control keys are sent without -l."""
        remote.send_control("s", "C-c")

        assert mock_run.call_args.args[0] == expected_argv(
            "ssh user@devbox", "send-keys", "-t", "=s:", "C-c"
        )

    def test_nudge(self, remote, mock_run):
        """Test nudge pastes, sends Escape, then Enter."""
        remote.nudge("s", "check your mail")

        calls = [c.args[0] for c in mock_run.call_args_list]
        assert calls == [
            expected_argv("ssh user@devbox", "send-keys", "-t", "=s:", "-l", "check your mail"),
            expected_argv("ssh user@devbox", "send-keys", "-t", "=s:", "Escape"),
            expected_argv("ssh user@devbox", "send-keys", "-t", "=s:", "Enter"),
        ]


class TestObservation:
    """Test capture and process checks."""

    def test_capture(self, remote, mock_run):
        """Test capture asks for the last N lines."""
        mock_run.return_value = completed(stdout="line1\nline2\n")

        assert remote.capture("s", 50) == "line1\nline2"
        assert mock_run.call_args.args[0] == expected_argv(
            "ssh user@devbox", "capture-pane", "-p", "-t", "=s:", "-S", "-50"
        )

    def test_capture_all(self, remote, mock_run):
        """Test capture_all asks for the whole history."""
        remote.capture_all("s")

        assert mock_run.call_args.args[0] == expected_argv(
            "ssh user@devbox", "capture-pane", "-p", "-t", "=s:", "-S", "-"
        )

    def test_is_running(self, remote, mock_run):
        """Test the pane's current command is matched against the names."""
        mock_run.return_value = completed(stdout="claude\n")

        assert remote.is_running("s", "claude", "node")
        assert not remote.is_running("s", "codex")
        assert not remote.is_running("s")

    def test_is_running_never_raises(self, remote, mock_run):
        """Test failures read as not running."""
        mock_run.return_value = completed(stderr="ssh: timeout", returncode=255)

        assert remote.is_running("s", "claude") is False

    def test_wait_for_timeout(self, remote, mock_run):
        """Test wait_for gives up at the deadline."""
        mock_run.return_value = completed(stdout="bash\n")

        with patch("townmux.tmux.remote.POLL_INTERVAL", 0.001):
            with pytest.raises(ReadinessTimeoutError):
                remote.wait_for("s", 0.01, "claude")


class TestManagement:
    """Test listing and session info."""

    def test_list_sessions(self, remote, mock_run):
        """Test one name per line."""
        mock_run.return_value = completed(stdout="hq-mayor\ngt-myrig-witness\n")

        assert remote.list_sessions() == ["hq-mayor", "gt-myrig-witness"]

    def test_list_sessions_no_server(self, remote, mock_run):
        """Test a missing server means no sessions."""
        mock_run.return_value = completed(stderr="no server running on /tmp/tmux", returncode=1)

        assert remote.list_sessions() == []

    def test_get_info(self, remote, mock_run):
        """Test info is parsed from the filtered list-sessions output."""
        mock_run.return_value = completed(stdout="s|2|Mon Jan  1 00:00:00 2024|1|1700000000|\n")

        info = remote.get_info("s")

        assert info.name == "s"
        assert info.windows == 2
        assert info.attached is True
        assert info.activity == "1700000000"

    def test_get_info_missing(self, remote, mock_run):
        """Test an empty filter result means the session is missing."""
        with pytest.raises(SessionNotFoundError):
            remote.get_info("s")

    def test_get_start_command_unquoted(self, remote, mock_run):
        """Test the start command comes back without tmux's quoting."""
        mock_run.return_value = completed(stdout='"GT_ROLE=polecat claude"\n')

        assert remote.get_start_command("s") == "GT_ROLE=polecat claude"
        assert mock_run.call_args.args[0] == expected_argv(
            "ssh user@devbox", "display-message", "-t", "=s:", "-p", "#{pane_start_command}"
        )

    def test_get_start_command_wrapped(self, remote, mock_run):
        """Test errors gain context."""
        mock_run.return_value = completed(stderr="can't find pane: s", returncode=1)

        with pytest.raises(SessionNotFoundError, match="getting start command"):
            remote.get_start_command("s")

    def test_switch_to_unsupported(self, remote):
        """Test switching clients to a remote session is not supported."""
        with pytest.raises(TransportError, match="not supported"):
            remote.switch_to("s")


class TestRemoteHelpers:
    """Test raw remote command helpers."""

    def test_run_remote(self, remote, mock_run):
        """Test arbitrary commands return stdout."""
        mock_run.return_value = completed(stdout="ok\n")

        assert remote.run_remote("uptime") == "ok\n"
        assert mock_run.call_args.args[0] == ["sh", "-c", "ssh user@devbox 'uptime'"]

    def test_run_remote_failure(self, remote, mock_run):
        """Test non-zero exits raise TransportError with stderr."""
        mock_run.return_value = completed(stderr="command not found\n", returncode=127)

        with pytest.raises(TransportError, match="command not found"):
            remote.run_remote("nope")

    def test_write_file(self, remote, mock_run):
        """Test file content travels base64-encoded."""
        remote.write_file("/tmp/prompt.txt", b"hello")

        remote_cmd = "echo aGVsbG8= | base64 -d > '/tmp/prompt.txt'"
        assert mock_run.call_args.args[0] == ["sh", "-c", f"ssh user@devbox {shell_escape(remote_cmd)}"]


def test_parse_info_line_rejects_garbage():
    """Test malformed info lines raise TransportError."""
    with pytest.raises(TransportError):
        parse_info_line("garbage")
