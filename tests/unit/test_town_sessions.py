"""Unit tests for the town-aware session wrapper."""

import pytest

from townmux.errors import InvalidSessionError, NotRunningError, SessionNotFoundError
from townmux.session.double import SessionsDouble
from townmux.session.names import town_id
from townmux.session.town import TownSessions

PRODUCTION = "/home/user/production"
STAGING = "/home/user/staging"
P = town_id(PRODUCTION)
S = town_id(STAGING)


@pytest.fixture
def driver():
    return SessionsDouble(poll_interval=0.001)


@pytest.fixture
def production(driver):
    return TownSessions(driver, PRODUCTION)


@pytest.fixture
def staging(driver):
    return TownSessions(driver, STAGING)


class TestStart:
    """Test session creation under unique names."""

    def test_start_uses_suffixed_name(self, driver, production):
        """Test start creates the town-suffixed session and returns the address."""
        result = production.start("myrig/witness", "/tmp", "claude")

        assert result == "myrig/witness"
        assert driver.list_sessions() == [f"gt-myrig-witness-{P}"]
        assert production.exists("myrig/witness")

    def test_start_legacy_mode(self, driver):
        """Test an empty town root creates unsuffixed names."""
        legacy = TownSessions(driver, "")
        legacy.start("mayor", "/tmp", "claude")

        assert driver.list_sessions() == ["hq-mayor"]

    def test_start_empty_name(self, production):
        """Test empty names are rejected."""
        with pytest.raises(InvalidSessionError):
            production.start("", "/tmp", "claude")

    def test_start_unrecognised_address_is_suffixed(self, driver, production):
        """Test addresses outside the grammar still get the town suffix."""
        production.start("scratch", "/tmp", "bash")

        assert driver.list_sessions() == [f"scratch-{P}"]

    def test_properties(self, driver, production):
        """Test the wrapper exposes its town and driver."""
        assert production.town_root == PRODUCTION
        assert production.town_id == P
        assert production.sessions is driver


class TestCrossTownIsolation:
    """Two towns sharing one tmux server."""

    def test_each_town_sees_only_its_mayor(self, driver, production, staging):
        """Test exists and list are scoped to the town."""
        driver.start(f"hq-mayor-{P}", "/tmp", "claude")
        driver.start(f"hq-mayor-{S}", "/tmp", "claude")

        assert production.exists("mayor")
        assert staging.exists("mayor")
        assert production.list_sessions() == ["mayor"]
        assert staging.list_sessions() == ["mayor"]
        assert production.resolve("mayor") == f"hq-mayor-{P}"
        assert staging.resolve("mayor") == f"hq-mayor-{S}"

    def test_stop_only_touches_own_town(self, driver, production, staging):
        """Test stopping in one town leaves the other running."""
        production.start("mayor", "/tmp", "claude")
        staging.start("mayor", "/tmp", "claude")

        production.stop("mayor")

        assert not production.exists("mayor")
        assert staging.exists("mayor")
        assert driver.list_sessions() == [f"hq-mayor-{S}"]

    def test_other_town_sessions_hidden(self, driver, production):
        """Test foreign sessions never appear in list."""
        driver.start(f"gt-myrig-witness-{S}", "/tmp", "claude")

        assert production.list_sessions() == []
        assert not production.exists("myrig/witness")

    def test_legacy_session_visible_to_both(self, driver, production, staging):
        """Test unsuffixed sessions belong to every town."""
        driver.start("hq-mayor", "/tmp", "claude")

        assert production.exists("mayor")
        assert staging.exists("mayor")
        assert production.list_sessions() == ["mayor"]
        assert staging.list_sessions() == ["mayor"]

    def test_list_all_returns_raw_names(self, driver, production):
        """Test list_all does not filter or translate."""
        driver.start(f"hq-mayor-{P}", "/tmp", "claude")
        driver.start(f"hq-mayor-{S}", "/tmp", "claude")

        assert sorted(production.list_all()) == sorted([f"hq-mayor-{P}", f"hq-mayor-{S}"])


class TestOptimisticFallback:
    """Suffixed first, then the legacy unsuffixed name."""

    def test_legacy_session_found_and_stopped(self, driver, production):
        """Test a legacy hq-mayor is reachable as "mayor" and can be stopped."""
        driver.start("hq-mayor", "/tmp", "claude")

        assert production.exists("mayor")
        production.stop("mayor")

        assert driver.list_sessions() == []

    def test_suffixed_preferred_over_legacy(self, driver, production):
        """Test the suffixed session wins when both exist."""
        driver.start("hq-mayor", "/tmp", "legacy")
        driver.start(f"hq-mayor-{P}", "/tmp", "current")

        assert production.get_start_command("mayor") == "current"
        assert production.list_sessions() == ["mayor"]

    def test_fallback_disabled(self, driver):
        """Test legacy names are ignored when fallback is off."""
        strict = TownSessions(driver, PRODUCTION, legacy_fallback=False)
        driver.start("hq-mayor", "/tmp", "claude")

        assert not strict.exists("mayor")
        assert strict.resolve("mayor") is None

    def test_suffixed_address_used_directly(self, driver, production):
        """Test a raw unique name passed as an address resolves to itself."""
        driver.start(f"hq-mayor-{P}", "/tmp", "claude")

        assert production.resolve(f"hq-mayor-{P}") == f"hq-mayor-{P}"


class TestMissingSessions:
    """Test behaviour when nothing resolves."""

    def test_stop_missing_is_noop(self, production):
        """Test stop tolerates a missing session."""
        production.stop("mayor")

    def test_respawn_missing(self, production):
        """Test respawn of a missing session raises NotRunningError."""
        with pytest.raises(NotRunningError):
            production.respawn("mayor", "claude")

    @pytest.mark.parametrize(
        "call",
        [
            lambda s: s.send("mayor", "hi"),
            lambda s: s.send_control("mayor", "C-c"),
            lambda s: s.nudge("mayor", "hi"),
            lambda s: s.capture("mayor", 10),
            lambda s: s.capture_all("mayor"),
            lambda s: s.get_info("mayor"),
            lambda s: s.get_start_command("mayor"),
            lambda s: s.attach("mayor"),
            lambda s: s.switch_to("mayor"),
        ],
    )
    def test_operations_raise_not_found(self, production, call):
        """Test per-session operations raise SessionNotFoundError."""
        with pytest.raises(SessionNotFoundError):
            call(production)

    def test_is_running_missing(self, production):
        """Test is_running never raises."""
        assert production.is_running("mayor", "claude") is False
        assert production.is_running("", "claude") is False


class TestPassthrough:
    """Test operations are forwarded to the resolved session."""

    def test_nudge_and_capture(self, driver, production):
        """Test nudge lands on the suffixed session."""
        production.start("myrig/polecat/toast", "/tmp", "claude")
        production.nudge("myrig/polecat/toast", "hello")

        assert driver.nudge_log(f"gt-myrig-toast-{P}") == ["hello"]
        assert production.capture("myrig/polecat/toast", 1) == "hello"

    def test_get_info_reports_address(self, production):
        """Test get_info names the session by its logical address."""
        production.start("myrig/crew/joe", "/tmp", "claude")

        info = production.get_info("myrig/crew/joe")

        assert info.name == "myrig/crew/joe"
        assert info.windows == 1

    def test_respawn_forwards(self, driver, production):
        """Test respawn replaces the command of the resolved session."""
        production.start("deacon", "/tmp", "old")
        production.respawn("deacon", "new")

        assert driver.get_command(f"hq-deacon-{P}") == "new"

    def test_wait_for(self, production):
        """Test wait_for resolves before waiting."""
        production.start("deacon", "/tmp", "claude")
        production.wait_for("deacon", 0.1, "claude")


class TestListing:
    """Test translation of raw names in list."""

    def test_town_mode_skips_non_conforming(self, driver, production):
        """Test names outside the grammar are not agents."""
        driver.start("scratch", "/tmp", "bash")
        driver.start(f"gt-myrig-toast-{P}", "/tmp", "claude")

        assert production.list_sessions() == ["myrig/polecat/toast"]

    def test_legacy_mode_returns_raw_when_unparseable(self, driver):
        """Test legacy mode keeps non-conforming and suffixed names raw."""
        legacy = TownSessions(driver, "")
        driver.start("scratch", "/tmp", "bash")
        driver.start("gt-myrig-witness", "/tmp", "claude")
        driver.start(f"hq-mayor-{S}", "/tmp", "claude")

        assert legacy.list_sessions() == ["scratch", "myrig/witness", f"hq-mayor-{S}"]

    def test_mirror_sessions_hidden(self, driver, production):
        """Test local mirrors are not listed as agents."""
        driver.start(f"gt-myrig-toast-{P}", "/tmp", "claude")
        driver.start(f"gt-myrig-toast-{P}-mirror", "", "ssh devbox")

        assert production.list() == ["myrig/polecat/toast"]

    def test_duplicates_collapsed(self, driver, production):
        """Test a legacy and a suffixed session for one agent list once."""
        driver.start("gt-myrig-witness", "/tmp", "claude")
        driver.start(f"gt-myrig-witness-{P}", "/tmp", "claude")

        assert production.list_sessions() == ["myrig/witness"]
