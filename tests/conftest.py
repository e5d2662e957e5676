"""Shared fixtures for townmux tests."""

import logging

import pytest

from townmux.agent.config import AgentConfig
from townmux.agent.manager import AgentManager
from townmux.session.double import SessionsDouble

PRODUCTION_ROOT = "/home/user/production"
STAGING_ROOT = "/home/user/staging"


@pytest.fixture
def sessions() -> SessionsDouble:
    """Fresh in-memory session driver."""
    return SessionsDouble(poll_interval=0.001)


@pytest.fixture
def agent_config() -> AgentConfig:
    """Config that treats a "claude" process as alive and has no readiness checker."""
    return AgentConfig(process_names=["claude"])


@pytest.fixture
def agents(sessions: SessionsDouble, agent_config: AgentConfig) -> AgentManager:
    """Agent manager over the in-memory driver."""
    return AgentManager(sessions, agent_config, poll_interval=0.005)


@pytest.fixture(autouse=True)
def reset_townmux_loggers():
    """Undo handler changes LoggingManager makes to the townmux loggers."""
    yield
    for name in ("townmux", "townmux.audit"):
        logger = logging.getLogger(name)
        for handler in list(logger.handlers):
            handler.close()
            logger.removeHandler(handler)
        logger.propagate = True
        logger.setLevel(logging.NOTSET)
