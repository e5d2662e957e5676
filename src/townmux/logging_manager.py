"""Structured logging for townmux.

Provides per-agent logging, an audit trail of lifecycle events, and console
output for the library as a whole.
"""

import json
import logging
import logging.handlers
from datetime import datetime
from pathlib import Path
from typing import Any

from .settings import Settings

# LogRecord attributes that are not user-supplied extras
_RECORD_FIELDS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "message",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "thread",
        "threadName",
        "exc_info",
        "exc_text",
        "stack_info",
        "asctime",
        "taskName",
    }
)

CONSOLE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
CONSOLE_DATEFMT = "%Y-%m-%d %H:%M:%S"


def _extras(record: logging.LogRecord) -> dict[str, Any]:
    extras = {}
    for key, value in record.__dict__.items():
        if key in _RECORD_FIELDS:
            continue
        try:
            json.dumps(value)
            extras[key] = value
        except (TypeError, ValueError):
            extras[key] = str(value)
    return extras


class JsonLineFormatter(logging.Formatter):
    """One JSON object per line, extras included as top-level keys."""

    def __init__(self, message_key: str = "message"):
        super().__init__()
        self.message_key = message_key

    def format(self, record):
        log_obj = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            self.message_key: record.getMessage(),
        }
        if self.message_key == "message":
            log_obj["module"] = record.module
            log_obj["function"] = record.funcName
            log_obj["line"] = record.lineno
        log_obj.update(_extras(record))
        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_obj)


class AgentLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that adds agent context to all log messages."""

    def process(self, msg, kwargs):
        extra = kwargs.get("extra", {})
        extra.update(self.extra)
        kwargs["extra"] = extra
        return msg, kwargs


def agent_slug(address: str) -> str:
    """Filesystem-safe directory name for an agent address."""
    return address.replace("/", "__")


class LoggingManager:
    """Manages structured logging for the library and its agents."""

    def __init__(self, log_dir: str | Path, log_level: str = "INFO"):
        """Initialize logging manager.

        Args:
            log_dir: Base directory for all logs
            log_level: Console log level
        """
        self.log_dir = Path(log_dir)
        self.log_level = getattr(logging, log_level.upper())

        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.agents_dir = self.log_dir / "agents"
        self.agents_dir.mkdir(exist_ok=True)
        self.audit_dir = self.log_dir / "audit"
        self.audit_dir.mkdir(exist_ok=True)

        self._agent_loggers: dict[str, AgentLoggerAdapter] = {}

        self._setup_main_logger()
        self._setup_audit_logger()

        # Child loggers created before us should defer to our handlers
        for name in list(logging.Logger.manager.loggerDict.keys()):
            if name.startswith("townmux.") and name != "townmux.audit":
                child_logger = logging.getLogger(name)
                if isinstance(child_logger, logging.Logger):
                    child_logger.setLevel(logging.NOTSET)
                    child_logger.propagate = True
                    child_logger.handlers.clear()

    def _setup_main_logger(self):
        logger = logging.getLogger("townmux")
        logger.setLevel(logging.DEBUG)
        logger.propagate = False
        logger.handlers.clear()

        console_handler = logging.StreamHandler()
        console_handler.setLevel(self.log_level)
        console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt=CONSOLE_DATEFMT))
        logger.addHandler(console_handler)

        # Structured JSON file, captures everything
        file_handler = logging.handlers.RotatingFileHandler(
            self.log_dir / "townmux.log",
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5,
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(JsonLineFormatter())
        logger.addHandler(file_handler)

        self.main_logger = logger

    def _setup_audit_logger(self):
        """Setup audit trail logger (JSON Lines format, daily rotation)."""
        logger = logging.getLogger("townmux.audit")
        logger.setLevel(logging.INFO)
        logger.propagate = False
        logger.handlers.clear()

        audit_file = self.audit_dir / f"audit_{datetime.now().strftime('%Y%m%d')}.jsonl"
        file_handler = logging.handlers.TimedRotatingFileHandler(
            audit_file,
            when="midnight",
            interval=1,
            backupCount=30,
        )
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(JsonLineFormatter(message_key="event"))
        logger.addHandler(file_handler)

        self.audit_logger = logger

    def get_agent_logger(self, address: str) -> AgentLoggerAdapter:
        """Get or create the logger for one agent.

        Lines go to ``<log_dir>/agents/<slug>/agent.log``.
        """
        if address in self._agent_loggers:
            return self._agent_loggers[address]

        agent_dir = self.agents_dir / agent_slug(address)
        agent_dir.mkdir(parents=True, exist_ok=True)

        logger = logging.getLogger(f"townmux_agent.{agent_slug(address)}")
        logger.setLevel(logging.DEBUG)
        logger.propagate = False
        logger.handlers.clear()

        handler = logging.handlers.RotatingFileHandler(
            agent_dir / "agent.log",
            maxBytes=5 * 1024 * 1024,  # 5MB
            backupCount=3,
        )
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(levelname)s - %(message)s", datefmt=CONSOLE_DATEFMT)
        )
        logger.addHandler(handler)

        adapter = AgentLoggerAdapter(logger, {"agent": address})
        self._agent_loggers[address] = adapter
        return adapter

    def log_audit_event(
        self,
        event_type: str,
        address: str | None = None,
        details: dict[str, Any] | None = None,
        **kwargs,
    ):
        """Log an audit event.

        Args:
            event_type: Type of event (agent_started, agent_stopped, ...)
            address: Related agent address if applicable
            details: Additional event details
            **kwargs: Additional fields to include
        """
        extra = {
            "event_type": event_type,
            "agent": address,
            "details": details or {},
        }
        extra.update(kwargs)

        self.audit_logger.info(event_type, extra=extra)
        if address:
            self.get_agent_logger(address).info(f"{event_type} {json.dumps(details or {})}")

    def log_pane_output(self, address: str, output: str):
        """Append a captured pane snapshot to the agent's pane log."""
        agent_dir = self.agents_dir / agent_slug(address)
        agent_dir.mkdir(parents=True, exist_ok=True)

        with (agent_dir / "pane_output.log").open("a") as f:
            f.write(f"\n{'=' * 80}\n")
            f.write(f"[{datetime.now().isoformat()}]\n")
            f.write(f"{'=' * 80}\n")
            f.write(output)
            f.write("\n")

    def get_agent_logs(self, address: str, log_type: str = "agent", tail: int = 100) -> list[str]:
        """Return the last ``tail`` lines of an agent's log (``agent`` or ``pane_output``)."""
        log_files = {"agent": "agent.log", "pane_output": "pane_output.log"}
        log_file = self.agents_dir / agent_slug(address) / log_files.get(log_type, "agent.log")
        if not log_file.exists():
            return []

        try:
            with log_file.open("r") as f:
                lines = f.readlines()
                return lines[-tail:] if tail else lines
        except OSError as e:
            self.main_logger.error(f"Failed to read logs for {address}: {e}")
            return []


def setup_logging(settings: Settings | None = None) -> LoggingManager | None:
    """Configure townmux logging from settings.

    Returns the LoggingManager when a log directory is configured, otherwise
    attaches a plain console handler and returns None.
    """
    settings = settings or Settings.from_env()
    if settings.log_dir:
        return LoggingManager(settings.log_dir, settings.log_level)

    logger = logging.getLogger("townmux")
    logger.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt=CONSOLE_DATEFMT))
        logger.addHandler(handler)
    return None
