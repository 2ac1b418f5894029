"""Structured logging for the migration tool.

Events are structlog key/value records routed through the stdlib root logger.
Context bound with :meth:`MigrationLogger.bind_context` (the running phase,
for instance) is attached to every event, including events emitted from the
concurrent transfer tasks started while it is bound.
"""

import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Any, Dict, List, Optional

import structlog
from rich.console import Console
from rich.logging import RichHandler

from cms_migrator.config import LoggingConfig

FILE_LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s %(message)s"


def _processors(json_output: bool) -> List[Any]:
    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        renderer,
    ]


def _console_handler(config: LoggingConfig) -> logging.Handler:
    # Operator output goes to stdout, so log records stay on stderr
    if config.format == "json":
        return logging.StreamHandler(sys.stderr)
    return RichHandler(
        console=Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
        markup=False,
    )


def _file_handler(config: LoggingConfig) -> logging.Handler:
    path = config.file
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        path,
        maxBytes=config.max_bytes,
        backupCount=config.backup_count,
        encoding="utf-8",
    )
    handler.setFormatter(
        logging.Formatter("%(message)s" if config.format == "json" else FILE_LOG_FORMAT)
    )
    return handler


class MigrationLogger:
    """Process-wide logging facade.

    A single instance exists; components take bound loggers from it with
    :meth:`get_logger` and the orchestrator records run milestones through
    the ``log_*`` helpers.
    """

    _instance: Optional["MigrationLogger"] = None
    _logger: Optional[structlog.BoundLogger] = None

    def __new__(cls) -> "MigrationLogger":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self) -> None:
        if self._logger is None:
            self._logger = structlog.get_logger()

    def configure(self, config: LoggingConfig) -> None:
        """Install processors and root handlers.

        Calling it again replaces the previous handlers.

        Args:
            config: Logging configuration
        """
        level = logging.getLevelName(config.level.value)

        structlog.configure(
            processors=_processors(config.format == "json"),
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )

        handlers: List[logging.Handler] = []
        if config.console:
            handlers.append(_console_handler(config))
        if config.file:
            handlers.append(_file_handler(config))

        root = logging.getLogger()
        for handler in list(root.handlers):
            root.removeHandler(handler)
        for handler in handlers:
            handler.setLevel(level)
            root.addHandler(handler)
        root.setLevel(level)

        # The Azure SDK logs every HTTP request at INFO
        logging.getLogger("azure").setLevel(logging.WARNING)

        self._logger = structlog.get_logger()

    def get_logger(self, name: Optional[str] = None) -> structlog.BoundLogger:
        """Return a logger, bound to ``component=name`` when a name is given."""
        if self._logger is None:
            self._logger = structlog.get_logger()
        return self._logger.bind(component=name) if name else self._logger

    def bind_context(self, **values: Any) -> None:
        """Attach fields to every following event of this task and its children."""
        structlog.contextvars.bind_contextvars(**values)

    def clear_context(self) -> None:
        """Drop fields attached with :meth:`bind_context`."""
        structlog.contextvars.clear_contextvars()

    def log_migration_start(self, config: Dict[str, Any]) -> None:
        """Record the start of a run.

        Args:
            config: Configuration with secrets removed
        """
        self._logger.info("migration_started", started_at=_utcnow(), config=config)

    def log_migration_complete(
        self,
        state: str,
        total_objects: int,
        duration_seconds: float,
        error: Optional[str] = None,
    ) -> None:
        """Record the end of a run, at error level when it failed.

        Args:
            state: Final orchestrator state
            total_objects: Objects copied across all phases
            duration_seconds: Wall-clock duration of the run
            error: Message of the error that aborted the run
        """
        fields = {
            "state": state,
            "total_objects": total_objects,
            "duration_seconds": round(duration_seconds, 3),
            "finished_at": _utcnow(),
        }
        if error is None:
            self._logger.info("migration_completed", **fields)
        else:
            self._logger.error("migration_failed", error=error, **fields)

    def log_phase(self, phase: str, status: str, **context: Any) -> None:
        """Emit ``phase_<status>`` for a migration phase."""
        self._logger.info(f"phase_{status}", phase=phase, **context)

    def log_transfer(
        self,
        container: str,
        category: str,
        source: str,
        count: int,
        duration_ms: float,
    ) -> None:
        """Record a finished transfer unit.

        Args:
            container: Destination container
            category: Category that was copied
            source: Source folder or live container
            count: Objects copied
            duration_ms: Duration of the unit
        """
        self._logger.info(
            "transfer_completed",
            container=container,
            category=category,
            source=source,
            count=count,
            duration_ms=round(duration_ms, 1),
        )

    def log_error(self, error: BaseException, details: Dict[str, Any]) -> None:
        """Record the error that aborted a run, with its traceback.

        Args:
            error: The exception
            details: Classification of the error (type, severity, context)
        """
        fields = {key: value for key, value in details.items() if key != "context"}
        fields.update(details.get("context") or {})
        self._logger.error("error_occurred", exc_info=error, **fields)


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


logger = MigrationLogger()


def get_logger(name: Optional[str] = None) -> structlog.BoundLogger:
    """Shortcut for ``logger.get_logger(name)``."""
    return logger.get_logger(name)
