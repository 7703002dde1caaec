"""
Structured logging for the job tracker.

One process-wide logger writes to stderr and, when JOBTRACKER_LOG_DIR is set,
to a daily file. Context keyword arguments are appended to the message as
JSON. The logger also counts store round trips and mutation outcomes, so a
session can report how often optimistic writes had to be rolled back.
"""

import json
import logging
import sys
from copy import deepcopy
from datetime import datetime
from pathlib import Path
from typing import Optional

CONSOLE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
FILE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _handler(handler: logging.Handler, level: int, fmt: str) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt=fmt, datefmt=DATE_FORMAT))
    return handler


def _empty_metrics() -> dict:
    return {
        "api_calls": 0,
        "mutations_attempted": 0,
        "mutations_confirmed": 0,
        "mutations_rolled_back": 0,
        "mutations_discarded": 0,
        "errors_by_kind": {},
        "entity_success_rate": {},
    }


class StructuredLogger:
    """
    Wrapper around a stdlib logger with JSON context and mutation metrics.
    """

    def __init__(
        self,
        name: str = "jobtracker",
        level: str = "INFO",
        log_dir: Optional[Path] = None,
        enable_file: bool = True,
        enable_console: bool = True,
    ):
        """
        Args:
            name: Logger name
            level: Console log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            log_dir: Directory for the daily log file (default: logs/)
            enable_file: Write logs to file; the file always gets DEBUG
            enable_console: Write logs to stderr
        """
        self.logger = logging.getLogger(name)
        self.metrics = _empty_metrics()
        self.configure(level, log_dir, enable_file, enable_console)

    def configure(
        self,
        level: str = "INFO",
        log_dir: Optional[Path] = None,
        enable_file: bool = True,
        enable_console: bool = True,
    ):
        """Replace the handlers in place; metrics and existing references are kept."""
        numeric_level = getattr(logging, level.upper())
        self.logger.setLevel(numeric_level)
        for handler in list(self.logger.handlers):
            handler.close()
            self.logger.removeHandler(handler)

        if enable_console:
            self.logger.addHandler(_handler(logging.StreamHandler(sys.stderr), numeric_level, CONSOLE_FORMAT))

        if enable_file:
            log_dir = log_dir or Path("logs")
            log_dir.mkdir(parents=True, exist_ok=True)
            log_file = log_dir / f"jobtracker_{datetime.now():%Y%m%d}.log"
            self.logger.addHandler(_handler(logging.FileHandler(log_file, encoding="utf-8"), logging.DEBUG, FILE_FORMAT))

    def debug(self, message: str, **context):
        self._log(logging.DEBUG, message, context)

    def info(self, message: str, **context):
        self._log(logging.INFO, message, context)

    def warning(self, message: str, **context):
        self._log(logging.WARNING, message, context)

    def error(self, message: str, **context):
        self._log(logging.ERROR, message, context)

    def critical(self, message: str, **context):
        self._log(logging.CRITICAL, message, context)

    def _log(self, level: int, message: str, context: dict):
        if context:
            message = f"{message} | Context: {json.dumps(context, default=str)}"
        self.logger.log(level, message)

    # Metrics

    def record_api_call(self):
        """Count one round trip to the store."""
        self.metrics["api_calls"] += 1

    def _entity_stats(self, entity_type: str) -> dict:
        return self.metrics["entity_success_rate"].setdefault(
            entity_type, {"attempts": 0, "confirmed": 0}
        )

    def record_mutation_attempt(self, entity_type: str):
        self.metrics["mutations_attempted"] += 1
        self._entity_stats(entity_type)["attempts"] += 1

    def record_mutation_confirmed(self, entity_type: str):
        self.metrics["mutations_confirmed"] += 1
        self._entity_stats(entity_type)["confirmed"] += 1

    def record_mutation_rolled_back(self, entity_type: str, error_kind: str):
        """Record a mutation the store rejected."""
        self.metrics["mutations_rolled_back"] += 1
        self.record_error(error_kind)

    def record_mutation_discarded(self, entity_type: str):
        """Record a completion that arrived after its session ended."""
        self.metrics["mutations_discarded"] += 1

    def record_error(self, error_kind: str):
        errors = self.metrics["errors_by_kind"]
        errors[error_kind] = errors.get(error_kind, 0) + 1

    def get_metrics(self) -> dict:
        """Copy of the counters, with a success_rate per entity type that has attempts."""
        metrics = deepcopy(self.metrics)
        for stats in metrics["entity_success_rate"].values():
            if stats["attempts"]:
                stats["success_rate"] = round(stats["confirmed"] / stats["attempts"], 3)
        return metrics

    def log_metrics_summary(self):
        metrics = self.get_metrics()
        attempted = metrics["mutations_attempted"]
        confirmed = metrics["mutations_confirmed"]
        overall = round(confirmed / attempted * 100, 1) if attempted else 0.0

        self.info("=== Session Metrics ===")
        self.info(f"API Calls: {metrics['api_calls']}")
        self.info(f"Mutations: {confirmed}/{attempted} confirmed ({overall}%)")
        self.info(f"Rolled back: {metrics['mutations_rolled_back']}, discarded: {metrics['mutations_discarded']}")

        if metrics["entity_success_rate"]:
            self.info("Entity Success Rates:")
            for entity_type, stats in metrics["entity_success_rate"].items():
                rate = stats.get("success_rate", 0) * 100
                self.info(f"  {entity_type}: {stats['confirmed']}/{stats['attempts']} ({rate:.1f}%)")

        if metrics["errors_by_kind"]:
            self.info("Error Kinds:")
            for kind, count in metrics["errors_by_kind"].items():
                self.info(f"  {kind}: {count}")


_global_logger: Optional[StructuredLogger] = None


def get_logger(name: str = "jobtracker", level: Optional[str] = None, **kwargs) -> StructuredLogger:
    """
    Return the process-wide logger, creating it on first use.

    Level and file output default to JOBTRACKER_LOG_LEVEL and
    JOBTRACKER_LOG_DIR; without a log dir nothing is written to disk.
    Arguments only matter on the call that creates the logger.
    """
    global _global_logger

    if _global_logger is None:
        from .config import get_settings

        settings = get_settings()
        kwargs.setdefault("log_dir", settings.log_dir)
        kwargs.setdefault("enable_file", settings.log_dir is not None)
        _global_logger = StructuredLogger(name=name, level=level or settings.log_level, **kwargs)

    return _global_logger


def configure_logger(**kwargs) -> StructuredLogger:
    """
    Apply the current settings to the process-wide logger.

    Modules bind the logger at import time, before a .env file is read;
    call this once settings are final so their references pick it up.
    """
    from .config import get_settings

    settings = get_settings()
    kwargs.setdefault("level", settings.log_level)
    kwargs.setdefault("log_dir", settings.log_dir)
    kwargs.setdefault("enable_file", settings.log_dir is not None)
    logger = get_logger()
    logger.configure(**kwargs)
    return logger


def reset_logger():
    """Forget the process-wide logger (tests)."""
    global _global_logger
    _global_logger = None
