"""
Structured logging configuration for dep-buddy.

Emits one JSON object per event so that bot runs inside CI can be
inspected and aggregated without scraping console output.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

_RESERVED_RECORD_KEYS = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "getMessage",
    "exc_info",
    "exc_text",
    "stack_info",
    "taskName",
}


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_KEYS:
                log_entry[key] = value

        return json.dumps(log_entry, default=str)


class BuddyLogger:
    """Structured event logger."""

    def __init__(self, name: str = "dep_buddy"):
        self.logger = logging.getLogger(f"dep_buddy.{name}")
        self._setup_logger()

    def _setup_logger(self) -> None:
        if not self.logger.handlers:
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(StructuredFormatter())
            self.logger.addHandler(handler)
            self.logger.setLevel(logging.WARNING)
            self.logger.propagate = False

    def _log(self, level: str, event_type: str, **kwargs) -> None:
        log_data = {"event_type": event_type, **kwargs}
        getattr(self.logger, level.lower())(event_type, extra=log_data)

    def info(self, event_type: str, **kwargs) -> None:
        self._log("info", event_type, **kwargs)

    def warning(self, event_type: str, **kwargs) -> None:
        self._log("warning", event_type, **kwargs)

    def error(self, event_type: str, **kwargs) -> None:
        self._log("error", event_type, **kwargs)

    def debug(self, event_type: str, **kwargs) -> None:
        self._log("debug", event_type, **kwargs)


# Global logger instances
_scanner_logger = BuddyLogger("scanner")
_registry_logger = BuddyLogger("registry")
_grouping_logger = BuddyLogger("grouping")
_codec_logger = BuddyLogger("codec")
_auto_close_logger = BuddyLogger("auto_close")

_ALL_LOGGERS = [
    _scanner_logger,
    _registry_logger,
    _grouping_logger,
    _codec_logger,
    _auto_close_logger,
]


def get_scanner_logger() -> BuddyLogger:
    """Get scanner operations logger."""
    return _scanner_logger


def get_registry_logger() -> BuddyLogger:
    """Get registry operations logger."""
    return _registry_logger


def get_grouping_logger() -> BuddyLogger:
    return _grouping_logger


def get_codec_logger() -> BuddyLogger:
    return _codec_logger


def get_auto_close_logger() -> BuddyLogger:
    return _auto_close_logger


def log_scan_start(run_id: str, project_path: str, manifest_count: int) -> None:
    """Log scan start event."""
    _scanner_logger.info(
        "scan_started",
        run_id=run_id,
        project_path=project_path,
        manifest_count=manifest_count,
    )


def log_scan_complete(
    run_id: str,
    duration_ms: int,
    total_packages: int,
    update_count: int,
    group_count: int,
    error_count: int = 0,
) -> None:
    """Log scan completion event."""
    _scanner_logger.info(
        "scan_completed",
        run_id=run_id,
        scan_duration_ms=duration_ms,
        total_packages=total_packages,
        update_count=update_count,
        group_count=group_count,
        error_count=error_count,
    )


def log_registry_check(
    package_name: str,
    registry: str,
    latest_version: Optional[str],
    response_time_ms: Optional[int] = None,
) -> None:
    """Log registry lookup result."""
    log_data: Dict[str, Any] = {
        "package_name": package_name,
        "registry": registry,
        "latest_version": latest_version,
    }
    if response_time_ms is not None:
        log_data["response_time_ms"] = response_time_ms

    if latest_version is None:
        _registry_logger.warning("latest_version_unresolved", **log_data)
    else:
        _registry_logger.debug("latest_version_resolved", **log_data)


def log_groups_created(group_names: List[str], update_count: int) -> None:
    _grouping_logger.info(
        "groups_created",
        group_count=len(group_names),
        group_names=group_names,
        update_count=update_count,
    )


def log_decode_result(fact_count: int, used_state_block: bool) -> None:
    _codec_logger.debug(
        "pr_body_decoded", fact_count=fact_count, used_state_block=used_state_block
    )


def log_auto_close_decision(
    should_close: bool, rule: Optional[str], reason: str
) -> None:
    """Log the outcome of an auto-close evaluation."""
    if should_close:
        _auto_close_logger.info("auto_close_triggered", rule=rule, reason=reason)
    else:
        _auto_close_logger.debug("auto_close_skipped", reason=reason)


def configure_logging(log_level: str = "WARNING") -> None:
    """Configure logging for the application."""
    level = getattr(logging, log_level.upper(), logging.WARNING)
    for logger in _ALL_LOGGERS:
        logger.logger.setLevel(level)
