"""
Error handling for dep-buddy.

Collaborators (parsers, registry clients, the scanner and the state decoder)
report problems here instead of aborting a run. Each report is logged with
sensitive values redacted and dispatched to any registered callbacks.
"""

import logging
import re
import sys
import traceback
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlparse


class ErrorLevel(Enum):
    """Severity of a reported problem."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class ErrorCategory(Enum):
    """Which stage of a bot run a problem came from."""

    PARSING = "PARSING"
    NETWORK = "NETWORK"
    VERSIONING = "VERSIONING"
    DECODING = "DECODING"
    CONFIGURATION = "CONFIGURATION"
    FILESYSTEM = "FILESYSTEM"


@dataclass
class ErrorContext:
    """One reported problem, as handed to callbacks."""

    level: ErrorLevel
    category: ErrorCategory
    message: str
    module: str
    function: str
    details: Dict[str, Any] = field(default_factory=dict)
    exception: Optional[Exception] = None
    traceback_info: Optional[str] = None
    suggestions: List[str] = field(default_factory=list)

    @property
    def stat_key(self) -> str:
        return f"{self.category.value}_{self.level.value}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "level": self.level.value,
            "category": self.category.value,
            "message": self.message,
            "where": f"{self.module}.{self.function}",
            "details": self.details,
            "exception_type": type(self.exception).__name__ if self.exception else None,
            "suggestions": self.suggestions,
        }


# GitHub tokens, bearer headers and user:password@ URL credentials
_SENSITIVE_PATTERNS = [
    (re.compile(r'token["\s]*[:=]["\s]*([a-zA-Z0-9_\-+=/.]{8,})', re.I), 'token="[REDACTED]"'),
    (re.compile(r"(https?://[^@\s/]+:)[^@\s]+@", re.I), r"\1[REDACTED]@"),
    (re.compile(r"(Authorization:\s*\w+\s+)\S+", re.I), r"\1[REDACTED]"),
    (re.compile(r"\bgh[pousr]_[A-Za-z0-9]{20,}\b"), "[REDACTED]"),
]

_SENSITIVE_KEYS = ("token", "password", "secret", "credential", "auth")


class SecureLogger:
    """Writes error reports to stderr with credentials stripped."""

    def __init__(self, name: str, level: int = logging.WARNING):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(level)

        if not self.logger.handlers:
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(logging.Formatter("%(levelname)s [%(name)s] %(message)s"))
            self.logger.addHandler(handler)

    def _sanitize_message(self, message: str) -> str:
        for pattern, replacement in _SENSITIVE_PATTERNS:
            message = pattern.sub(replacement, message)
        return message

    def _sanitize_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        sanitized: Dict[str, Any] = {}
        for key, value in data.items():
            if any(marker in str(key).lower() for marker in _SENSITIVE_KEYS):
                sanitized[key] = "[REDACTED]"
            elif isinstance(value, dict):
                sanitized[key] = self._sanitize_dict(value)
            elif isinstance(value, str):
                sanitized[key] = self._sanitize_message(value)
            else:
                sanitized[key] = value
        return sanitized

    def log_error_context(self, context: ErrorContext) -> None:
        parts = [f"{context.category.value}: {self._sanitize_message(context.message)}"]
        if context.details:
            details = self._sanitize_dict(context.details)
            parts.append(", ".join(f"{k}={v}" for k, v in details.items()))
        if context.exception is not None:
            parts.append(f"caused by {type(context.exception).__name__}")

        level = getattr(logging, context.level.value, logging.WARNING)
        self.logger.log(level, " | ".join(parts))
        if context.suggestions and self.logger.isEnabledFor(logging.DEBUG):
            for suggestion in context.suggestions:
                self.logger.debug(f"  hint: {suggestion}")


ErrorCallback = Callable[[ErrorContext], None]


class ErrorHandler:
    """
    Collects problems reported during a run.

    Keeps a count per ``CATEGORY_LEVEL`` so the CLI can summarize what a scan
    skipped, and fans every report out to callbacks registered for its
    category as well as to the catch-all callbacks.
    """

    def __init__(
        self,
        logger_name: str = "dep_buddy",
        log_level: int = logging.WARNING,
        enable_callbacks: bool = True,
    ):
        self.logger = SecureLogger(logger_name, log_level)
        self.enable_callbacks = enable_callbacks
        self.error_callbacks: Dict[Optional[ErrorCategory], List[ErrorCallback]] = {}
        self.error_stats: Dict[str, int] = {}

    def register_callback(
        self, callback: ErrorCallback, category: Optional[ErrorCategory] = None
    ) -> None:
        """
        Register a callback for one category, or for every report when
        ``category`` is None.
        """
        if self.enable_callbacks:
            self.error_callbacks.setdefault(category, []).append(callback)

    def _dispatch(self, context: ErrorContext) -> None:
        callbacks = self.error_callbacks.get(context.category, []) + self.error_callbacks.get(
            None, []
        )
        for callback in callbacks:
            try:
                callback(context)
            except Exception as cb_error:
                self.logger.logger.error(
                    f"Error callback {getattr(callback, '__name__', callback)!r} failed: {cb_error}"
                )

    def handle_error(
        self,
        level: ErrorLevel,
        category: ErrorCategory,
        message: str,
        module: str,
        function: str,
        exception: Optional[Exception] = None,
        details: Optional[Dict[str, Any]] = None,
        suggestions: Optional[List[str]] = None,
    ) -> ErrorContext:
        context = ErrorContext(
            level=level,
            category=category,
            message=message,
            module=module,
            function=function,
            details=details or {},
            exception=exception,
            traceback_info=traceback.format_exc() if exception else None,
            suggestions=suggestions or [],
        )
        self.error_stats[context.stat_key] = self.error_stats.get(context.stat_key, 0) + 1
        self.logger.log_error_context(context)
        if self.enable_callbacks:
            self._dispatch(context)
        return context

    def warning(
        self, category: ErrorCategory, message: str, module: str, function: str, **kwargs
    ) -> ErrorContext:
        return self.handle_error(ErrorLevel.WARNING, category, message, module, function, **kwargs)

    def error(
        self, category: ErrorCategory, message: str, module: str, function: str, **kwargs
    ) -> ErrorContext:
        return self.handle_error(ErrorLevel.ERROR, category, message, module, function, **kwargs)

    def get_error_stats(self) -> Dict[str, int]:
        return dict(self.error_stats)

    def reset_stats(self) -> None:
        self.error_stats.clear()


_global_error_handler: Optional[ErrorHandler] = None


def get_error_handler() -> ErrorHandler:
    """Return the process-wide handler, creating it on first use."""
    global _global_error_handler
    if _global_error_handler is None:
        _global_error_handler = ErrorHandler()
    return _global_error_handler


def setup_error_handling(
    log_level: int = logging.WARNING,
    enable_callbacks: bool = True,
    logger_name: str = "dep_buddy",
) -> ErrorHandler:
    """Replace the process-wide handler, dropping callbacks and stats."""
    global _global_error_handler
    _global_error_handler = ErrorHandler(logger_name, log_level, enable_callbacks)
    return _global_error_handler


def _sanitize_url(url: str) -> str:
    parsed = urlparse(url)
    netloc = parsed.hostname or ""
    if parsed.port:
        netloc += f":{parsed.port}"
    return f"{parsed.scheme}://{netloc}{parsed.path}"


def log_parsing_error(
    message: str,
    module: str,
    function: str,
    file_path: Optional[str] = None,
    exception: Optional[Exception] = None,
) -> None:
    """Report a manifest that could not be read; only its file name is kept."""
    details = {"file_path": Path(file_path).name} if file_path is not None else {}
    get_error_handler().warning(
        ErrorCategory.PARSING,
        message,
        module,
        function,
        details=details,
        exception=exception,
        suggestions=[
            "Check the manifest's syntax and encoding",
            "Add the manifest to packages.ignore_paths if the bot should skip it",
        ],
    )


def log_network_error(
    message: str,
    module: str,
    function: str,
    url: Optional[str] = None,
    status_code: Optional[int] = None,
    exception: Optional[Exception] = None,
) -> None:
    """Report a failed registry lookup. Query strings and credentials are dropped from ``url``."""
    details: Dict[str, Any] = {}
    if url is not None:
        details["url"] = _sanitize_url(url)
    if status_code is not None:
        details["status_code"] = status_code

    suggestions = ["Check connectivity to the registry", "Check network.registry_urls"]
    if status_code in (403, 429):
        suggestions.append("Set GITHUB_TOKEN or lower network.rate_limit")
    get_error_handler().error(
        ErrorCategory.NETWORK,
        message,
        module,
        function,
        details=details,
        exception=exception,
        suggestions=suggestions,
    )


def log_decoding_error(
    message: str,
    module: str,
    function: str,
    exception: Optional[Exception] = None,
) -> None:
    """Report an unreadable state block; decoding continues from the tables."""
    get_error_handler().warning(
        ErrorCategory.DECODING,
        message,
        module,
        function,
        exception=exception,
        suggestions=["The rendered tables are used instead of the state block"],
    )
