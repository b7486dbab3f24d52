"""
Error reporting for depbundle.

Manifest, registry and installation failures are logged here, with
credentials stripped from messages and URLs, before the caller raises the
matching ``BundleError``. Nothing in this module swallows a failure.
"""

import logging
import re
import sys
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Deque, Dict, List, Optional
from urllib.parse import urlparse


class ErrorLevel(Enum):
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


class ErrorCategory(Enum):
    """Where in the pipeline an error was raised."""

    PARSING = "PARSING"
    EVALUATION = "EVALUATION"
    REGISTRY = "REGISTRY"
    INSTALLATION = "INSTALLATION"
    NETWORK = "NETWORK"
    CONFIGURATION = "CONFIGURATION"
    FILESYSTEM = "FILESYSTEM"


@dataclass
class ErrorContext:
    """One reported failure and what is known about it."""

    level: ErrorLevel
    category: ErrorCategory
    message: str
    module: str
    function: str
    details: Dict[str, Any] = field(default_factory=dict)
    exception: Optional[Exception] = None
    suggestions: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "level": self.level.value,
            "category": self.category.value,
            "message": self.message,
            "location": f"{self.module}.{self.function}",
            "details": self.details,
            "exception_type": type(self.exception).__name__ if self.exception else None,
            "suggestions": self.suggestions,
        }


# Source URLs in manifests and config files may carry credentials
_URL_CREDENTIALS = re.compile(r"(https?://)[^@\s/]+@")
_TOKEN_ASSIGNMENT = re.compile(r"(token|password|secret)(\s*[:=]\s*)\S+", re.IGNORECASE)


def redact(text: str) -> str:
    """Strip URL userinfo and ``token=...`` style secrets from ``text``."""
    text = _URL_CREDENTIALS.sub(r"\1[REDACTED]@", text)
    return _TOKEN_ASSIGNMENT.sub(r"\1\2[REDACTED]", text)


class SecureLogger:
    """Logger that redacts credentials before anything is written."""

    def __init__(self, name: str, level: int = logging.WARNING):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(level)

        if not self.logger.handlers:
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(
                logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
            )
            self.logger.addHandler(handler)

    def _redact_details(self, details: Dict[str, Any]) -> Dict[str, Any]:
        return {
            key: redact(value) if isinstance(value, str) else value
            for key, value in details.items()
        }

    def log_error_context(self, context: ErrorContext) -> None:
        data = context.to_dict()
        data["details"] = self._redact_details(context.details)
        if context.exception:
            data["exception_message"] = redact(str(context.exception))
        message = redact(context.message)
        self.logger.log(getattr(logging, context.level.value), f"{message} | {data}")


class ErrorHandler:
    """Central place every module reports failures through."""

    def __init__(
        self,
        logger_name: str = "depbundle",
        log_level: int = logging.WARNING,
        max_reported: int = 50,
    ):
        self.logger = SecureLogger(logger_name, log_level)
        # Most recent contexts only; counts cover the whole process
        self.reported: Deque[ErrorContext] = deque(maxlen=max_reported)
        self.error_stats: Dict[ErrorCategory, int] = {}

    def set_level(self, log_level: int) -> None:
        self.logger.logger.setLevel(log_level)

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
        """
        Log a failure and remember it.

        Returns:
            ErrorContext: The created error context
        """
        context = ErrorContext(
            level=level,
            category=category,
            message=message,
            module=module,
            function=function,
            details=details or {},
            exception=exception,
            suggestions=suggestions or [],
        )
        self.reported.append(context)
        self.error_stats[category] = self.error_stats.get(category, 0) + 1
        self.logger.log_error_context(context)
        return context

    def warning(
        self, category: ErrorCategory, message: str, module: str, function: str, **kwargs
    ) -> ErrorContext:
        return self.handle_error(
            ErrorLevel.WARNING, category, message, module, function, **kwargs
        )

    def error(
        self, category: ErrorCategory, message: str, module: str, function: str, **kwargs
    ) -> ErrorContext:
        return self.handle_error(
            ErrorLevel.ERROR, category, message, module, function, **kwargs
        )

    def count(self, category: ErrorCategory) -> int:
        return self.error_stats.get(category, 0)

    def clear(self) -> None:
        self.reported.clear()
        self.error_stats.clear()


_global_error_handler: Optional[ErrorHandler] = None


def get_error_handler() -> ErrorHandler:
    """Return the process-wide error handler, creating it on first use."""
    global _global_error_handler
    if _global_error_handler is None:
        _global_error_handler = ErrorHandler()
    return _global_error_handler


def log_parsing_error(
    message: str,
    module: str,
    function: str,
    line: Optional[int] = None,
    column: Optional[int] = None,
    file_path: Optional[str] = None,
    exception: Optional[Exception] = None,
) -> ErrorContext:
    """
    Report a manifest syntax error.

    Args:
        message: Error message
        module: Module name
        function: Function name
        line: Line where reading of the failing form started
        column: Column where reading of the failing form started
        file_path: Manifest being read (only its name is logged)
        exception: The underlying syntax error
    """
    details: Dict[str, Any] = {}
    if line is not None:
        details["line"] = line
    if column is not None:
        details["column"] = column
    if file_path is not None:
        details["file_path"] = Path(file_path).name

    return get_error_handler().warning(
        ErrorCategory.PARSING,
        message,
        module,
        function,
        details=details,
        exception=exception,
        suggestions=[
            "Check that every opening parenthesis is closed",
            "Check that every string literal is terminated",
        ],
    )


def log_evaluation_error(
    message: str,
    module: str,
    function: str,
    directive: Optional[str] = None,
    exception: Optional[Exception] = None,
) -> ErrorContext:
    details: Dict[str, Any] = {}
    if directive is not None:
        details["directive"] = directive

    return get_error_handler().warning(
        ErrorCategory.EVALUATION,
        message,
        module,
        function,
        details=details,
        exception=exception,
    )


def log_network_error(
    message: str,
    module: str,
    function: str,
    url: Optional[str] = None,
    status_code: Optional[int] = None,
    exception: Optional[Exception] = None,
) -> ErrorContext:
    """
    Report a failed archive request.

    Only scheme, host, port and path of ``url`` are logged.
    """
    details: Dict[str, Any] = {}
    if url is not None:
        parsed = urlparse(url)
        netloc = parsed.hostname or ""
        if parsed.port:
            netloc += f":{parsed.port}"
        details["url"] = f"{parsed.scheme}://{netloc}{parsed.path}"
    if status_code is not None:
        details["status_code"] = status_code

    return get_error_handler().error(
        ErrorCategory.NETWORK,
        message,
        module,
        function,
        details=details,
        exception=exception,
        suggestions=["Verify the source URL in the manifest is correct"],
    )


def log_installation_error(
    message: str,
    module: str,
    function: str,
    package_name: Optional[str] = None,
    exception: Optional[Exception] = None,
) -> ErrorContext:
    details: Dict[str, Any] = {}
    if package_name is not None:
        details["package_name"] = package_name

    return get_error_handler().error(
        ErrorCategory.INSTALLATION,
        message,
        module,
        function,
        details=details,
        exception=exception,
        suggestions=["Fix the cause and run install again"],
    )
