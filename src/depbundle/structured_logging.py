"""
Structured logging configuration for depbundle.

Provides consistent, machine-readable events for manifest reading,
evaluation, installation and registry traffic.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .error_handling import get_error_handler

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


class BundleLogger:
    """Structured logger that stamps every event with the current manifest."""

    def __init__(self, name: str):
        self.logger = logging.getLogger(f"depbundle.{name}")
        self._setup_logger()
        self.context: Dict[str, Any] = {}

    def _setup_logger(self) -> None:
        if not self.logger.handlers:
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(StructuredFormatter())
            self.logger.addHandler(handler)
            self.logger.setLevel(logging.WARNING)
            self.logger.propagate = False

    def set_context(self, manifest_path: Optional[str] = None) -> None:
        self.context = {}
        if manifest_path:
            self.context["manifest_path"] = manifest_path

    def clear_context(self) -> None:
        self.context.clear()

    def _log(self, level: str, event_type: str, **kwargs) -> None:
        log_data = {"event_type": event_type, **self.context, **kwargs}
        getattr(self.logger, level)(event_type, extra=log_data)

    def info(self, event_type: str, **kwargs) -> None:
        self._log("info", event_type, **kwargs)

    def warning(self, event_type: str, **kwargs) -> None:
        self._log("warning", event_type, **kwargs)

    def error(self, event_type: str, **kwargs) -> None:
        self._log("error", event_type, **kwargs)

    def debug(self, event_type: str, **kwargs) -> None:
        self._log("debug", event_type, **kwargs)


_reader_logger = BundleLogger("reader")
_evaluator_logger = BundleLogger("evaluator")
_installer_logger = BundleLogger("installer")
_registry_logger = BundleLogger("registry")

_ALL_LOGGERS: List[BundleLogger] = [
    _reader_logger,
    _evaluator_logger,
    _installer_logger,
    _registry_logger,
]


def get_reader_logger() -> BundleLogger:
    return _reader_logger


def get_evaluator_logger() -> BundleLogger:
    return _evaluator_logger


def get_installer_logger() -> BundleLogger:
    return _installer_logger


def get_registry_logger() -> BundleLogger:
    return _registry_logger


def log_manifest_read(file_path: str, form_count: int) -> None:
    """Log a successfully read manifest."""
    get_reader_logger().debug(
        "manifest_read", file_path=file_path, form_count=form_count
    )


def log_bundle_evaluated(
    name: Optional[str], runtime_count: int, development_count: int
) -> None:
    """Log the result of evaluating a manifest."""
    get_evaluator_logger().debug(
        "bundle_evaluated",
        package_name=name,
        runtime_dependencies=runtime_count,
        development_dependencies=development_count,
    )


def log_install_start(total_dependencies: int) -> None:
    get_installer_logger().info(
        "install_started", total_dependencies=total_dependencies
    )


def log_install_complete(installed_count: int, missing_count: int) -> None:
    logger = get_installer_logger()
    log_data = {"installed": installed_count, "missing": missing_count}
    if missing_count:
        logger.warning("install_incomplete", **log_data)
    else:
        logger.info("install_completed", **log_data)


def log_dependency_skipped(package_name: str) -> None:
    get_installer_logger().debug("dependency_already_installed", package_name=package_name)


def log_dependency_missing(package_name: str) -> None:
    get_installer_logger().warning("dependency_unavailable", package_name=package_name)


def log_package_installed(package_name: str, version: Optional[str] = None) -> None:
    log_data: Dict[str, Any] = {"package_name": package_name}
    if version is not None:
        log_data["version"] = version
    get_installer_logger().info("package_installed", **log_data)


def log_registry_refresh(source_count: int, package_count: int) -> None:
    get_registry_logger().info(
        "registry_refreshed", sources=source_count, packages=package_count
    )


def set_manifest_context(manifest_path: Optional[str] = None) -> None:
    """Set the manifest context on every logger."""
    for logger in _ALL_LOGGERS:
        logger.set_context(manifest_path)


def clear_manifest_context() -> None:
    for logger in _ALL_LOGGERS:
        logger.clear_context()


def configure_logging(log_level: str = "WARNING") -> None:
    """Set the level of every depbundle logger and of the error handler."""
    level = getattr(logging, log_level.upper(), logging.WARNING)
    for logger in _ALL_LOGGERS:
        logger.logger.setLevel(level)
    get_error_handler().set_level(level)
