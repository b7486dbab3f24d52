"""
Exception taxonomy for depbundle.

Every error carries an ``ErrorKind`` so callers can branch on the kind of
failure without caring about the concrete class.
"""

from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, List, Optional, Sequence

if TYPE_CHECKING:
    from .dependency import Dependency
    from .reader import SourcePosition


class ErrorKind(Enum):
    """Closed set of failure kinds."""

    BUNDLE = "BUNDLE"
    PARSE = "PARSE"
    MANIFEST_NOT_FOUND = "MANIFEST_NOT_FOUND"
    EVALUATION = "EVALUATION"
    UNKNOWN_REGISTRY_ALIAS = "UNKNOWN_REGISTRY_ALIAS"
    UNKNOWN_DIRECTIVE = "UNKNOWN_DIRECTIVE"
    MALFORMED_DIRECTIVE = "MALFORMED_DIRECTIVE"
    NOT_A_PACKAGE = "NOT_A_PACKAGE"
    INSTALLATION = "INSTALLATION"
    MISSING_DEPENDENCIES = "MISSING_DEPENDENCIES"
    FAILED_INSTALLATION = "FAILED_INSTALLATION"
    REGISTRY = "REGISTRY"


class BundleError(Exception):
    """Base class for all depbundle errors."""

    kind = ErrorKind.BUNDLE

    def is_kind(self, kind: ErrorKind) -> bool:
        """True if this error is ``kind`` or a more specific kind of it."""
        return any(getattr(cls, "kind", None) is kind for cls in type(self).__mro__)


class ManifestSyntaxError(ValueError):
    """Low-level syntax failure raised by the s-expression reader."""

    def __init__(self, message: str, offset: int):
        super().__init__(message)
        self.message = message
        self.offset = offset


class ParseError(BundleError):
    """Malformed manifest syntax, positioned at the form that failed to read."""

    kind = ErrorKind.PARSE

    def __init__(
        self,
        position: "SourcePosition",
        cause: Exception,
        file_path: Optional[str] = None,
    ):
        self.position = position
        self.cause = cause
        self.file_path = file_path
        location = f"{file_path}:" if file_path else ""
        super().__init__(
            f"{location}{position.line}:{position.column}: {cause}"
        )


class ManifestNotFound(BundleError):
    kind = ErrorKind.MANIFEST_NOT_FOUND

    def __init__(self, path: Path):
        self.path = path
        super().__init__(f"Manifest does not exist: {path}")


class EvaluationError(BundleError):
    """Base class for failures while evaluating manifest directives."""

    kind = ErrorKind.EVALUATION


class UnknownRegistryAlias(EvaluationError):
    kind = ErrorKind.UNKNOWN_REGISTRY_ALIAS

    def __init__(self, alias: str):
        self.alias = alias
        super().__init__(f"Unknown package archive: {alias}")


class UnknownDirective(EvaluationError):
    kind = ErrorKind.UNKNOWN_DIRECTIVE

    def __init__(self, tag: Any):
        self.tag = tag
        super().__init__(f"Unknown directive: {tag}")


class MalformedDirective(EvaluationError):
    kind = ErrorKind.MALFORMED_DIRECTIVE

    def __init__(self, tag: str, reason: str):
        self.tag = tag
        self.reason = reason
        super().__init__(f"Malformed {tag} directive: {reason}")


class NotAPackage(BundleError):
    """The bundle lacks a name, version or description."""

    kind = ErrorKind.NOT_A_PACKAGE

    def __init__(self, message: str = "Bundle does not describe a package"):
        super().__init__(message)


class InstallationError(BundleError):
    kind = ErrorKind.INSTALLATION


class MissingDependencies(InstallationError):
    """Declared dependencies with no available package in any source."""

    kind = ErrorKind.MISSING_DEPENDENCIES

    def __init__(self, dependencies: Sequence["Dependency"]):
        self.dependencies: List["Dependency"] = list(dependencies)
        names = ", ".join(dep.name for dep in self.dependencies)
        super().__init__(f"Missing dependencies: {names}")


class FailedInstallation(InstallationError):
    """An available package raised while being installed."""

    kind = ErrorKind.FAILED_INSTALLATION

    def __init__(self, dependency: "Dependency", cause: Exception):
        self.dependency = dependency
        self.cause = cause
        super().__init__(f"Failed to install {dependency.name}: {cause}")


class RegistryError(BundleError):
    """Failure inside the reference registry client."""

    kind = ErrorKind.REGISTRY
