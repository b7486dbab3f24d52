"""
The evaluated form of a manifest.

A ``Bundle`` always carries runtime and development dependency lists. It
describes a package only when name, version and description are all set;
accessors that need the package identity check this every time they run.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple, Union

from .dependency import Dependency
from .exceptions import NotAPackage
from .sources import SourceRegistrySpec

DESCRIPTOR_SUFFIX = "-pkg.bundle"


@dataclass(frozen=True)
class PackageIdentity:
    name: str
    version: str
    description: str


@dataclass(frozen=True)
class Bundle:
    """Package identity (optional) plus the declared dependencies."""

    name: Optional[str] = None
    version: Optional[str] = None
    description: Optional[str] = None
    runtime_dependencies: Tuple[Dependency, ...] = ()
    development_dependencies: Tuple[Dependency, ...] = ()
    sources: Tuple[SourceRegistrySpec, ...] = ()
    project_root: Optional[Path] = None


def is_package(bundle: Bundle) -> bool:
    return bool(bundle.name and bundle.version and bundle.description)


def ensure_package(bundle: Bundle) -> PackageIdentity:
    """
    Return the bundle's package identity.

    Raises:
        NotAPackage: If name, version or description is missing
    """
    if not is_package(bundle):
        missing = [
            attr for attr in ("name", "version", "description") if not getattr(bundle, attr)
        ]
        raise NotAPackage(f"Bundle does not describe a package (missing {', '.join(missing)})")
    return PackageIdentity(bundle.name, bundle.version, bundle.description)


def package_name(bundle: Bundle) -> str:
    return ensure_package(bundle).name


def package_version(bundle: Bundle) -> str:
    return ensure_package(bundle).version


def package_description(bundle: Bundle) -> str:
    return ensure_package(bundle).description


def runtime_dependencies(bundle: Bundle) -> Tuple[Dependency, ...]:
    return bundle.runtime_dependencies


def development_dependencies(bundle: Bundle) -> Tuple[Dependency, ...]:
    return bundle.development_dependencies


def all_dependencies(bundle: Bundle) -> Tuple[Dependency, ...]:
    """Development dependencies followed by runtime dependencies."""
    return bundle.development_dependencies + bundle.runtime_dependencies


def _quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def define_package_string(bundle: Bundle) -> str:
    """
    Render the package descriptor for a bundle.

    The descriptor lists runtime dependencies only, e.g.::

        (define-package "foo" "0.1.0" "Foo mode" '((bar "1.0") (baz)))
    """
    identity = ensure_package(bundle)
    requirements = []
    for dependency in bundle.runtime_dependencies:
        if dependency.version:
            requirements.append(f"({dependency.name} {_quote(dependency.version)})")
        else:
            requirements.append(f"({dependency.name})")

    return (
        f"(define-package {_quote(identity.name)} {_quote(identity.version)} "
        f"{_quote(identity.description)} '({' '.join(requirements)}))"
    )


def descriptor_path(bundle: Bundle, root: Optional[Union[str, Path]] = None) -> Path:
    """Where the package descriptor of ``bundle`` belongs."""
    identity = ensure_package(bundle)
    base = Path(root) if root is not None else (bundle.project_root or Path.cwd())
    return base / f"{identity.name}{DESCRIPTOR_SUFFIX}"


def write_descriptor(bundle: Bundle, root: Optional[Union[str, Path]] = None) -> Path:
    path = descriptor_path(bundle, root)
    path.write_text(define_package_string(bundle) + "\n", encoding="utf-8")
    return path
