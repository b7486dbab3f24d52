"""
Registry clients for querying and installing from package archives.

``RegistryClient`` is the interface the evaluator and the installer talk to.
``ArchiveRegistryClient`` implements it on top of plain HTTP archives that
publish a JSON index of their packages.
"""

import functools
import json
import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union
from urllib.parse import urljoin

import httpx
import toml
from httpx import HTTPStatusError, RequestError
from packaging.requirements import InvalidRequirement, Requirement
from packaging.version import InvalidVersion, Version

from .cli_config import get_config
from .error_handling import ErrorCategory, get_error_handler, log_network_error
from .exceptions import RegistryError
from .sources import SourceRegistrySpec
from .structured_logging import get_registry_logger, log_registry_refresh

Requirements = Tuple[Tuple[str, Optional[str]], ...]


@dataclass(frozen=True)
class PackageRef:
    """A package version offered by one of the configured sources."""

    name: str
    version: str
    source: str
    url: str = ""
    description: Optional[str] = None
    requires: Requirements = ()


@dataclass(frozen=True)
class PackageMetadata:
    """Identity and requirements read from a package file."""

    name: str
    version: str
    description: str
    requirements: Requirements = ()


@dataclass(frozen=True)
class UpgradeRecord:
    """An installed package with a newer version available."""

    name: str
    installed_version: str
    package: PackageRef

    @property
    def available_version(self) -> str:
        return self.package.version


def compare_versions(left: str, right: str) -> int:
    """Order two version strings, falling back to text order for non-PEP 440 ones."""
    try:
        left_key: Any = Version(left)
        right_key: Any = Version(right)
    except InvalidVersion:
        left_key, right_key = left, right
    return (left_key > right_key) - (left_key < right_key)


class RegistryClient(ABC):
    """Capabilities the core needs from a package registry."""

    @abstractmethod
    def add_source(self, source: SourceRegistrySpec) -> None:
        """Register an archive to search."""

    @abstractmethod
    def refresh_index(self) -> None:
        """Fetch the package index of every registered source."""

    @abstractmethod
    def initialize(self) -> None:
        """Load the set of installed packages."""

    @abstractmethod
    def is_installed(self, name: str) -> bool:
        pass

    @abstractmethod
    def find_available_packages(self, name: str) -> List[PackageRef]:
        """Available versions of ``name``, best match first."""

    @abstractmethod
    def install(self, package: PackageRef) -> None:
        pass

    @abstractmethod
    def find_upgrades(self) -> List[UpgradeRecord]:
        pass

    @abstractmethod
    def upgrade_all(self) -> List[UpgradeRecord]:
        """Install every available upgrade and return what was upgraded."""

    @abstractmethod
    def package_from_file(self, path: Path) -> PackageMetadata:
        pass


def _normalize_version(value: Any) -> Optional[str]:
    if value is None:
        return None
    version = str(value).strip()
    if not version or version == "*":
        return None
    return version


def _requirements_from_table(table: Dict[str, Any]) -> Requirements:
    """Requirements from a ``[dependencies]`` table (``name = "1.0"`` or ``{version = ...}``)."""
    requirements = []
    for name, spec in table.items():
        if isinstance(spec, dict):
            requirements.append((name, _normalize_version(spec.get("version"))))
        else:
            requirements.append((name, _normalize_version(spec)))
    return tuple(requirements)


def _requirements_from_strings(lines: List[str], path: Path) -> Requirements:
    """Requirements from PEP 508 strings such as ``"rich>=13"``."""
    requirements = []
    for line in lines:
        try:
            requirement = Requirement(line)
        except InvalidRequirement as e:
            raise RegistryError(f"Invalid requirement {line!r} in {path.name}: {e}")
        requirements.append((requirement.name, _normalize_version(requirement.specifier)))
    return tuple(requirements)


def parse_package_file(path: Union[str, Path]) -> PackageMetadata:
    """
    Read package identity and requirements from a TOML package file.

    Two layouts are understood:

    - a ``[package]`` table with ``name``, ``version`` and ``description``,
      plus an optional ``[dependencies]`` table;
    - a PEP 621 ``[project]`` table whose ``dependencies`` is a list of
      requirement strings.

    Raises:
        RegistryError: If the file is missing, malformed or incomplete
    """
    package_path = Path(path)
    if not package_path.is_file():
        raise RegistryError(f"Package file does not exist: {package_path}")

    try:
        data = toml.loads(package_path.read_text(encoding="utf-8"))
    except toml.TomlDecodeError as e:
        get_error_handler().error(
            ErrorCategory.REGISTRY,
            f"Invalid TOML in package file: {e}",
            "registry_clients",
            "parse_package_file",
            exception=e,
            details={"file_path": package_path.name},
        )
        raise RegistryError(f"Invalid TOML format in {package_path.name}: {e}")

    if isinstance(data.get("package"), dict):
        table = data["package"]
        dependencies = data.get("dependencies", {})
        requirements = (
            _requirements_from_table(dependencies) if isinstance(dependencies, dict) else ()
        )
    elif isinstance(data.get("project"), dict):
        table = data["project"]
        requirements = _requirements_from_strings(
            list(table.get("dependencies", [])), package_path
        )
    else:
        raise RegistryError(
            f"{package_path.name} has neither a [package] nor a [project] table"
        )

    missing = [key for key in ("name", "version", "description") if not table.get(key)]
    if missing:
        raise RegistryError(
            f"{package_path.name} is missing package fields: {', '.join(missing)}"
        )

    return PackageMetadata(
        name=str(table["name"]),
        version=str(table["version"]),
        description=str(table["description"]),
        requirements=requirements,
    )


@dataclass
class _InstalledPackage:
    name: str
    version: str
    directory: Path


def _invalid_index(source: SourceRegistrySpec, reason: str) -> RegistryError:
    message = f"Invalid index from {source.alias}: {reason}"
    get_error_handler().error(
        ErrorCategory.REGISTRY,
        message,
        "registry_clients",
        "refresh_index",
        details={"source": source.alias},
    )
    return RegistryError(message)


def _is_scalar(value: Any) -> bool:
    return isinstance(value, (str, int, float)) and not isinstance(value, bool)


def _index_requirements(
    source: SourceRegistrySpec, name: str, requires: Any
) -> Requirements:
    """``requires`` entries are ``["name"]`` or ``["name", "version"]``."""
    if not isinstance(requires, list):
        raise _invalid_index(source, f"'requires' of {name} is not a list")

    requirements = []
    for requirement in requires:
        if (
            not isinstance(requirement, list)
            or not 1 <= len(requirement) <= 2
            or not isinstance(requirement[0], str)
            or not all(_is_scalar(part) for part in requirement)
        ):
            raise _invalid_index(source, f"malformed requirement of {name}: {requirement!r}")
        version = requirement[1] if len(requirement) == 2 else None
        requirements.append((requirement[0], _normalize_version(version)))
    return tuple(requirements)


def _check_path_component(value: str, what: str) -> None:
    """Package names and versions become directory names under the install dir."""
    if not value or value in (".", "..") or "/" in value or "\\" in value:
        raise RegistryError(f"Refusing to install: unsafe package {what} {value!r}")


class ArchiveRegistryClient(RegistryClient):
    """
    Client for HTTP package archives.

    Each source publishes an index (``archive-contents.json`` by default)::

        {"packages": {"dash": {"version": "2.0.0",
                               "description": "List library",
                               "requires": [["s", "1.2"]],
                               "file": "dash-2.0.0.tar"}}}

    Installed packages are kept under ``install_dir/<name>-<version>/``.
    Use the client as a context manager so the HTTP connection pool is
    opened and closed around the work.
    """

    def __init__(
        self,
        install_dir: Optional[Union[str, Path]] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        config = get_config()
        self.install_dir = Path(install_dir or config.install.install_dir)
        self.index_filename = config.install.index_filename
        self.timeout = httpx.Timeout(
            config.network.read_timeout, connect=config.network.connect_timeout
        )
        self._headers = {
            "User-Agent": config.network.user_agent,
            "Accept": "application/json",
        }
        self._transport = transport
        self.client: Optional[httpx.Client] = None
        self.sources: Dict[str, SourceRegistrySpec] = {}
        self._index: Dict[str, List[PackageRef]] = {}
        self._installed: Dict[str, _InstalledPackage] = {}

    def __enter__(self) -> "ArchiveRegistryClient":
        self.client = httpx.Client(
            timeout=self.timeout, headers=self._headers, transport=self._transport
        )
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self.client:
            self.client.close()
            self.client = None

    def _http(self) -> httpx.Client:
        if self.client is None:
            raise RegistryError("HTTP client not initialized - use within a with block")
        return self.client

    def _get(self, url: str) -> httpx.Response:
        try:
            response = self._http().get(url)
            response.raise_for_status()
            return response
        except HTTPStatusError as e:
            log_network_error(
                "Archive request failed",
                "registry_clients",
                "_get",
                url=url,
                status_code=e.response.status_code,
                exception=e,
            )
            raise RegistryError(f"HTTP {e.response.status_code} fetching {url}")
        except RequestError as e:
            log_network_error(
                "Archive unreachable", "registry_clients", "_get", url=url, exception=e
            )
            raise RegistryError(f"Network error fetching {url}: {e}")

    def add_source(self, source: SourceRegistrySpec) -> None:
        self.sources[source.alias] = source

    def refresh_index(self) -> None:
        index: Dict[str, List[PackageRef]] = {}
        for source in self.sources.values():
            url = urljoin(source.url, self.index_filename)
            try:
                body = self._get(url).json()
            except ValueError as e:
                raise _invalid_index(source, str(e))

            packages = body.get("packages", {}) if isinstance(body, dict) else None
            if not isinstance(packages, dict):
                raise _invalid_index(source, "expected an object with a 'packages' object")

            for name, entry in packages.items():
                if not isinstance(entry, dict) or not _is_scalar(entry.get("version")):
                    raise _invalid_index(source, f"entry {name!r} has no version")
                version = str(entry["version"])
                filename = entry.get("file") or f"{name}-{version}.tar"
                if not isinstance(filename, str):
                    raise _invalid_index(source, f"'file' of {name} is not a string")
                description = entry.get("description")
                index.setdefault(name, []).append(
                    PackageRef(
                        name=name,
                        version=version,
                        source=source.alias,
                        url=urljoin(source.url, filename),
                        description=str(description) if description is not None else None,
                        requires=_index_requirements(
                            source, name, entry.get("requires", [])
                        ),
                    )
                )

        # Best first; sort is stable so earlier sources win ties
        by_version = functools.cmp_to_key(lambda a, b: compare_versions(a.version, b.version))
        for refs in index.values():
            refs.sort(key=by_version, reverse=True)

        self._index = index
        log_registry_refresh(len(self.sources), len(index))

    def initialize(self) -> None:
        installed: Dict[str, _InstalledPackage] = {}
        if self.install_dir.is_dir():
            for record_path in sorted(self.install_dir.glob("*/package.json")):
                try:
                    record = json.loads(record_path.read_text(encoding="utf-8"))
                except (OSError, ValueError) as e:
                    get_error_handler().warning(
                        ErrorCategory.FILESYSTEM,
                        "Skipping unreadable install record",
                        "registry_clients",
                        "initialize",
                        exception=e,
                        details={"file_path": str(record_path)},
                    )
                    continue
                if (
                    not isinstance(record, dict)
                    or not isinstance(record.get("name"), str)
                    or not _is_scalar(record.get("version"))
                ):
                    get_error_handler().warning(
                        ErrorCategory.FILESYSTEM,
                        "Skipping install record without name and version",
                        "registry_clients",
                        "initialize",
                        details={"file_path": str(record_path)},
                    )
                    continue
                package = _InstalledPackage(
                    record["name"], str(record["version"]), record_path.parent
                )
                current = installed.get(package.name)
                if current is None or compare_versions(package.version, current.version) > 0:
                    installed[package.name] = package
        self._installed = installed

    def is_installed(self, name: str) -> bool:
        return name in self._installed

    def find_available_packages(self, name: str) -> List[PackageRef]:
        return list(self._index.get(name, []))

    def _package_dir(self, package: PackageRef) -> Path:
        _check_path_component(package.name, "name")
        _check_path_component(package.version, "version")
        target = self.install_dir / f"{package.name}-{package.version}"
        if target.resolve().parent != self.install_dir.resolve():
            raise RegistryError(
                f"Refusing to install {package.name} outside {self.install_dir}"
            )
        return target

    def install(self, package: PackageRef) -> None:
        target = self._package_dir(package)
        response = self._get(package.url)

        try:
            target.mkdir(parents=True, exist_ok=True)
            archive_name = package.url.rsplit("/", 1)[-1] or f"{package.name}.tar"
            (target / archive_name).write_bytes(response.content)
            record = {
                "name": package.name,
                "version": package.version,
                "description": package.description,
                "source": package.source,
                "requires": [list(req) for req in package.requires],
            }
            (target / "package.json").write_text(json.dumps(record, indent=2), encoding="utf-8")
        except OSError as e:
            raise RegistryError(f"Cannot write {package.name} to {target}: {e}")

        self._installed[package.name] = _InstalledPackage(
            package.name, package.version, target
        )
        get_registry_logger().debug(
            "package_written", package_name=package.name, directory=str(target)
        )

    def find_upgrades(self) -> List[UpgradeRecord]:
        upgrades = []
        for name in sorted(self._installed):
            installed = self._installed[name]
            available = self._index.get(name)
            if available and compare_versions(available[0].version, installed.version) > 0:
                upgrades.append(UpgradeRecord(name, installed.version, available[0]))
        return upgrades

    def upgrade_all(self) -> List[UpgradeRecord]:
        upgrades = self.find_upgrades()
        for upgrade in upgrades:
            previous = self._installed[upgrade.name].directory
            self.install(upgrade.package)
            shutil.rmtree(previous, ignore_errors=True)
        return upgrades

    def package_from_file(self, path: Path) -> PackageMetadata:
        return parse_package_file(path)


def create_registry_client(
    project_root: Optional[Union[str, Path]] = None,
    transport: Optional[httpx.BaseTransport] = None,
) -> ArchiveRegistryClient:
    """Reference client whose install directory is relative to ``project_root``."""
    root = Path(project_root) if project_root is not None else Path.cwd()
    return ArchiveRegistryClient(root / get_config().install.install_dir, transport)
