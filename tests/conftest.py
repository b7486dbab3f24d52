"""
Shared fixtures for depbundle tests.
"""

from pathlib import Path

import pytest

from depbundle.cli_config import reset_config
from depbundle.exceptions import RegistryError
from depbundle.registry_clients import PackageRef, RegistryClient


class FakeRegistryClient(RegistryClient):
    """In-memory registry that records every call made to it."""

    def __init__(
        self,
        installed=(),
        available=None,
        failing=None,
        package_files=None,
        upgrades=(),
    ):
        self.installed = set(installed)
        self.available = dict(available or {})
        self.failing = dict(failing or {})
        self.package_files = dict(package_files or {})
        self.upgrades = list(upgrades)
        self.sources = []
        self.installed_packages = []
        self.calls = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        return None

    def add_source(self, source):
        self.calls.append(("add_source", source.alias))
        self.sources.append(source)

    def refresh_index(self):
        self.calls.append(("refresh_index",))

    def initialize(self):
        self.calls.append(("initialize",))

    def is_installed(self, name):
        self.calls.append(("is_installed", name))
        return name in self.installed

    def find_available_packages(self, name):
        self.calls.append(("find_available_packages", name))
        if name in self.available:
            return [PackageRef(name, self.available[name], "fake")]
        return []

    def install(self, package):
        self.calls.append(("install", package.name))
        if package.name in self.failing:
            raise self.failing[package.name]
        self.installed.add(package.name)
        self.installed_packages.append(package.name)

    def find_upgrades(self):
        self.calls.append(("find_upgrades",))
        return list(self.upgrades)

    def upgrade_all(self):
        self.calls.append(("upgrade_all",))
        return list(self.upgrades)

    def package_from_file(self, path):
        name = Path(path).name
        self.calls.append(("package_from_file", name))
        if name not in self.package_files:
            raise RegistryError(f"Package file does not exist: {path}")
        return self.package_files[name]


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Keep user and project config files and DEPBUNDLE_* variables out of tests."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.chdir(tmp_path)
    for variable in [
        "DEPBUNDLE_MANIFEST",
        "DEPBUNDLE_INSTALL_DIR",
        "DEPBUNDLE_USER_AGENT",
        "DEPBUNDLE_CONNECT_TIMEOUT",
        "DEPBUNDLE_READ_TIMEOUT",
        "DEPBUNDLE_LOG_LEVEL",
    ]:
        monkeypatch.delenv(variable, raising=False)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def temp_dir(tmp_path):
    """Project directory for manifests and package files."""
    project = tmp_path / "project"
    project.mkdir()
    return project


@pytest.fixture
def make_registry():
    """Factory for fake registry clients."""
    return FakeRegistryClient


@pytest.fixture
def write_manifest(temp_dir):
    """Write a Bundlefile into the project directory and return its path."""

    def _write(text, name="Bundlefile"):
        path = temp_dir / name
        path.write_text(text, encoding="utf-8")
        return path

    return _write
