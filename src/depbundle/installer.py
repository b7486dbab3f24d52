"""
Install and update orchestration.

Missing packages are collected and reported together once every other
dependency has been handled. A package that is available but fails to
install stops the run at once.
"""

from typing import List

from .bundle import Bundle, all_dependencies
from .dependency import Dependency
from .error_handling import log_installation_error
from .exceptions import FailedInstallation, MissingDependencies
from .registry_clients import RegistryClient, UpgradeRecord
from .structured_logging import (
    log_dependency_missing,
    log_dependency_skipped,
    log_install_complete,
    log_install_start,
    log_package_installed,
)


def _prepare(registry_client: RegistryClient) -> None:
    registry_client.refresh_index()
    registry_client.initialize()


def install(bundle: Bundle, registry_client: RegistryClient) -> None:
    """
    Install every dependency of ``bundle`` that is not installed yet.

    Development dependencies are processed before runtime ones. Nothing is
    asked of the registry when the bundle declares no dependencies.

    Raises:
        FailedInstallation: As soon as installing an available package fails;
            later dependencies are not examined
        MissingDependencies: After the loop, listing every dependency with no
            available package, in the order they were found
    """
    dependencies = all_dependencies(bundle)
    if not dependencies:
        return

    _prepare(registry_client)
    log_install_start(len(dependencies))

    missing: List[Dependency] = []
    installed_count = 0
    for dependency in dependencies:
        if registry_client.is_installed(dependency.name):
            log_dependency_skipped(dependency.name)
            continue

        available = registry_client.find_available_packages(dependency.name)
        if not available:
            log_dependency_missing(dependency.name)
            missing.append(dependency)
            continue

        package = available[0]
        try:
            registry_client.install(package)
        except Exception as e:
            log_installation_error(
                f"Installing {dependency.name} failed",
                "installer",
                "install",
                package_name=dependency.name,
                exception=e,
            )
            raise FailedInstallation(dependency, e) from e

        installed_count += 1
        log_package_installed(dependency.name, getattr(package, "version", None))

    log_install_complete(installed_count, len(missing))
    if missing:
        raise MissingDependencies(missing)


def update(bundle: Bundle, registry_client: RegistryClient) -> List[UpgradeRecord]:
    """Upgrade every installed package that has a newer version available."""
    _prepare(registry_client)
    return list(registry_client.upgrade_all())


def outdated(registry_client: RegistryClient) -> List[UpgradeRecord]:
    """Installed packages with a newer version available, as reported by the registry."""
    _prepare(registry_client)
    return registry_client.find_upgrades()
