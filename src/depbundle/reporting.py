"""
Console output for bundles, upgrades and installation failures.

Provides color-coded console output using Rich library.
"""

from typing import List, Optional, Sequence

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from .bundle import Bundle, is_package
from .dependency import Dependency
from .exceptions import FailedInstallation, MissingDependencies
from .registry_clients import UpgradeRecord


class BundleReporter:
    """Formats and displays bundle information."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def print_bundle(self, bundle: Bundle, manifest_path: str) -> None:
        """
        Print the identity, sources and dependencies of a bundle.

        Args:
            bundle: The evaluated manifest
            manifest_path: Path of the manifest, shown in the header
        """
        if is_package(bundle):
            header = (
                f"[bold]{escape(bundle.name)}[/bold] {escape(bundle.version)}\n"
                f"{escape(bundle.description)}"
            )
        else:
            header = "[dim]Dependency-only manifest (no package declared)[/dim]"
        self.console.print(
            Panel(
                header,
                title=f"[bold blue]📦 {escape(manifest_path)}[/bold blue]",
                border_style="blue",
            )
        )

        if bundle.sources:
            table = Table(title="Sources", box=box.ROUNDED, title_style="bold cyan")
            table.add_column("Alias", style="bold")
            table.add_column("URL")
            for source in bundle.sources:
                table.add_row(escape(source.alias), escape(source.url))
            self.console.print(table)

        self._print_dependencies("Runtime dependencies", bundle.runtime_dependencies)
        self._print_dependencies(
            "Development dependencies", bundle.development_dependencies
        )

    def _print_dependencies(self, title: str, dependencies: Sequence[Dependency]) -> None:
        if not dependencies:
            self.console.print(f"[dim]{title}: none[/dim]")
            return

        table = Table(title=title, box=box.ROUNDED, title_style="bold cyan")
        table.add_column("Package", style="bold")
        table.add_column("Version", justify="center")
        for dependency in dependencies:
            table.add_row(
                escape(dependency.name),
                escape(dependency.version) if dependency.version else "[dim]any[/dim]",
            )
        self.console.print(table)

    def print_upgrades(self, upgrades: List[UpgradeRecord], title: str) -> None:
        if not upgrades:
            self.console.print("✅ All packages are up to date.", style="green")
            return

        table = Table(title=title, box=box.ROUNDED, title_style="bold cyan")
        table.add_column("Package", style="bold")
        table.add_column("Installed", justify="center")
        table.add_column("Available", justify="center", style="green")
        table.add_column("Source")
        for upgrade in upgrades:
            table.add_row(
                escape(upgrade.name),
                escape(upgrade.installed_version),
                escape(upgrade.available_version),
                escape(upgrade.package.source),
            )
        self.console.print(table)

    def print_missing(self, error: MissingDependencies) -> None:
        lines = "\n".join(f"• {escape(str(dependency))}" for dependency in error.dependencies)
        self.console.print(
            Panel(
                lines,
                title="[bold red]❌ No package available for[/bold red]",
                border_style="red",
            )
        )

    def print_failed(self, error: FailedInstallation) -> None:
        self.console.print(
            Panel(
                f"{escape(str(error.dependency))}\n[dim]{escape(str(error.cause))}[/dim]",
                title="[bold red]❌ Installation failed[/bold red]",
                border_style="red",
            )
        )
