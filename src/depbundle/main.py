import json
from contextlib import contextmanager
from dataclasses import asdict
from pathlib import Path
from typing import Iterator, Optional, Tuple

import click
from rich.console import Console
from rich.markup import escape

from .bundle import Bundle, package_version, write_descriptor
from .cli_config import (
    BundleConfig,
    apply_config_data,
    create_sample_config,
    get_config,
    load_config_file,
    validate_config_values,
)
from .evaluator import load_bundle
from .exceptions import BundleError, FailedInstallation, MissingDependencies
from .installer import install as install_bundle
from .installer import outdated as find_outdated
from .installer import update as update_bundle
from .registry_clients import ArchiveRegistryClient, create_registry_client
from .reporting import BundleReporter
from .structured_logging import (
    clear_manifest_context,
    configure_logging,
    set_manifest_context,
)

__version__ = "1.0.0"

console = Console()

path_option = click.option(
    "--path",
    "-p",
    type=click.Path(exists=True, file_okay=False),
    default=".",
    show_default=True,
    help="Project directory containing the manifest",
)


def manifest_path_for(project_dir: str) -> Path:
    return Path(project_dir) / get_config().manifest.filename


@contextmanager
def open_bundle(project_dir: str) -> Iterator[Tuple[Bundle, ArchiveRegistryClient]]:
    """Evaluate the project's manifest with a live registry client."""
    manifest = manifest_path_for(project_dir)
    set_manifest_context(str(manifest))
    try:
        with create_registry_client(manifest.parent) as client:
            try:
                bundle = load_bundle(manifest, client)
            except BundleError as e:
                raise click.ClickException(str(e))
            yield bundle, client
    finally:
        clear_manifest_context()


@click.group(invoke_without_command=True)
@click.option("--version", is_flag=True, help="Show version information")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Override the configured log level",
)
@click.pass_context
def cli(ctx, version: bool, log_level: Optional[str]):
    """
    📦 depbundle: project-local dependency manager

    Reads the project's Bundlefile and installs the dependencies it declares.
    """
    if version:
        console.print(f"depbundle version {__version__}", style="bold blue")
        ctx.exit()

    configure_logging(log_level or get_config().logging.log_level)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


@cli.command()
@path_option
def install(path: str):
    """Install every dependency declared in the manifest."""
    reporter = BundleReporter(console)
    with open_bundle(path) as (bundle, client):
        try:
            install_bundle(bundle, client)
        except MissingDependencies as e:
            reporter.print_missing(e)
            raise click.ClickException(str(e))
        except FailedInstallation as e:
            reporter.print_failed(e)
            raise click.ClickException(str(e))
        except BundleError as e:
            raise click.ClickException(str(e))

    console.print("✅ All dependencies installed", style="green")


@cli.command()
@path_option
def update(path: str):
    """Upgrade installed packages to the newest available versions."""
    with open_bundle(path) as (bundle, client):
        try:
            upgrades = update_bundle(bundle, client)
        except BundleError as e:
            raise click.ClickException(str(e))

    BundleReporter(console).print_upgrades(upgrades, "⬆️  Upgraded packages")


@cli.command()
@path_option
def outdated(path: str):
    """List installed packages that have newer versions available."""
    with open_bundle(path) as (_, client):
        try:
            upgrades = find_outdated(client)
        except BundleError as e:
            raise click.ClickException(str(e))

    BundleReporter(console).print_upgrades(upgrades, "📋 Outdated packages")


@cli.command()
@path_option
@click.option("--json", "as_json", is_flag=True, help="Print the bundle as JSON")
def show(path: str, as_json: bool):
    """Show the package identity and dependencies declared in the manifest."""
    with open_bundle(path) as (bundle, _):
        if as_json:
            data = asdict(bundle)
            data["project_root"] = str(bundle.project_root)
            click.echo(json.dumps(data, indent=2))
        else:
            BundleReporter(console).print_bundle(bundle, str(manifest_path_for(path)))


@cli.command("package-version")
@path_option
def package_version_command(path: str):
    """Print the version of the package the manifest declares."""
    with open_bundle(path) as (bundle, _):
        try:
            click.echo(package_version(bundle))
        except BundleError as e:
            raise click.ClickException(str(e))


@cli.command()
@path_option
def package(path: str):
    """Write the package descriptor file next to the manifest."""
    with open_bundle(path) as (bundle, _):
        try:
            descriptor = write_descriptor(bundle)
        except BundleError as e:
            raise click.ClickException(str(e))

    console.print(f"✅ Wrote {escape(str(descriptor))}", style="green")


@cli.group()
def config():
    """Configuration management commands."""
    pass


@config.command("init")
@click.option(
    "--path",
    type=click.Path(),
    default=".depbundle.json",
    help="Path where to create the config file",
    show_default=True,
)
@click.option("--force", is_flag=True, help="Overwrite existing config file")
def config_init(path: str, force: bool):
    """Create a sample configuration file."""
    config_path = Path(path)

    if config_path.exists() and not force:
        console.print(
            f"⚠️  Config file already exists at {escape(str(config_path))}",
            style="yellow",
        )
        console.print("Use --force to overwrite", style="dim")
        return

    config_path.write_text(create_sample_config(), encoding="utf-8")
    console.print(
        f"✅ Created configuration file at {escape(str(config_path))}", style="green"
    )


@config.command("show")
def config_show():
    """Show the effective configuration."""
    console.print_json(data=asdict(get_config()))


@config.command("validate")
@click.argument("config_file", type=click.Path(exists=True, dir_okay=False))
def config_validate(config_file: str):
    """Validate a configuration file."""
    file_config = load_config_file(Path(config_file))
    if not file_config:
        raise click.ClickException(f"Could not read configuration from {config_file}")

    candidate = BundleConfig()
    apply_config_data(candidate, file_config)
    errors = validate_config_values(candidate)
    if errors:
        for error in errors:
            console.print(f"  • {escape(error)}", style="red")
        raise click.ClickException("Configuration is invalid")

    console.print("✅ Configuration is valid", style="green")


if __name__ == "__main__":
    cli()
