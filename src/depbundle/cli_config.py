"""
Configuration management for depbundle.

Settings come from dataclass defaults, then an optional project or user
config file, then ``DEPBUNDLE_*`` environment variables.
"""

import json
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.markup import escape

try:
    import yaml

    HAS_YAML = True
except ImportError:
    HAS_YAML = False

console = Console(stderr=True)


@dataclass
class ManifestConfig:
    """Where the manifest lives and how it is named."""

    filename: str = "Bundlefile"


@dataclass
class SourcesConfig:
    """Additional registry aliases layered under the built-in table."""

    aliases: Dict[str, str] = field(default_factory=dict)


@dataclass
class InstallConfig:
    """Settings for the reference archive client."""

    install_dir: str = ".depbundle/packages"
    index_filename: str = "archive-contents.json"


@dataclass
class NetworkConfig:
    """Network configuration for registry access."""

    user_agent: str = "depbundle/1.0.0"
    connect_timeout: float = 10.0
    read_timeout: float = 30.0


@dataclass
class LoggingConfig:
    """Logging and error handling configuration."""

    log_level: str = "WARNING"


@dataclass
class BundleConfig:
    """Main configuration containing all subsections."""

    manifest: ManifestConfig = field(default_factory=ManifestConfig)
    sources: SourcesConfig = field(default_factory=SourcesConfig)
    install: InstallConfig = field(default_factory=InstallConfig)
    network: NetworkConfig = field(default_factory=NetworkConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


_global_config: Optional[BundleConfig] = None

_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def validate_config_values(config: BundleConfig) -> List[str]:
    """
    Validate configuration values and return any errors.

    Args:
        config: Configuration to validate

    Returns:
        List[str]: List of validation errors (empty if valid)
    """
    errors = []

    if not config.manifest.filename:
        errors.append("manifest.filename must not be empty")

    for alias, url in config.sources.aliases.items():
        if not isinstance(url, str) or not url.startswith(("http://", "https://", "file://")):
            errors.append(f"sources.aliases.{alias} must be an http(s) or file URL")

    if not config.install.install_dir:
        errors.append("install.install_dir must not be empty")
    if not config.install.index_filename:
        errors.append("install.index_filename must not be empty")

    if config.network.connect_timeout <= 0:
        errors.append("network.connect_timeout must be positive")
    if config.network.read_timeout <= 0:
        errors.append("network.read_timeout must be positive")

    if config.logging.log_level.upper() not in _VALID_LOG_LEVELS:
        errors.append(f"logging.log_level must be one of {sorted(_VALID_LOG_LEVELS)}")

    return errors


def load_config_file(config_path: Path) -> Optional[Dict[str, Any]]:
    """Load config from file."""
    if not config_path.exists():
        return None

    try:
        with open(config_path, encoding="utf-8") as f:
            if config_path.suffix.lower() in [".yaml", ".yml"]:
                if HAS_YAML:
                    return yaml.safe_load(f)
                console.print(
                    "⚠️  PyYAML not installed, skipping YAML config", style="yellow"
                )
                return None
            elif config_path.suffix.lower() == ".json":
                return json.load(f)
    except Exception as e:
        console.print(
            f"⚠️  Error loading config from {escape(str(config_path))}: {escape(str(e))}",
            style="yellow",
        )

    return None


def find_config_file() -> Optional[Path]:
    """Find config file in standard locations."""
    locations = [
        Path.cwd() / ".depbundle.json",
        Path.cwd() / ".depbundle.yaml",
        Path.cwd() / ".depbundle.yml",
        Path.home() / ".config" / "depbundle" / "config.json",
        Path.home() / ".config" / "depbundle" / "config.yaml",
    ]

    for location in locations:
        if location.exists():
            return location

    return None


def load_environment_overrides(config: BundleConfig) -> None:
    """Apply ``DEPBUNDLE_*`` environment variable overrides."""

    def get_env_float(key: str) -> Optional[float]:
        try:
            return float(os.environ[key]) if key in os.environ else None
        except ValueError:
            console.print(f"⚠️  Invalid float value for {key}, using default", style="yellow")
            return None

    if manifest_name := os.environ.get("DEPBUNDLE_MANIFEST"):
        config.manifest.filename = manifest_name
    if install_dir := os.environ.get("DEPBUNDLE_INSTALL_DIR"):
        config.install.install_dir = install_dir
    if user_agent := os.environ.get("DEPBUNDLE_USER_AGENT"):
        config.network.user_agent = user_agent
    if connect_timeout := get_env_float("DEPBUNDLE_CONNECT_TIMEOUT"):
        config.network.connect_timeout = connect_timeout
    if read_timeout := get_env_float("DEPBUNDLE_READ_TIMEOUT"):
        config.network.read_timeout = read_timeout
    if log_level := os.environ.get("DEPBUNDLE_LOG_LEVEL"):
        config.logging.log_level = log_level.upper()


def apply_config_section(
    config: Any, section_data: Dict[str, Any], section_name: str
) -> None:
    """Apply configuration from dictionary to config section."""
    for key, value in section_data.items():
        if hasattr(config, key):
            if isinstance(getattr(config, key), dict) and isinstance(value, dict):
                getattr(config, key).update(value)
            else:
                setattr(config, key, value)
        else:
            console.print(
                f"⚠️  Unknown config key in {section_name}: {escape(str(key))}",
                style="yellow",
            )


def apply_config_data(config: BundleConfig, file_config: Dict[str, Any]) -> None:
    """Apply every known section of a parsed config file."""
    for section_name in ("manifest", "sources", "install", "network", "logging"):
        if section_name in file_config and isinstance(file_config[section_name], dict):
            apply_config_section(
                getattr(config, section_name), file_config[section_name], section_name
            )


def load_config() -> BundleConfig:
    """Load configuration from file and environment."""
    global _global_config

    if _global_config is not None:
        return _global_config

    config = BundleConfig()

    config_file = find_config_file()
    if config_file:
        file_config = load_config_file(config_file)
        if file_config:
            apply_config_data(config, file_config)

    load_environment_overrides(config)

    validation_errors = validate_config_values(config)
    if validation_errors:
        console.print("⚠️  Configuration validation errors:", style="red")
        for error in validation_errors:
            console.print(f"  • {escape(error)}", style="red")

    _global_config = config
    return config


def get_config() -> BundleConfig:
    """Get the global configuration instance."""
    global _global_config
    if _global_config is None:
        _global_config = load_config()
    return _global_config


def reset_config() -> None:
    """Reset the global configuration (useful for testing)."""
    global _global_config
    _global_config = None


def create_sample_config() -> str:
    """Generate a sample configuration file from the defaults."""
    sample = asdict(BundleConfig())
    sample["sources"]["aliases"] = {"internal": "https://packages.example.com/archive/"}
    return json.dumps(sample, indent=2)
