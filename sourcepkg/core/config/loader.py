"""
Configuration loader — reads package.yml into a SourcePackage.

This is the primary entry point for loading a package definition.
It reads YAML, validates against the Pydantic model, and returns a
typed domain object. One file describes exactly one package.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import ValidationError

from sourcepkg.core.models.package import SourcePackage

logger = logging.getLogger(__name__)

# Default config filename
PACKAGE_CONFIG_FILE = "package.yml"


class ConfigError(Exception):
    """Raised when the package definition is invalid or missing."""


def find_package_file(start_dir: Path | None = None) -> Path | None:
    """Search for package.yml starting from the given directory, walking up.

    Args:
        start_dir: Directory to start searching from (default: cwd).

    Returns:
        Path to package.yml, or None if not found.
    """
    current = (start_dir or Path.cwd()).resolve()

    for _ in range(20):  # safety limit
        candidate = current / PACKAGE_CONFIG_FILE
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break  # filesystem root
        current = parent

    return None


def load_package(path: Path | None = None) -> SourcePackage:
    """Load and validate a package definition.

    Args:
        path: Explicit path to package.yml. If None, searches upward.

    Returns:
        Validated SourcePackage model.

    Raises:
        ConfigError: If the file is missing or invalid.
    """
    if path is None:
        path = find_package_file()

    if path is None:
        raise ConfigError(f"No {PACKAGE_CONFIG_FILE} found. Specify one with --config.")

    if not path.is_file():
        raise ConfigError(f"Config file not found: {path}")

    logger.debug("Loading package definition from %s", path)

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")

    # The YAML may wrap everything under a "package" key or be flat
    package_data = data["package"] if isinstance(data.get("package"), dict) else data

    try:
        package = SourcePackage.model_validate(package_data)
    except ValidationError as e:
        raise ConfigError(f"Invalid package definition: {e}") from e

    logger.info("Loaded package '%s' (version %s)", package.name, package.version or "-")
    return package


def config_root(config_path: Path) -> Path:
    """Get the directory holding a config file."""
    return config_path.parent.resolve()
