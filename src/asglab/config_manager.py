"""CLI preferences module.

Stores which Pulumi stack and project directory the asglab CLI inspects by
default, so `asglab plan` works without repeating --stack/--project-dir.
Stack settings themselves live in the Pulumi stack files (see asglab.config).

Security:
- Config file permissions: 0600 (owner read/write only)
- Path validation
"""

import logging
import os
import re
import tempfile
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

import tomli
import tomlkit

from asglab.config import ConfigError

logger = logging.getLogger(__name__)

# Pulumi stack names: letters, digits, '-', '_', '.' (optionally org/project/ qualified)
STACK_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+(/[A-Za-z0-9_.-]+){0,2}$")


@dataclass
class LabConfig:
    """asglab CLI preferences."""

    default_stack: str = "dev"
    project_dir: str | None = None  # None = current directory

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary, excluding None values."""
        # TOML has no null
        return {k: v for k, v in asdict(self).items() if v is not None}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LabConfig":
        return cls(
            default_stack=data.get("default_stack", "dev"),
            project_dir=data.get("project_dir"),
        )


def validate_stack_name(name: str) -> str:
    """Check a stack name.

    Raises:
        ConfigError: If the name is not a valid Pulumi stack name
    """
    if not STACK_NAME_PATTERN.match(name):
        raise ConfigError(f"Invalid stack name: {name!r}")
    return name


class ConfigManager:
    """Manage the asglab preferences file.

    Preferences are stored at ~/.asglab/config.toml with secure permissions.
    """

    DEFAULT_CONFIG_DIR = Path.home() / ".asglab"
    DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.toml"

    @classmethod
    def _validate_config_path(cls, path: Path) -> Path:
        """Ensure a custom config path is inside an allowed directory.

        Allowed: ~/.asglab/, the current working directory, and the system
        temporary directory (used by tests).

        Raises:
            ConfigError: If path is outside allowed directories
        """
        resolved_path = path.resolve()
        allowed_dirs = [
            cls.DEFAULT_CONFIG_DIR.resolve(),
            Path.cwd().resolve(),
            Path(tempfile.gettempdir()).resolve(),
        ]
        for allowed_dir in allowed_dirs:
            try:
                resolved_path.relative_to(allowed_dir)
                return resolved_path
            except ValueError:
                continue

        raise ConfigError(
            f"Config path outside allowed directories: {resolved_path}\n"
            f"Allowed directories:\n"
            f"  - {cls.DEFAULT_CONFIG_DIR}\n"
            f"  - {Path.cwd()}"
        )

    @classmethod
    def get_config_path(cls, custom_path: str | None = None) -> Path:
        """Resolve the preferences file path.

        Raises:
            ConfigError: If a custom path is outside allowed directories
        """
        if custom_path:
            return cls._validate_config_path(Path(custom_path).expanduser())
        return cls.DEFAULT_CONFIG_FILE

    @classmethod
    def load_config(cls, custom_path: str | None = None) -> LabConfig:
        """Load preferences, falling back to defaults if the file is absent.

        Raises:
            ConfigError: If the file exists but cannot be parsed
        """
        config_path = cls.get_config_path(custom_path)

        if not config_path.exists():
            logger.debug("Config file not found, using defaults")
            return LabConfig()

        try:
            with open(config_path, "rb") as f:
                data = tomli.load(f)
        except (OSError, tomli.TOMLDecodeError) as e:
            raise ConfigError(f"Failed to load config: {e}") from e

        logger.debug(f"Loaded config from: {config_path}")
        return LabConfig.from_dict(data)

    @classmethod
    def save_config(cls, config: LabConfig, custom_path: str | None = None) -> Path:
        """Save preferences atomically, preserving comments in an existing file.

        Returns:
            Path written

        Raises:
            ConfigError: If writing fails
        """
        config_path = cls.get_config_path(custom_path)
        temp_path = config_path.with_suffix(".tmp")
        try:
            config_path.parent.mkdir(parents=True, exist_ok=True)
            if config_path == cls.DEFAULT_CONFIG_FILE:
                os.chmod(config_path.parent, 0o700)

            if config_path.exists():
                with open(config_path) as f:
                    doc = tomlkit.load(f)
            else:
                doc = tomlkit.document()

            values = config.to_dict()
            for key in list(doc.keys()):
                if key in asdict(config) and key not in values:
                    del doc[key]
            for key, value in values.items():
                doc[key] = value

            with open(temp_path, "w") as f:
                tomlkit.dump(doc, f)
            os.chmod(temp_path, 0o600)
            temp_path.replace(config_path)

        except OSError as e:
            if temp_path.exists():
                temp_path.unlink()
            raise ConfigError(f"Failed to save config: {e}") from e

        logger.debug(f"Saved config to: {config_path}")
        return config_path

    @classmethod
    def set_default_stack(cls, stack: str, custom_path: str | None = None) -> LabConfig:
        config = cls.load_config(custom_path)
        config.default_stack = validate_stack_name(stack)
        cls.save_config(config, custom_path)
        return config

    @classmethod
    def set_project_dir(cls, project_dir: str, custom_path: str | None = None) -> LabConfig:
        """Remember the Pulumi project directory.

        Raises:
            ConfigError: If the directory has no Pulumi.yaml
        """
        path = Path(project_dir).expanduser().resolve()
        if not (path / "Pulumi.yaml").exists():
            raise ConfigError(f"No Pulumi.yaml in {path}")
        config = cls.load_config(custom_path)
        config.project_dir = str(path)
        cls.save_config(config, custom_path)
        return config
