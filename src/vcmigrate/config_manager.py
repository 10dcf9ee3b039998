"""Configuration management module.

This module handles persistent configuration storage using TOML format.
Stores the shell to drive, command timeouts, polling tunables and the
vCenter connection profiles (server and username only; passwords are never
written to disk).

Security:
- Config file permissions: 0600 (owner read/write only)
- Path validation
- No secrets in the file
"""

import logging
import os
import re
import tempfile
import tomllib
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

import tomlkit

from vcmigrate.shell_dialect import get_dialect

logger = logging.getLogger(__name__)

PROFILE_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


class ConfigError(Exception):
    """Raised when configuration operations fail."""

    pass


@dataclass
class VCMigrateConfig:
    """vcmigrate configuration data."""

    shell: str = "powershell"
    shell_candidates: list[str] | None = None  # None: the dialect's own list

    # Timeouts (seconds)
    import_timeout: float = 90.0
    settings_timeout: float = 30.0
    validation_timeout: float = 15.0
    connect_timeout: float = 120.0
    command_timeout: float = 300.0
    terminate_timeout: float = 5.0

    # Command channel tunables (seconds)
    poll_interval: float = 0.05
    settle_delay: float = 0.05
    stale_output_threshold: float = 30.0
    startup_grace: float = 0.1

    profiles: dict[str, dict[str, str]] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary, excluding None values."""
        data = asdict(self)
        # TOML has no null
        return {k: v for k, v in data.items() if v is not None}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "VCMigrateConfig":
        """Create from dictionary, falling back to defaults for missing keys."""
        defaults = cls()
        try:
            return cls(
                shell=str(data.get("shell", defaults.shell)),
                shell_candidates=data.get("shell_candidates"),
                import_timeout=float(data.get("import_timeout", defaults.import_timeout)),
                settings_timeout=float(data.get("settings_timeout", defaults.settings_timeout)),
                validation_timeout=float(
                    data.get("validation_timeout", defaults.validation_timeout)
                ),
                connect_timeout=float(data.get("connect_timeout", defaults.connect_timeout)),
                command_timeout=float(data.get("command_timeout", defaults.command_timeout)),
                terminate_timeout=float(data.get("terminate_timeout", defaults.terminate_timeout)),
                poll_interval=float(data.get("poll_interval", defaults.poll_interval)),
                settle_delay=float(data.get("settle_delay", defaults.settle_delay)),
                stale_output_threshold=float(
                    data.get("stale_output_threshold", defaults.stale_output_threshold)
                ),
                startup_grace=float(data.get("startup_grace", defaults.startup_grace)),
                profiles={
                    name: {k: str(v) for k, v in profile.items()}
                    for name, profile in data.get("profiles", {}).items()
                },
            )
        except (TypeError, ValueError, AttributeError) as e:
            raise ConfigError(f"Invalid configuration value: {e}") from e

    def apply_environment(self) -> "VCMigrateConfig":
        """Apply environment overrides in place.

        Environment variables (all optional):
            VCMIGRATE_SHELL: Shell dialect name ("powershell" or "posix")
            VCMIGRATE_COMMAND_TIMEOUT: Default command timeout in seconds
        """
        shell = os.getenv("VCMIGRATE_SHELL")
        if shell:
            self.shell = shell

        command_timeout = os.getenv("VCMIGRATE_COMMAND_TIMEOUT")
        if command_timeout:
            try:
                self.command_timeout = float(command_timeout)
            except ValueError as e:
                raise ConfigError(
                    f"VCMIGRATE_COMMAND_TIMEOUT must be a number, got {command_timeout!r}"
                ) from e
        return self

    def validate(self) -> None:
        """Check values that would make the session layer misbehave.

        Raises:
            ConfigError: If a value is out of range
        """
        try:
            get_dialect(self.shell)
        except ValueError as e:
            raise ConfigError(str(e)) from e

        for name in (
            "import_timeout",
            "settings_timeout",
            "validation_timeout",
            "connect_timeout",
            "command_timeout",
            "terminate_timeout",
            "poll_interval",
        ):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be positive")

        for name in ("settle_delay", "stale_output_threshold", "startup_grace"):
            if getattr(self, name) < 0:
                raise ConfigError(f"{name} cannot be negative")


class ConfigManager:
    """Manage vcmigrate configuration file.

    Configuration is stored at ~/.vcmigrate/config.toml with secure permissions.
    """

    DEFAULT_CONFIG_DIR = Path.home() / ".vcmigrate"
    DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.toml"

    @classmethod
    def _validate_config_path(cls, path: Path) -> Path:
        """Validate configuration file path for security.

        Ensures the path is within ~/.vcmigrate/, the current working
        directory, or the system temporary directory.

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
            f"  - {Path.cwd()}\n"
            "This restriction prevents path traversal attacks."
        )

    @classmethod
    def get_config_path(cls, custom_path: str | None = None) -> Path:
        """Get configuration file path.

        Raises:
            ConfigError: If a custom path is invalid or does not exist
        """
        if custom_path:
            path = cls._validate_config_path(Path(custom_path).expanduser())
            if not path.exists():
                raise ConfigError(f"Config file not found: {path}")
            return path

        return cls.DEFAULT_CONFIG_FILE

    @classmethod
    def ensure_config_dir(cls) -> Path:
        """Ensure config directory exists with secure permissions.

        Raises:
            ConfigError: If directory creation fails
        """
        try:
            cls.DEFAULT_CONFIG_DIR.mkdir(parents=True, exist_ok=True)
            os.chmod(cls.DEFAULT_CONFIG_DIR, 0o700)
            logger.debug(f"Config directory ready: {cls.DEFAULT_CONFIG_DIR}")
            return cls.DEFAULT_CONFIG_DIR
        except OSError as e:
            raise ConfigError(f"Failed to create config directory: {e}") from e

    @classmethod
    def _read_file(cls, config_path: Path) -> dict[str, Any]:
        mode = config_path.stat().st_mode & 0o777
        if mode & 0o077:
            logger.warning(f"Config file has insecure permissions: {oct(mode)}. Fixing to 0600...")
            os.chmod(config_path, 0o600)

        with open(config_path, "rb") as f:
            return tomllib.load(f)

    @classmethod
    def load_config(cls, custom_path: str | None = None, apply_env: bool = True) -> VCMigrateConfig:
        """Load configuration from file.

        Args:
            custom_path: Custom config file path (optional)
            apply_env: Apply VCMIGRATE_* environment overrides

        Returns:
            VCMigrateConfig (defaults if the file does not exist)

        Raises:
            ConfigError: If loading or validation fails
        """
        config_path = cls.get_config_path(custom_path)

        if not config_path.exists():
            logger.debug("Config file not found, using defaults")
            config = VCMigrateConfig()
        else:
            try:
                data = cls._read_file(config_path)
            except (OSError, tomllib.TOMLDecodeError) as e:
                raise ConfigError(f"Failed to load config: {e}") from e
            logger.debug(f"Loaded config from: {config_path}")
            config = VCMigrateConfig.from_dict(data)

        if apply_env:
            config.apply_environment()
        config.validate()
        return config

    @classmethod
    def save_config(cls, config: VCMigrateConfig, custom_path: str | None = None) -> Path:
        """Save configuration to file.

        Uses a temporary file and an atomic rename; existing comments and
        formatting are preserved by tomlkit.

        Returns:
            Path written

        Raises:
            ConfigError: If saving fails or path is outside allowed directories
        """
        temp_path: Path | None = None
        try:
            if custom_path:
                config_path = cls._validate_config_path(Path(custom_path).expanduser())
                config_path.parent.mkdir(parents=True, exist_ok=True)
            else:
                cls.ensure_config_dir()
                config_path = cls.DEFAULT_CONFIG_FILE

            temp_path = config_path.with_suffix(".tmp")

            if config_path.exists():
                with open(config_path) as f:
                    doc = tomlkit.load(f)
            else:
                doc = tomlkit.document()

            config_dict = config.to_dict()
            for key, value in config_dict.items():
                doc[key] = value
            if "shell_candidates" not in config_dict and "shell_candidates" in doc:
                del doc["shell_candidates"]

            with open(temp_path, "w") as f:
                tomlkit.dump(doc, f)

            os.chmod(temp_path, 0o600)
            temp_path.replace(config_path)

            logger.debug(f"Saved config to: {config_path}")
            return config_path

        except (OSError, ValueError) as e:
            if temp_path and temp_path.exists():
                temp_path.unlink()
            raise ConfigError(f"Failed to save config: {e}") from e

    @classmethod
    def update_config(cls, custom_path: str | None = None, **updates: Any) -> VCMigrateConfig:
        """Update configuration values and save.

        Raises:
            ConfigError: If update fails
        """
        config = cls.load_config(custom_path, apply_env=False)

        for key, value in updates.items():
            if hasattr(config, key):
                setattr(config, key, value)
            else:
                logger.warning(f"Unknown config key: {key}")

        config.validate()
        cls.save_config(config, custom_path)
        return config

    @classmethod
    def get_profile(cls, name: str, custom_path: str | None = None) -> dict[str, str] | None:
        """Get a connection profile (server and username), or None."""
        return cls.load_config(custom_path).profiles.get(name)

    @classmethod
    def set_profile(
        cls, name: str, server: str, username: str, custom_path: str | None = None
    ) -> None:
        """Create or replace a connection profile.

        Raises:
            ConfigError: If the name or values are invalid, or saving fails
        """
        if not PROFILE_NAME_PATTERN.match(name):
            raise ConfigError(
                f"Invalid profile name '{name}': use letters, digits, '-' or '_' (max 64)"
            )
        if not server.strip() or not username.strip():
            raise ConfigError("Profile server and username cannot be empty")

        config = cls.load_config(custom_path, apply_env=False)
        config.profiles[name] = {"server": server.strip(), "username": username.strip()}
        cls.save_config(config, custom_path)
        logger.info(f"Saved connection profile '{name}'")

    @classmethod
    def delete_profile(cls, name: str, custom_path: str | None = None) -> bool:
        """Delete a connection profile. Returns False if it did not exist."""
        config = cls.load_config(custom_path, apply_env=False)
        if name not in config.profiles:
            return False

        del config.profiles[name]
        cls.save_config(config, custom_path)
        logger.info(f"Deleted connection profile '{name}'")
        return True

    @classmethod
    def list_profiles(cls, custom_path: str | None = None) -> list[str]:
        """List connection profile names."""
        return sorted(cls.load_config(custom_path).profiles)


__all__ = ["ConfigError", "ConfigManager", "VCMigrateConfig"]
