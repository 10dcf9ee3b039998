"""vCenter credentials.

Profiles in the configuration file hold the server address and username.
The password is supplied at connect time from the environment or a prompt
and lives only in memory.

Public API (the "studs"):
    Credentials: Server, username and password for one connection
    CredentialProvider: Protocol for credential sources
    ConfigCredentialProvider: Profiles from config, secret from env or prompt
    CredentialError: Credentials could not be resolved
"""

import logging
import os
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol

from vcmigrate.config_manager import VCMigrateConfig

logger = logging.getLogger(__name__)

PASSWORD_ENV_PREFIX = "VCMIGRATE_PASSWORD_"


class CredentialError(Exception):
    """Raised when credentials cannot be resolved."""

    pass


@dataclass(frozen=True)
class Credentials:
    """Connection credentials. The password is excluded from repr."""

    target: str
    server_address: str
    username: str
    password: str = field(repr=False)


class CredentialProvider(Protocol):
    def get_credentials(self, target: str) -> Credentials: ...


def password_env_var(profile: str) -> str:
    """Environment variable holding the password for a profile.

    Example:
        >>> password_env_var("lab-vc01")
        'VCMIGRATE_PASSWORD_LAB_VC01'
    """
    return PASSWORD_ENV_PREFIX + profile.upper().replace("-", "_")


class ConfigCredentialProvider:
    """Resolves credentials from configured profiles.

    Example:
        >>> provider = ConfigCredentialProvider(config, prompt=getpass_prompt)
        >>> provider.get_credentials("lab").server_address
        'vc01.lab.local'
    """

    def __init__(
        self,
        config: VCMigrateConfig,
        prompt: Callable[[str], str] | None = None,
    ):
        """Initialize the provider.

        Args:
            config: Configuration holding the profiles
            prompt: Called with a prompt string when no password is found
                in the environment
        """
        self.config = config
        self.prompt = prompt

    def get_credentials(self, target: str) -> Credentials:
        """Resolve credentials for a profile name.

        Raises:
            CredentialError: If the profile is unknown or no password is available
        """
        profile = self.config.profiles.get(target)
        if profile is None:
            available = ", ".join(sorted(self.config.profiles)) or "(none)"
            raise CredentialError(f"Unknown connection profile '{target}' (available: {available})")

        server = profile.get("server", "")
        username = profile.get("username", "")
        if not server or not username:
            raise CredentialError(f"Profile '{target}' needs both server and username")

        password = os.getenv(password_env_var(target))
        if password:
            logger.debug(f"Using password from {password_env_var(target)}")
        elif self.prompt is not None:
            password = self.prompt(f"Password for {username}@{server}")

        if not password:
            raise CredentialError(
                f"No password for profile '{target}'. "
                f"Set {password_env_var(target)} or run interactively."
            )

        return Credentials(target=target, server_address=server, username=username, password=password)


__all__ = [
    "ConfigCredentialProvider",
    "CredentialError",
    "CredentialProvider",
    "Credentials",
    "password_env_var",
]
