"""Configuration management for pacrepo.

Handles loading and validation of YAML configuration files. A
configuration holds one or more repository profiles plus settings for
the package registry, the system package manager and logging.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from ..formats.pacman import has_database_format


DEFAULT_REGISTRY_URL = "https://aur.archlinux.org"
DEFAULT_BACKUP_DIR = "backup"


class ConfigError(ValueError):
    """Raised when a configuration is structurally valid YAML but unusable."""


@dataclass
class ProfileConfig:
    """Configuration for a single managed repository."""

    name: str
    repo: str
    backup: bool = False
    backup_dir: str = DEFAULT_BACKUP_DIR
    ignore_registry: List[str] = field(default_factory=list)
    add_params: List[str] = field(default_factory=list)
    rm_params: List[str] = field(default_factory=list)
    require_signature: bool = False

    @property
    def directory(self) -> str:
        """Directory holding the package files and the database."""
        return os.path.dirname(self.repo)

    @property
    def database(self) -> str:
        """Database filename, relative to the repository directory."""
        return os.path.basename(self.repo)


@dataclass
class RegistryConfig:
    """Configuration for the remote package registry."""

    url: str = DEFAULT_REGISTRY_URL
    timeout: float = 30.0
    batch_size: int = 200


@dataclass
class PacmanConfig:
    """Locations of the system package manager's state."""

    conf_path: str = "/etc/pacman.conf"
    local_db_path: str = "/var/lib/pacman/local"
    sync_db_format: str = "/var/lib/pacman/sync/{name}.db"
    ignore_repos: List[str] = field(default_factory=list)


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "INFO"
    log_dir: str = "~/.cache/pacrepo/logs"
    file_logging: bool = False


@dataclass
class PacrepoConfig:
    """Top-level configuration for pacrepo."""

    profiles: Dict[str, ProfileConfig] = field(default_factory=dict)
    default_profile: Optional[str] = None
    registry: RegistryConfig = field(default_factory=RegistryConfig)
    pacman: PacmanConfig = field(default_factory=PacmanConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def select_profile(self, name: Optional[str] = None) -> ProfileConfig:
        """Select the profile to operate on.

        Args:
            name: Explicit profile name; falls back to the default profile,
                then to the only profile if exactly one is defined.

        Returns:
            The selected ProfileConfig

        Raises:
            ConfigError: If no profile can be selected
        """
        if name is None:
            name = self.default_profile
        if name is None:
            if len(self.profiles) == 1:
                return next(iter(self.profiles.values()))
            raise ConfigError(
                "no profile selected and no default_profile configured"
            )
        if name not in self.profiles:
            raise ConfigError(f"unknown profile: {name}")
        return self.profiles[name]


def default_config_path() -> Path:
    """Return the default configuration file location."""
    base = os.environ.get("XDG_CONFIG_HOME") or os.path.join(
        os.path.expanduser("~"), ".config"
    )
    return Path(base) / "pacrepo" / "config.yaml"


def parse_profile_config(name: str, profile_dict: Dict[str, Any]) -> ProfileConfig:
    """Parse a profile configuration dictionary.

    Args:
        name: Profile name
        profile_dict: Profile configuration dictionary

    Returns:
        ProfileConfig instance

    Raises:
        ConfigError: If the repository path is missing, relative or does not
            name a database file
    """
    repo = profile_dict.get("repo", "")
    if not repo:
        raise ConfigError(f"profile {name}: repo must be set")
    repo = os.path.expanduser(repo)
    if not os.path.isabs(repo):
        raise ConfigError(f"profile {name}: repo must be an absolute path: {repo}")
    if not has_database_format(os.path.basename(repo)):
        raise ConfigError(f"profile {name}: repo must name a database file (.db.tar.*): {repo}")

    return ProfileConfig(
        name=name,
        repo=repo,
        backup=bool(profile_dict.get("backup", False)),
        backup_dir=profile_dict.get("backup_dir", DEFAULT_BACKUP_DIR),
        ignore_registry=list(profile_dict.get("ignore_registry", [])),
        add_params=list(profile_dict.get("add_params", [])),
        rm_params=list(profile_dict.get("rm_params", [])),
        require_signature=bool(profile_dict.get("require_signature", False)),
    )


def parse_registry_config(registry_dict: Dict[str, Any]) -> RegistryConfig:
    """Parse registry configuration dictionary."""
    return RegistryConfig(
        url=registry_dict.get("url", DEFAULT_REGISTRY_URL).rstrip("/"),
        timeout=float(registry_dict.get("timeout", 30.0)),
        batch_size=int(registry_dict.get("batch_size", 200)),
    )


def parse_pacman_config(pacman_dict: Dict[str, Any]) -> PacmanConfig:
    """Parse pacman configuration dictionary."""
    defaults = PacmanConfig()
    return PacmanConfig(
        conf_path=pacman_dict.get("conf_path", defaults.conf_path),
        local_db_path=pacman_dict.get("local_db_path", defaults.local_db_path),
        sync_db_format=pacman_dict.get("sync_db_format", defaults.sync_db_format),
        ignore_repos=list(pacman_dict.get("ignore_repos", [])),
    )


def parse_logging_config(logging_dict: Dict[str, Any]) -> LoggingConfig:
    """Parse logging configuration dictionary."""
    defaults = LoggingConfig()
    return LoggingConfig(
        level=logging_dict.get("level", defaults.level),
        log_dir=logging_dict.get("log_dir", defaults.log_dir),
        file_logging=bool(logging_dict.get("file_logging", defaults.file_logging)),
    )


def _section(config_dict: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = config_dict.get(key) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"{key} must be a mapping, got {type(value).__name__}")
    return value


def parse_config(config_dict: Dict[str, Any]) -> PacrepoConfig:
    """Parse the full configuration dictionary.

    Args:
        config_dict: Full configuration dictionary

    Returns:
        PacrepoConfig instance

    Raises:
        ConfigError: If a section is not a mapping or a profile is unusable
    """
    profiles = {}
    profile_dicts = _section(config_dict, "profiles")
    for name in profile_dicts:
        profiles[name] = parse_profile_config(name, _section(profile_dicts, name))

    default_profile = config_dict.get("default_profile")
    if default_profile is not None and default_profile not in profiles:
        raise ConfigError(f"default_profile {default_profile} is not defined")

    return PacrepoConfig(
        profiles=profiles,
        default_profile=default_profile,
        registry=parse_registry_config(_section(config_dict, "registry")),
        pacman=parse_pacman_config(_section(config_dict, "pacman")),
        logging=parse_logging_config(_section(config_dict, "logging")),
    )


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration from YAML file.

    Args:
        config_path: Path to configuration file (default location if None)

    Returns:
        Configuration dictionary

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If config file is invalid YAML
        ConfigError: If the root is not a mapping
    """
    config_file = Path(config_path) if config_path else default_config_path()

    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_file}")

    with config_file.open("r") as f:
        config = yaml.safe_load(f)

    if config is None:
        config = {}

    if not isinstance(config, dict):
        raise ConfigError(
            f"Configuration root must be a mapping, got {type(config).__name__}"
        )

    return _expand_env_vars(config)


def _expand_env_vars(obj: Any) -> Any:
    """Recursively expand environment variables in configuration.

    Args:
        obj: Configuration object (dict, list, str, etc.)

    Returns:
        Configuration with expanded environment variables
    """
    if isinstance(obj, dict):
        return {key: _expand_env_vars(value) for key, value in obj.items()}
    elif isinstance(obj, list):
        return [_expand_env_vars(item) for item in obj]
    elif isinstance(obj, str):
        return os.path.expandvars(obj)
    else:
        return obj


def load_typed_config(config_path: Optional[str] = None) -> PacrepoConfig:
    """Load and parse configuration into typed dataclass.

    Args:
        config_path: Path to configuration file

    Returns:
        PacrepoConfig instance

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If config file is invalid YAML
        ConfigError: If the configuration is unusable
    """
    return parse_config(load_config(config_path))
