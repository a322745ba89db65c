"""
Configuration management for the update orchestrator.

Configuration is read once at startup into an immutable AppConfig and passed
explicitly to every component; nothing reads the environment after that.

Configuration is loaded from multiple sources with layered precedence:
1. Built-in defaults (Pydantic model defaults)
2. YAML config file (/etc/srcds-autoupdate/config.yml or --config path)
3. Environment variables (SRCDS_AUTOUPDATE_* prefix, __ for nesting)
4. Deployment variables shared with the container entrypoint
   (AUTO_UPDATE_INTERVAL, AUTO_UPDATE_MODE, ...)
5. Command-line overrides (highest precedence)
"""

from __future__ import annotations

import os
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from srcds_autoupdate.errors import ConfigurationError

DEFAULT_CONFIG_PATH = Path("/etc/srcds-autoupdate/config.yml")
DEFAULT_ENV_PREFIX = "SRCDS_AUTOUPDATE_"


class UpdateMode(str, Enum):
    """
    How the orchestrator reacts to a detected update.

    - immediate: stop the server as soon as drift is found
    - graceful: warn players through a countdown, then stop the server
    - announce: tell players and operators once, then wait for a manual restart
    """

    IMMEDIATE = "immediate"
    GRACEFUL = "graceful"
    ANNOUNCE = "announce"


class RegistryBackend(str, Enum):
    """Transport used to query the published build id."""

    STEAMCMD = "steamcmd"
    HTTP = "http"


class _FrozenModel(BaseModel):
    # Environment values arrive pre-parsed, so "0" may reach a str field as 0
    model_config = ConfigDict(frozen=True, coerce_numbers_to_str=True)


# =============================================================================
# Updater Configuration
# =============================================================================


class UpdaterConfig(_FrozenModel):
    """Polling and update policy settings.

    Attributes:
        poll_interval_seconds: Seconds to sleep between registry checks.
        mode: Reaction to a detected update.
        grace_period_seconds: Countdown length in graceful mode; also the
            amount added by each extension request.
        track_game_files: When False no package is polled and the orchestrator
            only watches the server process.
        extend_marker_path: File whose presence requests a countdown extension.
        expire_pause_seconds: Pause after the final broadcast so it renders
            in-game before the server is stopped.
        broadcast_command: Console command used to relay chat messages.
    """

    poll_interval_seconds: int = Field(
        default=300,
        ge=1,
        description="Seconds between registry checks",
    )
    mode: UpdateMode = Field(
        default=UpdateMode.IMMEDIATE,
        description="Update mode: immediate, graceful, announce",
    )
    grace_period_seconds: int = Field(
        default=60,
        ge=1,
        description="Graceful countdown length and extension step in seconds",
    )
    track_game_files: bool = Field(
        default=True,
        description="Poll the registry for tracked packages",
    )
    extend_marker_path: str = Field(
        default="/tmp/srcds-autoupdate.extend",
        description="Marker file that requests a countdown extension",
    )
    expire_pause_seconds: float = Field(
        default=3.0,
        ge=0,
        description="Pause after the final warning before stopping the server",
    )
    broadcast_command: str = Field(
        default="say",
        description="Console command prefix used for player broadcasts",
    )

    @field_validator("mode", mode="before")
    @classmethod
    def normalize_mode(cls, v: Any) -> Any:
        """Accept update modes case-insensitively."""
        if isinstance(v, str):
            return v.strip().lower()
        return v


class PackageRef(_FrozenModel):
    """A tracked Steam app.

    Attributes:
        app_id: Numeric Steam application id.
        label: Human readable name used in logs.
    """

    app_id: str = Field(description="Steam application id")
    label: str = Field(default="", description="Human readable package name")

    @field_validator("app_id", mode="before")
    @classmethod
    def validate_app_id(cls, v: Any) -> str:
        """Require a purely numeric app id."""
        value = str(v).strip()
        if not value.isdigit():
            raise ValueError(f"Invalid app id: {v!r}. Must be numeric")
        return value


def _default_packages() -> list[PackageRef]:
    """Return the packages tracked by a TF2 Classified deployment, in check order."""
    return [
        PackageRef(app_id="3557020", label="TF2 Classified"),
        PackageRef(app_id="232250", label="TF2 Dedicated Server (base)"),
    ]


# =============================================================================
# Steam Configuration
# =============================================================================


class SteamConfig(_FrozenModel):
    """Registry and local manifest settings.

    Attributes:
        steamcmd_dir: SteamCMD installation directory.
        manifest_dirs: steamapps directories searched for app manifests, in order.
            Empty means derive them from steamcmd_dir and the default data dirs.
        branch: Published branch whose build id is compared.
        registry: Registry transport.
        registry_url: URL template for the HTTP registry ({app_id} placeholder).
        query_timeout_seconds: Timeout for a single registry query.
    """

    steamcmd_dir: str = Field(
        default="/opt/steamcmd",
        description="SteamCMD installation directory",
    )
    manifest_dirs: list[str] = Field(
        default_factory=list,
        description="steamapps directories holding appmanifest_<id>.acf files",
    )
    branch: str = Field(
        default="public",
        description="Published branch to compare against",
    )
    registry: RegistryBackend = Field(
        default=RegistryBackend.STEAMCMD,
        description="Registry backend: steamcmd or http",
    )
    registry_url: str = Field(
        default="https://api.steamcmd.net/v1/info/{app_id}",
        description="HTTP registry URL template",
    )
    query_timeout_seconds: float = Field(
        default=120.0,
        gt=0,
        description="Registry query timeout in seconds",
    )

    @field_validator("manifest_dirs", mode="before")
    @classmethod
    def split_manifest_dirs(cls, v: Any) -> Any:
        """Accept a single path or a comma separated string."""
        if isinstance(v, str):
            return [item.strip() for item in v.split(",") if item.strip()]
        return v

    @field_validator("registry", mode="before")
    @classmethod
    def normalize_registry(cls, v: Any) -> Any:
        """Accept registry backends case-insensitively."""
        if isinstance(v, str):
            return v.strip().lower()
        return v

    def resolved_manifest_dirs(self) -> list[Path]:
        """Return the manifest search path, falling back to the deployment layout."""
        if self.manifest_dirs:
            return [Path(d) for d in self.manifest_dirs]
        return [
            Path(self.steamcmd_dir) / "steamapps",
            Path("/data/classified/steamapps"),
            Path("/data/tf/steamapps"),
        ]


# =============================================================================
# Console Configuration
# =============================================================================


class ConsoleConfig(_FrozenModel):
    """Server console (command sink) settings.

    Attributes:
        enabled: Deliver broadcasts to the server console. When False messages
            are only logged.
        tmux_binary: tmux executable.
        target: tmux target (session, window or pane) running the server console.
        send_timeout_seconds: Timeout for a single send.
    """

    enabled: bool = Field(default=True, description="Deliver console commands")
    tmux_binary: str = Field(default="tmux", description="tmux executable")
    target: str = Field(default="srcds", description="tmux target of the console")
    send_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Console send timeout in seconds",
    )


# =============================================================================
# Logging Configuration
# =============================================================================


class LoggingConfig(_FrozenModel):
    """Logging configuration.

    Attributes:
        level: Log level.
        json_format: Emit JSON lines instead of plain text.
        log_to_stdout: Whether to log to stdout.
    """

    level: str = Field(default="info", description="Log level")
    json_format: bool = Field(default=True, description="Emit JSON log lines")
    log_to_stdout: bool = Field(default=True, description="Log to stdout")

    @field_validator("level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate and normalize log level."""
        valid_levels = {"debug", "info", "warn", "warning", "error", "critical"}
        v_lower = v.lower()
        if v_lower not in valid_levels:
            raise ValueError(
                f"Invalid log level: {v}. Must be one of: {', '.join(sorted(valid_levels))}"
            )
        if v_lower == "warn":
            return "warning"
        return v_lower


# =============================================================================
# Main Application Configuration
# =============================================================================


class AppConfig(_FrozenModel):
    """
    Main application configuration model.

    Attributes:
        updater: Polling and update policy.
        packages: Tracked packages, checked in this order.
        steam: Registry and manifest settings.
        console: Server console settings.
        logging: Logging configuration.
    """

    updater: UpdaterConfig = Field(default_factory=UpdaterConfig)
    packages: list[PackageRef] = Field(default_factory=_default_packages)
    steam: SteamConfig = Field(default_factory=SteamConfig)
    console: ConsoleConfig = Field(default_factory=ConsoleConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("packages")
    @classmethod
    def validate_unique_packages(cls, v: list[PackageRef]) -> list[PackageRef]:
        """Reject duplicate app ids."""
        seen: set[str] = set()
        for package in v:
            if package.app_id in seen:
                raise ValueError(f"Duplicate package app id: {package.app_id}")
            seen.add(package.app_id)
        return v

    def tracked_packages(self) -> list[PackageRef]:
        """Return the packages to poll, honoring track_game_files."""
        if not self.updater.track_game_files:
            return []
        return list(self.packages)


# =============================================================================
# Configuration Loading Functions
# =============================================================================

# Variables set by the container entrypoint, mapped to config keys
_DEPLOYMENT_ENV_KEYS: dict[str, tuple[str, str]] = {
    "AUTO_UPDATE_INTERVAL": ("updater", "poll_interval_seconds"),
    "AUTO_UPDATE_MODE": ("updater", "mode"),
    "AUTO_UPDATE_GRACE_PERIOD": ("updater", "grace_period_seconds"),
    "UPDATE_GAME_FILES": ("updater", "track_game_files"),
    "STEAMCMD_DIR": ("steam", "steamcmd_dir"),
}


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Deep merge two dictionaries.

    Args:
        base: The base dictionary.
        override: The dictionary with values to override.

    Returns:
        A new dictionary with merged values.
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _load_yaml_config(config_path: Path) -> dict[str, Any]:
    """
    Load configuration from a YAML file.

    Raises:
        FileNotFoundError: If the config file doesn't exist.
        yaml.YAMLError: If the YAML is invalid.
    """
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path) as f:
        return yaml.safe_load(f) or {}


def _parse_env_value(value: str) -> Any:
    """
    Parse an environment variable value to an appropriate Python type.

    Args:
        value: String value from environment variable.

    Returns:
        Parsed value (bool, int, float, list, or string).
    """
    if value.lower() in ("true", "yes", "on"):
        return True
    if value.lower() in ("false", "no", "off"):
        return False

    try:
        return int(value)
    except ValueError:
        pass

    try:
        return float(value)
    except ValueError:
        pass

    if "," in value:
        return [_parse_env_value(item.strip()) for item in value.split(",")]

    return value


def _load_env_config(
    prefix: str = DEFAULT_ENV_PREFIX,
    environ: dict[str, str] | None = None,
) -> dict[str, Any]:
    """
    Load configuration from prefixed environment variables.

    Nested keys use a double underscore separator, for example
    SRCDS_AUTOUPDATE_UPDATER__MODE=graceful.
    """
    environ = dict(os.environ) if environ is None else environ
    result: dict[str, Any] = {}

    for key, value in environ.items():
        if not key.startswith(prefix):
            continue

        parts = key[len(prefix) :].lower().split("__")

        current = result
        for part in parts[:-1]:
            current = current.setdefault(part, {})

        current[parts[-1]] = _parse_env_value(value)

    return result


def _load_deployment_env(environ: dict[str, str] | None = None) -> dict[str, Any]:
    """Load the unprefixed variables shared with the container entrypoint."""
    environ = dict(os.environ) if environ is None else environ
    result: dict[str, Any] = {}

    for env_key, (section, field) in _DEPLOYMENT_ENV_KEYS.items():
        value = environ.get(env_key)
        if value is None or value == "":
            continue
        result.setdefault(section, {})[field] = _parse_env_value(value)

    return result


def load_config(
    config_path: Path | str | None = None,
    env_prefix: str = DEFAULT_ENV_PREFIX,
    cli_overrides: dict[str, Any] | None = None,
    environ: dict[str, str] | None = None,
) -> AppConfig:
    """
    Load configuration from all sources with layered precedence.

    Args:
        config_path: Path to a YAML configuration file. If None, the default
            path is used when it exists.
        env_prefix: Prefix for environment variables.
        cli_overrides: Nested dictionary of command-line overrides.
        environ: Environment mapping; defaults to os.environ.

    Returns:
        Fully configured, immutable AppConfig instance.

    Raises:
        ConfigurationError: If a source cannot be read or the merged
            configuration is invalid.

    Example:
        >>> config = load_config(cli_overrides={"updater": {"mode": "graceful"}})
        >>> config.updater.mode
        <UpdateMode.GRACEFUL: 'graceful'>
    """
    config_dict: dict[str, Any] = {}

    if config_path is None:
        if DEFAULT_CONFIG_PATH.exists():
            config_path = DEFAULT_CONFIG_PATH
    elif isinstance(config_path, str):
        config_path = Path(config_path)

    if config_path is not None:
        try:
            yaml_config = _load_yaml_config(config_path)
        except (OSError, yaml.YAMLError) as exc:
            raise ConfigurationError(
                f"Cannot read configuration file: {exc}",
                details={"path": str(config_path)},
            ) from exc
        if not isinstance(yaml_config, dict):
            raise ConfigurationError(
                "Configuration file must contain a mapping",
                details={"path": str(config_path)},
            )
        config_dict = _deep_merge(config_dict, yaml_config)

    config_dict = _deep_merge(config_dict, _load_env_config(env_prefix, environ))
    config_dict = _deep_merge(config_dict, _load_deployment_env(environ))
    config_dict = _deep_merge(config_dict, cli_overrides or {})

    try:
        config = AppConfig(**config_dict)
    except ValidationError as exc:
        raise ConfigurationError(
            f"Invalid configuration: {exc.error_count()} error(s)",
            details={"errors": exc.errors(include_url=False)},
        ) from exc

    if config.updater.track_game_files and not config.packages:
        raise ConfigurationError(
            "No packages configured while game file tracking is enabled",
            details={"hint": "Add packages or set updater.track_game_files=false"},
        )

    return config
