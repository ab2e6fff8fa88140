# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Gram-Optic Configuration System

Centralized configuration management supporting:
- Environment variables (GRAM_OPTIC_*)
- Config files (/etc/gram-optic.yaml, ~/.config/gram-optic/config.yaml)
- Programmatic defaults
- Pydantic validation
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from .exceptions import ConfigFileError, ConfigValidationError, InvalidSizeError
from .resources import parse_size

logger = logging.getLogger("gramoptic.config")

SYSTEM_CONFIG_FILE = Path("/etc/gram-optic.yaml")
USER_CONFIG_FILE = Path.home() / ".config" / "gram-optic" / "config.yaml"

_TMP = Path(tempfile.gettempdir())


# ============================================================================
# Configuration Models
# ============================================================================


class PathsConfig(BaseModel):
    """Path configuration"""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    state_dir: Path = Field(
        default_factory=lambda: _TMP / "gram-optic",
        description="Runtime state directory (daemon PID, device ids)",
    )
    log_file: Path = Field(
        default=Path("/var/log/gram-optic.log"), description="Event log"
    )
    fallback_log_file: Path = Field(
        default_factory=lambda: _TMP / "gram-optic.log",
        description="Event log used when log_file is not writable",
    )
    swap_file: Path = Field(
        default=Path("/swap/gram-optic-workspace46.swap"),
        description="Backing file for the disk swap tier",
    )

    @field_validator("*", mode="before")
    @classmethod
    def ensure_path(cls, v):
        """Convert strings to Path objects"""
        if isinstance(v, str):
            return Path(v).expanduser()
        return v


class TierConfig(BaseModel):
    """Tier sizing, compression and swap priorities"""

    default_zram_size: str = Field(default="2G", description="Compressed RAM size")
    swap_size: str = Field(default="4G", description="Disk swap file size")
    low_compression: str = Field(default="lz4", description="Low-compression algorithm")
    medium_compression: str = Field(
        default="zstd", description="Medium-compression algorithm"
    )
    zram_priority: int = Field(default=100, ge=-1, le=32767)
    disk_swap_priority: int = Field(default=50, ge=-1, le=32767)

    @field_validator("default_zram_size", "swap_size", mode="before")
    @classmethod
    def validate_size(cls, v):
        """Reject tokens parse_size can't read"""
        if isinstance(v, int) and not isinstance(v, bool):
            v = str(v)
        try:
            parse_size(v)
        except InvalidSizeError as e:
            raise ValueError(e.message)
        return v.strip() if isinstance(v, str) else v

    @field_validator("low_compression", "medium_compression")
    @classmethod
    def validate_algorithm(cls, v):
        v = v.strip()
        if not v or " " in v:
            raise ValueError(f"Invalid compression algorithm name: {v!r}")
        return v

    @model_validator(mode="after")
    def check_priorities(self):
        if self.zram_priority <= self.disk_swap_priority:
            raise ValueError(
                "zram_priority must be greater than disk_swap_priority "
                f"({self.zram_priority} <= {self.disk_swap_priority})"
            )
        return self

    @property
    def zram_size_bytes(self) -> int:
        return parse_size(self.default_zram_size)

    @property
    def swap_size_bytes(self) -> int:
        return parse_size(self.swap_size)


class DaemonConfig(BaseModel):
    """Reconciliation daemon configuration"""

    poll_interval: float = Field(default=2.0, gt=0, description="Seconds between polls")
    stop_timeout: float = Field(
        default=5.0, gt=0, description="Seconds to wait for the daemon to exit"
    )
    startup_grace: float = Field(
        default=0.5, ge=0, description="Seconds before confirming the daemon is up"
    )
    restart_pause: float = Field(
        default=1.0, ge=0, description="Pause between stop and start on restart"
    )
    history_size: int = Field(default=256, ge=1, description="Transitions kept in memory")


class SystemConfig(BaseModel):
    """Host command execution"""

    use_sudo: Literal["auto", "always", "never"] = Field(
        default="auto", description="Prefix privileged commands with sudo"
    )
    command_timeout: float = Field(default=30.0, gt=0, description="Seconds")
    hyprctl: str = Field(default="hyprctl", description="Compositor query command")


class ObservabilityConfig(BaseModel):
    """Logging configuration"""

    log_level: str = Field(default="INFO", description="Logging level")
    console: bool = Field(default=True, description="Echo log lines to stdout")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level"""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v_upper


class GramOpticConfig(BaseModel):
    """Complete gram-optic configuration"""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    paths: PathsConfig = Field(default_factory=PathsConfig)
    tiers: TierConfig = Field(default_factory=TierConfig)
    daemon: DaemonConfig = Field(default_factory=DaemonConfig)
    system: SystemConfig = Field(default_factory=SystemConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)


# ============================================================================
# Configuration Loader
# ============================================================================

# Flat keys of the old shell config
_LEGACY_KEYS = {
    "default_zram_size": "default_zram_size",
    "zram_size": "default_zram_size",
    "swap_size": "swap_size",
    "low_compression": "low_compression",
    "medium_compression": "medium_compression",
}

# env var -> (section, key)
_ENV_VARS = {
    "GRAM_OPTIC_STATE_DIR": ("paths", "state_dir"),
    "GRAM_OPTIC_LOG_FILE": ("paths", "log_file"),
    "GRAM_OPTIC_SWAP_FILE": ("paths", "swap_file"),
    "GRAM_OPTIC_ZRAM_SIZE": ("tiers", "default_zram_size"),
    "GRAM_OPTIC_SWAP_SIZE": ("tiers", "swap_size"),
    "GRAM_OPTIC_LOW_COMPRESSION": ("tiers", "low_compression"),
    "GRAM_OPTIC_MEDIUM_COMPRESSION": ("tiers", "medium_compression"),
    "GRAM_OPTIC_POLL_INTERVAL": ("daemon", "poll_interval"),
    "GRAM_OPTIC_SUDO": ("system", "use_sudo"),
    "GRAM_OPTIC_LOG_LEVEL": ("observability", "log_level"),
}


class ConfigLoader:
    """Load configuration from multiple sources"""

    @staticmethod
    def load_from_env() -> Dict[str, Any]:
        """Load configuration from environment variables"""
        config: Dict[str, Any] = {}
        for var, (section, key) in _ENV_VARS.items():
            value = os.getenv(var)
            if value:
                config.setdefault(section, {})[key] = value
        return config

    @staticmethod
    def load_from_file(file_path: Path) -> Dict[str, Any]:
        """Load configuration from a YAML file"""
        if not file_path.exists():
            return {}

        try:
            with open(file_path, "r") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigFileError(
                f"Failed to load config file {file_path}", cause=e
            ) from e

        if not isinstance(data, dict):
            raise ConfigFileError(
                f"Config file {file_path} must contain a mapping",
                details={"type": type(data).__name__},
            )
        return ConfigLoader.normalize_legacy_keys(data)

    @staticmethod
    def normalize_legacy_keys(data: Dict[str, Any]) -> Dict[str, Any]:
        """Fold top-level DEFAULT_ZRAM_SIZE-style keys into the tiers section"""
        result: Dict[str, Any] = {}
        for key, value in data.items():
            legacy = _LEGACY_KEYS.get(str(key).lower())
            if legacy and not isinstance(value, dict):
                result.setdefault("tiers", {})[legacy] = value
            elif key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = ConfigLoader.merge_configs(result[key], value)
            else:
                result[key] = value
        return result

    @staticmethod
    def merge_configs(*configs: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge multiple configuration dictionaries"""
        result: Dict[str, Any] = {}
        for config in configs:
            for key, value in config.items():
                if (
                    key in result
                    and isinstance(result[key], dict)
                    and isinstance(value, dict)
                ):
                    result[key] = ConfigLoader.merge_configs(result[key], value)
                else:
                    result[key] = value
        return result


# ============================================================================
# Global Configuration Instance
# ============================================================================

_config: Optional[GramOpticConfig] = None


def get_config() -> GramOpticConfig:
    """
    Get global gram-optic configuration

    Configuration is loaded from (in order of precedence):
    1. Environment variables (GRAM_OPTIC_*)
    2. ~/.config/gram-optic/config.yaml
    3. /etc/gram-optic.yaml
    4. Default values
    """
    global _config

    if _config is None:
        _config = load_config()

    return _config


def load_config(
    config_file: Optional[Path] = None,
    env_override: bool = True,
    search_default_locations: bool = True,
) -> GramOpticConfig:
    """
    Load configuration from all sources

    Args:
        config_file: Optional specific config file to load
        env_override: Whether environment variables override file config
        search_default_locations: Read the system and user config files

    Returns:
        GramOpticConfig instance

    Raises:
        ConfigFileError: config_file is missing or unreadable
        ConfigValidationError: merged values fail validation
    """
    configs: List[Dict[str, Any]] = []

    # 1. Load from default locations
    if search_default_locations:
        for location in (SYSTEM_CONFIG_FILE, USER_CONFIG_FILE):
            file_config = ConfigLoader.load_from_file(location)
            if file_config:
                configs.append(file_config)
                logger.debug(f"Loaded config from {location}")

    # 2. Load from specific file if provided
    if config_file:
        config_file = Path(config_file).expanduser()
        if not config_file.exists():
            raise ConfigFileError(f"Config file not found: {config_file}")
        file_config = ConfigLoader.load_from_file(config_file)
        if file_config:
            configs.append(file_config)
            logger.debug(f"Loaded config from {config_file}")

    # 3. Load from environment variables
    if env_override:
        env_config = ConfigLoader.load_from_env()
        if env_config:
            configs.append(env_config)
            logger.debug("Loaded config from environment")

    merged = ConfigLoader.merge_configs(*configs) if configs else {}

    try:
        return GramOpticConfig(**merged)
    except ValidationError as e:
        errors = [
            f"{'.'.join(str(loc) for loc in err['loc'])}: {err['msg']}"
            for err in e.errors()
        ]
        raise ConfigValidationError(
            f"Invalid configuration: {'; '.join(errors)}", errors=errors, cause=e
        ) from e


def reload_config(config_file: Optional[Path] = None) -> GramOpticConfig:
    """Reload global configuration"""
    global _config
    _config = load_config(config_file)
    logger.debug("Configuration reloaded")
    return _config
