"""
onionrc Configuration using Pydantic Settings.

Provides strongly typed configuration with environment variable support,
validation, and sensible defaults.

Environment variables use the ONIONRC_ prefix and ``__`` for nesting:
- ONIONRC_TOR__USE_BRIDGES, ONIONRC_TOR__SOCKS_PORT (tor settings)
- ONIONRC_BUILDER__VARIANT (torrc rule set)
- ONIONRC_PATHS__DATA_DIR (file locations)
- ONIONRC_LOG__LEVEL (log settings)
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..config_files import TorConfigFiles
from ..settings import BuilderPolicy, BuilderVariant, TorSettings


def get_project_root() -> Path:
    """Get the project root directory."""
    if env_home := os.getenv("ONIONRC_HOME"):
        return Path(env_home)
    return Path.cwd()


class BuilderSettings(BaseModel):
    """torrc rule set selection."""

    variant: BuilderVariant = Field(
        default=BuilderVariant.CURRENT,
        description="Rule set (legacy, current)"
    )
    max_bridges: Optional[int] = Field(
        default=None,
        ge=1,
        description="Cap on predefined bridges, shuffled (legacy only)"
    )

    def to_policy(self) -> BuilderPolicy:
        return BuilderPolicy(variant=self.variant, max_bridges=self.max_bridges)


class PathSettings(BaseModel):
    """File locations referenced from or produced alongside torrc."""

    data_dir: Optional[str] = Field(
        default=None,
        description="Tor data directory; fills in any file not set below"
    )
    control_port_file: Optional[str] = None
    cookie_auth_file: Optional[str] = None
    geoip_file: Optional[str] = None
    geoip6_file: Optional[str] = None
    nameserver_file: Optional[str] = None
    pluggable_transport_client: Optional[str] = Field(
        default=None,
        description="obfs4proxy/lyrebird binary"
    )
    bridges_file: Optional[str] = Field(
        default=None,
        description="Predefined bridge catalog (packaged list if unset)"
    )
    custom_bridges_file: Optional[str] = Field(
        default=None,
        description="User bridge lines, one per row; wins over the catalog"
    )
    torrc_file: str = Field(
        default="torrc",
        description="Where the generated torrc is written"
    )

    def to_config_files(self, resolve=None) -> TorConfigFiles:
        """Build ``TorConfigFiles``, relative paths resolved with ``resolve``."""
        resolve = resolve or Path

        overrides = {}
        for name in (
            "control_port_file",
            "cookie_auth_file",
            "geoip_file",
            "geoip6_file",
            "nameserver_file",
            "pluggable_transport_client",
        ):
            value = getattr(self, name)
            if value:
                overrides[name] = resolve(value)

        if self.data_dir:
            return TorConfigFiles.from_directory(resolve(self.data_dir), **overrides)
        return TorConfigFiles(**overrides)


class LogSettings(BaseModel):
    """Logging configuration settings."""

    level: str = Field(
        default="INFO",
        description="Log level"
    )
    format: str = Field(
        default="console",
        description="Log format (json, console)"
    )
    file: Optional[str] = Field(
        default=None,
        description="Log file path"
    )

    @field_validator('level')
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v_upper


class Settings(BaseSettings):
    """
    Main application settings.

    Loads configuration from:
    1. YAML config file (config/config.yaml)
    2. Environment variables (ONIONRC_* prefix)
    3. Default values

    Sections present in the YAML file win over the environment.
    """

    model_config = SettingsConfigDict(
        env_prefix="ONIONRC_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    tor: TorSettings = Field(default_factory=TorSettings)
    builder: BuilderSettings = Field(default_factory=BuilderSettings)
    paths: PathSettings = Field(default_factory=PathSettings)
    log: LogSettings = Field(default_factory=LogSettings)

    @classmethod
    def load_from_yaml(cls, config_file: Path) -> "Settings":
        """Load settings from YAML file with environment overrides."""
        data = {}

        if config_file.exists():
            with open(config_file, 'r') as f:
                data = yaml.safe_load(f) or {}

        settings_dict = {
            section: data[section]
            for section in ('tor', 'builder', 'paths', 'log')
            if data.get(section) is not None
        }
        return cls(**settings_dict)

    def resolve_path(self, relative_path: str) -> Path:
        """Resolve a relative path against the project root."""
        path = Path(relative_path)
        if path.is_absolute():
            return path
        return get_project_root() / path

    def get_config_files(self) -> TorConfigFiles:
        return self.paths.to_config_files(self.resolve_path)

    def get_bridges_file(self) -> Optional[Path]:
        if self.paths.bridges_file:
            return self.resolve_path(self.paths.bridges_file)
        return None

    def get_custom_bridges_file(self) -> Optional[Path]:
        if self.paths.custom_bridges_file:
            return self.resolve_path(self.paths.custom_bridges_file)
        return None

    def get_torrc_file(self) -> Path:
        return self.resolve_path(self.paths.torrc_file)

    def save_to_yaml(self, config_file: Path) -> None:
        """Save settings to YAML file."""
        config_file.parent.mkdir(parents=True, exist_ok=True)

        data = {
            'tor': self.tor.model_dump(mode='json'),
            'builder': self.builder.model_dump(mode='json'),
            'paths': self.paths.model_dump(mode='json'),
            'log': self.log.model_dump(mode='json'),
        }

        with open(config_file, 'w') as f:
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached singleton).

    First attempts to load from config/config.yaml, then applies
    environment variable overrides.
    """
    config_file = get_project_root() / "config" / "config.yaml"

    if config_file.exists():
        return Settings.load_from_yaml(config_file)

    return Settings()
