"""
Pinning service configuration.

Reads the application configuration, the project registry and per-project
configuration from the distributed-press configuration directory:

    ~/.distributed-press/
        config.json          application configuration (AppConfig)
        projects.json        registry of active projects (Registry)
    <dataDirectory>/projects/<domain>/
        config.json          project configuration (ProjectConfig)
        www/                 website tree
        api/                 API responses tree
        private/             seeds (owned by the seed manager)
"""

import json
import logging
import os
from pathlib import Path
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from pinning.errors import ConfigurationMissing

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path.home() / ".distributed-press"
DEFAULT_PINNING_PERIOD = "0 */15 * * * *"


def default_config_dir() -> Path:
    """Configuration directory, overridable with PINNING_CONFIG_DIR."""
    return Path(os.getenv("PINNING_CONFIG_DIR", str(DEFAULT_CONFIG_DIR)))


class DatStoreConfig(BaseModel):
    """Credentials for the drive pinning service (dat-store)."""

    server: str = Field(..., description="Pinning service API base URL")
    username: str = Field(default="", description="Pinning service account")
    password: str = Field(default="", description="Pinning service password")


class DevConfig(BaseModel):
    """Development / runtime tuning knobs."""

    model_config = ConfigDict(populate_by_name=True)

    pinning_period: Union[int, str] = Field(
        default=DEFAULT_PINNING_PERIOD,
        alias="pinningPeriod",
        description="Cron pattern (seconds first, e.g. '0 */15 * * * *') or seconds between passes"
    )


class AppConfig(BaseModel):
    """Application configuration (config.json)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    data_directory: Optional[str] = Field(
        default=None,
        alias="dataDirectory",
        description="Root of the data directory (default: <config dir>/data)"
    )
    ipfs_server: str = Field(
        default="/ip4/127.0.0.1/tcp/5001",
        alias="ipfsServer",
        description="IPFS daemon API address (multiaddr format)"
    )
    dat_store: DatStoreConfig = Field(..., alias="datStore")
    digital_ocean_access_token: str = Field(..., alias="digitalOceanAccessToken")
    dev: DevConfig = Field(default_factory=DevConfig)

    # Not part of config.json; filled in by load_app_config
    config_dir: Path = Field(default_factory=default_config_dir, exclude=True)

    @property
    def data_dir(self) -> Path:
        if self.data_directory and self.data_directory.strip():
            return Path(self.data_directory)
        return self.config_dir / "data"

    @property
    def projects_dir(self) -> Path:
        return self.data_dir / "projects"

    @property
    def registry_file(self) -> Path:
        return self.config_dir / "projects.json"


class ProjectEntry(BaseModel):
    """One entry of the registry's active list."""

    model_config = ConfigDict(extra="ignore")

    name: Optional[str] = None
    domain: str

    @property
    def directory_name(self) -> str:
        """Projects are stored under their domain, as the backend lays them out."""
        return self.domain

    @property
    def display_name(self) -> str:
        return self.name or self.domain


class Registry(BaseModel):
    """Project registry (projects.json)."""

    model_config = ConfigDict(extra="ignore")

    active: List[ProjectEntry] = Field(default_factory=list)


class ProjectConfig(BaseModel):
    """Per-project configuration (<project>/config.json)."""

    model_config = ConfigDict(extra="ignore")

    domain: str


def _read_json(path: Path) -> dict:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def load_app_config(directory: Optional[Path] = None) -> AppConfig:
    """
    Load and validate the application configuration.

    Args:
        directory: Configuration directory (default: PINNING_CONFIG_DIR or
            ~/.distributed-press)

    Returns:
        Validated AppConfig

    Raises:
        ConfigurationMissing: If config.json, the data directory or the
            projects directory is missing, or config.json is invalid
    """
    directory = Path(directory) if directory else default_config_dir()
    conf_file = directory / "config.json"

    if not conf_file.exists():
        raise ConfigurationMissing(
            f"Run backend module to set up application configuration at {conf_file} "
            f"before starting pinning service"
        )

    try:
        conf = AppConfig.model_validate(_read_json(conf_file))
    except (ValueError, ValidationError) as e:
        raise ConfigurationMissing(f"Invalid configuration in {conf_file}: {e}")

    conf.config_dir = directory

    if not conf.data_dir.exists():
        raise ConfigurationMissing(f"Data directory not found at {conf.data_dir}")
    if not conf.projects_dir.exists():
        raise ConfigurationMissing(f"Projects directory not found at {conf.projects_dir}")

    logger.info(f"Pinning service configuration loaded from {conf_file}")
    logger.info(f"Data directory located at {conf.data_dir}")

    return conf


def load_registry(registry_file: Path) -> Registry:
    """
    Load the project registry.

    Raises:
        ConfigurationMissing: If the registry is absent or invalid
    """
    if not registry_file.exists():
        raise ConfigurationMissing(f"Project registry not found at {registry_file}")

    try:
        return Registry.model_validate(_read_json(registry_file))
    except (ValueError, ValidationError) as e:
        raise ConfigurationMissing(f"Invalid project registry {registry_file}: {e}")


def load_project_config(config_file: Path) -> ProjectConfig:
    """Load a project's config.json (caller checks for existence)."""
    return ProjectConfig.model_validate(_read_json(config_file))
