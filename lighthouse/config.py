"""Configuration management for the Lighthouse collector."""

import logging
import os
import sys
import tomllib
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigError
from .token_store import default_request_token_path

logger = logging.getLogger("lighthouse.config")

CONFIG_FILENAME = "lighthouse.toml"
DEFAULT_UPDATE_INTERVAL = 3600


def default_config_path() -> Path:
    """Config file location: $LIGHTHOUSE_CONFIG, else beside the running program."""
    env_path = os.getenv("LIGHTHOUSE_CONFIG")
    if env_path:
        return Path(env_path)
    return Path(sys.argv[0]).resolve().parent / CONFIG_FILENAME


class SectionConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class DatabaseConfig(SectionConfig):
    """[Database] section."""

    # Any SQLAlchemy driver name, e.g. "mysql+pymysql" or "sqlite"
    driver: str = Field(default="postgresql+psycopg", alias="Driver")
    host_name: str = Field(default="", alias="HostName")
    port: Optional[int] = Field(default=None, alias="Port")
    name: str = Field(default="", alias="Name")
    username: str = Field(default="", alias="Username")
    password: str = Field(default="", alias="Password")


class NorlysAPIConfig(SectionConfig):
    """[NorlysAPI] section."""

    url: str = Field(default="", alias="URL")
    update_prices_interval: int = Field(default=DEFAULT_UPDATE_INTERVAL, alias="UpdatePricesInterval")
    number_of_days: int = Field(default=2, alias="NumberOfDays")
    sector: str = Field(default="DK1", alias="Sector")


class ElOverblikConfig(SectionConfig):
    """[ElOverblik] section."""

    fetch_data_from_eloverblik: bool = Field(default=False, alias="FetchDataFromElOverblik")
    lighthouse_token: str = Field(default="", alias="LighthouseToken")
    url: str = Field(default="https://api.eloverblik.dk/customerapi", alias="URL")
    # 0 means "same as NorlysAPI.UpdatePricesInterval"
    update_interval: int = Field(default=0, alias="UpdateInterval")
    number_of_days: int = Field(default=7, alias="NumberOfDays")
    request_token_file: str = Field(default="", alias="RequestTokenFile")


class Settings(BaseSettings):
    """Application settings loaded from lighthouse.toml."""

    save_request_token_to_disk: bool = Field(default=False, alias="SaveRequestTokenToDisk")
    api_port: int = Field(default=4001, alias="APIPort")
    log_level: str = Field(default="INFO", alias="LogLevel")

    database: DatabaseConfig = Field(default_factory=DatabaseConfig, alias="Database")
    norlys_api: NorlysAPIConfig = Field(default_factory=NorlysAPIConfig, alias="NorlysAPI")
    eloverblik: ElOverblikConfig = Field(default_factory=ElOverblikConfig, alias="ElOverblik")

    model_config = SettingsConfigDict(populate_by_name=True, extra="ignore")

    @field_validator("log_level")
    @classmethod
    def check_log_level(cls, value: str) -> str:
        value = value.upper()
        if value not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level: {value}")
        return value

    @model_validator(mode="after")
    def check_required(self) -> "Settings":
        """Check that all the critical fields are configured."""
        if not self.database.name:
            raise ValueError("database name not configured")
        if not self.database.driver.startswith("sqlite"):
            if not self.database.password:
                raise ValueError("database password not configured")
            if not self.database.username:
                raise ValueError("database username not configured")
            if not self.database.host_name:
                raise ValueError("database hostname not configured")
        if not self.norlys_api.url:
            raise ValueError("norlys url not configured")
        if self.eloverblik.fetch_data_from_eloverblik and not self.eloverblik.lighthouse_token:
            raise ValueError("eloverblik LighthouseToken not configured")

        if self.norlys_api.update_prices_interval <= 0:
            self.norlys_api.update_prices_interval = DEFAULT_UPDATE_INTERVAL
        return self

    @property
    def metering_update_interval(self) -> int:
        """Seconds between Eloverblik cycles."""
        if self.eloverblik.update_interval > 0:
            return self.eloverblik.update_interval
        return self.norlys_api.update_prices_interval

    @property
    def request_token_path(self) -> Path:
        if self.eloverblik.request_token_file:
            return Path(self.eloverblik.request_token_file)
        return default_request_token_path()


def load_settings(path: Optional[Path] = None) -> Settings:
    """Find the configuration file on disk and parse it.

    Raises:
        ConfigError: if the file is missing, not valid TOML, or fails validation
    """
    path = path or default_config_path()
    if not path.is_file():
        raise ConfigError(f"error reading configuration file, file: {path} does not exist")

    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except OSError as e:
        raise ConfigError(f"error opening configuration file: {e}")
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"error decoding toml data: {e}")

    try:
        settings = Settings(**data)
    except ValidationError as e:
        raise ConfigError(f"invalid configuration in {path}: {e}")

    logger.debug(f"Configuration loaded from {path}")
    return settings
