"""
Configuration - environment settings and the contract alias file
"""

import os
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, ValidationError, field_validator

from invoice_fetcher.errors import ConfigurationError


logger = logging.getLogger(__name__)

DEFAULT_REDIRECT_URI = "http://localhost:8080/oauth2/callback"
DEFAULT_SENDER = "faturaedp@edp.pt"


def _optional_float(value: Optional[str]) -> Optional[float]:
    if value is None or not value.strip():
        return None
    try:
        return float(value)
    except ValueError as error:
        raise ConfigurationError(f"Expected a number of seconds, got {value!r}") from error


def load_timezone(name: Optional[str]) -> Optional[ZoneInfo]:
    """Resolve an IANA timezone name; None means host local time"""
    if not name:
        return None
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as error:
        raise ConfigurationError(f"Unknown timezone {name!r}") from error


@dataclass
class Settings:
    """Runtime settings, read from the environment (and .env)"""
    config_path: Path = Path("config.yaml")
    credentials_path: Path = Path("credentials.json")
    token_path: Path = Path("token.json")
    output_dir: Path = Path(".")
    redirect_uri: str = DEFAULT_REDIRECT_URI
    sender: str = DEFAULT_SENDER
    timezone: Optional[str] = None
    auth_timeout: Optional[float] = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv(find_dotenv(usecwd=True))
        return cls(
            config_path=Path(os.getenv("INVOICE_CONFIG_PATH", "config.yaml")),
            credentials_path=Path(os.getenv("GMAIL_CREDENTIALS_PATH", "credentials.json")),
            token_path=Path(os.getenv("GMAIL_TOKEN_PATH", "token.json")),
            output_dir=Path(os.getenv("INVOICE_OUTPUT_DIR", ".")),
            redirect_uri=os.getenv("OAUTH_REDIRECT_URI", DEFAULT_REDIRECT_URI),
            sender=os.getenv("INVOICE_SENDER", DEFAULT_SENDER),
            timezone=os.getenv("INVOICE_TIMEZONE") or None,
            auth_timeout=_optional_float(os.getenv("AUTH_TIMEOUT")),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )


class ContractConfiguration(BaseModel):
    """Contents of config.yaml"""
    contracts: Dict[str, str] = {}

    @field_validator("contracts", mode="before")
    @classmethod
    def _stringify(cls, value):
        # YAML reads unquoted contract ids as integers
        if value is None:
            return {}
        if isinstance(value, dict):
            return {str(k): str(v) for k, v in value.items()}
        return value


def load_contract_aliases(path) -> Dict[str, str]:
    """Load the contract-id -> alias table. A missing file means no aliases."""
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        logger.info(f"No configuration file at {path}, continuing without contract aliases")
        return {}
    except OSError as error:
        raise ConfigurationError(f"Unable to read the configuration {path}: {error}") from error

    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as error:
        raise ConfigurationError(f"Unable to parse the configuration {path}: {error}") from error

    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration {path} must be a mapping")

    try:
        configuration = ContractConfiguration.model_validate(data)
    except ValidationError as error:
        raise ConfigurationError(f"Invalid configuration {path}: {error}") from error

    logger.debug(f"Loaded {len(configuration.contracts)} contract aliases from {path}")
    return configuration.contracts
