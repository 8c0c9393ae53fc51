#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Config Loader

- Loads the YAML service configuration and validates it with Pydantic
- Environment variables override selected keys (DATABASE_URL, ALLOWLIST_API_KEY_HASH)
- Redacts sensitive fields from logs (API key hashes, passwords, tokens, etc.)
"""

import os
from pathlib import Path
from typing import Dict, Any, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

from utils.logger import get_logger

DEFAULT_CONFIG_PATH = "config/allowlist.yaml"
CONFIG_PATH_ENV = "ALLOWLIST_CONFIG"
DEFAULT_IP_SOURCE = "https://jetpack.com/ips-v4.txt"

# Keys that should never be logged in plain text
SENSITIVE_KEYS = {"password", "api_key", "secret", "token", "auth", "hash"}


class AllowListSettings(BaseModel):
    database_url: Optional[str] = Field(None, description="SQLAlchemy URL for the option store and cache")
    config_path: str = Field(".htaccess", description="Apache config file that receives the marker block")
    marker: str = Field("Whitelist XML-RPC", description="Name used in the BEGIN/END marker lines")
    default_source: str = Field(DEFAULT_IP_SOURCE, description="Feed URL seeded on activation")
    fetch_timeout: float = Field(30.0, gt=0, description="Total fetch timeout in seconds")
    verify_tls: bool = True
    cache_ttl: int = Field(3600, ge=0, description="Display cache lifetime in seconds")
    target: str = Field("auto", description="auto, apache or nginx")
    server_software: Optional[str] = Field(None, description="Server signature used when target is auto")
    refresh_interval_minutes: float = Field(1440.0, ge=0, description="0 disables the scheduler")
    log_level: str = "INFO"
    api_key_hash: Optional[str] = Field(None, description="passlib hash of the admin API key")

    @field_validator("target")
    @classmethod
    def _check_target(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in {"auto", "apache", "nginx"}:
            raise ValueError(f"Unsupported target '{value}'. Expected auto, apache or nginx.")
        return normalized


def _redact_config(config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Recursively redact sensitive values in a config dict.
    """

    redacted = {}
    for k, v in config.items():
        if isinstance(v, dict):
            redacted[k] = _redact_config(v)
        elif isinstance(v, list):
            redacted[k] = [
                _redact_config(i) if isinstance(i, dict) else i for i in v
            ]
        else:
            if any(s in k.lower() for s in SENSITIVE_KEYS):
                redacted[k] = "***REDACTED***"
            else:
                redacted[k] = v
    return redacted


def load_config(path: str, logger: Optional[Any] = None) -> Dict[str, Any]:

    """
    Load a YAML config file with structured logging and redaction.

    Args:
        path: Path to config file
        logger: Optional logger; if None, uses default config logger

    Returns:
        Parsed configuration dict
    """
    log = logger or get_logger("config_loader", "INFO", "config_loader.log")

    config_path = Path(path)
    if not config_path.exists():
        log.error("Config file not found: %s", config_path)
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        with config_path.open("r", encoding="utf-8") as f:
            config = yaml.safe_load(f) or {}
        if not isinstance(config, dict):
            raise ValueError(f"Config file {path} must contain a mapping")
        log.info("Loaded config file: %s", config_path)

        # Log redacted config snapshot for debugging
        redacted = _redact_config(config)
        log.debug("Config contents (redacted): %s", redacted)

        return config
    except yaml.YAMLError as e:
        log.error("Failed to parse YAML config %s: %s", config_path, e, exc_info=True)
        raise
    except Exception as e:
        log.error("Unexpected error loading config %s: %s", config_path, e, exc_info=True)
        raise


def load_settings(path: Optional[str] = None, logger: Optional[Any] = None) -> AllowListSettings:
    """
    Build settings from the YAML file (if any) plus environment overrides.

    An explicit path must exist; the default path is optional.
    """
    log = logger or get_logger("config_loader", "INFO", "config_loader.log")
    explicit = path or os.getenv(CONFIG_PATH_ENV)
    candidate = explicit or DEFAULT_CONFIG_PATH

    data: Dict[str, Any] = {}
    if explicit or Path(candidate).exists():
        data = load_config(candidate, log)
    else:
        log.info("No config file at %s; using defaults", candidate)

    if url := os.getenv("DATABASE_URL"):
        data["database_url"] = url
    if key_hash := os.getenv("ALLOWLIST_API_KEY_HASH"):
        data["api_key_hash"] = key_hash

    return AllowListSettings(**data)
