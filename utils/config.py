import base64
import binascii
import hashlib
import logging
import os
import re
import secrets
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional, Tuple

import yaml

from core.errors import ConfigurationError
from definitions import DEFAULT_CONFIG_FILE

logger = logging.getLogger(__name__)

ENV_DATA_DIR = "CROSSPOST_DATA_DIR"
ENV_POLL_SECONDS = "CROSSPOST_POLL_SECONDS"
ENV_ENCRYPTION_KEY = "CROSSPOST_ENCRYPTION_KEY"

DEFAULT_POLL_SECONDS = 5.0
MIN_POLL_SECONDS = 1.0
DEFAULT_CAPABILITY_TTL_SECONDS = 300.0

_HEX_KEY = re.compile(r"^[0-9a-fA-F]{64}$")


def load_config(config_file):
    """
    Load configuration settings from a YAML file.

    Args:
        config_file (str | Path): The file path to the YAML configuration file.

    Returns:
        dict: The parsed configuration (empty for an empty file).

    Raises:
        ConfigurationError: If the file is missing, is not valid YAML, or is
            not a mapping at the top level.

    Notes:
        - `yaml.safe_load` is used so the file cannot execute Python code.
    """
    try:
        with open(config_file, encoding="utf-8") as file:
            config = yaml.safe_load(file)
    except FileNotFoundError:
        raise ConfigurationError(f"Configuration file {config_file} not found.")
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Error parsing YAML file: {e}")

    if config is None:
        return {}
    if not isinstance(config, dict):
        raise ConfigurationError(f"Configuration file {config_file} must contain a mapping")
    return config


def resolve_encryption_key(value: Optional[str]) -> Tuple[bytes, str]:
    """
    Turn the configured key into 32 raw bytes.

    Accepted forms, in order: 64 hex characters, base64 of exactly 32 bytes,
    or any other passphrase (hashed with SHA-256). With no value a random
    key is generated, which means scheduled jobs cannot be opened after a
    restart.

    Returns:
        (key, source) where source describes the form, for startup logging.
    """
    if value is None or not str(value).strip():
        logger.warning(
            "No encryption key configured (%s); generating an ephemeral key. "
            "Scheduled jobs will not survive a restart.",
            ENV_ENCRYPTION_KEY,
        )
        return secrets.token_bytes(32), "ephemeral"

    raw = str(value).strip()
    if _HEX_KEY.match(raw):
        return bytes.fromhex(raw), "hex"

    try:
        decoded = base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError):
        decoded = b""
    if len(decoded) == 32:
        return decoded, "base64"

    return hashlib.sha256(raw.encode("utf-8")).digest(), "passphrase"


@dataclass
class Settings:
    data_dir: Path
    encryption_key: bytes
    encryption_key_source: str = "ephemeral"
    poll_seconds: float = DEFAULT_POLL_SECONDS
    capability_ttl_seconds: float = DEFAULT_CAPABILITY_TTL_SECONDS
    status_file: Path = Path("status.json")
    log_file_name: str = "crosspost"
    nosocial: bool = False
    debug: bool = False

    @property
    def jobs_file(self) -> Path:
        return self.data_dir / "jobs.json"

    def __repr__(self) -> str:
        return (
            f"Settings(data_dir={str(self.data_dir)!r}, poll_seconds={self.poll_seconds}, "
            f"capability_ttl_seconds={self.capability_ttl_seconds}, status_file={str(self.status_file)!r}, "
            f"nosocial={self.nosocial}, encryption_key=<{self.encryption_key_source}>)"
        )


def _section(config: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    section = config.get(name) or {}
    if not isinstance(section, Mapping):
        raise ConfigurationError(f"Config section '{name}' must be a mapping")
    return section


def _number(value: Any, name: str) -> float:
    if isinstance(value, bool):
        raise ConfigurationError(f"{name} must be a number, got {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{name} must be a number, got {value!r}")


def load_settings(config_file=None, env: Optional[Mapping[str, str]] = None, use_defaults: bool = False) -> Settings:
    """
    Resolve settings from the YAML file and environment overrides.

    Args:
        config_file: YAML path (defaults to config/config.yaml).
        env: Environment mapping (defaults to os.environ).
        use_defaults: Tolerate a missing config file and run on defaults.
    """
    env = os.environ if env is None else env
    config_path = Path(config_file) if config_file else DEFAULT_CONFIG_FILE

    if use_defaults and not config_path.exists():
        logger.info("No config file at %s; using defaults.", config_path)
        config: Mapping[str, Any] = {}
    else:
        config = load_config(config_path)

    script = _section(config, "script")
    scheduler = _section(config, "scheduler")
    mastodon = _section(config, "mastodon")
    status = _section(config, "status")

    data_dir = Path(env.get(ENV_DATA_DIR) or scheduler.get("data_dir") or "./data")

    poll_raw = env.get(ENV_POLL_SECONDS) or scheduler.get("poll_seconds", DEFAULT_POLL_SECONDS)
    poll_seconds = _number(poll_raw, "scheduler.poll_seconds")
    if poll_seconds < MIN_POLL_SECONDS:
        logger.warning("poll_seconds=%s is below the minimum; using %s.", poll_seconds, MIN_POLL_SECONDS)
        poll_seconds = MIN_POLL_SECONDS

    ttl = _number(
        mastodon.get("capability_ttl_seconds", DEFAULT_CAPABILITY_TTL_SECONDS), "mastodon.capability_ttl_seconds"
    )
    if ttl < 0:
        raise ConfigurationError("mastodon.capability_ttl_seconds must not be negative")

    key, key_source = resolve_encryption_key(env.get(ENV_ENCRYPTION_KEY) or scheduler.get("encryption_key"))

    return Settings(
        data_dir=data_dir,
        encryption_key=key,
        encryption_key_source=key_source,
        poll_seconds=poll_seconds,
        capability_ttl_seconds=ttl,
        status_file=Path(status.get("file") or "status.json"),
        log_file_name=str(script.get("log_file_name") or "crosspost"),
        nosocial=bool(script.get("nosocial", False)),
        debug=bool(script.get("debug", False)),
    )
