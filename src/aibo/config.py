"""Aibo configuration loading and validation.

Reads aibo.toml, resolves ``${VAR}`` references from the environment, and
returns a validated AiboConfig dataclass.
"""

from __future__ import annotations

import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

DEFAULT_CALDAV_URL = "https://caldav.fastmail.com/dav/calendars/user/{username}/"
DEFAULT_CARDDAV_URL = "https://carddav.fastmail.com/dav/addressbooks/user/{username}/"
DEFAULT_TIMEOUT_S = 30.0
CONFIG_FILENAME = "aibo.toml"

# Pattern matching ${VAR_NAME}: alphanumeric + underscore variable names.
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


class ConfigError(Exception):
    """Raised when aibo configuration is missing, malformed, or invalid."""


@dataclass
class LoggingConfig:
    """Logging configuration from [aibo.logging] section."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"
    log_file: str | None = None


@dataclass
class DAVEndpointConfig:
    """One DAV endpoint ([aibo.caldav] or [aibo.carddav])."""

    url: str
    timeout_s: float = DEFAULT_TIMEOUT_S


@dataclass
class AiboConfig:
    """Parsed aibo.toml."""

    username: str
    password: str = field(repr=False)
    caldav: DAVEndpointConfig = field(
        default_factory=lambda: DAVEndpointConfig(url=DEFAULT_CALDAV_URL)
    )
    carddav: DAVEndpointConfig = field(
        default_factory=lambda: DAVEndpointConfig(url=DEFAULT_CARDDAV_URL)
    )
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @property
    def caldav_url(self) -> str:
        return self.caldav.url.format(username=self.username)

    @property
    def carddav_url(self) -> str:
        return self.carddav.url.format(username=self.username)

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> AiboConfig:
        """Build a config from ``FASTMAIL_USERNAME`` / ``FASTMAIL_PASSWORD``."""
        env = os.environ if environ is None else environ
        username = (env.get("FASTMAIL_USERNAME") or "").strip()
        password = env.get("FASTMAIL_PASSWORD") or ""
        missing = [
            name
            for name, value in (("FASTMAIL_USERNAME", username), ("FASTMAIL_PASSWORD", password))
            if not value
        ]
        if missing:
            raise ConfigError(f"Missing required environment variable(s): {', '.join(missing)}")
        return cls(username=username, password=password)


def resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ``${VAR_NAME}`` references in config values.

    Walks dicts, lists, and strings. Non-string leaf values (int, bool,
    float, None) are returned unchanged.

    Raises
    ------
    ConfigError
        If a referenced environment variable is not set.
    """
    if isinstance(value, dict):
        return {k: resolve_env_vars(v) for k, v in value.items()}

    if isinstance(value, list):
        return [resolve_env_vars(item) for item in value]

    if isinstance(value, str):
        return _resolve_string(value)

    return value


def _resolve_string(s: str) -> str:
    """Replace all ``${VAR_NAME}`` occurrences in *s*, reporting every missing name at once."""
    missing: list[str] = []

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)
        if env_value is None:
            missing.append(var_name)
            return match.group(0)
        return env_value

    result = _ENV_VAR_PATTERN.sub(_replace, s)

    if missing:
        # The original value is not echoed; it may sit next to a secret.
        raise ConfigError(
            f"Unresolved environment variable(s) in config value: {', '.join(missing)}"
        )

    return result


def _required_string(section: dict[str, Any], key: str) -> str:
    value = section.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"Missing required field: aibo.{key}")
    return value.strip() if key == "username" else value


def _parse_endpoint(aibo_section: dict[str, Any], key: str, default_url: str) -> DAVEndpointConfig:
    section = aibo_section.get(key, {})
    if not isinstance(section, dict):
        raise ConfigError(f"[aibo.{key}] must be a table")

    url = str(section.get("url", default_url)).strip()
    if not url:
        raise ConfigError(f"aibo.{key}.url must be a non-empty string")

    try:
        timeout_s = float(section.get("timeout_s", DEFAULT_TIMEOUT_S))
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"aibo.{key}.timeout_s must be a number") from exc
    if timeout_s <= 0:
        raise ConfigError(f"aibo.{key}.timeout_s must be positive")

    return DAVEndpointConfig(url=url, timeout_s=timeout_s)


def load_config(path: Path) -> AiboConfig:
    """Load and validate aibo configuration.

    Parameters
    ----------
    path:
        Either the ``aibo.toml`` file itself or a directory containing it.

    Raises
    ------
    ConfigError
        If the file is missing, contains invalid TOML, or lacks required fields.
    """
    toml_path = path / CONFIG_FILENAME if path.is_dir() else path

    if not toml_path.exists():
        raise ConfigError(f"Config file not found: {toml_path}")

    try:
        data = tomllib.loads(toml_path.read_bytes().decode())
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {toml_path}: {exc}") from exc

    data = resolve_env_vars(data)

    aibo_section = data.get("aibo")
    if not isinstance(aibo_section, dict):
        raise ConfigError("Missing [aibo] section in config")

    username = _required_string(aibo_section, "username")
    password = _required_string(aibo_section, "password")

    logging_section = aibo_section.get("logging", {})
    log_level = str(logging_section.get("level", "INFO")).upper()
    log_format = str(logging_section.get("format", "text")).lower()
    if log_format not in ("text", "json"):
        raise ConfigError(
            f"Invalid aibo.logging.format: {log_format!r}. Expected 'text' or 'json'."
        )

    return AiboConfig(
        username=username,
        password=password,
        caldav=_parse_endpoint(aibo_section, "caldav", DEFAULT_CALDAV_URL),
        carddav=_parse_endpoint(aibo_section, "carddav", DEFAULT_CARDDAV_URL),
        logging=LoggingConfig(
            level=log_level,
            format=log_format,
            log_file=logging_section.get("log_file"),
        ),
    )
