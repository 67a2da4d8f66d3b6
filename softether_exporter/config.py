"""
Configuration loading.

The exporter reads a single file holding the vpncmd location, the server
credentials and the list of hubs to monitor. YAML is the native format;
files ending in ``.toml`` are read as TOML so existing configurations keep
working.
"""

import tomllib
from pathlib import Path
from typing import List, Optional, Tuple, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from softether_exporter.exceptions import ConfigurationError

DEFAULT_SLEEP_MS = 500
DEFAULT_LISTEN_ADDRESS = ':9411'


class Hub(BaseModel):
    """One monitored virtual hub"""
    model_config = ConfigDict(frozen=True, extra='ignore')

    name: str = ''
    password: str = ''

    @field_validator('name', 'password', mode='before')
    @classmethod
    def _none_as_empty(cls, value):
        return '' if value is None else value


class Config(BaseModel):
    """Exporter configuration, immutable once loaded"""
    model_config = ConfigDict(frozen=True, extra='ignore')

    vpncmd: str = 'vpncmd'
    server: str = 'localhost'
    adminpassword: str = ''
    sleep: int = DEFAULT_SLEEP_MS
    hubs: List[Hub]

    timeout: float = Field(default=10.0, gt=0)
    refresh_interval: Optional[float] = Field(default=None, gt=0)
    user_stats: bool = False
    prune_removed_hubs: bool = False

    @field_validator('vpncmd', 'server', 'adminpassword', mode='before')
    @classmethod
    def _default_when_null(cls, value, info):
        if value is None:
            return cls.model_fields[info.field_name].default
        return value

    @field_validator('sleep', mode='before')
    @classmethod
    def _parse_sleep(cls, value):
        # Accepts "500" as well as 500; anything unparseable means the default
        try:
            sleep = int(str(value).strip())
        except (TypeError, ValueError):
            return DEFAULT_SLEEP_MS
        return sleep if sleep >= 0 else DEFAULT_SLEEP_MS

    @field_validator('hubs', mode='before')
    @classmethod
    def _null_hubs(cls, value):
        return [] if value is None else value

    @property
    def sleep_seconds(self) -> float:
        return self.sleep / 1000.0

    @property
    def hub_names(self) -> List[str]:
        return [hub.name for hub in self.hubs]


def _read_mapping(path: Path) -> dict:
    text = path.read_text()
    if path.suffix.lower() == '.toml':
        data = tomllib.loads(text)
    else:
        data = yaml.safe_load(text)

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path}: top level must be a mapping, got {type(data).__name__}")
    return data


def load_config(path: Union[str, Path]) -> Config:
    """
    Load and validate the configuration file.

    Args:
        path: Path to a YAML (or ``.toml``) configuration file

    Returns:
        Validated Config

    Raises:
        ConfigurationError: file missing, unreadable, malformed or invalid
    """
    path = Path(path)
    try:
        data = _read_mapping(path)
    except OSError as e:
        raise ConfigurationError(f"Cannot read config file {path}: {e}") from e
    except (yaml.YAMLError, tomllib.TOMLDecodeError) as e:
        raise ConfigurationError(f"Malformed config file {path}: {e}") from e

    try:
        return Config.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid config file {path}: {e}") from e


def parse_listen_address(address: str) -> Tuple[str, int]:
    """
    Split a listen address into host and port.

    ``:9411`` binds on all interfaces, ``127.0.0.1:9411`` and
    ``[::1]:9411`` bind as given.
    """
    host, sep, port = address.strip().rpartition(':')
    if not sep:
        raise ConfigurationError(f"Listen address must look like host:port or :port, got {address!r}")

    if not host:
        host = '0.0.0.0'
    elif host.startswith('[') and host.endswith(']'):
        host = host[1:-1]

    try:
        port_number = int(port)
    except ValueError:
        raise ConfigurationError(f"Invalid port in listen address {address!r}")
    if not 0 < port_number < 65536:
        raise ConfigurationError(f"Port out of range in listen address {address!r}")

    return host, port_number
