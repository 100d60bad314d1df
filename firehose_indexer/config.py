"""
Indexer Configuration

Read from the environment (and a .env file, via python-dotenv).

    DATABASE_URL            required (postgresql://... or sqlite:///path)
    CURSOR_FILE             .cursor
    STATS_INTERVAL          60 seconds
    FIREHOSE_URL            Jetstream us-east endpoint
    QUEUE_SIZE              1000
    RECONNECT_DELAY         1.0 seconds
    MAX_RECONNECT_DELAY     60.0 seconds
    MAX_RECONNECT_ATTEMPTS  unset = retry forever
    HOT_RECALC_INTERVAL     900 seconds (0 disables)
    CACHE_TTL               300 seconds
    CREATE_SCHEMA           false
    LOG_LEVEL               INFO
"""

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import load_dotenv

from .errors import ConfigError
from .firehose import JETSTREAM_URL

TRUE_VALUES = ("1", "true", "yes", "on")
FALSE_VALUES = ("0", "false", "no", "off", "")


def _get_int(env: Mapping[str, str], name: str, default: Optional[int], minimum: int = 0) -> Optional[int]:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")
    if value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {value}")
    return value


def _get_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}")
    if value < 0:
        raise ConfigError(f"{name} must be >= 0, got {value}")
    return value


def _get_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in TRUE_VALUES:
        return True
    if value in FALSE_VALUES:
        return False
    raise ConfigError(f"{name} must be a boolean, got {raw!r}")


@dataclass
class IndexerConfig:
    database_url: str
    cursor_file: str = ".cursor"
    stats_interval: int = 60
    firehose_url: str = JETSTREAM_URL
    queue_size: int = 1000
    reconnect_delay: float = 1.0
    max_reconnect_delay: float = 60.0
    max_reconnect_attempts: Optional[int] = None
    hot_recalc_interval: int = 900
    cache_ttl: float = 300.0
    create_schema: bool = False
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None, dotenv: bool = True) -> "IndexerConfig":
        """
        Build config from environment variables.

        Args:
            env: Mapping to read instead of os.environ
            dotenv: Load a .env file into os.environ first

        Raises:
            ConfigError: If DATABASE_URL is missing or a value is invalid
        """
        if dotenv:
            load_dotenv()
        if env is None:
            env = os.environ

        database_url = (env.get("DATABASE_URL") or "").strip()
        if not database_url:
            raise ConfigError("DATABASE_URL environment variable is required")

        log_level = (env.get("LOG_LEVEL") or "INFO").strip().upper()

        return cls(
            database_url=database_url,
            cursor_file=env.get("CURSOR_FILE") or ".cursor",
            stats_interval=_get_int(env, "STATS_INTERVAL", 60, minimum=1),
            firehose_url=env.get("FIREHOSE_URL") or JETSTREAM_URL,
            queue_size=_get_int(env, "QUEUE_SIZE", 1000, minimum=1),
            reconnect_delay=_get_float(env, "RECONNECT_DELAY", 1.0),
            max_reconnect_delay=_get_float(env, "MAX_RECONNECT_DELAY", 60.0),
            max_reconnect_attempts=_get_int(env, "MAX_RECONNECT_ATTEMPTS", None),
            hot_recalc_interval=_get_int(env, "HOT_RECALC_INTERVAL", 900),
            cache_ttl=_get_float(env, "CACHE_TTL", 300.0),
            create_schema=_get_bool(env, "CREATE_SCHEMA", False),
            log_level=log_level,
        )
