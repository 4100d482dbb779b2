"""
Runtime configuration for category convergence jobs.

Values come from the environment (optionally seeded from a .env file).
The fudge window and the batch size are tunables, not constants.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Tuple

from .env import env_str, load_env

DEFAULT_DB_URL = "sqlite:///data/wiki.db"


class ConfigError(ValueError):
    """Raised when a configuration value is missing or malformed."""
    pass


@dataclass(frozen=True)
class JobConfig:
    db_url: str = DEFAULT_DB_URL
    replica_urls: Tuple[str, ...] = field(default_factory=tuple)
    domain_id: str = "wikidb"
    fudge_seconds: int = 60
    batch_size: int = 100
    lock_timeout: float = 3.0
    replica_wait_timeout: float = 10.0
    log_level: str = "INFO"
    log_dir: Path = Path("logs")
    rc_feed_url: str | None = None

    def __post_init__(self):
        if self.batch_size <= 0:
            raise ConfigError(f"batch_size must be positive, got {self.batch_size}")
        if self.fudge_seconds < 0:
            raise ConfigError(f"fudge_seconds must not be negative, got {self.fudge_seconds}")
        if self.lock_timeout < 0 or self.replica_wait_timeout < 0:
            raise ConfigError("timeouts must not be negative")

    @classmethod
    def from_env(cls, load_dotenv_file: bool = True) -> "JobConfig":
        """
        Build a config from CATSYNC_* environment variables.

        Args:
            load_dotenv_file: Read .env from the working directory first

        Raises:
            ConfigError: If a numeric variable cannot be parsed
        """
        if load_dotenv_file:
            load_env()

        replicas = env_str("CATSYNC_REPLICA_URLS", "")
        return cls(
            db_url=env_str("CATSYNC_DB_URL", DEFAULT_DB_URL),
            replica_urls=tuple(u.strip() for u in replicas.split(",") if u.strip()),
            domain_id=env_str("CATSYNC_DOMAIN_ID", "wikidb"),
            fudge_seconds=_env_number("CATSYNC_FUDGE_SECONDS", 60, int),
            batch_size=_env_number("CATSYNC_BATCH_SIZE", 100, int),
            lock_timeout=_env_number("CATSYNC_LOCK_TIMEOUT", 3.0, float),
            replica_wait_timeout=_env_number("CATSYNC_REPLICA_WAIT_TIMEOUT", 10.0, float),
            log_level=env_str("CATSYNC_LOG_LEVEL", "INFO").upper(),
            log_dir=Path(env_str("CATSYNC_LOG_DIR", "logs")),
            rc_feed_url=env_str("CATSYNC_RC_FEED_URL"),
        )


def _env_number(name: str, default, cast):
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return cast(raw.strip())
    except ValueError as e:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from e
