"""
Tests for config.py - environment-driven job configuration.
"""

from pathlib import Path

import pytest

from categorysync.config import DEFAULT_DB_URL, ConfigError, JobConfig

ENV_VARS = [
    "CATSYNC_DB_URL",
    "CATSYNC_REPLICA_URLS",
    "CATSYNC_DOMAIN_ID",
    "CATSYNC_FUDGE_SECONDS",
    "CATSYNC_BATCH_SIZE",
    "CATSYNC_LOCK_TIMEOUT",
    "CATSYNC_REPLICA_WAIT_TIMEOUT",
    "CATSYNC_LOG_LEVEL",
    "CATSYNC_LOG_DIR",
    "CATSYNC_RC_FEED_URL",
]


@pytest.fixture
def clean_env(monkeypatch):
    # setenv first so teardown also removes values loaded from .env files
    for name in ENV_VARS:
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    return monkeypatch


class TestJobConfig:
    def test_defaults(self, clean_env):
        config = JobConfig.from_env(load_dotenv_file=False)

        assert config.db_url == DEFAULT_DB_URL
        assert config.replica_urls == ()
        assert config.fudge_seconds == 60
        assert config.batch_size == 100
        assert config.rc_feed_url is None
        assert config.log_dir == Path("logs")

    def test_reads_environment(self, clean_env):
        clean_env.setenv("CATSYNC_DB_URL", "postgresql+psycopg://wiki@db/wiki")
        clean_env.setenv("CATSYNC_REPLICA_URLS", "postgresql+psycopg://wiki@r1/wiki, postgresql+psycopg://wiki@r2/wiki,")
        clean_env.setenv("CATSYNC_DOMAIN_ID", "enwiki")
        clean_env.setenv("CATSYNC_FUDGE_SECONDS", "120")
        clean_env.setenv("CATSYNC_BATCH_SIZE", "50")
        clean_env.setenv("CATSYNC_LOCK_TIMEOUT", "1.5")
        clean_env.setenv("CATSYNC_LOG_LEVEL", "debug")
        clean_env.setenv("CATSYNC_RC_FEED_URL", "https://rc.example.org/hook")

        config = JobConfig.from_env(load_dotenv_file=False)

        assert config.db_url == "postgresql+psycopg://wiki@db/wiki"
        assert config.replica_urls == ("postgresql+psycopg://wiki@r1/wiki", "postgresql+psycopg://wiki@r2/wiki")
        assert config.domain_id == "enwiki"
        assert config.fudge_seconds == 120
        assert config.batch_size == 50
        assert config.lock_timeout == 1.5
        assert config.log_level == "DEBUG"
        assert config.rc_feed_url == "https://rc.example.org/hook"

    def test_bad_number_raises_config_error(self, clean_env):
        clean_env.setenv("CATSYNC_BATCH_SIZE", "lots")

        with pytest.raises(ConfigError, match="CATSYNC_BATCH_SIZE"):
            JobConfig.from_env(load_dotenv_file=False)

    def test_dotenv_file_is_loaded(self, clean_env, tmp_path):
        (tmp_path / ".env").write_text("CATSYNC_DOMAIN_ID=fromfile\nCATSYNC_BATCH_SIZE=7\n")
        clean_env.chdir(tmp_path)

        config = JobConfig.from_env()

        assert config.domain_id == "fromfile"
        assert config.batch_size == 7

    def test_environment_wins_over_dotenv(self, clean_env, tmp_path):
        (tmp_path / ".env").write_text("CATSYNC_DOMAIN_ID=fromfile\n")
        clean_env.chdir(tmp_path)
        clean_env.setenv("CATSYNC_DOMAIN_ID", "fromenv")

        assert JobConfig.from_env().domain_id == "fromenv"

    @pytest.mark.parametrize(
        "kwargs",
        [{"batch_size": 0}, {"fudge_seconds": -1}, {"lock_timeout": -0.5}, {"replica_wait_timeout": -1}],
    )
    def test_invalid_values(self, kwargs):
        with pytest.raises(ConfigError):
            JobConfig(**kwargs)

    def test_config_is_frozen(self):
        config = JobConfig()

        with pytest.raises(AttributeError):
            config.batch_size = 5
