"""Tests for configuration loading and validation."""

from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from politecrawl.config import (
    CacheConfig,
    Config,
    MonitoringConfig,
    RateLimiterConfig,
    find_config_file,
    load_config,
)


def write_yaml(path: Path, data: dict) -> Path:
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path


@pytest.mark.unit
class TestDefaults:
    def test_default_values(self):
        config = Config()

        assert config.crawler.respect_robots_txt is True
        assert config.crawler.max_retries == 3
        assert config.robots.cache_ttl == 24 * 3600
        assert config.rate_limiter.default_crawl_delay == 10.0
        assert config.rate_limiter.max_concurrent_hosts == 5
        assert config.rate_limiter.max_requests_per_hour == 100
        assert config.rate_limiter.block_duration == 3600
        assert config.cache.max_cache_size == 100 * 1024 * 1024
        assert config.cache.retention.max_age == 7 * 24 * 3600
        assert "careers24.com" in config.cache.domains

    def test_user_agent_identifies_crawler(self):
        config = Config()

        assert "PoliteCrawl" in config.crawler.user_agent
        assert config.crawler.contact_info


@pytest.mark.unit
class TestValidation:
    def test_default_delay_must_fit_under_backoff_cap(self):
        with pytest.raises(ValidationError):
            RateLimiterConfig(default_crawl_delay=500, max_backoff_delay=300)

    def test_backoff_multiplier_must_grow(self):
        with pytest.raises(ValidationError):
            RateLimiterConfig(backoff_multiplier=1.0)

    def test_negative_retries_rejected(self):
        with pytest.raises(ValidationError):
            Config(crawler={"max_retries": -1})

    def test_domain_keys_lowercased(self):
        config = CacheConfig(domains={"Jobs.Example.COM": {"ttl": 60}})

        assert list(config.domains) == ["jobs.example.com"]
        assert config.domains["jobs.example.com"].ttl == 60

    def test_log_file_parent_created(self, tmp_path):
        log_file = tmp_path / "logs" / "nested" / "crawl.log"

        config = MonitoringConfig(log_file=str(log_file))

        assert log_file.parent.is_dir()
        assert config.log_file == str(log_file)


@pytest.mark.unit
class TestLoading:
    def test_from_yaml(self, tmp_path):
        path = write_yaml(
            tmp_path / "politecrawl.yaml",
            {
                "crawler": {"user_agent": "YamlBot/2.0", "max_retries": 1},
                "rate_limiter": {"default_crawl_delay": 2.5},
                "cache": {"domains": {}},
            },
        )

        config = Config.from_yaml(path)

        assert config.crawler.user_agent == "YamlBot/2.0"
        assert config.crawler.max_retries == 1
        assert config.rate_limiter.default_crawl_delay == 2.5
        assert config.cache.domains == {}
        assert config.robots.cache_ttl == 24 * 3600

    def test_empty_yaml_gives_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("", encoding="utf-8")

        assert Config.from_yaml(path).crawler.max_retries == 3

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            Config.from_yaml(tmp_path / "nope.yaml")

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("POLITECRAWL_CRAWLER__MAX_RETRIES", "7")

        assert Config().crawler.max_retries == 7

    def test_discovered_file_is_loaded(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        write_yaml(tmp_path / "politecrawl.yml", {"crawler": {"timeout": 12}})

        assert find_config_file().name == "politecrawl.yml"
        assert load_config().crawler.timeout == 12

    def test_invalid_discovered_file_falls_back(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        write_yaml(tmp_path / "politecrawl.yaml", {"crawler": {"max_retries": -5}})

        assert load_config().crawler.max_retries == 3

    def test_invalid_explicit_file_raises(self, tmp_path):
        path = write_yaml(tmp_path / "bad.yaml", {"crawler": {"max_retries": -5}})

        with pytest.raises(ValidationError):
            load_config(path)

    def test_no_file_gives_defaults(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)

        assert find_config_file() is None
        assert load_config().crawler.max_retries == 3
