"""
Configuration management for PoliteCrawl using Pydantic.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# --- Setup Logging ---
log = logging.getLogger(__name__)

HOUR = 60 * 60.0
DAY = 24 * HOUR
MB = 1024 * 1024

# --- Nested Configuration Models ---


class CrawlerConfig(BaseModel):
    """Outbound request identity and feature switches."""

    user_agent: str = Field(
        default="PoliteCrawl Job Crawler/1.0 (+https://github.com/politecrawl/politecrawl)",
        description="User-Agent string declared on every request.",
    )
    contact_info: str = Field(default="crawler@politecrawl.dev", description="Sent in the From header.")
    respect_robots_txt: bool = Field(default=True, description="Whether to respect robots.txt.")
    max_retries: int = Field(default=3, ge=0, description="Retries for retryable transport/HTTP failures.")
    timeout: float = Field(default=30.0, gt=0, description="HTTP request timeout in seconds.")
    enable_caching: bool = Field(default=True, description="Serve and store responses through the cache.")
    enable_rate_limiting: bool = Field(default=True, description="Gate requests through the domain scheduler.")
    accept: str = Field(default="text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8")
    accept_language: str = Field(default="en-US,en;q=0.5")


class RobotsConfig(BaseModel):
    """robots.txt fetching and caching."""

    cache_ttl: float = Field(default=DAY, gt=0, description="Seconds a parsed policy stays cached.")
    failure_ttl: float = Field(default=10 * 60.0, gt=0, description="Seconds a fallback policy stays cached.")
    fetch_timeout: float = Field(default=10.0, gt=0)
    max_size_bytes: int = Field(default=500_000, gt=0, description="Larger robots.txt bodies are ignored.")
    default_crawl_delay: float = Field(default=10.0, ge=0)


class RateLimiterConfig(BaseModel):
    """Per-host scheduling, backoff and blocking."""

    default_crawl_delay: float = Field(default=10.0, ge=0, description="Baseline seconds between requests.")
    min_crawl_delay: float = Field(default=1.0, gt=0, description="Floor used for delay updates and backoff.")
    max_concurrent_hosts: int = Field(default=5, ge=1, description="Hosts that may have requests in flight.")
    max_requests_per_hour: int = Field(default=100, ge=1)
    max_backoff_delay: float = Field(default=300.0, gt=0)
    backoff_multiplier: float = Field(default=2.0, gt=1.0)
    error_threshold: int = Field(default=3, ge=1, description="Consecutive failures before a host is blocked.")
    block_duration: float = Field(default=HOUR, gt=0)

    @model_validator(mode="after")
    def check_delays(self) -> "RateLimiterConfig":
        if self.default_crawl_delay > self.max_backoff_delay:
            raise ValueError("default_crawl_delay must not exceed max_backoff_delay")
        return self


class DomainCacheConfig(BaseModel):
    """Cache overrides for one domain and its subdomains."""

    ttl: Optional[float] = Field(default=None, gt=0)
    max_entries: int = Field(default=1000, ge=1)
    enabled: bool = True


class RetentionConfig(BaseModel):
    """Data retention for cached responses."""

    max_age: float = Field(default=7 * DAY, gt=0, description="Entries older than this are swept.")
    max_size_per_domain: int = Field(default=10 * MB, gt=0)
    auto_cleanup: bool = True


def _job_board_domains() -> Dict[str, DomainCacheConfig]:
    return {
        "careers24.com": DomainCacheConfig(ttl=6 * HOUR),
        "pnet.co.za": DomainCacheConfig(ttl=4 * HOUR),
        "indeed.co.za": DomainCacheConfig(ttl=2 * HOUR),
        "jobmail.co.za": DomainCacheConfig(ttl=8 * HOUR),
        "careerjet.co.za": DomainCacheConfig(ttl=12 * HOUR),
    }


class CacheConfig(BaseModel):
    """Response cache sizing, TTLs and sweeping."""

    default_ttl: float = Field(default=DAY, gt=0)
    max_cache_size: int = Field(default=100 * MB, gt=0)
    max_entries: int = Field(default=10_000, ge=1)
    default_domain_max_entries: int = Field(default=1000, ge=1)
    cleanup_interval: float = Field(default=HOUR, gt=0)
    retention: RetentionConfig = Field(default_factory=RetentionConfig)
    domains: Dict[str, DomainCacheConfig] = Field(
        default_factory=_job_board_domains,
        description="Per-domain overrides, keyed by registrable domain.",
    )

    @field_validator("domains", mode="before")
    @classmethod
    def lowercase_domains(cls, v: Dict[str, object]) -> Dict[str, object]:
        return {str(domain).lower(): value for domain, value in (v or {}).items()}


class MonitoringConfig(BaseModel):
    """Configuration for logging and metrics."""

    log_level: str = Field(default="INFO", description="Logging level (e.g., DEBUG, INFO, WARNING).")
    log_file: str | None = Field(default=None, description="Path to log file. If None, logs to console.")
    json_logs: bool = Field(default=False, description="Render console logs as JSON.")
    prometheus_port: int | None = Field(default=None, description="Port for the Prometheus exporter.")

    @field_validator("log_file", mode="before")
    @classmethod
    def create_parent_dir(cls, v: str | Path | None) -> str | None:
        if v is None:
            return None
        path = Path(v)
        path.parent.mkdir(parents=True, exist_ok=True)
        return str(path)


# --- Main Configuration Class ---


class Config(BaseSettings):
    project_name: str = "PoliteCrawl"
    crawler: CrawlerConfig = Field(default_factory=CrawlerConfig)
    robots: RobotsConfig = Field(default_factory=RobotsConfig)
    rate_limiter: RateLimiterConfig = Field(default_factory=RateLimiterConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)

    model_config = SettingsConfigDict(env_prefix="POLITECRAWL_", env_nested_delimiter="__", case_sensitive=False)

    @classmethod
    def from_yaml(cls, path: Path) -> Config:
        log.debug("Loading configuration from YAML file: %s", path)
        if not path.is_file():
            raise FileNotFoundError(f"Configuration file not found or is not a file: {path}")
        with open(path, "r", encoding="utf-8") as f:
            yaml_data = yaml.safe_load(f)
        if not yaml_data:
            log.warning("Configuration file is empty: %s. Using default settings.", path)
            return cls()
        return cls(**yaml_data)


def find_config_file() -> Path | None:
    current_dir = Path.cwd()
    for name in ("politecrawl.yaml", "politecrawl.yml", "config.yaml", "config.yml"):
        path = current_dir / name
        if path.is_file():
            return path
    return None


def load_config(path: Path | None = None) -> Config:
    """
    Load configuration from ``path``, a discovered file, or defaults.

    An explicitly given path must be valid; a discovered file that fails to
    validate is logged and replaced by defaults.
    """
    if path is not None:
        return Config.from_yaml(path)

    config_path = find_config_file()
    if config_path is None:
        log.info("No config file found. Using default settings.")
        return Config()

    try:
        log.info("Loading configuration from: %s", config_path)
        return Config.from_yaml(config_path)
    except (ValidationError, yaml.YAMLError) as e:
        log.error(
            "Failed to load or validate configuration from '%s': %s. Falling back to default settings.",
            config_path,
            e,
        )
        return Config()
