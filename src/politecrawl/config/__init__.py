"""Configuration models and loaders."""

from .config import (
    CacheConfig,
    Config,
    CrawlerConfig,
    DomainCacheConfig,
    MonitoringConfig,
    RateLimiterConfig,
    RetentionConfig,
    RobotsConfig,
    find_config_file,
    load_config,
)

__all__ = [
    "CacheConfig",
    "Config",
    "CrawlerConfig",
    "DomainCacheConfig",
    "MonitoringConfig",
    "RateLimiterConfig",
    "RetentionConfig",
    "RobotsConfig",
    "find_config_file",
    "load_config",
]
