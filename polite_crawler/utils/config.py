"""
Configuration management for the crawler.
"""

import logging
import random
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
from urllib.parse import urlparse

import yaml


DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; Googlebot/2.1; +http://www.google.com/bot.html)"


class ConfigError(ValueError):
    """Invalid or unreadable configuration."""


@dataclass
class CrawlerConfig:
    """Configuration for crawler behavior."""
    seed_urls: List[str] = field(default_factory=list)
    max_depth: int = 4
    follow_links: bool = True
    max_concurrent_requests: int = 10
    max_host_visitors: int = 512
    max_redirects: int = 5
    max_blocked_retries: int = 3
    retry_attempts: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 10.0
    user_agent: Union[str, List[str]] = DEFAULT_USER_AGENT
    respect_robots_txt: bool = True
    allowed_domains: List[str] = field(default_factory=list)
    blocked_domains: List[str] = field(default_factory=list)

    def choose_user_agent(self) -> str:
        """The configured User-Agent, or a random pick when a list is given."""
        if isinstance(self.user_agent, str):
            return self.user_agent
        return random.choice(self.user_agent)


@dataclass
class PolitenessConfig:
    """Per-host pacing and backoff."""
    politeness_delay: float = 1.0
    min_backoff_delay: float = 1.0
    max_backoff_delay: float = 60.0
    backoff_factor: float = 2.0
    quarantine_threshold: int = 5
    quarantine_cooldown: float = 300.0


@dataclass
class DownloadConfig:
    """Configuration for image downloads."""
    enabled: bool = True
    destination: str = "archive/res"
    max_concurrent_downloads: int = 4


@dataclass
class TransportConfig:
    """Configuration for the HTTP transport."""
    request_timeout: float = 20.0
    max_connections: int = 20
    max_connections_per_host: int = 10
    max_content_size: int = 10 * 1024 * 1024
    proxy: Optional[str] = None


@dataclass
class LoggingConfig:
    """Configuration for logging."""
    level: str = "INFO"
    file: str = "logs/crawler.log"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    json: bool = False


@dataclass
class MonitoringConfig:
    """Configuration for monitoring."""
    prometheus_port: int = 8000
    metrics_enabled: bool = False


@dataclass
class Config:
    """Main configuration class."""
    crawler: CrawlerConfig = field(default_factory=CrawlerConfig)
    politeness: PolitenessConfig = field(default_factory=PolitenessConfig)
    download: DownloadConfig = field(default_factory=DownloadConfig)
    transport: TransportConfig = field(default_factory=TransportConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'Config':
        """Build a Config from nested dictionaries; missing keys keep defaults."""
        data = data or {}
        unknown = set(data) - {f.name for f in fields(cls)}
        if unknown:
            raise ConfigError(f"Unknown configuration sections: {sorted(unknown)}")

        sections = {}
        for section in fields(cls):
            section_cls = section.default_factory
            section_data = data.get(section.name) or {}
            if not isinstance(section_data, dict):
                raise ConfigError(f"Section '{section.name}' must be a mapping")
            try:
                sections[section.name] = section_cls(**section_data)
            except TypeError as e:
                raise ConfigError(f"Invalid keys in section '{section.name}': {e}") from e
        return cls(**sections)


class ConfigManager:
    """Manages configuration loading and validation."""

    def __init__(self, config_path: str = "config.yaml"):
        self.config_path = Path(config_path)
        self._config: Optional[Config] = None

    def load_config(self) -> Config:
        """Load configuration from YAML file."""
        if not self.config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

        with open(self.config_path, 'r') as file:
            try:
                config_data = yaml.safe_load(file)
            except yaml.YAMLError as e:
                raise ConfigError(f"Could not parse {self.config_path}: {e}") from e

        self._config = Config.from_dict(config_data)
        validate_config(self._config)
        return self._config

    @property
    def config(self) -> Config:
        """Get the loaded configuration."""
        if not self._config:
            raise ConfigError("Configuration not loaded. Call load_config() first.")
        return self._config


def validate_config(config: Config):
    """Validate configuration values. Raises ConfigError."""
    crawler = config.crawler
    politeness = config.politeness

    for url in crawler.seed_urls:
        parsed = urlparse(url)
        if parsed.scheme not in ('http', 'https') or not parsed.netloc:
            raise ConfigError(f"Seed URL must be an absolute http(s) URL: {url}")

    agents = crawler.user_agent if isinstance(crawler.user_agent, list) else [crawler.user_agent]
    if not agents or not all(isinstance(agent, str) and agent for agent in agents):
        raise ConfigError("user_agent must be a non-empty string or a list of them")

    if crawler.max_depth < 0:
        raise ConfigError("max_depth must be non-negative")

    if crawler.max_concurrent_requests < 1:
        raise ConfigError("max_concurrent_requests must be at least 1")

    if crawler.max_host_visitors < 1:
        raise ConfigError("max_host_visitors must be at least 1")

    if crawler.retry_attempts < 1:
        raise ConfigError("retry_attempts must be at least 1")

    if crawler.max_redirects < 0 or crawler.max_blocked_retries < 0:
        raise ConfigError("max_redirects and max_blocked_retries must be non-negative")

    if politeness.politeness_delay < 0:
        raise ConfigError("politeness_delay must be non-negative")

    if politeness.backoff_factor <= 1:
        raise ConfigError("backoff_factor must be greater than 1")

    if politeness.min_backoff_delay <= 0:
        raise ConfigError("min_backoff_delay must be positive")

    if politeness.max_backoff_delay < max(politeness.min_backoff_delay, politeness.politeness_delay):
        raise ConfigError("max_backoff_delay must not be below min_backoff_delay or politeness_delay")

    if politeness.quarantine_threshold < 1:
        raise ConfigError("quarantine_threshold must be at least 1")

    if config.download.max_concurrent_downloads < 1:
        raise ConfigError("max_concurrent_downloads must be at least 1")

    if not isinstance(getattr(logging, config.logging.level.upper(), None), int):
        raise ConfigError(f"Unknown log level: {config.logging.level}")


def load_config(config_path: str = "config.yaml") -> Config:
    """Load configuration from file."""
    return ConfigManager(config_path).load_config()
