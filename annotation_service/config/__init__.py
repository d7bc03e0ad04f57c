"""
Annotation Service Configuration Package.

Uses Pydantic Settings to:
1. Define the schema for all configuration
2. Load defaults from configs/config.yaml
3. Override with environment variables from .env or the process environment

Usage:
    from annotation_service.config import settings

    settings.broker.url
    settings.coordinator.pool_size
    settings.pipeline.annotators
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from annotation_service.config.broker import BrokerConfig
from annotation_service.config.coordinator import CoordinatorConfig
from annotation_service.config.pipeline import PipelineSettings
from annotation_service.config.tools import (
    AggregatorConfig,
    LoggingConfig,
    PathsConfig,
    ProducerConfig,
    SentimentConfig,
)


class Settings(BaseSettings):
    """
    Main settings class that combines all configuration sections.

    Usage:
        from annotation_service.config import settings

        settings.broker.input_queue
        settings.coordinator.timeout
    """
    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        case_sensitive=False,
        extra='ignore'
    )

    broker: BrokerConfig = Field(default_factory=BrokerConfig)
    coordinator: CoordinatorConfig = Field(default_factory=CoordinatorConfig)
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    producer: ProducerConfig = Field(default_factory=ProducerConfig)
    aggregator: AggregatorConfig = Field(default_factory=AggregatorConfig)
    sentiment: SentimentConfig = Field(default_factory=SentimentConfig)
    paths: PathsConfig = Field(default_factory=PathsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# ===========================
# Global Settings Instance
# ===========================

settings = Settings()


__all__ = [
    "settings",
    "Settings",
    "BrokerConfig",
    "CoordinatorConfig",
    "PipelineSettings",
    "ProducerConfig",
    "AggregatorConfig",
    "SentimentConfig",
    "PathsConfig",
    "LoggingConfig",
]
