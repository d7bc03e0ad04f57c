"""Producer, aggregator, sentiment, path and logging configuration."""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from annotation_service.config._loader import load_yaml_section


def _get_section(name: str) -> dict:
    return load_yaml_section("config.yaml", name)


class ProducerConfig(BaseSettings):
    """Task producer settings."""
    model_config = SettingsConfigDict(
        env_prefix='PRODUCER_',
        case_sensitive=False
    )

    sentences_per_task: int = Field(
        default_factory=lambda: _get_section("producer").get('sentences_per_task', 50),
        ge=1,
    )


class AggregatorConfig(BaseSettings):
    """Result aggregator settings."""
    model_config = SettingsConfigDict(
        env_prefix='AGGREGATOR_',
        case_sensitive=False
    )

    top_n: int = Field(
        default_factory=lambda: _get_section("aggregator").get('top_n', 5),
        ge=1,
    )
    report_dir: Path = Field(
        default_factory=lambda: Path(_get_section("aggregator").get('report_dir', "reports"))
    )
    # Seconds an incomplete task may wait for its missing chunks before eviction
    task_ttl: float = Field(
        default_factory=lambda: _get_section("aggregator").get('task_ttl', 3600.0),
        gt=0,
    )
    # Finished task ids remembered to drop redelivered chunks
    completed_memory: int = Field(
        default_factory=lambda: _get_section("aggregator").get('completed_memory', 10000),
        ge=1,
    )


class SentimentConfig(BaseSettings):
    """Lexicon-based sentence sentiment settings."""
    model_config = SettingsConfigDict(
        env_prefix='SENTIMENT_',
        case_sensitive=False
    )

    lexicon: str = Field(
        default_factory=lambda: _get_section("sentiment").get('lexicon', "sentiment_lexicon.yaml")
    )
    negation_window: int = Field(
        default_factory=lambda: _get_section("sentiment").get('negation_window', 3),
        ge=0,
    )


class PathsConfig(BaseSettings):
    """File locations used by the service."""
    model_config = SettingsConfigDict(
        env_prefix='PATHS_',
        case_sensitive=False
    )

    dead_letter_log: Path = Field(
        default_factory=lambda: Path(
            _get_section("paths").get('dead_letter_log', "logs/dead_letters.json")
        )
    )


class LoggingConfig(BaseSettings):
    """Root logger settings applied by the CLI."""
    model_config = SettingsConfigDict(
        env_prefix='LOGGING_',
        case_sensitive=False
    )

    level: str = Field(
        default_factory=lambda: _get_section("logging").get('level', "INFO")
    )
    format: str = Field(
        default_factory=lambda: _get_section("logging").get(
            'format', '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )
    )
