"""Pipeline coordinator (worker pool) configuration."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from annotation_service.config._loader import load_yaml_section


def _get_config() -> dict:
    return load_yaml_section("config.yaml", "coordinator")


class CoordinatorConfig(BaseSettings):
    """Worker pool size, backpressure, timeout and retry settings."""
    model_config = SettingsConfigDict(
        env_prefix='COORDINATOR_',
        case_sensitive=False
    )

    pool_size: int = Field(
        default_factory=lambda: _get_config().get('pool_size', 2),
        ge=1,
    )
    # Documents admitted beyond the busy slots before submit() blocks
    queue_capacity: int = Field(
        default_factory=lambda: _get_config().get('queue_capacity', 2),
        ge=0,
    )
    # Seconds per document, measured from the moment a slot starts it
    timeout: float = Field(
        default_factory=lambda: _get_config().get('timeout', 120.0),
        gt=0,
    )
    max_retries: int = Field(
        default_factory=lambda: _get_config().get('max_retries', 3),
        ge=0,
    )

    @property
    def prefetch_count(self) -> int:
        """Broker prefetch matching the number of documents the pool admits."""
        return self.pool_size + self.queue_capacity
