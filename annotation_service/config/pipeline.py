"""Annotation pipeline configuration."""

from typing import List, Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from annotation_service.config._loader import load_yaml_section


def _get_config() -> dict:
    return load_yaml_section("config.yaml", "pipeline")


class PipelineSettings(BaseSettings):
    """spaCy model and stage selection."""
    model_config = SettingsConfigDict(
        env_prefix='PIPELINE_',
        case_sensitive=False
    )

    spacy_model: str = Field(
        default_factory=lambda: _get_config().get('spacy_model', "en_core_web_sm")
    )
    annotators: List[str] = Field(
        default_factory=lambda: _get_config().get(
            'annotators', ["ssplit", "tokenize", "pos", "ner"]
        )
    )
    # "tag" emits fine-grained tags (NNP, VBD), "pos" emits universal POS (PROPN, VERB)
    pos_attribute: Literal["tag", "pos"] = Field(
        default_factory=lambda: _get_config().get('pos_attribute', "tag")
    )
    share_backend: bool = Field(
        default_factory=lambda: _get_config().get('share_backend', False)
    )
    max_text_length: int = Field(
        default_factory=lambda: _get_config().get('max_text_length', 1_000_000),
        gt=0,
    )
