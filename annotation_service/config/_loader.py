"""
Cached YAML configuration loader.

Usage:
    from annotation_service.config._loader import load_yaml_section

    # Whole file
    config = load_yaml_section("config.yaml")

    # One top-level section
    broker = load_yaml_section("config.yaml", "broker")

The configs directory defaults to ``<project root>/configs`` and can be
pointed elsewhere with the ``ANNOTATION_CONFIG_DIR`` environment variable
(useful when the package is installed outside the source tree).
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml

CONFIG_DIR_ENV = "ANNOTATION_CONFIG_DIR"


def _get_configs_dir() -> Path:
    """Get the configs directory path."""
    override = os.environ.get(CONFIG_DIR_ENV)
    if override:
        return Path(override)
    return Path(__file__).parent.parent.parent / "configs"


@lru_cache(maxsize=16)
def load_yaml_section(config_file: str, section: str | None = None) -> dict[str, Any]:
    """
    Load and cache YAML configuration.

    Args:
        config_file: Path relative to the configs directory
        section: Optional top-level key to extract (e.g., "broker")

    Returns:
        Configuration dictionary (empty dict if the file or section is missing)
    """
    config_path = _get_configs_dir() / config_file

    if not config_path.exists():
        return {}

    with open(config_path, 'r', encoding='utf-8') as f:
        data = yaml.safe_load(f) or {}

    if section:
        return data.get(section) or {}
    return data


def clear_config_cache() -> None:
    """Clear all cached configurations. Useful for testing."""
    load_yaml_section.cache_clear()
