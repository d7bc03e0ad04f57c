"""
Shared pytest fixtures for the annotation service test suite.

This module provides fixtures used across test modules:
- Project paths and the loaded settings
- An isolated dead-letter ledger per test

Usage:
    Fixtures are automatically discovered by pytest.
    Use them directly in test files - no explicit import needed.
"""

from pathlib import Path

import pytest

from annotation_service.config import settings as _settings
from annotation_service.utils.dead_letter_queue import DeadLetterQueue


# ===========================
# Path Fixtures
# ===========================

@pytest.fixture(scope="session")
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture(scope="session")
def configs_dir(project_root: Path) -> Path:
    """Return the configs directory."""
    return project_root / "configs"


# ===========================
# Configuration Fixtures
# ===========================

@pytest.fixture(scope="session")
def settings():
    """Return the global settings instance."""
    return _settings


# ===========================
# Ledger Fixtures
# ===========================

@pytest.fixture
def dead_letters(tmp_path) -> DeadLetterQueue:
    """Dead-letter ledger writing under the test's tmp_path."""
    return DeadLetterQueue(tmp_path / "logs" / "dead_letters.json")
