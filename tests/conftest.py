"""
Pytest configuration and shared fixtures.

This file is automatically loaded by pytest and provides:
- Test environment setup (before the service module reads its config)
- Shared fixtures available to all test modules
"""

import os
import sys
from pathlib import Path

import pytest

# Add parent directory to Python path so tests can import project modules
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

fixtures_dir = Path(__file__).parent / "fixtures"

# Ensure test environment variables are set early enough (during test collection),
# because the app loads config at import time.
os.environ.setdefault("API_KEY", "test-key")
os.environ.setdefault("LOG_LEVEL", "DEBUG")
os.environ.setdefault("LOG_COLOR", "false")
os.environ.setdefault("OLLAMA_DISCOVERY", "false")
os.environ.setdefault("MODELS_FILE", str(fixtures_dir / "models.json"))


@pytest.fixture(scope="session")
def project_root_path():
    """Get project root path."""
    return project_root


@pytest.fixture(scope="session")
def models_file():
    """Path to the static model list used by the tests."""
    return fixtures_dir / "models.json"


@pytest.fixture
def test_config():
    """Create test configuration."""
    from config import AppConfig

    return AppConfig(
        api_key="test-key",
        base_url="https://openrouter.ai/api/v1",
        http_referer="http://localhost",
        x_title="test-app",
        user_agent="test-agent",
        models_file=str(fixtures_dir / "models.json"),
        ollama_base_url="http://localhost:11434/v1",
        ollama_api_key="ollama",
        ollama_discovery=False,
        discovery_context_length=8192,
        discovery_timeout_s=1.0,
        refresh_models_s=60,
        request_timeout_s=5.0,
        keepalive_s=10.0,
        port=3000,
        log_level="DEBUG",
        log_path="",
        max_request_bytes=1_000_000,
    )
