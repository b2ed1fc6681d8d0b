"""
Test Configuration
==================

Pytest configuration with fixtures for all test types.
Provides test settings, a mocked browser page and render engines.
"""

from pathlib import Path
from typing import AsyncGenerator
from unittest.mock import patch

import pytest
import pytest_asyncio

from mdbuf.config.settings import Settings
from mdbuf.core.markdown.converter import SourceMappedConverter
from mdbuf.core.rendering.html_generator import HTMLDocumentGenerator
from mdbuf.core.rendering.render_engine import RenderEngine

from tests.utils.mocks import MockPage, create_mock_playwright


def make_test_settings(output_dir: Path, **overrides) -> Settings:
    """Settings for tests: no env files, scratch output under ``output_dir``."""
    values = {
        "environment": "testing",
        "log_level": "DEBUG",
        "output_dir": output_dir,
        "render_timeout": 5.0,
        "diagram_grace_period_ms": 500,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Test settings fixture."""
    return make_test_settings(tmp_path / "renders")


@pytest.fixture
def converter() -> SourceMappedConverter:
    """Source-mapped Markdown converter."""
    return SourceMappedConverter()


@pytest.fixture
def html_generator(test_settings: Settings) -> HTMLDocumentGenerator:
    """HTML document generator using the test settings."""
    with patch("mdbuf.core.rendering.html_generator.get_settings", return_value=test_settings):
        return HTMLDocumentGenerator()


@pytest.fixture
def mock_page() -> MockPage:
    """In-memory Playwright page."""
    return MockPage()


@pytest_asyncio.fixture
async def render_engine(
    test_settings: Settings, mock_page: MockPage
) -> AsyncGenerator[RenderEngine, None]:
    """Render engine initialized against the mock page."""
    factory = create_mock_playwright(mock_page)
    engine = RenderEngine(settings=test_settings)
    with patch("mdbuf.core.rendering.render_engine.async_playwright", factory):
        await engine.initialize()
    yield engine
    await engine.shutdown()


def pytest_collection_modifyitems(config, items):
    """Modify test collection to add markers based on file paths."""
    for item in items:
        path = str(item.fspath)
        if "unit" in path:
            item.add_marker(pytest.mark.unit)
        elif "integration" in path:
            item.add_marker(pytest.mark.integration)
        elif "e2e" in path:
            item.add_marker(pytest.mark.e2e)
