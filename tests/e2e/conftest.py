"""
E2E Test Configuration
======================

End-to-end fixtures backed by a real Chromium instance.
Tests are skipped when Playwright's browser is not installed.
"""

from pathlib import Path
from typing import AsyncGenerator

import pytest_asyncio
import pytest

from mdbuf.config.settings import Settings
from mdbuf.core.rendering.render_engine import RenderEngine, RenderEngineError

from tests.conftest import make_test_settings


@pytest.fixture
def e2e_settings(tmp_path: Path) -> Settings:
    """Settings for real-browser runs; diagrams off so no network is needed."""
    return make_test_settings(
        tmp_path / "renders", mermaid_enabled=False, render_timeout=30.0
    )


@pytest_asyncio.fixture
async def real_render_engine(e2e_settings: Settings) -> AsyncGenerator[RenderEngine, None]:
    """Render engine driving a real headless Chromium."""
    engine = RenderEngine(settings=e2e_settings)
    try:
        await engine.initialize()
    except RenderEngineError as e:
        pytest.skip(f"Chromium not available: {e}")
    yield engine
    await engine.shutdown()
