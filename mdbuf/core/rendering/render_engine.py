"""
Render Engine
=============

Playwright-based rendering of Markdown into PNG images with a source map.
Owns a single persistent browser page that is reused across render calls.
"""

import asyncio
import os
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncGenerator, Mapping, Optional, Union

from playwright.async_api import Browser, Page, Playwright, async_playwright
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from mdbuf.config.logging import get_logger
from mdbuf.config.settings import Settings, get_settings
from mdbuf.core.markdown.converter import DIAGRAM_CLASS, SOURCE_LINE_ATTR, SourceMappedConverter
from mdbuf.core.rendering.html_generator import HTMLDocumentGenerator
from mdbuf.models.schemas import RenderOptions, RenderRequest, RenderResult, SourceMap

logger = get_logger(__name__)

DIAGRAM_SELECTOR = f"pre.{DIAGRAM_CLASS}"

# Every diagram placeholder has been replaced by the SVG Mermaid generates.
DIAGRAMS_SETTLED_JS = f"""
() => Array.from(document.querySelectorAll('{DIAGRAM_SELECTOR}'))
    .every((el) => el.querySelector('svg') !== null)
"""

SOURCE_MAP_JS = f"""
() => {{
    const lineToY = {{}};
    for (const el of document.querySelectorAll('[{SOURCE_LINE_ATTR}]')) {{
        const line = Number.parseInt(el.getAttribute('{SOURCE_LINE_ATTR}') || '0', 10);
        if (line > 0) {{
            const top = el.getBoundingClientRect().top + window.scrollY;
            lineToY[line] = Math.max(0, Math.round(top));
        }}
    }}
    return {{ lineToY, totalHeight: document.body.scrollHeight }};
}}
"""


class RenderEngineError(Exception):
    """Exception raised when rendering fails."""

    pass


class NotInitializedError(RenderEngineError):
    """Raised when rendering is attempted without a browser session."""

    pass


class RenderTimeoutError(RenderEngineError):
    """Raised when a render exceeds the configured timeout."""

    pass


class RenderEngine:
    """Markdown to PNG renderer backed by one Playwright page.

    Renders are serialised with a lock: the page's content, viewport and
    geometry are shared state, so two renders must never interleave on it.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        converter: Optional[SourceMappedConverter] = None,
        html_generator: Optional[HTMLDocumentGenerator] = None,
    ):
        self.settings = settings or get_settings()
        self.logger: Any = logger.bind(component="render_engine")  # structlog.BoundLoggerBase
        self.converter = converter or SourceMappedConverter()
        self.html_generator = html_generator or HTMLDocumentGenerator(
            self.settings.mermaid_script_url
        )
        self.output_dir: Path = self.settings.output_dir / str(os.getpid())

        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._page: Optional[Page] = None
        self._lock = asyncio.Lock()
        self._render_count = 0

    @property
    def is_initialized(self) -> bool:
        return self._page is not None

    async def initialize(self) -> None:
        """Launch the browser and open the page used for every render."""
        if self._page is not None:
            raise RenderEngineError("Render engine already initialized")

        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(
                headless=self.settings.playwright_headless,
                args=self.settings.browser_args,
            )
            page = await self._browser.new_page()
            page.set_default_timeout(self.settings.playwright_timeout)
            self._page = page
        except Exception as e:
            self.logger.error("Failed to initialize render engine", error=str(e))
            await self.shutdown()
            raise RenderEngineError(f"Renderer initialization failed: {e}") from e

        self.logger.info("Render engine initialized", output_dir=str(self.output_dir))

    async def shutdown(self) -> None:
        """Close the page, browser and Playwright driver. Safe to call repeatedly."""
        page, self._page = self._page, None
        browser, self._browser = self._browser, None
        playwright, self._playwright = self._playwright, None

        if page is None and browser is None and playwright is None:
            return

        if page is not None:
            try:
                await page.close()
            except Exception as e:
                self.logger.warning("Failed to close page", error=str(e))
        if browser is not None:
            try:
                await browser.close()
            except Exception as e:
                self.logger.warning("Failed to close browser", error=str(e))
        if playwright is not None:
            try:
                await playwright.stop()
            except Exception as e:
                self.logger.warning("Failed to stop Playwright", error=str(e))

        self.logger.info("Render engine closed")

    @asynccontextmanager
    async def _acquire_page(self) -> AsyncGenerator[Page, None]:
        """Get exclusive use of the page. A page pool would plug in here."""
        async with self._lock:
            if self._page is None:
                raise NotInitializedError("Renderer not initialized")
            yield self._page

    async def render(self, params: Union[RenderRequest, Mapping[str, Any]]) -> RenderResult:
        """
        Render Markdown to a PNG file and build its source map.

        Args:
            params: Render request, as a model or its wire-format mapping

        Returns:
            RenderResult with image path, source map and render time

        Raises:
            NotInitializedError: If ``initialize`` has not been called
            RenderTimeoutError: If the render exceeds ``render_timeout``
            RenderEngineError: If the browser session fails
        """
        if self._page is None:
            raise NotInitializedError("Renderer not initialized")

        request = (
            params if isinstance(params, RenderRequest) else RenderRequest.model_validate(params)
        )
        timeout = self.settings.render_timeout

        async with self._acquire_page() as page:
            try:
                return await asyncio.wait_for(self._render(page, request), timeout=timeout)
            except asyncio.TimeoutError:
                self.logger.error("Render timed out", timeout=timeout, file_path=request.file_path)
                raise RenderTimeoutError(f"render timed out after {timeout:g} seconds")

    async def _render(self, page: Page, request: RenderRequest) -> RenderResult:
        start_time = time.perf_counter()
        options = request.options or RenderOptions()
        width = request.viewport.width
        theme = options.theme or self.settings.default_theme

        self.logger.info(
            "Rendering markdown",
            file_path=request.file_path,
            markdown_length=len(request.markdown),
            width=width,
            theme=theme,
        )

        body = self.converter.convert(request.markdown)
        html = self.html_generator.generate(
            body,
            width,
            theme=theme,
            custom_css=options.css,
            enable_diagrams=self.settings.mermaid_enabled,
        )

        try:
            await page.set_content(html, wait_until="networkidle")
            await self._wait_for_diagrams(page)

            # Height is provisional; the screenshot captures the full page
            await page.set_viewport_size(
                {"width": width, "height": self.settings.viewport_initial_height}
            )

            source_map = await self._generate_source_map(page)
            image_path = await self._take_screenshot(page)
        except Exception as e:
            error_msg = f"Render failed: {e}"
            self.logger.error("Render error", error=error_msg, file_path=request.file_path)
            raise RenderEngineError(error_msg) from e

        render_time = round((time.perf_counter() - start_time) * 1000)
        self.logger.info(
            "Render completed",
            image_path=image_path,
            render_time=render_time,
            total_height=source_map.total_height,
            mapped_lines=len(source_map.line_to_y),
        )

        return RenderResult(image_path=image_path, source_map=source_map, render_time=render_time)

    async def _wait_for_diagrams(self, page: Page) -> None:
        """Give Mermaid a bounded grace period, only when diagrams are present."""
        grace_period = self.settings.diagram_grace_period_ms
        if not self.settings.mermaid_enabled or grace_period <= 0:
            return

        diagram_count = await page.locator(DIAGRAM_SELECTOR).count()
        if diagram_count == 0:
            return

        try:
            await page.wait_for_function(DIAGRAMS_SETTLED_JS, timeout=grace_period)
        except PlaywrightTimeoutError:
            self.logger.debug(
                "Diagram grace period elapsed", diagrams=diagram_count, grace_ms=grace_period
            )

    async def _generate_source_map(self, page: Page) -> SourceMap:
        result = await page.evaluate(SOURCE_MAP_JS)
        # JSON object keys come back as strings
        line_to_y = {int(line): int(y) for line, y in result.get("lineToY", {}).items()}
        return SourceMap(line_to_y=line_to_y, total_height=int(result.get("totalHeight", 0)))

    async def _take_screenshot(self, page: Page) -> str:
        self._render_count += 1
        filename = f"render-{int(time.time() * 1000)}-{self._render_count}.png"
        image_path = self.output_dir / filename

        await page.screenshot(path=str(image_path), full_page=True, type="png")
        return str(image_path)
