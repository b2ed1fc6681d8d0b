"""
HTML Generator
==============

Assemble annotated HTML bodies into standalone HTML documents for browser rendering.
Supports light/dark themes, caller-supplied CSS and Mermaid diagram bootstrapping.
"""

from pathlib import Path
from typing import Any, Dict, Optional

import jinja2

from mdbuf.config.logging import get_logger
from mdbuf.config.settings import get_settings

logger = get_logger(__name__)

TEMPLATE_NAME = "document.html"

PALETTES: Dict[str, Dict[str, str]] = {
    "light": {
        "text": "#24292f",
        "background": "#ffffff",
        "surface": "#f6f8fa",
        "divider": "#d0d7de",
        "border": "#d0d7de",
        "muted": "#57606a",
        "link": "#0969da",
    },
    "dark": {
        "text": "#c9d1d9",
        "background": "#0d1117",
        "surface": "#161b22",
        "divider": "#21262d",
        "border": "#3b434b",
        "muted": "#8b949e",
        "link": "#58a6ff",
    },
}

MERMAID_THEMES = {"light": "default", "dark": "dark"}


class HTMLGenerationError(Exception):
    """Exception raised when HTML generation fails."""

    pass


class HTMLDocumentGenerator:
    """Jinja2-based standalone document generator."""

    def __init__(self, mermaid_script_url: Optional[str] = None) -> None:
        self.settings = get_settings()
        self.logger: Any = logger.bind(generator="jinja2")  # structlog.BoundLoggerBase
        self.mermaid_script_url = mermaid_script_url or self.settings.mermaid_script_url
        self._setup_jinja2_environment()

    def _setup_jinja2_environment(self) -> None:
        """Setup Jinja2 template environment."""
        template_dir = Path(__file__).parent / "templates"
        self.env = jinja2.Environment(
            loader=jinja2.FileSystemLoader(str(template_dir)),
            autoescape=jinja2.select_autoescape(["html", "xml"]),
        )

    def generate(
        self,
        body: str,
        width: int,
        theme: str = "light",
        custom_css: Optional[str] = None,
        enable_diagrams: bool = True,
    ) -> str:
        """
        Generate a complete HTML document around an annotated body.

        Args:
            body: Annotated HTML body
            width: Maximum layout width in pixels
            theme: Palette name, ``light`` or ``dark``
            custom_css: Extra styles appended after the base styles, inserted verbatim
            enable_diagrams: Include the Mermaid bootstrap

        Returns:
            Generated HTML string

        Raises:
            HTMLGenerationError: If the theme is unknown or the template fails
        """
        if theme not in PALETTES:
            raise HTMLGenerationError(f"Unknown theme: {theme}")

        try:
            template = self.env.get_template(TEMPLATE_NAME)
            html = template.render(
                body=body,
                width=int(width),
                palette=PALETTES[theme],
                custom_css=custom_css,
                enable_diagrams=enable_diagrams,
                mermaid_script_url=self.mermaid_script_url,
                mermaid_theme=MERMAID_THEMES[theme],
            )
        except jinja2.TemplateError as e:
            error_msg = f"Template rendering failed: {e}"
            self.logger.error("HTML generation failed", error=error_msg)
            raise HTMLGenerationError(error_msg) from e

        self.logger.debug(
            "HTML generation completed", theme=theme, width=width, html_length=len(html)
        )
        return html


_default_generator: Optional[HTMLDocumentGenerator] = None


def assemble_document(
    body: str,
    width: int,
    theme: str = "light",
    custom_css: Optional[str] = None,
    enable_diagrams: bool = True,
) -> str:
    """
    Generate a standalone HTML document using the shared generator.

    Args:
        body: Annotated HTML body
        width: Maximum layout width in pixels
        theme: Palette name
        custom_css: Optional extra styles
        enable_diagrams: Include the Mermaid bootstrap

    Returns:
        Generated HTML string
    """
    global _default_generator
    if _default_generator is None:
        _default_generator = HTMLDocumentGenerator()
    return _default_generator.generate(body, width, theme, custom_css, enable_diagrams)
