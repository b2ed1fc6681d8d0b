"""
mdbuf-render
============

Render a Markdown file to PNG from the command line.

Examples:
  mdbuf-render README.md
  mdbuf-render README.md preview.png --width 1200
  mdbuf-render doc.md --theme dark
"""

import argparse
import asyncio
import shutil
import sys
import time
from pathlib import Path
from typing import List, Optional

from mdbuf.config.logging import get_logger, setup_logging
from mdbuf.config.settings import get_settings
from mdbuf.core.rendering.render_engine import RenderEngine
from mdbuf.models.schemas import RenderOptions, RenderRequest, Viewport

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mdbuf-render",
        description="Render markdown to PNG",
        epilog=__doc__.split("Examples:", 1)[1] if __doc__ else None,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("input", type=Path, help="Markdown file to render")
    parser.add_argument(
        "output", type=Path, nargs="?", help="Output PNG (default: input name with .png)"
    )
    parser.add_argument("--width", type=int, default=None, help="Viewport width (default: 800)")
    parser.add_argument(
        "--theme", choices=["light", "dark"], default=None, help="Theme (default: light)"
    )
    parser.add_argument("--css", type=Path, default=None, help="Extra CSS file")
    return parser


def default_output_path(input_path: Path) -> Path:
    """``README.md`` -> ``README.png`` in the current directory."""
    name = input_path.name
    if name.endswith(".md"):
        name = name[: -len(".md")]
    return Path(name + ".png")


async def render_file(
    input_path: Path,
    output_path: Path,
    width: int,
    theme: str,
    css_path: Optional[Path] = None,
) -> int:
    """Render one file and copy the image to ``output_path``."""
    markdown = input_path.read_text(encoding="utf-8")
    print(f"Read {len(markdown)} bytes")

    css = css_path.read_text(encoding="utf-8") if css_path else None

    engine = RenderEngine()
    print("Initializing Playwright...")
    start_init = time.perf_counter()
    try:
        await engine.initialize()
        print(f"Initialized in {round((time.perf_counter() - start_init) * 1000)}ms")

        print("Rendering...")
        result = await engine.render(
            RenderRequest(
                markdown=markdown,
                file_path=str(input_path),
                viewport=Viewport(width=width),
                options=RenderOptions(theme=theme, css=css),
            )
        )
        shutil.copyfile(result.image_path, output_path)
    finally:
        await engine.shutdown()

    print("")
    print("=== Result ===")
    print(f"Render time: {result.render_time}ms")
    print(f"Image height: {result.source_map.total_height}px")
    print(f"Source lines mapped: {len(result.source_map.line_to_y)}")
    print(f"Output: {output_path}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Command line entry point."""
    args = build_parser().parse_args(argv)
    setup_logging()
    settings = get_settings()

    input_path = args.input.resolve()
    output_path = (args.output or default_output_path(args.input)).resolve()
    width = args.width or settings.default_width
    theme = args.theme or settings.default_theme

    print(f"Rendering: {input_path}")
    print(f"Output: {output_path}")
    print(f"Width: {width}px, Theme: {theme}")
    print("")

    try:
        return asyncio.run(render_file(input_path, output_path, width, theme, args.css))
    except Exception as e:
        logger.error("Render failed", input=str(input_path), error=str(e))
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
