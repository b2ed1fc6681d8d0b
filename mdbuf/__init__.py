"""
mdbuf
=====

Source-mapped Markdown renderer for editor preview buffers.

This package provides:
- Markdown to HTML conversion with per-block source line annotations
- Standalone HTML document assembly with light/dark themes and Mermaid diagrams
- Playwright-based PNG rendering with a line-to-pixel source map
- A JSON-RPC 2.0 worker process over stdin/stdout
"""

__version__ = "0.1.0"
__author__ = "mdbuf developers"
