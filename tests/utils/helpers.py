"""
Test Helpers
============

Helper functions for common testing operations.
"""

import asyncio
import json
import re
from typing import Any, Dict, List, Tuple

_ANNOTATED_RE = re.compile(r'<(\w+)\b[^>]*\bdata-source-line="(\d+)"')


def extract_source_lines(html: str) -> List[Tuple[str, int]]:
    """Return ``(tag, line)`` for every annotated element in document order."""
    return [(tag, int(line)) for tag, line in _ANNOTATED_RE.findall(html)]


def make_request(method: str, request_id: Any = 1, params: Any = None) -> str:
    """Build one JSON-RPC request line."""
    message: Dict[str, Any] = {"jsonrpc": "2.0", "id": request_id, "method": method}
    if params is not None:
        message["params"] = params
    return json.dumps(message)


class LineCollector:
    """Collects protocol lines written by the dispatcher or server."""

    def __init__(self, events: List[str] = None):
        self.lines: List[str] = []
        self.events = events

    def __call__(self, text: str) -> None:
        self.lines.append(text)
        if self.events is not None:
            self.events.append("response")

    @property
    def responses(self) -> List[Dict[str, Any]]:
        return [json.loads(line) for line in self.lines]

    def by_id(self) -> Dict[Any, Dict[str, Any]]:
        return {response["id"]: response for response in self.responses}


def feed_lines(reader: asyncio.StreamReader, *lines: str, eof: bool = True) -> None:
    """Feed request lines into a stream reader."""
    for line in lines:
        reader.feed_data((line + "\n").encode("utf-8"))
    if eof:
        reader.feed_eof()

