"""
Pydantic Models and Schemas
===========================

Core data models for render requests/results and JSON-RPC envelopes.
Wire names are camelCase; Python attributes are snake_case.
"""

from enum import IntEnum
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class WireModel(BaseModel):
    """Base model accepting both wire aliases and attribute names."""

    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        """Dump using wire (camelCase) names."""
        return self.model_dump(by_alias=True, exclude_none=True)


# Render Models
class Viewport(WireModel):
    """Viewport parameters of a render request."""

    width: int = Field(..., gt=0, description="Viewport width in pixels")
    start_line: Optional[int] = Field(None, alias="startLine", description="First visible line")
    end_line: Optional[int] = Field(None, alias="endLine", description="Last visible line")


class RenderOptions(WireModel):
    """Presentation options of a render request."""

    css: Optional[str] = Field(None, description="Extra CSS appended after the base styles")
    theme: Optional[Literal["light", "dark"]] = Field(None, description="Color palette")


class RenderRequest(WireModel):
    """Parameters of the ``render`` method."""

    markdown: str = Field(..., description="Markdown source text")
    file_path: str = Field(default="", alias="filePath", description="Source file path")
    viewport: Viewport
    options: Optional[RenderOptions] = None


class SourceMap(WireModel):
    """Mapping from source line number to vertical pixel offset."""

    line_to_y: Dict[int, int] = Field(default_factory=dict, alias="lineToY")
    total_height: int = Field(default=0, ge=0, alias="totalHeight")


class RenderResult(WireModel):
    """Result of the ``render`` method."""

    image_path: str = Field(..., alias="imagePath", description="Path of the rendered PNG")
    source_map: SourceMap = Field(..., alias="sourceMap")
    render_time: int = Field(..., ge=0, alias="renderTime", description="Render time in ms")


class PingResult(WireModel):
    """Result of the ``ping`` method."""

    status: Literal["ok"] = "ok"
    version: str


# JSON-RPC Models
class ErrorCode(IntEnum):
    """JSON-RPC 2.0 error codes."""

    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603


class JsonRpcErrorObject(BaseModel):
    """Error member of a JSON-RPC response."""

    code: int
    message: str
    data: Any = None


class JsonRpcResponse(BaseModel):
    """JSON-RPC response envelope carrying either a result or an error."""

    jsonrpc: Literal["2.0"] = "2.0"
    id: Any
    result: Any = None
    error: Optional[JsonRpcErrorObject] = None

    @classmethod
    def success(cls, request_id: Any, result: Any) -> "JsonRpcResponse":
        return cls(id=request_id, result=result)

    @classmethod
    def failure(
        cls, request_id: Any, code: int, message: str, data: Any = None
    ) -> "JsonRpcResponse":
        return cls(
            id=request_id if request_id is not None else 0,
            error=JsonRpcErrorObject(code=code, message=message, data=data),
        )

    def to_wire(self) -> Dict[str, Any]:
        """Envelope with exactly one of ``result`` or ``error``."""
        payload: Dict[str, Any] = {"jsonrpc": self.jsonrpc, "id": self.id}
        if self.error is not None:
            payload["error"] = self.error.model_dump(exclude_none=True)
        else:
            payload["result"] = self.result
        return payload
