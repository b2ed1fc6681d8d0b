"""
RPC Errors
==========

JSON-RPC 2.0 error taxonomy. Each exception carries its protocol error code.
"""

from typing import Any, Optional

from mdbuf.models.schemas import ErrorCode


class RpcError(Exception):
    """Base class for errors reported as JSON-RPC error responses."""

    code: int = ErrorCode.INTERNAL_ERROR
    default_message: str = "Internal error"

    def __init__(self, message: Optional[str] = None, data: Any = None):
        self.message = message or self.default_message
        self.data = data
        super().__init__(self.message)


class ParseError(RpcError):
    """Request line is not valid JSON."""

    code = ErrorCode.PARSE_ERROR
    default_message = "Parse error"


class InvalidRequestError(RpcError):
    """Valid JSON that is not a JSON-RPC 2.0 request envelope."""

    code = ErrorCode.INVALID_REQUEST
    default_message = "Invalid Request"


class MethodNotFoundError(RpcError):
    """Envelope names a method that is not registered."""

    code = ErrorCode.METHOD_NOT_FOUND
    default_message = "Method not found"

    def __init__(self, method: str):
        super().__init__(f"Method not found: {method}")
        self.method = method


class InvalidParamsError(RpcError):
    """Reserved for params validation at the protocol layer; not raised today."""

    code = ErrorCode.INVALID_PARAMS
    default_message = "Invalid params"


class InternalError(RpcError):
    """A method raised while handling a request."""

    code = ErrorCode.INTERNAL_ERROR
    default_message = "Unknown error"
