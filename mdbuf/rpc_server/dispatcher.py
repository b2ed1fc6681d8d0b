"""
Request Dispatcher
==================

JSON-RPC 2.0 request handling for the worker protocol.

Every input line produces exactly one response line:

1. the line must be JSON                      -> -32700, id 0
2. it must be a 2.0 envelope with id/method   -> -32600, id echoed or 0
3. the method must be registered              -> -32601
4. the method must not raise                  -> -32603 with the exception message

A successful ``shutdown`` writes its response and then moves the dispatcher to
the terminal state; the run loop observes that and performs release and exit.
"""

import inspect
import json
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Union

from pydantic import BaseModel

from mdbuf import __version__
from mdbuf.config.logging import get_logger
from mdbuf.models.schemas import JsonRpcResponse, PingResult

from .errors import InternalError, InvalidRequestError, MethodNotFoundError, ParseError, RpcError

logger = get_logger(__name__)

JSONRPC_VERSION = "2.0"
SHUTDOWN_METHOD = "shutdown"

MethodHandler = Callable[[Any], Union[Any, Awaitable[Any]]]


class DispatcherState(str, Enum):
    """Lifecycle of the dispatcher."""

    SERVING = "serving"
    TERMINATED = "terminated"


def encode_response(response: JsonRpcResponse) -> str:
    """Serialise a response as one protocol line."""
    return (
        json.dumps(
            response.to_wire(), separators=(",", ":"), ensure_ascii=False, allow_nan=False
        )
        + "\n"
    )


def _reject_constant(name: str) -> Any:
    # NaN and Infinity are accepted by the json module but are not JSON
    raise ValueError(f"Invalid JSON constant: {name}")


def _to_jsonable(result: Any) -> Any:
    if isinstance(result, BaseModel):
        to_wire = getattr(result, "to_wire", None)
        return to_wire() if callable(to_wire) else result.model_dump(by_alias=True)
    return result


class RequestDispatcher:
    """Validates request envelopes, routes them and writes one response per line."""

    def __init__(
        self,
        render: MethodHandler,
        write_line: Callable[[str], None],
        on_terminate: Optional[Callable[[], None]] = None,
        version: str = __version__,
    ):
        self.version = version
        self.methods: Dict[str, MethodHandler] = {
            "render": render,
            "ping": self._ping,
            SHUTDOWN_METHOD: self._shutdown,
        }
        self.state = DispatcherState.SERVING
        self._write_line = write_line
        self._on_terminate = on_terminate
        self.logger: Any = logger.bind(component="rpc_dispatcher")  # structlog.BoundLoggerBase

    @property
    def terminated(self) -> bool:
        return self.state is DispatcherState.TERMINATED

    async def handle_line(self, line: str) -> JsonRpcResponse:
        """Handle one input line and write exactly one response line."""
        response, terminal = await self.dispatch(line)
        self._send(response)

        if terminal:
            self.state = DispatcherState.TERMINATED
            self.logger.info("Shutdown requested", request_id=response.id)
            if self._on_terminate is not None:
                self._on_terminate()

        return response

    async def dispatch(self, line: str) -> Tuple[JsonRpcResponse, bool]:
        """
        Build the response for one request line without writing it.

        Returns:
            The response and whether it moves the dispatcher to the terminal state
        """
        try:
            message = json.loads(line, parse_constant=_reject_constant)
        except ValueError:
            return self._error_response(None, ParseError()), False

        if not isinstance(message, dict):
            return self._error_response(None, InvalidRequestError()), False

        request_id = message.get("id")
        method = message.get("method")
        if (
            message.get("jsonrpc") != JSONRPC_VERSION
            or not isinstance(method, str)
            or "id" not in message
        ):
            return self._error_response(request_id, InvalidRequestError()), False

        handler = self.methods.get(method)
        if handler is None:
            return self._error_response(request_id, MethodNotFoundError(method)), False

        self.logger.debug("Request received", request_id=request_id, method=method)
        try:
            result = handler(message.get("params"))
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            error = e if isinstance(e, RpcError) else InternalError(str(e) or None)
            self.logger.error(
                "Method execution error",
                request_id=request_id,
                method=method,
                error_type=type(e).__name__,
                error=error.message,
            )
            return self._error_response(request_id, error), False

        return JsonRpcResponse.success(request_id, _to_jsonable(result)), method == SHUTDOWN_METHOD

    def _error_response(self, request_id: Any, error: RpcError) -> JsonRpcResponse:
        return JsonRpcResponse.failure(request_id, error.code, error.message, error.data)

    def _send(self, response: JsonRpcResponse) -> None:
        try:
            line = encode_response(response)
        except (TypeError, ValueError) as e:
            self.logger.error("Result is not JSON serialisable", request_id=response.id, error=str(e))
            fallback = JsonRpcResponse.failure(
                response.id, InternalError.code, f"Result is not JSON serialisable: {e}"
            )
            line = encode_response(fallback)
        self._write_line(line)

    def _ping(self, params: Any) -> Dict[str, Any]:
        return PingResult(version=self.version).to_wire()

    def _shutdown(self, params: Any) -> Dict[str, Any]:
        return {}
