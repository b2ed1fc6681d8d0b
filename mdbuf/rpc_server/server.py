"""
RPC Server
==========

mdbuf JSON-RPC worker entry point.

Usage: mdbuf-server  (or python -m mdbuf)

Reads JSON-RPC requests from stdin (one per line), writes responses to stdout.
All logging goes to stderr to keep the protocol clean.
"""

import asyncio
import signal
import sys
from typing import Any, Callable, Optional, Set

from mdbuf import __version__
from mdbuf.config.logging import get_logger, setup_logging
from mdbuf.config.settings import Settings, get_settings
from mdbuf.core.rendering.render_engine import RenderEngine, RenderEngineError
from mdbuf.models.schemas import JsonRpcResponse

from .dispatcher import RequestDispatcher, encode_response
from .errors import ParseError

logger = get_logger(__name__)


def write_stdout(text: str) -> None:
    """Write one protocol line to stdout."""
    sys.stdout.buffer.write(text.encode("utf-8"))
    sys.stdout.buffer.flush()


class RpcServer:
    """Reads request lines and runs each one as its own task.

    The loop stops on a ``shutdown`` request, stdin EOF or a termination
    signal. In-flight requests are allowed to write their responses, then the
    render engine is released.
    """

    def __init__(
        self,
        engine: RenderEngine,
        write_line: Optional[Callable[[str], None]] = None,
        version: str = __version__,
    ):
        self.engine = engine
        self.version = version
        self.logger: Any = logger.bind(component="rpc_server")  # structlog.BoundLoggerBase
        write_line = write_line or write_stdout
        self._write_line = write_line
        self.dispatcher = RequestDispatcher(
            render=engine.render,
            write_line=write_line,
            on_terminate=lambda: self.request_stop("shutdown request"),
            version=version,
        )
        self._tasks: Set["asyncio.Task[Any]"] = set()
        self._stop_event = asyncio.Event()
        self.stop_reason: Optional[str] = None

    def request_stop(self, reason: str) -> None:
        """Stop reading new requests; the serve loop then drains and releases."""
        if self.stop_reason is None:
            self.stop_reason = reason
            self.logger.info("Stopping server", reason=reason)
        self._stop_event.set()

    async def serve(self, reader: asyncio.StreamReader) -> int:
        """
        Serve requests until stopped.

        Args:
            reader: Stream delivering request lines

        Returns:
            Process exit code
        """
        self.logger.info("Starting JSON-RPC server", version=self.version)
        stop_waiter = asyncio.ensure_future(self._stop_event.wait())
        try:
            while True:
                read_task = asyncio.ensure_future(self._read_line(reader))
                done, _ = await asyncio.wait(
                    {read_task, stop_waiter}, return_when=asyncio.FIRST_COMPLETED
                )
                if read_task not in done:
                    read_task.cancel()
                    await asyncio.gather(read_task, return_exceptions=True)
                    break

                raw = read_task.result()
                if raw is None:
                    # Line longer than the reader limit; its id is unknowable
                    self.logger.error("Request line too long")
                    error = ParseError()
                    self._write_line(
                        encode_response(JsonRpcResponse.failure(None, error.code, error.message))
                    )
                    continue

                if not raw:
                    self.request_stop("connection closed")
                    break

                line = raw.decode("utf-8", errors="replace").strip()
                if line:
                    self._spawn(line)
        finally:
            stop_waiter.cancel()
            await self._drain()
            await self.engine.shutdown()

        self.logger.info("Server stopped", reason=self.stop_reason)
        return 0

    async def _read_line(self, reader: asyncio.StreamReader) -> Optional[bytes]:
        """
        Read one request line.

        Returns:
            The line, ``b""`` at end of input, or None for a line longer than the
            reader limit, which is discarded through its newline
        """
        try:
            return await reader.readuntil(b"\n")
        except asyncio.IncompleteReadError as e:
            return e.partial
        except asyncio.LimitOverrunError as e:
            consumed = e.consumed

        # The overlong line may still be arriving in pieces
        while True:
            await reader.readexactly(consumed)
            try:
                await reader.readuntil(b"\n")
                return None
            except asyncio.IncompleteReadError:
                return None
            except asyncio.LimitOverrunError as e:
                consumed = e.consumed

    def _spawn(self, line: str) -> None:
        task = asyncio.ensure_future(self.dispatcher.handle_line(line))
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: "asyncio.Task[Any]") -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            self.logger.error("Unhandled error while handling request", error=str(task.exception()))

    async def _drain(self) -> None:
        if self._tasks:
            self.logger.info("Waiting for in-flight requests", count=len(self._tasks))
            await asyncio.gather(*self._tasks, return_exceptions=True)


async def open_stdin_reader(limit: int) -> asyncio.StreamReader:
    """Connect an asyncio stream reader to stdin."""
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader(limit=limit)
    protocol = asyncio.StreamReaderProtocol(reader)
    await loop.connect_read_pipe(lambda: protocol, sys.stdin)
    return reader


def install_signal_handlers(server: RpcServer) -> None:
    """Stop the server gracefully on SIGTERM/SIGINT."""
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, server.request_stop, f"received {sig.name}")
        except (NotImplementedError, RuntimeError):
            # Signal handlers are unavailable on this platform/loop
            pass


async def main(settings: Optional[Settings] = None) -> int:
    """Initialize the renderer, then serve stdin until shutdown."""
    settings = settings or get_settings()

    logger.info("Initializing Playwright renderer", app=settings.app_name)
    engine = RenderEngine(settings)
    try:
        await engine.initialize()
    except RenderEngineError as e:
        logger.critical("Fatal error during startup", error=str(e))
        return 1
    logger.info("Renderer initialized")

    server = RpcServer(engine, version=settings.app_version)
    install_signal_handlers(server)
    try:
        reader = await open_stdin_reader(settings.max_request_bytes)
    except Exception:
        await engine.shutdown()
        raise
    return await server.serve(reader)


def run() -> None:
    """Console script entry point."""
    setup_logging()
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
