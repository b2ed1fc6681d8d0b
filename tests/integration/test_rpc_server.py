"""
Integration Tests for the RPC Server
====================================

Drive the JSON-RPC loop through an asyncio stream reader, covering ordering,
concurrency, termination and the full render path against a mocked page.
"""

import asyncio
import signal
from unittest.mock import MagicMock, patch

import pytest

from mdbuf.models.schemas import ErrorCode
from mdbuf.rpc_server.server import RpcServer, install_signal_handlers, main

from tests.conftest import make_test_settings
from tests.utils.assertions import (
    assert_error_response,
    assert_png_file,
    assert_success_response,
)
from tests.utils.data_generators import MarkdownSamples, render_params
from tests.utils.helpers import LineCollector, feed_lines, make_request
from tests.utils.mocks import FakeRenderEngine, MockPage, create_mock_playwright


def make_server(engine, events=None):
    output = LineCollector(events)
    return RpcServer(engine, write_line=output), output


class TestServeLoop:
    """Test the request loop against a fake engine."""

    @pytest.mark.asyncio
    async def test_ping_then_eof(self):
        """Test a request is answered and EOF releases the engine."""
        engine = FakeRenderEngine()
        server, output = make_server(engine)
        reader = asyncio.StreamReader()
        feed_lines(reader, make_request("ping", 1))

        assert await server.serve(reader) == 0

        assert_success_response(output.by_id()[1], 1)
        assert server.stop_reason == "connection closed"
        assert engine.shutdown_calls == 1

    @pytest.mark.asyncio
    async def test_blank_lines_ignored(self):
        """Test empty lines produce no response."""
        server, output = make_server(FakeRenderEngine())
        reader = asyncio.StreamReader()
        feed_lines(reader, "", "   ", make_request("ping", 1), "")

        await server.serve(reader)
        assert len(output.lines) == 1

    @pytest.mark.asyncio
    async def test_one_response_per_line(self):
        """Test valid and invalid lines each get exactly one response."""
        server, output = make_server(FakeRenderEngine())
        reader = asyncio.StreamReader()
        feed_lines(
            reader,
            "garbage",
            "[]",
            make_request("ping", 1),
            make_request("missing", 2),
            make_request("render", 3, render_params()),
        )

        await server.serve(reader)

        assert len(output.lines) == 5
        by_id = output.by_id()
        assert_success_response(by_id[1], 1)
        assert_error_response(by_id[2], ErrorCode.METHOD_NOT_FOUND, 2)
        assert_success_response(by_id[3], 3)
        zero_id_codes = sorted(r["error"]["code"] for r in output.responses if r["id"] == 0)
        assert zero_id_codes == [ErrorCode.PARSE_ERROR, ErrorCode.INVALID_REQUEST]

    @pytest.mark.asyncio
    async def test_shutdown_response_before_release(self):
        """Test the shutdown response is written before the engine is released."""
        events = []
        engine = FakeRenderEngine(events)
        server, output = make_server(engine, events)
        reader = asyncio.StreamReader()
        feed_lines(reader, make_request("shutdown", 5), eof=False)

        assert await server.serve(reader) == 0

        assert events == ["response", "release"]
        assert output.responses[0] == {"jsonrpc": "2.0", "id": 5, "result": {}}
        assert server.stop_reason == "shutdown request"

    @pytest.mark.asyncio
    async def test_fast_request_not_blocked_by_slow_render(self):
        """Test responses are written in completion order."""
        server, output = make_server(FakeRenderEngine(render_delay=0.2))
        reader = asyncio.StreamReader()
        feed_lines(reader, make_request("render", 1, render_params()), make_request("ping", 2))

        await server.serve(reader)

        assert [r["id"] for r in output.responses] == [2, 1]

    @pytest.mark.asyncio
    async def test_eof_drains_in_flight_requests(self):
        """Test in-flight renders finish and respond before release."""
        events = []
        engine = FakeRenderEngine(events, render_delay=0.05)
        server, output = make_server(engine, events)
        reader = asyncio.StreamReader()
        feed_lines(
            reader,
            make_request("render", 1, render_params()),
            make_request("render", 2, render_params()),
        )

        await server.serve(reader)

        assert sorted(output.by_id()) == [1, 2]
        assert events[-1] == "release"
        assert events.count("response") == 2

    @pytest.mark.asyncio
    async def test_request_stop(self):
        """Test an external stop request (as from a signal) ends serving."""
        engine = FakeRenderEngine()
        server, output = make_server(engine)
        reader = asyncio.StreamReader()

        serve_task = asyncio.ensure_future(server.serve(reader))
        await asyncio.sleep(0)
        server.request_stop("received SIGTERM")

        assert await asyncio.wait_for(serve_task, timeout=2) == 0
        assert server.stop_reason == "received SIGTERM"
        assert engine.shutdown_calls == 1
        assert output.lines == []

    @pytest.mark.asyncio
    async def test_overlong_line(self):
        """Test a line over the reader limit gets a parse error and serving continues."""
        server, output = make_server(FakeRenderEngine())
        reader = asyncio.StreamReader(limit=64)
        feed_lines(reader, "x" * 200, make_request("ping", 1))

        await server.serve(reader)

        assert_error_response(output.responses[0], ErrorCode.PARSE_ERROR, 0)
        assert_success_response(output.responses[1], 1)

    @pytest.mark.asyncio
    async def test_overlong_line_in_pieces(self):
        """Test an overlong line arriving in several reads gets a single parse error."""
        server, output = make_server(FakeRenderEngine())
        reader = asyncio.StreamReader(limit=64)

        serve_task = asyncio.ensure_future(server.serve(reader))
        reader.feed_data(b"x" * 100)
        await asyncio.sleep(0.05)
        reader.feed_data(b"x" * 100)
        await asyncio.sleep(0.05)
        reader.feed_data(b"x" * 100 + b"\n")
        feed_lines(reader, make_request("ping", 1))

        assert await asyncio.wait_for(serve_task, timeout=2) == 0

        assert len(output.lines) == 2
        assert_error_response(output.responses[0], ErrorCode.PARSE_ERROR, 0)
        assert_success_response(output.responses[1], 1)

    @pytest.mark.asyncio
    async def test_overlong_line_cut_by_eof(self):
        """Test an overlong line without a newline before EOF gets one parse error."""
        server, output = make_server(FakeRenderEngine())
        reader = asyncio.StreamReader(limit=64)
        reader.feed_data(b"x" * 200)
        reader.feed_eof()

        await server.serve(reader)

        assert len(output.lines) == 1
        assert_error_response(output.responses[0], ErrorCode.PARSE_ERROR, 0)

    @pytest.mark.asyncio
    async def test_last_line_without_newline(self):
        """Test a final request not terminated by a newline is still answered."""
        server, output = make_server(FakeRenderEngine())
        reader = asyncio.StreamReader()
        reader.feed_data(make_request("ping", 1).encode("utf-8"))
        reader.feed_eof()

        await server.serve(reader)

        assert_success_response(output.responses[0], 1)

    @pytest.mark.asyncio
    async def test_render_error_reported(self):
        """Test engine failures become internal errors with the message."""
        engine = FakeRenderEngine()
        engine.error = RuntimeError("Renderer not initialized")
        server, output = make_server(engine)
        reader = asyncio.StreamReader()
        feed_lines(reader, make_request("render", 4, render_params()))

        await server.serve(reader)

        assert_error_response(
            output.responses[0], ErrorCode.INTERNAL_ERROR, 4, message="Renderer not initialized"
        )


class TestServerWithRenderEngine:
    """Test the full path from request line to PNG through the render engine."""

    @pytest.mark.asyncio
    async def test_render_round_trip(self, render_engine, mock_page):
        """Test a render request produces an image and a source map."""
        server, output = make_server(render_engine)
        reader = asyncio.StreamReader()
        feed_lines(
            reader,
            make_request("render", 1, render_params(MarkdownSamples.MIXED, theme="dark")),
            make_request("shutdown", 2),
            eof=False,
        )

        await server.serve(reader)

        result = assert_success_response(output.by_id()[1], 1)
        assert_png_file(result["imagePath"])
        expected_lines = [str(line) for _, line in MarkdownSamples.MIXED_LINES]
        assert sorted(result["sourceMap"]["lineToY"], key=int) == sorted(
            set(expected_lines), key=int
        )
        assert result["sourceMap"]["totalHeight"] > 0
        assert result["renderTime"] >= 0
        assert render_engine.is_initialized is False

    @pytest.mark.asyncio
    async def test_invalid_params_internal_error(self, render_engine):
        """Test malformed render params are reported as internal errors."""
        server, output = make_server(render_engine)
        reader = asyncio.StreamReader()
        feed_lines(reader, make_request("render", 3, {"markdown": "# A"}))

        await server.serve(reader)

        assert_error_response(output.responses[0], ErrorCode.INTERNAL_ERROR, 3, message="viewport")


class TestMain:
    """Test the server entry point."""

    @pytest.mark.asyncio
    async def test_startup_failure_exit_code(self, test_settings):
        """Test a browser that cannot start gives exit code 1."""
        factory = create_mock_playwright(MockPage())
        factory.playwright.chromium.launch.side_effect = Exception("Executable doesn't exist")

        with patch("mdbuf.core.rendering.render_engine.async_playwright", factory), patch(
            "mdbuf.rpc_server.server.open_stdin_reader"
        ) as open_reader:
            assert await main(test_settings) == 1

        open_reader.assert_not_called()
        factory.playwright.stop.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_serves_stdin(self, test_settings):
        """Test main initializes the engine and serves the stdin reader."""
        reader = asyncio.StreamReader()
        feed_lines(reader, make_request("ping", 1))
        output = LineCollector()

        factory = create_mock_playwright(MockPage())
        with patch("mdbuf.core.rendering.render_engine.async_playwright", factory), patch(
            "mdbuf.rpc_server.server.open_stdin_reader", return_value=reader
        ) as open_reader, patch("mdbuf.rpc_server.server.write_stdout", output), patch(
            "mdbuf.rpc_server.server.install_signal_handlers"
        ):
            assert await main(test_settings) == 0

        open_reader.assert_awaited_once_with(test_settings.max_request_bytes)
        factory.browser.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_ping_reports_configured_version(self, tmp_path):
        """Test the version answered by ping comes from settings."""
        settings = make_test_settings(tmp_path, app_version="2.3.4")
        reader = asyncio.StreamReader()
        feed_lines(reader, make_request("ping", 1))
        output = LineCollector()

        factory = create_mock_playwright(MockPage())
        with patch("mdbuf.core.rendering.render_engine.async_playwright", factory), patch(
            "mdbuf.rpc_server.server.open_stdin_reader", return_value=reader
        ), patch("mdbuf.rpc_server.server.write_stdout", output), patch(
            "mdbuf.rpc_server.server.install_signal_handlers"
        ):
            assert await main(settings) == 0

        assert output.responses[0]["result"] == {"status": "ok", "version": "2.3.4"}


class TestSignalHandlers:
    """Test termination signal wiring."""

    def test_handlers_request_stop(self):
        """Test SIGTERM and SIGINT both route to a graceful stop."""
        server = RpcServer(FakeRenderEngine(), write_line=LineCollector())
        loop = MagicMock()

        with patch("mdbuf.rpc_server.server.asyncio.get_running_loop", return_value=loop):
            install_signal_handlers(server)

        registered = {call.args[0]: call.args[1:] for call in loop.add_signal_handler.call_args_list}
        assert registered[signal.SIGTERM] == (server.request_stop, "received SIGTERM")
        assert registered[signal.SIGINT] == (server.request_stop, "received SIGINT")

    def test_unsupported_platform(self):
        """Test loops without signal support are tolerated."""
        server = RpcServer(FakeRenderEngine(), write_line=LineCollector())
        loop = MagicMock()
        loop.add_signal_handler.side_effect = NotImplementedError

        with patch("mdbuf.rpc_server.server.asyncio.get_running_loop", return_value=loop):
            install_signal_handlers(server)
