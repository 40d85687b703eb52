"""Tests for the upstream client endpoint."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import anyio
import pytest
from mcp import types
from mcp.shared.exceptions import McpError

from rube_proxy.config import UpstreamConfig
from rube_proxy.errors import UpstreamInvocationError, UpstreamUnavailable
from rube_proxy.remote_endpoint import RemoteEndpoint, RemoteOperation


def _tool(name: str, **kwargs) -> types.Tool:
	return types.Tool(name=name, inputSchema={"type": "object"}, **kwargs)


def _connected(session: MagicMock) -> RemoteEndpoint:
	endpoint = RemoteEndpoint(UpstreamConfig(), "test-client", "1.0")
	endpoint._session = session
	return endpoint


class TestRemoteOperation:
	def test_from_tool(self) -> None:
		op = RemoteOperation.from_tool(_tool("search", title="Search", description="Finds"))
		assert op == RemoteOperation(
			name="search", title="Search", description="Finds", input_schema={"type": "object"},
		)


class TestServerParameters:
	def test_default_launch(self, tmp_path: Path) -> None:
		endpoint = RemoteEndpoint(UpstreamConfig(cwd=str(tmp_path)), "c", "1")
		params = endpoint.server_parameters()
		assert params.command == "npx"
		assert params.args == ["-y", "mcp-remote@0.1.29", "https://rube.app/mcp"]
		assert params.cwd == str(tmp_path)
		assert params.env is not None

	def test_explicit_args(self) -> None:
		endpoint = RemoteEndpoint(UpstreamConfig(command="node", args=["server.js"]), "c", "1")
		params = endpoint.server_parameters()
		assert params.command == "node"
		assert params.args == ["server.js"]


class TestConnect:
	@pytest.mark.asyncio
	async def test_launch_failure_is_unavailable(self) -> None:
		@asynccontextmanager
		async def failing_client(params, errlog=None):
			raise FileNotFoundError(2, "No such file or directory", params.command)
			yield

		endpoint = RemoteEndpoint(UpstreamConfig(command="missing-binary"), "c", "1")
		with patch("rube_proxy.remote_endpoint.stdio_client", failing_client):
			with pytest.raises(UpstreamUnavailable, match="missing-binary"):
				await endpoint.connect()
		assert endpoint._session is None

	@pytest.mark.asyncio
	async def test_not_connected(self) -> None:
		endpoint = RemoteEndpoint(UpstreamConfig(), "c", "1")
		with pytest.raises(UpstreamUnavailable, match="not established"):
			await endpoint.list_operations()
		with pytest.raises(UpstreamUnavailable):
			await endpoint.invoke("search", {})

	@pytest.mark.asyncio
	async def test_lost_connection_refuses_requests(self) -> None:
		endpoint = _connected(MagicMock())
		endpoint.connection_lost.set()
		with pytest.raises(UpstreamUnavailable):
			await endpoint.list_operations()


class TestListOperations:
	@pytest.mark.asyncio
	async def test_single_page(self) -> None:
		session = MagicMock()
		session.list_tools = AsyncMock(return_value=types.ListToolsResult(tools=[_tool("a"), _tool("b")]))
		ops = await _connected(session).list_operations()
		assert [op.name for op in ops] == ["a", "b"]
		session.list_tools.assert_awaited_once_with()

	@pytest.mark.asyncio
	async def test_follows_cursor(self) -> None:
		session = MagicMock()
		session.list_tools = AsyncMock(side_effect=[
			types.ListToolsResult(tools=[_tool("a")], nextCursor="page-2"),
			types.ListToolsResult(tools=[_tool("b")]),
		])
		ops = await _connected(session).list_operations()
		assert [op.name for op in ops] == ["a", "b"]
		second = session.list_tools.await_args_list[1]
		assert second.kwargs["params"].cursor == "page-2"

	@pytest.mark.asyncio
	async def test_protocol_error_is_unavailable(self) -> None:
		session = MagicMock()
		session.list_tools = AsyncMock(
			side_effect=McpError(types.ErrorData(code=types.INTERNAL_ERROR, message="upstream exploded")),
		)
		with pytest.raises(UpstreamUnavailable, match="Failed to list upstream tools: upstream exploded"):
			await _connected(session).list_operations()

	@pytest.mark.asyncio
	async def test_malformed_listing_is_unavailable(self) -> None:
		with pytest.raises(Exception) as parse_failure:
			types.ListToolsResult.model_validate({"tools": [{"description": "no name"}]})
		cause = parse_failure.value
		session = MagicMock()
		session.list_tools = AsyncMock(side_effect=cause)
		with pytest.raises(UpstreamUnavailable, match="Failed to list upstream tools") as exc_info:
			await _connected(session).list_operations()
		assert exc_info.value.__cause__ is cause

	@pytest.mark.asyncio
	async def test_closed_transport_is_unavailable(self) -> None:
		session = MagicMock()
		session.list_tools = AsyncMock(side_effect=anyio.ClosedResourceError())
		with pytest.raises(UpstreamUnavailable):
			await _connected(session).list_operations()


class TestInvoke:
	@pytest.mark.asyncio
	async def test_result_returned_unchanged(self) -> None:
		result = types.CallToolResult(content=[types.TextContent(type="text", text="done")], isError=True)
		session = MagicMock()
		session.call_tool = AsyncMock(return_value=result)
		assert await _connected(session).invoke("search", {"q": 1}) is result
		session.call_tool.assert_awaited_once_with("search", {"q": 1})

	@pytest.mark.asyncio
	async def test_failure_wrapped_with_cause(self) -> None:
		cause = McpError(types.ErrorData(code=types.INVALID_PARAMS, message="bad q"))
		session = MagicMock()
		session.call_tool = AsyncMock(side_effect=cause)
		with pytest.raises(UpstreamInvocationError, match="bad q") as exc_info:
			await _connected(session).invoke("search", {})
		assert exc_info.value.name == "search"
		assert exc_info.value.cause is cause


class TestMessageHandler:
	@pytest.mark.asyncio
	async def test_tool_list_changed_triggers_callback(self) -> None:
		callback = MagicMock()
		endpoint = RemoteEndpoint(UpstreamConfig(), "c", "1", on_operations_changed=callback)
		await endpoint._handle_message(types.ServerNotification(types.ToolListChangedNotification()))
		callback.assert_called_once_with()

	@pytest.mark.asyncio
	async def test_other_notifications_ignored(self) -> None:
		callback = MagicMock()
		endpoint = RemoteEndpoint(UpstreamConfig(), "c", "1", on_operations_changed=callback)
		await endpoint._handle_message(
			types.ServerNotification(types.ResourceListChangedNotification(params=None)),
		)
		callback.assert_not_called()

	@pytest.mark.asyncio
	async def test_no_callback_installed(self) -> None:
		endpoint = RemoteEndpoint(UpstreamConfig(), "c", "1")
		await endpoint._handle_message(types.ServerNotification(types.ToolListChangedNotification()))

	@pytest.mark.asyncio
	async def test_transport_exception_logged(self, caplog: pytest.LogCaptureFixture) -> None:
		endpoint = RemoteEndpoint(UpstreamConfig(), "c", "1")
		with caplog.at_level(logging.ERROR, logger="rube_proxy.remote_endpoint"):
			await endpoint._handle_message(ValueError("garbled frame"))
		assert "Remote client error" in caplog.text


class TestRelay:
	@pytest.mark.asyncio
	async def test_end_of_stream_marks_connection_lost(self) -> None:
		source_send, source_recv = anyio.create_memory_object_stream[str](10)
		sink_send, sink_recv = anyio.create_memory_object_stream[str](10)
		endpoint = RemoteEndpoint(UpstreamConfig(), "c", "1")

		source_send.send_nowait("frame")
		source_send.close()
		await endpoint._relay_stream(source_recv, sink_send)

		assert sink_recv.receive_nowait() == "frame"
		assert endpoint.connection_lost.is_set()

	@pytest.mark.asyncio
	async def test_end_during_close_is_not_a_loss(self) -> None:
		source_send, source_recv = anyio.create_memory_object_stream[str](10)
		sink_send, _sink_recv = anyio.create_memory_object_stream[str](10)
		endpoint = RemoteEndpoint(UpstreamConfig(), "c", "1")
		endpoint._closing = True

		source_send.close()
		await endpoint._relay_stream(source_recv, sink_send)

		assert not endpoint.connection_lost.is_set()

	@pytest.mark.asyncio
	async def test_session_side_closed(self) -> None:
		source_send, source_recv = anyio.create_memory_object_stream[str](10)
		sink_send, sink_recv = anyio.create_memory_object_stream[str](10)
		endpoint = RemoteEndpoint(UpstreamConfig(), "c", "1")

		sink_recv.close()
		source_send.send_nowait("frame")
		await endpoint._relay_stream(source_recv, sink_send)

		assert not endpoint.connection_lost.is_set()

	@pytest.mark.asyncio
	async def test_wait_closed(self) -> None:
		endpoint = RemoteEndpoint(UpstreamConfig(), "c", "1")
		endpoint.connection_lost.set()
		with anyio.fail_after(1):
			await endpoint.wait_closed()
