"""Client connection to the upstream MCP server.

The upstream is launched as a subprocess and spoken to over stdio. The read
side of the transport is relayed through a watched stream so that the end of
the upstream's stdout is seen as a connection loss rather than a quiet stop.
Its stderr is copied to ours with an `[mcp-remote] ` prefix.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable
from contextlib import AsyncExitStack
from dataclasses import dataclass
from typing import Any

import anyio
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream
from mcp import ClientSession, StdioServerParameters, types
from mcp.client.stdio import stdio_client
from mcp.shared.exceptions import McpError

from rube_proxy.config import UpstreamConfig
from rube_proxy.errors import UpstreamInvocationError, UpstreamUnavailable
from rube_proxy.stderr_relay import StderrRelay

logger = logging.getLogger(__name__)

_TRANSPORT_ERRORS = (McpError, anyio.ClosedResourceError, anyio.BrokenResourceError, TimeoutError)


@dataclass(frozen=True)
class RemoteOperation:
	"""Read-only copy of one tool the upstream advertises."""

	name: str
	title: str | None = None
	description: str | None = None
	input_schema: dict[str, Any] | None = None

	@classmethod
	def from_tool(cls, tool: types.Tool) -> RemoteOperation:
		return cls(
			name=tool.name,
			title=tool.title,
			description=tool.description,
			input_schema=tool.inputSchema,
		)


class RemoteEndpoint:
	"""Owns the upstream subprocess and its client session.

	Use as an async context manager. While open:
	- `list_operations()` / `invoke()` talk to the upstream
	- `on_operations_changed` is called for every tools/list_changed
	- `connection_lost` is set if the upstream's output ends before close
	"""

	def __init__(
		self,
		config: UpstreamConfig,
		client_name: str,
		client_version: str,
		on_operations_changed: Callable[[], None] | None = None,
	) -> None:
		self._config = config
		self._client_info = types.Implementation(name=client_name, version=client_version)
		self.on_operations_changed = on_operations_changed
		self.connection_lost = asyncio.Event()
		self._session: ClientSession | None = None
		self._stack: AsyncExitStack | None = None
		self._relay: asyncio.Task[None] | None = None
		self._closing = False

	def server_parameters(self) -> StdioServerParameters:
		return StdioServerParameters(
			command=self._config.command,
			args=self._config.resolved_args,
			cwd=str(self._config.resolved_cwd),
			env=dict(os.environ),
		)

	async def __aenter__(self) -> RemoteEndpoint:
		await self.connect()
		return self

	async def __aexit__(self, *exc_info: object) -> None:
		await self.close()

	async def connect(self) -> None:
		"""Launch the upstream and complete the MCP handshake.

		Raises:
			UpstreamUnavailable: If the process can't start or the handshake fails.
		"""
		params = self.server_parameters()
		stack = AsyncExitStack()
		try:
			errlog = StderrRelay()
			stack.callback(errlog.close)
			read_stream, write_stream = await stack.enter_async_context(stdio_client(params, errlog=errlog.writer))
			watched_writer, watched_reader = anyio.create_memory_object_stream[Any](0)
			self._relay = asyncio.create_task(self._relay_stream(read_stream, watched_writer), name="upstream-relay")
			session = await stack.enter_async_context(
				ClientSession(
					watched_reader,
					write_stream,
					message_handler=self._handle_message,
					client_info=self._client_info,
				)
			)
			with anyio.fail_after(self._config.handshake_timeout):
				await session.initialize()
		except (OSError, TimeoutError, *_TRANSPORT_ERRORS) as e:
			await self._abort(stack)
			raise UpstreamUnavailable(f"Could not connect to upstream ({params.command}): {e}") from e
		except BaseException:
			await self._abort(stack)
			raise

		self._stack = stack
		self._session = session
		logger.info("Connected to upstream (%s)", " ".join([params.command, *params.args]))

	async def _abort(self, stack: AsyncExitStack) -> None:
		self._closing = True
		if self._relay is not None:
			self._relay.cancel()
		try:
			await stack.aclose()
		except Exception as e:
			logger.debug("Error while tearing down failed upstream launch: %s", e)

	async def close(self) -> None:
		self._closing = True
		self._session = None
		if self._relay is not None:
			self._relay.cancel()
			self._relay = None
		if self._stack is not None:
			stack, self._stack = self._stack, None
			await stack.aclose()

	async def wait_closed(self) -> None:
		"""Block until the upstream connection is lost."""
		await self.connection_lost.wait()

	async def _relay_stream(
		self,
		source: MemoryObjectReceiveStream[Any],
		sink: MemoryObjectSendStream[Any],
	) -> None:
		"""Copy upstream messages to the session; flag a loss when the source ends."""
		with sink:
			try:
				async for item in source:
					await sink.send(item)
			except (anyio.ClosedResourceError, anyio.BrokenResourceError):
				return
			# flag the loss before the session sees end-of-stream
			if not self._closing:
				logger.debug("Upstream output stream ended")
				self.connection_lost.set()

	async def _handle_message(self, message: Any) -> None:
		if isinstance(message, Exception):
			logger.error("Remote client error", extra={"detail": message})
			return
		if not isinstance(message, types.ServerNotification):
			return
		notification = message.root
		if isinstance(notification, types.ToolListChangedNotification):
			logger.debug("Upstream reported a tool list change")
			if self.on_operations_changed is not None:
				self.on_operations_changed()
		else:
			logger.debug("Upstream notification: %s", notification.method)

	def _require_session(self) -> ClientSession:
		if self._session is None or self.connection_lost.is_set():
			raise UpstreamUnavailable("Upstream connection is not established")
		return self._session

	async def list_operations(self) -> list[RemoteOperation]:
		"""Fetch the full upstream tool catalog, following pagination.

		Raises:
			UpstreamUnavailable: If not connected or the upstream rejects the request.
		"""
		session = self._require_session()
		operations: list[RemoteOperation] = []
		cursor: str | None = None
		while True:
			try:
				if cursor is None:
					result = await session.list_tools()
				else:
					result = await session.list_tools(params=types.PaginatedRequestParams(cursor=cursor))
			except Exception as e:
				raise UpstreamUnavailable(f"Failed to list upstream tools: {e}") from e
			operations.extend(RemoteOperation.from_tool(tool) for tool in result.tools)
			cursor = result.nextCursor
			if not cursor:
				return operations

	async def invoke(self, name: str, arguments: dict[str, Any]) -> types.CallToolResult:
		"""Call an upstream tool once and return its result unchanged.

		Raises:
			UpstreamUnavailable: If not connected.
			UpstreamInvocationError: If the call fails; the cause is kept.
		"""
		session = self._require_session()
		try:
			return await session.call_tool(name, arguments)
		except Exception as e:
			raise UpstreamInvocationError(name, e) from e
