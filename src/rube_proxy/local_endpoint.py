"""The MCP server the proxy exposes to its own (local) clients."""

from __future__ import annotations

import logging
from typing import Any

import anyio
from mcp.server import InitializationOptions, NotificationOptions, Server
from mcp.server.session import ServerSession
from mcp.server.stdio import stdio_server
from mcp.types import CallToolResult, Tool

from rube_proxy.codec import ARGS_FIELD, ARGS_SCHEMA
from rube_proxy.errors import ToolUnavailable, UnknownOperation
from rube_proxy.registry import MirroredTool, RegistryView, ToolInvoker, ToolRegistry

logger = logging.getLogger(__name__)


class LocalEndpoint:
	"""Local MCP server identity plus the registry of mirrored tools.

	`register` and `update` are the only mutators and are meant for the
	mirror synchronizer. Request handlers read the registry at dispatch time.
	"""

	def __init__(self, name: str, version: str) -> None:
		self.name = name
		self.version = version
		self.server: Server = Server(name, version=version)
		self._registry = ToolRegistry()
		self._sessions: set[ServerSession] = set()
		self._install_handlers()

	@property
	def view(self) -> RegistryView:
		return self._registry

	def register(
		self,
		name: str,
		*,
		description: str,
		invoker: ToolInvoker,
		title: str | None = None,
	) -> MirroredTool:
		"""Add a new enabled tool. Raises DuplicateRegistration if name is taken."""
		return self._registry.add(
			MirroredTool(name=name, description=description, invoker=invoker, title=title, enabled=True)
		)

	def update(
		self,
		name: str,
		*,
		description: str | None = None,
		title: str | None = None,
		enabled: bool | None = None,
	) -> MirroredTool:
		"""Change a registered tool. Raises UnknownOperation if name was never registered."""
		return self._registry.update(name, description=description, title=title, enabled=enabled)

	async def broadcast_changed(self) -> None:
		"""Tell every connected local client to re-fetch the tool list."""
		for session in list(self._sessions):
			try:
				await session.send_tool_list_changed()
			except (anyio.ClosedResourceError, anyio.BrokenResourceError) as e:
				logger.debug("Dropping closed local session: %s", e)
				self._sessions.discard(session)

	def list_tools(self) -> list[Tool]:
		return [
			Tool(
				name=tool.name,
				title=tool.title or tool.name,
				description=tool.description,
				inputSchema=ARGS_SCHEMA,
			)
			for tool in self._registry.enabled_tools()
		]

	async def call_tool(self, name: str, arguments: dict[str, Any] | None) -> CallToolResult:
		"""Dispatch a local call to the mirrored tool's invoker.

		Raises:
			UnknownOperation: If the name was never mirrored.
			ToolUnavailable: If the tool is mirrored but currently disabled.
		"""
		tool = self._registry.get(name)
		if tool is None:
			raise UnknownOperation(name)
		if not tool.enabled:
			raise ToolUnavailable(name)
		raw_args = (arguments or {}).get(ARGS_FIELD)
		return await tool.invoker.invoke(raw_args)

	def _remember_session(self) -> None:
		try:
			session = self.server.request_context.session
		except LookupError:
			return
		self._sessions.add(session)

	def _install_handlers(self) -> None:
		@self.server.list_tools()
		async def handle_list_tools() -> list[Tool]:
			self._remember_session()
			return self.list_tools()

		@self.server.call_tool()
		async def handle_call_tool(name: str, arguments: dict[str, Any]) -> CallToolResult:
			self._remember_session()
			return await self.call_tool(name, arguments)

	def initialization_options(self) -> InitializationOptions:
		return self.server.create_initialization_options(
			notification_options=NotificationOptions(tools_changed=True),
		)

	async def run_stdio(self) -> None:
		"""Serve over this process's stdin/stdout until the local client disconnects."""
		async with stdio_server() as (read_stream, write_stream):
			logger.info("Proxy ready (stdin/stdout)")
			await self.server.run(read_stream, write_stream, self.initialization_options())
		logger.info("Local client disconnected from proxy")
