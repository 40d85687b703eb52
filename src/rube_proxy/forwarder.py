"""Forwarding of local tool calls to the upstream."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from mcp.types import CallToolResult

from rube_proxy.codec import decode_arguments

if TYPE_CHECKING:
	from rube_proxy.remote_endpoint import RemoteEndpoint

logger = logging.getLogger(__name__)


class InvocationForwarder:
	"""Decodes args_json and calls the upstream tool of the same name.

	At most once per call: no retries here. Parse errors are raised before
	anything is sent upstream.
	"""

	def __init__(self, remote: RemoteEndpoint) -> None:
		self._remote = remote

	async def forward(self, name: str, raw_args: str | None) -> CallToolResult:
		arguments = decode_arguments(raw_args)
		logger.info("Forwarding call to %s", name)
		return await self._remote.invoke(name, arguments)

	def bind(self, name: str) -> BoundForwarder:
		return BoundForwarder(self, name)


@dataclass(frozen=True)
class BoundForwarder:
	"""ToolInvoker for a single upstream tool name."""

	forwarder: InvocationForwarder
	name: str

	async def invoke(self, raw_args: str | None) -> CallToolResult:
		return await self.forwarder.forward(self.name, raw_args)
