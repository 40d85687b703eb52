"""Local registry of mirrored tools.

Entries are created once per tool name and never removed; an upstream tool
that disappears is only disabled. State per name:
UNREGISTERED -> ENABLED <-> DISABLED.

Entries are frozen. An update swaps in a new record, so a reader that took a
record at dispatch time keeps a consistent view of it.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Iterator
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from mcp.types import CallToolResult

from rube_proxy.errors import DuplicateRegistration, UnknownOperation


class ToolState(Enum):
	UNREGISTERED = "unregistered"
	ENABLED = "enabled"
	DISABLED = "disabled"


class ToolInvoker(Protocol):
	"""Callable bound to one mirrored tool name."""

	async def invoke(self, raw_args: str | None) -> CallToolResult: ...


@dataclass(frozen=True)
class MirroredTool:
	"""A local registration standing in for one upstream tool."""

	name: str
	description: str
	invoker: ToolInvoker
	title: str | None = None
	enabled: bool = True

	@property
	def state(self) -> ToolState:
		return ToolState.ENABLED if self.enabled else ToolState.DISABLED


class RegistryView(Protocol):
	"""Read-only access to the registry."""

	def get(self, name: str) -> MirroredTool | None: ...

	def state(self, name: str) -> ToolState: ...

	def names(self) -> list[str]: ...

	def enabled_tools(self) -> list[MirroredTool]: ...

	def __contains__(self, name: object) -> bool: ...

	def __len__(self) -> int: ...


class ToolRegistry:
	"""Name-keyed store of MirroredTool records. Only the owner mutates it."""

	def __init__(self) -> None:
		self._tools: dict[str, MirroredTool] = {}

	def add(self, tool: MirroredTool) -> MirroredTool:
		if tool.name in self._tools:
			raise DuplicateRegistration(tool.name)
		self._tools[tool.name] = tool
		return tool

	def update(
		self,
		name: str,
		*,
		description: str | None = None,
		title: str | None = None,
		enabled: bool | None = None,
	) -> MirroredTool:
		current = self._tools.get(name)
		if current is None:
			raise UnknownOperation(name)
		changes: dict[str, object] = {}
		if description is not None:
			changes["description"] = description
		if title is not None:
			changes["title"] = title
		if enabled is not None:
			changes["enabled"] = enabled
		updated = dataclasses.replace(current, **changes)
		self._tools[name] = updated
		return updated

	def get(self, name: str) -> MirroredTool | None:
		return self._tools.get(name)

	def state(self, name: str) -> ToolState:
		tool = self._tools.get(name)
		if tool is None:
			return ToolState.UNREGISTERED
		return tool.state

	def names(self) -> list[str]:
		return list(self._tools)

	def enabled_tools(self) -> list[MirroredTool]:
		return [t for t in self._tools.values() if t.enabled]

	def __contains__(self, name: object) -> bool:
		return name in self._tools

	def __len__(self) -> int:
		return len(self._tools)

	def __iter__(self) -> Iterator[MirroredTool]:
		return iter(list(self._tools.values()))
