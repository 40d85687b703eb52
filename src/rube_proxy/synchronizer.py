"""Keeps the local tool registry in step with the upstream catalog.

A reconciliation pass lists the upstream tools and then, without awaiting
anything in between, registers new tools, refreshes known ones (re-enabling
any that had vanished) and disables those now missing. One tools/list_changed
broadcast goes out per pass.

Passes are serialized by a lock. Upstream change notifications only enqueue
a pass; a single consumer task (`run`) works through the queue in order.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from rube_proxy.descriptions import DEFAULT_SCHEMA_PREVIEW_LIMIT, build_description
from rube_proxy.errors import SyncPassFailure
from rube_proxy.registry import ToolState

if TYPE_CHECKING:
	from rube_proxy.forwarder import InvocationForwarder
	from rube_proxy.local_endpoint import LocalEndpoint
	from rube_proxy.remote_endpoint import RemoteEndpoint, RemoteOperation

logger = logging.getLogger(__name__)


@dataclass
class SyncReport:
	"""What one reconciliation pass changed."""

	listed: list[str] = field(default_factory=list)
	added: list[str] = field(default_factory=list)
	refreshed: list[str] = field(default_factory=list)
	reactivated: list[str] = field(default_factory=list)
	disabled: list[str] = field(default_factory=list)


class MirrorSynchronizer:
	"""Sole writer of the local registry."""

	def __init__(
		self,
		remote: RemoteEndpoint,
		local: LocalEndpoint,
		forwarder: InvocationForwarder,
		schema_preview_limit: int = DEFAULT_SCHEMA_PREVIEW_LIMIT,
	) -> None:
		self._remote = remote
		self._local = local
		self._forwarder = forwarder
		self._schema_preview_limit = schema_preview_limit
		self._lock = asyncio.Lock()
		self._requests: asyncio.Queue[None] = asyncio.Queue()
		self._schemas: dict[str, dict[str, Any] | None] = {}
		self.pass_count = 0

	def state(self, name: str) -> ToolState:
		return self._local.view.state(name)

	def cached_schema(self, name: str) -> dict[str, Any] | None:
		return self._schemas.get(name)

	async def reconcile(self) -> SyncReport:
		"""Run one pass.

		Raises:
			UpstreamUnavailable: If the upstream catalog can't be listed. The
				registry is left as it was.
		"""
		async with self._lock:
			operations = await self._remote.list_operations()
			report = self._apply(operations)
			self.pass_count += 1
			await self._local.broadcast_changed()
		logger.debug("Synced %d upstream tools", len(operations))
		if report.added or report.reactivated or report.disabled:
			logger.info(
				"Tool mirror updated: %d added, %d reactivated, %d disabled",
				len(report.added), len(report.reactivated), len(report.disabled),
			)
		return report

	def _apply(self, operations: list[RemoteOperation]) -> SyncReport:
		report = SyncReport()
		view = self._local.view
		seen: set[str] = set()

		for op in operations:
			if op.name in seen:
				logger.warning("Upstream listed tool %s more than once", op.name)
			seen.add(op.name)
			report.listed.append(op.name)
			self._schemas[op.name] = op.input_schema
			description = build_description(op, self._schema_preview_limit)
			title = op.title or op.name

			current = view.get(op.name)
			if current is None:
				self._local.register(
					op.name,
					description=description,
					title=title,
					invoker=self._forwarder.bind(op.name),
				)
				report.added.append(op.name)
				continue
			if not current.enabled:
				report.reactivated.append(op.name)
			else:
				report.refreshed.append(op.name)
			self._local.update(op.name, description=description, title=title, enabled=True)

		for name in view.names():
			if name in seen:
				continue
			current = view.get(name)
			if current is not None and current.enabled:
				report.disabled.append(name)
			self._local.update(name, enabled=False)

		return report

	async def refresh(self) -> SyncReport:
		"""Run a post-startup pass; any failure becomes SyncPassFailure."""
		try:
			return await self.reconcile()
		except Exception as e:
			raise SyncPassFailure(str(e) or type(e).__name__) from e

	def request_pass(self) -> None:
		"""Queue a pass. Safe to call from the upstream notification handler."""
		self._requests.put_nowait(None)

	async def drain(self) -> None:
		"""Wait until every queued pass has finished."""
		await self._requests.join()

	async def run(self) -> None:
		"""Consume queued pass requests forever, one at a time."""
		while True:
			await self._requests.get()
			try:
				await self.refresh()
			except Exception as e:
				logger.warning("Failed to refresh tool list after upstream notification", extra={"detail": e})
			finally:
				self._requests.task_done()
