"""Wires the upstream client, local server and mirror together."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import NoReturn

from rube_proxy.config import ProxyConfig
from rube_proxy.errors import UpstreamConnectionLost, UpstreamUnavailable
from rube_proxy.forwarder import InvocationForwarder
from rube_proxy.local_endpoint import LocalEndpoint
from rube_proxy.remote_endpoint import RemoteEndpoint
from rube_proxy.synchronizer import MirrorSynchronizer

logger = logging.getLogger(__name__)


def build_remote(config: ProxyConfig) -> RemoteEndpoint:
	identity = config.identity
	return RemoteEndpoint(
		config.upstream,
		client_name=f"{identity.name}-remote-client",
		client_version=identity.version,
	)


def _connection_lost(terminate: Callable[[int], NoReturn] | None) -> NoReturn:
	logger.error("Connection to upstream closed unexpectedly. Exiting.")
	if terminate is not None:
		terminate(2)
	raise UpstreamConnectionLost("Upstream connection closed after it was established")


async def run_proxy(config: ProxyConfig, terminate: Callable[[int], NoReturn] | None = None) -> int:
	"""Run the proxy until the local client disconnects.

	Returns 0 on local disconnect. If the upstream connection is lost after
	the handshake, even during the startup listing, `terminate(2)` is called when given (it must not return);
	otherwise UpstreamConnectionLost is raised.

	Raises:
		UpstreamUnavailable: If the upstream can't be launched or listed at startup.
		UpstreamConnectionLost: See above.
	"""
	async with build_remote(config) as remote:
		local = LocalEndpoint(config.identity.name, config.identity.version)
		forwarder = InvocationForwarder(remote)
		synchronizer = MirrorSynchronizer(remote, local, forwarder, config.schema_preview_limit)

		try:
			await synchronizer.reconcile()
		except UpstreamUnavailable:
			if not remote.connection_lost.is_set():
				raise
			_connection_lost(terminate)
		remote.on_operations_changed = synchronizer.request_pass

		sync_task = asyncio.create_task(synchronizer.run(), name="mirror-sync")
		serve_task = asyncio.create_task(local.run_stdio(), name="local-serve")
		lost_task = asyncio.create_task(remote.wait_closed(), name="upstream-watch")
		try:
			done, _ = await asyncio.wait(
				{sync_task, serve_task, lost_task},
				return_when=asyncio.FIRST_COMPLETED,
			)
			if lost_task in done:
				_connection_lost(terminate)
			if sync_task in done:
				sync_task.result()
			if serve_task in done:
				serve_task.result()
		finally:
			for task in (sync_task, serve_task, lost_task):
				task.cancel()
			await asyncio.gather(sync_task, lost_task, return_exceptions=True)
	return 0
