"""Shared pytest fixtures for rube-proxy tests."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from fakes import FakeRemote

from rube_proxy.forwarder import InvocationForwarder
from rube_proxy.local_endpoint import LocalEndpoint
from rube_proxy.synchronizer import MirrorSynchronizer


@pytest.fixture()
def remote() -> FakeRemote:
	return FakeRemote()


@pytest.fixture()
def local() -> LocalEndpoint:
	"""LocalEndpoint whose broadcasts are recorded instead of sent."""
	endpoint = LocalEndpoint("test-proxy", "9.9.9")
	endpoint.broadcast_changed = AsyncMock()  # type: ignore[method-assign]
	return endpoint


@pytest.fixture()
def forwarder(remote: FakeRemote) -> InvocationForwarder:
	return InvocationForwarder(remote)  # type: ignore[arg-type]


@pytest.fixture()
def synchronizer(remote: FakeRemote, local: LocalEndpoint, forwarder: InvocationForwarder) -> MirrorSynchronizer:
	return MirrorSynchronizer(remote, local, forwarder, schema_preview_limit=6000)  # type: ignore[arg-type]
