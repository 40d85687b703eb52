"""Stdio MCP proxy that mirrors an upstream server's tools."""

from __future__ import annotations

from rube_proxy.codec import decode_arguments
from rube_proxy.forwarder import InvocationForwarder
from rube_proxy.local_endpoint import LocalEndpoint
from rube_proxy.proxy import run_proxy
from rube_proxy.remote_endpoint import RemoteEndpoint, RemoteOperation
from rube_proxy.synchronizer import MirrorSynchronizer, SyncReport

__all__ = [
	"InvocationForwarder",
	"LocalEndpoint",
	"MirrorSynchronizer",
	"RemoteEndpoint",
	"RemoteOperation",
	"SyncReport",
	"decode_arguments",
	"run_proxy",
]
