"""Exception taxonomy for the proxy.

Upstream failures split into startup-fatal (UpstreamUnavailable), run-fatal
(UpstreamConnectionLost) and per-call (UpstreamInvocationError). Per-call
failures never touch the mirror; mirror failures are either fatal or logged.
"""

from __future__ import annotations


class ProxyError(Exception):
	"""Base class for all proxy errors."""

	exit_code: int = 1


class UpstreamUnavailable(ProxyError):
	"""The upstream server could not be launched, reached, or listed."""


class UpstreamConnectionLost(ProxyError):
	"""An established upstream connection closed unexpectedly."""

	exit_code = 2


class SyncPassFailure(ProxyError):
	"""A reconciliation pass after startup could not list upstream tools."""


class ArgumentParseError(ProxyError):
	"""The caller's args_json payload is not a JSON object."""

	def __init__(self, detail: str) -> None:
		super().__init__(f"Invalid JSON for args_json: {detail}")
		self.detail = detail


class UpstreamInvocationError(ProxyError):
	"""An upstream tool call failed. The message is the upstream's own."""

	def __init__(self, name: str, cause: BaseException) -> None:
		super().__init__(str(cause) or type(cause).__name__)
		self.name = name
		self.cause = cause


class RegistryError(ProxyError):
	"""Invalid register/update against the local tool registry."""

	def __init__(self, name: str, message: str) -> None:
		super().__init__(message)
		self.name = name


class DuplicateRegistration(RegistryError):
	def __init__(self, name: str) -> None:
		super().__init__(name, f"Tool {name} is already registered")


class UnknownOperation(RegistryError):
	def __init__(self, name: str) -> None:
		super().__init__(name, f"Tool {name} not found")


class ToolUnavailable(ProxyError):
	"""The tool was mirrored once but the upstream no longer lists it."""

	def __init__(self, name: str) -> None:
		super().__init__(f"Tool {name} is no longer available upstream")
		self.name = name


def exit_code_for(exc: BaseException) -> int:
	"""Map an exception escaping the proxy to a process exit code."""
	if isinstance(exc, ProxyError):
		return exc.exit_code
	if isinstance(exc, BaseExceptionGroup):
		return max((exit_code_for(e) for e in exc.exceptions), default=1)
	return 1
