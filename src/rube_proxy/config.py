"""Configuration for rube-proxy.

Precedence: built-in defaults < optional TOML file < RUBE_* environment
variables. Everything is read once at startup.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

from rube_proxy.descriptions import DEFAULT_SCHEMA_PREVIEW_LIMIT

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = "rube-proxy.toml"
DEFAULT_REMOTE_URL = "https://rube.app/mcp"
DEFAULT_REMOTE_COMMAND = "npx"
DEFAULT_REMOTE_VERSION = "0.1.29"
DEFAULT_PROXY_NAME = "rube-codex-proxy"
DEFAULT_PROXY_VERSION = "0.1.0"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class UpstreamConfig:
	"""How to launch and reach the upstream MCP server."""

	url: str = DEFAULT_REMOTE_URL
	command: str = DEFAULT_REMOTE_COMMAND
	version: str = DEFAULT_REMOTE_VERSION  # mcp-remote version used by the default args
	args: list[str] | None = None  # None = default_args()
	cwd: str = ""  # empty = current directory
	handshake_timeout: float = 120.0  # seconds allowed for launch + initialize

	def default_args(self) -> list[str]:
		return ["-y", f"mcp-remote@{self.version}", self.url]

	@property
	def resolved_args(self) -> list[str]:
		return list(self.args) if self.args is not None else self.default_args()

	@property
	def resolved_cwd(self) -> Path:
		return Path(os.path.expanduser(self.cwd)) if self.cwd else Path.cwd()


@dataclass
class IdentityConfig:
	"""Name and version the proxy presents to local clients."""

	name: str = DEFAULT_PROXY_NAME
	version: str = DEFAULT_PROXY_VERSION


@dataclass
class ProxyConfig:
	"""Top-level rube-proxy configuration."""

	upstream: UpstreamConfig = field(default_factory=UpstreamConfig)
	identity: IdentityConfig = field(default_factory=IdentityConfig)
	schema_preview_limit: int = DEFAULT_SCHEMA_PREVIEW_LIMIT
	log_level: str = "INFO"


def parse_args_value(value: str) -> list[str]:
	"""Parse an argument vector given as a JSON list or whitespace-separated text."""
	try:
		parsed = json.loads(value)
	except json.JSONDecodeError as e:
		logger.warning(
			"Failed to parse RUBE_REMOTE_ARGS; falling back to whitespace split",
			extra={"detail": e},
		)
	else:
		if isinstance(parsed, list) and all(isinstance(item, str) for item in parsed):
			return parsed
	return value.split()


def _parse_limit(value: Any, source: str) -> int:
	try:
		limit = int(value)
	except (TypeError, ValueError) as e:
		raise ValueError(f"{source} must be an integer, got {value!r}") from e
	if limit <= 0:
		raise ValueError(f"{source} must be positive, got {limit}")
	return limit


def _build_upstream(data: dict[str, Any]) -> UpstreamConfig:
	uc = UpstreamConfig()
	for key in ("url", "command", "version", "cwd"):
		if key in data:
			setattr(uc, key, str(data[key]))
	if "handshake_timeout" in data:
		uc.handshake_timeout = float(data["handshake_timeout"])
	if "args" in data:
		args = data["args"]
		uc.args = [str(a) for a in args] if isinstance(args, list) else parse_args_value(str(args))
	return uc


def _build_identity(data: dict[str, Any]) -> IdentityConfig:
	ic = IdentityConfig()
	for key in ("name", "version"):
		if key in data:
			setattr(ic, key, str(data[key]))
	return ic


def _apply_env(pc: ProxyConfig, environ: Mapping[str, str]) -> None:
	uc = pc.upstream
	if "RUBE_REMOTE_URL" in environ:
		uc.url = environ["RUBE_REMOTE_URL"]
	if "RUBE_REMOTE_COMMAND" in environ:
		uc.command = environ["RUBE_REMOTE_COMMAND"]
	if "RUBE_REMOTE_VERSION" in environ:
		uc.version = environ["RUBE_REMOTE_VERSION"]
	if environ.get("RUBE_REMOTE_ARGS"):
		uc.args = parse_args_value(environ["RUBE_REMOTE_ARGS"])
	if "RUBE_REMOTE_CWD" in environ:
		uc.cwd = environ["RUBE_REMOTE_CWD"]
	if "RUBE_PROXY_NAME" in environ:
		pc.identity.name = environ["RUBE_PROXY_NAME"]
	if "RUBE_PROXY_VERSION" in environ:
		pc.identity.version = environ["RUBE_PROXY_VERSION"]
	if "RUBE_SCHEMA_PREVIEW_LIMIT" in environ:
		pc.schema_preview_limit = _parse_limit(environ["RUBE_SCHEMA_PREVIEW_LIMIT"], "RUBE_SCHEMA_PREVIEW_LIMIT")
	if "RUBE_LOG_LEVEL" in environ:
		pc.log_level = environ["RUBE_LOG_LEVEL"].upper()


def load_config(path: str | Path | None = None, environ: Mapping[str, str] | None = None) -> ProxyConfig:
	"""Build a ProxyConfig from an optional TOML file and the environment.

	Args:
		path: TOML file to read. None skips the file.
		environ: Environment to read overrides from (defaults to os.environ).

	Raises:
		FileNotFoundError: If path is given but doesn't exist.
		tomllib.TOMLDecodeError: If the file is invalid TOML.
		ValueError: If a numeric setting isn't a positive integer.
	"""
	if environ is None:
		environ = os.environ

	pc = ProxyConfig()
	if path is not None:
		config_path = Path(path)
		if not config_path.exists():
			raise FileNotFoundError(f"Config file not found: {config_path}")
		with open(config_path, "rb") as f:
			data = tomllib.load(f)
		if "upstream" in data:
			pc.upstream = _build_upstream(data["upstream"])
		if "identity" in data:
			pc.identity = _build_identity(data["identity"])
		proxy = data.get("proxy", {})
		if "schema_preview_limit" in proxy:
			pc.schema_preview_limit = _parse_limit(proxy["schema_preview_limit"], "proxy.schema_preview_limit")
		if "log_level" in proxy:
			pc.log_level = str(proxy["log_level"]).upper()

	_apply_env(pc, environ)
	if pc.log_level not in LOG_LEVELS:
		raise ValueError(f"Unknown log level: {pc.log_level}")
	return pc


def validate_config(config: ProxyConfig) -> list[tuple[str, str]]:
	"""Check launch settings without starting anything.

	Returns a list of (level, message) tuples where level is 'error' or 'warning'.
	"""
	issues: list[tuple[str, str]] = []
	uc = config.upstream

	if not uc.command:
		issues.append(("error", "upstream.command must not be empty"))
	elif shutil.which(uc.command) is None:
		issues.append(("error", f"upstream command not found on PATH: {uc.command}"))

	cwd = uc.resolved_cwd
	if not cwd.is_dir():
		issues.append(("error", f"upstream.cwd does not exist: {cwd}"))

	if config.schema_preview_limit <= 0:
		issues.append(("error", f"schema_preview_limit must be positive: {config.schema_preview_limit}"))

	if not uc.resolved_args:
		issues.append(("warning", "upstream args are empty"))

	if urlparse(uc.url).scheme not in ("http", "https"):
		issues.append(("warning", f"upstream.url is not an http(s) URL: {uc.url}"))

	if uc.handshake_timeout <= 0:
		issues.append(("warning", f"upstream.handshake_timeout is not positive: {uc.handshake_timeout}"))

	return issues
