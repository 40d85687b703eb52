"""CLI interface for rube-proxy."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
import tomllib
from pathlib import Path
from typing import NoReturn

from rube_proxy.config import (
	DEFAULT_CONFIG,
	DEFAULT_PROXY_NAME,
	LOG_LEVELS,
	ProxyConfig,
	load_config,
	validate_config,
)
from rube_proxy.errors import ProxyError, exit_code_for
from rube_proxy.logging_setup import configure_logging
from rube_proxy.proxy import build_remote, run_proxy

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
	parser = argparse.ArgumentParser(
		prog="rube-proxy",
		description="Stdio MCP proxy mirroring an upstream server's tools",
	)
	parser.add_argument(
		"--config", default=None,
		help=f"TOML config file (default: ./{DEFAULT_CONFIG} if present)",
	)
	parser.add_argument(
		"--log-level", default=None, choices=LOG_LEVELS, type=str.upper,
		help="Override the configured log level",
	)
	sub = parser.add_subparsers(dest="command")

	# rube-proxy serve
	sub.add_parser("serve", help="Serve the mirrored tools over stdio (default)")

	# rube-proxy list-tools
	sub.add_parser("list-tools", help="Connect to the upstream, print its tools and exit")

	# rube-proxy validate-config
	sub.add_parser("validate-config", help="Check upstream launch settings")

	return parser


def _config_path(explicit: str | None) -> Path | None:
	if explicit is not None:
		return Path(explicit)
	default = Path(DEFAULT_CONFIG)
	return default if default.exists() else None


def _hard_exit(code: int) -> NoReturn:
	"""Exit without unwinding; pending stdin reads would otherwise block shutdown."""
	logging.shutdown()
	sys.stderr.flush()
	os._exit(code)


def cmd_serve(args: argparse.Namespace, config: ProxyConfig) -> int:
	"""Run the proxy over stdio."""
	return asyncio.run(run_proxy(config, terminate=_hard_exit))


async def _list_tools(config: ProxyConfig) -> list[tuple[str, str]]:
	async with build_remote(config) as remote:
		operations = await remote.list_operations()
	rows = []
	for op in operations:
		summary = (op.description or "").strip().splitlines()
		rows.append((op.name, summary[0] if summary else ""))
	return rows


def cmd_list_tools(args: argparse.Namespace, config: ProxyConfig) -> int:
	"""Print the upstream tool catalog."""
	rows = asyncio.run(_list_tools(config))
	if not rows:
		print("Upstream reports no tools.")
		return 0
	width = max(len(name) for name, _ in rows)
	for name, summary in rows:
		print(f"{name:<{width}}  {summary}".rstrip())
	print(f"\n{len(rows)} tools")
	return 0


def cmd_validate_config(args: argparse.Namespace, config: ProxyConfig) -> int:
	"""Validate launch settings and print any issues."""
	issues = validate_config(config)
	if not issues:
		print("Config OK")
		return 0
	has_error = False
	for level, message in issues:
		print(f"{level.upper()}: {message}")
		if level == "error":
			has_error = True
	return 1 if has_error else 0


COMMANDS = {
	"serve": cmd_serve,
	"list-tools": cmd_list_tools,
	"validate-config": cmd_validate_config,
}


def main(argv: list[str] | None = None) -> int:
	if hasattr(sys.stderr, "reconfigure"):
		sys.stderr.reconfigure(line_buffering=True)  # type: ignore[union-attr]
	configure_logging(os.environ.get("RUBE_PROXY_NAME", DEFAULT_PROXY_NAME))

	parser = build_parser()
	args = parser.parse_args(argv)
	command = args.command or "serve"

	try:
		config = load_config(_config_path(args.config))
	except (FileNotFoundError, tomllib.TOMLDecodeError, ValueError) as e:
		logger.error("Invalid configuration: %s", e)
		return 1
	if args.log_level:
		config.log_level = args.log_level
	configure_logging(config.identity.name, config.log_level)

	handler = COMMANDS.get(command)
	if handler is None:
		logger.error("Unknown command: %s", command)
		return 1

	try:
		return handler(args, config)
	except KeyboardInterrupt:
		return 0
	except ProxyError as e:
		logger.error("Fatal proxy error", extra={"detail": e})
		return exit_code_for(e)
	except Exception as e:
		logger.exception("Fatal proxy error")
		return exit_code_for(e)


if __name__ == "__main__":
	sys.exit(main())
