"""Diagnostic logging to stderr.

stdout carries the MCP protocol, so nothing here may ever write to it.
Lines look like `[<proxy-name>] <LEVEL>: <message>`; pass
`extra={"detail": obj}` to append a rendering of obj.
"""

from __future__ import annotations

import logging
import pprint
import sys
from typing import TextIO


class ProxyFormatter(logging.Formatter):
	def __init__(self, identity_name: str) -> None:
		super().__init__(fmt=f"[{identity_name}] %(levelname)s: %(message)s")

	def format(self, record: logging.LogRecord) -> str:
		text = super().format(record)
		detail = getattr(record, "detail", None)
		if detail is None:
			return text
		first, sep, rest = text.partition("\n")
		rendered = pprint.pformat(detail, depth=4) if not isinstance(detail, BaseException) else repr(detail)
		return f"{first} {rendered}{sep}{rest}"


def configure_logging(identity_name: str, level: str | int = logging.INFO, stream: TextIO | None = None) -> None:
	"""Route all logging to stderr with the proxy's line format."""
	handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
	handler.setFormatter(ProxyFormatter(identity_name))
	logging.basicConfig(level=level, handlers=[handler], force=True)
