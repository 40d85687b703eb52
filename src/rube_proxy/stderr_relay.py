"""Labelled pass-through of the upstream process's stderr."""

from __future__ import annotations

import os
import sys
import threading
from typing import TextIO

UPSTREAM_STDERR_PREFIX = "[mcp-remote] "


class StderrRelay:
	"""OS pipe whose lines are copied to `target`, each with a prefix.

	`writer` is a real file, so it can be handed to a subprocess as its
	stderr. The copying thread stops once every holder of the write end has
	closed it.
	"""

	def __init__(self, prefix: str = UPSTREAM_STDERR_PREFIX, target: TextIO | None = None) -> None:
		self.prefix = prefix
		self._target = target if target is not None else sys.stderr
		read_fd, write_fd = os.pipe()
		self._reader = os.fdopen(read_fd, "r", encoding="utf-8", errors="replace")
		self.writer: TextIO = os.fdopen(write_fd, "w", encoding="utf-8")
		self._thread = threading.Thread(target=self._pump, name="upstream-stderr", daemon=True)
		self._thread.start()

	def _pump(self) -> None:
		with self._reader:
			for line in self._reader:
				self._target.write(f"{self.prefix}{line.rstrip(chr(10))}\n")
				self._target.flush()

	def close(self) -> None:
		if not self.writer.closed:
			self.writer.close()

	def join(self, timeout: float | None = None) -> None:
		self._thread.join(timeout)
