"""Description text for mirrored tools."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
	from rube_proxy.remote_endpoint import RemoteOperation

DEFAULT_SCHEMA_PREVIEW_LIMIT = 6000

TRUNCATION_MARKER = "\n... (truncated)"
NO_SCHEMA_TEXT = "Remote tool reports no input schema (arguments optional)."
SHIM_NOTE = "Proxy shim for the upstream tool. Provide JSON arguments in `args_json`. Leave blank for `{}`."
SCHEMA_HEADER = "Original input schema (truncated if large):"


def summarise_schema(schema: dict[str, Any] | None, limit: int = DEFAULT_SCHEMA_PREVIEW_LIMIT) -> str:
	"""Pretty-print an input schema, cut to `limit` characters."""
	if schema is None:
		return NO_SCHEMA_TEXT
	try:
		text = json.dumps(schema, indent=2, ensure_ascii=False)
	except (TypeError, ValueError) as e:
		return f"Unable to serialise remote schema: {e}"
	if len(text) <= limit:
		return text
	return text[:limit] + TRUNCATION_MARKER


def build_description(operation: RemoteOperation, limit: int = DEFAULT_SCHEMA_PREVIEW_LIMIT) -> str:
	lines: list[str] = []
	if operation.title and operation.title != operation.name:
		lines.append(f"Remote title: {operation.title}")
	if operation.description and operation.description.strip():
		lines.append(operation.description.strip())
	lines.append("---")
	lines.append(SHIM_NOTE)
	lines.append(SCHEMA_HEADER)
	lines.append(summarise_schema(operation.input_schema, limit))
	return "\n".join(lines)
