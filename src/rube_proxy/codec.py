"""Decoding of the single textual argument every mirrored tool accepts."""

from __future__ import annotations

import json
from typing import Any

from rube_proxy.errors import ArgumentParseError

ARGS_FIELD = "args_json"

# Input schema advertised for every mirrored tool. The upstream's real schema
# is rendered into the description instead.
ARGS_SCHEMA: dict[str, Any] = {
	"type": "object",
	"properties": {
		ARGS_FIELD: {
			"type": "string",
			"description": "JSON payload forwarded to the upstream tool. Leave blank to send `{}`.",
		},
	},
}


def decode_arguments(raw: str | None) -> dict[str, Any]:
	"""Decode an args_json payload into call arguments.

	None, "" and whitespace-only text mean "no arguments" and decode to {}.
	Anything else must be a JSON object.

	Raises:
		ArgumentParseError: If the text is not valid JSON or not an object.
	"""
	if raw is None:
		return {}
	if not isinstance(raw, str):
		raise ArgumentParseError(f"expected a string, got {type(raw).__name__}")
	trimmed = raw.strip()
	if not trimmed:
		return {}
	try:
		parsed = json.loads(trimmed)
	except json.JSONDecodeError as e:
		raise ArgumentParseError(str(e)) from e
	if not isinstance(parsed, dict):
		raise ArgumentParseError(f"expected a JSON object, got {type(parsed).__name__}")
	return parsed
