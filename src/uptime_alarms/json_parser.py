from __future__ import annotations

import json
from typing import Any

from uptime_alarms.models import JsonParsingConfig

_MISSING = object()
_MAX_AUTO_DEPTH = 3


def _is_scalar(value: Any) -> bool:
    return value is None or isinstance(value, (str, int, float, bool))


def _flatten(value: Any, prefix: str, depth: int, out: dict[str, Any]) -> None:
    if isinstance(value, dict):
        if depth >= _MAX_AUTO_DEPTH:
            return
        for key, item in value.items():
            path = f"{prefix}.{key}" if prefix else str(key)
            _flatten(item, path, depth + 1, out)
    elif isinstance(value, list):
        out[f"{prefix}.length" if prefix else "length"] = len(value)
    elif _is_scalar(value):
        out[prefix or "value"] = value


def _resolve_path(value: Any, path: str) -> Any:
    current = value
    for part in path.split("."):
        if isinstance(current, dict):
            if part not in current:
                return _MISSING
            current = current[part]
        elif isinstance(current, list) and part.isdigit():
            index = int(part)
            if index >= len(current):
                return _MISSING
            current = current[index]
        else:
            return _MISSING
    return current


def _coerce_body(body: Any, content_type: str | None) -> Any:
    if not isinstance(body, str):
        return body
    stripped = body.strip()
    looks_like_json = stripped.startswith(("{", "["))
    if content_type is not None and "json" not in content_type.lower() and not looks_like_json:
        return _MISSING
    try:
        return json.loads(stripped)
    except ValueError:
        return _MISSING


def parse_json_response(body: Any, content_type: str | None, config: JsonParsingConfig) -> dict[str, Any] | None:
    """Extract monitored values from a JSON response body.

    ``auto`` flattens scalar fields into dotted keys (arrays become their
    length); ``manual`` picks the dotted ``fields`` paths, skipping any that
    do not resolve. Returns ``None`` when disabled, when the body is not JSON
    or when nothing was extracted.
    """
    if not config.enabled:
        return None
    document = _coerce_body(body, content_type)
    if document is _MISSING:
        return None

    extracted: dict[str, Any] = {}
    if config.mode == "manual":
        for field in config.fields:
            value = _resolve_path(document, field)
            if value is not _MISSING:
                extracted[field] = value
    else:
        _flatten(document, "", 0, extracted)
    return extracted or None
