"""Structural JSON subset matching for telemetry payloads.

Pattern primitives are compared as strings:

- ``"*"`` matches any primitive
- ``""`` matches only the empty string
- ``"~frag"`` matches when the candidate contains ``frag``
- anything else must be equal after stringification

Object patterns are subset matches (extra candidate keys are fine). Array
patterns are existential: each pattern element must match some candidate
element. A candidate string holding JSON text is parsed and matched again
when the pattern is an object or array.
"""

from __future__ import annotations

import json
import logging
import math
from pathlib import Path
from typing import Any

logger = logging.getLogger("mobile-harness.matching")

WILDCARD = "*"
SUBSTRING_PREFIX = "~"

_UNPARSABLE = object()


def _is_primitive(value: Any) -> bool:
    return not isinstance(value, (dict, list))


def _stringify(value: Any) -> str:
    """Render a primitive the way it reads in JSON text (``null``, ``true``, ``1``)."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and math.isfinite(value) and value.is_integer():
        return str(int(value))
    return str(value)


def _try_parse(text: str) -> Any:
    try:
        parsed = json.loads(text)
    except (TypeError, ValueError, RecursionError):
        return _UNPARSABLE
    # JSON ``null`` carries nothing to descend into
    return _UNPARSABLE if parsed is None else parsed


def _match_primitive(candidate: Any, pattern: Any) -> bool:
    cv = _stringify(candidate)
    pv = _stringify(pattern)
    if pv == WILDCARD:
        return True
    if pv == "":
        return cv == ""
    if pv.startswith(SUBSTRING_PREFIX):
        return pv[len(SUBSTRING_PREFIX):] in cv
    return cv == pv


def _matches(candidate: Any, pattern: Any) -> bool:
    if _is_primitive(candidate) and _is_primitive(pattern):
        return _match_primitive(candidate, pattern)

    if isinstance(candidate, str):
        parsed = _try_parse(candidate)
        if parsed is _UNPARSABLE:
            return False
        return _matches(parsed, pattern)

    if isinstance(pattern, dict):
        if not pattern:
            # The empty object constrains nothing, for objects and arrays alike
            return isinstance(candidate, (dict, list))
        if not isinstance(candidate, dict):
            return False
        return all(
            key in candidate and _matches(candidate[key], sub_pattern)
            for key, sub_pattern in pattern.items()
        )

    if isinstance(pattern, list) and isinstance(candidate, list):
        return all(
            any(_matches(item, sub_pattern) for item in candidate)
            for sub_pattern in pattern
        )

    return False


def matches(candidate: Any, pattern: Any) -> bool:
    """Return True if *pattern* is structurally contained in *candidate*.

    Pure and total: unexpected shapes simply do not match, and neither does
    input nested too deeply to walk.
    """
    try:
        return _matches(candidate, pattern)
    except RecursionError:
        logger.debug("Candidate nested too deeply to match")
        return False


def _find(root: Any, key: str, value: Any) -> bool:
    if isinstance(root, list):
        return any(_find(item, key, value) for item in root)
    if isinstance(root, dict):
        for k, v in root.items():
            if k == key and _matches(v, value):
                return True
            if _find(v, key, value):
                return True
    return False


def find_key_value_in_tree(root: Any, key: str, value: Any) -> bool:
    """Return True if any node below *root* has property *key* matching *value*.

    Unlike :func:`matches`, the key may sit at any depth, inside objects or
    array elements.
    """
    try:
        return _find(root, key, value)
    except RecursionError:
        logger.debug("Tree nested too deeply to search for '%s'", key)
        return False


def contains_all(root: Any, search: dict[str, Any]) -> bool:
    """Every ``(key, value)`` of *search* is found somewhere in *root*."""
    return all(find_key_value_in_tree(root, k, v) for k, v in search.items())


def extract_event_data(event_json: str) -> Any:
    """Unwrap ``body.event.data`` from a serialized request envelope.

    Raises ValueError when any layer is missing or not valid JSON.
    """
    envelope = _try_parse(event_json)
    if not isinstance(envelope, dict):
        raise ValueError("event envelope is not a JSON object")
    body_text = envelope.get("body")
    if not isinstance(body_text, str):
        raise ValueError("event envelope has no string body")
    body = _try_parse(body_text)
    if not isinstance(body, dict):
        raise ValueError("event body is not a JSON object")
    event = body.get("event")
    if not isinstance(event, dict) or "data" not in event:
        raise ValueError("event body has no event.data")
    return event["data"]


def parse_search(search_json: str) -> dict[str, Any] | None:
    """Parse a search pattern. None unless it is a JSON object."""
    search = _try_parse(search_json)
    return search if isinstance(search, dict) else None


def contains_json_data(event_json: str, search_json: str) -> bool:
    """Check a serialized event envelope against a JSON search object.

    Every top-level key of the search object must be found, at any depth,
    inside ``body.event.data`` of the envelope. Unparsable input yields False.
    """
    try:
        data = extract_event_data(event_json)
    except ValueError:
        return False
    search = parse_search(search_json)
    if search is None:
        return False
    return contains_all(data, search)


def load_pattern(pattern_or_path: str | None) -> str | None:
    """Resolve a pattern argument that may name a file.

    An existing file's contents are returned; any other string is treated as
    literal JSON text.
    """
    if pattern_or_path is None:
        return None
    try:
        path = Path(pattern_or_path)
        if path.is_file():
            logger.debug("Reading event pattern from %s", path)
            return path.read_text(encoding="utf-8")
    except (OSError, ValueError):
        # Not a usable path (too long, embedded NUL, ...), so it is literal text
        pass
    return pattern_or_path
