"""Classification of streaming transcription events."""

from __future__ import annotations

import json
import logging
from typing import Any, Iterable, Optional

from ..core.events import StreamEvent

logger = logging.getLogger(__name__)

DEFAULT_ERROR_MESSAGE = "Unknown streaming error"


def extract_string(obj: Any, keys: Iterable[str], depth: int = 1) -> Optional[str]:
    """
    First non-empty string value found under `keys`.

    Looks at `obj` itself, then (up to `depth` levels down) inside dicts and
    lists of dicts stored under those keys, then inside any other nested value.
    """
    keys = tuple(keys)
    if not isinstance(obj, dict):
        return None

    for key in keys:
        value = obj.get(key)
        if isinstance(value, str) and value:
            return value
    if depth <= 0:
        return None

    for key in keys:
        found = _search_nested(obj.get(key), keys, depth - 1)
        if found is not None:
            return found
    for value in obj.values():
        found = _search_nested(value, keys, depth - 1)
        if found is not None:
            return found
    return None


def _search_nested(value: Any, keys: tuple, depth: int) -> Optional[str]:
    if isinstance(value, dict):
        return extract_string(value, keys, depth)
    if isinstance(value, list):
        for item in value:
            found = extract_string(item, keys, depth) if isinstance(item, dict) else None
            if found is not None:
                return found
    return None


class StreamEventParser:
    """
    Maps one JSON event to Delta / Done / Error / Ignore.

    The `type` (or `event`) field is authoritative. Events without a
    recognizable type fall back to sniffing `delta`, `text` and `transcript`
    keys; that path is best-effort.
    """

    def parse(self, payload: str) -> StreamEvent:
        try:
            obj = json.loads(payload)
        except (TypeError, ValueError):
            logger.debug(f"Ignoring non-JSON stream line: {payload[:80]!r}")
            return StreamEvent.ignore()
        return self.classify(obj)

    def classify(self, obj: Any) -> StreamEvent:
        if not isinstance(obj, dict):
            return StreamEvent.ignore()

        event_type = obj.get("type")
        if not isinstance(event_type, str):
            event_type = obj.get("event") if isinstance(obj.get("event"), str) else ""

        if event_type == "error":
            return StreamEvent.error(extract_string(obj, ("message", "error")) or DEFAULT_ERROR_MESSAGE)

        error = obj.get("error")
        if isinstance(error, dict):
            message = extract_string(error, ("message",), depth=0)
            if message:
                return StreamEvent.error(message)
        elif isinstance(error, str) and error.strip():
            return StreamEvent.error(error)

        if "delta" in event_type:
            return StreamEvent.delta(extract_string(obj, ("delta", "text")) or "")
        if "done" in event_type or "completed" in event_type:
            return StreamEvent.done(extract_string(obj, ("text", "transcript")) or "")

        delta = extract_string(obj, ("delta",))
        if delta:
            return StreamEvent.delta(delta)
        text = extract_string(obj, ("text", "transcript"))
        if text:
            return StreamEvent.done(text)
        return StreamEvent.ignore()
