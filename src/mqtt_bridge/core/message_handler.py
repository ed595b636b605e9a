"""
Message handler adapters for text payloads delivered by the registry.
"""
from typing import Any, Callable, Optional
import logging
import orjson

logger = logging.getLogger(__name__)


class JsonMessageHandler:
    """
    Decode text payloads as JSON before handing them to ``process``.

    Instances are plain ``(topic, payload)`` callables, so they can be passed
    anywhere the registry accepts a message handler.
    """
    def __init__(
        self,
        process: Callable[[str, Any], None],
        on_invalid: Optional[Callable[[str, str], None]] = None,
    ):
        self._process = process
        self._on_invalid = on_invalid

    def __call__(self, topic: str, payload: str) -> None:
        try:
            decoded = orjson.loads(payload)
        except orjson.JSONDecodeError:
            logger.warning(
                f"Failed to decode JSON payload from topic {topic}: {self._truncate_payload(payload)}"
            )
            if self._on_invalid is not None:
                self._on_invalid(topic, payload)
            return
        self._process(topic, decoded)

    def _truncate_payload(self, payload: Any, output_length: int = 50) -> str:
        if not isinstance(payload, str):
            try:
                payload = str(payload)
            except Exception:
                return "<unreadable payload>"

        if len(payload) > output_length:
            return payload[:output_length] + "..."
        return payload


__all__ = [
    "JsonMessageHandler",
]
