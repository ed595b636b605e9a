"""
Logging Infrastructure and Shared Utilities.

This module provides the contextual logging pieces shared by the connection
registry and the underlying messaging clients.

Key Components:
    - MessageLogger: Logger adapter that merges structured context into records
    - ClientFormatter: Log formatter that renders that context as key=value pairs
    - generate_unique_id(): Helper for building unique MQTT client identifiers

Every log record emitted through a MessageLogger carries its base context
(for example ``component="registry"``) merged with per-call context such as
``handle``, ``client_id``, ``topic`` or ``operation``. Applications decide how
that context is rendered by attaching a ClientFormatter (or any other
formatter) to their handlers; the library itself never configures handlers.
"""
import uuid
import logging
from typing import Any


logger = logging.getLogger(__name__)


class ClientFormatter(logging.Formatter):
    """
    Formatter that renders a record's bridge context after the message.

    Records produced by MessageLogger carry their merged context as
    ``record.extra``; those fields are appended as key=value pairs. Records
    without that attribute fall back to the normal format string.

    Example:
        >>> formatter = ClientFormatter()
        >>> handler.setFormatter(formatter)
        >>> logger.info("Subscribed", extra={"handle": "0", "topic": "sensors/#"})
        # Output: "Subscribed handle=0 topic=sensors/#"
    """

    def format(self, record: logging.LogRecord) -> str:
        if hasattr(record, 'extra') and isinstance(record.extra, dict):
            extra_info = ' '.join(f"{k}={v}" for k, v in record.extra.items())
            return f"{record.getMessage()} {extra_info}"
        return super().format(record)


class MessageLogger(logging.LoggerAdapter):
    """
    Logger adapter carrying handle, client_id and topic context on every record.

    The merged context is attached to each record both as individual attributes
    (so ``%(handle)s`` works in format strings) and as a single ``extra`` dict
    consumed by ClientFormatter.

    Attributes:
        logger: The underlying Logger instance
        extra: Base context dictionary attached to all log records
        merge_extra: If True, merge call-time extras with base extras; if False, replace
        exclude_extras: List of field names to exclude from the extra context

    Example:
        >>> logger = MessageLogger(
        ...     logging.getLogger(__name__),
        ...     extra={"component": "registry"},
        ...     merge_extra=True
        ... )
        >>> logger.info("Connected", extra={"handle": "3", "client_id": "dash-1"})
    """

    def __init__(
        self,
        logger: logging.Logger,
        extra: dict[str, Any] | None = None,
        merge_extra: bool = False,
        exclude_extras: list[str] | None = None
    ):
        super().__init__(logger, extra or {})
        self.logger = logger
        self.extra = extra or {}
        self.merge_extra = merge_extra
        self.exclude_extras = exclude_extras or []

    def process(self, msg, kwargs):
        """
        Inject and manage extra context fields before the record is emitted.

        Args:
            msg: The log message string
            kwargs: Keyword arguments passed to the logging call

        Returns:
            Tuple of (message, modified_kwargs) ready for the underlying logger
        """
        if self.merge_extra and "extra" in kwargs:
            context = {**self.extra, **kwargs["extra"]}
        elif "extra" in kwargs:
            context = dict(kwargs["extra"])
        else:
            context = dict(self.extra)

        for key in self.exclude_extras:
            context.pop(key, None)

        # "extra" is not a reserved LogRecord attribute, so the whole context
        # can travel alongside the flattened fields.
        kwargs["extra"] = {**context, "extra": context}
        return msg, kwargs

    def bind(self, **context: Any) -> "MessageLogger":
        """Return a child adapter whose base context includes ``context``."""
        return MessageLogger(
            self.logger,
            extra={**self.extra, **context},
            merge_extra=self.merge_extra,
            exclude_extras=self.exclude_extras,
        )


def generate_unique_id(prefix: str | None = "mqtt_bridge") -> str:
    """
    Generate a globally unique identifier with an optional prefix.

    Brokers drop an existing session when a second client connects with the
    same identifier, so callers opening several connections from one process
    usually want distinct identifiers.

    Args:
        prefix: Optional prefix string. If None, returns raw UUID.

    Returns:
        Unique identifier string in format "{prefix}-{uuid}" or just "{uuid}"

    Example:
        >>> generate_unique_id("dashboard")
        "dashboard-a7f3c8d9-1234-5678-9abc-def012345678"
    """
    if prefix is None:
        return str(uuid.uuid4())
    return f"{prefix}-{uuid.uuid4()}"
