from typing import Any, Optional


class BridgeException(Exception):
    """
    Base for all bridge errors. Carries:
      - detail: failure description, passed through from the messaging client when available
      - handle: the connection handle the request referred to
      - topic: the topic filter of a subscribe/unsubscribe request
      - operation: which request failed ('connect', 'subscribe', 'unsubscribe')
      - client_id: the MQTT client identifier of the session
    """
    default_operation: Optional[str] = None

    def __init__(
        self,
        detail: Optional[Any] = None,
        *,
        handle: Optional[Any] = None,
        topic: Optional[str] = None,
        operation: Optional[str] = None,
        client_id: Optional[str] = None,
    ):
        # pick the explicit operation or fall back to subclass default
        self.operation = operation if operation is not None else self.default_operation
        self.detail = detail
        self.handle = handle
        self.topic = topic
        self.client_id = client_id

        parts = []
        if self.operation:
            parts.append(f"operation={self.operation!r}")
        if handle is not None:
            parts.append(f"handle={str(handle)!r}")
        if topic is not None:
            parts.append(f"topic={topic!r}")
        if client_id:
            parts.append(f"client_id={client_id!r}")

        super().__init__(f"{detail!r} {self.__class__.__name__}: " + ", ".join(parts))

    def __str__(self):
        return self.args[0]

    def __repr__(self):
        return (
            f"{self.__class__.__name__}("
            f"detail={self.detail!r}, "
            f"handle={self.handle!r}, "
            f"topic={self.topic!r}, "
            f"operation={self.operation!r}, "
            f"client_id={self.client_id!r}"
            f")"
        )


class ConnectFailure(BridgeException):
    """The connection handshake failed, or the handle was closed before it completed."""

    default_operation = "connect"


class OperationFailure(BridgeException):
    """A subscribe or unsubscribe request was refused or acknowledged as failed."""


class UnknownHandle(BridgeException, KeyError):
    """The handle is not registered: never allocated, already closed, or its connect failed."""


class ConnectionClosedError(BridgeException):
    """A BridgeConnection was used after it was closed or lost its session."""


__all__ = [
    "BridgeException",
    "ConnectFailure",
    "OperationFailure",
    "UnknownHandle",
    "ConnectionClosedError",
]
