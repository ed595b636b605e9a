"""
Owned connection wrapper over a registry handle.
"""
import logging
from typing import TYPE_CHECKING, Any, Optional

from ..core.base import generate_unique_id
from ..core.exceptions import ConnectionClosedError
from ..core.models import ConnectionHandle

if TYPE_CHECKING:
    from .registry import ConnectionRegistry, DisconnectHandler, MessageHandler

logger = logging.getLogger(__name__)


class BridgeConnection:
    """
    One connection that owns its registry handle.

    The handle is released when the connection is closed, when the async
    context exits, or as soon as the session is lost; after that every
    operation raises ConnectionClosedError instead of reaching the registry.
    The caller's disconnect callback runs at most once, after the handle has
    been released.
    """

    def __init__(
        self,
        registry: "ConnectionRegistry",
        client_id: str,
        on_message: Optional["MessageHandler"] = None,
        on_disconnect: Optional["DisconnectHandler"] = None,
    ):
        self._registry = registry
        self.client_id = client_id
        self._on_message = on_message
        self._on_disconnect = on_disconnect
        self._handle: ConnectionHandle | None = None
        self._disconnect_reported = False

    @classmethod
    async def open(
        cls,
        registry: "ConnectionRegistry",
        host: str,
        port: int | str,
        client_id: str | None = None,
        on_message: Optional["MessageHandler"] = None,
        on_disconnect: Optional["DisconnectHandler"] = None,
    ) -> "BridgeConnection":
        """Connect through ``registry`` and return the connection once established."""
        connection = cls(
            registry,
            client_id or generate_unique_id(),
            on_message=on_message,
            on_disconnect=on_disconnect,
        )
        handle = await registry.connect(
            host,
            port,
            connection.client_id,
            connection._handle_disconnect,
            connection._handle_message,
        )
        if connection._disconnect_reported:
            # lost between CONNACK and this task resuming
            registry.close(handle)
        else:
            connection._handle = handle
        return connection

    @property
    def handle(self) -> ConnectionHandle | None:
        """The registry handle, or None once released."""
        return self._handle

    @property
    def is_connected(self) -> bool:
        return self._handle is not None

    async def subscribe(self, topic: str) -> None:
        await self._registry.subscribe(self._require_handle("subscribe", topic), topic)

    async def unsubscribe(self, topic: str) -> None:
        await self._registry.unsubscribe(self._require_handle("unsubscribe", topic), topic)

    def close(self) -> None:
        """Release the handle. Safe to call more than once."""
        handle, self._handle = self._handle, None
        if handle is not None:
            self._registry.close(handle)

    async def __aenter__(self) -> "BridgeConnection":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __repr__(self):
        return f"BridgeConnection(handle={self._handle!r}, client_id={self.client_id!r})"

    def _require_handle(self, operation: str, topic: str) -> ConnectionHandle:
        if self._handle is None:
            raise ConnectionClosedError(
                "Disconnected", topic=topic, operation=operation, client_id=self.client_id
            )
        return self._handle

    def _handle_message(self, topic: str, payload: str) -> None:
        if self._on_message is not None:
            self._on_message(topic, payload)

    def _handle_disconnect(self, reason: Any = None) -> None:
        self.close()
        if self._disconnect_reported:
            return
        self._disconnect_reported = True
        logger.debug(f"Connection {self.client_id} lost: {reason}")
        if self._on_disconnect is not None:
            self._on_disconnect(reason)


__all__ = [
    "BridgeConnection",
]
