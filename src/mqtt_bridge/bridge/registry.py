"""
Connection Registry and Operation Bridge.

This module maps handle-based requests (connect, subscribe, unsubscribe,
close) onto a callback-driven messaging client and turns each request into an
awaitable that settles exactly once.

Key Features:
    - Monotonic, never reused connection handles
    - Registration at connect time, so inbound events are routed during the handshake
    - Exactly-once settlement of every pending operation, whatever order
      (or how many times) the client reports success and failure
    - Callbacks from foreign threads are marshalled onto the owning event loop
    - Best-effort close that never raises and releases the handle immediately

Classes:
    ConnectionRegistry: Owns the handle map and bridges operations to futures

Threading Model:
    All public methods must be called from the event loop that owns the
    registry. Messaging clients may invoke their callbacks from any thread
    (paho uses its network thread); each callback is forwarded with
    ``loop.call_soon_threadsafe``, so the handle map and every future are only
    touched on the owning loop and no lock is needed.

Example:
    >>> import asyncio
    >>> from mqtt_bridge import ConnectionRegistry
    >>>
    >>> async def main():
    ...     registry = ConnectionRegistry()
    ...     handle = await registry.connect(
    ...         "broker.example", 8083, "client-A",
    ...         on_disconnect=lambda reason: print("lost", reason),
    ...         on_message=lambda topic, payload: print(topic, payload),
    ...     )
    ...     await registry.subscribe(handle, "sensors/#")
    ...     await asyncio.sleep(10)
    ...     registry.close(handle)
    >>>
    >>> asyncio.run(main())
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Optional

from ..core.base import MessageLogger
from ..core.models import BridgeSettings, ConnectionHandle, ConnectionState
from ..core.exceptions import BridgeException, ConnectFailure, OperationFailure, UnknownHandle
from ..core.protocol import ClientFactory, MessagingClient
from ..paho_client import PahoWebSocketClient

if TYPE_CHECKING:
    from .connection import BridgeConnection

logger = logging.getLogger(__name__)

DisconnectHandler = Callable[[Any], None]
MessageHandler = Callable[[str, str], None]


@dataclass(eq=False)
class ConnectionEntry:
    """Registry record for one handle: its client, handlers and in-flight operations."""
    handle: ConnectionHandle
    client: MessagingClient
    client_id: str
    on_disconnect: Optional[DisconnectHandler]
    on_message: Optional[MessageHandler]
    state: ConnectionState = ConnectionState.CONNECTING
    # future -> (operation, topic)
    pending: dict[asyncio.Future, tuple[str, Optional[str]]] = field(default_factory=dict)


def _resolve(future: asyncio.Future, value: Any) -> bool:
    if future.done():
        return False
    future.set_result(value)
    return True


def _reject(future: asyncio.Future, exc: BaseException) -> bool:
    if future.done():
        return False
    future.set_exception(exc)
    return True


def _detail(detail: Any) -> Any:
    return str(detail) if isinstance(detail, BaseException) else detail


def _parse_port(port: Any) -> int:
    if isinstance(port, bool):
        raise ValueError(f"Invalid port: {port!r}")
    if isinstance(port, float):
        if not port.is_integer():
            raise ValueError(f"Invalid port: {port!r}")
        return int(port)
    try:
        return int(port)
    except TypeError:
        raise ValueError(f"Invalid port: {port!r}") from None


class ConnectionRegistry:
    """
    Handle registry and request bridge over a callback-driven messaging client.

    Handles are allocated from a per-registry counter starting at 0 and are
    never reused, even when the connect they were issued for fails.
    """

    def __init__(
        self,
        client_factory: ClientFactory | None = None,
        settings: BridgeSettings | None = None,
        logger: MessageLogger | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ):
        """
        Initialize an empty registry.

        Args:
            client_factory: Builds the messaging client for each connection
                            (default: PahoWebSocketClient)
            settings: Transport settings passed to every client (default: BridgeSettings())
            logger: Custom logger adapter (creates default if None)
            loop: Owning event loop (default: the running loop at first use)
        """
        self._client_factory = client_factory or PahoWebSocketClient
        self.settings = settings or BridgeSettings()
        self._loop = loop
        self._entries: dict[ConnectionHandle, ConnectionEntry] = {}
        self._next_handle = 0

        self.logger = logger or MessageLogger(
            logging.getLogger(__name__),
            extra={"component": "registry"},
            merge_extra=True
        )

    # Public API

    async def connect(
        self,
        host: str,
        port: int | str,
        client_id: str,
        on_disconnect: Optional[DisconnectHandler],
        on_message: Optional[MessageHandler],
    ) -> ConnectionHandle:
        """
        Open a connection and return its handle once the broker accepts it.

        The handle is allocated, the client constructed and both handlers
        installed before the handshake starts. Automatic reconnection is
        always disabled; retry policy belongs to the caller.

        Args:
            host: Broker hostname
            port: Broker WebSocket port (numeric, or a numeric string)
            client_id: MQTT client identifier for the session
            on_disconnect: Called with the reason when the session drops unexpectedly
            on_message: Called with (topic, payload_text) for each inbound message

        Returns:
            The handle of the new connection

        Raises:
            ValueError: If port is not an integer or a decimal string
            ConnectFailure: If the handshake fails or the handle is closed first
        """
        loop = self._owning_loop()
        port = _parse_port(port)
        handle = self._allocate_handle()
        log = self.logger.bind(handle=str(handle), client_id=client_id)

        log.debug(f"Connecting to {host}:{port}{self.settings.websocket_path}")

        try:
            client = self._client_factory(
                host, port, self.settings.websocket_path, client_id, self.settings
            )
        except Exception as e:
            log.warning(f"Failed to create client for {host}:{port}: {e}")
            raise ConnectFailure(str(e), handle=handle, client_id=client_id) from e

        entry = ConnectionEntry(
            handle=handle,
            client=client,
            client_id=client_id,
            on_disconnect=on_disconnect,
            on_message=on_message,
        )
        client.on_message_arrived = self._threadsafe(self._deliver_message, handle)
        client.on_connection_lost = self._threadsafe(self._deliver_connection_lost, handle)
        self._entries[handle] = entry

        future = loop.create_future()
        entry.pending[future] = ("connect", None)
        try:
            client.connect(
                on_success=self._threadsafe(self._connect_succeeded, entry, future),
                on_failure=self._threadsafe(self._connect_failed, entry, future),
                reconnect=False,
            )
        except Exception as e:
            self._connect_failed(entry, future, e)

        try:
            return await future
        finally:
            entry.pending.pop(future, None)

    async def subscribe(self, handle: ConnectionHandle | int | str, topic: str) -> None:
        """
        Subscribe the connection to a topic filter.

        Raises:
            UnknownHandle: If the handle is not registered
            OperationFailure: If the client refuses or the broker rejects the subscription
        """
        await self._acknowledged("subscribe", handle, topic)

    async def unsubscribe(self, handle: ConnectionHandle | int | str, topic: str) -> None:
        """
        Remove a topic filter subscription from the connection.

        Raises:
            UnknownHandle: If the handle is not registered
            OperationFailure: If the client refuses or the broker rejects the request
        """
        await self._acknowledged("unsubscribe", handle, topic)

    def subscribe_with_callback(
        self,
        handle: ConnectionHandle | int | str,
        topic: str,
        on_success: Callable[[bool], None],
    ) -> asyncio.Task:
        """Callback form of subscribe(): ``on_success`` receives True or False exactly once."""
        return self._with_callback(self.subscribe(handle, topic), on_success, "subscribe")

    def unsubscribe_with_callback(
        self,
        handle: ConnectionHandle | int | str,
        topic: str,
        on_success: Callable[[bool], None],
    ) -> asyncio.Task:
        """
        Callback form of unsubscribe().

        ``on_success`` is invoked exactly once, with True when the broker
        acknowledged the request and False on any failure, including an
        unknown handle. The returned task resolves to the same flag.
        """
        return self._with_callback(self.unsubscribe(handle, topic), on_success, "unsubscribe")

    def close(self, handle: ConnectionHandle | int | str) -> None:
        """
        Release a handle and disconnect its client. Never raises.

        The handle is removed before the disconnect is attempted, so it is
        invalid even if the client errors. Operations still in flight on the
        handle fail with "connection closed"; acknowledgements that arrive
        later are ignored. Closing an unknown or already closed handle is a no-op.
        """
        try:
            key = ConnectionHandle.parse(handle)
        except ValueError:
            self.logger.debug(f"Ignoring close of invalid handle {handle!r}")
            return

        entry = self._entries.pop(key, None)
        if entry is None:
            self.logger.debug("Ignoring close of unknown handle", extra={"handle": str(key)})
            return

        log = self.logger.bind(handle=str(key), client_id=entry.client_id)
        entry.state = ConnectionState.CLOSED

        pending, entry.pending = entry.pending, {}
        for future, (operation, topic) in pending.items():
            exc_class = ConnectFailure if operation == "connect" else OperationFailure
            _reject(
                future,
                exc_class(
                    "connection closed",
                    handle=key,
                    topic=topic,
                    operation=operation,
                    client_id=entry.client_id,
                ),
            )

        try:
            entry.client.disconnect()
        except Exception as e:
            log.debug(f"Ignoring error while disconnecting: {e}")

        log.info("Connection closed")

    def close_all(self) -> None:
        """Close every registered handle."""
        for handle in list(self._entries):
            self.close(handle)

    async def open(
        self,
        host: str,
        port: int | str,
        client_id: str | None = None,
        on_message: Optional[MessageHandler] = None,
        on_disconnect: Optional[DisconnectHandler] = None,
    ) -> "BridgeConnection":
        """Connect and wrap the handle in a BridgeConnection that owns it."""
        from .connection import BridgeConnection

        return await BridgeConnection.open(
            self,
            host,
            port,
            client_id=client_id,
            on_message=on_message,
            on_disconnect=on_disconnect,
        )

    def state(self, handle: ConnectionHandle | int | str) -> ConnectionState:
        """Return the state of a registered handle, or raise UnknownHandle."""
        return self._lookup(handle, operation="state").state

    @property
    def handles(self) -> tuple[ConnectionHandle, ...]:
        """Registered handles in allocation order."""
        return tuple(sorted(self._entries, key=lambda h: h.value))

    def __contains__(self, handle: object) -> bool:
        try:
            return ConnectionHandle.parse(handle) in self._entries
        except ValueError:
            return False

    def __len__(self) -> int:
        return len(self._entries)

    # Internals

    def _owning_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def _allocate_handle(self) -> ConnectionHandle:
        handle = ConnectionHandle(value=self._next_handle)
        self._next_handle += 1
        return handle

    def _lookup(self, handle: Any, operation: str, topic: str | None = None) -> ConnectionEntry:
        try:
            key = ConnectionHandle.parse(handle)
        except ValueError:
            raise UnknownHandle(
                "invalid handle", handle=handle, topic=topic, operation=operation
            ) from None
        entry = self._entries.get(key)
        if entry is None:
            raise UnknownHandle(
                "handle is not registered", handle=key, topic=topic, operation=operation
            )
        return entry

    def _threadsafe(self, callback: Callable[..., None], *bound: Any) -> Callable[..., None]:
        """
        Wrap ``callback`` so that calling the wrapper from any thread runs
        ``callback(*bound, *args)`` on the owning loop.
        """
        loop = self._owning_loop()

        def deliver(*args: Any) -> None:
            try:
                loop.call_soon_threadsafe(callback, *bound, *args)
            except RuntimeError:
                # the owning loop has been closed
                logger.debug(f"Dropping {callback.__name__} callback: event loop is closed")

        return deliver

    async def _acknowledged(self, operation: str, handle: Any, topic: str) -> None:
        entry = self._lookup(handle, operation=operation, topic=topic)
        log = self.logger.bind(handle=str(entry.handle), client_id=entry.client_id)
        future = self._owning_loop().create_future()
        entry.pending[future] = (operation, topic)

        log.debug(f"Requesting {operation}", extra={"topic": topic})
        request = getattr(entry.client, operation)
        try:
            request(
                topic,
                on_success=self._threadsafe(self._operation_succeeded, entry, future, operation, topic),
                on_failure=self._threadsafe(self._operation_failed, entry, future, operation, topic),
            )
        except Exception as e:
            self._operation_failed(entry, future, operation, topic, e)

        try:
            await future
        finally:
            entry.pending.pop(future, None)

    def _with_callback(
        self, operation, on_success: Callable[[bool], None], name: str
    ) -> asyncio.Task:
        async def run() -> bool:
            succeeded = False
            try:
                await operation
                succeeded = True
            except BridgeException as e:
                self.logger.debug(f"{name} reported to callback as failed: {e}")
            finally:
                try:
                    on_success(succeeded)
                except Exception as e:
                    self.logger.error(f"Error in {name} callback: {e}", exc_info=True)
            return succeeded

        return self._owning_loop().create_task(run())

    # Settlement, always on the owning loop

    def _connect_succeeded(self, entry: ConnectionEntry, future: asyncio.Future) -> None:
        log = self.logger.bind(handle=str(entry.handle), client_id=entry.client_id)
        if entry.state is not ConnectionState.CONNECTING:
            log.debug(f"Ignoring connect success in state {entry.state}")
            return

        entry.state = ConnectionState.CONNECTED
        if _resolve(future, entry.handle):
            log.info("Connected")
        else:
            # the awaiting caller went away, so nobody owns this handle
            log.warning("Connect completed after the caller stopped waiting; closing")
            self.close(entry.handle)

    def _connect_failed(self, entry: ConnectionEntry, future: asyncio.Future, detail: Any) -> None:
        log = self.logger.bind(handle=str(entry.handle), client_id=entry.client_id)
        if entry.state is not ConnectionState.CONNECTING:
            log.debug(f"Ignoring connect failure in state {entry.state}: {detail}")
            return

        entry.state = ConnectionState.FAILED
        self._entries.pop(entry.handle, None)
        log.warning(f"Connect failed: {_detail(detail)}")

        try:
            entry.client.disconnect()
        except Exception as e:
            log.debug(f"Ignoring error while discarding client: {e}")

        exc = ConnectFailure(_detail(detail), handle=entry.handle, client_id=entry.client_id)
        if isinstance(detail, BaseException):
            exc.__cause__ = detail
        _reject(future, exc)

    def _operation_succeeded(
        self, entry: ConnectionEntry, future: asyncio.Future, operation: str, topic: str
    ) -> None:
        if not _resolve(future, None):
            self.logger.debug(
                f"Ignoring late {operation} acknowledgement",
                extra={"handle": str(entry.handle), "topic": topic},
            )
            return
        self.logger.debug(
            f"{operation} acknowledged",
            extra={"handle": str(entry.handle), "client_id": entry.client_id, "topic": topic},
        )

    def _operation_failed(
        self,
        entry: ConnectionEntry,
        future: asyncio.Future,
        operation: str,
        topic: str,
        detail: Any,
    ) -> None:
        exc = OperationFailure(
            _detail(detail),
            handle=entry.handle,
            topic=topic,
            operation=operation,
            client_id=entry.client_id,
        )
        if isinstance(detail, BaseException):
            exc.__cause__ = detail
        if _reject(future, exc):
            self.logger.warning(
                f"{operation} failed: {_detail(detail)}",
                extra={"handle": str(entry.handle), "client_id": entry.client_id, "topic": topic},
            )

    # Inbound events, always on the owning loop

    def _deliver_message(self, handle: ConnectionHandle, topic: str, payload: str) -> None:
        entry = self._entries.get(handle)
        if entry is None:
            self.logger.debug(
                "Dropping message for unregistered handle",
                extra={"handle": str(handle), "topic": topic},
            )
            return
        if entry.on_message is None:
            return
        try:
            entry.on_message(topic, payload)
        except Exception as e:
            self.logger.error(
                f"Error in message handler: {e}",
                extra={"handle": str(handle), "topic": topic},
                exc_info=True,
            )

    def _deliver_connection_lost(self, handle: ConnectionHandle, reason: Any = None) -> None:
        entry = self._entries.get(handle)
        if entry is None:
            self.logger.debug(
                "Dropping connection-lost event for unregistered handle",
                extra={"handle": str(handle)},
            )
            return

        self.logger.warning(
            f"Connection lost: {reason}",
            extra={"handle": str(handle), "client_id": entry.client_id},
        )
        if entry.on_disconnect is None:
            return
        try:
            entry.on_disconnect(reason)
        except Exception as e:
            self.logger.error(
                f"Error in disconnect handler: {e}",
                extra={"handle": str(handle)},
                exc_info=True,
            )


__all__ = [
    "ConnectionRegistry",
    "ConnectionEntry",
]
