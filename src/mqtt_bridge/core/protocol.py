"""
Messaging client capability consumed by the connection registry.

The registry never talks to a broker itself. It drives any object that
implements MessagingClient: a callback-driven client that reports the
outcome of each request through ``on_success``/``on_failure`` and delivers
inbound events through two settable handlers. Callbacks may be invoked from
any thread, including synchronously from inside the request call.
"""
from typing import TYPE_CHECKING, Any, Callable, Optional, Protocol, runtime_checkable

if TYPE_CHECKING:
    from .models import BridgeSettings

SuccessCallback = Callable[[], None]
FailureCallback = Callable[[Any], None]
MessageArrivedCallback = Callable[[str, str], None]
ConnectionLostCallback = Callable[[Any], None]


@runtime_checkable
class MessagingClient(Protocol):
    """
    Protocol for the underlying publish/subscribe client.

    Exactly one of ``on_success``/``on_failure`` is expected per request, but
    the registry tolerates duplicates and late calls.
    """
    on_message_arrived: Optional[MessageArrivedCallback]
    on_connection_lost: Optional[ConnectionLostCallback]

    def connect(
        self,
        *,
        on_success: SuccessCallback,
        on_failure: FailureCallback,
        reconnect: bool = False,
    ) -> None:
        ...

    def subscribe(
        self, topic: str, *, on_success: SuccessCallback, on_failure: FailureCallback
    ) -> None:
        ...

    def unsubscribe(
        self, topic: str, *, on_success: SuccessCallback, on_failure: FailureCallback
    ) -> None:
        ...

    def disconnect(self) -> None:
        ...


# (host, port, websocket_path, client_id, settings) -> client bound to that endpoint
ClientFactory = Callable[[str, int, str, str, "BridgeSettings"], MessagingClient]


__all__ = [
    "MessagingClient",
    "ClientFactory",
    "SuccessCallback",
    "FailureCallback",
    "MessageArrivedCallback",
    "ConnectionLostCallback",
]
