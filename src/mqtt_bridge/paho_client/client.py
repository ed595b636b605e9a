"""
MQTT-over-WebSocket messaging client using paho-mqtt.

Wraps paho's threaded interface in the callback-driven MessagingClient shape
the registry consumes: every request reports its outcome exactly once through
``on_success``/``on_failure``, and inbound messages and connection loss are
forwarded to two settable handlers.
"""
import threading
import logging
from typing import Any
import paho.mqtt.client as mqtt

from ..core.base import MessageLogger, generate_unique_id
from ..core.models import BridgeSettings
from ..core.protocol import (
    SuccessCallback,
    FailureCallback,
    MessageArrivedCallback,
    ConnectionLostCallback,
)

logger = logging.getLogger(__name__)

_SUCCESS = None
_MISSING = object()


class PahoWebSocketClient:
    """
    paho-mqtt client bound to one broker WebSocket endpoint.

    All paho callbacks run in paho's network thread, so every callback handed
    to this class is invoked from that thread, except for requests refused
    up front, which fail synchronously in the caller's thread.

    The constructor signature matches ``ClientFactory``, so the class itself
    can be passed to ``ConnectionRegistry(client_factory=...)``.
    """

    def __init__(
        self,
        host: str,
        port: int,
        path: str = "/mqtt",
        client_id: str | None = None,
        settings: BridgeSettings | None = None,
        logger: logging.LoggerAdapter | None = None,
    ):
        """
        Initialize the client. No network activity happens until connect().

        Args:
            host: Broker hostname
            port: Broker WebSocket port
            path: WebSocket endpoint path on the broker
            client_id: MQTT client identifier (auto-generated if None)
            settings: Keepalive and session settings (defaults if None)
            logger: Custom logger adapter (creates default if None)
        """
        self.host = host
        self.port = int(port)
        self.path = path
        self.client_id = client_id or generate_unique_id()
        self._settings = settings or BridgeSettings(websocket_path=path)

        self.on_message_arrived: MessageArrivedCallback | None = None
        self.on_connection_lost: ConnectionLostCallback | None = None

        self._client: mqtt.Client | None = None
        self._reconnect = False
        self._established = False
        self._closing = False
        self._connect_callbacks: tuple[SuccessCallback, FailureCallback] | None = None
        # mid -> (on_success, on_failure) for requests awaiting SUBACK/UNSUBACK
        self._pending_acks: dict[int, tuple[SuccessCallback, FailureCallback]] = {}
        # acks that beat the caller to recording their mid
        self._early_acks: dict[int, Any] = {}
        self._lock = threading.Lock()

        self.logger = logger or MessageLogger(
            logging.getLogger(__name__),
            extra={"client_id": self.client_id},
            merge_extra=True
        )

    def connect(
        self,
        *,
        on_success: SuccessCallback,
        on_failure: FailureCallback,
        reconnect: bool = False,
    ) -> None:
        """
        Start the WebSocket handshake and MQTT CONNECT without blocking.

        Args:
            on_success: Called once the broker accepts the connection
            on_failure: Called with a failure description if it does not
            reconnect: Let paho reconnect automatically after a drop
        """
        if self._client is not None:
            raise RuntimeError("connect() may only be called once per client")

        self._reconnect = reconnect
        self._connect_callbacks = (on_success, on_failure)

        client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=self.client_id,
            clean_session=self._settings.clean_session,
            protocol=mqtt.MQTTv311,
            transport="websockets",
            reconnect_on_failure=reconnect,
        )
        client.ws_set_options(path=self.path)

        client.on_connect = self._on_connect
        client.on_connect_fail = self._on_connect_fail
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message
        client.on_subscribe = self._on_subscribe
        client.on_unsubscribe = self._on_unsubscribe
        self._client = client

        self.logger.debug(f"Connecting to ws://{self.host}:{self.port}{self.path}")

        # connect_async defers all socket work to the network thread
        client.connect_async(self.host, self.port, keepalive=self._settings.keepalive)
        client.loop_start()

    def subscribe(
        self, topic: str, *, on_success: SuccessCallback, on_failure: FailureCallback
    ) -> None:
        """Send SUBSCRIBE; the outcome follows the broker's SUBACK."""
        self._request(
            "subscribe",
            topic,
            lambda: self._client.subscribe(topic),
            on_success,
            on_failure,
        )

    def unsubscribe(
        self, topic: str, *, on_success: SuccessCallback, on_failure: FailureCallback
    ) -> None:
        """Send UNSUBSCRIBE; the outcome follows the broker's UNSUBACK."""
        self._request(
            "unsubscribe",
            topic,
            lambda: self._client.unsubscribe(topic),
            on_success,
            on_failure,
        )

    def disconnect(self) -> None:
        """
        Close the session. The resulting disconnect is not reported as a loss.

        Requests still awaiting an acknowledgement fail with "client disconnected".
        paho's network thread exits on its own once the DISCONNECT is sent.
        """
        self._closing = True
        self._fail_outstanding("client disconnected")

        if self._client is None:
            return

        rc = self._client.disconnect()
        self.logger.debug(
            f"Disconnect requested from ws://{self.host}:{self.port}{self.path} "
            f"({mqtt.error_string(rc)})"
        )

    @property
    def is_connected(self) -> bool:
        """Check if the MQTT session is currently established."""
        return self._established

    def _request(
        self,
        operation: str,
        topic: str,
        send,
        on_success: SuccessCallback,
        on_failure: FailureCallback,
    ) -> None:
        if self._client is None or self._closing:
            on_failure("client not connected")
            return

        try:
            rc, mid = send()
        except ValueError as e:
            # paho validates topic filters before queuing anything
            on_failure(str(e))
            return

        if rc != mqtt.MQTT_ERR_SUCCESS or mid is None:
            self.logger.warning(
                f"{operation} refused by client: {mqtt.error_string(rc)}",
                extra={"topic": topic},
            )
            on_failure(mqtt.error_string(rc))
            return

        self.logger.debug(f"{operation} sent", extra={"topic": topic, "mid": mid})

        with self._lock:
            early = self._early_acks.pop(mid, _MISSING)
            if early is _MISSING:
                self._pending_acks[mid] = (on_success, on_failure)
                return
        self._complete(early, on_success, on_failure)

    def _resolve_ack(self, mid: int, outcome: Any) -> None:
        with self._lock:
            callbacks = self._pending_acks.pop(mid, None)
            if callbacks is None:
                # after disconnect() nobody will claim the mid
                if not self._closing:
                    self._early_acks[mid] = outcome
                return
        self._complete(outcome, *callbacks)

    @staticmethod
    def _complete(outcome: Any, on_success: SuccessCallback, on_failure: FailureCallback) -> None:
        if outcome is _SUCCESS:
            on_success()
        else:
            on_failure(outcome)

    def _take_connect_callbacks(self) -> tuple[SuccessCallback, FailureCallback] | None:
        with self._lock:
            callbacks, self._connect_callbacks = self._connect_callbacks, None
        return callbacks

    def _fail_outstanding(self, detail: str) -> None:
        with self._lock:
            pending = list(self._pending_acks.values())
            self._pending_acks.clear()
            self._early_acks.clear()
        for _, on_failure in pending:
            on_failure(detail)

        callbacks = self._take_connect_callbacks()
        if callbacks is not None:
            callbacks[1](detail)

    # paho callbacks, network thread

    def _on_connect(self, client, userdata, flags, reason_code, properties):
        """Paho callback when the broker answers CONNECT."""
        if self._closing:
            # closed while the handshake was in flight
            client.disconnect()
            return

        callbacks = self._take_connect_callbacks()
        if reason_code.is_failure:
            self.logger.warning(f"Connection refused by broker: {reason_code}")
            if callbacks is not None:
                callbacks[1](str(reason_code))
            return

        self._established = True
        self.logger.info(f"Connected to broker ws://{self.host}:{self.port}{self.path}")
        if callbacks is not None:
            callbacks[0]()

    def _on_connect_fail(self, client, userdata):
        """Paho callback when the broker cannot be reached at all."""
        self.logger.warning(f"Unable to reach broker ws://{self.host}:{self.port}{self.path}")
        callbacks = self._take_connect_callbacks()
        if callbacks is not None:
            callbacks[1]("unable to reach broker")
        if not self._reconnect:
            # running in the network thread, so this only flags it to stop
            client.loop_stop()

    def _on_disconnect(self, client, userdata, flags, reason_code, properties):
        """Paho callback when the session ends."""
        was_established = self._established
        self._established = False

        if self._closing:
            self.logger.info("Disconnected from broker")
            return

        callbacks = self._take_connect_callbacks()
        if callbacks is not None:
            # dropped before CONNACK
            callbacks[1](str(reason_code))
            return

        if not was_established:
            return

        self.logger.warning(f"Unexpected disconnection ({reason_code})")
        self._fail_outstanding("connection lost")

        handler = self.on_connection_lost
        if handler is not None:
            try:
                handler(reason_code)
            except Exception as e:
                self.logger.error(f"Error in connection-lost handler: {e}", exc_info=True)

    def _on_message(self, client, userdata, msg):
        """
        Paho callback for incoming messages.
        Runs in paho's network thread - keep it fast!
        """
        payload = msg.payload.decode("utf-8", errors="replace")
        handler = self.on_message_arrived
        if handler is None:
            self.logger.debug(f"No handler for message on topic {msg.topic}")
            return
        try:
            handler(msg.topic, payload)
        except Exception as e:
            self.logger.error(f"Error in message callback: {e}", exc_info=True)

    def _on_subscribe(self, client, userdata, mid, reason_code_list, properties):
        """Paho callback for SUBACK."""
        failures = [rc for rc in reason_code_list if rc.is_failure]
        self._resolve_ack(mid, str(failures[0]) if failures else _SUCCESS)

    def _on_unsubscribe(self, client, userdata, mid, reason_code_list, properties):
        """Paho callback for UNSUBACK. MQTT 3.1.1 UNSUBACKs carry no reason codes."""
        failures = [rc for rc in reason_code_list if rc.is_failure]
        self._resolve_ack(mid, str(failures[0]) if failures else _SUCCESS)


__all__ = [
    "PahoWebSocketClient",
]
