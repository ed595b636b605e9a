import logging
import os
import pytest
import pytest_asyncio
from dotenv import load_dotenv

from mqtt_bridge import ConnectionRegistry

# === Load Environment and Configure Logging ===
load_dotenv()

logging.basicConfig(level=logging.DEBUG, format="%(levelname)-8s %(message)s")


# === Broker used by the integration tests ===
BROKER_HOSTNAME = os.getenv("MQTT_BROKER_HOSTNAME", "broker.emqx.io")
BROKER_WS_PORT = int(os.getenv("MQTT_BROKER_WS_PORT", 8083))
RUN_INTEGRATION = os.getenv("MQTT_BRIDGE_INTEGRATION", "False").lower() == "true"


class FakeMessagingClient:
    """
    Scripted stand-in for the underlying messaging client.

    Records every request and lets tests fire acknowledgements, messages and
    connection loss by hand. With ``auto_connect``/``auto_ack`` set, requests
    are answered synchronously from inside the call, the way a client that
    fails fast would do it.
    """

    def __init__(self, host, port, path, client_id, settings, auto_connect=True, auto_ack=True):
        self.host = host
        self.port = port
        self.path = path
        self.client_id = client_id
        self.settings = settings
        self.auto_connect = auto_connect
        self.auto_ack = auto_ack
        self.ack_failure = None
        self.disconnect_error = None

        self.on_message_arrived = None
        self.on_connection_lost = None

        self.reconnect = None
        self.connect_callbacks = None
        self.requests = []
        self.disconnect_calls = 0

    # MessagingClient interface

    def connect(self, *, on_success, on_failure, reconnect=False):
        self.reconnect = reconnect
        self.connect_callbacks = (on_success, on_failure)
        if self.auto_connect:
            on_success()

    def subscribe(self, topic, *, on_success, on_failure):
        self._request("subscribe", topic, on_success, on_failure)

    def unsubscribe(self, topic, *, on_success, on_failure):
        self._request("unsubscribe", topic, on_success, on_failure)

    def disconnect(self):
        self.disconnect_calls += 1
        if self.disconnect_error is not None:
            raise self.disconnect_error

    # Test controls

    def accept(self):
        self.connect_callbacks[0]()

    def refuse(self, detail="connection refused"):
        self.connect_callbacks[1](detail)

    def ack(self, index=-1, ok=True, detail="not authorized"):
        _, _, on_success, on_failure = self.requests[index]
        if ok:
            on_success()
        else:
            on_failure(detail)

    def deliver(self, topic, payload):
        self.on_message_arrived(topic, payload)

    def lose(self, reason="keepalive timeout"):
        self.on_connection_lost(reason)

    @property
    def operations(self):
        return [(operation, topic) for operation, topic, _, _ in self.requests]

    def _request(self, operation, topic, on_success, on_failure):
        self.requests.append((operation, topic, on_success, on_failure))
        if not self.auto_ack:
            return
        if self.ack_failure is None:
            on_success()
        else:
            on_failure(self.ack_failure)


class FakeClientFactory:
    """ClientFactory that builds FakeMessagingClients and remembers them."""

    def __init__(self):
        self.clients: list[FakeMessagingClient] = []
        self.auto_connect = True
        self.auto_ack = True

    def __call__(self, host, port, path, client_id, settings):
        client = FakeMessagingClient(
            host,
            port,
            path,
            client_id,
            settings,
            auto_connect=self.auto_connect,
            auto_ack=self.auto_ack,
        )
        self.clients.append(client)
        return client

    @property
    def last(self) -> FakeMessagingClient:
        return self.clients[-1]


@pytest.fixture
def client_factory():
    return FakeClientFactory()


@pytest_asyncio.fixture
async def registry(client_factory):
    registry = ConnectionRegistry(client_factory=client_factory)
    yield registry
    registry.close_all()


class Recorder:
    """Collects handler invocations as tuples."""

    def __init__(self):
        self.calls = []

    def __call__(self, *args):
        self.calls.append(args)


@pytest.fixture
def recorder():
    return Recorder


def pytest_collection_modifyitems(config, items):
    if RUN_INTEGRATION:
        return
    skip_integration = pytest.mark.skip(reason="set MQTT_BRIDGE_INTEGRATION=true to run broker tests")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)
