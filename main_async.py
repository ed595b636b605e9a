import asyncio
import logging

from mqtt_bridge import ClientFormatter, ConnectionRegistry, JsonMessageHandler


handler = logging.StreamHandler()
handler.setFormatter(ClientFormatter())
logging.basicConfig(level=logging.INFO, handlers=[handler])

# Local broker with a WebSocket listener on /mqtt.
# Replace with your actual broker details if needed.
BROKER_HOST = "localhost"
BROKER_WS_PORT = 9002
CLIENT_ID = "leptosclient"
TOPIC = "test"

# The following opens one connection through the registry, subscribes to TOPIC
# and prints every message until interrupted. Payloads that are JSON are shown
# decoded; anything else is printed as received.


def print_message(topic: str, data) -> None:
    # print in green text
    print(f"\033[92m[{topic}] {data!r}\033[0m")


def print_raw(topic: str, payload: str) -> None:
    print(f"[{topic}] {payload}")


async def main():
    registry = ConnectionRegistry()
    lost = asyncio.Event()

    def connection_lost(reason) -> None:
        print(f"\033[91mConnection lost: {reason}\033[0m")
        lost.set()

    handle = await registry.connect(
        BROKER_HOST,
        BROKER_WS_PORT,
        CLIENT_ID,
        on_disconnect=connection_lost,
        on_message=JsonMessageHandler(print_message, on_invalid=print_raw),
    )
    try:
        await registry.subscribe(handle, TOPIC)
        print(f"Connected to ws://{BROKER_HOST}:{BROKER_WS_PORT} as {CLIENT_ID}. Listening on '{TOPIC}'...")
        await lost.wait()
    finally:
        registry.close(handle)


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("Exiting...")
