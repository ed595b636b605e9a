"""
MQTT-over-WebSocket messaging client implementation using paho-mqtt.
"""
from .client import PahoWebSocketClient

__all__ = [
    "PahoWebSocketClient",
]
