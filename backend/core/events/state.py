from enum import Enum


class ConnectionState(str, Enum):
    """Lifecycle of a broker connection owned by one adapter instance"""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
