# signal_relay: WebSocket signaling relay that forwards every client message to all other clients.

from signal_relay.registry import ConnectionRegistry

__all__ = ["ConnectionRegistry"]
