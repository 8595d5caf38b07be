# signal_relay/events.py
# Explicit event values produced by a connection handler, and the single entry
# point that applies them to a ConnectionRegistry.

import logging
from dataclasses import dataclass

from signal_relay import config
from signal_relay.registry import describe


@dataclass(frozen=True)
class Connected:
    """A WebSocket handshake completed."""
    connection: object


@dataclass(frozen=True)
class MessageReceived:
    """A complete text (str) or binary (bytes) message arrived from `connection`."""
    connection: object
    payload: object


@dataclass(frozen=True)
class Closed:
    """The connection closed, cleanly or not, with the given close code and reason."""
    connection: object
    code: object = None
    reason: str = ''


@dataclass(frozen=True)
class TransportFailed:
    """The connection's transport failed; `error` is kept for logging only."""
    connection: object
    error: object


def dispatch(registry, event):
    """
    Applies one connection event to the registry.

    Events of one connection must be dispatched in the order they happened; the
    per-connection handler in server.py guarantees that.

    Args:
        registry (ConnectionRegistry): The live connection set.
        event: One of Connected, MessageReceived, Closed, TransportFailed.

    Returns:
        int | bool: The live-set size for Connected, the recipient count for
        MessageReceived, and whether the connection was removed for Closed and
        TransportFailed.

    Raises:
        TypeError: If `event` is not a relay event.
    """
    if isinstance(event, MessageReceived):
        try:
            recipients = registry.broadcast(event.connection, event.payload)
        except Exception:
            logging.exception(f"Error broadcasting message from {describe(event.connection)}")
            return 0
        if config.DEBUG:
            kind = 'binary' if isinstance(event.payload, (bytes, bytearray, memoryview)) else 'text'
            logging.info(f"Relayed {kind} message ({len(event.payload)}) from {describe(event.connection)} to {recipients} other clients")
        return recipients

    if isinstance(event, Connected):
        return registry.register(event.connection)

    if isinstance(event, Closed):
        logging.info(f"Client {describe(event.connection)} disconnected. Code: {event.code}, Reason: {event.reason}")
        return registry.unregister(event.connection)

    if isinstance(event, TransportFailed):
        return registry.on_transport_error(event.connection, event.error)

    raise TypeError(f"Unsupported relay event: {event!r}")
