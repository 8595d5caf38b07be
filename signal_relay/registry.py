# signal_relay/registry.py
# The live connection set and the broadcast relay built on top of it.
# Responsibilities include:
# - Tracking which WebSocket connections are currently open.
# - Sending the one-off system welcome message to a newly registered connection.
# - Relaying any payload from one client, unmodified, to every other open client.
# - Forgetting a connection when it closes or its transport fails.
#
# All methods are synchronous and run on the server's single event loop, so a
# registry mutation can never interleave with a broadcast in progress.

import json             # For serializing the system welcome message.
import logging          # For lifecycle and error logging.
from datetime import datetime, timezone

from websockets.asyncio.server import broadcast
from websockets.exceptions import ConnectionClosedError
from websockets.protocol import State

from signal_relay import config


def utc_timestamp():
    """Returns the current UTC time as an ISO-8601 string with millisecond precision ('...Z')."""
    return datetime.now(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def system_message(text):
    """
    Builds the JSON text of a relay-originated system message.

    Args:
        text (str): Human-readable message for the client.

    Returns:
        str: '{"type": "system", "message": ..., "timestamp": ...}'
    """
    return json.dumps({"type": "system", "message": text, "timestamp": utc_timestamp()})


def send_now(connection, payload):
    """
    Writes `payload` to a single connection without waiting for it to be flushed.

    Text payloads go out as text frames and bytes as binary frames. Any failure
    (connection not writable, transport error) is raised to the caller.
    """
    broadcast([connection], payload, raise_exceptions=True)


def describe(connection):
    """Formats a connection's remote endpoint for log messages ('ip:port' or 'unknown')."""
    address = getattr(connection, 'remote_address', None)
    if not address:
        return 'unknown'
    if isinstance(address, (tuple, list)) and len(address) >= 2:
        return f"{address[0]}:{address[1]}"
    return str(address)


class ConnectionRegistry:
    """
    The set of live connections for one server process.

    The connection object itself is the client's identity; no separate client ID is
    assigned. A connection is a member only while it is believed to be open.

    Args:
        send (callable): `send(connection, payload)` primitive. It must not block and
            raises on failure. Defaults to `send_now`.
    """

    def __init__(self, send=send_now):
        self._connections = set()
        self._send = send

    def __len__(self):
        return len(self._connections)

    def __contains__(self, connection):
        return connection in self._connections

    @property
    def connections(self):
        """A snapshot of the current members."""
        return frozenset(self._connections)

    def register(self, connection):
        """
        Adds a freshly accepted connection and sends it the system welcome message.

        Registering a connection that is already a member changes nothing and does
        not send a second welcome.

        Returns:
            int: The live-set size after registration.
        """
        if connection in self._connections:
            logging.warning(f"Client {describe(connection)} is already registered. Ignoring.")
            return len(self._connections)

        self._connections.add(connection)
        logging.info(f"Client {describe(connection)} connected. Total clients: {len(self._connections)}")

        # Unicast only: the new client learns the signaling channel is ready.
        try:
            self._send(connection, system_message(config.WELCOME_MESSAGE))
        except Exception as e:
            logging.warning(f"Failed to send welcome message to {describe(connection)}: {e!r}")
        return len(self._connections)

    def unregister(self, connection):
        """
        Removes a connection. Removing one that is not a member is a no-op.

        Returns:
            bool: True if the connection was a member.
        """
        if connection not in self._connections:
            if config.DEBUG:
                logging.info(f"Client {describe(connection)} was not registered. Nothing to remove.")
            return False

        self._connections.discard(connection)
        logging.info(f"Client {describe(connection)} removed. Total clients: {len(self._connections)}")
        return True

    def on_transport_error(self, connection, error):
        """Logs a transport failure and removes the connection, exactly as a close would."""
        if isinstance(error, ConnectionClosedError):
            # Abnormal closes (e.g. 1006 when a browser tab goes away) are routine.
            logging.info(f"Client {describe(connection)} disconnected with error: {error}")
        else:
            logging.error(f"WebSocket client error from {describe(connection)}: {error!r}")
        return self.unregister(connection)

    def broadcast(self, source, payload):
        """
        Relays `payload` unmodified to every open member except `source`.

        Members that are not open (e.g. mid-close) are skipped but stay registered;
        their own close event removes them. A failed send to one peer is logged and
        the remaining peers are still served.

        Returns:
            int: How many peers the payload was handed to.
        """
        delivered = 0
        # Iterate over a copy so a concurrent register/unregister can never disturb the loop.
        for peer in list(self._connections):
            if peer is source:
                continue
            if peer.state is not State.OPEN:
                continue
            try:
                self._send(peer, payload)
            except Exception as e:
                logging.warning(f"Failed to relay message to {describe(peer)}: {e!r}")
                continue
            delivered += 1
        return delivered
