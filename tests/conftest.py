"""
Shared fixtures for relay tests.

Provides fake connections, a recording send primitive, and a running relay
server bound to an ephemeral local port.
"""

import asyncio
from collections import defaultdict
from unittest.mock import MagicMock

import pytest
import pytest_asyncio
from websockets.protocol import State

from signal_relay.registry import ConnectionRegistry
from signal_relay.server import create_server


class RecordingSend:
    """Stand-in for the transport send primitive that records payloads per connection."""

    def __init__(self):
        self.sent = defaultdict(list)
        self.failing = set()

    def __call__(self, connection, payload):
        if connection in self.failing:
            raise ConnectionResetError("simulated transport fault")
        self.sent[connection].append(payload)


def make_connection(name, state=State.OPEN, port=50000):
    """Creates a mock connection with a state and remote address."""
    connection = MagicMock(name=name)
    connection.state = state
    connection.remote_address = ("127.0.0.1", port)
    return connection


async def wait_for_clients(registry, count, timeout=2.0):
    """Waits until the registry holds exactly `count` connections."""
    async def _poll():
        while len(registry) != count:
            await asyncio.sleep(0.01)

    await asyncio.wait_for(_poll(), timeout)


@pytest.fixture
def sender():
    return RecordingSend()


@pytest.fixture
def registry(sender):
    return ConnectionRegistry(send=sender)


@pytest_asyncio.fixture
async def relay():
    """Runs a relay on 127.0.0.1 and yields (registry, port)."""
    live = ConnectionRegistry()
    async with create_server(live, "127.0.0.1", 0) as server_instance:
        port = list(server_instance.sockets)[0].getsockname()[1]
        yield live, port
