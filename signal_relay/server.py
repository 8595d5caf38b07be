# signal_relay/server.py
# This file wires the ConnectionRegistry to the `websockets` asyncio server.
# Responsibilities include:
# - Answering plain HTTP requests (health check, service info, 426 on the ws path)
#   before any WebSocket handshake takes place.
# - Enforcing the path and Origin policy for WebSocket upgrades.
# - Running one handler coroutine per connection that turns its I/O into relay events.
# - Setting up the SSL context for WSS if configured.
# - Starting the listener and shutting it down gracefully on SIGINT/SIGTERM.

import asyncio          # For the event loop, futures and signal handling.
import functools        # For binding the registry into the websockets callbacks.
import json             # For the JSON bodies of the HTTP endpoints.
import logging          # For logging server events, warnings, and errors.
import signal           # For graceful shutdown on SIGINT/SIGTERM.
import ssl              # For creating SSL contexts for WSS.
from http import HTTPStatus
from urllib.parse import urlsplit

import websockets
from websockets.asyncio.server import serve

from signal_relay import config
from signal_relay.events import Closed, Connected, MessageReceived, TransportFailed, dispatch
from signal_relay.registry import ConnectionRegistry, describe, utc_timestamp


# --- Origin / CORS Policy ---

def is_origin_allowed(origin):
    """
    Decides whether a WebSocket upgrade from `origin` may proceed.

    Requests without an Origin header (native clients, curl) are always allowed.
    Otherwise the origin must contain the host part of one of ALLOWED_ORIGINS or one
    of the ALLOWED_ORIGIN_HOSTS fragments.
    """
    if not config.CHECK_ORIGIN or not origin:
        return True
    for allowed in config.ALLOWED_ORIGINS:
        if allowed.split('://', 1)[-1] in origin:
            return True
    return any(host in origin for host in config.ALLOWED_ORIGIN_HOSTS)


def cors_headers(origin):
    """Returns the CORS headers for an HTTP response to a request from `origin`."""
    headers = []
    # Only exact matches are echoed back; requests without Origin get a wildcard.
    if not origin or origin in config.ALLOWED_ORIGINS:
        headers.append(('Access-Control-Allow-Origin', origin or '*'))
    headers.extend([
        ('Access-Control-Allow-Methods', 'GET, POST, PUT, DELETE, OPTIONS'),
        ('Access-Control-Allow-Headers', 'Content-Type, Authorization, X-Requested-With'),
        ('Access-Control-Allow-Credentials', 'true'),
    ])
    return headers


def json_response(connection, status, body, origin=None):
    """Builds an HTTP response with a JSON body and CORS headers."""
    response = connection.respond(status, json.dumps(body))
    del response.headers['Content-Type']
    response.headers['Content-Type'] = 'application/json'
    for name, value in cors_headers(origin):
        response.headers[name] = value
    return response


def text_response(connection, status, text, origin=None):
    """Builds a plain-text HTTP response with CORS headers."""
    response = connection.respond(status, text)
    for name, value in cors_headers(origin):
        response.headers[name] = value
    return response


# --- HTTP Request Handling ---

def process_request(connection, request, registry):
    """
    Inspects every incoming HTTP request before the WebSocket handshake.

    Returns a response to answer the request directly, or None to let the
    WebSocket handshake continue (only for allowed upgrades on WS_PATH).

    Args:
        connection (websockets.asyncio.server.ServerConnection): The pending connection.
        request (websockets.http11.Request): The parsed HTTP request.
        registry (ConnectionRegistry): Used for the live client count in /health.
    """
    path = urlsplit(request.path).path
    origin = request.headers.get('Origin')
    is_upgrade = request.headers.get('Upgrade', '').lower() == 'websocket'

    if path == config.WS_PATH:
        if not is_upgrade:
            return json_response(connection, HTTPStatus.UPGRADE_REQUIRED, {
                "error": "Upgrade Required",
                "message": "This endpoint requires WebSocket upgrade",
            }, origin)
        if not is_origin_allowed(origin):
            logging.warning(f"WebSocket connection rejected for origin: {origin}")
            return text_response(connection, HTTPStatus.FORBIDDEN, "Forbidden\n", origin)
        logging.info(f"WebSocket upgrade request from origin: {origin}")
        return None

    if is_upgrade:
        # WebSocket upgrades are only served on WS_PATH.
        return text_response(connection, HTTPStatus.NOT_FOUND, "Not Found\n", origin)

    if path == '/health':
        return json_response(connection, HTTPStatus.OK, {
            "status": "OK",
            "timestamp": utc_timestamp(),
            "clients": len(registry),
            "service": config.SERVICE_NAME,
        }, origin)

    if path == '/':
        return json_response(connection, HTTPStatus.OK, {
            "message": config.SERVICE_NAME,
            "websocket": config.WS_PATH,
            "health": "/health",
            "timestamp": utc_timestamp(),
        }, origin)

    return json_response(connection, HTTPStatus.NOT_FOUND, {"error": "Not Found"}, origin)


# --- Main Connection Handler ---

async def connection_handler(websocket, registry):
    """
    Handles one client's WebSocket connection from handshake to close.

    Each step of the connection's life is turned into an event and dispatched in
    order: Connected, then one MessageReceived per message, then exactly one of
    Closed or TransportFailed. An unexpected fault is contained here so it only
    ends this client's connection.

    Args:
        websocket (websockets.asyncio.server.ServerConnection): The client's connection.
        registry (ConnectionRegistry): The live connection set shared by all handlers.
    """
    origin = websocket.request.headers.get('Origin') if websocket.request else None
    logging.info(f"New WebSocket connection from: {describe(websocket)}, Origin: {origin or 'unknown'}")

    final_event = None
    try:
        dispatch(registry, Connected(websocket))
        # The loop ends normally on a clean close and raises ConnectionClosedError otherwise.
        async for message in websocket:
            dispatch(registry, MessageReceived(websocket, message))
    except websockets.exceptions.ConnectionClosedError as e:
        final_event = TransportFailed(websocket, e)
    except Exception as e:
        logging.exception(f"An unexpected error occurred handling client {describe(websocket)}")
        final_event = TransportFailed(websocket, e)
    finally:
        if final_event is None:
            final_event = Closed(websocket, websocket.close_code, websocket.close_reason or '')
        dispatch(registry, final_event)


# --- SSL ---

def build_ssl_context():
    """
    Creates the server SSL context when ENABLE_SSL is set.

    Returns:
        ssl.SSLContext | None: None when SSL is disabled or the certificate files
        cannot be loaded (the server then falls back to plain WS).
    """
    if not config.ENABLE_SSL:
        return None
    try:
        logging.info(f"Attempting to load SSL cert: {config.CERT_FILE}")
        logging.info(f"Attempting to load SSL key: {config.KEY_FILE}")
        ssl_context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        ssl_context.load_cert_chain(config.CERT_FILE, config.KEY_FILE)
    except FileNotFoundError:
        logging.error(f"SSL Error: Certificate or Key file not found (Cert: '{config.CERT_FILE}', Key: '{config.KEY_FILE}'). Disabling SSL, falling back to WS.")
        return None
    except (ssl.SSLError, OSError):
        logging.exception("SSL Error: Failed to create SSL context. Disabling SSL, falling back to WS.")
        return None
    logging.info("SSL context created successfully. Server will use WSS.")
    return ssl_context


# --- Server Startup ---

def create_server(registry, host, port, ssl_context=None):
    """
    Returns the `websockets` server for `registry`, to be used as `async with`.

    The transport enforces MAX_PAYLOAD_BYTES, so oversized frames never reach the relay.
    """
    return serve(
        functools.partial(connection_handler, registry=registry),
        host,
        port,
        process_request=functools.partial(process_request, registry=registry),
        ssl=ssl_context,
        max_size=config.MAX_PAYLOAD_BYTES,
        compression=None,
        ping_interval=config.PING_INTERVAL,
        ping_timeout=config.PING_TIMEOUT,
    )


def _request_stop(stop, sig):
    if not stop.done():
        logging.info(f"{sig.name} received, shutting down gracefully")
        stop.set_result(sig)


def install_signal_handlers(loop, stop):
    """Resolves `stop` on SIGINT or SIGTERM where the event loop supports signal handlers."""
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _request_stop, stop, sig)
        except NotImplementedError:
            # Windows event loops: Ctrl+C arrives as KeyboardInterrupt in main.py instead.
            logging.info(f"Signal handler for {sig.name} not supported on this platform.")


async def start_server(host, port, registry=None, stop=None):
    """
    Runs the relay on `host`:`port` until `stop` resolves.

    Args:
        host (str): The address to bind to.
        port (int): The port to bind to (0 picks a free port).
        registry (ConnectionRegistry | None): Live connection set; a fresh one is
            created when omitted.
        stop (asyncio.Future | None): Resolving it shuts the server down. When omitted,
            SIGINT/SIGTERM handlers are installed to resolve it.

    Raises:
        OSError: If the listening socket cannot be bound (e.g. port in use).
    """
    if registry is None:
        registry = ConnectionRegistry()
    loop = asyncio.get_running_loop()
    if stop is None:
        stop = loop.create_future()
        install_signal_handlers(loop, stop)

    ssl_context = build_ssl_context()
    protocol = "wss" if ssl_context else "ws"
    logging.info(f"Starting server on {protocol}://{host}:{port}{config.WS_PATH}")
    logging.info(f"Maximum WebSocket message size set to: {config.MAX_PAYLOAD_BYTES} bytes")
    logging.info(f"Origin check: {'ENABLED' if config.CHECK_ORIGIN else 'DISABLED'}")
    logging.info(f"Server Debug Logging: {'ENABLED' if config.DEBUG else 'DISABLED'}")

    try:
        server_instance = await create_server(registry, host, port, ssl_context)
    except OSError:
        logging.exception(f"OSError starting server on {host}:{port} - Is the port already in use?")
        raise

    async with server_instance:
        logging.info(f"Server running on port {port}")
        logging.info(f"Health check: http://{host}:{port}/health")
        logging.info(f"WebSocket endpoint: {protocol}://{host}:{port}{config.WS_PATH}")
        await stop
        # Leaving the context stops accepting, closes open connections and waits for their handlers.
        logging.info(f"Closing server with {len(registry)} connected clients")
    logging.info("Server closed")
