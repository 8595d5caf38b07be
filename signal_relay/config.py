# signal_relay/config.py
# This file centralizes configuration settings for the signaling relay server.
# Values are read once at import time; most can be overridden with environment variables
# so the same build can run locally and on a hosting platform that assigns the port.

import os # Import the 'os' module for environment lookups and file paths.


def _env_bool(name, default):
    """Reads a boolean flag from the environment ('1', 'true', 'yes', 'on' are truthy)."""
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def _env_list(name, default):
    """Reads a comma separated list from the environment, dropping empty items."""
    value = os.environ.get(name)
    if value is None:
        return list(default)
    return [item.strip() for item in value.split(',') if item.strip()]


# --- Network Configuration ---

# HOST: The IP address the relay should listen on.
# - '0.0.0.0': Listen on all available network interfaces.
# - '127.0.0.1' or 'localhost': Only accessible from the same computer.
HOST = os.environ.get('RELAY_HOST', '0.0.0.0')

# PORT: The TCP port number for both the WebSocket endpoint and the HTTP health endpoints.
# Hosting platforms usually inject this through the PORT variable.
PORT = int(os.environ.get('PORT', '3000'))

# WS_PATH: The only path on which WebSocket upgrades are accepted.
WS_PATH = os.environ.get('RELAY_WS_PATH', '/ws')

# --- Message Limits ---

# MAX_PAYLOAD_BYTES: Largest incoming WebSocket message accepted by the transport.
# Larger frames are rejected (close code 1009) before the relay ever sees them.
MAX_PAYLOAD_BYTES = int(os.environ.get('RELAY_MAX_PAYLOAD_BYTES', str(16 * 1024 * 1024)))

# --- Keep-alive ---
# The transport pings each client every PING_INTERVAL seconds and drops it when no pong
# arrives within PING_TIMEOUT seconds. The relay sees that as an ordinary close.
PING_INTERVAL = float(os.environ.get('RELAY_PING_INTERVAL', '20'))
PING_TIMEOUT = float(os.environ.get('RELAY_PING_TIMEOUT', '20'))

# --- Origin Policy ---

# CHECK_ORIGIN: Master switch for the Origin check performed before the WebSocket handshake.
CHECK_ORIGIN = _env_bool('RELAY_CHECK_ORIGIN', True)

# ALLOWED_ORIGINS: Browser origins allowed to open the signaling socket.
# Replace the Netlify placeholder with the URL the client is actually deployed to.
ALLOWED_ORIGINS = _env_list('RELAY_ALLOWED_ORIGINS', [
    'https://your-netlify-site.netlify.app',
    'http://localhost:3000',
    'http://localhost:5000',
    'http://127.0.0.1:3000',
    'http://127.0.0.1:5000',
])

# ALLOWED_ORIGIN_HOSTS: Host fragments accepted anywhere in the Origin header
# (covers preview deployments and local development on any port).
ALLOWED_ORIGIN_HOSTS = _env_list('RELAY_ALLOWED_ORIGIN_HOSTS', [
    'netlify.app',
    'localhost',
    '127.0.0.1',
    'railway.app',
])

# --- Service Identity ---

# SERVICE_NAME: Reported by the health and root endpoints.
SERVICE_NAME = 'WebRTC Chat Server'

# WELCOME_MESSAGE: Text of the system message sent to each client right after it connects.
WELCOME_MESSAGE = 'Connected to signaling server'

# --- SSL Configuration ---
# Most deployments terminate TLS at the platform proxy, so WSS is off by default.

CERT_DIR = os.path.join(os.path.dirname(__file__), '..', 'certs')
CERT_FILE = os.environ.get('RELAY_CERT_FILE', os.path.join(CERT_DIR, 'cert.pem'))
KEY_FILE = os.environ.get('RELAY_KEY_FILE', os.path.join(CERT_DIR, 'key.pem'))

# ENABLE_SSL: Set to True to serve wss:// (requires CERT_FILE and KEY_FILE to exist).
ENABLE_SSL = _env_bool('RELAY_ENABLE_SSL', False)

# --- Logging / Debugging ---

# LOG_LEVEL: Minimum level passed to logging.basicConfig in main.py.
LOG_LEVEL = os.environ.get('RELAY_LOG_LEVEL', 'INFO').upper()

# DEBUG: When True, every relayed message is logged with its size and recipient count.
# Payload contents are never logged.
DEBUG = _env_bool('RELAY_DEBUG', False)
