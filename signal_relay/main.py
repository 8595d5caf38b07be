# signal_relay/main.py
# This script serves as the main entry point for starting the signaling relay.
# It sets up logging, reads configuration from the 'config' module, and runs the
# asynchronous server defined in the 'server' module until it is stopped.
# Run with `python -m signal_relay.main` or the installed `signal-relay` command.

import asyncio  # Provides the event loop the server runs on.
import logging  # Standard logging for server events and errors.
import sys      # For the process exit status.

from signal_relay import config
from signal_relay import server


def main():
    """Starts the relay and exits non-zero if it cannot start or crashes."""
    # One format for every module; they all log through the root logger.
    level = logging.getLevelNamesMapping().get(config.LOG_LEVEL)
    logging.basicConfig(level=level or logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
    if level is None:
        logging.error(f"Invalid log level '{config.LOG_LEVEL}'. Exiting.")
        sys.exit(1)

    logging.info("Attempting to start signaling relay...")
    logging.info(f"Using HOST={config.HOST}, PORT={config.PORT}")
    try:
        asyncio.run(server.start_server(config.HOST, config.PORT))
    except KeyboardInterrupt:
        # Ctrl+C on platforms without loop signal handlers.
        logging.info("Server stopped manually via KeyboardInterrupt.")
    except OSError:
        # Already logged by start_server; a half-started relay must not keep running.
        logging.error("Failed to start server. Exiting.")
        sys.exit(1)
    except Exception:
        logging.exception("Server crashed")
        sys.exit(1)


if __name__ == "__main__":
    main()
