#!/usr/bin/env python3
"""
Digital Detox - Main Entry Point

Runs the tracking/blocking engine behind a local HTTP bridge that the
browser extension shim talks to.

Usage:
    python main.py                      # Run until Ctrl+C
    python main.py --identity <id>      # Associate an identity at start
    python main.py --check-auth         # Take the identity from the backend session
    python main.py --status             # Print stored status and exit
"""

import argparse
import json
import logging
import sys
import time
from typing import Optional

import config
from core.engine import DetoxEngine
from core.exceptions import BackendError
from core.storage import LocalStore
from sync.backend_client import DetoxBackendClient
from sync.bridge_server import BridgeHost, start_bridge_server

logger = logging.getLogger(__name__)


def setup_logging(debug: bool = False) -> None:
    """Configure root logging from config (or DEBUG when asked)."""
    level = logging.DEBUG if debug else getattr(logging, config.LOG_LEVEL.upper(), logging.INFO)
    logging.basicConfig(level=level, format=config.LOG_FORMAT)

    # Suppress noisy third-party library logs (HTTP requests, etc.)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def parse_args(argv: Optional[list] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Digital Detox tracking and blocking service")
    parser.add_argument("--port", type=int, default=None,
                        help=f"Bridge port (default {config.BRIDGE_PORT})")
    parser.add_argument("--identity", help="Associate this identity before starting")
    parser.add_argument("--check-auth", action="store_true",
                        help="Resolve the identity from the backend session")
    parser.add_argument("--status", action="store_true", help="Print status and exit")
    parser.add_argument("--debug", action="store_true", help="Verbose logging")
    return parser.parse_args(argv)


def main(argv: Optional[list] = None) -> int:
    args = parse_args(argv)
    setup_logging(args.debug)

    store = LocalStore(config.STATE_FILE)
    client = DetoxBackendClient()
    host = BridgeHost()
    engine = DetoxEngine(store, client=client, host=host)

    if args.status:
        print(json.dumps(engine.get_status(), indent=2))
        store.close()
        client.close()
        return 0

    if args.check_auth:
        try:
            identity = client.fetch_session_identity()
        except BackendError as e:
            logger.warning(f"Could not check backend session: {e}")
            identity = None
        if identity:
            engine.login(identity)
        else:
            logger.info("No signed-in session on the backend")

    if args.identity:
        engine.login(args.identity)

    if not client.check_health():
        logger.warning(f"Backend at {client.base_url} is not reachable; running on cached limits")

    try:
        server = start_bridge_server(engine, host, args.port)
    except OSError as e:
        logger.error(f"Could not start extension bridge: {e}")
        store.close()
        client.close()
        return 1

    engine.start()
    print(f"Digital Detox running (bridge on http://{config.BRIDGE_HOST}:{server.port}). Press Ctrl+C to stop.")

    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        print("\nStopping...")
    finally:
        server.shutdown()
        server.server_close()
        engine.stop()
        engine.sync_usage()
        store.close()
        client.close()

    return 0


if __name__ == "__main__":
    sys.exit(main())
