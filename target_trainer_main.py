#!/usr/bin/env python3
"""
Target Trainer – Console Launcher
-------------------------------------------------
Starts:
  1) The WebSocket link to the serving side (devices are reached through it)
  2) The Flask web console (REST API + Socket.IO push)

Key characteristics:
- Single version source imported from target_trainer.tt_version
- Clean signal handling (Ctrl+C and SIGTERM)
- Graceful shutdown: close the link without reconnecting, detach the registry
- CLI flags with environment fallbacks

CLI:
  python target_trainer_main.py --server localhost:8080 --port 5000 --debug 0
ENV:
  TT_SERVER_HOST, TT_SERVER_SECURE, TT_WEB_HOST, TT_WEB_PORT, TT_WEB_DEBUG
"""

import argparse
import logging
import signal
import sys

from target_trainer.tt_config import (
    SERVER_HOST, SERVER_SECURE, WEB_DEBUG, WEB_HOST, WEB_PORT, build_ws_url
)
from target_trainer.tt_registry import SessionRegistry
from target_trainer.tt_transport import TransportChannel
from target_trainer.tt_version import VERSION
from target_trainer_web import create_app

logger = logging.getLogger("target_trainer")


def _signal_handler(signum, frame):
    """Turn SIGTERM into the same path as Ctrl+C so teardown runs."""
    del frame
    raise KeyboardInterrupt(f"signal {signum}")


def _parse_args(argv=None) -> argparse.Namespace:
    """Parse CLI args with environment-based defaults."""
    parser = argparse.ArgumentParser(description="Target Trainer - Console Launcher")
    parser.add_argument("--server", default=SERVER_HOST, help="Serving side host:port (default env TT_SERVER_HOST)")
    parser.add_argument("--secure", type=lambda v: bool(int(v)), default=SERVER_SECURE, help="Use wss:// (0/1)")
    parser.add_argument("--host", default=WEB_HOST, help="Web host (default env TT_WEB_HOST)")
    parser.add_argument("--port", type=int, default=WEB_PORT, help="Web port (default env TT_WEB_PORT)")
    parser.add_argument("--debug", type=lambda v: bool(int(v)), default=WEB_DEBUG, help="Flask debug (0/1)")
    parser.add_argument("--log-level", default="INFO", help="Python logging level")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    """Boot the link and the console, and handle lifecycle cleanly."""
    args = _parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    signal.signal(signal.SIGINT, signal.default_int_handler)
    try:
        signal.signal(signal.SIGTERM, _signal_handler)
    except (AttributeError, ValueError):
        # Windows may not support SIGTERM
        pass

    channel = TransportChannel(url=build_ws_url(args.server, args.secure))
    registry = SessionRegistry(channel)
    registry.attach()
    app, socketio = create_app(registry, channel)

    print(f"=== Target Trainer {VERSION} – Training Console ===")
    print(f"Devices via: {channel.url}")
    print(f"Web: http://{args.host}:{args.port}  (debug={int(args.debug)})")
    print("Press Ctrl+C to stop")

    registry.log(f"Connecting to {channel.url}…")
    if not channel.connect():
        registry.log("Initial connect failed; retrying in background", level="warning")

    registry.log("Starting web console…")
    try:
        # use_reloader=False prevents a second process (and a second link) in debug mode
        socketio.run(app, host=args.host, port=args.port, debug=args.debug,
                     use_reloader=False, allow_unsafe_werkzeug=True)
    except KeyboardInterrupt:
        pass
    finally:
        registry.log("Shutting down Target Trainer…")
        channel.disconnect()
        registry.shutdown()
        print("Console shutdown complete.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
