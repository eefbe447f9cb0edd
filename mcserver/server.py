#!/usr/bin/env python3
"""
Memcache Server Entry Point

Starts a memcached text protocol server backed by the reference
in-memory handlers.

Usage:
    python -m mcserver.server                                # Default settings (127.0.0.1:11211)
    python -m mcserver.server --address 0.0.0.0:11311        # Custom address
    python -m mcserver.server --address unix:///tmp/mc.sock  # Unix domain socket
    python -m mcserver.server --debug                        # Enable debug logging

Environment Variables:
    MC_SERVER_ADDRESS   - Listen address
    MC_SERVER_DEBUG     - Enable debug mode (true/false)
    MC_SERVER_LOG_LEVEL - Log level when not in debug mode
"""

import argparse
import asyncio
import logging
import signal
import sys

from .cache.handlers import register_default_handlers
from .config.settings import settings
from .network.tcp_server import MemcacheServer


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="mcserver: memcached text protocol server",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--address",
        type=str,
        default=settings.ADDRESS,
        help="Listen address (host:port or unix:///path)",
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        default=settings.DEBUG,
        help="Enable debug logging",
    )

    return parser.parse_args(argv)


def setup_logging(debug: bool = False) -> None:
    """Configure logging based on debug flag."""
    level = logging.DEBUG if debug else getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
        ]
    )


async def run_server(address: str = None) -> None:
    """
    Create a server with the reference handlers and run it until stopped.

    SIGINT and SIGTERM trigger a graceful stop on Unix.
    """
    logger = logging.getLogger(__name__)
    server = MemcacheServer(address=address)
    register_default_handlers(server)

    async def shutdown(sig: signal.Signals) -> None:
        """Handle shutdown signal."""
        logger.info(f"Received signal {sig.name}, initiating shutdown...")
        await server.stop()

    # Register signal handlers (Unix only)
    if sys.platform != 'win32':
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(
                sig,
                lambda s=sig: asyncio.create_task(shutdown(s))
            )

    await server.start()
    try:
        await server.serve_forever()
    finally:
        await server.stop()


def main(argv=None) -> None:
    """Main entry point for the server."""
    args = parse_args(argv)
    setup_logging(debug=args.debug)
    logger = logging.getLogger(__name__)

    logger.info("Starting memcache server")
    logger.info(f"  Address: {args.address}")
    logger.info(f"  Debug: {args.debug}")

    try:
        asyncio.run(run_server(args.address))
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
    except OSError as e:
        logger.error(f"Server error: {e}")
        sys.exit(1)
    finally:
        logger.info("Server shutdown complete")


if __name__ == "__main__":
    main()
