#!/usr/bin/env python3
"""File Sync Server - mirrors a source tree to WebSocket clients.

Usage:
    # Mirror ./flows (project root = parent of ./flows)
    python -m syncserver ./flows

    # Custom address
    python -m syncserver ./flows --host 0.0.0.0 --port 4000
    python -m syncserver ./flows --web-socket :4000

    # Explicit project root and a slower debounce
    python -m syncserver ./flows --project-root . --debounce-ms 250
"""

import argparse
import asyncio
import logging
import os
import signal
import sys
from typing import Optional

from dotenv import load_dotenv

from syncserver.config import SyncConfig, parse_address
from syncserver.websocket import SyncWSServer


logger = logging.getLogger(__name__)


class SyncDaemon:
    """Runs the WebSocket server until SIGINT/SIGTERM."""

    def __init__(self, watch_dir: str, project_root: Optional[str], config: SyncConfig):
        self.watch_dir = watch_dir
        self.project_root = project_root
        self.config = config
        self._shutdown_event = asyncio.Event()

    async def start(self) -> None:
        """Start serving and run until shutdown."""
        server = SyncWSServer(
            self.watch_dir,
            project_root=self.project_root,
            config=self.config,
        )

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._shutdown_event.set)

        await server.start_background()
        logger.info("File sync server started")

        await self._shutdown_event.wait()
        logger.info("Shutdown requested...")
        await server.stop()
        logger.info("File sync server stopped")


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="python -m syncserver",
        description="File Sync Server - incremental source mirroring over WebSocket",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m syncserver ./flows
  python -m syncserver ./flows --port 4000
  python -m syncserver ./flows --web-socket 0.0.0.0:4000 --verbose
        """,
    )

    parser.add_argument(
        "watch_dir",
        metavar="WATCH_DIR",
        help="Directory to mirror",
    )
    parser.add_argument(
        "--project-root",
        metavar="DIR",
        help="Root for wire paths (default: parent of WATCH_DIR)",
    )

    # Server endpoint
    parser.add_argument(
        "--host",
        help="Host to bind to (default: $FILE_SYNC_HOST or localhost)",
    )
    parser.add_argument(
        "--port",
        type=int,
        help="Port to bind to (default: $FILE_SYNC_PORT or 3001)",
    )
    parser.add_argument(
        "--web-socket",
        metavar="[HOST:]PORT",
        help="WebSocket address, overrides --host/--port (e.g., :3001 or 0.0.0.0:3001)",
    )

    # Configuration
    parser.add_argument(
        "--debounce-ms",
        type=int,
        help="Quiet period before a rebuild (default: $FILE_SYNC_DEBOUNCE_MS or 100)",
    )
    parser.add_argument(
        "--env-file",
        default=".env",
        help="Path to .env file (default: .env)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Verbose logging",
    )

    args = parser.parse_args(argv)

    # Configure logging
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    # Environment must be loaded before SyncConfig reads it
    load_dotenv(args.env_file)

    watch_dir = os.path.abspath(args.watch_dir)
    if not os.path.isdir(watch_dir):
        parser.error(f"watch directory does not exist: {args.watch_dir}")

    host, port = args.host, args.port
    try:
        if args.web_socket:
            host, port = parse_address(args.web_socket, host, port)
        config = SyncConfig.from_env(
            host=host,
            port=port,
            debounce_seconds=args.debounce_ms / 1000.0 if args.debounce_ms is not None else None,
        )
    except ValueError as e:
        parser.error(str(e))

    daemon = SyncDaemon(watch_dir, args.project_root, config)

    try:
        asyncio.run(daemon.start())
    except KeyboardInterrupt:
        pass
    except OSError as e:
        logger.error("Server failed: %s", e)
        sys.exit(1)


if __name__ == "__main__":
    main()
