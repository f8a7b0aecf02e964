"""Kick MCP gateway entry point.

Changes:
  - 2026-03-12: Added ``serve`` subcommand for the HTTP / WebSocket transport.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as get_version

from kickmcp import __version__
from kickmcp.config import get_settings
from kickmcp.logging_setup import setup_logging

logger = logging.getLogger(__name__)


def _version() -> str:
    try:
        return get_version("kick-mcp-gateway")
    except PackageNotFoundError:
        return __version__


async def run_stdio_mode() -> int:
    """Serve JSON-RPC on stdin/stdout until EOF."""
    from kickmcp.gateway import Gateway
    from kickmcp.rpc.stdio import run_stdio

    async with Gateway() as gateway:
        return await run_stdio(gateway.rpc)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kick-mcp",
        description="Kick MCP gateway - JSON-RPC / MCP and HTTP front end for the Kick API",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  kick-mcp                       Start in the configured transport (KICK_TRANSPORT, default stdio)
  kick-mcp stdio                 Serve JSON-RPC over stdin/stdout
  kick-mcp serve --port 3001     Start the HTTP / WebSocket server
""",
    )
    parser.add_argument(
        "command",
        nargs="?",
        choices=["stdio", "serve"],
        default=None,
        help="Transport to run (default: KICK_TRANSPORT)",
    )
    parser.add_argument("--host", default=None, help="Host to bind the HTTP server to")
    parser.add_argument("--port", type=int, default=None, help="Port for the HTTP server")
    parser.add_argument("--dev", action="store_true", help="Verbose server logging")
    parser.add_argument("--log-level", default=None, help="Log level (default: KICK_LOG_LEVEL)")
    parser.add_argument("--version", action="version", version=f"%(prog)s {_version()}")
    return parser


def main() -> None:
    """Main entry point."""
    args = build_parser().parse_args()
    settings = get_settings()
    setup_logging(level=args.log_level or settings.log_level)

    command = args.command or ("serve" if settings.transport == "http" else "stdio")
    try:
        if command == "serve":
            from kickmcp.server.app import run_server

            run_server(host=args.host, port=args.port, dev=args.dev)
        else:
            asyncio.run(run_stdio_mode())
    except KeyboardInterrupt:
        logger.info("Kick MCP gateway stopped.")


if __name__ == "__main__":
    main()
