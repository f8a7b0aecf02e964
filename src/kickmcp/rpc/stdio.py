"""stdin/stdout JSON-RPC loop (MCP stdio transport).

One JSON document per line in each direction. Nothing but responses is
written to stdout; logs go to stderr.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import TextIO

from kickmcp.registry.dispatcher import CallerContext
from kickmcp.rpc.handler import JsonRpcHandler

logger = logging.getLogger(__name__)


async def run_stdio(
    handler: JsonRpcHandler,
    reader: TextIO | None = None,
    writer: TextIO | None = None,
) -> int:
    """Serve requests until the reader hits EOF. Returns the number handled."""
    reader = reader or sys.stdin
    writer = writer or sys.stdout
    ctx = CallerContext(identity="stdio", transport="stdio", allow_stored_token=True)
    handled = 0

    logger.info("Listening on stdio")
    while True:
        line = await asyncio.to_thread(reader.readline)
        if not line:
            break  # stdin closed

        payload = line.rstrip("\r\n")
        if not payload.strip():
            continue

        reply = await handler.handle_raw(payload, ctx)
        handled += 1
        if reply is not None:
            writer.write(reply + "\n")
            writer.flush()

    logger.info("stdin closed after %d message(s)", handled)
    return handled
