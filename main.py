"""
Entry point for running the Bilibili MCP server.

To start the server, run this module directly. It configures logging,
imports the shared server instance from ``server.py`` and calls its
``run()`` method.  When running via Claude for Desktop, your
configuration should specify something akin to::

    "command": "python",
    "args": ["main.py"],
    "env": {"BILIBILI_COOKIES": "SESSDATA=...; bili_jct=..."}

or use a tool like ``uv run`` if you have ``uv`` installed. The
server blocks until it is terminated by the client.

Logs go to stderr: stdout carries the MCP stdio protocol.  Set
``BILI_MCP_LOG_LEVEL`` (default ``INFO``) to change the verbosity.
"""

from __future__ import annotations

import logging
import os
import sys


def configure_logging() -> None:
    level = os.environ.get("BILI_MCP_LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        stream=sys.stderr,
    )


if __name__ == "__main__":
    configure_logging()
    # Import after logging is configured so import-time messages use it.
    from server import mcp  # type: ignore

    mcp.run()
