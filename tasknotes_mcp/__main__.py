"""Entry point for `python -m tasknotes_mcp`."""

import os
from tasknotes_mcp.server import mcp

transport = os.environ.get("MCP_TRANSPORT", "streamable-http")

if transport in ("streamable-http", "http", "sse"):
    port = int(os.environ.get("PORT", "8000"))
    mcp.run(transport=transport, host="0.0.0.0", port=port)
else:
    mcp.run(transport=transport)
