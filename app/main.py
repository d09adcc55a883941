# app/main.py
import sys
import logging

from app.config import get_settings
from app.mcp.server import mcp_server, tool_registry

# Importing the tools package registers every @register_tool function.
import app.mcp.tools  # noqa: F401


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    logging.basicConfig(
        stream=sys.stderr,
        level=get_settings().log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.info("MCP starting (stdio)")
    logging.info("Tools: %s", ", ".join(tool_registry.keys()) or "(none)")
    mcp_server.run(transport="stdio")


if __name__ == "__main__":
    main()
