import pkgutil
import importlib
import logging

logger = logging.getLogger(__name__)

# Import every module in this package so their @register_tool functions
# are added to the mcp_server instance. Output goes to the log, never to
# stdout, which carries the stdio transport.
for _, name, _ in pkgutil.iter_modules(__path__):
    importlib.import_module(f".{name}", __package__)
    logger.info("[MCP] Loaded tools from: %s.py", name)
