"""FastMCP server instance and the registry of deploy tools"""
import inspect
import logging
from typing import Any, Callable, Dict, Tuple

import pydantic
from mcp.server.fastmcp import FastMCP

logger = logging.getLogger(__name__)

mcp_server = FastMCP(name="salesforce-metadata-deployer")

# tool name -> {"name", "description", "schema", "function"}
tool_registry: Dict[str, Dict[str, Any]] = {}

_SECTION_ENDS = ("returns:", "raises:", "example:", "examples:")


def parse_docstring(func: Callable) -> Tuple[str, Dict[str, str]]:
    """Return the summary line and the ``Args:`` descriptions of a tool docstring."""
    doc = inspect.getdoc(func)
    if not doc:
        return "No description available.", {}

    summary, *rest = doc.splitlines()
    args: Dict[str, str] = {}
    in_args = False
    for raw in rest:
        line = raw.strip()
        lowered = line.lower()
        if lowered == "args:":
            in_args = True
        elif lowered in _SECTION_ENDS:
            in_args = False
        elif in_args and ":" in line:
            name, desc = line.split(":", 1)
            # "targets (list)" -> "targets"
            args[name.split("(")[0].strip()] = desc.strip()
    return summary.strip(), args


def _argument_schema(func: Callable, descriptions: Dict[str, str]) -> type:
    fields = {}
    for param in inspect.signature(func).parameters.values():
        default = ... if param.default is inspect.Parameter.empty else param.default
        fields[param.name] = (
            param.annotation,
            pydantic.Field(default, description=descriptions.get(param.name, "")),
        )
    return pydantic.create_model(f"{func.__name__}Schema", **fields)


def register_tool(func: Callable) -> Callable:
    """Expose ``func`` as an MCP tool and record its argument schema."""
    description, arg_descriptions = parse_docstring(func)
    tool_registry[func.__name__] = {
        "name": func.__name__,
        "description": description,
        "schema": _argument_schema(func, arg_descriptions),
        "function": func,
    }
    mcp_server.tool()(func)
    logger.info("✅ Registered tool: '%s'", func.__name__)
    return func


__all__ = ["mcp_server", "register_tool", "tool_registry"]
