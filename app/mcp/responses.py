"""JSON payload helpers shared by the tool modules"""
import json
import logging

from app.services.errors import MetadataDeployError

logger = logging.getLogger(__name__)


def create_json_response(success, **kwargs):
    """Create guaranteed valid JSON response"""
    result = {"success": success}

    for key, value in kwargs.items():
        if value is None or isinstance(value, (str, int, float, bool, list, dict)):
            result[key] = value
        else:
            result[key] = str(value)

    return json.dumps(result, indent=2)


def run_tool(operation: str, func, *args, **kwargs) -> str:
    """Run a tool body and turn its outcome into the JSON string returned to the client."""
    try:
        result = func(*args, **kwargs)
    except MetadataDeployError as e:
        logger.warning("%s failed: %s", operation, e.message)
        return create_json_response(False, operation=operation, **e.to_dict())
    except Exception as e:
        logger.error("%s: %s", operation, e, exc_info=True)
        return create_json_response(False, operation=operation, error=str(e), error_type="internal_error")

    result = dict(result)
    result.pop("success", None)
    return create_json_response(True, operation=operation, **result)
