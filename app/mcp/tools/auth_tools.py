from app.mcp.responses import create_json_response, run_tool
from app.mcp.server import register_tool
from app.services.salesforce import clear_connection_cache, get_token_provider


def _login():
    token = get_token_provider().get_access_token()
    return {"message": "Login successful", "instance_url": token.instance_url}


@register_tool
def salesforce_login() -> str:
    """Log in with the configured JWT bearer credentials and cache the access token."""
    return run_tool("salesforce_login", _login)


@register_tool
def salesforce_logout() -> str:
    """Clear the cached access token."""
    had_token = get_token_provider().invalidate()
    clear_connection_cache()
    return create_json_response(
        True, message="Logged out" if had_token else "No active session"
    )


@register_tool
def salesforce_auth_status() -> str:
    """Check authentication status."""
    status = get_token_provider().status()
    if not status["authenticated"]:
        status.setdefault("message", "No active session")
    return create_json_response(True, **status)
