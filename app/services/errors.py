"""Error types raised by the Tooling API gateway and the deployment orchestrator."""
from typing import Any, Dict, List, Optional


class MetadataDeployError(Exception):
    """Base class for every error surfaced to a tool caller."""

    error_type = "metadata_deploy_error"

    def __init__(self, message: str, details: Any = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.message,
            "error_type": self.error_type,
            "details": self.details,
        }


class ValidationError(MetadataDeployError):
    """Request is missing or has malformed fields. Raised before any remote call."""

    error_type = "validation_error"


class AuthenticationError(MetadataDeployError):
    error_type = "authentication_error"


class TransportError(MetadataDeployError):
    """Network level failure talking to the org."""

    error_type = "transport_error"


class RemoteApiError(MetadataDeployError):
    """Non-2xx response from the platform."""

    error_type = "remote_api_error"

    def __init__(self, status: int, raw_body: Any, message: Optional[str] = None):
        self.status = status
        self.raw_body = raw_body
        super().__init__(message or _describe_api_error(status, raw_body), details=raw_body)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["status"] = self.status
        return data


class NotFoundError(MetadataDeployError):
    error_type = "not_found"


class DuplicateIdentityError(MetadataDeployError):
    """An identity lookup matched more than one remote record."""

    error_type = "duplicate_identity"


class DeployFailedError(MetadataDeployError):
    """Container deploy reached a terminal state other than Completed."""

    error_type = "deploy_failed"

    def __init__(
        self,
        message: str,
        deploy_id: str,
        state: str,
        component_failures: Optional[List[Dict[str, Any]]] = None,
    ):
        self.deploy_id = deploy_id
        self.state = state
        self.component_failures = component_failures or []
        super().__init__(message, details=self.component_failures or None)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({"deploy_id": self.deploy_id, "state": self.state})
        return data


class PollTimeoutError(MetadataDeployError):
    """No terminal state was observed within the polling budget."""

    error_type = "poll_timeout"

    def __init__(self, deploy_id: str, last_state: Optional[str], timeout_seconds: int):
        self.deploy_id = deploy_id
        self.last_state = last_state
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Deploy {deploy_id} did not finish within {timeout_seconds} status checks "
            f"(last state: {last_state or 'unknown'})"
        )

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({"deploy_id": self.deploy_id, "last_state": self.last_state})
        return data


def _describe_api_error(status: int, raw_body: Any) -> str:
    # Salesforce REST errors come back as [{"message": ..., "errorCode": ...}]
    if isinstance(raw_body, list) and raw_body and isinstance(raw_body[0], dict):
        parts = [
            f"{e.get('errorCode', 'ERROR')}: {e.get('message', '')}".strip()
            for e in raw_body
        ]
        return f"Tooling API error ({status}): " + "; ".join(parts)
    if isinstance(raw_body, dict) and raw_body.get("errors"):
        return f"Tooling API error ({status}): {raw_body['errors']}"
    return f"Tooling API error ({status}): {raw_body}"
