import logging
from typing import List, Optional

from app.config import get_settings
from app.mcp.responses import run_tool
from app.mcp.server import register_tool
from app.services.deployment import DeploymentPoller, MetadataContainerManager
from app.services.metadata_service import MetadataService
from app.services.models import (
    CodeClassRequest,
    DataFieldRequest,
    DataObjectRequest,
    PermissionUpdateRequest,
    UIBundleRequest,
    build_request,
)
from app.services.salesforce import get_tooling_client

logger = logging.getLogger(__name__)


def get_metadata_service() -> MetadataService:
    """Build a MetadataService on the shared Tooling API client."""
    settings = get_settings()
    client = get_tooling_client()
    return MetadataService(
        client,
        containers=MetadataContainerManager(client),
        poller=DeploymentPoller(client, interval_seconds=settings.poll_interval_seconds),
        simple_timeout=settings.simple_deploy_timeout_seconds,
        bundle_timeout=settings.bundle_deploy_timeout_seconds,
    )


def _deploy(model_cls, **fields):
    req = build_request(model_cls, **fields)
    return get_metadata_service().deploy_artifact(req)


# =============================================================================
# APEX CLASS TOOLS
# =============================================================================

@register_tool
def create_apex_class(class_name: str, body: str, api_version: Optional[float] = None) -> str:
    """Create or update an Apex class by deploying its full body through a MetadataContainer.

    If no class with this Name exists, a new class shell is created first.
    Otherwise the existing class is redeployed with the new body. The body
    always replaces the whole class; nothing is merged.

    Args:
        class_name (str): Apex class Name, e.g. "InvoiceService".
        body (str): Full Apex source code.
        api_version (Optional[float]): API version for new classes. Defaults to 59.0.

    Returns:
        str: JSON-encoded string.

        # Success
        {
          "success": true,
          "operation": "create_apex_class",
          "message": "Apex class 'InvoiceService' created successfully",
          "id": "01p...",
          "deploy_id": "1dr...",
          "created": true
        }

        # Compile failure
        {
          "success": false,
          "operation": "create_apex_class",
          "error": "Deploy of Apex class 'InvoiceService' failed (Failed): InvoiceService line 3:5: ...",
          "error_type": "deploy_failed",
          "details": [ ...componentFailures... ]
        }
    """
    return run_tool(
        "create_apex_class", _deploy, CodeClassRequest,
        class_name=class_name, body=body, api_version=api_version,
    )


# =============================================================================
# LWC TOOLS
# =============================================================================

@register_tool
def create_lwc_component(
    component_name: str,
    html_content: str,
    js_content: str,
    master_label: Optional[str] = None,
    is_exposed: bool = False,
    targets: Optional[List[str]] = None,
    api_version: Optional[float] = None,
    description: str = "",
) -> str:
    """Create or update a Lightning Web Component bundle (HTML, JS and generated meta XML).

    The bundle header is created only when no bundle with this DeveloperName
    exists, so calling the tool again with the same name updates the files in
    place. The .js-meta.xml is generated from master_label, is_exposed,
    api_version and targets.

    Args:
        component_name (str): Bundle DeveloperName in camelCase, e.g. "accountHeader".
        html_content (str): Full <template> source.
        js_content (str): Full ES module source.
        master_label (Optional[str]): Label shown in App Builder. Defaults to the component name.
        is_exposed (bool): Expose the component to App Builder.
        targets (Optional[List[str]]): Targets such as "lightning__AppPage", kept in the given order.
        api_version (Optional[float]): API version. Defaults to 59.0.
        description (str): Optional description written to the meta XML.

    Returns:
        str: JSON-encoded string with "success", "message", "id", "deploy_id",
        "created" and the deployed "files".
    """
    return run_tool(
        "create_lwc_component", _deploy, UIBundleRequest,
        component_name=component_name,
        html_content=html_content,
        js_content=js_content,
        master_label=master_label,
        is_exposed=is_exposed,
        targets=targets or [],
        api_version=api_version,
        description=description,
    )


# =============================================================================
# CUSTOM OBJECT / FIELD TOOLS
# =============================================================================

@register_tool
def create_custom_object(
    api_name: str,
    label: str,
    plural_label: str,
    description: str = "",
    sharing_model: str = "ReadWrite",
) -> str:
    """Create a custom object with a Text name field.

    Args:
        api_name (str): Object API name; "__c" is appended when missing.
        label (str): Singular label.
        plural_label (str): Plural label.
        description (str): Optional description.
        sharing_model (str): ReadWrite, Read, Private or ControlledByParent.
    """
    return run_tool(
        "create_custom_object", _deploy, DataObjectRequest,
        api_name=api_name, label=label, plural_label=plural_label,
        description=description, sharing_model=sharing_model,
    )


@register_tool
def create_custom_field(
    object_api_name: str,
    field_api_name: str,
    label: str,
    type: str,
    length: Optional[int] = None,
    precision: Optional[int] = None,
    scale: Optional[int] = None,
    description: str = "",
    required: bool = False,
) -> str:
    """Create a custom field on an existing object.

    Args:
        object_api_name (str): Object API name, e.g. "Invoice__c" or "Account".
        field_api_name (str): Field API name; "__c" is appended when missing.
        label (str): Field label.
        type (str): Text, Number, Date, Checkbox or LongTextArea.
        length (Optional[int]): Length for Text (default 255) and LongTextArea.
        precision (Optional[int]): Total digits for Number.
        scale (Optional[int]): Decimal places for Number.
        description (str): Optional description.
        required (bool): Mark the field as required (ignored for Checkbox).
    """
    return run_tool(
        "create_custom_field", _deploy, DataFieldRequest,
        object_api_name=object_api_name, field_api_name=field_api_name, label=label,
        type=type, length=length, precision=precision, scale=scale,
        description=description, required=required,
    )


# =============================================================================
# PERMISSION TOOLS
# =============================================================================

@register_tool
def update_field_permissions(profile_name: str, field_api_name: str, editable: bool, readable: bool) -> str:
    """Set read/edit access to a field on an existing profile.

    Args:
        profile_name (str): Profile Name, e.g. "System Administrator".
        field_api_name (str): Field in Object.Field form, e.g. "Invoice__c.Amount__c".
        editable (bool): Grant edit access. Requires readable.
        readable (bool): Grant read access.
    """
    return run_tool(
        "update_field_permissions", _deploy, PermissionUpdateRequest,
        profile_name=profile_name, field_api_name=field_api_name,
        editable=editable, readable=readable,
    )


# =============================================================================
# DEPLOY STATUS
# =============================================================================

@register_tool
def get_container_deploy_status(deploy_id: str) -> str:
    """Return the current state and component failures of a ContainerAsyncRequest.

    Args:
        deploy_id (str): Id returned as "deploy_id" by create_apex_class or create_lwc_component.
    """
    return run_tool(
        "get_container_deploy_status",
        lambda: get_metadata_service().get_deploy_status(deploy_id),
    )
