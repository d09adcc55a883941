"""Create-or-update strategies for each artifact kind.

Apex classes and LWC bundles are written through a MetadataContainer and an
asynchronous ContainerAsyncRequest. Custom objects, custom fields and profile
field permissions are written with one synchronous Tooling API call.
"""
import logging
from typing import Any, Dict, List, Optional

from lxml import etree
from simple_salesforce import format_soql

from app.services.deployment import (
    BUNDLE_DEPLOY_TIMEOUT,
    SIMPLE_DEPLOY_TIMEOUT,
    DeploymentPoller,
    MetadataContainerManager,
    raise_for_result,
)
from app.services.errors import DuplicateIdentityError, NotFoundError
from app.services.models import (
    ArtifactRequest,
    CodeClassRequest,
    DataFieldRequest,
    DataObjectRequest,
    PermissionUpdateRequest,
    UIBundleRequest,
)

logger = logging.getLogger(__name__)

PNS = "http://soap.sforce.com/2006/04/metadata"

APEX_MEMBER_TYPE = "ApexClassMember"
BUNDLE_MEMBER_TYPE = "LightningComponentResource"


def render_bundle_manifest(req: UIBundleRequest) -> str:
    """Generate the .js-meta.xml descriptor for an LWC bundle.

    The <targets> element is always written, empty when no targets were given.
    """
    root = etree.Element(etree.QName(PNS, "LightningComponentBundle"), nsmap={None: PNS})
    etree.SubElement(root, etree.QName(PNS, "apiVersion")).text = str(req.effective_api_version)
    etree.SubElement(root, etree.QName(PNS, "isExposed")).text = str(req.is_exposed).lower()
    etree.SubElement(root, etree.QName(PNS, "masterLabel")).text = req.label
    if req.description:
        etree.SubElement(root, etree.QName(PNS, "description")).text = req.description

    targets = etree.SubElement(root, etree.QName(PNS, "targets"))
    for target in req.targets:
        etree.SubElement(targets, etree.QName(PNS, "target")).text = target

    return etree.tostring(
        root, encoding="UTF-8", xml_declaration=True, pretty_print=True
    ).decode("utf-8")


def bundle_files(req: UIBundleRequest) -> List[Dict[str, str]]:
    """Bundle resources in deploy order: logic, markup, then manifest."""
    base = f"lwc/{req.component_name}/{req.component_name}"
    return [
        {"FilePath": f"{base}.js", "Format": "js", "Source": req.js_content},
        {"FilePath": f"{base}.html", "Format": "html", "Source": req.html_content},
        {"FilePath": f"{base}.js-meta.xml", "Format": "xml", "Source": render_bundle_manifest(req)},
    ]


class MetadataService:
    def __init__(self, client, containers: Optional[MetadataContainerManager] = None,
                 poller: Optional[DeploymentPoller] = None,
                 simple_timeout: int = SIMPLE_DEPLOY_TIMEOUT,
                 bundle_timeout: int = BUNDLE_DEPLOY_TIMEOUT):
        self.client = client
        self.containers = containers or MetadataContainerManager(client)
        self.poller = poller or DeploymentPoller(client)
        self.simple_timeout = simple_timeout
        self.bundle_timeout = bundle_timeout

    # -------------------------------------------------------------------------
    # Identity lookup
    # -------------------------------------------------------------------------

    def _lookup_one(self, soql: str, what: str) -> Optional[Dict[str, Any]]:
        records = self.client.query(soql)
        if len(records) > 1:
            ids = [r.get("Id") for r in records]
            raise DuplicateIdentityError(
                f"{what} matched {len(records)} records; refusing to pick one", details=ids
            )
        return records[0] if records else None

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    def deploy_artifact(self, req: ArtifactRequest) -> Dict[str, Any]:
        if isinstance(req, CodeClassRequest):
            return self.upsert_code_class(req)
        if isinstance(req, UIBundleRequest):
            return self.upsert_ui_bundle(req)
        if isinstance(req, DataObjectRequest):
            return self.create_data_object(req)
        if isinstance(req, DataFieldRequest):
            return self.create_data_field(req)
        if isinstance(req, PermissionUpdateRequest):
            return self.update_field_permissions(req)
        raise TypeError(f"Unsupported artifact request: {type(req).__name__}")

    # -------------------------------------------------------------------------
    # Apex class
    # -------------------------------------------------------------------------

    def upsert_code_class(self, req: CodeClassRequest) -> Dict[str, Any]:
        existing = self._lookup_one(
            format_soql("SELECT Id, ApiVersion FROM ApexClass WHERE Name = {}", req.class_name),
            f"ApexClass '{req.class_name}'",
        )

        created = False
        with self.containers.scoped(f"apex_{req.class_name}") as container_id:
            if existing:
                class_id = existing["Id"]
            else:
                logger.info("Creating Apex class shell %s", req.class_name)
                class_id = self.client.create("ApexClass", {
                    "Name": req.class_name,
                    "Body": req.body,
                    "ApiVersion": req.effective_api_version,
                })
                created = True

            self.containers.add_member(container_id, APEX_MEMBER_TYPE, class_id, req.body)
            deploy_id = self.containers.trigger_deploy(container_id)
            result = self.poller.poll(deploy_id, self.simple_timeout)
            raise_for_result(result, f"Apex class '{req.class_name}'")

        verb = "created" if created else "updated"
        return {
            "success": True,
            "message": f"Apex class '{req.class_name}' {verb} successfully",
            "id": class_id,
            "deploy_id": deploy_id,
            "created": created,
        }

    # -------------------------------------------------------------------------
    # LWC bundle
    # -------------------------------------------------------------------------

    def upsert_ui_bundle(self, req: UIBundleRequest) -> Dict[str, Any]:
        existing = self._lookup_one(
            format_soql(
                "SELECT Id FROM LightningComponentBundle WHERE DeveloperName = {}",
                req.component_name,
            ),
            f"LightningComponentBundle '{req.component_name}'",
        )

        # Existing resources keyed by FilePath.
        resources: Dict[str, str] = {}
        if existing:
            resources = self._bundle_resources(existing["Id"])

        created = False
        files = bundle_files(req)
        with self.containers.scoped(f"lwc_{req.component_name}") as container_id:
            if existing:
                bundle_id = existing["Id"]
            else:
                logger.info("Creating LWC bundle header %s", req.component_name)
                header = {
                    "apiVersion": req.effective_api_version,
                    "isExposed": req.is_exposed,
                    "masterLabel": req.label,
                }
                if req.description:
                    header["description"] = req.description
                bundle_id = self.client.create(
                    "LightningComponentBundle",
                    {"FullName": req.component_name, "Metadata": header},
                )
                created = True

            # One at a time, js then html then meta xml.
            for f in files:
                self.containers.add_member(
                    container_id,
                    BUNDLE_MEMBER_TYPE,
                    resources.get(f["FilePath"], bundle_id),
                    LightningComponentBundleId=bundle_id,
                    **f,
                )

            deploy_id = self.containers.trigger_deploy(container_id)
            result = self.poller.poll(deploy_id, self.bundle_timeout)
            raise_for_result(result, f"LWC component '{req.component_name}'")

        verb = "created" if created else "updated"
        return {
            "success": True,
            "message": f"LWC component '{req.component_name}' {verb} successfully",
            "id": bundle_id,
            "deploy_id": deploy_id,
            "created": created,
            "files": [f["FilePath"] for f in files],
        }

    def _bundle_resources(self, bundle_id: str) -> Dict[str, str]:
        records = self.client.query(format_soql(
            "SELECT Id, FilePath FROM LightningComponentResource WHERE LightningComponentBundleId = {}",
            bundle_id,
        ))
        return {r["FilePath"]: r["Id"] for r in records}

    # -------------------------------------------------------------------------
    # Custom object / field
    # -------------------------------------------------------------------------

    def create_data_object(self, req: DataObjectRequest) -> Dict[str, Any]:
        metadata = {
            "label": req.label,
            "pluralLabel": req.plural_label,
            "nameField": {"type": "Text", "label": f"{req.label} Name"},
            "deploymentStatus": "Deployed",
            "sharingModel": req.sharing_model,
        }
        if req.description:
            metadata["description"] = req.description

        object_id = self.client.create("CustomObject", {"FullName": req.full_name, "Metadata": metadata})
        logger.info("Created custom object %s (%s)", req.full_name, object_id)
        return {
            "success": True,
            "message": f"Custom object '{req.full_name}' created successfully",
            "id": object_id,
        }

    def create_data_field(self, req: DataFieldRequest) -> Dict[str, Any]:
        metadata: Dict[str, Any] = {"label": req.label, "type": req.type}
        if req.effective_length is not None:
            metadata["length"] = req.effective_length
        if req.type == "LongTextArea":
            metadata["visibleLines"] = 3
        if req.type == "Number":
            metadata["precision"] = req.precision or 18
            metadata["scale"] = req.scale or 0
        if req.type == "Checkbox":
            # Checkbox fields require a default and cannot be required.
            metadata["defaultValue"] = "false"
        elif req.required:
            metadata["required"] = True
        if req.description:
            metadata["description"] = req.description

        field_id = self.client.create("CustomField", {"FullName": req.full_name, "Metadata": metadata})
        logger.info("Created custom field %s (%s)", req.full_name, field_id)
        return {
            "success": True,
            "message": f"Custom field '{req.full_name}' created successfully",
            "id": field_id,
        }

    # -------------------------------------------------------------------------
    # Profile field permissions
    # -------------------------------------------------------------------------

    def update_field_permissions(self, req: PermissionUpdateRequest) -> Dict[str, Any]:
        profile = self._lookup_one(
            format_soql("SELECT Id, Name FROM Profile WHERE Name = {}", req.profile_name),
            f"Profile '{req.profile_name}'",
        )
        if not profile:
            raise NotFoundError(f"Profile '{req.profile_name}' not found")

        self.client.update("Profile", profile["Id"], {
            "Metadata": {
                "fieldPermissions": [{
                    "field": req.field_api_name,
                    "editable": req.editable,
                    "readable": req.readable,
                }]
            }
        })
        logger.info("Updated %s permissions on profile %s", req.field_api_name, req.profile_name)
        return {
            "success": True,
            "message": (
                f"Permissions for '{req.field_api_name}' updated on profile '{req.profile_name}' "
                f"(readable={req.readable}, editable={req.editable})"
            ),
            "id": profile["Id"],
        }

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    def get_deploy_status(self, deploy_id: str) -> Dict[str, Any]:
        result = self.poller.status(deploy_id)
        return {
            "deploy_id": deploy_id,
            "completed": result.success,
            "state": result.state,
            "error_message": result.error_message,
            "component_failures": result.component_failures,
        }
