"""Tests for the per-artifact create-or-update strategies.

Covers:
- Apex class create path: create -> member -> deploy -> container delete
- Apex class update path: no create, member carries the new body
- LWC bundle: header created once, members ordered js, html, meta xml
- Manifest rendering for empty and ordered targets
- Container deleted exactly once on success, deploy failure and exceptions
- Synchronous custom object / field / profile permission writes
- Duplicate lookup rows and the closed dispatch
"""
import pytest
from lxml import etree

from app.services.errors import (
    DeployFailedError,
    DuplicateIdentityError,
    NotFoundError,
    PollTimeoutError,
    RemoteApiError,
)
from app.services.metadata_service import PNS, bundle_files, render_bundle_manifest
from app.services.models import (
    CodeClassRequest,
    DataFieldRequest,
    DataObjectRequest,
    PermissionUpdateRequest,
    UIBundleRequest,
)
from conftest import FakeToolingClient


def _ns(tag):
    return f"{{{PNS}}}{tag}"


@pytest.fixture
def bundle_request():
    return UIBundleRequest(
        component_name="bar",
        is_exposed=True,
        targets=["AppPage"],
        html_content="<template></template>",
        js_content="export default class{}",
    )


class TestCodeClass:
    def test_new_class_write_order(self, make_service):
        client = FakeToolingClient()
        result = make_service(client).upsert_code_class(
            CodeClassRequest(class_name="Foo", body="class Foo {}")
        )

        assert client.write_sequence() == [
            "create:MetadataContainer",
            "create:ApexClass",
            "create:ApexClassMember",
            "create:ContainerAsyncRequest",
            "delete:MetadataContainer",
        ]
        _, _, shell = client.created("ApexClass")[0]
        assert shell["Body"] == "class Foo {}"
        assert shell["ApiVersion"] == 59.0

        assert result["success"] is True
        assert "Foo" in result["message"]
        assert result["created"] is True

    def test_existing_class_is_updated_without_create(self, make_service):
        client = FakeToolingClient(query_results={"FROM ApexClass": [{"Id": "01pEXIST", "ApiVersion": 58.0}]})
        result = make_service(client).upsert_code_class(
            CodeClassRequest(class_name="Foo", body="class Foo { void x() {} }")
        )

        assert client.created("ApexClass") == []
        members = client.created("ApexClassMember")
        assert len(members) == 1
        assert members[0][2]["ContentEntityId"] == "01pEXIST"
        assert members[0][2]["Body"] == "class Foo { void x() {} }"
        assert result["id"] == "01pEXIST"
        assert result["created"] is False

    def test_lookup_quotes_name(self, make_service):
        client = FakeToolingClient()
        make_service(client).upsert_code_class(CodeClassRequest(class_name="Foo", body="class Foo {}"))
        soql = client.calls[0][1]
        assert "FROM ApexClass WHERE Name = 'Foo'" in soql

    def test_deploy_failure_raises_and_closes_container(self, make_service):
        client = FakeToolingClient(
            states=["Queued", "Failed"],
            status_record={"DeployDetails": {"componentFailures": [
                {"fileName": "Foo", "lineNumber": 1, "problem": "Missing ';'"},
            ]}},
        )
        with pytest.raises(DeployFailedError, match="Missing ';'"):
            make_service(client).upsert_code_class(CodeClassRequest(class_name="Foo", body="class Foo {"))

        assert len(client.deleted("MetadataContainer")) == 1

    def test_exception_mid_sequence_closes_container(self, make_service):
        client = FakeToolingClient()
        client.fail_on[("create", "ApexClassMember")] = RemoteApiError(400, [{"message": "bad", "errorCode": "X"}])
        with pytest.raises(RemoteApiError):
            make_service(client).upsert_code_class(CodeClassRequest(class_name="Foo", body="class Foo {}"))

        assert len(client.deleted("MetadataContainer")) == 1
        assert client.created("ContainerAsyncRequest") == []

    def test_poll_timeout_closes_container(self, make_service, sleeps):
        client = FakeToolingClient(states=["Queued"])
        with pytest.raises(PollTimeoutError) as exc:
            make_service(client, simple_timeout=3).upsert_code_class(
                CodeClassRequest(class_name="Foo", body="class Foo {}")
            )

        assert exc.value.last_state == "Queued"
        assert len(client.deleted("MetadataContainer")) == 1
        assert len(sleeps) == 2

    def test_duplicate_rows_are_rejected_before_any_write(self, make_service):
        client = FakeToolingClient(query_results={"FROM ApexClass": [{"Id": "a"}, {"Id": "b"}]})
        with pytest.raises(DuplicateIdentityError):
            make_service(client).upsert_code_class(CodeClassRequest(class_name="Foo", body="class Foo {}"))
        assert client.write_sequence() == []


class TestUIBundle:
    def test_new_bundle_end_to_end(self, make_service, bundle_request):
        client = FakeToolingClient()
        result = make_service(client).upsert_ui_bundle(bundle_request)

        assert len(client.created("LightningComponentBundle")) == 1
        paths = [c[2]["FilePath"] for c in client.created("LightningComponentResource")]
        assert paths == ["lwc/bar/bar.js", "lwc/bar/bar.html", "lwc/bar/bar.js-meta.xml"]
        assert client.write_sequence()[-2:] == ["create:ContainerAsyncRequest", "delete:MetadataContainer"]
        assert result["success"] is True
        assert result["created"] is True

    def test_header_metadata(self, make_service, bundle_request):
        client = FakeToolingClient()
        make_service(client).upsert_ui_bundle(bundle_request)

        _, _, header = client.created("LightningComponentBundle")[0]
        assert header == {
            "FullName": "bar",
            "Metadata": {"apiVersion": 59.0, "isExposed": True, "masterLabel": "bar"},
        }

    def test_members_reference_bundle(self, make_service, bundle_request):
        client = FakeToolingClient()
        result = make_service(client).upsert_ui_bundle(bundle_request)

        for _, _, fields in client.created("LightningComponentResource"):
            assert fields["LightningComponentBundleId"] == result["id"]
            assert fields["ContentEntityId"] == result["id"]
            assert "MetadataContainerId" in fields

    def test_repeat_request_does_not_create_second_header(self, make_service, bundle_request):
        client = FakeToolingClient()
        service = make_service(client)
        first = service.upsert_ui_bundle(bundle_request)

        # The org now knows the bundle.
        client.query_results["FROM LightningComponentBundle"] = [{"Id": first["id"]}]
        second = service.upsert_ui_bundle(bundle_request)

        assert len(client.created("LightningComponentBundle")) == 1
        assert second["success"] is True
        assert second["created"] is False
        assert second["id"] == first["id"]
        assert len(client.deleted("MetadataContainer")) == 2

    def test_existing_files_are_targeted_by_their_own_ids(self, make_service, bundle_request):
        client = FakeToolingClient(query_results={
            "FROM LightningComponentBundle": [{"Id": "0RbEXIST"}],
            "FROM LightningComponentResource": [
                {"Id": "0RdJS", "FilePath": "lwc/bar/bar.js"},
                {"Id": "0RdHTML", "FilePath": "lwc/bar/bar.html"},
            ],
        })
        make_service(client).upsert_ui_bundle(bundle_request)

        queries = [c[1] for c in client.calls if c[0] == "query"]
        assert queries[1] == (
            "SELECT Id, FilePath FROM LightningComponentResource "
            "WHERE LightningComponentBundleId = '0RbEXIST'"
        )
        members = [c[2] for c in client.created("LightningComponentResource")]
        assert [m["ContentEntityId"] for m in members] == ["0RdJS", "0RdHTML", "0RbEXIST"]
        assert all(m["LightningComponentBundleId"] == "0RbEXIST" for m in members)
        assert client.created("LightningComponentBundle") == []

    def test_new_bundle_skips_resource_lookup(self, make_service, bundle_request):
        client = FakeToolingClient()
        make_service(client).upsert_ui_bundle(bundle_request)
        assert [c for c in client.calls if c[0] == "query" and "LightningComponentResource" in c[1]] == []

    def test_bundle_uses_longer_budget(self, make_service, bundle_request, sleeps):
        client = FakeToolingClient(states=["Queued"])
        with pytest.raises(PollTimeoutError) as exc:
            make_service(client).upsert_ui_bundle(bundle_request)
        assert exc.value.timeout_seconds == 60
        assert len(client.deleted("MetadataContainer")) == 1

    def test_failed_member_write_still_closes_container(self, make_service, bundle_request):
        client = FakeToolingClient()
        client.fail_on[("create", "LightningComponentResource")] = RemoteApiError(400, "dup")
        with pytest.raises(RemoteApiError):
            make_service(client).upsert_ui_bundle(bundle_request)
        assert len(client.deleted("MetadataContainer")) == 1


class TestManifest:
    def test_fields_echoed(self, bundle_request):
        root = etree.fromstring(render_bundle_manifest(bundle_request).encode("utf-8"))

        assert root.tag == _ns("LightningComponentBundle")
        assert root.findtext(_ns("apiVersion")) == "59.0"
        assert root.findtext(_ns("isExposed")) == "true"
        assert root.findtext(_ns("masterLabel")) == "bar"

    def test_empty_targets_render_empty_section(self):
        req = UIBundleRequest(component_name="bar", html_content="<template></template>",
                              js_content="export default class{}", targets=[])
        root = etree.fromstring(render_bundle_manifest(req).encode("utf-8"))

        targets = root.find(_ns("targets"))
        assert targets is not None
        assert len(targets) == 0

    def test_missing_targets_render_empty_section(self):
        req = UIBundleRequest(component_name="bar", html_content="<template></template>",
                              js_content="export default class{}", targets=None)
        root = etree.fromstring(render_bundle_manifest(req).encode("utf-8"))
        assert len(root.find(_ns("targets"))) == 0

    def test_targets_keep_input_order(self):
        req = UIBundleRequest(component_name="bar", html_content="<template></template>",
                              js_content="export default class{}", targets=["A", "B"])
        root = etree.fromstring(render_bundle_manifest(req).encode("utf-8"))

        assert [t.text for t in root.find(_ns("targets"))] == ["A", "B"]

    def test_label_and_description(self):
        req = UIBundleRequest(component_name="bar", html_content="<template></template>",
                              js_content="export default class{}", master_label="Bar Card",
                              description="Shows a bar", api_version=60.0)
        root = etree.fromstring(render_bundle_manifest(req).encode("utf-8"))

        assert root.findtext(_ns("masterLabel")) == "Bar Card"
        assert root.findtext(_ns("description")) == "Shows a bar"
        assert root.findtext(_ns("apiVersion")) == "60.0"

    def test_manifest_is_last_file(self, bundle_request):
        files = bundle_files(bundle_request)
        assert [f["Format"] for f in files] == ["js", "html", "xml"]
        assert files[-1]["Source"].startswith("<?xml")


class TestSynchronousWrites:
    def test_custom_object(self, make_service):
        client = FakeToolingClient()
        result = make_service(client).create_data_object(
            DataObjectRequest(api_name="Invoice", label="Invoice", plural_label="Invoices")
        )

        assert client.write_sequence() == ["create:CustomObject"]
        _, _, payload = client.created("CustomObject")[0]
        assert payload["FullName"] == "Invoice__c"
        assert payload["Metadata"]["nameField"] == {"type": "Text", "label": "Invoice Name"}
        assert payload["Metadata"]["sharingModel"] == "ReadWrite"
        assert payload["Metadata"]["deploymentStatus"] == "Deployed"
        assert result["success"] is True
        assert "Invoice__c" in result["message"]

    def test_custom_field_text(self, make_service):
        client = FakeToolingClient()
        make_service(client).create_data_field(
            DataFieldRequest(object_api_name="Invoice__c", field_api_name="Code__c", label="Code", type="Text")
        )

        _, _, payload = client.created("CustomField")[0]
        assert payload["FullName"] == "Invoice__c.Code__c"
        assert payload["Metadata"] == {"label": "Code", "type": "Text", "length": 255}

    def test_custom_field_number(self, make_service):
        client = FakeToolingClient()
        make_service(client).create_data_field(
            DataFieldRequest(object_api_name="Invoice__c", field_api_name="Amount", label="Amount",
                             type="Number", precision=10, scale=2, required=True)
        )

        _, _, payload = client.created("CustomField")[0]
        assert payload["FullName"] == "Invoice__c.Amount__c"
        assert payload["Metadata"]["precision"] == 10
        assert payload["Metadata"]["scale"] == 2
        assert payload["Metadata"]["required"] is True

    def test_checkbox_gets_default(self, make_service):
        client = FakeToolingClient()
        make_service(client).create_data_field(
            DataFieldRequest(object_api_name="Invoice__c", field_api_name="Paid__c", label="Paid", type="Checkbox")
        )
        _, _, payload = client.created("CustomField")[0]
        assert payload["Metadata"]["defaultValue"] == "false"
        assert "length" not in payload["Metadata"]

    def test_duplicate_name_rejection_propagates(self, make_service):
        client = FakeToolingClient()
        client.fail_on[("create", "CustomObject")] = RemoteApiError(
            400, [{"message": "duplicate value found", "errorCode": "DUPLICATE_DEVELOPER_NAME"}]
        )
        with pytest.raises(RemoteApiError, match="DUPLICATE_DEVELOPER_NAME"):
            make_service(client).create_data_object(
                DataObjectRequest(api_name="Invoice__c", label="Invoice", plural_label="Invoices")
            )

    def test_field_permissions(self, make_service):
        client = FakeToolingClient(query_results={"FROM Profile": [{"Id": "00eADMIN", "Name": "Admin"}]})
        result = make_service(client).update_field_permissions(
            PermissionUpdateRequest(profile_name="Admin", field_api_name="Invoice__c.Code__c",
                                    editable=True, readable=True)
        )

        assert client.write_sequence() == ["update:Profile"]
        _, _, record_id, payload = [c for c in client.calls if c[0] == "update"][0]
        assert record_id == "00eADMIN"
        assert payload["Metadata"]["fieldPermissions"] == [
            {"field": "Invoice__c.Code__c", "editable": True, "readable": True}
        ]
        assert result["id"] == "00eADMIN"

    def test_missing_profile(self, make_service):
        client = FakeToolingClient()
        with pytest.raises(NotFoundError):
            make_service(client).update_field_permissions(
                PermissionUpdateRequest(profile_name="Ghost", field_api_name="A__c.B__c",
                                        editable=False, readable=True)
            )
        assert client.write_sequence() == []


class TestDispatch:
    def test_routes_each_request_type(self, make_service, bundle_request):
        client = FakeToolingClient(query_results={"FROM Profile": [{"Id": "00e1"}]})
        service = make_service(client)

        service.deploy_artifact(CodeClassRequest(class_name="Foo", body="class Foo {}"))
        service.deploy_artifact(bundle_request)
        service.deploy_artifact(DataObjectRequest(api_name="Inv", label="Inv", plural_label="Invs"))
        service.deploy_artifact(DataFieldRequest(object_api_name="Inv__c", field_api_name="F",
                                                 label="F", type="Date"))
        service.deploy_artifact(PermissionUpdateRequest(profile_name="P", field_api_name="Inv__c.F__c",
                                                        editable=False, readable=True))

        written = {c[1] for c in client.calls if c[0] in ("create", "update")}
        assert {"ApexClass", "LightningComponentBundle", "CustomObject", "CustomField", "Profile"} <= written

    def test_unknown_request_type(self, make_service):
        with pytest.raises(TypeError):
            make_service(FakeToolingClient()).deploy_artifact(object())

    def test_deploy_status(self, make_service):
        client = FakeToolingClient(states=["InProgress"])
        status = make_service(client).get_deploy_status("1dr9")
        assert status == {
            "deploy_id": "1dr9",
            "completed": False,
            "state": "InProgress",
            "error_message": None,
            "component_failures": [],
        }
