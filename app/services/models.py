"""Artifact request models. Instances are immutable once built."""
import re
from typing import Literal, Optional, Tuple, Type, TypeVar

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from app.services.errors import ValidationError

DEFAULT_API_VERSION = 59.0

_CLASS_NAME = re.compile(r"^[A-Za-z][A-Za-z0-9_]*$")
# LWC bundle names must start with a lowercase letter.
_BUNDLE_NAME = re.compile(r"^[a-z][A-Za-z0-9_]*$")
_API_NAME = re.compile(r"^[A-Za-z][A-Za-z0-9_]*$")


class ArtifactRequest(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


def _require_text(value: str, what: str) -> str:
    if not value or not value.strip():
        raise ValueError(f"{what} must not be empty")
    return value


class CodeClassRequest(ArtifactRequest):
    class_name: str
    body: str
    api_version: Optional[float] = None

    @field_validator("class_name")
    @classmethod
    def check_class_name(cls, v: str) -> str:
        if not _CLASS_NAME.match(v) or "__" in v:
            raise ValueError("use letters, numbers and single underscores, starting with a letter")
        return v

    @field_validator("body")
    @classmethod
    def check_body(cls, v: str) -> str:
        return _require_text(v, "body")

    @property
    def effective_api_version(self) -> float:
        return self.api_version or DEFAULT_API_VERSION


class UIBundleRequest(ArtifactRequest):
    component_name: str
    html_content: str
    js_content: str
    master_label: Optional[str] = None
    is_exposed: bool = False
    targets: Tuple[str, ...] = ()
    api_version: Optional[float] = None
    description: str = ""

    @field_validator("component_name")
    @classmethod
    def check_component_name(cls, v: str) -> str:
        if not _BUNDLE_NAME.match(v):
            raise ValueError("must start with a lowercase letter and contain only letters, numbers, or underscores")
        return v

    @field_validator("html_content", "js_content")
    @classmethod
    def check_content(cls, v: str, info) -> str:
        return _require_text(v, info.field_name)

    @field_validator("targets", mode="before")
    @classmethod
    def none_targets(cls, v):
        return () if v is None else v

    @property
    def label(self) -> str:
        return self.master_label or self.component_name

    @property
    def effective_api_version(self) -> float:
        return self.api_version or DEFAULT_API_VERSION


class DataObjectRequest(ArtifactRequest):
    api_name: str
    label: str
    plural_label: str
    description: str = ""
    sharing_model: Literal["ReadWrite", "Read", "Private", "ControlledByParent"] = "ReadWrite"

    @field_validator("api_name")
    @classmethod
    def check_api_name(cls, v: str) -> str:
        base = v[:-3] if v.endswith("__c") else v
        if not _API_NAME.match(base) or "__" in base or base.endswith("_"):
            raise ValueError("invalid custom object API name")
        return v

    @field_validator("label", "plural_label")
    @classmethod
    def check_labels(cls, v: str, info) -> str:
        return _require_text(v, info.field_name)

    @property
    def full_name(self) -> str:
        return self.api_name if self.api_name.endswith("__c") else f"{self.api_name}__c"


FieldType = Literal["Text", "Number", "Date", "Checkbox", "LongTextArea"]


class DataFieldRequest(ArtifactRequest):
    object_api_name: str
    field_api_name: str
    label: str
    type: FieldType
    length: Optional[int] = Field(default=None, gt=0, le=131072)
    precision: Optional[int] = Field(default=None, gt=0, le=18)
    scale: Optional[int] = Field(default=None, ge=0, le=17)
    description: str = ""
    required: bool = False

    @field_validator("object_api_name", "field_api_name")
    @classmethod
    def check_names(cls, v: str, info) -> str:
        base = v[:-3] if v.endswith("__c") else v
        if not _API_NAME.match(base):
            raise ValueError(f"invalid {info.field_name}")
        return v

    @field_validator("label")
    @classmethod
    def check_label(cls, v: str) -> str:
        return _require_text(v, "label")

    @model_validator(mode="after")
    def check_type_attributes(self):
        if self.type == "Text" and self.length is not None and self.length > 255:
            raise ValueError("Text fields are limited to 255 characters; use LongTextArea")
        if self.precision is not None and self.scale is not None and self.scale > self.precision:
            raise ValueError("scale must not exceed precision")
        return self

    @property
    def full_name(self) -> str:
        name = self.field_api_name
        if name.endswith("__c"):
            name = name[:-3]
        return f"{self.object_api_name}.{name}__c"

    @property
    def effective_length(self) -> Optional[int]:
        if self.type == "Text":
            return self.length or 255
        if self.type == "LongTextArea":
            return self.length or 32768
        return None


class PermissionUpdateRequest(ArtifactRequest):
    profile_name: str
    field_api_name: str
    editable: bool
    readable: bool

    @field_validator("profile_name")
    @classmethod
    def check_profile(cls, v: str) -> str:
        return _require_text(v, "profile_name")

    @field_validator("field_api_name")
    @classmethod
    def check_field(cls, v: str) -> str:
        # Field permissions are keyed by Object.Field
        if v.count(".") != 1 or not all(v.split(".")):
            raise ValueError("must be in the form Object__c.Field__c")
        return v

    @model_validator(mode="after")
    def editable_needs_readable(self):
        if self.editable and not self.readable:
            raise ValueError("an editable field must also be readable")
        return self


R = TypeVar("R", bound=ArtifactRequest)


def build_request(model_cls: Type[R], **kwargs) -> R:
    """Build a request model, converting pydantic errors into ValidationError."""
    try:
        return model_cls(**kwargs)
    except pydantic.ValidationError as e:
        problems = [
            {"field": ".".join(str(p) for p in err["loc"]) or "request", "message": err["msg"]}
            for err in e.errors()
        ]
        summary = "; ".join(f"{p['field']}: {p['message']}" for p in problems)
        raise ValidationError(f"Invalid {model_cls.__name__}: {summary}", details=problems) from e
