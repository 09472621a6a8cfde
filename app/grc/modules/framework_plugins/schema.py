"""
Framework package schema.

A framework package is the JSON document that describes one compliance
standard: a ``manifest`` (identity + metadata) and its ``content`` (phases,
requirements, and optional policy/risk sections). Wire names are camelCase
(``phaseName``, ``mappingTags`` ...); the Python models use snake_case.

    pkg = validate(json.loads(raw_text))
    pkg.manifest.slug            # natural key of the Framework row
    pkg.content.requirements[0]  # RequirementSpec

Validation is all-or-nothing: ``validate`` either returns a fully-typed
package (absent arrays normalized to ``[]``) or raises
``PackageValidationError`` listing every offending field path.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel


class FrameworkType(str, Enum):
    GENERAL = "General"
    SECURITY = "Security"
    PRIVACY = "Privacy"
    FEDERAL = "Federal"
    STRATEGIC = "Strategic"
    QUALITY = "Quality"


class RiskLevel(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


def _none_as_empty(v: Any) -> Any:
    return [] if v is None else v


# Optional arrays: absent or null both mean []
StrList = Annotated[list[str], BeforeValidator(_none_as_empty)]


class _PackageModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class PackageManifest(_PackageModel):
    id: str
    slug: str = Field(..., min_length=1, description="Stable external identifier; natural key of the framework")
    name: str
    version: str
    author: str
    description: str
    type: FrameworkType
    tags: StrList = Field(default_factory=list)
    icon: str | None = None
    min_app_version: str | None = None


class PhaseSpec(_PackageModel):
    name: str = Field(..., min_length=1)
    description: str | None = None
    order: float = Field(..., allow_inf_nan=False)

    @field_validator("order", mode="before")
    @classmethod
    def _order_is_number(cls, v: Any) -> Any:
        # JSON numbers only: no numeric strings, no booleans
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            raise ValueError("order must be a number")
        return v


class RequirementSpec(_PackageModel):
    identifier: str = Field(..., min_length=1)
    title: str
    description: str
    guidance: str | None = None
    phase_name: str | None = None
    mapping_tags: StrList = Field(default_factory=list)


class PolicySpec(_PackageModel):
    name: str
    content: str
    mapped_controls: StrList = Field(default_factory=list)


class RiskSpec(_PackageModel):
    title: str
    description: str | None = None
    inherent_risk: RiskLevel
    mapped_controls: StrList = Field(default_factory=list)


class PackageContent(_PackageModel):
    phases: list[PhaseSpec]
    requirements: list[RequirementSpec]
    policies: Annotated[list[PolicySpec], BeforeValidator(_none_as_empty)] = Field(default_factory=list)
    risks: Annotated[list[RiskSpec], BeforeValidator(_none_as_empty)] = Field(default_factory=list)


class FrameworkPackage(_PackageModel):
    manifest: PackageManifest
    content: PackageContent


# ---------------------------------------------------------------------------
# Validation errors
# ---------------------------------------------------------------------------

ROOT_PATH = "<root>"

_EXPECTED_BY_TYPE = {
    "missing": "required field",
    "string_type": "string",
    "string_too_short": "non-empty string",
    "list_type": "array",
    "model_type": "object",
    "model_attributes_type": "object",
    "dict_type": "object",
    "float_type": "number",
    "float_parsing": "number",
    "finite_number": "finite number",
}


@dataclass(frozen=True)
class FieldError:
    path: str
    message: str
    expected: str
    actual: str

    def __str__(self) -> str:
        return f"{self.path}: {self.message} (expected {self.expected}, got {self.actual})"


class PackageValidationError(ValueError):
    """Raised when a raw value does not match the framework package shape."""

    def __init__(self, errors: list[FieldError]):
        self.errors = list(errors)
        lines = "\n".join(f"  - {e}" for e in self.errors)
        super().__init__(f"Invalid framework package ({len(self.errors)} error(s)):\n{lines}")

    @property
    def paths(self) -> list[str]:
        return [e.path for e in self.errors]

    def to_dict(self) -> dict[str, Any]:
        return {"error": "Invalid framework package.", "fields": [asdict(e) for e in self.errors]}

    @classmethod
    def from_pydantic(cls, exc: PydanticValidationError) -> "PackageValidationError":
        return cls([_field_error(err) for err in exc.errors()])


def format_path(loc: tuple[int | str, ...]) -> str:
    """("content", "requirements", 3, "identifier") -> "content.requirements[3].identifier"."""
    out = ""
    for part in loc:
        if isinstance(part, int):
            out += f"[{part}]"
        else:
            out += f".{part}" if out else str(part)
    return out or ROOT_PATH


def _json_type(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (list, tuple)):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


def _field_error(err: dict[str, Any]) -> FieldError:
    etype = err.get("type", "")
    ctx = err.get("ctx") or {}
    if etype == "enum":
        expected = f"one of {ctx.get('expected')}"
    elif etype == "value_error":
        expected = "number" if err.get("loc", ())[-1:] == ("order",) else "valid value"
    else:
        expected = _EXPECTED_BY_TYPE.get(etype, etype)

    if etype == "missing":
        actual = "nothing"
    elif etype == "enum":
        actual = repr(err.get("input"))
    else:
        actual = _json_type(err.get("input"))

    return FieldError(
        path=format_path(tuple(err.get("loc", ()))),
        message=err.get("msg", "Invalid value"),
        expected=expected,
        actual=actual,
    )


def validate(raw: Any) -> FrameworkPackage:
    """
    Validate an arbitrary parsed JSON value as a framework package.

    Pure: no I/O, no side effects. Raises PackageValidationError on any mismatch.
    """
    try:
        return FrameworkPackage.model_validate(raw)
    except PydanticValidationError as exc:
        raise PackageValidationError.from_pydantic(exc) from None


def parse_json(data: str | bytes) -> Any:
    """Decode JSON text; malformed or non-UTF-8 input is reported at the root path."""
    try:
        return json.loads(data)
    except UnicodeDecodeError as e:
        raise PackageValidationError(
            [FieldError(ROOT_PATH, f"Package is not UTF-8 text: {e.reason}", "JSON document", "binary data")]
        ) from None
    except json.JSONDecodeError as e:
        raise PackageValidationError(
            [FieldError(ROOT_PATH, f"Invalid JSON: {e.msg} (line {e.lineno} column {e.colno})", "JSON document", "malformed text")]
        ) from None


def validate_json(data: str | bytes) -> FrameworkPackage:
    """Parse JSON text (upload body, package file) and validate it."""
    return validate(parse_json(data))
