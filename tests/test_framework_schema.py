"""Tests for framework package validation."""
import copy
import json

import pytest

from app.grc.modules.framework_plugins.schema import (
    ROOT_PATH,
    FrameworkPackage,
    FrameworkType,
    PackageValidationError,
    RiskLevel,
    format_path,
    validate,
    validate_json,
)

BASE = {
    "manifest": {
        "id": "demo-std-1",
        "slug": "demo-std",
        "name": "Demo Standard",
        "version": "1.0",
        "author": "Compliance Team",
        "description": "A demo standard.",
        "type": "Security",
    },
    "content": {
        "phases": [{"name": "Plan", "order": 1}],
        "requirements": [
            {"identifier": "DS-1", "title": "Do the thing", "description": "Do it well.", "phaseName": "Plan"}
        ],
    },
}


def _raw(**content_overrides):
    raw = copy.deepcopy(BASE)
    raw["content"].update(content_overrides)
    return raw


def _paths(raw):
    with pytest.raises(PackageValidationError) as exc:
        validate(raw)
    return exc.value.paths


class TestValidPackages:
    def test_minimal_package_is_typed(self):
        pkg = validate(_raw())
        assert isinstance(pkg, FrameworkPackage)
        assert pkg.manifest.slug == "demo-std"
        assert pkg.manifest.type is FrameworkType.SECURITY
        assert pkg.content.phases[0].order == 1.0
        assert pkg.content.requirements[0].phase_name == "Plan"

    def test_optional_arrays_default_to_empty(self):
        pkg = validate(_raw())
        assert pkg.manifest.tags == []
        assert pkg.content.policies == []
        assert pkg.content.risks == []
        assert pkg.content.requirements[0].mapping_tags == []
        assert pkg.content.requirements[0].guidance is None

    def test_camel_case_fields(self):
        raw = _raw(
            requirements=[
                {
                    "identifier": "DS-1",
                    "title": "t",
                    "description": "d",
                    "mappingTags": ["access-control", "iam"],
                }
            ],
            risks=[{"title": "Data breach", "inherentRisk": "Critical", "mappedControls": ["DS-1"]}],
        )
        raw["manifest"]["minAppVersion"] = "2.4.0"
        pkg = validate(raw)
        assert pkg.manifest.min_app_version == "2.4.0"
        assert pkg.content.requirements[0].mapping_tags == ["access-control", "iam"]
        assert pkg.content.risks[0].inherent_risk is RiskLevel.CRITICAL
        assert pkg.content.risks[0].mapped_controls == ["DS-1"]

    def test_unknown_keys_ignored(self):
        raw = _raw()
        raw["manifest"]["homepage"] = "https://example.com"
        raw["content"]["evidence"] = [{"x": 1}]
        assert validate(raw).manifest.slug == "demo-std"

    def test_fractional_order_allowed(self):
        pkg = validate(_raw(phases=[{"name": "Plan", "order": 1.5}]))
        assert pkg.content.phases[0].order == 1.5

    def test_null_arrays_normalized(self):
        raw = _raw(
            requirements=[{"identifier": "DS-1", "title": "t", "description": "d", "guidance": None, "mappingTags": None}],
            policies=None,
            risks=[{"title": "Outage", "inherentRisk": "Low", "mappedControls": None}],
        )
        raw["manifest"]["tags"] = None
        pkg = validate(raw)
        assert pkg.manifest.tags == []
        assert pkg.content.requirements[0].mapping_tags == []
        assert pkg.content.requirements[0].guidance is None
        assert pkg.content.policies == []
        assert pkg.content.risks[0].mapped_controls == []

    def test_null_required_arrays_rejected(self):
        assert _paths(_raw(phases=None)) == ["content.phases"]

    def test_policy_defaults(self):
        pkg = validate(_raw(policies=[{"name": "Access Policy", "content": "# Access"}]))
        assert pkg.content.policies[0].mapped_controls == []


class TestRejectedPackages:
    def test_invalid_framework_type(self):
        raw = _raw()
        raw["manifest"]["type"] = "Nonsense"
        with pytest.raises(PackageValidationError) as exc:
            validate(raw)
        (err,) = exc.value.errors
        assert err.path == "manifest.type"
        assert "Security" in err.expected
        assert err.actual == "'Nonsense'"

    def test_missing_identifier_has_indexed_path(self):
        reqs = [
            {"identifier": "DS-1", "title": "t", "description": "d"},
            {"title": "no id", "description": "d"},
        ]
        assert _paths(_raw(requirements=reqs)) == ["content.requirements[1].identifier"]

    def test_missing_field_reports_nothing(self):
        raw = _raw()
        del raw["manifest"]["author"]
        with pytest.raises(PackageValidationError) as exc:
            validate(raw)
        (err,) = exc.value.errors
        assert err.path == "manifest.author"
        assert err.expected == "required field"
        assert err.actual == "nothing"

    @pytest.mark.parametrize("order", ["1", True, None])
    def test_order_must_be_number(self, order):
        with pytest.raises(PackageValidationError) as exc:
            validate(_raw(phases=[{"name": "Plan", "order": order}]))
        (err,) = exc.value.errors
        assert err.path == "content.phases[0].order"
        assert err.expected == "number"

    def test_invalid_risk_level(self):
        raw = _raw(risks=[{"title": "Outage", "inheritRisk": "High"}, {"title": "Leak", "inherentRisk": "Severe"}])
        assert sorted(_paths(raw)) == ["content.risks[0].inherentRisk", "content.risks[1].inherentRisk"]

    def test_empty_slug_rejected(self):
        raw = _raw()
        raw["manifest"]["slug"] = ""
        assert _paths(raw) == ["manifest.slug"]

    def test_requirements_must_be_array(self):
        with pytest.raises(PackageValidationError) as exc:
            validate(_raw(requirements={"identifier": "DS-1"}))
        (err,) = exc.value.errors
        assert err.path == "content.requirements"
        assert err.expected == "array"
        assert err.actual == "object"

    def test_reports_every_error(self):
        raw = _raw(phases=[{"order": 1}], requirements=[{"identifier": 7, "title": "t"}])
        raw["manifest"]["type"] = "Other"
        paths = set(_paths(raw))
        assert {
            "manifest.type",
            "content.phases[0].name",
            "content.requirements[0].identifier",
            "content.requirements[0].description",
        } <= paths

    def test_non_object_root(self):
        assert _paths(["not", "a", "package"]) == [ROOT_PATH]

    def test_error_serializes(self):
        raw = _raw()
        raw["manifest"]["type"] = "Nonsense"
        with pytest.raises(PackageValidationError) as exc:
            validate(raw)
        data = exc.value.to_dict()
        assert data["error"] == "Invalid framework package."
        assert data["fields"][0]["path"] == "manifest.type"
        assert "manifest.type" in str(exc.value)


class TestValidateJson:
    def test_valid_bytes(self):
        pkg = validate_json(json.dumps(BASE).encode("utf-8"))
        assert pkg.manifest.version == "1.0"

    def test_malformed_json(self):
        with pytest.raises(PackageValidationError) as exc:
            validate_json('{"manifest": ')
        (err,) = exc.value.errors
        assert err.path == ROOT_PATH
        assert err.message.startswith("Invalid JSON")


def test_format_path():
    assert format_path(("content", "requirements", 3, "identifier")) == "content.requirements[3].identifier"
    assert format_path(()) == ROOT_PATH
