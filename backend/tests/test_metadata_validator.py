"""
Tests for fieldward.metadata.validator

Covers:
  - validate_yaml_file()            schema checks on single files
  - validate_metadata_dir()         directory walk (real metadata passes)
  - role reference checks           unknown roles in fieldAccess/permissions
  - validate_metadata_dir(strict=True)
"""
from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from fieldward.auth.roles import RoleHierarchy, RoleRecord
from fieldward.errors import ConfigurationError
from fieldward.metadata.loader import resolve_entity
from fieldward.metadata.validator import (
    ValidationIssue,
    check_role_references,
    validate_metadata_dir,
    validate_yaml_file,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _write_yaml(path: Path, data: dict) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.dump(data))
    return path


def _write_raw(path: Path, content: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    return path


def _entity(**overrides) -> dict:
    data = {
        "entity": "ticket",
        "tableName": "tickets",
        "identityField": "ticket_number",
        "fields": {
            "id": {"type": "integer"},
            "ticket_number": {"type": "string"},
        },
        "fieldAccess": {
            "id": {"read": "customer"},
            "ticket_number": {"read": "customer"},
        },
    }
    data.update(overrides)
    return data


_ROLES = {"roles": [{"name": "customer", "priority": 1}, {"name": "admin", "priority": 2}]}

# Path to the real metadata directory
_REPO_ROOT = Path(__file__).resolve().parents[2]
_METADATA_DIR = _REPO_ROOT / "metadata"


# ---------------------------------------------------------------------------
# validate_yaml_file
# ---------------------------------------------------------------------------


class TestValidateYamlFile:
    def test_valid_entity(self, tmp_path):
        path = _write_yaml(tmp_path / "ticket.yaml", _entity())
        assert validate_yaml_file(path, "entity.schema.json") == []

    def test_missing_required_key(self, tmp_path):
        data = _entity()
        del data["fieldAccess"]
        path = _write_yaml(tmp_path / "ticket.yaml", data)

        issues = validate_yaml_file(path, "entity.schema.json")
        assert len(issues) == 1
        assert "'fieldAccess' is a required property" in issues[0].message

    def test_unknown_field_type_reports_path(self, tmp_path):
        data = _entity()
        data["fields"]["price"] = {"type": "money"}
        path = _write_yaml(tmp_path / "ticket.yaml", data)

        issues = validate_yaml_file(path, "entity.schema.json")
        assert [i.path for i in issues] == ["fields/price/type"]

    def test_unexpected_key_rejected(self, tmp_path):
        path = _write_yaml(tmp_path / "ticket.yaml", _entity(colour="blue"))
        issues = validate_yaml_file(path, "entity.schema.json")
        assert any("colour" in i.message for i in issues)

    def test_bad_identifier_prefix(self, tmp_path):
        path = _write_yaml(tmp_path / "ticket.yaml", _entity(identifier={"prefix": "tk"}))
        issues = validate_yaml_file(path, "entity.schema.json")
        assert [i.path for i in issues] == ["identifier/prefix"]

    def test_unknown_message_kind(self, tmp_path):
        data = _entity()
        data["fields"]["ticket_number"]["messages"] = {"colour": "nope"}
        path = _write_yaml(tmp_path / "ticket.yaml", data)
        assert validate_yaml_file(path, "entity.schema.json")

    def test_yaml_parse_error(self, tmp_path):
        path = _write_raw(tmp_path / "broken.yaml", "entity: [unclosed\n")
        issues = validate_yaml_file(path, "entity.schema.json")
        assert "YAML parse error" in issues[0].message

    def test_empty_file(self, tmp_path):
        path = _write_raw(tmp_path / "empty.yaml", "\n")
        issues = validate_yaml_file(path, "entity.schema.json")
        assert "empty" in issues[0].message

    def test_roles_file(self, tmp_path):
        good = _write_yaml(tmp_path / "roles.yaml", _ROLES)
        assert validate_yaml_file(good, "roles.schema.json") == []

        bad = _write_yaml(tmp_path / "bad_roles.yaml", {"roles": [{"name": "customer"}]})
        assert validate_yaml_file(bad, "roles.schema.json")


class TestValidationIssue:
    def test_str_includes_severity_and_path(self):
        issue = ValidationIssue(file=Path("x.yaml"), message="boom", path="fields/a")
        assert str(issue) == "[ERROR] x.yaml at fields/a: boom"


# ---------------------------------------------------------------------------
# validate_metadata_dir
# ---------------------------------------------------------------------------


class TestValidateMetadataDir:
    def test_repository_metadata_is_valid(self):
        assert validate_metadata_dir(_METADATA_DIR) == []

    def test_repository_metadata_is_valid_strict(self):
        assert validate_metadata_dir(_METADATA_DIR, strict=True) == []

    def test_missing_directory(self, tmp_path):
        issues = validate_metadata_dir(tmp_path / "nope")
        assert "does not exist" in issues[0].message

    def test_missing_entities_directory(self, tmp_path):
        issues = validate_metadata_dir(tmp_path)
        assert "Entities directory does not exist" in issues[0].message

    def test_schema_errors_skip_semantic_pass(self, tmp_path):
        _write_yaml(tmp_path / "entities" / "ticket.yaml", _entity(identityField="nope"))
        _write_yaml(tmp_path / "entities" / "other.yaml", {"entity": "other"})

        issues = validate_metadata_dir(tmp_path)
        assert issues
        assert all(i.file.name == "other.yaml" for i in issues)

    def test_loader_errors_are_reported(self, tmp_path):
        _write_yaml(tmp_path / "entities" / "ticket.yaml", _entity(identityField="nope"))
        issues = validate_metadata_dir(tmp_path)
        assert len(issues) == 1
        assert "identityField 'nope'" in issues[0].message

    def test_unknown_role_in_field_access(self, tmp_path):
        _write_yaml(tmp_path / "roles.yaml", _ROLES)
        data = _entity()
        data["fieldAccess"]["ticket_number"] = {"read": "wizard"}
        _write_yaml(tmp_path / "entities" / "ticket.yaml", data)

        issues = validate_metadata_dir(tmp_path)
        assert [i.message for i in issues] == [
            "ticket.fieldAccess.ticket_number.read references unknown role 'wizard'"
        ]

    def test_unknown_role_in_permissions(self, tmp_path):
        _write_yaml(tmp_path / "entities" / "ticket.yaml", _entity(permissions={"delete": "wizard"}))
        hierarchy = RoleHierarchy([RoleRecord("customer", 1)])

        issues = validate_metadata_dir(tmp_path, hierarchy=hierarchy)
        assert [i.message for i in issues] == [
            "ticket.permissions.delete references unknown role 'wizard'"
        ]

    def test_field_without_access_is_a_warning(self, tmp_path):
        data = _entity()
        data["fields"]["notes"] = {"type": "text"}
        _write_yaml(tmp_path / "entities" / "ticket.yaml", data)

        issues = validate_metadata_dir(tmp_path)
        assert len(issues) == 1
        assert issues[0].severity == "warning"
        assert "'notes' has no fieldAccess entry" in issues[0].message

    def test_strict_escalates_warnings(self, tmp_path):
        data = _entity()
        data["fields"]["notes"] = {"type": "text"}
        _write_yaml(tmp_path / "entities" / "ticket.yaml", data)

        issues = validate_metadata_dir(tmp_path, strict=True)
        assert [i.severity for i in issues] == ["error"]


class TestCheckRoleReferences:
    def test_raises_with_every_problem(self):
        entity = resolve_entity(
            _entity(
                fieldAccess={"id": {"read": "ghost"}, "ticket_number": {"update": "wizard"}},
                permissions={"create": "goblin"},
            )
        )
        hierarchy = RoleHierarchy([RoleRecord("customer", 1)])

        with pytest.raises(ConfigurationError) as exc_info:
            check_role_references([entity], hierarchy)
        assert len(exc_info.value.details["problems"]) == 3

    def test_passes_when_all_roles_known(self):
        entity = resolve_entity(_entity())
        check_role_references([entity], RoleHierarchy([RoleRecord("customer", 1)]))
