"""
JSON Schema and semantic checks for fieldward metadata.

Validates ``universal.yaml``, ``roles.yaml`` and ``entities/*.yaml`` against the
JSON Schemas in ``schemas/``, then resolves the entities through the loader and
checks that every role named in ``fieldAccess`` or ``permissions`` exists in
the role hierarchy.

Usage:
    from fieldward.metadata.validator import validate_metadata_dir

    issues = validate_metadata_dir(Path("metadata"))
    for issue in issues:
        print(issue)
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Iterable

import yaml
from jsonschema import Draft202012Validator
from jsonschema.exceptions import ValidationError
from referencing import Registry, Resource
from referencing.jsonschema import DRAFT202012

from fieldward.errors import ConfigurationError
from fieldward.metadata.loader import NO_ACCESS, OPERATIONS, EntityMetadata, MetadataLoader

if TYPE_CHECKING:
    from fieldward.auth.roles import RoleHierarchy

logger = logging.getLogger(__name__)

_SCHEMAS_DIR = Path(__file__).parent / "schemas"

_SCHEMA_NAMES = [
    "_defs.schema.json",
    "entity.schema.json",
    "universal.schema.json",
    "roles.schema.json",
]


@dataclass
class ValidationIssue:
    """A single finding for a metadata file."""

    file: Path
    message: str
    path: str = ""          # e.g. "fieldAccess/status/create"
    severity: str = "error" # "error" | "warning"

    def __str__(self) -> str:
        loc = f" at {self.path}" if self.path else ""
        return f"[{self.severity.upper()}] {self.file}{loc}: {self.message}"


def _load_schema(name: str) -> dict[str, Any]:
    with (_SCHEMAS_DIR / name).open() as fh:
        return json.load(fh)


def _load_registry() -> Registry:
    """Build a Registry holding every fieldward schema, so $refs resolve offline."""
    resources = []
    for name in _SCHEMA_NAMES:
        schema = _load_schema(name)
        resources.append(
            (schema["$id"], Resource(contents=schema, specification=DRAFT202012))
        )
    return Registry().with_resources(resources)


def _json_path(error: ValidationError) -> str:
    parts = []
    for p in error.absolute_path:
        if isinstance(p, int):
            parts.append(f"[{p}]")
        else:
            parts.append(str(p))
    return "/".join(parts).replace("/[", "[")


def validate_document(
    doc: Any,
    schema_name: str,
    source: Path,
    *,
    registry: Registry | None = None,
) -> list[ValidationIssue]:
    """Validate an already-parsed document against the named schema."""
    if registry is None:
        registry = _load_registry()
    validator = Draft202012Validator(_load_schema(schema_name), registry=registry)
    return [
        ValidationIssue(file=source, message=error.message, path=_json_path(error))
        for error in sorted(validator.iter_errors(doc), key=_json_path)
    ]


def validate_yaml_file(
    yaml_path: Path,
    schema_name: str,
    *,
    registry: Registry | None = None,
) -> list[ValidationIssue]:
    """
    Validate a single YAML file against the named schema.

    Args:
        yaml_path:   Path to the YAML file to validate.
        schema_name: Filename of the schema (e.g. ``"entity.schema.json"``).
        registry:    Pre-built schema registry.  Built automatically if omitted.

    Returns:
        A list of :class:`ValidationIssue` objects (empty on success).
    """
    try:
        with yaml_path.open() as fh:
            raw = yaml.safe_load(fh)
    except yaml.YAMLError as exc:
        return [ValidationIssue(file=yaml_path, message=f"YAML parse error: {exc}")]

    if raw is None:
        return [
            ValidationIssue(file=yaml_path, message="File is empty or contains only whitespace")
        ]

    return validate_document(raw, schema_name, yaml_path, registry=registry)


def find_role_reference_issues(
    entities: Iterable[EntityMetadata],
    hierarchy: RoleHierarchy,
) -> list[str]:
    """Return one message per access value that names an unknown role."""
    known = set(hierarchy.names)
    problems: list[str] = []

    for entity in entities:
        for field_name, access in entity.merged_field_access.items():
            for op in OPERATIONS:
                role = access.for_operation(op)
                if role != NO_ACCESS and role not in known:
                    problems.append(
                        f"{entity.name}.fieldAccess.{field_name}.{op} references "
                        f"unknown role '{role}'"
                    )
        if entity.permissions:
            for op in OPERATIONS:
                role = entity.permissions.for_operation(op)
                if role is not None and role != NO_ACCESS and role not in known:
                    problems.append(
                        f"{entity.name}.permissions.{op} references unknown role '{role}'"
                    )
    return problems


def check_role_references(
    entities: Iterable[EntityMetadata],
    hierarchy: RoleHierarchy,
) -> None:
    """Raise ConfigurationError if any metadata names a role outside the hierarchy."""
    problems = find_role_reference_issues(entities, hierarchy)
    if problems:
        raise ConfigurationError(
            f"Metadata references {len(problems)} unknown role(s): " + "; ".join(problems),
            details={"problems": problems},
        )


def find_access_coverage_warnings(entity: EntityMetadata) -> list[str]:
    """Fields with no fieldAccess entry are denied to every role; flag them."""
    access = entity.merged_field_access
    return [
        f"Field '{field_name}' has no fieldAccess entry and is denied to every role"
        for field_name in entity.fields
        if field_name not in access
    ]


def validate_metadata_dir(
    metadata_dir: Path,
    *,
    strict: bool = False,
    hierarchy: RoleHierarchy | None = None,
) -> list[ValidationIssue]:
    """
    Validate everything under *metadata_dir*.

    Schema errors stop the semantic pass: entities are only resolved once
    every file is structurally valid.

    Args:
        metadata_dir: Root metadata directory (contains ``entities/``).
        strict:       Escalate warnings to errors.
        hierarchy:    Role hierarchy to check references against. Defaults to
                      the one declared in ``roles.yaml`` when present.

    Returns:
        A flat list of :class:`ValidationIssue` objects. Empty means valid.
    """
    if not metadata_dir.is_dir():
        return [
            ValidationIssue(
                file=metadata_dir,
                message=f"Metadata directory does not exist: {metadata_dir}",
            )
        ]

    try:
        registry = _load_registry()
    except (FileNotFoundError, json.JSONDecodeError) as exc:
        return [
            ValidationIssue(
                file=_SCHEMAS_DIR,
                message=f"Failed to load JSON Schema files: {exc}",
            )
        ]

    issues: list[ValidationIssue] = []

    for name, schema_name in (
        ("universal.yaml", "universal.schema.json"),
        ("roles.yaml", "roles.schema.json"),
    ):
        path = metadata_dir / name
        if path.exists():
            issues.extend(validate_yaml_file(path, schema_name, registry=registry))

    entities_dir = metadata_dir / "entities"
    if not entities_dir.is_dir():
        issues.append(
            ValidationIssue(
                file=entities_dir,
                message=f"Entities directory does not exist: {entities_dir}",
            )
        )
    else:
        for yaml_file in sorted(entities_dir.glob("*.yaml")):
            issues.extend(
                validate_yaml_file(yaml_file, "entity.schema.json", registry=registry)
            )

    if issues:
        return _finish(issues, strict)

    loader = MetadataLoader(metadata_dir)
    try:
        loader.load_all()
    except ConfigurationError as exc:
        issues.append(ValidationIssue(file=metadata_dir, message=exc.message))
        return _finish(issues, strict)

    for entity in loader.entities.values():
        entity_file = entities_dir / f"{entity.name}.yaml"
        for message in find_access_coverage_warnings(entity):
            issues.append(
                ValidationIssue(file=entity_file, message=message, severity="warning")
            )

    if hierarchy is None:
        roles_file = metadata_dir / "roles.yaml"
        if roles_file.exists():
            from fieldward.auth.roles import YamlRoleSource, RoleHierarchy

            try:
                hierarchy = RoleHierarchy(YamlRoleSource(roles_file).load())
            except ConfigurationError as exc:
                issues.append(ValidationIssue(file=roles_file, message=exc.message))

    if hierarchy is not None:
        for message in find_role_reference_issues(loader.entities.values(), hierarchy):
            issues.append(ValidationIssue(file=metadata_dir, message=message))
    else:
        logger.warning("No role hierarchy available; skipping role reference checks")

    return _finish(issues, strict)


def _finish(issues: list[ValidationIssue], strict: bool) -> list[ValidationIssue]:
    if strict:
        for issue in issues:
            if issue.severity == "warning":
                issue.severity = "error"
    return issues
