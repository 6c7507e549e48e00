"""Tests for RecordService: the full create/read/update/delete pipeline."""

import shutil
from datetime import datetime
from decimal import Decimal
from pathlib import Path

import pytest
import yaml

from fieldward.auth.roles import RoleHierarchyService, StaticRoleSource
from fieldward.errors import (
    DeleteBlocked,
    NotFoundReference,
    PermissionDenied,
    ValidationFailed,
)
from fieldward.metadata.loader import MetadataLoader
from fieldward.persistence import IdentifierGenerator, RecordStore
from fieldward.services import RecordService

METADATA_DIR = Path(__file__).resolve().parents[2] / "metadata"
ROLES = [("customer", 1), ("technician", 2), ("dispatcher", 3), ("manager", 4), ("admin", 5)]


class RecordingSink:
    def __init__(self):
        self.events = []

    def emit(self, event):
        self.events.append(event)


# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture
def registry():
    loader = MetadataLoader(METADATA_DIR)
    loader.load_all()
    return loader


@pytest.fixture
def store(tmp_path, registry):
    store = RecordStore(f"sqlite:///{tmp_path / 'test.db'}", registry)
    store.create_all()
    yield store
    store.dispose()


@pytest.fixture
def audit():
    return RecordingSink()


@pytest.fixture
def service(registry, store, audit):
    roles = RoleHierarchyService(StaticRoleSource(ROLES))
    identifiers = IdentifierGenerator(store, registry, clock=lambda: datetime(2024, 6, 1))
    return RecordService(registry, store, roles, identifiers=identifiers, audit=audit)


@pytest.fixture
def customer(service):
    return service.create(
        "customer",
        {"email": " Ann@Example.COM ", "first_name": "Ann", "last_name": "Lee"},
        "dispatcher",
    )


# ── Create ───────────────────────────────────────────────────────────────────


class TestCreate:
    def test_sanitizes_and_stores(self, customer, store):
        assert customer["email"] == "ann@example.com"
        assert customer["status"] == "pending"
        assert store.get("customer", customer["id"])["first_name"] == "Ann"

    def test_result_is_projected_for_role(self, service, customer):
        invoice = service.create(
            "invoice",
            {"customer_id": customer["id"], "amount": "100.00", "total": "108.00"},
            "customer",
        )
        # is_active is readable from technician upward
        assert "is_active" not in invoice
        assert invoice["invoice_number"] == "INV-2024-0001"
        assert invoice["status"] == "draft"
        assert invoice["total"] == Decimal("108.00")

    def test_identifiers_increment(self, service, customer):
        payload = {"customer_id": customer["id"]}
        first = service.create("work_order", payload, "customer")
        second = service.create("work_order", payload, "customer")
        assert first["work_order_number"] == "WO-2024-0001"
        assert second["work_order_number"] == "WO-2024-0002"

    def test_customer_cannot_set_invoice_status(self, service, customer, store):
        payload = {
            "customer_id": customer["id"],
            "amount": "120.00",
            "total": "120.00",
            "status": "paid",
        }
        with pytest.raises(PermissionDenied) as exc_info:
            service.create("invoice", payload, "customer")

        assert exc_info.value.details["fields"] == ["status"]
        assert store.list("invoice") == []

    def test_dispatcher_can_set_invoice_status(self, service, customer):
        payload = {
            "customer_id": customer["id"],
            "amount": "120.00",
            "total": "120.00",
            "status": " PAID ",
        }
        invoice = service.create("invoice", payload, "dispatcher")
        assert invoice["status"] == "paid"

    def test_entity_permission(self, service):
        with pytest.raises(PermissionDenied, match="cannot create Customer"):
            service.create(
                "customer",
                {"email": "a@b.co", "first_name": "A", "last_name": "B"},
                "technician",
            )

    def test_unknown_role_fails_closed(self, service, customer):
        with pytest.raises(PermissionDenied):
            service.create("work_order", {"customer_id": customer["id"]}, "intruder")

    def test_validation_errors(self, service, customer):
        with pytest.raises(ValidationFailed) as exc_info:
            service.create(
                "invoice", {"customer_id": customer["id"], "amount": "-5"}, "customer"
            )
        kinds = {e["field"]: e["kind"] for e in exc_info.value.details["errors"]}
        assert kinds == {"amount": "range", "total": "required"}

    def test_missing_reference(self, service):
        with pytest.raises(NotFoundReference) as exc_info:
            service.create("work_order", {"customer_id": 404}, "customer")
        assert exc_info.value.field == "customer_id"
        assert exc_info.value.message == "Customer not found. Please provide a valid Customer."

    def test_non_mapping_payload(self, service):
        with pytest.raises(ValidationFailed, match="must be an object"):
            service.create("work_order", "customer_id=1", "customer")

    def test_emits_audit_event(self, service, audit, customer):
        event = audit.events[-1]
        assert event.entity == "customer"
        assert event.operation == "create"
        assert event.record_id == customer["id"]
        assert event.role == "dispatcher"
        assert event.changes["email"] == {"from": None, "to": "ann@example.com"}

    def test_no_audit_event_on_failure(self, service, audit):
        with pytest.raises(NotFoundReference):
            service.create("work_order", {"customer_id": 404}, "customer")
        assert audit.events == []


# ── Read ─────────────────────────────────────────────────────────────────────


class TestRead:
    def test_get_projects_fields(self, service, customer):
        work_order = service.create("work_order", {"customer_id": customer["id"]}, "customer")

        as_customer = service.get("work_order", work_order["id"], "customer")
        as_technician = service.get("work_order", work_order["id"], "technician")

        assert "customer_id" not in as_customer
        assert as_technician["customer_id"] == customer["id"]

    def test_get_missing_returns_none(self, service):
        assert service.get("work_order", 12345, "admin") is None

    def test_list_with_filters(self, service, customer):
        other = service.create(
            "customer",
            {"email": "bo@example.com", "first_name": "Bo", "last_name": "Ng"},
            "dispatcher",
        )
        service.create("work_order", {"customer_id": customer["id"]}, "customer")
        service.create("work_order", {"customer_id": other["id"]}, "customer")

        rows = service.list("work_order", "technician", filters={"customer_id": other["id"]})
        assert [row["customer_id"] for row in rows] == [other["id"]]

    def test_list_projects_every_row(self, service, customer):
        service.create("work_order", {"customer_id": customer["id"]}, "customer")
        rows = service.list("work_order", "customer")
        assert rows and all("customer_id" not in row for row in rows)

    def test_list_limit_and_offset(self, service, customer):
        for _ in range(3):
            service.create("work_order", {"customer_id": customer["id"]}, "customer")
        rows = service.list("work_order", "admin", limit=2, offset=1)
        assert [row["work_order_number"] for row in rows] == ["WO-2024-0002", "WO-2024-0003"]


# ── Update ───────────────────────────────────────────────────────────────────


class TestUpdate:
    def test_partial_update(self, service, customer, audit):
        updated = service.update("customer", customer["id"], {"first_name": " Annie "}, "customer")

        assert updated["first_name"] == "Annie"
        assert updated["last_name"] == "Lee"
        event = audit.events[-1]
        assert event.operation == "update"
        assert event.identifier == "ann@example.com"
        assert event.changes == {"first_name": {"from": "Ann", "to": "Annie"}}

    def test_forbidden_field(self, service, customer):
        with pytest.raises(PermissionDenied) as exc_info:
            service.update("customer", customer["id"], {"status": "active"}, "customer")
        assert exc_info.value.details["fields"] == ["status"]

    def test_immutable_field(self, service, customer):
        with pytest.raises(PermissionDenied):
            service.update("customer", customer["id"], {"email": "new@example.com"}, "admin")

    def test_nothing_to_update(self, service, customer):
        with pytest.raises(ValidationFailed, match="No updateable fields"):
            service.update("customer", customer["id"], {}, "customer")

    def test_validation_on_update(self, service, customer):
        with pytest.raises(ValidationFailed) as exc_info:
            service.update("customer", customer["id"], {"status": "frozen"}, "manager")
        assert exc_info.value.details["errors"][0]["kind"] == "enum"

    def test_missing_record(self, service):
        assert service.update("customer", 999, {"first_name": "X"}, "customer") is None


# ── Delete ───────────────────────────────────────────────────────────────────


class TestDelete:
    def test_delete(self, service, customer, store, audit):
        assert service.delete("customer", customer["id"], "manager") is True
        assert store.get("customer", customer["id"]) is None
        assert audit.events[-1].operation == "delete"

    def test_delete_missing(self, service):
        assert service.delete("customer", 999, "manager") is False

    def test_role_too_low(self, service, customer):
        with pytest.raises(PermissionDenied):
            service.delete("customer", customer["id"], "dispatcher")

    def test_blocked_by_references(self, service, customer):
        work_order = service.create("work_order", {"customer_id": customer["id"]}, "customer")
        service.create(
            "invoice",
            {
                "customer_id": customer["id"],
                "work_order_id": work_order["id"],
                "amount": "10.00",
                "total": "10.00",
            },
            "dispatcher",
        )

        with pytest.raises(DeleteBlocked) as exc_info:
            service.delete("work_order", work_order["id"], "manager")
        assert exc_info.value.details == {"referencedBy": "invoices"}


# ── Mixed-case enum metadata ─────────────────────────────────────────────────


class TestMixedCaseEnum:
    @pytest.fixture
    def mixed_service(self, tmp_path):
        metadata_dir = tmp_path / "metadata"
        shutil.copytree(METADATA_DIR, metadata_dir)
        work_order_file = metadata_dir / "entities" / "work_order.yaml"
        work_order = yaml.safe_load(work_order_file.read_text())
        work_order["fields"]["priority"]["values"] = ["Low", "Normal", "High", "Urgent"]
        work_order["fields"]["priority"]["default"] = "Normal"
        work_order_file.write_text(yaml.safe_dump(work_order))

        registry = MetadataLoader(metadata_dir)
        registry.load_all()
        store = RecordStore(f"sqlite:///{tmp_path / 'mixed.db'}", registry)
        store.create_all()
        roles = RoleHierarchyService(StaticRoleSource(ROLES))
        identifiers = IdentifierGenerator(store, registry, clock=lambda: datetime(2024, 6, 1))
        service = RecordService(registry, store, roles, identifiers=identifiers)
        yield service
        store.dispose()

    @pytest.fixture
    def mixed_customer(self, mixed_service):
        return mixed_service.create(
            "customer",
            {"email": "bo@example.com", "first_name": "Bo", "last_name": "Ng"},
            "dispatcher",
        )

    def test_validated_value_is_accepted_by_storage(self, mixed_service, mixed_customer):
        work_order = mixed_service.create(
            "work_order",
            {"customer_id": mixed_customer["id"], "priority": "High"},
            "customer",
        )
        assert work_order["priority"] == "high"

    def test_default_satisfies_storage_constraint(self, mixed_service, mixed_customer):
        work_order = mixed_service.create(
            "work_order", {"customer_id": mixed_customer["id"]}, "customer"
        )
        assert work_order["priority"] == "normal"
