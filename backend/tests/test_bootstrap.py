"""Tests for service initialization."""

from pathlib import Path

import pytest

from fieldward.auth.roles import RoleRecord, StaticRoleSource
from fieldward.bootstrap import initialize_services, load_registry, open_store
from fieldward.config import Settings
from fieldward.errors import ConfigurationError
from fieldward.persistence.config import DatabaseConfig

METADATA_DIR = Path(__file__).resolve().parents[2] / "metadata"


@pytest.fixture
def settings(tmp_path):
    return Settings(
        base_path=tmp_path,
        metadata_path=METADATA_DIR,
        database=DatabaseConfig(f"sqlite:///{tmp_path / 'data' / 'fieldward.db'}"),
        identifier_retries=3,
    )


@pytest.fixture
def services(settings):
    services = initialize_services(settings)
    yield services
    services.close()


class TestInitializeServices:
    def test_creates_database_and_tables(self, services, settings):
        assert settings.database.sqlite_path.exists()
        assert "invoices" in services.store.metadata.tables

    def test_roles_fall_back_to_yaml_until_seeded(self, services):
        assert services.roles.names == (
            "customer", "technician", "dispatcher", "manager", "admin"
        )

    def test_roles_come_from_database_once_seeded(self, services):
        services.store.seed_roles(
            [RoleRecord("guest", 1), RoleRecord("owner", 2)]
        )
        services.roles.reload()
        assert services.roles.names == ("guest", "owner")

    def test_record_service_is_wired(self, services):
        assert services.records.identifier_retries == 3
        customer = services.records.create(
            "customer",
            {"email": "ann@example.com", "first_name": "Ann", "last_name": "Lee"},
            "dispatcher",
        )
        invoice = services.records.create(
            "invoice",
            {"customer_id": customer["id"], "amount": "5.00", "total": "5.00"},
            "customer",
        )
        assert invoice["invoice_number"].startswith("INV-")

    def test_unknown_roles_in_metadata_fail_startup(self, settings):
        with pytest.raises(ConfigurationError, match="unknown role"):
            initialize_services(
                settings, role_source=StaticRoleSource([("customer", 1), ("admin", 2)])
            )


class TestWiringSteps:
    def test_load_registry(self, settings):
        registry = load_registry(settings)
        assert registry.require_entity("work_order").identifier.prefix == "WO"

    def test_open_store_without_registry_defines_roles_only(self, settings):
        store = open_store(settings)
        try:
            assert set(store.metadata.tables) == {"roles"}
            assert settings.database.sqlite_path.exists()
        finally:
            store.dispose()

    def test_open_store_without_creating_tables(self, settings):
        store = open_store(settings, load_registry(settings), create_tables=False)
        try:
            assert "invoices" in store.metadata.tables
            assert settings.database.sqlite_path.parent.is_dir()
            assert not settings.database.sqlite_path.exists()
        finally:
            store.dispose()
