"""
Test Configuration and Fixtures

This module provides pytest fixtures and configuration for the test suite.
Fixtures are reusable test resources that can be injected into test functions.

Every test gets its own file-backed SQLite store under tmp_path: the shared
namespace is ``shared.db`` and each tenant namespace is a database file in
``tenants/``, so several connections (and threads) see the same data.

Key fixtures:
- app: Flask application instance with test configuration
- manager: Global TenantDatabaseManager with the shared namespace migrated
- make_manager: Factory for managers using a custom tenant migration set
- build_migration_set: Factory for small generated tenant migration sets
"""

import uuid

import pytest

from cashtrail import create_app
from cashtrail.tenant_db.migration_set import MigrationScript, MigrationSet
from cashtrail.utils.database import TenantDatabaseManager, tenant_db_manager


def generated_migration_set(count=5, failing_version=None):
    """
    Tenant migration set creating one table per version (table_v1, table_v2, ...).

    Args:
        count: Number of scripts
        failing_version: Version whose script is invalid SQL
    """
    scripts = []
    for version in range(1, count + 1):
        if version == failing_version:
            ddl = "THIS IS NOT VALID SQL;"
        else:
            ddl = (
                f"CREATE TABLE IF NOT EXISTS table_v{version} "
                f"(id INTEGER PRIMARY KEY, note VARCHAR(50));"
            )
        scripts.append(MigrationScript(version, f"create_table_v{version}", ddl))
    return MigrationSet(scripts)


@pytest.fixture
def app(tmp_path):
    """
    Create Flask application for testing.

    Scope: function - every test gets a fresh shared database and tenant directory

    Returns:
        Flask application configured for testing
    """
    app = create_app('testing', {
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'shared.db'}",
        'TENANT_NAMESPACE_DIR': str(tmp_path / 'tenants'),
        'LOG_FILE': None,
    })

    with app.app_context():
        yield app

    tenant_db_manager.close_all_connections()


@pytest.fixture
def manager(app):
    """
    Global tenant database manager with the tenants table and shared migrations applied.
    """
    tenant_db_manager.migrate_shared()
    return tenant_db_manager


@pytest.fixture
def build_migration_set():
    return generated_migration_set


@pytest.fixture
def make_manager(app):
    """
    Factory creating a TenantDatabaseManager on the test app with a custom tenant migration set.

    Usage:
        manager = make_manager(generated_migration_set(5, failing_version=3))
    """
    managers = []

    def _make(tenant_migrations=None):
        manager = TenantDatabaseManager()
        manager.init_app(app, tenant_migrations=tenant_migrations)
        manager.migrate_shared()
        managers.append(manager)
        return manager

    yield _make

    for manager in managers:
        manager.close_all_connections()


@pytest.fixture
def tenant_id():
    return uuid.uuid4()


@pytest.fixture
def mock_tenant_db_manager(mocker):
    """
    Mock the TenantDatabaseManager used by TenantService.

    Usage:
        def test_something(mock_tenant_db_manager):
            mock_tenant_db_manager.provision.return_value = tenant
    """
    mock_manager = mocker.patch('cashtrail.services.tenant_service.tenant_db_manager')
    mock_manager.tenant_migrations.latest_version = 5
    return mock_manager
