"""
Unit tests for ScopedExecutor.

The registry and namespace backend are mocked; binding behaviour against a
real store is covered by the integration tests.
"""

import uuid
from unittest.mock import MagicMock, Mock

import pytest
from sqlalchemy.exc import DBAPIError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from cashtrail.exceptions import (
    CheckoutTimeout,
    ConnectionLost,
    SchemaNotFound,
    ScopeBindingFailed,
    TenantNotActive,
    TenantNotFound,
)
from cashtrail.models.tenant import Tenant, TenantState
from cashtrail.tenant_db.executor import ScopedExecutor, TenantScope
from cashtrail.tenant_db.registry import TenantRegistry


@pytest.fixture
def tenant_id():
    return uuid.uuid4()


@pytest.fixture
def registry(tenant_id):
    registry = Mock(spec=TenantRegistry)
    record = Mock()
    record.schema_name = Tenant.schema_name_for(tenant_id)
    record.is_active = True
    record.state = TenantState.ACTIVE
    registry.get.return_value = record
    return registry


@pytest.fixture
def connection():
    return MagicMock()


@pytest.fixture
def backend(connection):
    backend = MagicMock()
    backend.checkout.return_value = connection
    backend.bound.return_value.__enter__.return_value = connection
    return backend


@pytest.fixture
def executor(registry, backend):
    return ScopedExecutor(registry, backend, max_concurrency=1, checkout_timeout=0.05)


class TestScope:
    """Test suite for ScopedExecutor.scope"""

    def test_scope_binds_tenant_schema(self, executor, backend, connection, tenant_id):
        schema_name = Tenant.schema_name_for(tenant_id)

        with executor.scope(tenant_id) as scope:
            assert isinstance(scope, TenantScope)
            assert scope.tenant_id == tenant_id
            assert scope.schema_name == schema_name
            assert scope.connection is connection

        backend.checkout.assert_called_once_with(schema_name)
        backend.bound.assert_called_once_with(connection, schema_name, read_only=False)
        connection.close.assert_called_once()

    def test_unknown_tenant(self, executor, registry, backend, tenant_id):
        registry.get.side_effect = TenantNotFound(tenant_id)

        with pytest.raises(TenantNotFound):
            with executor.scope(tenant_id):
                pass

        backend.checkout.assert_not_called()

    def test_inactive_tenant(self, executor, registry, backend, tenant_id):
        registry.get.return_value.is_active = False
        registry.get.return_value.state = TenantState.PROVISIONING

        with pytest.raises(TenantNotActive) as exc_info:
            with executor.scope(tenant_id):
                pass

        assert exc_info.value.state == TenantState.PROVISIONING
        backend.checkout.assert_not_called()

    def test_checkout_waits_for_free_slot(self, executor, tenant_id):
        """Test the concurrency gate honours the deadline"""
        with executor.scope(tenant_id):
            with pytest.raises(CheckoutTimeout):
                with executor.scope(tenant_id, timeout=0.05):
                    pass

        # Slot released once the first scope exits
        with executor.scope(tenant_id):
            pass

    def test_missing_schema_is_binding_failure(self, executor, backend, tenant_id):
        schema_name = Tenant.schema_name_for(tenant_id)
        backend.checkout.side_effect = SchemaNotFound(schema_name)

        with pytest.raises(ScopeBindingFailed) as exc_info:
            with executor.scope(tenant_id):
                pass

        assert exc_info.value.schema_name == schema_name

    def test_pool_timeout_is_checkout_timeout(self, executor, backend, tenant_id):
        backend.checkout.side_effect = PoolTimeoutError("QueuePool limit reached")

        with pytest.raises(CheckoutTimeout):
            with executor.scope(tenant_id):
                pass

    def test_connect_failure_is_connection_lost(self, executor, backend, tenant_id):
        backend.checkout.side_effect = DBAPIError("SELECT 1", {}, Exception("could not connect"))

        with pytest.raises(ConnectionLost):
            with executor.scope(tenant_id):
                pass

    def test_invalidated_connection_during_work(self, executor, connection, tenant_id):
        error = DBAPIError("SELECT 1", {}, Exception("server closed the connection"),
                           connection_invalidated=True)

        with pytest.raises(ConnectionLost) as exc_info:
            with executor.scope(tenant_id):
                raise error

        assert exc_info.value.cause is error
        connection.close.assert_called_once()

    def test_work_error_propagates_unchanged(self, executor, connection, tenant_id):
        with pytest.raises(ValueError, match="bad amount"):
            with executor.scope(tenant_id):
                raise ValueError("bad amount")

        connection.close.assert_called_once()


class TestRun:
    """Test suite for ScopedExecutor.run"""

    def test_returns_work_result(self, executor, tenant_id):
        assert executor.run(tenant_id, lambda scope: scope.schema_name) == Tenant.schema_name_for(tenant_id)

    def test_read_only_work_is_retried_once(self, executor, tenant_id):
        work = Mock(side_effect=[ConnectionLost("connection reset"), 42])

        assert executor.run(tenant_id, work, read_only=True) == 42
        assert work.call_count == 2

    def test_read_only_work_gives_up_after_retry(self, executor, tenant_id):
        work = Mock(side_effect=ConnectionLost("connection reset"))

        with pytest.raises(ConnectionLost):
            executor.run(tenant_id, work, read_only=True)

        assert work.call_count == 2

    def test_write_work_is_not_retried(self, executor, tenant_id):
        work = Mock(side_effect=ConnectionLost("connection reset"))

        with pytest.raises(ConnectionLost):
            executor.run(tenant_id, work)

        assert work.call_count == 1


class TestTenantScope:

    def test_execute_wraps_plain_sql(self, tenant_id):
        connection = MagicMock()
        scope = TenantScope(tenant_id, 'tenant_x', connection)

        scope.execute("SELECT 1")
        scope.execute("SELECT :value", {"value": 1})

        first, second = connection.execute.call_args_list
        assert str(first.args[0]) == "SELECT 1"
        assert second.args[1] == {"value": 1}
