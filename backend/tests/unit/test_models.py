"""
Unit tests for the Tenant model.

Tests the schema name derivation and the lifecycle state machine.
"""

import uuid

import pytest

from cashtrail.exceptions import InvalidTenantTransition
from cashtrail.models.tenant import (
    ALLOWED_TRANSITIONS,
    MAX_SCHEMA_NAME_LENGTH,
    Tenant,
    TenantState,
    to_tenant_id,
    validate_schema_name,
)


class TestTenantSchemaName:
    """Test suite for Tenant.schema_name_for"""

    def test_schema_name_format(self):
        """Test schema name is the prefix followed by the UUID hex"""
        tenant_id = uuid.UUID('0f8fad5b-d9cb-469f-a165-70867728950e')

        assert Tenant.schema_name_for(tenant_id) == 'tenant_0f8fad5bd9cb469fa16570867728950e'

    def test_schema_name_is_deterministic(self):
        tenant_id = uuid.uuid4()

        assert Tenant.schema_name_for(tenant_id) == Tenant.schema_name_for(str(tenant_id))

    def test_distinct_tenants_get_distinct_schemas(self):
        names = {Tenant.schema_name_for(uuid.uuid4()) for _ in range(200)}

        assert len(names) == 200

    def test_schema_name_fits_identifier_limit(self):
        schema_name = Tenant.schema_name_for(uuid.uuid4())

        assert len(schema_name) <= MAX_SCHEMA_NAME_LENGTH
        validate_schema_name(schema_name)

    def test_custom_prefix(self):
        tenant_id = uuid.uuid4()

        assert Tenant.schema_name_for(tenant_id, prefix='ct_') == f"ct_{tenant_id.hex}"

    def test_invalid_tenant_id(self):
        with pytest.raises(ValueError):
            Tenant.schema_name_for('not-a-uuid')

    def test_prefix_too_long_is_rejected(self):
        with pytest.raises(ValueError, match="maximum length"):
            Tenant.schema_name_for(uuid.uuid4(), prefix='p' * 40)


class TestValidateSchemaName:
    """Test suite for schema name validation"""

    @pytest.mark.parametrize('schema_name', ['tenant_abc', '_private', 'a1_b2'])
    def test_valid_names(self, schema_name):
        assert validate_schema_name(schema_name) == schema_name

    @pytest.mark.parametrize('schema_name', [
        '',
        'Tenant_abc',
        '1tenant',
        'tenant-abc',
        'tenant; DROP SCHEMA public',
        't' * 64,
    ])
    def test_invalid_names(self, schema_name):
        with pytest.raises(ValueError, match="Invalid schema name"):
            validate_schema_name(schema_name)


class TestToTenantId:

    def test_uuid_passthrough(self):
        tenant_id = uuid.uuid4()

        assert to_tenant_id(tenant_id) is tenant_id

    def test_string_is_parsed(self):
        tenant_id = uuid.uuid4()

        assert to_tenant_id(str(tenant_id)) == tenant_id

    def test_garbage_raises_value_error(self):
        with pytest.raises(ValueError):
            to_tenant_id('tenant-42')


class TestTenantStateMachine:
    """Test suite for Tenant lifecycle transitions"""

    def make_tenant(self, state):
        tenant_id = uuid.uuid4()
        return Tenant(id=tenant_id, schema_name=Tenant.schema_name_for(tenant_id), state=state)

    def test_every_state_has_transition_rules(self):
        assert set(ALLOWED_TRANSITIONS) == set(TenantState)

    def test_happy_path(self):
        tenant = self.make_tenant(TenantState.PENDING)

        for state in (TenantState.PROVISIONING, TenantState.ACTIVE,
                      TenantState.DROPPING, TenantState.DROPPED):
            tenant.transition_to(state)
            assert tenant.state == state

    def test_failed_can_be_retried(self):
        tenant = self.make_tenant(TenantState.FAILED)

        assert tenant.can_transition_to(TenantState.PROVISIONING)
        assert tenant.can_transition_to(TenantState.DROPPING)
        assert not tenant.can_transition_to(TenantState.ACTIVE)

    def test_dropped_is_terminal(self):
        tenant = self.make_tenant(TenantState.DROPPED)

        for state in TenantState:
            assert not tenant.can_transition_to(state)

    def test_pending_cannot_become_active_directly(self):
        tenant = self.make_tenant(TenantState.PENDING)

        with pytest.raises(InvalidTenantTransition) as exc_info:
            tenant.transition_to(TenantState.ACTIVE)

        assert exc_info.value.current == TenantState.PENDING
        assert exc_info.value.target == TenantState.ACTIVE
        assert tenant.state == TenantState.PENDING

    def test_is_active(self):
        assert self.make_tenant(TenantState.ACTIVE).is_active
        assert not self.make_tenant(TenantState.PROVISIONING).is_active

    def test_state_str_is_value(self):
        assert str(TenantState.DROPPING) == 'dropping'

    def test_to_dict(self):
        tenant = self.make_tenant(TenantState.ACTIVE)

        data = tenant.to_dict()

        assert data['id'] == str(tenant.id)
        assert data['state'] == 'active'
        assert data['schema_name'] == tenant.schema_name
