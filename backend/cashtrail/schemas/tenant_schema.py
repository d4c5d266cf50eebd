"""
Marshmallow schemas for tenant records and migration ledgers.

Schemas:
- TenantResponseSchema: Tenant record (id, schema, state, last error, timestamps)
- MigrationRecordSchema: One row of a namespace's migration ledger
- MigrationResultSchema: Per-tenant outcome of a migrate-all run

Pre-instantiated schema instances are provided at the bottom of this file for
convenient import in the CLI and services.

Usage:
    from cashtrail.schemas import tenant_response_schema

    result = tenant_response_schema.dump(tenant)
"""

from marshmallow import Schema, fields, validate

from ..models.tenant import TenantState

MIGRATION_STATUSES = ('up_to_date', 'would_migrate', 'migrated', 'error')


class TenantResponseSchema(Schema):
    """
    Tenant record for API and CLI responses (all fields dump_only).

    Fields:
        id: Tenant UUID
        schema_name: Namespace holding the tenant's data
        state: Lifecycle state value ('pending', 'active', ...)
        last_error: Message of the last failed provisioning or upgrade
        attempts: Provisioning attempts started
        created_at / updated_at: Timestamps
    """
    id = fields.UUID(dump_only=True)
    schema_name = fields.Str(dump_only=True)
    state = fields.Enum(TenantState, by_value=True, dump_only=True)
    last_error = fields.Str(dump_only=True, allow_none=True)
    attempts = fields.Int(dump_only=True)
    created_at = fields.DateTime(dump_only=True)
    updated_at = fields.DateTime(dump_only=True)


class MigrationRecordSchema(Schema):
    version = fields.Int(dump_only=True)
    description = fields.Str(dump_only=True)
    checksum = fields.Str(dump_only=True)
    applied_at = fields.DateTime(dump_only=True)


class MigrationResultSchema(Schema):
    """Outcome of migrating one tenant namespace."""
    tenant_id = fields.UUID(dump_only=True)
    schema = fields.Str(dump_only=True)
    status = fields.Str(dump_only=True, validate=validate.OneOf(MIGRATION_STATUSES))
    current_version = fields.Int(dump_only=True)
    target_version = fields.Int(dump_only=True)
    applied_migrations = fields.List(fields.Int(), dump_only=True)
    error = fields.Str(dump_only=True, allow_none=True)


# Pre-instantiated schema instances for convenience
tenant_response_schema = TenantResponseSchema()
tenants_response_schema = TenantResponseSchema(many=True)
migration_records_schema = MigrationRecordSchema(many=True)
migration_results_schema = MigrationResultSchema(many=True)
