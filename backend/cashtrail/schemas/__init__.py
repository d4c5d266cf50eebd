"""
Marshmallow schemas for serialization.

- tenant_schema: Tenant records, migration ledgers and migrate-all results
"""

from .tenant_schema import (
    MigrationRecordSchema,
    MigrationResultSchema,
    TenantResponseSchema,
    migration_records_schema,
    migration_results_schema,
    tenant_response_schema,
    tenants_response_schema,
)

__all__ = [
    'MigrationRecordSchema',
    'MigrationResultSchema',
    'TenantResponseSchema',
    'migration_records_schema',
    'migration_results_schema',
    'tenant_response_schema',
    'tenants_response_schema',
]
