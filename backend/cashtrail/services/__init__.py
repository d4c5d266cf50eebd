"""
Services Package - Business Logic Layer

Services sit between callers (CLI commands, domain use cases) and the tenant
database manager, turning tenancy errors into (result, error) tuples.

Available Services:
- TenantService: Tenant provisioning, deprovisioning, queries and upgrades
"""

from cashtrail.services.tenant_service import TenantService

__all__ = [
    'TenantService',
]
