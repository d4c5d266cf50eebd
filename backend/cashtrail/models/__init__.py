"""
SQLAlchemy models for the Cashtrail platform.

This package contains the shared-namespace models:
- BaseModel: Abstract base class with common fields
- Tenant: Tenant lifecycle records (shared namespace)

Tenant data tables (currencies, contacts, accounts, ...) are not modelled here:
they are created inside each tenant namespace by the tenant migration set.
"""

from cashtrail.models.base import BaseModel
from cashtrail.models.tenant import Tenant, TenantState

__all__ = [
    'BaseModel',
    'Tenant',
    'TenantState',
]
