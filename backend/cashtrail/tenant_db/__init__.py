"""
Tenant Database Package

Schema-per-tenant lifecycle and scoping engine:

- MigrationSet / MigrationScript: validated, versioned DDL scripts
- MigrationRunner: applies a set to one namespace and keeps its ledger
- SchemaProvisioner: creates and drops tenant namespaces
- TenantRegistry: tenant records in the shared namespace
- TenantLifecycleCoordinator: locked provision / deprovision / upgrade / purge
- ScopedExecutor: runs units of work bound to one tenant namespace

Most callers use the facade in cashtrail.utils.database instead.
"""

from .coordinator import TenantLifecycleCoordinator
from .executor import ScopedExecutor, TenantScope
from .locks import AdvisoryLockManager, Deadline, LocalLockManager
from .migration_set import MigrationScript, MigrationSet
from .namespaces import PostgresNamespaces, SQLiteNamespaces, namespace_backend_for
from .provisioner import SchemaProvisioner
from .registry import TenantRegistry
from .tenant_migrations import MigrationRunner

__all__ = [
    'AdvisoryLockManager',
    'Deadline',
    'LocalLockManager',
    'MigrationRunner',
    'MigrationScript',
    'MigrationSet',
    'PostgresNamespaces',
    'SQLiteNamespaces',
    'SchemaProvisioner',
    'ScopedExecutor',
    'TenantLifecycleCoordinator',
    'TenantRegistry',
    'TenantScope',
    'namespace_backend_for',
]
