"""
TenantService - Business Logic for Tenant Management

This service handles tenant lifecycle operations for callers that want
(result, error) tuples instead of exceptions: the CLI, and the domain
"create entity" / "remove entity" use cases.

Key responsibilities:
- Provision a tenant namespace when an entity is created
- Deprovision (and optionally purge) a tenant when an entity is removed
- Query tenant records and migration history
- Upgrade every tenant namespace to the latest tenant migration set

Architecture:
- Service layer sits between callers and the TenantDatabaseManager
- Tenancy errors are logged here and turned into error messages
- Unexpected errors are logged with their traceback
"""

import logging
import uuid
from typing import Dict, List, Optional, Tuple, Union

from ..exceptions import LockTimeout, MigrationFailed, TenancyError
from ..models.tenant import Tenant, TenantState, to_tenant_id
from ..utils.database import tenant_db_manager

logger = logging.getLogger(__name__)

TenantIdentifier = Union[str, uuid.UUID]


class TenantService:
    """
    Service class for tenant lifecycle operations.

    All methods are static since there's no instance state to maintain.
    """

    @staticmethod
    def create_tenant(tenant_id: Optional[TenantIdentifier] = None) -> Tuple[Optional[Tenant], Optional[str]]:
        """
        Provision the isolated namespace of a new (or retried) tenant.

        Args:
            tenant_id: Entity UUID; a new one is generated when omitted

        Returns:
            Tuple of (Tenant object, error message)
            - If successful: (tenant, None)
            - If the id is invalid: (None, 'Invalid tenant id: ...')
            - If a migration failed: (None, 'Migration v3 failed: ...')
            - If error: (None, error_message)

        Example:
            tenant, error = TenantService.create_tenant(entity.id)
            if error:
                return bad_request(error)
        """
        try:
            tenant_id = to_tenant_id(tenant_id) if tenant_id is not None else uuid.uuid4()
        except ValueError:
            logger.warning(f"Tenant creation failed: invalid tenant id {tenant_id!r}")
            return None, f'Invalid tenant id: {tenant_id}'

        try:
            tenant = tenant_db_manager.provision(tenant_id)
            logger.info(f"Tenant created successfully: {tenant.id} ({tenant.schema_name})")
            return tenant, None

        except MigrationFailed as e:
            logger.error(f"Tenant {tenant_id} provisioning failed at v{e.version}: {e.cause}")
            return None, str(e)

        except LockTimeout as e:
            logger.warning(f"Tenant {tenant_id} is busy: {e}")
            return None, f'Tenant is busy, try again later: {str(e)}'

        except TenancyError as e:
            logger.error(f"Tenant {tenant_id} provisioning failed: {str(e)}")
            return None, str(e)

        except Exception as e:
            logger.error(f"Tenant creation error: {str(e)}", exc_info=True)
            return None, f'Tenant creation failed: {str(e)}'

    @staticmethod
    def get_tenant(tenant_id: TenantIdentifier) -> Tuple[Optional[Tenant], Optional[str]]:
        """
        Get tenant record by ID.

        Returns:
            Tuple of (Tenant object, error message)
            - If found: (tenant, None)
            - If not found: (None, 'Tenant not found')
        """
        try:
            tenant = tenant_db_manager.get_tenant(tenant_id)

            if not tenant:
                logger.warning(f"Tenant not found: {tenant_id}")
                return None, 'Tenant not found'

            return tenant, None

        except ValueError:
            return None, f'Invalid tenant id: {tenant_id}'
        except Exception as e:
            logger.error(f"Error fetching tenant {tenant_id}: {str(e)}", exc_info=True)
            return None, f'Failed to fetch tenant: {str(e)}'

    @staticmethod
    def list_tenants(state: Optional[TenantState] = None) -> Tuple[Optional[List[Tenant]], Optional[str]]:
        try:
            return tenant_db_manager.list_tenants(state), None
        except Exception as e:
            logger.error(f"Error listing tenants: {str(e)}", exc_info=True)
            return None, f'Failed to list tenants: {str(e)}'

    @staticmethod
    def delete_tenant(tenant_id: TenantIdentifier, purge: bool = False) -> Tuple[bool, Optional[str]]:
        """
        Deprovision a tenant: drop its namespace and mark it Dropped.

        WARNING: Dropping the namespace permanently deletes the tenant's data!

        Args:
            tenant_id: Tenant UUID
            purge: Also delete the Dropped record (otherwise kept for audit)

        Returns:
            Tuple of (success boolean, error message)
            - If successful (or never provisioned): (True, None)
            - If error: (False, error_message)
        """
        try:
            tenant = tenant_db_manager.deprovision(tenant_id)

            if tenant is None:
                logger.info(f"Tenant {tenant_id} had no namespace to delete")
                return True, None

            if purge:
                tenant_db_manager.purge(tenant_id)
                logger.info(f"Tenant {tenant_id} deprovisioned and purged")
            else:
                logger.info(f"Tenant {tenant_id} deprovisioned (record kept for audit)")

            return True, None

        except ValueError:
            return False, f'Invalid tenant id: {tenant_id}'
        except TenancyError as e:
            logger.error(f"Tenant {tenant_id} deletion failed: {str(e)}")
            return False, str(e)
        except Exception as e:
            logger.error(f"Tenant deletion error: {str(e)}", exc_info=True)
            return False, f'Failed to delete tenant: {str(e)}'

    @staticmethod
    def migrate_tenant(tenant: Tenant, dry_run: bool = False) -> Dict:
        """
        Bring one tenant namespace to the latest tenant migration version.

        Args:
            tenant: Tenant record
            dry_run: If True, report pending migrations without applying them

        Returns:
            dict with tenant_id, schema, status, current_version, target_version,
            applied_migrations and error. Status is one of 'up_to_date',
            'would_migrate', 'migrated', 'error'.
        """
        target_version = tenant_db_manager.tenant_migrations.latest_version
        result = {
            "tenant_id": str(tenant.id),
            "schema": tenant.schema_name,
            "status": "up_to_date",
            "current_version": 0,
            "target_version": target_version,
            "applied_migrations": [],
            "error": None
        }

        try:
            pending = tenant_db_manager.pending_migrations(tenant.id)
            result["current_version"] = target_version - len(pending)

            if not pending:
                logger.info(f"  {tenant.schema_name} already up to date (v{target_version})")
            elif dry_run:
                result["status"] = "would_migrate"
                logger.info(f"  {tenant.schema_name} would apply {len(pending)} migration(s) "
                            f"(v{result['current_version']} -> v{target_version})")
            else:
                result["applied_migrations"] = tenant_db_manager.migrate_tenant(tenant.id)
                result["status"] = "migrated"
                logger.info(f"  {tenant.schema_name} migrated successfully "
                            f"(v{result['current_version']} -> v{target_version})")

        except Exception as e:
            result["status"] = "error"
            result["error"] = str(e)
            logger.error(f"  {tenant.schema_name} migration failed: {e}")

        return result

    @staticmethod
    def migrate_all_tenants(dry_run: bool = False,
                            tenant_id: Optional[TenantIdentifier] = None) -> Tuple[Optional[List[Dict]], Optional[str]]:
        """
        Upgrade every Active tenant (or a single one) to the latest tenant migrations.

        One tenant's failure is reported in its result and does not stop the others.

        Returns:
            Tuple of (list of per-tenant result dicts, error message)
        """
        try:
            if tenant_id is not None:
                tenant = tenant_db_manager.get_tenant(tenant_id)
                if tenant is None:
                    return None, f'Tenant not found: {tenant_id}'
                tenants = [tenant]
            else:
                tenants = tenant_db_manager.list_tenants(TenantState.ACTIVE)

            logger.info(f"Migrating {len(tenants)} tenant(s) (dry_run={dry_run})")
            return [TenantService.migrate_tenant(tenant, dry_run=dry_run) for tenant in tenants], None

        except ValueError:
            return None, f'Invalid tenant id: {tenant_id}'
        except Exception as e:
            logger.error(f"Tenant migration error: {str(e)}", exc_info=True)
            return None, f'Failed to migrate tenants: {str(e)}'

    @staticmethod
    def get_migration_history(tenant_id: Optional[TenantIdentifier] = None) -> Tuple[Optional[List[Dict]], Optional[str]]:
        """
        Ledger of a tenant namespace (or of the shared namespace when tenant_id is None).

        Returns:
            Tuple of (ledger rows, error message)
        """
        try:
            return tenant_db_manager.history(tenant_id), None
        except ValueError:
            return None, f'Invalid tenant id: {tenant_id}'
        except TenancyError as e:
            return None, str(e)
        except Exception as e:
            logger.error(f"Error reading migration history: {str(e)}", exc_info=True)
            return None, f'Failed to read migration history: {str(e)}'
