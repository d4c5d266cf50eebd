"""
Database utilities for multi-tenant schema management.

TenantDatabaseManager wires the tenant_db components to a Flask app and is
the entry point used by services, the CLI and domain code: provision and
deprovision tenants, run units of work scoped to a tenant namespace, and
migrate the shared and tenant namespaces.
"""

import os
import logging
import uuid
from contextlib import contextmanager
from typing import Any, Callable, Dict, Generator, List, Optional, Union

from sqlalchemy.orm import Session

from ..extensions import db
from ..models.tenant import Tenant, TenantState, to_tenant_id
from ..tenant_db.coordinator import TenantLifecycleCoordinator
from ..tenant_db.executor import ScopedExecutor, TenantScope
from ..tenant_db.locks import lock_manager_for
from ..tenant_db.migration_set import MigrationScript, MigrationSet
from ..tenant_db.namespaces import namespace_backend_for
from ..tenant_db.provisioner import SchemaProvisioner
from ..tenant_db.registry import TenantRegistry
from ..tenant_db.tenant_migrations import MigrationRunner

logger = logging.getLogger(__name__)

TenantIdentifier = Union[str, uuid.UUID]


class TenantDatabaseManager:
    """
    Manages tenant namespaces and tenant-scoped database access.

    Builds the namespace backend matching the configured database (PostgreSQL
    schemas, or SQLite database files for development and tests), loads the
    tenant and shared migration sets once, and exposes the lifecycle and
    scoped-execution operations.
    """

    def __init__(self, app=None, **kwargs):
        """
        Initialize the tenant database manager.

        Args:
            app: Flask application instance (optional, can be set later with init_app)
        """
        self.app = None
        self.backend = None

        if app is not None:
            self.init_app(app, **kwargs)

    def init_app(self, app, tenant_migrations: Optional[MigrationSet] = None,
                 shared_migrations: Optional[MigrationSet] = None):
        """
        Initialize the manager with Flask app configuration.

        Args:
            app: Flask application instance
            tenant_migrations: Tenant migration set (default: loaded from TENANT_MIGRATIONS_DIR)
            shared_migrations: Shared migration set (default: loaded from SHARED_MIGRATIONS_DIR)
        """
        if self.backend is not None:
            self.close_all_connections()

        self.app = app
        config = app.config

        with app.app_context():
            engine = db.engine

        namespace_dir = config.get('TENANT_NAMESPACE_DIR')
        if namespace_dir and not os.path.isabs(namespace_dir):
            namespace_dir = os.path.join(app.instance_path, namespace_dir)

        self.schema_prefix = config.get('TENANT_SCHEMA_PREFIX', 'tenant_')
        max_concurrent_work = config.get('TENANT_MAX_CONCURRENT_WORK', 30)
        checkout_timeout = config.get('TENANT_CHECKOUT_TIMEOUT', 30.0)

        # The work pool is sized to the executor's gate
        self.backend = namespace_backend_for(
            engine,
            namespace_dir=namespace_dir,
            work_pool_size=max_concurrent_work,
            work_pool_timeout=checkout_timeout,
        )

        self.tenant_migrations = tenant_migrations if tenant_migrations is not None else MigrationSet.from_directory(
            config['TENANT_MIGRATIONS_DIR'], label='tenant'
        )
        self.shared_migrations = shared_migrations if shared_migrations is not None else MigrationSet.from_directory(
            config['SHARED_MIGRATIONS_DIR'], label='shared'
        )

        self.registry = TenantRegistry(engine)
        self.runner = MigrationRunner(self.backend)
        self.provisioner = SchemaProvisioner(self.backend)
        self.coordinator = TenantLifecycleCoordinator(
            registry=self.registry,
            provisioner=self.provisioner,
            runner=self.runner,
            migration_set=self.tenant_migrations,
            locks=lock_manager_for(engine),
            schema_prefix=self.schema_prefix,
            lock_timeout=config.get('TENANT_LOCK_TIMEOUT', 30.0),
            lock_retries=config.get('TENANT_LOCK_RETRIES', 0),
            lock_backoff=config.get('TENANT_LOCK_BACKOFF', 0.5),
        )
        self.executor = ScopedExecutor(
            registry=self.registry,
            backend=self.backend,
            max_concurrency=max_concurrent_work,
            checkout_timeout=checkout_timeout,
        )

        app.extensions['tenant_db_manager'] = self

        logger.info(
            f"Tenant database manager ready: backend={self.backend.name}, "
            f"tenant migrations v{self.tenant_migrations.latest_version}, "
            f"shared migrations v{self.shared_migrations.latest_version}"
        )

        if config.get('TENANT_AUTO_MIGRATE_SHARED'):
            self.migrate_shared()

    # Shared namespace --------------------------------------------------------

    def migrate_shared(self) -> List[int]:
        """
        Create the tenants table and apply the shared migration set.

        Returns:
            Shared migration versions applied by this call
        """
        self.registry.create_table()
        return self.runner.apply(None, self.shared_migrations)

    # Lifecycle -----------------------------------------------------------------

    def provision(self, tenant_id: TenantIdentifier, timeout: Optional[float] = None,
                  lock_retries: Optional[int] = None) -> Tenant:
        """
        Provision the namespace of a tenant (see TenantLifecycleCoordinator.provision).

        Example:
            >>> tenant_db_manager.provision(entity.id)
            <Tenant id=... schema=tenant_... state=active>
        """
        return self.coordinator.provision(tenant_id, timeout=timeout, lock_retries=lock_retries)

    def deprovision(self, tenant_id: TenantIdentifier, timeout: Optional[float] = None,
                    lock_retries: Optional[int] = None) -> Optional[Tenant]:
        return self.coordinator.deprovision(tenant_id, timeout=timeout, lock_retries=lock_retries)

    def purge(self, tenant_id: TenantIdentifier, timeout: Optional[float] = None,
              lock_retries: Optional[int] = None):
        self.coordinator.purge(tenant_id, timeout=timeout, lock_retries=lock_retries)

    def migrate_tenant(self, tenant_id: TenantIdentifier, timeout: Optional[float] = None,
                       lock_retries: Optional[int] = None) -> List[int]:
        return self.coordinator.migrate(tenant_id, timeout=timeout, lock_retries=lock_retries)

    def get_tenant(self, tenant_id: TenantIdentifier) -> Optional[Tenant]:
        return self.registry.find(to_tenant_id(tenant_id))

    def list_tenants(self, state: Optional[TenantState] = None) -> List[Tenant]:
        return self.registry.list(state)

    # Scoped execution ---------------------------------------------------------

    def with_tenant(self, tenant_id: TenantIdentifier, work: Callable[[TenantScope], Any],
                    read_only: bool = False, timeout: Optional[float] = None) -> Any:
        """
        Run a unit of work bound to a tenant namespace.

        Example:
            >>> tenant_db_manager.with_tenant(
            ...     entity.id,
            ...     lambda scope: scope.execute("SELECT count(*) FROM accounts").scalar(),
            ...     read_only=True,
            ... )
            3
        """
        return self.executor.run(tenant_id, work, read_only=read_only, timeout=timeout)

    def tenant_scope(self, tenant_id: TenantIdentifier, read_only: bool = False,
                     timeout: Optional[float] = None):
        return self.executor.scope(tenant_id, read_only=read_only, timeout=timeout)

    @contextmanager
    def tenant_session(self, tenant_id: TenantIdentifier, read_only: bool = False,
                       timeout: Optional[float] = None) -> Generator[Session, None, None]:
        """
        Context manager for ORM sessions scoped to a tenant namespace.

        Provides automatic session management with commit/rollback and cleanup.

        Yields:
            SQLAlchemy Session bound to the tenant's scoped connection

        Example:
            >>> with tenant_db_manager.tenant_session(entity.id) as session:
            ...     session.execute(text("INSERT INTO currencies ..."))
            ...     # Session automatically committed on success, rolled back on error
        """
        with self.executor.scope(tenant_id, read_only=read_only, timeout=timeout) as scope:
            session = Session(bind=scope.connection, expire_on_commit=False)

            try:
                yield session
                session.commit()
                logger.debug(f"Committed session for tenant: {scope.tenant_id}")
            except Exception as e:
                session.rollback()
                logger.error(f"Rolled back session for tenant {scope.tenant_id}: {str(e)}")
                raise
            finally:
                session.close()

    # Migrations and maintenance -------------------------------------------------

    def pending_migrations(self, tenant_id: TenantIdentifier) -> List[MigrationScript]:
        """Tenant migrations not yet applied to an Active tenant's namespace."""
        tenant = self.registry.get(to_tenant_id(tenant_id))
        current = self.runner.current_version(tenant.schema_name, self.tenant_migrations)
        return self.tenant_migrations.pending_after(current)

    def history(self, tenant_id: Optional[TenantIdentifier] = None) -> List[Dict]:
        """
        Migration ledger of a tenant namespace, or of the shared namespace.

        Args:
            tenant_id: Tenant identifier, or None for the shared namespace

        Returns:
            Ledger rows (version, description, checksum, applied_at), oldest first
        """
        if tenant_id is None:
            return self.runner.history(None)

        tenant = self.registry.get(to_tenant_id(tenant_id))
        return self.runner.history(tenant.schema_name)

    def find_orphaned_schemas(self) -> List[str]:
        """
        Tenant-prefixed namespaces that no live tenant owns.

        A namespace is orphaned when no record uses it, or when its record is
        Dropped or Failed (a compensating drop that did not complete).
        """
        owners = {tenant.schema_name: tenant for tenant in self.registry.list()}
        orphans = []

        for schema_name in self.provisioner.list(self.schema_prefix):
            owner = owners.get(schema_name)
            if owner is None or owner.state in (TenantState.DROPPED, TenantState.FAILED):
                orphans.append(schema_name)

        if orphans:
            logger.warning(f"Found {len(orphans)} orphaned tenant schema(s)")
        return orphans

    def close_all_connections(self):
        """
        Close all cached database connections and dispose engines.

        Useful for cleanup during application shutdown or testing.
        """
        logger.info("Closing all tenant database connections")
        if self.backend is not None:
            self.backend.dispose()


# Global instance to be initialized with Flask app
tenant_db_manager = TenantDatabaseManager()


def init_tenant_db_manager(app, **kwargs):
    """
    Initialize the global tenant database manager with Flask app.

    Args:
        app: Flask application instance

    Example:
        >>> from cashtrail.utils.database import init_tenant_db_manager
        >>> init_tenant_db_manager(app)
    """
    tenant_db_manager.init_app(app, **kwargs)
