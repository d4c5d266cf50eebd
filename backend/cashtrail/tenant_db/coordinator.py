"""
Tenant lifecycle coordinator.

Orchestrates provision, deprovision, upgrade and purge of one tenant end to
end. Every operation runs under the tenant's exclusive lock; inside the lock
the coordinator drives the registry state machine, creates or drops the
namespace through the SchemaProvisioner and applies the tenant MigrationSet
through the MigrationRunner.

Concurrent provision calls for the same tenant have join semantics: callers
queue on the lock, the first one does the work, and the rest share its
outcome: they return the Active record, or report the failure of the attempt
they waited on instead of starting another one.

Usage:
    >>> coordinator.provision(tenant_id)
    <Tenant id=... schema=tenant_... state=active>
    >>> coordinator.deprovision(tenant_id)
    <Tenant id=... schema=tenant_... state=dropped>
"""

import logging
import time
import uuid
from contextlib import ExitStack, contextmanager
from typing import Generator, List, Optional, Union

from ..exceptions import (
    InvalidTenantTransition,
    LockTimeout,
    MigrationFailed,
    ProvisioningFailed,
    SchemaAlreadyExists,
    SchemaNotFound,
    TenancyError,
    TenantNotActive,
)
from ..models.tenant import DEFAULT_SCHEMA_PREFIX, Tenant, TenantState, to_tenant_id
from .locks import Deadline
from .migration_set import MigrationSet
from .provisioner import SchemaProvisioner
from .registry import TenantRegistry
from .tenant_migrations import MigrationRunner

logger = logging.getLogger(__name__)

TenantIdentifier = Union[str, uuid.UUID]


class TenantLifecycleCoordinator:
    """
    Serialized lifecycle operations for tenants.

    Args:
        registry: Tenant registry in the shared namespace
        provisioner: Namespace create/drop
        runner: Migration runner
        migration_set: Tenant MigrationSet applied to every tenant namespace
        locks: Lock manager providing ``hold(key, deadline)``
        schema_prefix: Prefix of every tenant namespace name
        lock_timeout: Default seconds to wait for the tenant lock
        lock_retries: Default number of retries after a lock timeout
        lock_backoff: Base delay in seconds between lock retries (doubled each time)
    """

    def __init__(self, registry: TenantRegistry, provisioner: SchemaProvisioner,
                 runner: MigrationRunner, migration_set: MigrationSet, locks,
                 schema_prefix: str = DEFAULT_SCHEMA_PREFIX, lock_timeout: float = 30.0,
                 lock_retries: int = 0, lock_backoff: float = 0.5):
        self.registry = registry
        self.provisioner = provisioner
        self.runner = runner
        self.migration_set = migration_set
        self.locks = locks
        self.schema_prefix = schema_prefix
        self.lock_timeout = lock_timeout
        self.lock_retries = lock_retries
        self.lock_backoff = lock_backoff

    def schema_name_for(self, tenant_id: TenantIdentifier) -> str:
        return Tenant.schema_name_for(tenant_id, self.schema_prefix)

    @contextmanager
    def _locked(self, tenant_id: uuid.UUID, timeout: Optional[float],
                lock_retries: Optional[int]) -> Generator[None, None, None]:
        """
        Hold the tenant lock for the duration of the block.

        A lock timeout is retried only when ``lock_retries`` (or the default)
        is above zero, sleeping ``lock_backoff * 2**attempt`` in between.

        Raises:
            LockTimeout: When every attempt timed out
        """
        key = f"tenant:{tenant_id}"
        timeout = self.lock_timeout if timeout is None else timeout
        retries = self.lock_retries if lock_retries is None else lock_retries

        with ExitStack() as stack:
            attempt = 0
            while True:
                try:
                    stack.enter_context(self.locks.hold(key, Deadline(timeout)))
                    break
                except LockTimeout:
                    if attempt >= retries:
                        logger.warning(f"Gave up waiting for lock on tenant {tenant_id} "
                                       f"after {attempt + 1} attempt(s)")
                        raise
                    delay = self.lock_backoff * (2 ** attempt)
                    attempt += 1
                    logger.info(f"Lock on tenant {tenant_id} busy, retry {attempt}/{retries} in {delay}s")
                    time.sleep(delay)

            yield

    def _compensate(self, schema_name: str):
        # Best effort: a failed compensating drop must not mask the original error
        try:
            self.provisioner.drop(schema_name)
        except SchemaNotFound:
            logger.info(f"Nothing to clean up for {schema_name}")
        except Exception as e:
            logger.error(f"Compensating drop of {schema_name} failed: {e}", exc_info=True)

    def _mark_failed(self, tenant_id: uuid.UUID, error: Exception):
        failed_version = error.version if isinstance(error, MigrationFailed) else None
        try:
            self.registry.transition(tenant_id, TenantState.FAILED, error=str(error),
                                     failed_version=failed_version)
        except Exception as e:
            logger.error(f"Could not mark tenant {tenant_id} as failed: {e}", exc_info=True)

    @staticmethod
    def _joined_failure(record: Tenant) -> TenancyError:
        """Error reported to callers that waited on a failed provisioning attempt."""
        error = ProvisioningFailed(record.id, record.last_error)
        if record.failed_version is not None:
            return MigrationFailed(record.failed_version, error)
        return error

    def provision(self, tenant_id: TenantIdentifier, timeout: Optional[float] = None,
                  lock_retries: Optional[int] = None) -> Tenant:
        """
        Create, migrate and activate the namespace of a tenant.

        The Pending record is inserted before waiting for the lock, so a lock
        timeout leaves the tenant Pending for a later retry. An Active tenant
        is returned as is. When an attempt that was pending or in progress as
        this call arrived fails, the call reports that failure (MigrationFailed
        with the same version, or ProvisioningFailed) without retrying. A
        tenant that had already failed (or was left Provisioning by a crashed
        process) is retried from scratch after removing any leftover namespace.

        On failure the namespace created by this call is dropped, the record
        is set to Failed with the error message, and the original error is
        raised unchanged.

        Args:
            tenant_id: Tenant UUID (or its string form)
            timeout: Seconds to wait for the tenant lock (default from config)
            lock_retries: Retries after a lock timeout (default from config)

        Returns:
            Active Tenant record

        Raises:
            LockTimeout: If the tenant lock could not be acquired
            SchemaAlreadyExists: If a foreign namespace already uses the name
            MigrationFailed: If a tenant migration failed
            ProvisioningFailed: If the joined attempt failed before migrating
            InvalidTenantTransition: If the tenant is Dropping or Dropped
        """
        tenant_id = to_tenant_id(tenant_id)
        schema_name = self.schema_name_for(tenant_id)

        seen = self.registry.ensure_pending(tenant_id, schema_name)
        # Attempts started after this point, or running now, are joined
        joined_after = seen.attempts - 1 if seen.state == TenantState.PROVISIONING else seen.attempts

        with self._locked(tenant_id, timeout, lock_retries):
            record = self.registry.get(tenant_id)

            if record.state == TenantState.ACTIVE:
                logger.info(f"Tenant {tenant_id} already active, nothing to provision")
                return record

            if record.state in (TenantState.DROPPING, TenantState.DROPPED):
                raise InvalidTenantTransition(tenant_id, record.state, TenantState.PROVISIONING)

            if record.state == TenantState.FAILED and record.attempts > joined_after:
                logger.info(f"Tenant {tenant_id} failed in a concurrent call, reporting its error")
                raise self._joined_failure(record)

            leftover = record.state in (TenantState.FAILED, TenantState.PROVISIONING)
            if record.state == TenantState.PROVISIONING:
                logger.warning(f"Tenant {tenant_id} was left provisioning, retrying")
                self.registry.transition(tenant_id, TenantState.FAILED,
                                         error=record.last_error or "Provisioning interrupted")

            self.registry.transition(tenant_id, TenantState.PROVISIONING)

            try:
                if leftover and self.provisioner.exists(schema_name):
                    logger.info(f"Removing leftover schema {schema_name} before retry")
                    self.provisioner.drop(schema_name)

                self.provisioner.create(schema_name)
                applied = self.runner.apply(schema_name, self.migration_set)
                record = self.registry.transition(tenant_id, TenantState.ACTIVE)

            except Exception as e:
                logger.error(f"Provisioning of tenant {tenant_id} failed: {e}")
                # An existing namespace was not created by us and must not be dropped
                if not isinstance(e, SchemaAlreadyExists):
                    self._compensate(schema_name)
                self._mark_failed(tenant_id, e)
                raise

        logger.info(f"Provisioned tenant {tenant_id} in {schema_name} "
                    f"({len(applied)} migration(s) applied)")
        return record

    def deprovision(self, tenant_id: TenantIdentifier, timeout: Optional[float] = None,
                    lock_retries: Optional[int] = None) -> Optional[Tenant]:
        """
        Drop the namespace of a tenant and mark its record Dropped.

        Deprovisioning a tenant that was never provisioned, or one that is
        already Dropped, is a no-op. A tenant left Dropping by an earlier
        failure is dropped again.

        Returns:
            Dropped Tenant record, or None when no record exists

        Raises:
            LockTimeout: If the tenant lock could not be acquired
        """
        tenant_id = to_tenant_id(tenant_id)

        with self._locked(tenant_id, timeout, lock_retries):
            record = self.registry.find(tenant_id)

            if record is None:
                logger.info(f"Tenant {tenant_id} was never provisioned, nothing to deprovision")
                return None

            if record.state == TenantState.DROPPED:
                logger.info(f"Tenant {tenant_id} already dropped")
                return record

            if record.state != TenantState.DROPPING:
                self.registry.transition(tenant_id, TenantState.DROPPING)

            try:
                self.provisioner.drop(record.schema_name)
            except SchemaNotFound:
                logger.info(f"Schema {record.schema_name} already gone")
            except Exception as e:
                logger.error(f"Deprovisioning of tenant {tenant_id} failed: {e}")
                self.registry.record_error(tenant_id, str(e))
                raise

            record = self.registry.transition(tenant_id, TenantState.DROPPED)

        logger.info(f"Deprovisioned tenant {tenant_id}")
        return record

    def purge(self, tenant_id: TenantIdentifier, timeout: Optional[float] = None,
              lock_retries: Optional[int] = None):
        """
        Physically delete the record of a Dropped tenant.

        Raises:
            TenantNotFound: If no record exists
            InvalidTenantTransition: If the tenant is not Dropped
        """
        tenant_id = to_tenant_id(tenant_id)

        with self._locked(tenant_id, timeout, lock_retries):
            record = self.registry.get(tenant_id)
            if record.state != TenantState.DROPPED:
                raise InvalidTenantTransition(tenant_id, record.state, 'purged')
            self.registry.delete(tenant_id)

    def migrate(self, tenant_id: TenantIdentifier, timeout: Optional[float] = None,
                lock_retries: Optional[int] = None) -> List[int]:
        """
        Apply newly appended tenant migrations to an Active tenant.

        A failure is recorded in ``last_error``; the tenant stays Active at
        its previous version and its namespace is left in place.

        Returns:
            Versions applied by this call

        Raises:
            TenantNotFound: If no record exists
            TenantNotActive: If the tenant is not Active
            MigrationFailed: If a migration failed
            MigrationIntegrityError: If the tenant ledger disagrees with the set
        """
        tenant_id = to_tenant_id(tenant_id)

        with self._locked(tenant_id, timeout, lock_retries):
            record = self.registry.get(tenant_id)
            if not record.is_active:
                raise TenantNotActive(tenant_id, record.state)

            try:
                applied = self.runner.apply(record.schema_name, self.migration_set)
            except Exception as e:
                logger.error(f"Upgrade of tenant {tenant_id} failed: {e}")
                self.registry.record_error(tenant_id, str(e))
                raise

            if record.last_error:
                self.registry.record_error(tenant_id, None)

        return applied
