"""
Tenant registry.

Durable record of every tenant in the shared namespace (``tenants`` table).
Reads are open to any caller; writes come only from the lifecycle coordinator,
which holds the tenant's lock while it mutates a row.
"""

import logging
import uuid
from contextlib import contextmanager
from typing import Generator, List, Optional

from sqlalchemy import select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from ..exceptions import TenantNotFound
from ..models.tenant import Tenant, TenantState

logger = logging.getLogger(__name__)


class TenantRegistry:
    """Queries and state updates for Tenant records."""

    def __init__(self, engine: Engine):
        self.engine = engine
        self._session_factory = sessionmaker(bind=engine, expire_on_commit=False)

    @contextmanager
    def _session(self) -> Generator[Session, None, None]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def create_table(self):
        """Create the ``tenants`` table in the shared namespace if missing."""
        Tenant.__table__.create(bind=self.engine, checkfirst=True)
        logger.info("Tenant registry table ready")

    def find(self, tenant_id: uuid.UUID) -> Optional[Tenant]:
        with self._session() as session:
            return session.get(Tenant, tenant_id)

    def get(self, tenant_id: uuid.UUID) -> Tenant:
        """
        Raises:
            TenantNotFound: If no record exists
        """
        tenant = self.find(tenant_id)
        if tenant is None:
            raise TenantNotFound(tenant_id)
        return tenant

    def list(self, state: Optional[TenantState] = None) -> List[Tenant]:
        with self._session() as session:
            query = select(Tenant).order_by(Tenant.created_at)
            if state is not None:
                query = query.where(Tenant.state == state)
            return list(session.scalars(query))

    def ensure_pending(self, tenant_id: uuid.UUID, schema_name: str) -> Tenant:
        """
        Insert a Pending record unless one already exists.

        Insert-only, so it is safe without the tenant lock: concurrent callers
        race on the primary key and the losers read the winner's row.
        """
        existing = self.find(tenant_id)
        if existing is not None:
            return existing

        try:
            with self._session() as session:
                tenant = Tenant(id=tenant_id, schema_name=schema_name, state=TenantState.PENDING, attempts=0)
                session.add(tenant)
            logger.info(f"Registered tenant {tenant_id} (schema {schema_name})")
            return tenant
        except IntegrityError:
            logger.debug(f"Tenant {tenant_id} registered concurrently")
            return self.get(tenant_id)

    def transition(self, tenant_id: uuid.UUID, state: TenantState,
                   error: Optional[str] = None, failed_version: Optional[int] = None) -> Tenant:
        """
        Move a tenant to ``state`` and store (or clear) its last error.

        Entering Provisioning starts a new attempt: the attempt counter is
        incremented and the previous failure cleared.

        Args:
            tenant_id: Tenant UUID
            state: Target state
            error: Error message to keep in ``last_error`` (None clears it)
            failed_version: Migration version a provisioning attempt failed at

        Raises:
            TenantNotFound: If no record exists
            InvalidTenantTransition: If the state machine forbids the move
        """
        with self._session() as session:
            tenant = session.get(Tenant, tenant_id)
            if tenant is None:
                raise TenantNotFound(tenant_id)

            tenant.transition_to(state)
            tenant.last_error = error
            tenant.failed_version = failed_version
            if state == TenantState.PROVISIONING:
                tenant.attempts = (tenant.attempts or 0) + 1

        logger.info(f"Tenant {tenant_id} is now {state}")
        return tenant

    def record_error(self, tenant_id: uuid.UUID, error: Optional[str]) -> Tenant:
        with self._session() as session:
            tenant = session.get(Tenant, tenant_id)
            if tenant is None:
                raise TenantNotFound(tenant_id)
            tenant.last_error = error
        return tenant

    def delete(self, tenant_id: uuid.UUID):
        with self._session() as session:
            tenant = session.get(Tenant, tenant_id)
            if tenant is None:
                raise TenantNotFound(tenant_id)
            session.delete(tenant)
        logger.info(f"Purged tenant record {tenant_id}")
