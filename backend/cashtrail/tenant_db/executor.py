"""
Scoped executor.

Routes a unit of work to a tenant namespace. The binding is an explicit
TenantScope handed to the work; it exists only for the duration of the call
and is cleared before the connection goes back to the pool, so concurrent
work for other tenants on other connections can never observe it.
"""

import logging
import threading
import uuid
from contextlib import contextmanager
from typing import Any, Callable, Generator, Optional, Union

from sqlalchemy import text
from sqlalchemy.engine import Connection
from sqlalchemy.exc import DBAPIError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from ..exceptions import CheckoutTimeout, ConnectionLost, SchemaNotFound, ScopeBindingFailed, TenantNotActive
from ..models.tenant import to_tenant_id
from .locks import Deadline
from .namespaces import NamespaceBackend
from .registry import TenantRegistry

logger = logging.getLogger(__name__)


class TenantScope:
    """
    A connection bound to one tenant namespace for one unit of work.

    Attributes:
        tenant_id (UUID): Tenant the work runs for
        schema_name (str): Namespace the connection is bound to
        connection (Connection): Bound connection, inside an open transaction
        read_only (bool): Whether writes are rejected by the store
    """

    def __init__(self, tenant_id: uuid.UUID, schema_name: str, connection: Connection,
                 read_only: bool = False):
        self.tenant_id = tenant_id
        self.schema_name = schema_name
        self.connection = connection
        self.read_only = read_only

    def execute(self, statement, params: Optional[dict] = None):
        """Execute a statement (SQL string or SQLAlchemy construct) in the tenant namespace."""
        if isinstance(statement, str):
            statement = text(statement)
        if params is None:
            return self.connection.execute(statement)
        return self.connection.execute(statement, params)

    def __repr__(self) -> str:
        return f"<TenantScope tenant={self.tenant_id} schema={self.schema_name}>"


class ScopedExecutor:
    """
    Runs units of work against Active tenants.

    Connection checkout is gated so that at most ``max_concurrency`` units of
    work hold a connection at once; waiting for a slot honours the caller's
    deadline. The backend's work pool must hold at least ``max_concurrency``
    connections, so that past the gate a checkout never waits on the pool.
    """

    def __init__(self, registry: TenantRegistry, backend: NamespaceBackend,
                 max_concurrency: int = 10, checkout_timeout: float = 30.0):
        self.registry = registry
        self.backend = backend
        self.checkout_timeout = checkout_timeout
        self._gate = threading.BoundedSemaphore(max_concurrency)

    def _checkout(self, schema_name: str, timeout: Optional[float]) -> Connection:
        try:
            return self.backend.checkout(schema_name)
        except SchemaNotFound as e:
            raise ScopeBindingFailed(schema_name, e) from e
        except PoolTimeoutError as e:
            raise CheckoutTimeout(timeout) from e
        except DBAPIError as e:
            raise ConnectionLost(f"Could not connect to {schema_name}: {e}", e) from e

    @contextmanager
    def scope(self, tenant_id: Union[str, uuid.UUID], read_only: bool = False,
              timeout: Optional[float] = None) -> Generator[TenantScope, None, None]:
        """
        Bind a pooled connection to a tenant namespace for the block.

        The block runs in one transaction, committed on normal exit and rolled
        back on error.

        Args:
            tenant_id: Tenant UUID (or its string form)
            read_only: Reject writes for this unit of work
            timeout: Seconds to wait for a connection (default from config)

        Raises:
            TenantNotFound: If no record exists
            TenantNotActive: If the tenant is not Active
            CheckoutTimeout: If no connection became available in time
            ConnectionLost: If the connection failed or was lost during the work
            ScopeBindingFailed: If the connection could not be bound
        """
        tenant_id = to_tenant_id(tenant_id)
        record = self.registry.get(tenant_id)
        if not record.is_active:
            raise TenantNotActive(tenant_id, record.state)

        deadline = Deadline(self.checkout_timeout if timeout is None else timeout)
        remaining = deadline.remaining()
        if not self._gate.acquire(timeout=remaining):
            raise CheckoutTimeout(deadline.timeout)

        try:
            connection = self._checkout(record.schema_name, deadline.timeout)
            try:
                with self.backend.bound(connection, record.schema_name, read_only=read_only):
                    try:
                        yield TenantScope(tenant_id, record.schema_name, connection, read_only)
                    except DBAPIError as e:
                        if e.connection_invalidated:
                            raise ConnectionLost(f"Connection lost during work for tenant {tenant_id}: {e}", e) from e
                        raise
            finally:
                connection.close()
        finally:
            self._gate.release()

    def run(self, tenant_id: Union[str, uuid.UUID], work: Callable[[TenantScope], Any],
            read_only: bool = False, timeout: Optional[float] = None) -> Any:
        """
        Run ``work(scope)`` against a tenant and return its result.

        Errors raised by the work propagate unchanged. A read-only unit of
        work is retried once on ConnectionLost; writes are never retried.
        """
        attempts = 2 if read_only else 1

        for attempt in range(1, attempts + 1):
            try:
                with self.scope(tenant_id, read_only=read_only, timeout=timeout) as scope:
                    return work(scope)
            except ConnectionLost as e:
                if attempt == attempts:
                    raise
                logger.warning(f"Connection lost running read-only work for tenant {tenant_id}, retrying: {e}")
