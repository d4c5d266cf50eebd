"""
Namespace backends for tenant isolation.

A namespace backend owns everything that depends on the database engine:
how a tenant namespace is created, dropped and listed, how a connection is
opened for it, and how a connection is bound to it for one transaction.

- PostgresNamespaces: one schema per tenant inside a shared database, one
  pooled engine for every tenant.
- SQLiteNamespaces: one database file per tenant (development and tests),
  one cached engine per tenant file.

Scoped work checks connections out of a separate pool of ``work_pool_size``
connections with no overflow. The executor admits at most that many units of
work at once, so a unit that got through its gate never waits on the pool,
and registry, lock and migration connections never compete with it.
"""

import glob
import logging
import os
import threading
from contextlib import contextmanager
from typing import Dict, Generator, List, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import DBAPIError, ProgrammingError, SQLAlchemyError

from ..exceptions import ConnectionLost, SchemaAlreadyExists, SchemaNotFound, ScopeBindingFailed

logger = logging.getLogger(__name__)

# PostgreSQL SQLSTATE codes
DUPLICATE_SCHEMA = '42P06'
INVALID_SCHEMA_NAME = '3F000'


def _sqlstate(exc: DBAPIError) -> Optional[str]:
    # psycopg2 exposes pgcode, psycopg 3 exposes sqlstate
    orig = getattr(exc, 'orig', None)
    return getattr(orig, 'pgcode', None) or getattr(orig, 'sqlstate', None)


class NamespaceBackend:
    """Engine-specific namespace operations shared by the tenant_db components."""

    name = 'generic'

    # True when DDL and the ledger row can commit in one transaction
    transactional_ddl = True

    def __init__(self, engine: Engine, work_pool_size: int = 10, work_pool_timeout: float = 30.0):
        self.engine = engine
        self.work_pool_size = work_pool_size
        self.work_pool_timeout = work_pool_timeout

    def quote(self, schema_name: str) -> str:
        return self.engine.dialect.identifier_preparer.quote_identifier(schema_name)

    # Namespace DDL ---------------------------------------------------------

    def namespace_exists(self, schema_name: str) -> bool:
        raise NotImplementedError

    def create_namespace(self, schema_name: str):
        raise NotImplementedError

    def drop_namespace(self, schema_name: str):
        raise NotImplementedError

    def list_namespaces(self, prefix: str) -> List[str]:
        raise NotImplementedError

    # Connections -----------------------------------------------------------

    def connect(self, schema_name: Optional[str]) -> Connection:
        """Open a connection able to reach ``schema_name`` (None = shared namespace)."""
        return self.engine.connect()

    def _work_engine_options(self) -> Dict:
        return {
            'pool_size': self.work_pool_size,
            'max_overflow': 0,
            'pool_timeout': self.work_pool_timeout,
        }

    def checkout(self, schema_name: str) -> Connection:
        """Open a connection for scoped work on ``schema_name`` from the work pool."""
        raise NotImplementedError

    def execute_script(self, connection: Connection, ddl: str):
        # no_parameters: the DBAPI must not treat % in the script as a placeholder
        connection.exec_driver_sql(ddl, execution_options={"no_parameters": True})

    def _bind(self, connection: Connection, schema_name: Optional[str], read_only: bool):
        raise NotImplementedError

    def _reset(self, connection: Connection, read_only: bool):
        pass

    @contextmanager
    def bound(self, connection: Connection, schema_name: Optional[str],
              read_only: bool = False) -> Generator[Connection, None, None]:
        """
        Run one transaction on ``connection`` bound to ``schema_name``.

        The transaction commits when the block exits normally and rolls back
        on error. Any binding state is reset before the caller gets the
        connection back; if the reset itself fails the connection is
        invalidated so the pool never hands it out again.

        Raises:
            ScopeBindingFailed: If the binding statements fail
            ConnectionLost: If the connection dropped while binding
        """
        try:
            with connection.begin():
                try:
                    self._bind(connection, schema_name, read_only)
                except DBAPIError as e:
                    if e.connection_invalidated:
                        raise ConnectionLost(f"Connection lost while binding {schema_name}: {e}", e) from e
                    raise ScopeBindingFailed(schema_name, e) from e
                yield connection
        finally:
            try:
                self._reset(connection, read_only)
            except SQLAlchemyError as e:
                logger.warning(f"Could not reset binding for {schema_name}, invalidating connection: {e}")
                if not connection.invalidated:
                    connection.invalidate()

    def dispose(self):
        self.engine.dispose()


class PostgresNamespaces(NamespaceBackend):
    """Tenant namespaces as PostgreSQL schemas."""

    name = 'postgresql'
    transactional_ddl = True

    def __init__(self, engine: Engine, **kwargs):
        super().__init__(engine, **kwargs)
        self._work_engine = None
        self._work_engine_lock = threading.Lock()

    @property
    def work_engine(self) -> Engine:
        """Engine on the same database whose pool serves scoped work only."""
        with self._work_engine_lock:
            if self._work_engine is None:
                self._work_engine = create_engine(
                    self.engine.url, pool_pre_ping=True, **self._work_engine_options()
                )
                logger.info(f"Created work pool of {self.work_pool_size} connection(s)")
            return self._work_engine

    def checkout(self, schema_name: str) -> Connection:
        return self.work_engine.connect()

    def dispose(self):
        with self._work_engine_lock:
            engine, self._work_engine = self._work_engine, None
        if engine is not None:
            engine.dispose()
        super().dispose()

    @contextmanager
    def _autocommit(self) -> Generator[Connection, None, None]:
        with self.engine.connect() as conn:
            yield conn.execution_options(isolation_level='AUTOCOMMIT')

    def namespace_exists(self, schema_name: str) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(
                text("SELECT 1 FROM information_schema.schemata WHERE schema_name = :name"),
                {"name": schema_name}
            )
            return result.first() is not None

    def create_namespace(self, schema_name: str):
        with self._autocommit() as conn:
            try:
                conn.execute(text(f"CREATE SCHEMA {self.quote(schema_name)}"))
            except ProgrammingError as e:
                if _sqlstate(e) == DUPLICATE_SCHEMA:
                    raise SchemaAlreadyExists(schema_name) from e
                raise

    def drop_namespace(self, schema_name: str):
        with self._autocommit() as conn:
            try:
                conn.execute(text(f"DROP SCHEMA {self.quote(schema_name)} CASCADE"))
            except ProgrammingError as e:
                if _sqlstate(e) == INVALID_SCHEMA_NAME:
                    raise SchemaNotFound(schema_name) from e
                raise

    def list_namespaces(self, prefix: str) -> List[str]:
        with self.engine.connect() as conn:
            result = conn.execute(
                text(
                    "SELECT schema_name FROM information_schema.schemata "
                    "WHERE starts_with(schema_name, :prefix) ORDER BY schema_name"
                ),
                {"prefix": prefix}
            )
            return [row[0] for row in result]

    def _bind(self, connection: Connection, schema_name: Optional[str], read_only: bool):
        if read_only:
            connection.execute(text("SET TRANSACTION READ ONLY"))

        if schema_name is None:
            return

        # is_local=true: the setting ends with the current transaction
        connection.execute(
            text("SELECT set_config('search_path', :path, true)"),
            {"path": self.quote(schema_name)}
        )
        connection.execution_options(schema_translate_map={None: schema_name})

    def _reset(self, connection: Connection, read_only: bool):
        connection.execution_options(schema_translate_map=None)


class SQLiteNamespaces(NamespaceBackend):
    """
    Tenant namespaces as SQLite database files.

    The shared namespace is the engine's own database; each tenant namespace
    is ``<namespace_dir>/<schema_name>.db``. SQLite commits DDL outside the
    caller's transaction, so migrations use the non-atomic ledger path.
    """

    name = 'sqlite'
    transactional_ddl = False

    def __init__(self, engine: Engine, namespace_dir: str, busy_timeout: float = 30, **kwargs):
        super().__init__(engine, **kwargs)
        self.namespace_dir = namespace_dir
        self.busy_timeout = busy_timeout
        self._engines: Dict[str, Engine] = {}
        self._work_engines: Dict[str, Engine] = {}
        self._engines_lock = threading.Lock()
        os.makedirs(namespace_dir, exist_ok=True)

    def path_for(self, schema_name: str) -> str:
        return os.path.join(self.namespace_dir, f"{schema_name}.db")

    def namespace_exists(self, schema_name: str) -> bool:
        return os.path.exists(self.path_for(schema_name))

    def create_namespace(self, schema_name: str):
        try:
            # An empty file is a valid empty SQLite database
            with open(self.path_for(schema_name), 'x'):
                pass
        except FileExistsError as e:
            raise SchemaAlreadyExists(schema_name) from e

    def drop_namespace(self, schema_name: str):
        self._dispose_engine(schema_name)

        path = self.path_for(schema_name)
        try:
            os.remove(path)
        except FileNotFoundError as e:
            raise SchemaNotFound(schema_name) from e

        for suffix in ('-journal', '-wal', '-shm'):
            if os.path.exists(path + suffix):
                os.remove(path + suffix)

    def list_namespaces(self, prefix: str) -> List[str]:
        pattern = os.path.join(glob.escape(self.namespace_dir), f"{glob.escape(prefix)}*.db")
        return sorted(os.path.basename(path)[:-len('.db')] for path in glob.glob(pattern))

    def _cached_engine(self, engines: Dict[str, Engine], schema_name: str, **options) -> Engine:
        # mode=rw: connecting to a dropped namespace fails instead of creating an empty database
        with self._engines_lock:
            if schema_name not in engines:
                path = os.path.abspath(self.path_for(schema_name))
                engines[schema_name] = create_engine(
                    f"sqlite:///file:{path}?mode=rw&uri=true",
                    connect_args={'timeout': self.busy_timeout},
                    **options
                )
                logger.info(f"Created engine for tenant namespace: {schema_name}")
            return engines[schema_name]

    def engine_for(self, schema_name: str) -> Engine:
        """Get or create the cached engine for a tenant database file."""
        return self._cached_engine(self._engines, schema_name)

    def work_engine_for(self, schema_name: str) -> Engine:
        """Get or create the cached work-pool engine for a tenant database file."""
        return self._cached_engine(self._work_engines, schema_name, **self._work_engine_options())

    def _dispose_engine(self, schema_name: str):
        with self._engines_lock:
            engines = [self._engines.pop(schema_name, None), self._work_engines.pop(schema_name, None)]
        for engine in engines:
            if engine is not None:
                engine.dispose()

    def connect(self, schema_name: Optional[str]) -> Connection:
        if schema_name is None:
            return self.engine.connect()
        if not self.namespace_exists(schema_name):
            raise SchemaNotFound(schema_name)
        return self.engine_for(schema_name).connect()

    def checkout(self, schema_name: str) -> Connection:
        if not self.namespace_exists(schema_name):
            raise SchemaNotFound(schema_name)
        return self.work_engine_for(schema_name).connect()

    def execute_script(self, connection: Connection, ddl: str):
        # sqlite3 executes one statement per execute() call
        connection.connection.driver_connection.executescript(ddl)

    def _bind(self, connection: Connection, schema_name: Optional[str], read_only: bool):
        # The connection was opened on the namespace file itself
        if read_only:
            connection.exec_driver_sql("PRAGMA query_only = ON")

    def _reset(self, connection: Connection, read_only: bool):
        if read_only:
            # Runs after the bound transaction ended, so end the autobegun one too
            connection.exec_driver_sql("PRAGMA query_only = OFF")
            connection.commit()

    def dispose(self):
        with self._engines_lock:
            engines = list(self._engines.values()) + list(self._work_engines.values())
            self._engines.clear()
            self._work_engines.clear()
        for engine in engines:
            engine.dispose()
        super().dispose()


def namespace_backend_for(engine: Engine, namespace_dir: Optional[str] = None,
                          busy_timeout: float = 30, **kwargs) -> NamespaceBackend:
    """
    Pick the namespace backend matching the shared engine's dialect.

    Extra keyword arguments (``work_pool_size``, ``work_pool_timeout``) size
    the pool reserved for scoped work.

    Raises:
        ValueError: If the engine is neither PostgreSQL nor SQLite, or SQLite is
            used without a namespace directory
    """
    if engine.dialect.name == 'postgresql':
        return PostgresNamespaces(engine, **kwargs)

    if engine.dialect.name == 'sqlite':
        if not namespace_dir:
            raise ValueError("TENANT_NAMESPACE_DIR is required for SQLite tenant namespaces")
        return SQLiteNamespaces(engine, namespace_dir, busy_timeout=busy_timeout, **kwargs)

    raise ValueError(f"Unsupported database for tenant namespaces: {engine.dialect.name}")
