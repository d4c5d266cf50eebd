"""
Migration runner for tenant and shared namespaces.

Each namespace carries its own ledger table (``schema_migrations``) recording
which versions of a MigrationSet were applied, with the script checksum.
Because the ledger lives inside the namespace, two tenants never share one.

Applying a set is idempotent: only versions above the last recorded one run,
in ascending order, and the runner stops at the first failing script. On
engines with transactional DDL the script and its ledger row commit together;
otherwise the ledger row is written right after the DDL commits, so scripts
must be safe to re-run (``CREATE TABLE IF NOT EXISTS`` and friends).
"""

import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy import Column, DateTime, Integer, MetaData, String, Table, insert, select
from sqlalchemy.engine import Connection

from ..exceptions import MigrationFailed, MigrationIntegrityError
from .migration_set import MigrationScript, MigrationSet
from .namespaces import NamespaceBackend

logger = logging.getLogger(__name__)

ledger_metadata = MetaData()

# Unqualified on purpose: the binding qualifies it with the target namespace
schema_migrations = Table(
    'schema_migrations',
    ledger_metadata,
    Column('version', Integer, primary_key=True, autoincrement=False),
    Column('description', String(255), nullable=False),
    Column('checksum', String(64), nullable=False),
    Column('applied_at', DateTime(timezone=True), nullable=False),
)


def _scope_label(schema_name: Optional[str]) -> str:
    return schema_name or 'shared namespace'


class MigrationRunner:
    """
    Applies a MigrationSet to one namespace and keeps its ledger.

    The runner holds no per-tenant state and is safe to use concurrently for
    different namespaces; callers serialize work on the same namespace (the
    lifecycle coordinator does so with the per-tenant lock).
    """

    def __init__(self, backend: NamespaceBackend):
        self.backend = backend

    def _read_ledger(self, conn: Connection) -> List[Dict]:
        schema_migrations.create(conn, checkfirst=True)
        rows = conn.execute(
            select(
                schema_migrations.c.version,
                schema_migrations.c.description,
                schema_migrations.c.checksum,
                schema_migrations.c.applied_at,
            ).order_by(schema_migrations.c.version)
        )
        return [dict(row._mapping) for row in rows]

    def _verify(self, schema_name: Optional[str], ledger: List[Dict], migration_set: MigrationSet) -> int:
        """
        Check the ledger against the set and return the current version.

        Raises:
            MigrationIntegrityError: If the ledger has gaps, knows versions the
                set does not, or a checksum changed since it was applied
        """
        scope = _scope_label(schema_name)

        for expected, entry in enumerate(ledger, start=1):
            version = entry['version']
            if version != expected:
                raise MigrationIntegrityError(
                    f"Ledger of {scope} is not contiguous: expected v{expected}, found v{version}"
                )

            script = migration_set.get(version)
            if script is None:
                raise MigrationIntegrityError(
                    f"Ledger of {scope} records v{version}, unknown to the {migration_set.label} "
                    f"migration set (latest v{migration_set.latest_version})"
                )

            if script.checksum != entry['checksum']:
                raise MigrationIntegrityError(
                    f"Checksum mismatch for v{version} in {scope}: "
                    f"ledger {entry['checksum']}, script {script.checksum}"
                )

        return len(ledger)

    def _record(self, conn: Connection, script: MigrationScript):
        conn.execute(
            insert(schema_migrations).values(
                version=script.version,
                description=script.description,
                checksum=script.checksum,
                applied_at=datetime.now(timezone.utc),
            )
        )

    def _apply_script(self, conn: Connection, schema_name: Optional[str], script: MigrationScript):
        if self.backend.transactional_ddl:
            with self.backend.bound(conn, schema_name) as bound:
                self.backend.execute_script(bound, script.ddl)
                self._record(bound, script)
            return

        with self.backend.bound(conn, schema_name) as bound:
            self.backend.execute_script(bound, script.ddl)
        # A crash here re-runs this script on the next apply
        with self.backend.bound(conn, schema_name) as bound:
            self._record(bound, script)

    def current_version(self, schema_name: Optional[str], migration_set: MigrationSet) -> int:
        """
        Current verified version of a namespace.

        Raises:
            MigrationIntegrityError: If the ledger disagrees with the set
        """
        with self.backend.connect(schema_name) as conn:
            with self.backend.bound(conn, schema_name) as bound:
                ledger = self._read_ledger(bound)
        return self._verify(schema_name, ledger, migration_set)

    def apply(self, schema_name: Optional[str], migration_set: MigrationSet) -> List[int]:
        """
        Apply every unapplied script of ``migration_set`` to a namespace.

        Args:
            schema_name: Target namespace, or None for the shared namespace
            migration_set: Validated migration set

        Returns:
            Versions applied by this call, in order (empty when up to date)

        Raises:
            MigrationIntegrityError: If the ledger disagrees with the set
            MigrationFailed: On the first failing script, with its version and cause
        """
        scope = _scope_label(schema_name)
        applied = []

        with self.backend.connect(schema_name) as conn:
            with self.backend.bound(conn, schema_name) as bound:
                ledger = self._read_ledger(bound)

            current = self._verify(schema_name, ledger, migration_set)
            pending = migration_set.pending_after(current)

            if not pending:
                logger.info(f"{scope} already at latest {migration_set.label} version (v{current})")
                return applied

            for script in pending:
                logger.info(f"Applying {migration_set.label} migration v{script.version} "
                            f"({script.description}) to {scope}")
                try:
                    self._apply_script(conn, schema_name, script)
                except Exception as e:
                    logger.error(f"Migration v{script.version} failed on {scope}: {e}")
                    raise MigrationFailed(script.version, e) from e

                applied.append(script.version)

        logger.info(f"Applied {len(applied)} {migration_set.label} migration(s) to {scope}: "
                    f"v{applied[0]}..v{applied[-1]}")
        return applied

    def history(self, schema_name: Optional[str]) -> List[Dict]:
        """
        Ledger rows of a namespace, oldest first.

        Returns:
            List of dicts with version, description, checksum and applied_at
        """
        with self.backend.connect(schema_name) as conn:
            with self.backend.bound(conn, schema_name) as bound:
                return self._read_ledger(bound)
