"""
Versioned migration sets.

A MigrationSet is an immutable, ordered collection of DDL scripts. It is
loaded once (at application start, from the build's migration directory) and
validated on construction: versions must run 1..n with no gaps and no
duplicates, so an invalid set is rejected before any DDL can execute.
"""

import hashlib
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Iterable, Iterator, List, Optional, Tuple

from ..exceptions import InvalidMigrationSet

logger = logging.getLogger(__name__)

# e.g. "0003_create_contacts.sql"
MIGRATION_FILE_PATTERN = re.compile(r'^(?P<version>\d+)_(?P<description>[A-Za-z0-9_\-]+)\.sql$')


@dataclass(frozen=True)
class MigrationScript:
    """A single versioned DDL script."""

    version: int
    description: str
    ddl: str = field(repr=False)

    @property
    def checksum(self) -> str:
        """SHA-256 of the script body, ignoring leading/trailing whitespace."""
        return hashlib.sha256(self.ddl.strip().encode('utf-8')).hexdigest()


class MigrationSet:
    """
    Ordered, validated sequence of MigrationScript.

    Usage:
        >>> migrations = MigrationSet([
        ...     MigrationScript(1, 'create_currencies', 'CREATE TABLE currencies (...)'),
        ...     MigrationScript(2, 'create_contacts', 'CREATE TABLE contacts (...)'),
        ... ])
        >>> migrations.latest_version
        2
    """

    def __init__(self, scripts: Iterable[MigrationScript], label: str = 'tenant'):
        self.label = label
        self._scripts: Tuple[MigrationScript, ...] = tuple(sorted(scripts, key=lambda s: s.version))
        self._validate()

    def _validate(self):
        seen = set()
        for script in self._scripts:
            if script.version in seen:
                raise InvalidMigrationSet(
                    f"Duplicate version {script.version} in {self.label} migration set"
                )
            seen.add(script.version)

            if not script.ddl or not script.ddl.strip():
                raise InvalidMigrationSet(
                    f"Migration v{script.version} of {self.label} migration set is empty"
                )

        for expected, script in enumerate(self._scripts, start=1):
            if script.version != expected:
                raise InvalidMigrationSet(
                    f"Gap in {self.label} migration set: expected v{expected}, found v{script.version}"
                )

    @classmethod
    def from_directory(cls, path: str, label: str = 'tenant') -> 'MigrationSet':
        """
        Load a migration set from a directory of ``NNNN_description.sql`` files.

        Args:
            path: Directory containing the versioned SQL files
            label: Name used in log and error messages ('tenant', 'shared')

        Returns:
            Validated MigrationSet

        Raises:
            InvalidMigrationSet: If a .sql file is misnamed, or versions have gaps
                or duplicates
        """
        scripts = []
        for filename in sorted(os.listdir(path)):
            if not filename.endswith('.sql'):
                continue

            match = MIGRATION_FILE_PATTERN.match(filename)
            if not match:
                raise InvalidMigrationSet(f"Malformed migration file name: {filename}")

            with open(os.path.join(path, filename), encoding='utf-8') as handle:
                ddl = handle.read()

            scripts.append(MigrationScript(
                version=int(match.group('version')),
                description=match.group('description'),
                ddl=ddl,
            ))

        migration_set = cls(scripts, label=label)
        logger.info(f"Loaded {len(migration_set)} {label} migration(s) from {path}")
        return migration_set

    @classmethod
    def empty(cls, label: str = 'tenant') -> 'MigrationSet':
        return cls([], label=label)

    @property
    def latest_version(self) -> int:
        return self._scripts[-1].version if self._scripts else 0

    def get(self, version: int) -> Optional[MigrationScript]:
        if 1 <= version <= len(self._scripts):
            return self._scripts[version - 1]
        return None

    def pending_after(self, version: int) -> List[MigrationScript]:
        """Scripts with a version strictly greater than ``version``, in order."""
        return list(self._scripts[version:])

    def __iter__(self) -> Iterator[MigrationScript]:
        return iter(self._scripts)

    def __len__(self) -> int:
        return len(self._scripts)

    def __repr__(self) -> str:
        return f"<MigrationSet {self.label} v1..v{self.latest_version}>"
