"""
Schema provisioner.

Creates and drops tenant namespaces. It never touches the tenant registry:
it is pure namespace DDL, and callers are expected to hold the tenant's lock.
"""

import logging
from typing import List

from ..exceptions import SchemaAlreadyExists, SchemaNotFound
from ..models.tenant import validate_schema_name
from .namespaces import NamespaceBackend

logger = logging.getLogger(__name__)


class SchemaProvisioner:
    """Namespace create/drop on top of a NamespaceBackend."""

    def __init__(self, backend: NamespaceBackend):
        self.backend = backend

    def exists(self, schema_name: str) -> bool:
        return self.backend.namespace_exists(validate_schema_name(schema_name))

    def create(self, schema_name: str):
        """
        Create an empty namespace.

        Creating a namespace that is already present is always an error, never
        a silent no-op: the caller holds the tenant lock, so an existing
        namespace means something else created it.

        Raises:
            ValueError: If the schema name is not a safe identifier
            SchemaAlreadyExists: If the namespace is already present
        """
        validate_schema_name(schema_name)

        try:
            self.backend.create_namespace(schema_name)
        except SchemaAlreadyExists:
            logger.warning(f"Schema {schema_name} already exists")
            raise
        except Exception as e:
            logger.error(f"Failed to create schema {schema_name}: {e}")
            raise

        logger.info(f"Created tenant schema: {schema_name}")

    def drop(self, schema_name: str):
        """
        Drop a namespace and everything inside it.

        WARNING: This is a destructive operation that cannot be undone!

        Raises:
            ValueError: If the schema name is not a safe identifier
            SchemaNotFound: If the namespace does not exist
        """
        validate_schema_name(schema_name)

        try:
            self.backend.drop_namespace(schema_name)
        except SchemaNotFound:
            logger.info(f"Schema {schema_name} does not exist, nothing to drop")
            raise
        except Exception as e:
            logger.error(f"Failed to drop schema {schema_name}: {e}")
            raise

        logger.info(f"Dropped tenant schema: {schema_name}")

    def list(self, prefix: str) -> List[str]:
        """Namespaces whose name starts with ``prefix``."""
        return self.backend.list_namespaces(prefix)
