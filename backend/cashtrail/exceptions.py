"""
Tenant provisioning exceptions.

Every error raised by the tenant database layer derives from TenancyError so
callers (services, CLI commands) can catch the whole family in one place.
Driver-level errors are always chained with ``raise ... from`` so the original
cause stays visible in logs and tracebacks.
"""


class TenancyError(Exception):
    """Base exception for tenant provisioning and scoping errors."""
    pass


class SchemaAlreadyExists(TenancyError):
    """The namespace for a tenant is already present in the store."""

    def __init__(self, schema_name: str):
        self.schema_name = schema_name
        super().__init__(f"Schema already exists: {schema_name}")


class TenantNotFound(TenancyError):
    """No tenant record exists for the given identifier."""

    def __init__(self, tenant_id, message: str = None):
        self.tenant_id = tenant_id
        super().__init__(message or f"Tenant not found: {tenant_id}")


class SchemaNotFound(TenantNotFound):
    """The namespace to drop or bind does not exist."""

    def __init__(self, schema_name: str):
        self.schema_name = schema_name
        super().__init__(None, f"Schema not found: {schema_name}")


class TenantNotActive(TenancyError):
    """The tenant exists but its state does not accept scoped work."""

    def __init__(self, tenant_id, state):
        self.tenant_id = tenant_id
        self.state = state
        super().__init__(f"Tenant {tenant_id} is not active (state={state})")


class InvalidTenantTransition(TenancyError):
    """A lifecycle transition not allowed by the tenant state machine."""

    def __init__(self, tenant_id, current, target):
        self.tenant_id = tenant_id
        self.current = current
        self.target = target
        super().__init__(f"Tenant {tenant_id} cannot move from {current} to {target}")


class LockTimeout(TenancyError):
    """The per-tenant lock could not be acquired before the deadline."""

    def __init__(self, key, timeout):
        self.key = key
        self.timeout = timeout
        super().__init__(f"Timed out after {timeout}s waiting for lock on {key}")


class CheckoutTimeout(TenancyError):
    """No pooled connection became available before the deadline."""

    def __init__(self, timeout):
        self.timeout = timeout
        super().__init__(f"Timed out after {timeout}s waiting for a database connection")


class MigrationError(TenancyError):
    """Base exception for migration set and ledger problems."""
    pass


class InvalidMigrationSet(MigrationError):
    """The migration set has gaps, duplicates or malformed scripts."""
    pass


class MigrationIntegrityError(MigrationError):
    """The ledger disagrees with the migration set (checksum, gap or unknown version)."""
    pass


class MigrationFailed(MigrationError):
    """A migration script failed; nothing after it was attempted."""

    def __init__(self, version: int, cause: BaseException):
        self.version = version
        self.cause = cause
        super().__init__(f"Migration v{version} failed: {cause}")


class ConnectionLost(TenancyError):
    """The connection backing a unit of work was lost or could not be opened."""

    def __init__(self, message: str, cause: BaseException = None):
        self.cause = cause
        super().__init__(message)


class ScopeBindingFailed(TenancyError):
    """A connection could not be bound to the tenant namespace."""

    def __init__(self, schema_name: str, cause: BaseException = None):
        self.schema_name = schema_name
        self.cause = cause
        super().__init__(f"Could not bind connection to schema {schema_name}: {cause}")


class ProvisioningFailed(TenancyError):
    """A concurrent provisioning call this one waited on failed."""

    def __init__(self, tenant_id, error: str):
        self.tenant_id = tenant_id
        self.error = error
        super().__init__(f"Provisioning of tenant {tenant_id} failed in a concurrent call: {error}")
