"""
Tenant Model

This module defines the Tenant model for the multi-tenant finance platform.
Each tenant represents an entity (a person's finances, a company, an
organization) whose data lives in its own isolated namespace.

Key features:
- Stores tenant lifecycle metadata in the shared namespace (``tenants`` table)
- Deterministic, injective schema name derived from the tenant UUID
- Centralised lifecycle state machine (Pending -> Provisioning -> Active ...)
- Records are retained after Dropped for audit until explicitly purged

Storage strategy:
- Tenant metadata: shared namespace (e.g. the ``public`` schema)
- Tenant data: isolated namespace (e.g. ``tenant_0f8fad5bd9cb469fa16570867728950e``)
"""

import enum
import re
import uuid
import logging
from typing import Union
from sqlalchemy import Integer, String, Text, Enum, Index

from .base import BaseModel
from ..extensions import db
from ..exceptions import InvalidTenantTransition

logger = logging.getLogger(__name__)

DEFAULT_SCHEMA_PREFIX = 'tenant_'

# PostgreSQL max identifier length is 63 characters
MAX_SCHEMA_NAME_LENGTH = 63

SCHEMA_NAME_PATTERN = re.compile(r'^[a-z_][a-z0-9_]*$')


class TenantState(str, enum.Enum):
    """Lifecycle states of a tenant namespace."""

    PENDING = 'pending'
    PROVISIONING = 'provisioning'
    ACTIVE = 'active'
    DROPPING = 'dropping'
    DROPPED = 'dropped'
    FAILED = 'failed'

    def __str__(self) -> str:
        return self.value


ALLOWED_TRANSITIONS = {
    TenantState.PENDING: {TenantState.PROVISIONING, TenantState.DROPPING},
    TenantState.PROVISIONING: {TenantState.ACTIVE, TenantState.FAILED, TenantState.DROPPING},
    TenantState.ACTIVE: {TenantState.DROPPING},
    TenantState.FAILED: {TenantState.PROVISIONING, TenantState.DROPPING},
    TenantState.DROPPING: {TenantState.DROPPED},
    TenantState.DROPPED: set(),
}


def to_tenant_id(value: Union[str, uuid.UUID]) -> uuid.UUID:
    """
    Coerce a tenant identifier to a UUID.

    Raises:
        ValueError: If the value is not a valid UUID string
    """
    if isinstance(value, uuid.UUID):
        return value
    return uuid.UUID(str(value))


def validate_schema_name(schema_name: str) -> str:
    """
    Validate that a schema name is safe to use in namespace DDL.

    Raises:
        ValueError: If the name is empty, too long or has invalid characters
    """
    if not schema_name:
        raise ValueError("Invalid schema name: name cannot be empty")

    if len(schema_name) > MAX_SCHEMA_NAME_LENGTH:
        raise ValueError(
            f"Invalid schema name '{schema_name}': exceeds maximum length of "
            f"{MAX_SCHEMA_NAME_LENGTH} characters"
        )

    if not SCHEMA_NAME_PATTERN.match(schema_name):
        raise ValueError(
            f"Invalid schema name '{schema_name}': must start with a lowercase letter or "
            "underscore, and contain only lowercase letters, digits and underscores"
        )

    return schema_name


class Tenant(BaseModel, db.Model):
    """
    Tenant record in the shared namespace.

    One row per tenant. Only the lifecycle coordinator mutates these rows,
    always while holding the tenant's exclusive lock.

    Attributes:
        schema_name (str): Namespace holding the tenant's data
        state (TenantState): Current lifecycle state
        last_error (str): Message of the last provisioning or upgrade failure
        attempts (int): Number of provisioning attempts started
        failed_version (int): Migration version the last provisioning attempt failed at

    Inherited from BaseModel:
        id (UUID): Tenant identifier (same as the entity id)
        created_at (datetime): Creation timestamp (UTC)
        updated_at (datetime): Last update timestamp (UTC)
    """

    __tablename__ = 'tenants'

    schema_name = db.Column(String(MAX_SCHEMA_NAME_LENGTH), unique=True, nullable=False)
    state = db.Column(
        Enum(
            TenantState,
            native_enum=False,
            length=20,
            values_callable=lambda states: [state.value for state in states],
        ),
        default=TenantState.PENDING,
        nullable=False,
    )
    last_error = db.Column(Text, nullable=True)
    attempts = db.Column(Integer, default=0, nullable=False)
    failed_version = db.Column(Integer, nullable=True)

    __table_args__ = (
        Index('ix_tenants_state', 'state'),
    )

    @staticmethod
    def schema_name_for(tenant_id: Union[str, uuid.UUID], prefix: str = DEFAULT_SCHEMA_PREFIX) -> str:
        """
        Derive the namespace name for a tenant.

        The hex form of a UUID is a bijection of its 128 bits, so with a fixed
        prefix two tenants can never share a schema name.

        Args:
            tenant_id: Tenant UUID (or its string form)
            prefix: Fixed schema name prefix

        Returns:
            Schema name, e.g. "tenant_0f8fad5bd9cb469fa16570867728950e"

        Raises:
            ValueError: If the tenant id or the resulting name is invalid
        """
        schema_name = f"{prefix}{to_tenant_id(tenant_id).hex}"
        return validate_schema_name(schema_name)

    @property
    def is_active(self) -> bool:
        return self.state == TenantState.ACTIVE

    def can_transition_to(self, target: TenantState) -> bool:
        return target in ALLOWED_TRANSITIONS[TenantState(self.state)]

    def transition_to(self, target: TenantState):
        """
        Move the tenant to a new lifecycle state.

        Raises:
            InvalidTenantTransition: If the state machine forbids the move
        """
        if not self.can_transition_to(target):
            raise InvalidTenantTransition(self.id, self.state, target)

        logger.debug(f"Tenant {self.id}: {self.state} -> {target}")
        self.state = target

    def __repr__(self) -> str:
        return f"<Tenant id={self.id} schema={self.schema_name} state={self.state}>"
