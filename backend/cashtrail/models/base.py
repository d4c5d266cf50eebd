"""
Base model with common fields for all database models.

Provides UUID primary keys, automatic timestamps and serialization helpers.
"""

import enum
import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, DateTime, Uuid
from typing import Dict, Any, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BaseModel:
    """
    Abstract base model with common fields for all models.

    Provides:
    - UUID primary key (id)
    - Automatic timestamps (created_at, updated_at)
    - Serialization helper (to_dict)
    - String representation (__repr__)

    Usage:
        class Tenant(BaseModel, db.Model):
            __tablename__ = 'tenants'
            schema_name = Column(String(63), unique=True, nullable=False)
    """

    # Primary key (UUID)
    id = Column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        nullable=False,
        comment="Unique identifier for the record"
    )

    # Timestamp fields
    created_at = Column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
        comment="Timestamp when record was created (UTC)"
    )

    updated_at = Column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
        comment="Timestamp when record was last updated (UTC)"
    )

    def to_dict(self, exclude: Optional[list] = None) -> Dict[str, Any]:
        """
        Convert model instance to dictionary for JSON serialization.

        Args:
            exclude: List of field names to exclude from output

        Returns:
            Dictionary representation of the model
        """
        exclude = exclude or []
        result = {}

        for column in self.__table__.columns:
            field_name = column.name
            if field_name in exclude:
                continue

            value = getattr(self, field_name, None)

            if isinstance(value, datetime):
                result[field_name] = value.isoformat()
            elif isinstance(value, enum.Enum):
                result[field_name] = value.value
            elif isinstance(value, uuid.UUID):
                result[field_name] = str(value)
            else:
                result[field_name] = value

        return result

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} id={self.id}>"

    def __str__(self) -> str:
        return self.__repr__()
