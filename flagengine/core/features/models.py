"""
Feature Flag Models - SQLAlchemy models for feature flags.

Tables:
- feature_flags: Flag definitions per environment, with version column
- flag_audit_events: Append-only change log
"""

from datetime import datetime
from sqlalchemy import JSON, Boolean, DateTime, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from flagengine.models.base import Base, TimestampMixin, VersionMixin

# JSONB on PostgreSQL, plain JSON elsewhere (sqlite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class FeatureFlagModel(Base, TimestampMixin, VersionMixin):
    """
    Feature flag definition.

    Primary key is (environment, key): the same key in two environments
    is two independent rows.
    """

    __tablename__ = "feature_flags"

    environment: Mapped[str] = mapped_column(String(20), primary_key=True)
    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)

    # Global settings
    enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    rollout_percentage: Mapped[int] = mapped_column(Integer, default=100, nullable=False)

    # Ordered lists, stored as JSON arrays
    # Example variants: [{"id": "v1", "name": "Control", "key": "control", "weight": 50}]
    variants: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    # Example rules: [{"id": "r1", "attribute": "plan", "operator": "ONE_OF", "values": ["pro"]}]
    rules: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)

    owner: Mapped[str | None] = mapped_column(String(200), nullable=True)

    def __repr__(self) -> str:
        status = "ON" if self.enabled else "OFF"
        return f"<FeatureFlag {self.environment}/{self.key} v{self.version} [{status}]>"


class AuditEventModel(Base):
    """
    Immutable audit record.

    sequence is the append order; it is never reused or updated.
    """

    __tablename__ = "flag_audit_events"
    __table_args__ = (
        Index("idx_flag_audit_events_flag", "environment", "flag_key"),
    )

    sequence: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(String(36), unique=True, nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    flag_key: Mapped[str] = mapped_column(String(100), nullable=False)
    actor: Mapped[str] = mapped_column(String(255), nullable=False)
    environment: Mapped[str] = mapped_column(String(20), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
    )
    version: Mapped[int | None] = mapped_column(Integer, nullable=True)
    changes: Mapped[dict | None] = mapped_column(JSONType, nullable=True)

    def __repr__(self) -> str:
        return f"<AuditEvent #{self.sequence} {self.action} {self.environment}/{self.flag_key}>"
