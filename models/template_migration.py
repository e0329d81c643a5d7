"""Template Migration model - history of DDL applied to template tables"""

import uuid
from datetime import datetime
from typing import Optional, TYPE_CHECKING

from sqlalchemy import String, Text, Integer, DateTime, ForeignKey, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from models.base import Base, utcnow

if TYPE_CHECKING:
    from models.entity_template import EntityTemplate


class TemplateMigration(Base):
    """
    TemplateMigration records one applied schema change.

    Rows are written in the same transaction as the DDL they describe, so a
    failed migration leaves no history behind.
    """
    __tablename__ = "entity_template_migrations"

    template_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("entity_templates.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    migration_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False
    )  # create_table, add_field, drop_field

    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    statements: Mapped[str] = mapped_column(Text, nullable=False, default="")

    version: Mapped[int] = mapped_column(Integer, nullable=False)
    applied_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    template: Mapped["EntityTemplate"] = relationship("EntityTemplate", back_populates="migrations")

    def __repr__(self):
        return f"<TemplateMigration(type='{self.migration_type}', version={self.version})>"
