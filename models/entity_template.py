"""Entity Template model - a tenant-defined record type"""

from typing import Optional, TYPE_CHECKING

from sqlalchemy import String, Text, UniqueConstraint, JSON
from sqlalchemy.orm import Mapped, mapped_column, relationship

from models.base import Base

if TYPE_CHECKING:
    from models.entity_field import EntityField
    from models.template_migration import TemplateMigration


class EntityTemplate(Base):
    """
    EntityTemplate represents a record type defined at runtime.

    Each template:
    - Belongs to exactly one (tenant, project) scope
    - Owns its field definitions (cascade-deleted with the template)
    - Owns one physical table, created when the first field is added
    - Keeps a history of applied schema migrations
    """
    __tablename__ = "entity_templates"

    # Scope
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    project_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    # Basic info
    name: Mapped[str] = mapped_column(String(64), nullable=False)
    label: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Free-form flags (translatable, versionable, ...)
    settings: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

    status: Mapped[str] = mapped_column(String(20), default="active", nullable=False)  # active, disabled

    # Physical storage
    table_name: Mapped[str] = mapped_column(String(63), nullable=False)
    migration_status: Mapped[str] = mapped_column(
        String(20),
        default="pending",
        nullable=False
    )  # pending, migrated

    fields: Mapped[list["EntityField"]] = relationship(
        "EntityField",
        back_populates="template",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="EntityField.weight",
    )

    migrations: Mapped[list["TemplateMigration"]] = relationship(
        "TemplateMigration",
        back_populates="template",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="TemplateMigration.version",
    )

    __table_args__ = (
        # Can't have two templates with same name in one scope
        UniqueConstraint('tenant_id', 'project_id', 'name', name='uq_entity_template_name_per_scope'),
    )

    def __repr__(self):
        return f"<EntityTemplate(name='{self.name}', scope='{self.tenant_id}/{self.project_id}', status='{self.status}')>"
