"""Entity Field model - one typed attribute of an entity template"""

import uuid
from typing import Optional, TYPE_CHECKING

from sqlalchemy import String, Text, Boolean, Integer, ForeignKey, UniqueConstraint, JSON, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from models.base import Base

if TYPE_CHECKING:
    from models.entity_template import EntityTemplate


class EntityField(Base):
    """
    EntityField defines a field within a template.

    name, type and cardinality are fixed once the field exists; the schema
    synthesizer only ever adds or drops columns, never changes them.
    """
    __tablename__ = "entity_fields"

    template_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("entity_templates.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    # Field definition
    name: Mapped[str] = mapped_column(String(64), nullable=False)
    label: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Field type handle (key into the field type registry)
    type: Mapped[str] = mapped_column(String(50), nullable=False)

    required: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    cardinality: Mapped[str] = mapped_column(String(10), default="single", nullable=False)  # single, multi
    weight: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Type-specific settings (max_length, allowed_values, target_type, ...)
    settings: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

    template: Mapped["EntityTemplate"] = relationship("EntityTemplate", back_populates="fields")

    __table_args__ = (
        # Can't have two fields with same name in one template
        UniqueConstraint('template_id', 'name', name='uq_entity_field_name_per_template'),
    )

    def __repr__(self):
        return f"<EntityField(name='{self.name}', type='{self.type}', cardinality='{self.cardinality}')>"
