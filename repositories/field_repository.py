"""Field Repository - Data access layer for template fields"""

from uuid import UUID
from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.exceptions import DuplicateName, NotFound
from models import EntityField, EntityTemplate


class FieldRepository:
    def __init__(self, session: Session):
        self.session = session

    def get(self, field_id: UUID) -> Optional[EntityField]:
        return self.session.get(EntityField, field_id)

    def get_or_raise(self, field_id: UUID) -> EntityField:
        """Get a field by ID"""
        field = self.get(field_id)
        if not field:
            raise NotFound(f"Field {field_id} not found", field_id=str(field_id))
        return field

    def get_by_name(self, template: EntityTemplate, name: str) -> Optional[EntityField]:
        """Get a field by name within a template"""
        stmt = (
            select(EntityField)
            .where(EntityField.template_id == template.id)
            .where(EntityField.name == name)
        )
        return self.session.scalar(stmt)

    def get_all_by_template(self, template_id: UUID) -> list[EntityField]:
        """Get all fields of a template, ordered by weight then name"""
        stmt = (
            select(EntityField)
            .where(EntityField.template_id == template_id)
            .order_by(EntityField.weight, EntityField.name)
        )
        return list(self.session.scalars(stmt).all())

    def next_weight(self, template_id: UUID) -> int:
        """Weight that puts a new field after all existing ones"""
        current = self.session.scalar(
            select(func.max(EntityField.weight)).where(EntityField.template_id == template_id)
        )
        return 0 if current is None else current + 1

    def create(self, template: EntityTemplate, field_data: dict) -> EntityField:
        """Create a new field on a template"""
        # Check if name is unique within template
        if self.get_by_name(template, field_data["name"]):
            raise DuplicateName(
                f"Field with name '{field_data['name']}' already exists on template '{template.name}'",
                name=field_data["name"],
            )

        field = EntityField(**field_data, template=template)
        self.session.add(field)
        try:
            self.session.flush()
        except IntegrityError as e:
            raise DuplicateName(
                f"Field with name '{field_data['name']}' already exists on template '{template.name}'",
                name=field_data["name"],
            ) from e

        return field

    def update(self, field: EntityField, update_data: dict) -> EntityField:
        """Update a field with the provided data"""
        for key, value in update_data.items():
            if hasattr(field, key):
                setattr(field, key, value)

        self.session.flush()
        return field

    def delete(self, field: EntityField) -> None:
        template = field.template
        if template is not None and field in template.fields:
            template.fields.remove(field)
        self.session.delete(field)
        self.session.flush()
