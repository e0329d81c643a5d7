"""Template Repository - Data access layer for entity templates"""

from uuid import UUID
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from core.exceptions import DuplicateName, NotFound
from models import EntityTemplate
from models.base import utcnow
from schemas.entity_template import TemplateCreate
from schemas.scope import Scope


class TemplateRepository:
    """
    Data access for entity templates.

    Methods flush but never commit: template changes share a transaction
    with the DDL the schema synthesizer issues for them.
    """

    def __init__(self, session: Session):
        self.session = session

    def get(self, template_id: UUID) -> Optional[EntityTemplate]:
        stmt = (
            select(EntityTemplate)
            .where(EntityTemplate.id == template_id)
            .options(selectinload(EntityTemplate.fields))
        )
        return self.session.scalar(stmt)

    def get_or_raise(self, template_id: UUID) -> EntityTemplate:
        """Get a template by ID"""
        template = self.get(template_id)
        if not template:
            raise NotFound(f"Template {template_id} not found", template_id=str(template_id))
        return template

    def get_by_name(self, scope: Scope, name: str) -> Optional[EntityTemplate]:
        """Get a template by name within a scope"""
        stmt = (
            select(EntityTemplate)
            .where(EntityTemplate.tenant_id == scope.tenant_id)
            .where(EntityTemplate.project_id == scope.project_id)
            .where(EntityTemplate.name == name)
        )
        return self.session.scalar(stmt)

    def get_all_by_scope(self, scope: Scope, active_only: bool = False) -> list[EntityTemplate]:
        """Get all templates in a scope, ordered by name"""
        stmt = (
            select(EntityTemplate)
            .where(EntityTemplate.tenant_id == scope.tenant_id)
            .where(EntityTemplate.project_id == scope.project_id)
        )

        if active_only:
            stmt = stmt.where(EntityTemplate.status == "active")

        return list(self.session.scalars(stmt.order_by(EntityTemplate.name)).all())

    def create(self, template_data: TemplateCreate, scope: Scope, table_name: str) -> EntityTemplate:
        """Create a new template"""
        # Check if name is unique within scope
        if self.get_by_name(scope, template_data.name):
            raise DuplicateName(
                f"Template with name '{template_data.name}' already exists in scope {scope}",
                name=template_data.name,
            )

        template = EntityTemplate(
            **template_data.model_dump(),
            tenant_id=scope.tenant_id,
            project_id=scope.project_id,
            table_name=table_name,
        )
        self.session.add(template)
        try:
            self.session.flush()
        except IntegrityError as e:
            # A concurrent creator won the race for the unique constraint
            raise DuplicateName(
                f"Template with name '{template_data.name}' already exists in scope {scope}",
                name=template_data.name,
            ) from e

        return template

    def update(self, template: EntityTemplate, update_data: dict) -> EntityTemplate:
        """Update a template with the provided data"""
        for key, value in update_data.items():
            if hasattr(template, key):
                setattr(template, key, value)

        self.touch(template)
        self.session.flush()
        return template

    def touch(self, template: EntityTemplate) -> None:
        template.updated_at = utcnow()

    def delete(self, template: EntityTemplate) -> None:
        """Delete a template; fields and migration history cascade"""
        self.session.delete(template)
        self.session.flush()
