"""Template Service - templates and their fields, kept in step with storage"""

from typing import Any, Optional

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.exceptions import (
    EntityEngineError,
    ImmutableFieldChange,
    NotFound,
    StorageOperationFailed,
    ValidationFailed,
)
from core.logging_config import get_logger
from models import EntityField, EntityTemplate
from repositories.field_repository import FieldRepository
from repositories.template_repository import TemplateRepository
from schemas.entity_field import FieldCreate, FieldRead, FieldUpdate, IMMUTABLE_FIELD_KEYS
from schemas.entity_template import TemplateCreate, TemplateMigrationRead, TemplateRead, TemplateUpdate
from schemas.scope import Scope
from services.field_types import FieldTypeRegistry
from services.record_service import as_uuid, pydantic_errors
from services.reference_resolver import RESOLVED_SUFFIX
from services.schema_synthesizer import SchemaSynthesizer
from services.table_builder import STATUS_FIELD_TYPES, SYSTEM_COLUMNS
from services.template_descriptor import TemplateDescriptor

logger = get_logger(__name__)

# Keys of a template that can never change after creation
IMMUTABLE_TEMPLATE_KEYS = ("id", "name", "tenant_id", "project_id", "table_name")

# Settings derived from the field definition itself
DERIVED_SETTINGS = ("multiple", "required")


class TemplateService:
    """
    Service for managing templates and fields.

    Every mutating call is one transaction: the metadata write and the DDL
    the schema synthesizer issues for it commit together or not at all, and
    the cached descriptor of the template is evicted before the call returns.
    """

    def __init__(self, session: Session, registry: FieldTypeRegistry, synthesizer: SchemaSynthesizer):
        self.session = session
        self.registry = registry
        self.synthesizer = synthesizer
        self.templates = TemplateRepository(session)
        self.fields = FieldRepository(session)

    # Transactions

    def _commit(self, template_id: Any = None) -> None:
        try:
            self.session.commit()
        finally:
            if template_id is not None:
                self.synthesizer.descriptors.invalidate(template_id)

    def _rollback(self, template_id: Any, action: str, exc: Exception) -> None:
        self.session.rollback()
        if template_id is not None:
            self.synthesizer.descriptors.invalidate(template_id)
        if isinstance(exc, EntityEngineError):
            logger.warning(f"{action} rejected: {exc.message}")
        else:
            logger.error(f"{action} failed: {exc}")

    # Serialization

    def _template_dict(self, template: EntityTemplate, with_fields: bool = False) -> dict:
        data = TemplateRead.model_validate(template).model_dump()
        if with_fields:
            data["fields"] = [self._field_dict(field) for field in self.fields.get_all_by_template(template.id)]
        return data

    @staticmethod
    def _field_dict(field: EntityField) -> dict:
        return FieldRead.model_validate(field).model_dump()

    # Templates

    def create_template(
        self,
        scope: Scope,
        name: str,
        label: str,
        description: str = "",
        settings: Optional[dict] = None,
    ):
        """
        Create a template in a scope.

        Storage is not created yet; the table appears with the first field.

        Returns:
            The template id

        Raises:
            ValidationFailed: invalid name or label
            DuplicateName: a template with this name exists in the scope
        """
        try:
            template_data = TemplateCreate(name=name, label=label, description=description, settings=settings or {})
        except ValidationError as e:
            raise ValidationFailed(pydantic_errors(e)) from e

        try:
            template = self.templates.create(
                template_data,
                scope,
                table_name=self.synthesizer.tables.table_name(scope, template_data.name),
            )
            template_id = template.id
            self._commit()
        except SQLAlchemyError as e:
            self._rollback(None, f"Creating template '{name}'", e)
            raise StorageOperationFailed(f"Failed to create template '{name}'", error=str(e)) from e
        except Exception as e:
            self._rollback(None, f"Creating template '{name}'", e)
            raise

        logger.info(f"Created template '{name}' in scope {scope} ({template_id})")
        return template_id

    def update_template(self, template_id: Any, values: dict) -> dict:
        """Update label, description, settings and/or status"""
        template = self.templates.get_or_raise(as_uuid(template_id, "template"))

        for key in IMMUTABLE_TEMPLATE_KEYS:
            if key in values and values[key] != getattr(template, key):
                raise ImmutableFieldChange(
                    f"The {key} of template '{template.name}' cannot be changed",
                    template=template.name,
                    key=key,
                )
        changes = {key: value for key, value in values.items() if key not in IMMUTABLE_TEMPLATE_KEYS}

        try:
            update_data = TemplateUpdate(**changes).model_dump(exclude_unset=True)
        except ValidationError as e:
            raise ValidationFailed(pydantic_errors(e)) from e

        name, template_uuid = template.name, template.id
        try:
            self.templates.update(template, update_data)
            self._commit(template_uuid)
        except SQLAlchemyError as e:
            self._rollback(template_uuid, f"Updating template '{name}'", e)
            raise StorageOperationFailed(f"Failed to update template '{name}'", error=str(e)) from e
        except Exception as e:
            self._rollback(template_uuid, f"Updating template '{name}'", e)
            raise

        logger.info(f"Updated template '{name}': {', '.join(update_data) or 'no changes'}")
        return self._template_dict(template)

    def delete_template(self, template_id: Any) -> bool:
        """
        Delete a template with its fields, migration history and tables.

        Irreversible. Tables are dropped in the same transaction as the
        metadata delete.
        """
        template = self.templates.get_or_raise(as_uuid(template_id, "template"))
        name, template_uuid = template.name, template.id

        try:
            self.synthesizer.on_template_deleted(template)
            self.templates.delete(template)
            self._commit(template_uuid)
        except SQLAlchemyError as e:
            self._rollback(template_uuid, f"Deleting template '{name}'", e)
            raise StorageOperationFailed(f"Failed to delete template '{name}'", error=str(e)) from e
        except Exception as e:
            self._rollback(template_uuid, f"Deleting template '{name}'", e)
            raise

        logger.info(f"Deleted template '{name}' ({template_uuid})")
        return True

    def get_template(self, template_id: Any) -> dict:
        template = self.templates.get_or_raise(as_uuid(template_id, "template"))
        return self._template_dict(template, with_fields=True)

    def get_template_by_name(self, scope: Scope, name: str) -> dict:
        template = self.templates.get_by_name(scope, name)
        if template is None:
            raise NotFound(f"Template '{name}' not found in scope {scope}", name=name)
        return self._template_dict(template, with_fields=True)

    def list_templates(self, scope: Scope, active_only: bool = False) -> list[dict]:
        return [self._template_dict(template) for template in self.templates.get_all_by_scope(scope, active_only)]

    def get_descriptor(self, template_id: Any) -> TemplateDescriptor:
        return self.synthesizer.descriptor(as_uuid(template_id, "template"))

    def migration_history(self, template_id: Any) -> list[dict]:
        template = self.templates.get_or_raise(as_uuid(template_id, "template"))
        return [
            TemplateMigrationRead.model_validate(migration).model_dump()
            for migration in self.synthesizer.migration_history(template.id)
        ]

    # Fields

    def add_field(
        self,
        template_id: Any,
        name: str,
        label: str,
        type: str,
        description: str = "",
        required: bool = False,
        cardinality: Optional[str] = None,
        weight: Optional[int] = None,
        settings: Optional[dict] = None,
    ):
        """
        Add a field and materialize its storage in the same transaction.

        ``cardinality`` defaults to ``multi`` when ``settings`` asks for
        ``multiple`` values, ``single`` otherwise; ``weight`` defaults to
        one past the heaviest field of the template.

        Returns:
            The field id

        Raises:
            ValidationFailed: invalid input or settings
            InvalidFieldType: unknown field type
            DuplicateName: the template already has a field with this name
            SchemaMigrationFailed: storage could not be changed (nothing is written)
        """
        template = self.templates.get_or_raise(as_uuid(template_id, "template"))

        try:
            field_data = FieldCreate(
                name=name,
                label=label,
                type=type,
                description=description,
                required=required,
                cardinality=cardinality,
                weight=weight,
                settings=settings or {},
            )
        except ValidationError as e:
            raise ValidationFailed(pydantic_errors(e)) from e

        field_type = self.registry.get(field_data.type)

        field_settings = dict(field_data.settings)
        wants_multiple = bool(field_settings.get("multiple"))
        for key in DERIVED_SETTINGS:
            field_settings.pop(key, None)
        field_cardinality = field_data.cardinality or ("multi" if wants_multiple else "single")

        errors: dict[str, list[str]] = {}
        if field_data.name == "status":
            if field_data.type not in STATUS_FIELD_TYPES or field_cardinality != "single":
                errors["name"] = [
                    f"A field named 'status' replaces the record status and must be a single "
                    f"{' or '.join(STATUS_FIELD_TYPES)} field."
                ]
        elif field_data.name in SYSTEM_COLUMNS or field_data.name.endswith(RESOLVED_SUFFIX):
            errors["name"] = [f"'{field_data.name}' is reserved."]
        if field_cardinality == "multi" and not field_type.supports_multiple():
            errors["cardinality"] = [f"Field type '{field_type.handle}' does not support multiple values."]
        settings_errors = field_type.validate_settings({**field_type.default_settings(), **field_settings})
        if settings_errors:
            errors["settings"] = settings_errors
        if errors:
            raise ValidationFailed(errors)

        template_uuid = template.id
        try:
            if field_data.weight is None:
                field_weight = self.fields.next_weight(template_uuid)
            else:
                field_weight = field_data.weight

            field = self.fields.create(template, {
                "name": field_data.name,
                "label": field_data.label,
                "type": field_data.type,
                "description": field_data.description,
                "required": field_data.required,
                "cardinality": field_cardinality,
                "weight": field_weight,
                "settings": field_settings,
            })
            self.templates.touch(template)
            self.synthesizer.on_field_added(template, field)
            field_id = field.id
            self._commit(template_uuid)
        except SQLAlchemyError as e:
            self._rollback(template_uuid, f"Adding field '{name}' to '{template.name}'", e)
            raise StorageOperationFailed(f"Failed to add field '{name}'", error=str(e)) from e
        except Exception as e:
            self._rollback(template_uuid, f"Adding field '{name}' to '{template.name}'", e)
            raise

        logger.info(f"Added field '{name}' ({type}, {field_cardinality}) to template '{template.name}'")
        return field_id

    def update_field(self, field_id: Any, values: dict) -> dict:
        """
        Update label, description, weight, required or non-structural settings.

        Raises:
            ImmutableFieldChange: name, type, cardinality or a structural setting would change
        """
        field = self.fields.get_or_raise(as_uuid(field_id, "field"))
        template = field.template
        field_type = self.registry.get(field.type)

        for key in IMMUTABLE_FIELD_KEYS:
            if key in values and str(values[key]) != str(getattr(field, key)):
                raise ImmutableFieldChange(
                    f"The {key} of field '{field.name}' cannot be changed; create a new field instead",
                    field=field.name,
                    key=key,
                )
        changes = {key: value for key, value in values.items() if key not in IMMUTABLE_FIELD_KEYS}

        try:
            update_data = FieldUpdate(**changes).model_dump(exclude_unset=True)
        except ValidationError as e:
            raise ValidationFailed(pydantic_errors(e)) from e

        if update_data.get("settings") is not None:
            current = {**field_type.default_settings(), **(field.settings or {})}
            new_settings = dict(update_data["settings"])
            if "multiple" in new_settings and bool(new_settings["multiple"]) != (field.cardinality == "multi"):
                raise ImmutableFieldChange(
                    f"The cardinality of field '{field.name}' cannot be changed",
                    field=field.name,
                    key="cardinality",
                )
            for key in field_type.structural_settings:
                if key in new_settings and new_settings[key] != current.get(key):
                    raise ImmutableFieldChange(
                        f"The setting '{key}' of field '{field.name}' shapes its storage and cannot be changed",
                        field=field.name,
                        key=key,
                    )
            for key in DERIVED_SETTINGS:
                new_settings.pop(key, None)

            merged = {**(field.settings or {}), **new_settings}
            settings_errors = field_type.validate_settings({**field_type.default_settings(), **merged})
            if settings_errors:
                raise ValidationFailed({"settings": settings_errors})
            update_data["settings"] = merged
        else:
            update_data.pop("settings", None)

        required_changed = "required" in update_data and update_data["required"] != field.required
        name, template_uuid = field.name, template.id
        try:
            self.fields.update(field, update_data)
            self.templates.touch(template)
            if required_changed:
                self.synthesizer.on_required_changed(template, field)
            self._commit(template_uuid)
        except SQLAlchemyError as e:
            self._rollback(template_uuid, f"Updating field '{name}'", e)
            raise StorageOperationFailed(f"Failed to update field '{name}'", error=str(e)) from e
        except Exception as e:
            self._rollback(template_uuid, f"Updating field '{name}'", e)
            raise

        logger.info(f"Updated field '{name}' of '{template.name}': {', '.join(update_data) or 'no changes'}")
        return self._field_dict(field)

    def delete_field(self, field_id: Any) -> bool:
        """Delete a field and drop its column or child table"""
        field = self.fields.get_or_raise(as_uuid(field_id, "field"))
        template = field.template
        name, template_uuid = field.name, template.id

        try:
            self.synthesizer.on_field_deleted(template, field)
            self.fields.delete(field)
            self.templates.touch(template)
            self._commit(template_uuid)
        except SQLAlchemyError as e:
            self._rollback(template_uuid, f"Deleting field '{name}'", e)
            raise StorageOperationFailed(f"Failed to delete field '{name}'", error=str(e)) from e
        except Exception as e:
            self._rollback(template_uuid, f"Deleting field '{name}'", e)
            raise

        logger.info(f"Deleted field '{name}' from template '{template.name}'")
        return True

    def get_field(self, field_id: Any) -> dict:
        return self._field_dict(self.fields.get_or_raise(as_uuid(field_id, "field")))

    def list_fields(self, template_id: Any) -> list[dict]:
        template = self.templates.get_or_raise(as_uuid(template_id, "template"))
        return [self._field_dict(field) for field in self.fields.get_all_by_template(template.id)]
