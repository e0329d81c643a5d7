"""Schema Synthesizer - keeps template tables in lock-step with field metadata"""

import uuid
from contextlib import contextmanager
from typing import Optional

from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy import event, func, inspect, insert, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.exceptions import EntityEngineError, NotFound, SchemaMigrationFailed
from core.logging_config import get_logger, log_context
from models import EntityTemplate, EntityField, TemplateMigration
from schemas.scope import Scope
from services.field_types import FieldTypeRegistry, ValidationContext
from services.table_builder import SYSTEM_COLUMNS, TableBuilder
from services.template_descriptor import (
    DescriptorCache,
    FieldBinding,
    TemplateDescriptor,
    effective_settings,
)

logger = get_logger(__name__)


class SchemaSynthesizer:
    """
    Applies DDL for template and field changes.

    This service:
    - Creates the template table when its first field arrives
    - Adds/drops columns and child tables as fields come and go
    - Backfills required fields added to populated tables
    - Records every applied step in entity_template_migrations
    - Builds (and caches) the runtime descriptor of a template

    DDL runs on the session's own connection, so it commits or rolls back
    together with the metadata change that triggered it. The caller owns the
    transaction.
    """

    def __init__(
        self,
        session: Session,
        registry: FieldTypeRegistry,
        tables: TableBuilder,
        descriptors: DescriptorCache,
    ):
        self.session = session
        self.registry = registry
        self.tables = tables
        self.descriptors = descriptors

    # Descriptors

    def build_descriptor(self, template: EntityTemplate) -> TemplateDescriptor:
        scope = Scope(tenant_id=template.tenant_id, project_id=template.project_id)
        bindings = []
        for field in sorted(template.fields, key=lambda f: (f.weight, f.name)):
            field_type = self.registry.get(field.type)
            multiple = field.cardinality == "multi"
            bindings.append(FieldBinding(
                name=field.name,
                label=field.label,
                type=field.type,
                field_type=field_type,
                settings=effective_settings(field_type, field.settings, field.cardinality, field.required),
                required=field.required,
                cardinality=field.cardinality,
                weight=field.weight,
                column=None if multiple else field.name,
                child_table=self.tables.child_table_name(template.table_name, field.name) if multiple else None,
            ))

        return TemplateDescriptor(
            template_id=template.id,
            scope=scope,
            name=template.name,
            label=template.label,
            table_name=template.table_name,
            status=template.status,
            settings=dict(template.settings or {}),
            bindings=tuple(bindings),
        )

    def descriptor(self, template_id: uuid.UUID) -> TemplateDescriptor:
        """Cached descriptor of a template; NotFound when it does not exist"""
        return self.descriptors.get_or_build(template_id, self._load_descriptor)

    def _load_descriptor(self, template_id: uuid.UUID) -> TemplateDescriptor:
        template = self.session.get(EntityTemplate, template_id)
        if template is None:
            raise NotFound(f"Template {template_id} not found", template_id=str(template_id))
        return self.build_descriptor(template)

    # Introspection

    def table_exists(self, table_name: str) -> bool:
        return inspect(self.session.connection()).has_table(table_name)

    def migration_history(self, template_id: uuid.UUID) -> list[TemplateMigration]:
        """All applied migrations for a template, ordered by version"""
        return list(self.session.scalars(
            select(TemplateMigration)
            .where(TemplateMigration.template_id == template_id)
            .order_by(TemplateMigration.version)
        ).all())

    # Mutations

    def ensure_table(self, template: EntityTemplate) -> Optional[TemplateMigration]:
        """Create the template table (with its current fields) if it is missing"""
        if self.table_exists(template.table_name):
            return None
        with self._migration(template, "create_table") as (op, statements):
            descriptor = self.build_descriptor(template)
            self._create_tables(op, descriptor)
            description = (
                f"Create table '{template.table_name}' for template '{template.name}' "
                f"with {len(descriptor.bindings)} field(s)"
            )
        return self._record(template, "create_table", description, statements)

    def on_field_added(self, template: EntityTemplate, field: EntityField) -> TemplateMigration:
        """Materialize a freshly added (and flushed) field"""
        if not self.table_exists(template.table_name):
            # The new field is part of the template, so it is created with the table
            return self.ensure_table(template)

        with self._migration(template, "add_field") as (op, statements):
            descriptor = self.build_descriptor(template)
            binding = descriptor.binding(field.name)

            if binding.multiple:
                self._create_child_table(op, template.table_name, binding)
            elif not binding.is_system:
                # Added nullable; NOT NULL can only hold once existing rows are filled
                op.add_column(template.table_name, self.tables.field_column(binding, nullable=True))
                if self.tables.needs_index(binding):
                    op.create_index(
                        self.tables.index_name(template.table_name, binding.name),
                        template.table_name,
                        [binding.name],
                    )

            if binding.required and not binding.is_system:
                self._backfill(descriptor, binding)
                self._set_nullable(op, template, binding)

            location = binding.child_table if binding.multiple else template.table_name
            description = f"Add field '{field.name}' ({field.type}, {field.cardinality}) to '{location}'"
            if binding.is_system:
                # The status column already exists; only the rules change
                description = f"Bind field '{field.name}' ({field.type}) to system column of '{location}'"

        return self._record(template, "add_field", description, statements)

    def on_required_changed(self, template: EntityTemplate, field: EntityField) -> Optional[TemplateMigration]:
        """Bring storage in line with a field whose ``required`` flag was flipped"""
        if not self.table_exists(template.table_name) or field.name in SYSTEM_COLUMNS:
            self.descriptors.invalidate(template.id)
            return None

        with self._migration(template, "alter_field") as (op, statements):
            descriptor = self.build_descriptor(template)
            binding = descriptor.binding(field.name)
            if binding.required:
                self._backfill(descriptor, binding)
            self._set_nullable(op, template, binding)
            description = (
                f"Mark field '{field.name}' as {'required' if binding.required else 'optional'}"
            )

        return self._record(template, "alter_field", description, statements)

    def on_field_deleted(self, template: EntityTemplate, field: EntityField) -> Optional[TemplateMigration]:
        """Drop the storage of a field that is about to be deleted"""
        if not self.table_exists(template.table_name) or field.name in SYSTEM_COLUMNS:
            self.descriptors.invalidate(template.id)
            return None

        with self._migration(template, "drop_field") as (op, statements):
            field_type = self.registry.get(field.type)
            settings = effective_settings(field_type, field.settings, field.cardinality, field.required)

            if field.cardinality == "multi":
                child_name = self.tables.child_table_name(template.table_name, field.name)
                op.drop_table(child_name)
                description = f"Drop child table '{child_name}' of field '{field.name}'"
            else:
                if field_type.storage_shape(settings).needs_index:
                    op.drop_index(
                        self.tables.index_name(template.table_name, field.name),
                        table_name=template.table_name,
                    )
                op.drop_column(template.table_name, field.name)
                description = f"Drop column '{field.name}' from '{template.table_name}'"

        return self._record(template, "drop_field", description, statements)

    def on_template_deleted(self, template: EntityTemplate) -> None:
        """Drop child tables, then the primary table"""
        try:
            op = self._operations()
            if self.table_exists(template.table_name):
                for field in template.fields:
                    if field.cardinality != "multi":
                        continue
                    child_name = self.tables.child_table_name(template.table_name, field.name)
                    if self.table_exists(child_name):
                        op.drop_table(child_name)
                op.drop_table(template.table_name)
                logger.info(f"Dropped table '{template.table_name}' of template '{template.name}'")
        except SQLAlchemyError as e:
            raise SchemaMigrationFailed(
                f"Dropping storage of template '{template.name}' failed: {e}",
                template=template.name,
            ) from e
        finally:
            self.descriptors.invalidate(template.id)

    # Internals

    def _dialect(self) -> str:
        return self.session.connection().dialect.name

    def _operations(self) -> Operations:
        context = MigrationContext.configure(self.session.connection())
        return Operations(context)

    @contextmanager
    def _migration(self, template: EntityTemplate, migration_type: str):
        """Run DDL on the session connection, collecting the emitted statements"""
        connection = self.session.connection()
        statements: list[str] = []

        def collect(conn, cursor, statement, parameters, context, executemany):
            if conn is connection and not statement.lstrip().upper().startswith(("SELECT", "PRAGMA")):
                statements.append(statement.strip())

        event.listen(connection.engine, "before_cursor_execute", collect)
        try:
            with log_context(template=template.name, template_id=str(template.id)):
                yield self._operations(), statements
        except EntityEngineError:
            raise
        except SQLAlchemyError as e:
            logger.error(f"Migration '{migration_type}' of template '{template.name}' failed: {e}")
            raise SchemaMigrationFailed(
                f"Migration '{migration_type}' of template '{template.name}' failed: {e}",
                template=template.name,
                migration_type=migration_type,
            ) from e
        finally:
            event.remove(connection.engine, "before_cursor_execute", collect)
            self.descriptors.invalidate(template.id)

    def _create_tables(self, op: Operations, descriptor: TemplateDescriptor) -> None:
        table_name = descriptor.table_name
        # Same column shape as fields added later on (see _set_nullable)
        nullable = True if self._dialect() == "sqlite" else None
        op.create_table(
            table_name,
            *self.tables.system_columns(table_name),
            *[self.tables.field_column(binding, nullable=nullable) for binding in descriptor.column_bindings],
        )
        op.create_index(self.tables.scope_index_name(table_name), table_name, ["tenant_id", "project_id"])
        for binding in descriptor.column_bindings:
            if self.tables.needs_index(binding):
                op.create_index(self.tables.index_name(table_name, binding.name), table_name, [binding.name])
        for binding in descriptor.multi_bindings:
            self._create_child_table(op, table_name, binding)

    def _create_child_table(self, op: Operations, table_name: str, binding: FieldBinding) -> None:
        op.create_table(binding.child_table, *self.tables.child_columns(table_name, binding))
        if self.tables.needs_index(binding):
            op.create_index(self.tables.index_name(binding.child_table, "value"), binding.child_table, ["value"])

    def _set_nullable(self, op: Operations, template: EntityTemplate, binding: FieldBinding) -> None:
        # SQLite cannot change a column in place; field columns stay nullable
        # there and the record store enforces required values
        if binding.multiple or self._dialect() == "sqlite":
            return
        op.alter_column(
            template.table_name,
            binding.name,
            existing_type=binding.field_type.storage_shape(binding.settings).column_type,
            nullable=not binding.required,
        )

    def _backfill(self, descriptor: TemplateDescriptor, binding: FieldBinding) -> None:
        """
        Give rows without a value for a required field its default.

        The field's ``default_value`` setting is validated and processed like
        any submitted value; without a usable default the migration is refused.
        """
        primary, children = self.tables.build_tables(descriptor)
        scope_filter = (
            (primary.c.tenant_id == descriptor.scope.tenant_id)
            & (primary.c.project_id == descriptor.scope.project_id)
        )
        if binding.multiple:
            child = children[binding.name]
            missing = scope_filter & primary.c.id.not_in(select(child.c.record_id))
        else:
            missing = scope_filter & primary.c[binding.name].is_(None)

        record_ids = self.session.scalars(select(primary.c.id).where(missing)).all()
        if not record_ids:
            return

        field_type = binding.field_type
        default = binding.settings.get("default_value")
        if field_type.is_empty(default):
            raise SchemaMigrationFailed(
                f"Cannot make field '{binding.name}' of '{descriptor.name}' required: "
                f"{len(record_ids)} existing record(s) have no value and there is no default_value to backfill",
                field=binding.name,
                records=len(record_ids),
            )

        context = ValidationContext(scope=descriptor.scope, field_name=binding.name, required=True)
        errors = field_type.validate(default, binding.settings, context)
        if errors:
            raise SchemaMigrationFailed(
                f"default_value of required field '{binding.name}' is invalid: {'; '.join(errors)}",
                field=binding.name,
                errors=[str(error) for error in errors],
            )

        value = field_type.process(default, binding.settings)
        if binding.multiple:
            rows = [
                {"record_id": record_id, "delta": delta, "value": field_type.to_storage(item, binding.settings)}
                for record_id in record_ids
                for delta, item in enumerate(value)
            ]
            self.session.execute(insert(children[binding.name]), rows)
        else:
            self.session.execute(
                update(primary)
                .where(missing)
                .values({binding.name: field_type.to_storage(value, binding.settings)})
            )
        logger.info(f"Backfilled {len(record_ids)} record(s) with default of required field '{binding.name}'")

    def _record(
        self,
        template: EntityTemplate,
        migration_type: str,
        description: str,
        statements: list[str],
    ) -> TemplateMigration:
        last_version = self.session.scalar(
            select(func.max(TemplateMigration.version)).where(TemplateMigration.template_id == template.id)
        )
        migration = TemplateMigration(
            template_id=template.id,
            migration_type=migration_type,
            description=description,
            statements=";\n".join(statements),
            version=(last_version or 0) + 1,
        )
        self.session.add(migration)
        template.migration_status = "migrated"
        self.session.flush()

        logger.info(f"Applied migration v{migration.version} ({migration_type}): {description}")
        return migration
