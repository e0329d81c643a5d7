"""Table Builder - physical table layout for entity templates"""

import hashlib
from typing import Iterable, Optional

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    PrimaryKeyConstraint,
    String,
    Table,
    UniqueConstraint,
)

from schemas.scope import Scope
from services.template_descriptor import FieldBinding, TemplateDescriptor

# Columns every primary table carries; field names may not shadow them
SYSTEM_COLUMNS = ("id", "uuid", "tenant_id", "project_id", "created", "updated", "status")

# A single field of one of these types may take over the status column
STATUS_FIELD_TYPES = ("string", "list_string")
STATUS_MAX_LENGTH = 20

DEFAULT_RECORD_STATUS = "published"


def _md5(value: str) -> str:
    return hashlib.md5(value.encode("utf-8")).hexdigest()


class TableBuilder:
    """
    Generates table names and SQLAlchemy table objects for templates.

    Each template table gets the system columns:
    - id (INTEGER PRIMARY KEY, autoincrement)
    - uuid (unique, not null)
    - tenant_id / project_id (not null, indexed together)
    - created / updated (timezone aware)
    - status

    Plus one column per single-valued field. Multi-valued fields live in a
    child table ``{table}__{field}`` keyed by (record_id, delta).
    """

    def __init__(self, prefix: str = "baas", max_length: int = 63):
        self.prefix = prefix
        self.max_length = max_length

    # Naming

    def scope_hash(self, scope: Scope) -> str:
        return _md5(f"{scope.tenant_id}_{scope.project_id}")[:6]

    def table_name(self, scope: Scope, template_name: str) -> str:
        """
        ``{prefix}_{scope hash}_{name}``; when that is too long the template
        name is cut and suffixed with a short hash of the full name.
        """
        base = f"{self.prefix}_{self.scope_hash(scope)}_"
        name = base + template_name
        if len(name) <= self.max_length:
            return name

        suffix = f"_h{_md5(template_name)[:4]}"
        keep = self.max_length - len(base) - len(suffix)
        return base + template_name[:keep] + suffix

    def shorten(self, name: str) -> str:
        if len(name) <= self.max_length:
            return name
        suffix = f"_h{_md5(name)[:4]}"
        return name[:self.max_length - len(suffix)] + suffix

    def child_table_name(self, table_name: str, field_name: str) -> str:
        return self.shorten(f"{table_name}__{field_name}")

    def index_name(self, table_name: str, column_name: str) -> str:
        return self.shorten(f"ix_{table_name}_{column_name}")

    def scope_index_name(self, table_name: str) -> str:
        return self.shorten(f"ix_{table_name}_scope")

    def uuid_constraint_name(self, table_name: str) -> str:
        return self.shorten(f"uq_{table_name}_uuid")

    # Columns

    def system_columns(self, table_name: str) -> list:
        return [
            Column("id", Integer, primary_key=True, autoincrement=True),
            Column("uuid", String(36), nullable=False),
            Column("tenant_id", String(64), nullable=False),
            Column("project_id", String(64), nullable=False),
            Column("created", DateTime(timezone=True), nullable=False),
            Column("updated", DateTime(timezone=True), nullable=False),
            Column("status", String(STATUS_MAX_LENGTH), nullable=False, server_default=DEFAULT_RECORD_STATUS),
            UniqueConstraint("uuid", name=self.uuid_constraint_name(table_name)),
        ]

    def field_column(self, binding: FieldBinding, nullable: Optional[bool] = None) -> Column:
        """Column holding a single-valued field; nullable unless required"""
        shape = binding.field_type.storage_shape(binding.settings)
        if nullable is None:
            nullable = not binding.required
        return Column(binding.name, shape.column_type, nullable=nullable)

    def child_columns(self, table_name: str, binding: FieldBinding) -> list:
        shape = binding.field_type.storage_shape(binding.settings)
        return [
            Column(
                "record_id",
                Integer,
                ForeignKey(f"{table_name}.id", ondelete="CASCADE"),
                nullable=False,
            ),
            Column("delta", Integer, nullable=False),
            Column("value", shape.column_type, nullable=False),
            PrimaryKeyConstraint("record_id", "delta"),
        ]

    def needs_index(self, binding: FieldBinding) -> bool:
        return binding.field_type.storage_shape(binding.settings).needs_index

    # Tables

    def build_tables(self, descriptor: TemplateDescriptor) -> tuple[Table, dict[str, Table]]:
        """Primary table and child tables (by field name) bound to a fresh MetaData"""
        return self.build_tables_for(descriptor.table_name, descriptor.bindings)

    def build_tables_for(
        self,
        table_name: str,
        bindings: Iterable[FieldBinding],
    ) -> tuple[Table, dict[str, Table]]:
        metadata = MetaData()
        bindings = list(bindings)

        primary = Table(
            table_name,
            metadata,
            *self.system_columns(table_name),
            *[self.field_column(binding) for binding in bindings if not binding.multiple and not binding.is_system],
        )
        Index(self.scope_index_name(table_name), primary.c.tenant_id, primary.c.project_id)
        for binding in bindings:
            if not binding.multiple and not binding.is_system and self.needs_index(binding):
                Index(self.index_name(table_name, binding.name), primary.c[binding.name])

        children = {}
        for binding in bindings:
            if binding.multiple:
                child_name = binding.child_table or self.child_table_name(table_name, binding.name)
                child = Table(child_name, metadata, *self.child_columns(table_name, binding))
                if self.needs_index(binding):
                    Index(self.index_name(child_name, "value"), child.c.value)
                children[binding.name] = child

        return primary, children
