import hashlib
import uuid
import pytest

from schemas.scope import Scope
from services.field_types import build_default_registry
from services.table_builder import SYSTEM_COLUMNS, TableBuilder
from services.template_descriptor import FieldBinding, TemplateDescriptor, effective_settings


@pytest.mark.unit
class TestTableBuilder:

    def setup_method(self):
        self.builder = TableBuilder(prefix="baas", max_length=63)
        self.registry = build_default_registry()
        self.scope = Scope(tenant_id="T1", project_id="P1")

    def binding(self, name: str, type: str, cardinality: str = "single", required: bool = False, **settings):
        field_type = self.registry.get(type)
        return FieldBinding(
            name=name,
            label=name.title(),
            type=type,
            field_type=field_type,
            settings=effective_settings(field_type, settings, cardinality, required),
            required=required,
            cardinality=cardinality,
            weight=0,
            column=None if cardinality == "multi" else name,
            child_table=self.builder.child_table_name("baas_x_client", name) if cardinality == "multi" else None,
        )

    def test_table_name_is_deterministic(self):
        scope_hash = hashlib.md5(b"T1_P1").hexdigest()[:6]

        assert self.builder.table_name(self.scope, "client") == f"baas_{scope_hash}_client"
        assert self.builder.table_name(self.scope, "client") == self.builder.table_name(self.scope, "client")

    def test_table_name_differs_per_scope(self):
        other = Scope(tenant_id="T1", project_id="P2")

        assert self.builder.table_name(self.scope, "client") != self.builder.table_name(other, "client")

    def test_long_name_is_truncated_with_hash(self):
        name = "a" * 80

        table_name = self.builder.table_name(self.scope, name)

        assert len(table_name) == 63
        assert table_name.endswith("_h" + hashlib.md5(name.encode()).hexdigest()[:4])

    def test_long_names_stay_distinct(self):
        first = self.builder.table_name(self.scope, "a" * 70 + "x")
        second = self.builder.table_name(self.scope, "a" * 70 + "y")

        assert first != second

    def test_child_table_name(self):
        assert self.builder.child_table_name("baas_abc123_client", "tags") == "baas_abc123_client__tags"
        assert len(self.builder.child_table_name("t" * 60, "tags")) == 63

    def test_build_tables(self):
        descriptor = TemplateDescriptor(
            template_id=uuid.uuid4(),
            scope=self.scope,
            name="client",
            label="Client",
            table_name="baas_x_client",
            status="active",
            settings={},
            bindings=(
                self.binding("title", "string", required=True, max_length=50),
                self.binding("kind", "list_string", allowed_values=["a", "b"]),
                self.binding("tags", "string", cardinality="multi"),
            ),
        )

        primary, children = self.builder.build_tables(descriptor)

        assert [column.name for column in primary.columns] == [*SYSTEM_COLUMNS, "title", "kind"]
        assert primary.c.title.type.length == 50
        assert primary.c.title.nullable is False
        assert primary.c.kind.nullable is True
        assert {index.name for index in primary.indexes} == {"ix_baas_x_client_scope", "ix_baas_x_client_kind"}

        child = children["tags"]
        assert child.name == "baas_x_client__tags"
        assert [column.name for column in child.columns] == ["record_id", "delta", "value"]
        assert [column.name for column in child.primary_key.columns] == ["record_id", "delta"]
        foreign_key = next(iter(child.c.record_id.foreign_keys))
        assert foreign_key.target_fullname == "baas_x_client.id"
        assert foreign_key.ondelete == "CASCADE"

    def test_status_field_uses_system_column(self):
        descriptor = TemplateDescriptor(
            template_id=uuid.uuid4(),
            scope=self.scope,
            name="client",
            label="Client",
            table_name="baas_x_client",
            status="active",
            settings={},
            bindings=(self.binding("status", "list_string", allowed_values=["draft", "published"]),),
        )

        primary, _ = self.builder.build_tables(descriptor)

        assert [column.name for column in primary.columns] == list(SYSTEM_COLUMNS)
        assert primary.c.status.type.length == 20
