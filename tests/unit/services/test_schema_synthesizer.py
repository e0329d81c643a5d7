import pytest
from sqlalchemy import inspect

from core.exceptions import SchemaMigrationFailed
from services.table_builder import SYSTEM_COLUMNS


def table_names(engine) -> set[str]:
    return set(inspect(engine).get_table_names())


def column_names(engine, table_name: str) -> list[str]:
    return [column["name"] for column in inspect(engine).get_columns(table_name)]


@pytest.mark.unit
class TestSchemaSynthesizer:

    def test_template_without_fields_has_no_table(self, template_service, scope, db_engine):
        template_id = template_service.create_template(scope, "client", "Client")
        template = template_service.get_template(template_id)

        assert template["migration_status"] == "pending"
        assert template["table_name"] not in table_names(db_engine)
        assert template_service.migration_history(template_id) == []

    def test_first_field_creates_table(self, client_template, template_service, db_engine):
        template = template_service.get_template(client_template)

        assert template["migration_status"] == "migrated"
        assert column_names(db_engine, template["table_name"]) == [*SYSTEM_COLUMNS, "title", "content"]

        history = template_service.migration_history(client_template)
        assert [(entry["version"], entry["migration_type"]) for entry in history] == [
            (1, "create_table"),
            (2, "add_field"),
        ]
        assert "CREATE TABLE" in history[0]["statements"]
        assert "ALTER TABLE" in history[1]["statements"]

    def test_multi_field_gets_child_table(self, client_template, template_service, db_engine):
        template_service.add_field(client_template, "tags", "Tags", "string", cardinality="multi")
        table_name = template_service.get_template(client_template)["table_name"]

        assert f"{table_name}__tags" in table_names(db_engine)
        assert "tags" not in column_names(db_engine, table_name)
        assert column_names(db_engine, f"{table_name}__tags") == ["record_id", "delta", "value"]

    def test_indexed_field_gets_index(self, client_template, template_service, db_engine):
        template_service.add_field(
            client_template, "kind", "Kind", "list_string", settings={"allowed_values": ["a", "b"]}
        )
        table_name = template_service.get_template(client_template)["table_name"]

        index_names = {index["name"] for index in inspect(db_engine).get_indexes(table_name)}
        assert f"ix_{table_name}_kind" in index_names
        assert f"ix_{table_name}_scope" in index_names

    def test_delete_field_drops_column_and_child_table(self, client_template, template_service, db_engine):
        kind_id = template_service.add_field(
            client_template, "kind", "Kind", "list_string", settings={"allowed_values": ["a", "b"]}
        )
        tags_id = template_service.add_field(client_template, "tags", "Tags", "string", settings={"multiple": True})
        table_name = template_service.get_template(client_template)["table_name"]

        template_service.delete_field(kind_id)
        template_service.delete_field(tags_id)

        assert "kind" not in column_names(db_engine, table_name)
        assert f"{table_name}__tags" not in table_names(db_engine)
        history = template_service.migration_history(client_template)
        assert [entry["migration_type"] for entry in history[-2:]] == ["drop_field", "drop_field"]

    def test_migration_versions_are_contiguous(self, client_template, template_service):
        field_id = template_service.add_field(client_template, "score", "Score", "integer")
        template_service.add_field(client_template, "tags", "Tags", "string", cardinality="multi")
        template_service.delete_field(field_id)

        versions = [entry["version"] for entry in template_service.migration_history(client_template)]

        assert versions == list(range(1, len(versions) + 1))

    def test_required_field_on_populated_table_without_default_is_rejected(
        self, client_template, template_service, record_service, db_engine
    ):
        record_service.create(client_template, {"title": "Customer A"})
        table_name = template_service.get_template(client_template)["table_name"]
        versions_before = len(template_service.migration_history(client_template))

        with pytest.raises(SchemaMigrationFailed) as exc_info:
            template_service.add_field(client_template, "priority", "Priority", "integer", required=True)

        assert exc_info.value.details["records"] == 1
        assert "priority" not in column_names(db_engine, table_name)
        assert [field["name"] for field in template_service.list_fields(client_template)] == ["title", "content"]
        assert len(template_service.migration_history(client_template)) == versions_before

    def test_required_field_is_backfilled_with_default(self, client_template, template_service, record_service):
        record = record_service.create(client_template, {"title": "Customer A"})

        template_service.add_field(
            client_template, "priority", "Priority", "integer", required=True, settings={"default_value": 3}
        )

        assert record_service.read(client_template, record["id"])["priority"] == 3

    def test_invalid_default_is_rejected(self, client_template, template_service, record_service):
        record_service.create(client_template, {"title": "Customer A"})

        with pytest.raises(SchemaMigrationFailed):
            template_service.add_field(
                client_template, "priority", "Priority", "integer", required=True, settings={"default_value": "high"}
            )

    def test_required_multi_field_is_backfilled(self, client_template, template_service, record_service):
        record = record_service.create(client_template, {"title": "Customer A"})

        template_service.add_field(
            client_template, "tags", "Tags", "string",
            required=True, cardinality="multi", settings={"default_value": ["new"]},
        )

        assert record_service.read(client_template, record["id"])["tags"] == ["new"]

    def test_making_field_required_backfills_or_rejects(self, client_template, template_service, record_service):
        record = record_service.create(client_template, {"title": "Customer A"})
        content_id = next(
            field["id"] for field in template_service.list_fields(client_template) if field["name"] == "content"
        )

        with pytest.raises(SchemaMigrationFailed):
            template_service.update_field(content_id, {"required": True})
        assert template_service.get_field(content_id)["required"] is False

        template_service.update_field(content_id, {"required": True, "settings": {"default_value": "n/a"}})

        assert template_service.get_field(content_id)["required"] is True
        assert record_service.read(client_template, record["id"])["content"] == "n/a"
        assert template_service.migration_history(client_template)[-1]["migration_type"] == "alter_field"

    def test_delete_template_drops_tables(self, client_template, template_service, record_service, db_engine):
        template_service.add_field(client_template, "tags", "Tags", "string", cardinality="multi")
        record_service.create(client_template, {"title": "Customer A", "tags": ["a"]})
        table_name = template_service.get_template(client_template)["table_name"]

        template_service.delete_template(client_template)

        assert table_name not in table_names(db_engine)
        assert f"{table_name}__tags" not in table_names(db_engine)

    def test_descriptor_is_rebuilt_after_changes(self, client_template, template_service, entity_engine):
        descriptor = template_service.get_descriptor(client_template)
        assert descriptor.field_names == ["title", "content"]
        assert client_template in entity_engine.descriptors

        template_service.add_field(client_template, "score", "Score", "integer")

        assert client_template not in entity_engine.descriptors
        assert template_service.get_descriptor(client_template).field_names == ["title", "content", "score"]
