import uuid
import pytest
from unittest.mock import Mock
from sqlalchemy.exc import OperationalError

from schemas.scope import Scope
from services.field_types import build_default_registry
from services.reference_targets import ReferenceCheck, TableTargetProvider
from services.reference_resolver import ReferenceResolver
from services.template_descriptor import FieldBinding, TemplateDescriptor, effective_settings


def reference_binding(registry, name: str, target_type: str, cardinality: str = "single") -> FieldBinding:
    field_type = registry.get("reference")
    return FieldBinding(
        name=name,
        label=name.title(),
        type="reference",
        field_type=field_type,
        settings=effective_settings(field_type, {"target_type": target_type}, cardinality, False),
        required=False,
        cardinality=cardinality,
        weight=0,
        column=None if cardinality == "multi" else name,
    )


@pytest.mark.unit
class TestReferenceResolver:

    def setup_method(self):
        self.registry = build_default_registry()
        self.scope = Scope(tenant_id="t1", project_id="p1")
        self.users = Mock()
        self.users.target_type = "user"
        self.users.load_many.side_effect = lambda session, scope, ids: {
            target_id: {"id": target_id, "label": f"User {target_id}", "bundle": "user"}
            for target_id in ids
            if target_id in (1, 2)
        }
        self.resolver = ReferenceResolver(session=Mock(), synthesizer=Mock(), providers={"user": self.users})
        self.descriptor = TemplateDescriptor(
            template_id=uuid.uuid4(),
            scope=self.scope,
            name="task",
            label="Task",
            table_name="t",
            status="active",
            settings={},
            bindings=(
                reference_binding(self.registry, "owner", "user"),
                reference_binding(self.registry, "watchers", "user", cardinality="multi"),
            ),
        )

    def test_resolve_batches_lookups_per_target_type(self):
        records = [
            {"id": 1, "owner": 1, "watchers": [2, 7]},
            {"id": 2, "owner": 7, "watchers": []},
            {"id": 3, "owner": None, "watchers": [1]},
        ]

        self.resolver.resolve(records, self.descriptor)

        self.users.load_many.assert_called_once()
        _, _, ids = self.users.load_many.call_args.args
        assert sorted(ids) == [1, 2, 7]
        assert records[0]["owner_resolved"]["label"] == "User 1"
        assert [target["id"] for target in records[0]["watchers_resolved"]] == [2]
        assert records[1]["owner_resolved"] is None
        assert records[1]["watchers_resolved"] == []
        assert records[2]["owner_resolved"] is None
        assert records[0]["owner"] == 1

    def test_failed_lookup_is_treated_as_missing(self):
        self.users.load_many.side_effect = OperationalError("SELECT", {}, Exception("database is locked"))
        records = [{"id": 1, "owner": 1, "watchers": [2]}]

        self.resolver.resolve(records, self.descriptor)

        assert records[0]["owner_resolved"] is None
        assert records[0]["watchers_resolved"] == []

    def test_validate_reference(self):
        assert self.resolver.validate_reference(self.scope, "user", [], 1) is ReferenceCheck.OK
        assert self.resolver.validate_reference(self.scope, "user", [], 9) is ReferenceCheck.NOT_FOUND
        assert self.resolver.validate_reference(self.scope, "user", ["admin"], 1) is ReferenceCheck.BUNDLE_MISMATCH

    def test_unknown_target_type(self):
        self.resolver.templates = Mock()
        self.resolver.templates.get_by_name.return_value = None

        assert self.resolver.provider_for(self.scope, "planet") is None
        assert self.resolver.lookup(self.scope, "planet", [1]) == {}
        assert self.resolver.search(self.scope, "planet", query_text="x") == []

    def test_providers_registered_later_are_visible(self):
        providers = {}
        resolver = ReferenceResolver(session=Mock(), synthesizer=Mock(), providers=providers)

        providers["user"] = self.users

        assert resolver.provider_for(self.scope, "user") is self.users


@pytest.mark.unit
class TestTableTargetProvider:

    def test_search(self, entity_engine, db_session, users_table, scope):
        resolver = entity_engine.resolver(db_session)

        matches = resolver.search(scope, "user", query_text="  A ", sort={"field": "name", "direction": "DESC"})

        assert [target["label"] for target in matches] == ["Alan Turing", "Ada Lovelace"]
        assert all("password" not in target for target in matches)

    def test_search_by_bundle(self, entity_engine, db_session, users_table, scope):
        resolver = entity_engine.resolver(db_session)

        bots = resolver.search(scope, "user", target_bundles=["bot"])

        assert [(target["id"], target["bundle"]) for target in bots] == [(3, "bot")]

    def test_search_limit(self, entity_engine, db_session, users_table, scope):
        resolver = entity_engine.resolver(db_session)

        assert len(resolver.search(scope, "user", limit=2)) == 2

    def test_fixed_bundle_and_scope_columns(self, db_session, users_table, scope):
        provider = TableTargetProvider("person", "users", bundle="member", tenant_column="kind")

        targets = provider.load_many(db_session, Scope(tenant_id="bot", project_id="p1"), [1, 3])

        assert list(targets) == [3]
        assert targets[3]["bundle"] == "member"
        assert provider.search(db_session, scope, ["admin"], "", None, 10) == []


@pytest.mark.unit
class TestTemplateTargets:

    def test_search_template_records(self, entity_engine, db_session, record_service, client_template, scope):
        for title in ("Acme Corp", "Globex", "Acme Labs"):
            record_service.create(client_template, {"title": title})
        resolver = entity_engine.resolver(db_session)

        matches = resolver.search(scope, "client", query_text="acme", sort={"field": "title", "direction": "DESC"})

        assert [target["label"] for target in matches] == ["Acme Labs", "Acme Corp"]
        assert {target["bundle"] for target in matches} == {"client"}
        assert resolver.search(scope, "client", target_bundles=["project"]) == []

    def test_templates_of_other_scopes_are_invisible(
        self, entity_engine, db_session, record_service, client_template, other_scope
    ):
        record = record_service.create(client_template, {"title": "Acme Corp"})
        resolver = entity_engine.resolver(db_session)

        assert resolver.lookup(other_scope, "client", [record["id"]]) == {}
        assert resolver.search(other_scope, "client", query_text="acme") == []
