"""Reference Resolver - batch hydration, search and validation of references"""

from collections import defaultdict
from typing import Any, Iterable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.exceptions import EntityEngineError
from core.logging_config import get_logger
from repositories.record_repository import RecordRepository
from repositories.template_repository import TemplateRepository
from schemas.scope import Scope
from services.reference_targets import ReferenceCheck, ReferenceTargetProvider
from services.schema_synthesizer import SchemaSynthesizer
from services.template_descriptor import TemplateDescriptor

logger = get_logger(__name__)

RESOLVED_SUFFIX = "_resolved"


class TemplateTargetProvider:
    """
    Serves references into the records of a template.

    The bundle of a template record is the template name. Lookups run through
    the record repository, so they never leave the template's scope.
    """

    def __init__(self, descriptor: TemplateDescriptor, synthesizer: SchemaSynthesizer):
        self.descriptor = descriptor
        self.synthesizer = synthesizer
        self.target_type = descriptor.name

    def _repository(self, session: Session) -> Optional[RecordRepository]:
        if not self.synthesizer.table_exists(self.descriptor.table_name):
            return None
        return RecordRepository(session, self.descriptor, self.synthesizer.tables)

    def _to_target(self, row: dict) -> dict:
        target = self.descriptor.record_from_row(row)
        label_field = self.descriptor.label_field
        label = target.get(label_field) if label_field else None
        target["label"] = str(label) if label not in (None, "") else f"{self.descriptor.label} #{row['id']}"
        target["bundle"] = self.descriptor.name
        return target

    def load_many(self, session: Session, scope: Scope, ids: Iterable[Any]) -> dict[Any, dict]:
        if scope != self.descriptor.scope:
            return {}
        repository = self._repository(session)
        if repository is None:
            return {}
        rows = repository.get_many(ids)
        return {record_id: self._to_target(row) for record_id, row in rows.items()}

    def search(
        self,
        session: Session,
        scope: Scope,
        bundles: list[str],
        query_text: str,
        sort: Optional[dict],
        limit: int,
    ) -> list[dict]:
        if scope != self.descriptor.scope or (bundles and self.descriptor.name not in bundles):
            return []
        repository = self._repository(session)
        if repository is None:
            return []

        sort = sort or {}
        rows = repository.search(
            self.descriptor.label_field,
            query_text,
            order_by=sort.get("field"),
            descending=str(sort.get("direction", "ASC")).upper() == "DESC",
            limit=limit,
        )
        return [self._to_target(row) for row in rows]


class ReferenceResolver:
    """
    Resolves reference field values into target records.

    ``target_type`` is looked up among the registered platform providers
    first, then among the templates of the scope. Hydration issues one
    lookup per target type for a whole batch of records.
    """

    def __init__(
        self,
        session: Session,
        synthesizer: SchemaSynthesizer,
        providers: Optional[dict[str, ReferenceTargetProvider]] = None,
        search_limit: int = 10,
    ):
        self.session = session
        self.synthesizer = synthesizer
        self.templates = TemplateRepository(session)
        # Shared with the engine so later registrations are visible
        self.providers = providers if providers is not None else {}
        self.search_limit = search_limit

    def provider_for(self, scope: Scope, target_type: Optional[str]) -> Optional[ReferenceTargetProvider]:
        if not target_type:
            return None
        if target_type in self.providers:
            return self.providers[target_type]

        template = self.templates.get_by_name(scope, target_type)
        if template is None:
            return None
        return TemplateTargetProvider(self.synthesizer.descriptor(template.id), self.synthesizer)

    def lookup(self, scope: Scope, target_type: str, ids: Iterable[Any]) -> dict[Any, dict]:
        """Targets by id; unknown ids are simply absent"""
        ids = [target_id for target_id in dict.fromkeys(ids) if target_id is not None]
        provider = self.provider_for(scope, target_type)
        if provider is None or not ids:
            return {}
        return provider.load_many(self.session, scope, ids)

    def bundle_of(self, scope: Scope, target_type: str, target_id: Any) -> Optional[str]:
        target = self.lookup(scope, target_type, [target_id]).get(target_id)
        return target.get("bundle") if target else None

    def validate_reference(
        self,
        scope: Scope,
        target_type: str,
        target_bundles: Optional[list[str]],
        target_id: Any,
    ) -> ReferenceCheck:
        """Existence and bundle check for one id"""
        target = self.lookup(scope, target_type, [target_id]).get(target_id)
        if target is None:
            return ReferenceCheck.NOT_FOUND
        if target_bundles and target.get("bundle") not in target_bundles:
            return ReferenceCheck.BUNDLE_MISMATCH
        return ReferenceCheck.OK

    def search(
        self,
        scope: Scope,
        target_type: str,
        target_bundles: Optional[list[str]] = None,
        query_text: str = "",
        sort: Optional[dict] = None,
        limit: Optional[int] = None,
    ) -> list[dict]:
        """Autocomplete candidates for a reference picker"""
        provider = self.provider_for(scope, target_type)
        if provider is None:
            logger.warning(f"No reference target '{target_type}' in scope {scope}")
            return []
        return provider.search(
            self.session,
            scope,
            list(target_bundles or []),
            (query_text or "").strip(),
            sort,
            limit or self.search_limit,
        )

    def resolve(self, records: list[dict], descriptor: TemplateDescriptor, scope: Optional[Scope] = None) -> list[dict]:
        """
        Attach ``<field>_resolved`` to every reference field of every record.

        Raw ids stay untouched. A missing target resolves to None (single) or
        is left out (multi); a failing lookup is logged and treated as missing.
        """
        scope = scope or descriptor.scope
        bindings = descriptor.reference_bindings
        if not records or not bindings:
            return records

        wanted: dict[str, set] = defaultdict(set)
        for binding in bindings:
            target_type = binding.settings.get("target_type")
            for record in records:
                value = record.get(binding.name)
                values = value if isinstance(value, list) else [value]
                wanted[target_type].update(item for item in values if item is not None)

        found: dict[str, dict] = {}
        for target_type, ids in wanted.items():
            try:
                found[target_type] = self.lookup(scope, target_type, ids)
            except (SQLAlchemyError, EntityEngineError) as e:
                logger.error(f"Resolving references to '{target_type}' failed: {e}")
                found[target_type] = {}

        for binding in bindings:
            targets = found.get(binding.settings.get("target_type"), {})
            key = binding.name + RESOLVED_SUFFIX
            for record in records:
                value = record.get(binding.name)
                if binding.multiple:
                    record[key] = [targets[item] for item in value or [] if item in targets]
                else:
                    record[key] = targets.get(value) if value is not None else None

        return records
