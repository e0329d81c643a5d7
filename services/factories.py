from collections.abc import Callable, Generator
from contextlib import contextmanager
from typing import Optional

from sqlalchemy.orm import Session, sessionmaker

from core.settings import Settings, settings as default_settings
from services.collaborators import AccessChecker, ObjectStore
from services.field_types import FieldTypeRegistry, build_default_registry
from services.record_service import RecordService
from services.reference_resolver import ReferenceResolver
from services.reference_targets import ReferenceTargetProvider
from services.schema_synthesizer import SchemaSynthesizer
from services.table_builder import TableBuilder
from services.template_descriptor import DescriptorCache
from services.template_service import TemplateService


class EntityEngine:
    """
    Process-wide wiring of the entity engine.

    Holds what outlives a session (field type registry, table naming,
    descriptor cache, reference providers and collaborators) and hands out
    session-bound services.
    """

    def __init__(
        self,
        session_factory: Optional[Callable[[], Session]] = None,
        config: Optional[Settings] = None,
        registry: Optional[FieldTypeRegistry] = None,
        providers: Optional[dict[str, ReferenceTargetProvider]] = None,
        objects: Optional[ObjectStore] = None,
        access: Optional[AccessChecker] = None,
    ):
        self.config = config or default_settings
        self.session_factory = session_factory
        self.registry = registry or build_default_registry(self.config.PASSWORD_HASH_SCHEMES)
        self.tables = TableBuilder(self.config.ENTITY_TABLE_PREFIX, self.config.TABLE_NAME_MAX_LENGTH)
        self.descriptors = DescriptorCache()
        self.providers = dict(providers or {})
        self.objects = objects
        self.access = access

    def register_target(self, provider: ReferenceTargetProvider) -> None:
        """Make a platform table available as a reference target"""
        self.providers[provider.target_type] = provider

    def synthesizer(self, session: Session) -> SchemaSynthesizer:
        return SchemaSynthesizer(session, self.registry, self.tables, self.descriptors)

    def resolver(self, session: Session) -> ReferenceResolver:
        return ReferenceResolver(
            session,
            self.synthesizer(session),
            providers=self.providers,
            search_limit=self.config.REFERENCE_SEARCH_LIMIT,
        )

    def templates(self, session: Session) -> TemplateService:
        return TemplateService(session, self.registry, self.synthesizer(session))

    def records(self, session: Session) -> RecordService:
        resolver = self.resolver(session)
        return RecordService(
            session,
            resolver.synthesizer,
            resolver,
            objects=self.objects,
            access=self.access,
            default_page_size=self.config.DEFAULT_PAGE_SIZE,
            max_page_size=self.config.MAX_PAGE_SIZE,
        )

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        if self.session_factory is None:
            raise RuntimeError("EntityEngine was created without a session factory")
        db = self.session_factory()
        try:
            yield db
        finally:
            db.close()


def build_entity_engine(config: Optional[Settings] = None, **kwargs) -> EntityEngine:
    """Engine bound to its own database engine, built from settings"""
    from db.session import create_db_engine

    config = config or default_settings
    db_engine = create_db_engine(config.DATABASE_URL, echo=config.SQL_ECHO)
    session_factory = sessionmaker(bind=db_engine, autoflush=False, autocommit=False)
    return EntityEngine(session_factory=session_factory, config=config, **kwargs)
