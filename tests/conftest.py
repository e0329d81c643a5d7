import io
from typing import Generator, Optional
import pytest
from unittest.mock import Mock
from sqlalchemy import StaticPool, text
from sqlalchemy.orm import sessionmaker, Session
from faker import Faker
from PIL import Image

from core.settings import Settings
from db.session import create_db_engine
from models.base import Base
from schemas.scope import Scope
from services.collaborators import StoredObject
from services.factories import EntityEngine
from services.reference_targets import TableTargetProvider
from services.record_service import RecordService
from services.template_service import TemplateService

fake = Faker()

# Test database setup
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"


@pytest.fixture(scope="function")
def db_engine():
    """In-memory database shared by every connection of one test."""
    engine = create_db_engine(SQLALCHEMY_DATABASE_URL, poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture(scope="function")
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, autoflush=False, autocommit=False)


@pytest.fixture(scope="function")
def db_session(session_factory) -> Generator[Session, None, None]:
    """Create a test database session."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        DATABASE_URL=SQLALCHEMY_DATABASE_URL,
        ENTITY_TABLE_PREFIX="baas",
        TABLE_NAME_MAX_LENGTH=63,
        DEFAULT_PAGE_SIZE=50,
        MAX_PAGE_SIZE=1000,
        PASSWORD_HASH_SCHEMES=["pbkdf2_sha256"],
    )


@pytest.fixture
def object_store() -> Mock:
    """Object store double; register objects with ``object_store.add(...)``."""
    objects: dict[str, tuple[StoredObject, Optional[bytes]]] = {}
    store = Mock()

    def add(stored: StoredObject, data: Optional[bytes] = None) -> StoredObject:
        objects[stored.id] = (stored, data)
        return stored

    store.add.side_effect = add
    store.get.side_effect = lambda object_id: objects.get(object_id, (None, None))[0]
    store.read.side_effect = lambda object_id: objects.get(object_id, (None, None))[1]
    return store


@pytest.fixture
def entity_engine(session_factory, test_settings, object_store) -> EntityEngine:
    return EntityEngine(session_factory=session_factory, config=test_settings, objects=object_store)


@pytest.fixture
def template_service(entity_engine: EntityEngine, db_session: Session) -> TemplateService:
    return entity_engine.templates(db_session)


@pytest.fixture
def record_service(entity_engine: EntityEngine, db_session: Session) -> RecordService:
    return entity_engine.records(db_session)


@pytest.fixture
def scope() -> Scope:
    return Scope(tenant_id=fake.uuid4(), project_id=fake.uuid4())


@pytest.fixture
def other_scope() -> Scope:
    return Scope(tenant_id=fake.uuid4(), project_id=fake.uuid4())


@pytest.fixture
def client_template(template_service: TemplateService, scope: Scope):
    """Template `client` with a required title and an optional content field."""
    template_id = template_service.create_template(scope, "client", "Client")
    template_service.add_field(template_id, "title", "Title", "string", required=True, settings={"max_length": 50})
    template_service.add_field(template_id, "content", "Content", "text")
    return template_id


@pytest.fixture
def users_table(db_session: Session, entity_engine: EntityEngine) -> list[dict]:
    """Platform `users` table registered as reference target `user`."""
    db_session.execute(text(
        "CREATE TABLE users (id INTEGER PRIMARY KEY, name VARCHAR(100), email VARCHAR(100), "
        "password VARCHAR(100), kind VARCHAR(20))"
    ))
    users = [
        {"id": 1, "name": "Ada Lovelace", "email": fake.email(), "password": "secret", "kind": "user"},
        {"id": 2, "name": "Alan Turing", "email": fake.email(), "password": "secret", "kind": "user"},
        {"id": 3, "name": "Ops Robot", "email": fake.email(), "password": "secret", "kind": "bot"},
    ]
    db_session.execute(
        text("INSERT INTO users (id, name, email, password, kind) VALUES (:id, :name, :email, :password, :kind)"),
        users,
    )
    db_session.commit()

    entity_engine.register_target(TableTargetProvider("user", "users", bundle_column="kind"))
    return users


def make_image(width: int, height: int, image_format: str = "PNG") -> bytes:
    """Encoded image bytes of the given size."""
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color=(200, 30, 30)).save(buffer, format=image_format)
    return buffer.getvalue()


@pytest.fixture
def image_bytes():
    return make_image
