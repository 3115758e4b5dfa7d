"""
Shared fixtures.

Each test gets its own file-backed SQLite database so that threads can use
separate connections and really contend for the write lock. Every SQLite
transaction starts with BEGIN IMMEDIATE, so fixtures write through
short-lived sessions and hand back ids rather than live objects.
"""
import pytest
from fastapi.testclient import TestClient

from promptstash.core.config import Settings
from promptstash.core.security import create_access_token
from promptstash.db.base import Base
from promptstash.db.session import build_engine, make_session_factory
from promptstash.main import create_app
from promptstash.models import File, FileType, FileVersion, Stash, Tag, User
from promptstash.services.file_service import file_service


# ============================================================================
# Database
# ============================================================================

@pytest.fixture
def database_url(tmp_path):
    return f"sqlite:///{tmp_path / 'promptstash.db'}"


@pytest.fixture
def app_settings(database_url):
    return Settings(DATABASE_URL=database_url)


@pytest.fixture
def engine(database_url, app_settings):
    engine = build_engine(database_url, app_settings)
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def db(session_factory):
    """Session for tests that drive the services from a single thread."""
    session = session_factory()
    yield session
    session.close()


def _insert(session_factory, obj):
    with session_factory() as session:
        session.add(obj)
        session.flush()
        obj_id = obj.id
        session.commit()
    return obj_id


@pytest.fixture
def read_file(session_factory):
    """Fresh read of a file and its version rows, oldest first."""
    def _read(file_id):
        with session_factory(expire_on_commit=False) as session:
            file = session.query(File).filter(File.id == file_id).first()
            versions = (
                session.query(FileVersion)
                .filter(FileVersion.file_id == file_id)
                .order_by(FileVersion.version)
                .all()
            )
            session.expunge_all()
        return file, versions
    return _read


# ============================================================================
# Model instances
# ============================================================================

@pytest.fixture
def owner_id(session_factory):
    return _insert(session_factory, User(email="owner@test.com", full_name="Stash Owner"))


@pytest.fixture
def other_user_id(session_factory):
    return _insert(session_factory, User(email="other@test.com", full_name="Someone Else"))


@pytest.fixture
def stash_id(session_factory, owner_id):
    return _insert(session_factory, Stash(name="Prompts", user_id=owner_id))


@pytest.fixture
def tag_ids(session_factory):
    return (
        _insert(session_factory, Tag(name="draft", color="#999999")),
        _insert(session_factory, Tag(name="prod", color="#00aa00")),
    )


@pytest.fixture
def make_file(session_factory, stash_id, owner_id):
    """Create a file through the service, so it starts at version 1. Returns its id."""
    def _make(content="hello", name="system prompt", file_type=FileType.MARKDOWN):
        with session_factory() as session:
            file = file_service.create_file(
                session,
                stash_id=stash_id,
                name=name,
                content=content,
                file_type=file_type,
                created_by=owner_id,
            )
            return file.id
    return _make


# ============================================================================
# API clients
# ============================================================================

@pytest.fixture
def client(app_settings, engine):
    app = create_app(app_settings, engine=engine)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def auth_headers(owner_id):
    token = create_access_token({"sub": str(owner_id)})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def other_auth_headers(other_user_id):
    token = create_access_token({"sub": str(other_user_id)})
    return {"Authorization": f"Bearer {token}"}
