import os
import pytest

# Set test environment variables before importing app modules
# These are test values only, not real secrets
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("REDIS_URL", "")
os.environ.setdefault("ADMIN_API_KEYS", "test-admin-key-1234,second-key-abcd")
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("REGISTRY_ARCHIVE_URL", "https://archive.test/registry.zip")
os.environ.setdefault("REGISTRY_RAW_BASE_URL", "https://raw.test/registry")

from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel


class FakeCache:
    """In-memory CacheBackend; flags make individual operations fail."""

    def __init__(self):
        self.store: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.puts = 0
        self.deletes = 0
        self.fail_get = False
        self.fail_put = False
        self.fail_delete = False

    async def get(self, key):
        if self.fail_get:
            raise ConnectionError("cache unavailable")
        return self.store.get(key)

    async def put(self, key, value, ttl_seconds):
        if self.fail_put:
            raise ConnectionError("cache unavailable")
        self.puts += 1
        self.store[key] = value
        self.ttls[key] = ttl_seconds

    async def delete(self, key):
        if self.fail_delete:
            raise ConnectionError("cache unavailable")
        self.deletes += 1
        self.store.pop(key, None)


@pytest.fixture
def fake_cache():
    return FakeCache()


@pytest.fixture
async def engine():
    """Fresh in-memory SQLite database per test."""
    import models  # noqa: F401

    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    from src.core.db import create_session_factory
    return create_session_factory(engine)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


def _item(title, owner=None, repo=None, stars=0, language=None,
          archived=False, last_commit="2024-01-01T00:00:00Z", description=None, children=None):
    item = {"title": title, "description": description or f"{title} description", "children": children or []}
    if owner and repo:
        item["repo_info"] = {
            "owner": owner,
            "repo": repo,
            "stars": stars,
            "language": language,
            "last_commit": last_commit,
            "archived": archived,
        }
    return item


@pytest.fixture
def make_item():
    """Factory for raw registry item dicts."""
    return _item


@pytest.fixture
def make_document():
    """Factory: (title, {section title: [item dicts]}) -> RegistryDocument."""
    from src.services.registry_fetcher import RegistryDocument

    def _make(title, sections, source_repository=None, last_updated="2024-06-01T00:00:00Z"):
        return RegistryDocument.model_validate({
            "metadata": {
                "title": title,
                "source_repository": source_repository or f"awesome/{title.lower()}",
                "source_repository_description": f"A curated list for {title}",
                "last_updated": last_updated,
            },
            "items": [
                {"title": section_title, "description": "", "items": items}
                for section_title, items in sections.items()
            ],
        })

    return _make


@pytest.fixture
def go_document(make_document):
    return make_document("Awesome Go", {
        "Web Frameworks": [
            _item("Gin", "gin-gonic", "gin", 50000, "Go"),
            _item("Echo", "labstack", "echo", 8000, "Go"),
        ],
        "Testing": [
            _item("Testify", "stretchr", "testify", 2000, "Go"),
        ],
    })


@pytest.fixture
def python_document(make_document):
    return make_document("Awesome Python", {
        "Web Frameworks": [
            _item("Django", "django", "django", 20000, "Python"),
            _item("Flask", "pallets", "flask", 10000, "Python", archived=True),
        ],
    })


@pytest.fixture
async def seeded_db(db, go_document, python_document):
    """go: Gin, Echo, Testify; python: Django, Flask (archived)."""
    from src.services.registry_normalizer import index_registry

    await index_registry(db, "go", go_document)
    await index_registry(db, "python", python_document)
    return db


@pytest.fixture
async def api_client(session_factory, seeded_db, fake_cache):
    """httpx client against the app with the test database and cache wired in."""
    import httpx
    from src.api.dependencies import get_db
    from src.main import app

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.state.cache = fake_cache

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
    app.state.cache = None


@pytest.fixture
def admin_headers():
    return {"X-Admin-API-Key": "test-admin-key-1234"}
