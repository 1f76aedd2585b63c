import uuid

import pytest
from fastapi.testclient import TestClient

from config import Settings
from database import MemoryStore, MongoStore
from main import create_app
from records import RecordService


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture(params=["memory", "mongodb"])
def any_store(request):
    if request.param == "memory":
        return MemoryStore()
    mongomock = pytest.importorskip("mongomock")
    return MongoStore(mongomock.MongoClient()[f"school_records_{uuid.uuid4().hex}"])


@pytest.fixture
def service(store):
    return RecordService(store)


@pytest.fixture
def settings():
    return Settings(seed_sample_data=False, jwt_secret="test-secret")


@pytest.fixture
def app(store, settings):
    return create_app(store=store, settings=settings)


@pytest.fixture
def client(app):
    return TestClient(app)
