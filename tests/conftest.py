import os

# Must be set before the package creates its engine
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from orders_delivery import models
from orders_delivery.database import build_engine
from orders_delivery.main import app, get_store
from orders_delivery.store import MemoryOrderStore, SqlOrderStore


@pytest.fixture
def memory_store():
    return MemoryOrderStore()


@pytest.fixture
def sql_store():
    engine = build_engine("sqlite://")
    models.Base.metadata.create_all(bind=engine)
    store = SqlOrderStore(sessionmaker(autocommit=False, autoflush=False, bind=engine))
    yield store
    engine.dispose()


@pytest.fixture(params=["memory", "sql"])
def store(request):
    """Run the test against both store implementations."""
    return request.getfixturevalue(f"{request.param}_store")


@pytest.fixture
def client(memory_store):
    app.dependency_overrides[get_store] = lambda: memory_store
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def order_request():
    return {
        "localId": "L1",
        "localName": "Tacos Don Pepe",
        "zoneId": "Z1",
        "zoneName": "Centro",
        "location": {"lat": 19.4, "lng": -99.1},
        "items": [{"productId": "p1", "quantity": 2, "unitPrice": 50}],
    }
