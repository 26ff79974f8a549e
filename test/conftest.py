"""
Pytest fixtures: in-memory order store, recording broker and a FastAPI test client wired to them.
"""
import pytest
from fastapi.testclient import TestClient

from _helper import InMemoryOrderStore, RecordingBroker, make_order
from app.main import app
from app.order_state import DriverStatus, OrderStatus, OrderType
from app.routes.orders import get_broker, get_order_store


@pytest.fixture
def store() -> InMemoryOrderStore:
    return InMemoryOrderStore(
        make_order("ord-active", status=OrderStatus.ACTIVE),
        make_order("ord-cancelled", status=OrderStatus.CANCELLED),
        make_order(
            "ord-catering",
            status=OrderStatus.ASSIGNED,
            driver_status=DriverStatus.ASSIGNED,
            driver_id="driver-1",
        ),
        make_order(
            "ord-on-demand",
            status=OrderStatus.ASSIGNED,
            driver_status=DriverStatus.ASSIGNED,
            driver_id="driver-2",
            order_type=OrderType.ON_DEMAND,
        ),
    )


@pytest.fixture
def broker() -> RecordingBroker:
    return RecordingBroker()


@pytest.fixture
def client(store, broker):
    """Test client without lifespan: no Postgres or Redis connections are opened."""
    app.dependency_overrides[get_order_store] = lambda: store
    app.dependency_overrides[get_broker] = lambda: broker
    yield TestClient(app)
    app.dependency_overrides.clear()
