import pytest

from app.schemas.workspace import WorkspaceSettings
from app.services.processing_lock import ProcessingLockManager
from fakes import KURTI, POLO, SAREE, TSHIRT, FakeCatalog, FakeClock, FakeMessenger, FakeUsageMeter, InMemoryStore


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def locks(clock):
    return ProcessingLockManager(clock=clock, default_ttl=10, sweep_interval=5, poll_interval=0.1)


@pytest.fixture
def products():
    return [POLO, SAREE, KURTI, TSHIRT]


@pytest.fixture
def catalog(products):
    return FakeCatalog(products)


@pytest.fixture
def workspace():
    return WorkspaceSettings(workspace_id="ws-1", business_name="Test Shop")


@pytest.fixture
def store(workspace):
    return InMemoryStore(workspace)


@pytest.fixture
def messenger():
    return FakeMessenger()


@pytest.fixture
def usage_meter():
    return FakeUsageMeter()
