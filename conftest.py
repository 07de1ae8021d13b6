import pytest

from ledger.config import EconomyConfig
from ledger.notify import RecordingNotifier
from ledger.service import LedgerService
from ledger.storage import InMemoryStorage, SQLiteStorage


@pytest.fixture(params=["memory", "sqlite"])
def storage(request, tmp_path):
    if request.param == "memory":
        yield InMemoryStorage()
    else:
        store = SQLiteStorage(str(tmp_path / "ledger.db"))
        yield store
        store.close()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def service(storage, notifier):
    return LedgerService(storage=storage, config=EconomyConfig(), notifier=notifier)
