"""
Global pytest configuration and fixtures for RakshaSetu testing.
"""
import asyncio
import sys
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

# Add src to Python path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from core.database import DatabaseManager, SQLiteDocumentStore
from core.interfaces import (
    AlertPresenter, BatteryProvider, CallbackSubscription, DocumentStore,
    HapticFeedback, LocationProvider, SmsGateway, Subscription
)
from models.sos import CloseFriendContact, Coordinate


TEST_COORDINATE = Coordinate(12.9, 77.6)


class FakeLocationProvider(LocationProvider):
    """Location provider driven by the test: emit() pushes a watch update"""

    def __init__(self, coordinate: Coordinate = TEST_COORDINATE, permission_granted: bool = True):
        self.coordinate = coordinate
        self.permission_granted = permission_granted
        self.fail_current = False
        self.fail_watch = False
        self.permission_requests = 0
        self.permission_delay = 0.0
        self.watches: List[Dict[str, Any]] = []

    async def request_permission(self) -> bool:
        self.permission_requests += 1
        if self.permission_delay:
            await asyncio.sleep(self.permission_delay)
        return self.permission_granted

    async def current_position(self) -> Coordinate:
        if self.fail_current:
            raise RuntimeError("GPS unavailable")
        return self.coordinate

    async def watch_position(self, callback, time_interval, distance_interval) -> Subscription:
        if self.fail_watch:
            raise RuntimeError("watch refused")

        watch = {'callback': callback, 'interval': time_interval, 'distance': distance_interval, 'active': True}

        def _remove():
            watch['active'] = False

        self.watches.append(watch)
        return CallbackSubscription(_remove)

    @property
    def active_watches(self) -> int:
        return sum(1 for w in self.watches if w['active'])

    async def emit(self, coordinate: Coordinate):
        self.coordinate = coordinate
        for watch in list(self.watches):
            if watch['active']:
                await watch['callback'](coordinate)


class FakeBattery(BatteryProvider):
    def __init__(self, level: Optional[float] = None, error: Optional[Exception] = None, delay: float = 0):
        self.level = level
        self.error = error
        self.delay = delay

    async def get_battery_level(self) -> Optional[float]:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.level


class RecordingHaptics(HapticFeedback):
    def __init__(self):
        self.pulses: List[int] = []

    def vibrate(self, duration_ms: int) -> None:
        self.pulses.append(duration_ms)


class RecordingAlerts(AlertPresenter):
    def __init__(self):
        self.alerts: List[tuple] = []

    def show_alert(self, title: str, message: str) -> None:
        self.alerts.append((title, message))

    @property
    def titles(self) -> List[str]:
        return [title for title, _ in self.alerts]


class FakeSms(SmsGateway):
    def __init__(self, available: bool = True, error: Optional[Exception] = None):
        self.available = available
        self.error = error
        self.sent: List[tuple] = []

    async def is_available(self) -> bool:
        return self.available

    async def send(self, phone_numbers: List[str], body: str) -> None:
        if self.error:
            raise self.error
        self.sent.append((list(phone_numbers), body))


class FailingStore(DocumentStore):
    """Wraps a real store and fails the named operations, optionally per collection"""

    def __init__(self, inner: DocumentStore):
        self.inner = inner
        self.failures: Dict[str, Optional[str]] = {}
        self.fail_thread_ids: set = set()

    def fail(self, operation: str, collection: Optional[str] = None):
        self.failures[operation] = collection

    def _check(self, operation: str, collection: str, doc_id: Optional[str] = None):
        if operation in self.failures:
            target = self.failures[operation]
            if target is None or collection.startswith(target):
                raise RuntimeError(f"{operation} failed on {collection}")
        if self.fail_thread_ids:
            for thread_id in self.fail_thread_ids:
                if collection == f"threads/{thread_id}/messages" or (collection == "threads" and doc_id == thread_id):
                    raise RuntimeError(f"write to thread {thread_id} failed")

    async def set(self, collection, doc_id, data):
        self._check('set', collection, doc_id)
        await self.inner.set(collection, doc_id, data)

    async def add(self, collection, data):
        self._check('add', collection)
        return await self.inner.add(collection, data)

    async def get(self, collection, doc_id):
        self._check('get', collection, doc_id)
        return await self.inner.get(collection, doc_id)

    async def update(self, collection, doc_id, fields):
        self._check('update', collection, doc_id)
        await self.inner.update(collection, doc_id, fields)

    async def delete(self, collection, doc_id):
        self._check('delete', collection, doc_id)
        await self.inner.delete(collection, doc_id)

    async def query(self, collection, field, op, value):
        self._check('query', collection)
        return await self.inner.query(collection, field, op, value)

    def subscribe(self, collection, doc_id, callback):
        return self.inner.subscribe(collection, doc_id, callback)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def db_manager(temp_dir):
    """Create a test SQLite database."""
    manager = DatabaseManager(str(temp_dir / "test.db"))
    yield manager
    manager.close()


@pytest.fixture
def store(db_manager):
    return SQLiteDocumentStore(db_manager)


@pytest.fixture
def location():
    return FakeLocationProvider()


@pytest.fixture
def battery():
    return FakeBattery()


@pytest.fixture
def haptics():
    return RecordingHaptics()


@pytest.fixture
def alerts():
    return RecordingAlerts()


@pytest.fixture
def sms():
    return FakeSms()


@pytest.fixture
def close_friends():
    return [
        CloseFriendContact(id="a", name="Asha", phone="+919800000001"),
        CloseFriendContact(id="b", name="Ravi", phone="+919800000002"),
    ]


@pytest.fixture
def failing_store(store):
    return FailingStore(store)


@pytest.fixture
def make_sos_service(store, location, battery, haptics, alerts, sms):
    """Build an SosService over the shared fakes; keyword overrides win"""
    from models.sos import SosContext
    from services.sos import ContactBook, LiveLocationManager, NotificationDispatcher, SosService

    def _make(**overrides):
        doc_store = overrides.pop('store', store)
        location_provider = overrides.pop('location', location)
        user_id = overrides.pop('user_id', 'user-1')
        context = overrides.pop('context', SosContext(user_id=user_id))

        options = {
            'context': context,
            'location': location_provider,
            'battery': battery,
            'haptics': haptics,
            'alerts': alerts,
            'store': doc_store,
            'live_location': LiveLocationManager(doc_store, location_provider, user_id=context.user_id),
            'dispatcher': NotificationDispatcher(overrides.pop('sms', sms), doc_store, context.user_id),
            'contacts': ContactBook(doc_store, context.user_id),
            'countdown_seconds': 10,
            'tick_interval': 0.01,
            'share_duration_seconds': 3600,
            'battery_timeout': 0.2,
        }
        options.update(overrides)
        return SosService(**options)

    return _make
