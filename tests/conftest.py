import copy
import itertools
import os
import uuid
from datetime import datetime, timedelta, timezone

import pytest

# The order store reads its configuration at import time.
os.environ.setdefault("DATABASE_URL", "sqlite://")

from fastapi.testclient import TestClient  # noqa: E402

from order_service.app import main as order_main  # noqa: E402
from order_service.app.database import Base, engine  # noqa: E402
from storefront.app.store import OrderStoreError  # noqa: E402


class RecordingProducer:
    """Stands in for RabbitMQProducer and keeps every published event."""

    def __init__(self):
        self.events = []

    def publish(self, routing_key, message):
        self.events.append((routing_key, message))
        return True

    @property
    def routing_keys(self):
        return [key for key, _ in self.events]


@pytest.fixture
def producer():
    return RecordingProducer()


@pytest.fixture
def client(producer, tmp_path, monkeypatch):
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    monkeypatch.setattr(order_main, "RECEIPTS_DIR", tmp_path / "receipts")
    order_main.app.dependency_overrides[order_main.get_producer] = lambda: producer
    with TestClient(order_main.app) as test_client:
        yield test_client
    order_main.app.dependency_overrides.clear()


class FakeOrderStore:
    """In-memory version of the remote order store contract."""

    def __init__(self):
        self.rows = {}
        self.calls = []
        self.fail_with = None
        self.payment_methods = []
        self._seq = itertools.count(1)
        self._epoch = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def _record(self, *call):
        self.calls.append(call)
        if self.fail_with is not None:
            raise OrderStoreError(self.fail_with)

    def _stamp(self, n):
        return (self._epoch + timedelta(seconds=n)).isoformat()

    def add(self, status="pending", **fields):
        n = next(self._seq)
        row = {
            "id": fields.pop("id", str(uuid.uuid4())),
            "invoice_number": f"INV-{n:06d}",
            "status": status,
            "order_items": [],
            "customer_info": {},
            "payment_method_id": None,
            "receipt_url": "http://store/receipts/r.png",
            "total_price": 0,
            "rejection_reason": None,
            "rejection_message": None,
            "approval_message": None,
            "member_id": None,
            "created_at": self._stamp(n),
            "updated_at": self._stamp(n),
            "_seq": n,
        }
        row.update(fields)
        self.rows[row["id"]] = row
        return self._public(row)

    def _public(self, row):
        return {k: copy.deepcopy(v) for k, v in row.items() if not k.startswith("_")}

    def set_status(self, order_id, status, **fields):
        """Operator-side change made behind the client's back."""
        row = self.rows[order_id]
        row.update(fields, status=status, updated_at=self._stamp(next(self._seq)))

    def count_calls(self, name):
        return sum(1 for call in self.calls if call[0] == name)

    # --- contract ---

    def insert(self, order):
        self._record("insert", order)
        return self.add(**dict(order, status="pending"))

    def select_one(self, order_id):
        self._record("select_one", order_id)
        row = self.rows.get(order_id)
        return None if row is None else self._public(row)

    def select_page(self, offset, limit, member_id=None):
        self._record("select_page", offset, limit, member_id)
        rows = [r for r in self.rows.values() if member_id is None or r["member_id"] == member_id]
        rows.sort(key=lambda r: r["_seq"], reverse=True)
        return [self._public(r) for r in rows[offset:offset + limit]], len(rows)

    def update(self, order_id, fields):
        self._record("update", order_id, fields)
        row = self.rows[order_id]
        row.update(fields, updated_at=self._stamp(next(self._seq)))
        return self._public(row)

    def upload_receipt(self, content, filename, content_type="image/jpeg"):
        self._record("upload_receipt", filename)
        return f"http://store/receipts/{filename}"

    def list_payment_methods(self):
        self._record("list_payment_methods")
        return list(self.payment_methods)


@pytest.fixture
def fake_store():
    return FakeOrderStore()


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeTimer:
    """threading.Timer look-alike that only fires when told to."""

    def __init__(self, delay, function):
        self.delay = delay
        self.function = function
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if not self.cancelled:
            self.function()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def timers():
    created = []

    def factory(delay, function):
        timer = FakeTimer(delay, function)
        created.append(timer)
        return timer

    factory.created = created
    return factory
