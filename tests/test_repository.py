import pytest

from storefront.app.models import CreateOrderData, OrderItem
from storefront.app.repository import OrderRepository
from storefront.app.store import OrderStoreError


@pytest.fixture
def repo(fake_store, clock, timers):
    return OrderRepository(fake_store, page_size=2, clock=clock, timer_factory=timers)


def order_data(**overrides):
    data = {
        "order_items": [OrderItem(id="mlbb:::CART:::1", name="Mobile Legends", total_price=25)],
        "customer_info": {"IGN": "Slayer"},
        "payment_method_id": "gcash",
        "receipt_url": "http://store/receipts/r.png",
        "total_price": 25,
    }
    data.update(overrides)
    return CreateOrderData(**data)


def test_fetch_page_newest_first(repo, fake_store):
    ids = [fake_store.add()["id"] for _ in range(3)]

    assert repo.fetch_page() is True
    assert [o.id for o in repo.orders] == [ids[2], ids[1]]
    assert repo.total_count == 3
    assert repo.page_count == 2
    assert repo.loading is False

    repo.fetch_page(2)
    assert [o.id for o in repo.orders] == [ids[0]]
    assert repo.current_page == 2
    assert fake_store.calls[-1] == ("select_page", 2, 2, None)


def test_explicit_fetch_failure_sets_error(repo, fake_store):
    fake_store.fail_with = "store down"
    assert repo.fetch_page() is False
    assert repo.error == "store down"
    assert repo.loading is False


def test_background_failure_keeps_last_page(repo, fake_store):
    fake_store.add()
    repo.fetch_page()
    fake_store.fail_with = "store down"

    assert repo.fetch_page(background=True) is False
    assert repo.error is None
    assert len(repo.orders) == 1


def test_timer_skipped_inside_guard_window(repo, fake_store, clock):
    repo.fetch_page()
    clock.advance(1.5)
    assert repo.on_timer() is False
    assert fake_store.count_calls("select_page") == 1

    clock.advance(1)
    assert repo.on_timer() is True
    assert fake_store.count_calls("select_page") == 2


def test_push_after_fetch_waits_for_guard_window(repo, fake_store, clock, timers):
    repo.fetch_page()
    clock.advance(1)

    repo.on_change("order.updated", {"order_id": "x"})
    repo.on_change("order.created", {"order_id": "y"})

    assert len(timers.created) == 1
    timer = timers.created[0]
    assert timer.started and timer.daemon
    assert timer.delay == pytest.approx(1.0)
    assert fake_store.count_calls("select_page") == 1

    clock.advance(timer.delay)
    timer.fire()
    assert fake_store.count_calls("select_page") == 2

    # The next push schedules a fresh refresh.
    repo.on_change("order.updated", {})
    assert len(timers.created) == 2


def test_push_without_recent_fetch_uses_short_delay(repo, timers):
    repo.on_change("order.created", {})
    assert timers.created[0].delay == pytest.approx(0.5)


def test_stale_response_is_discarded(repo, fake_store):
    fake_store.add()
    select_page = fake_store.select_page
    state = {"nested": False}

    def racing_select_page(offset, limit, member_id=None):
        result = select_page(offset, limit, member_id)
        if not state["nested"]:
            state["nested"] = True
            fake_store.add()
            repo.fetch_page(background=True)
        return result

    fake_store.select_page = racing_select_page

    assert repo.fetch_page() is False
    assert repo.total_count == 2
    assert len(repo.orders) == 2
    assert repo.loading is False


def test_results_after_stop_are_discarded(repo, fake_store, timers):
    fake_store.add()
    repo.on_change("order.created", {})
    repo.stop()

    assert timers.created[0].cancelled
    assert repo.fetch_page() is False
    assert repo.orders == []

    repo.on_change("order.created", {})
    assert len(timers.created) == 1


def test_fetch_one_and_member_orders(repo, fake_store):
    mine = fake_store.add(member_id="m1")
    fake_store.add(member_id="m2")

    assert repo.fetch_one(mine["id"]).id == mine["id"]
    assert repo.fetch_one("missing") is None
    assert [o.id for o in repo.fetch_member_orders("m1")] == [mine["id"]]


def test_filter_orders_searches_current_page(repo, fake_store):
    fake_store.add(customer_info={"User ID": "alpha", "Payment Method": "GCash"})
    fake_store.add(customer_info={"User ID": "beta", "Payment Method": "GCash"})
    repo.fetch_page()

    assert [o.customer_info["User ID"] for o in repo.filter_orders("ALP")] == ["alpha"]
    assert repo.filter_orders("gcash") == []


def test_create_always_sends_pending(repo, fake_store):
    order = repo.create(order_data())

    assert order.status == "pending"
    assert order.total_price == 25
    _, payload = fake_store.calls[0]
    assert payload["status"] == "pending"
    assert payload["order_items"][0]["totalPrice"] == 25
    assert fake_store.count_calls("select_page") == 0


def test_create_in_admin_mode_refreshes_page(fake_store, clock, timers):
    repo = OrderRepository(fake_store, admin=True, clock=clock, timer_factory=timers)
    order = repo.create(order_data())
    assert [o.id for o in repo.orders] == [order.id]


def test_create_failure_returns_none(repo, fake_store):
    fake_store.fail_with = "insert failed"
    assert repo.create(order_data()) is None
    assert repo.error == "insert failed"


def test_update_status_reject_and_approve(repo, fake_store):
    rejected = fake_store.add()
    approved = fake_store.add(status="processing")

    assert repo.update_status(rejected["id"], "rejected", "Invalid receipt") is True
    _, order_id, fields = fake_store.calls[0]
    assert order_id == rejected["id"]
    assert fields == {"status": "rejected", "rejection_reason": "Invalid receipt"}

    assert repo.update_status(approved["id"], "approved", "Enjoy!") is True
    update_calls = [c for c in fake_store.calls if c[0] == "update"]
    assert update_calls[1][2] == {
        "status": "approved",
        "rejection_reason": None,
        "rejection_message": None,
        "approval_message": "Enjoy!",
    }
    # Each successful change re-reads the current page.
    assert {o.status for o in repo.orders} == {"rejected", "approved"}


def test_update_status_refuses_illegal_moves(repo, fake_store):
    order = fake_store.add(status="approved")
    repo.fetch_page()

    assert repo.update_status(order["id"], "rejected") is False
    assert "approved" in repo.error
    assert repo.update_status(order["id"], "cancelled") is False
    assert fake_store.count_calls("update") == 0


def test_update_status_store_failure(repo, fake_store):
    order = fake_store.add()
    fake_store.fail_with = "conflict"
    assert repo.update_status(order["id"], "approved") is False
    assert repo.error == "conflict"


def test_fetch_one_is_stable_without_writes(repo, fake_store):
    order = fake_store.add()
    first = repo.fetch_one(order["id"])
    second = repo.fetch_one(order["id"])
    assert first == second
    assert first.updated_at == second.updated_at


def test_timer_fetch_after_push_absorbs_scheduled_refresh(repo, fake_store, clock, timers):
    repo.fetch_page()
    clock.advance(60)

    repo.on_change("order.updated", {})
    clock.advance(0.2)
    assert repo.on_timer() is True

    clock.advance(0.3)
    timers.created[0].fire()
    assert fake_store.count_calls("select_page") == 2


def test_push_after_timer_fetch_is_not_lost(repo, fake_store, clock, timers):
    repo.fetch_page()
    clock.advance(60)

    repo.on_change("order.updated", {})
    clock.advance(0.2)
    repo.on_timer()
    clock.advance(0.1)
    repo.on_change("order.created", {})
    assert len(timers.created) == 1

    clock.advance(0.2)
    timers.created[0].fire()
    assert fake_store.count_calls("select_page") == 3


def test_unreadable_order_is_a_store_error(repo, fake_store):
    order = fake_store.add(member_id="m1", order_items=[{"sku": "legacy"}])

    with pytest.raises(OrderStoreError):
        repo.fetch_one(order["id"])
    with pytest.raises(OrderStoreError):
        repo.fetch_member_orders("m1")
