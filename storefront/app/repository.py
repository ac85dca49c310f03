"""
Order repository: the one place the storefront reads and writes orders.

Three things want fresh data (the initial load, a periodic timer and the
change feed); all of them end in `fetch_page(current_page)`. The time of the
last fetch is remembered so that a timer tick or a push landing right after
another fetch does not cause a second round trip.
"""
import logging
import math
import threading
import time
from typing import Callable, List, Optional

from pydantic import ValidationError

from .display import filter_orders
from .models import STATUS_TRANSITIONS, CreateOrderData, Order, can_transition
from .store import OrderStoreError

logger = logging.getLogger(__name__)


class OrderRepository:
    def __init__(
        self,
        store,
        page_size: int = 10,
        poll_interval: float = 30.0,
        refresh_guard: float = 2.0,
        push_delay: float = 0.5,
        admin: bool = False,
        clock: Callable[[], float] = time.monotonic,
        timer_factory=threading.Timer,
    ) -> None:
        self.store = store
        self.page_size = page_size
        self.poll_interval = poll_interval
        self.refresh_guard = refresh_guard
        self.push_delay = push_delay
        self.admin = admin
        self.clock = clock
        self.timer_factory = timer_factory

        self.orders: List[Order] = []
        self.total_count = 0
        self.current_page = 1
        self.loading = False
        self.error: Optional[str] = None

        self._lock = threading.Lock()
        self._generation = 0
        self._last_fetch_at: Optional[float] = None
        self._scheduled_refresh = None
        self._last_change_at: Optional[float] = None
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def page_count(self) -> int:
        return max(1, math.ceil(self.total_count / self.page_size))

    # -------------------- reads --------------------

    def fetch_page(self, page: Optional[int] = None, background: bool = False) -> bool:
        """
        Replaces the in-memory page with a fresh read, newest first.

        Explicit calls surface failures through `error`; background calls
        (timer, change feed) only log them and keep the last good page.
        """
        with self._lock:
            page = self.current_page if page is None else max(1, page)
            self._generation += 1
            generation = self._generation
            self.current_page = page
            self._last_fetch_at = self.clock()
            if not background:
                self.loading = True

        try:
            rows, count = self.store.select_page((page - 1) * self.page_size, self.page_size)
            orders = [Order.model_validate(row) for row in rows]
        except (OrderStoreError, ValidationError) as e:
            with self._lock:
                if generation == self._generation:
                    self.loading = False
                    if not background:
                        self.error = str(e)
            if background:
                logger.warning("Background refresh of page %d failed: %s", page, e)
            else:
                logger.error("Error fetching orders: %s", e)
            return False

        with self._lock:
            if generation != self._generation or self._stop_event.is_set():
                logger.debug("Discarding stale response for page %d", page)
                return False
            self.orders = orders
            self.total_count = count
            self.error = None
            self.loading = False
        return True

    def fetch_one(self, order_id: str) -> Optional[Order]:
        """
        Full record for one order, receipt included, or None if the store
        does not have it. Raises OrderStoreError when the store is unreachable
        or returns a record that cannot be read.
        """
        row = self.store.select_one(order_id)
        if row is None:
            return None
        try:
            return Order.model_validate(row)
        except ValidationError as e:
            raise OrderStoreError(f"Unreadable order {order_id}: {e}") from e

    def fetch_member_orders(self, member_id: str, limit: int = 50) -> List[Order]:
        """Order history of a signed-in customer, newest first."""
        rows, _ = self.store.select_page(0, limit, member_id=member_id)
        try:
            return [Order.model_validate(row) for row in rows]
        except ValidationError as e:
            raise OrderStoreError(f"Unreadable orders for member {member_id}: {e}") from e

    def filter_orders(self, query: str) -> List[Order]:
        with self._lock:
            orders = list(self.orders)
        return filter_orders(orders, query)

    # -------------------- writes --------------------

    def create(self, order_data: CreateOrderData) -> Optional[Order]:
        payload = order_data.to_wire()
        payload["status"] = "pending"
        try:
            order = Order.model_validate(self.store.insert(payload))
        except (OrderStoreError, ValidationError) as e:
            self.error = str(e)
            logger.error("Error creating order: %s", e)
            return None

        logger.info(" [x] Order %s created, total %.2f", order.id, order.total_price)
        # Customers cannot list orders; only the operator view keeps a page.
        if self.admin:
            self.fetch_page(background=True)
        return order

    def update_status(self, order_id: str, status: str, message: Optional[str] = None) -> bool:
        """
        Moves an order to `status`. `message` becomes the rejection reason
        when rejecting and the approval message when approving.
        """
        if status not in STATUS_TRANSITIONS:
            self.error = f"Unknown status: {status}"
            return False

        cached = self._cached(order_id)
        if cached is not None and not can_transition(cached.status, status):
            self.error = f"Cannot move order from {cached.status} to {status}"
            logger.warning("Refusing status change for %s: %s", order_id, self.error)
            return False

        fields = {"status": status}
        if status == "rejected":
            if message:
                fields["rejection_reason"] = message
        else:
            fields["rejection_reason"] = None
            fields["rejection_message"] = None
        if status == "approved" and message:
            fields["approval_message"] = message

        try:
            self.store.update(order_id, fields)
        except OrderStoreError as e:
            self.error = str(e)
            logger.error("Error updating order %s: %s", order_id, e)
            return False

        logger.info(" [x] Order %s updated to %s", order_id, status)
        self.error = None
        self.fetch_page()
        return True

    def _cached(self, order_id: str) -> Optional[Order]:
        with self._lock:
            for order in self.orders:
                if order.id == order_id:
                    return order
        return None

    # -------------------- refresh triggers --------------------

    def on_timer(self) -> bool:
        """Periodic refresh; skipped when another fetch just happened."""
        with self._lock:
            last = self._last_fetch_at
            recent = last is not None and self.clock() - last < self.refresh_guard
        if recent:
            logger.debug("Skipping timer refresh, last fetch %.2fs ago", self.clock() - last)
            return False
        return self.fetch_page(background=True)

    def on_change(self, routing_key: Optional[str] = None, event: Optional[dict] = None) -> None:
        """
        Change-feed callback. The payload is not trusted beyond "something
        changed": the current page is re-read after a short delay, pushed
        back to the end of the guard window if a fetch just happened.
        Pushes arriving while a refresh is scheduled are folded into it.
        """
        with self._lock:
            if self._stop_event.is_set():
                return
            self._last_change_at = self.clock()
            if self._scheduled_refresh is not None:
                return
            delay = self.push_delay
            if self._last_fetch_at is not None:
                delay = max(delay, self.refresh_guard - (self.clock() - self._last_fetch_at))
            timer = self.timer_factory(delay, self._push_refresh)
            timer.daemon = True
            self._scheduled_refresh = timer
        logger.debug("Order change %s, refreshing page in %.2fs", routing_key, delay)
        timer.start()

    def _push_refresh(self) -> bool:
        with self._lock:
            self._scheduled_refresh = None
            last, changed = self._last_fetch_at, self._last_change_at
        # A fetch issued after the latest change already picked it up.
        if last is not None and changed is not None and last >= changed:
            logger.debug("Skipping push refresh, page fetched since the last change")
            return False
        return self.fetch_page(background=True)

    # -------------------- lifecycle --------------------

    def start(self) -> None:
        """Loads the current page and keeps it fresh on a timer."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="order-refresh", daemon=True)
        self._thread.start()

    def _run(self) -> None:
        self.fetch_page()
        while not self._stop_event.wait(self.poll_interval):
            self.on_timer()

    def stop(self, join: bool = True) -> None:
        self._stop_event.set()
        with self._lock:
            timer, self._scheduled_refresh = self._scheduled_refresh, None
        if timer is not None:
            timer.cancel()
        if join and self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=5)
        self._thread = None
