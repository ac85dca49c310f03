"""
Storefront: wires the order pieces into one flow.

    placement -> repository.create -> tracker.remember -> dialog.open
    -> (dialog polling | change feed) -> terminal status -> tracker.forget
"""
import logging
from typing import List, Optional

from pydantic import ValidationError

from . import config
from .consumers import OrderChangeConsumer
from .models import Order, PaymentMethod, Product, Viewer
from .placement import OrderPlacementFlow
from .repository import OrderRepository
from .status_dialog import OrderStatusDialog
from .storage import AppState, LocalStorage, load_app_state, save_app_state
from .store import OrderStoreClient, OrderStoreError
from .tracker import PendingOrderTracker, WatchResolution

logger = logging.getLogger(__name__)


class Storefront:
    def __init__(
        self,
        store,
        storage: LocalStorage,
        viewer: Optional[Viewer] = None,
        admin: bool = False,
        repository: Optional[OrderRepository] = None,
        status_poll_interval: float = 3.0,
        consumer_factory=None,
    ) -> None:
        self.store = store
        self.storage = storage
        self.viewer = viewer or Viewer()
        self.admin = admin
        self.repository = repository or OrderRepository(store, admin=admin)
        self.tracker = PendingOrderTracker(storage, self.repository)
        self.dialog = OrderStatusDialog(self.repository, self.tracker, poll_interval=status_poll_interval)
        self.consumer = consumer_factory(self._on_order_change) if consumer_factory else None

        self.banner = WatchResolution()
        self.app_state = load_app_state(storage)
        self._payment_methods: Optional[List[PaymentMethod]] = None

    # -------------------- start / stop --------------------

    def start(self) -> WatchResolution:
        """Restores the watched order and starts the background refreshers."""
        self.banner = self.tracker.resolve_on_load()
        if self.banner.auto_open:
            self.dialog.open(self.banner.order_id)
        self.dialog.start()
        if self.admin:
            self.repository.start()
        if self.consumer is not None:
            self.consumer.start()
        return self.banner

    def stop(self) -> None:
        if self.consumer is not None:
            self.consumer.stop()
        self.dialog.stop()
        self.repository.stop()

    def _on_order_change(self, routing_key: str, event: dict) -> None:
        if self.admin:
            self.repository.on_change(routing_key, event)
        if event.get("order_id") and event.get("order_id") == self.dialog.order_id:
            self.dialog.poll()

    # -------------------- ordering --------------------

    def payment_methods(self) -> List[PaymentMethod]:
        if self._payment_methods is None:
            try:
                rows = self.store.list_payment_methods()
                methods = [PaymentMethod.model_validate(r) for r in rows]
            except (OrderStoreError, ValidationError) as e:
                logger.error("Error loading payment methods: %s", e)
                return []
            self._payment_methods = methods
        return self._payment_methods

    def new_order(self, product: Product, multi_account: bool = False) -> OrderPlacementFlow:
        return OrderPlacementFlow(
            product,
            viewer=self.viewer,
            payment_methods=self.payment_methods(),
            uploader=self.store.upload_receipt,
            multi_account=multi_account,
        )

    def place_order(self, flow: OrderPlacementFlow) -> Order:
        """Submits the flow, then watches the new order and shows its status."""
        order = flow.submit(self.repository)
        self.tracker.remember(order.id)
        self.banner = WatchResolution(order_id=order.id, order=order, show_banner=True, auto_open=True)
        self.dialog.open(order.id)
        return order

    # -------------------- banner / dialog --------------------

    def open_banner(self) -> None:
        """Banner tap: shows the watched order's status."""
        if self.banner.watching:
            self.dialog.open(self.banner.order_id)

    def close_dialog(self) -> None:
        self.dialog.close()
        if self.tracker.watched_order_id is None:
            self.banner = WatchResolution()

    # -------------------- view state --------------------

    def update_app_state(self, state: AppState) -> None:
        self.app_state = state
        save_app_state(self.storage, state)


def build_storefront(viewer: Optional[Viewer] = None, admin: Optional[bool] = None) -> Storefront:
    """Creates a storefront from environment configuration."""
    admin = config.ADMIN_MODE if admin is None else admin
    store = OrderStoreClient(config.ORDER_STORE_URL, timeout=config.ORDER_STORE_TIMEOUT)
    repository = OrderRepository(
        store,
        page_size=config.ORDER_PAGE_SIZE,
        poll_interval=config.ORDER_POLL_INTERVAL,
        refresh_guard=config.ORDER_REFRESH_GUARD,
        push_delay=config.ORDER_PUSH_DELAY,
        admin=admin,
    )

    def consumer_factory(on_change):
        return OrderChangeConsumer(
            on_change,
            host=config.RABBITMQ_HOST,
            reconnect_delay=config.CHANGE_FEED_RECONNECT_DELAY,
        )

    return Storefront(
        store,
        LocalStorage(config.STORAGE_PATH),
        viewer=viewer,
        admin=admin,
        repository=repository,
        status_poll_interval=config.STATUS_POLL_INTERVAL,
        consumer_factory=consumer_factory,
    )
