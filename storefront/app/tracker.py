import logging
from dataclasses import dataclass
from typing import Optional

from .models import Order
from .storage import WATCHED_ORDER_KEY, LocalStorage
from .store import OrderStoreError

logger = logging.getLogger(__name__)


@dataclass
class WatchResolution:
    """What the storefront should show for the remembered order on start-up."""

    order_id: Optional[str] = None
    order: Optional[Order] = None
    show_banner: bool = False
    auto_open: bool = False

    @property
    def watching(self) -> bool:
        return self.order_id is not None


class PendingOrderTracker:
    """
    Remembers the single order this client is watching, across restarts.

    Only one order is watched at a time: remembering a new one replaces the
    previous id.
    """

    def __init__(self, storage: LocalStorage, repository) -> None:
        self.storage = storage
        self.repository = repository

    @property
    def watched_order_id(self) -> Optional[str]:
        return self.storage.get(WATCHED_ORDER_KEY)

    def remember(self, order_id: str) -> None:
        previous = self.watched_order_id
        if previous and previous != order_id:
            logger.info("Watching order %s instead of %s", order_id, previous)
        self.storage.set(WATCHED_ORDER_KEY, order_id)

    def forget(self, order_id: Optional[str] = None) -> None:
        """Clears the watched id; with `order_id`, only if that order is the one watched."""
        if order_id is not None and self.watched_order_id != order_id:
            return
        self.storage.remove(WATCHED_ORDER_KEY)

    def resolve_on_load(self) -> WatchResolution:
        order_id = self.watched_order_id
        if not order_id:
            return WatchResolution()

        try:
            order = self.repository.fetch_one(order_id)
        except OrderStoreError as e:
            # Keep the id; the next start gets another chance.
            logger.warning("Could not check watched order %s: %s", order_id, e)
            return WatchResolution()

        if order is None:
            logger.info("Watched order %s no longer exists", order_id)
            self.forget()
            return WatchResolution()

        return WatchResolution(
            order_id=order_id,
            order=order,
            show_banner=True,
            auto_open=not order.is_terminal,
        )
