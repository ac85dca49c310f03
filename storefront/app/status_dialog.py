"""
Order status dialog: follows one order until it is approved or rejected.

While open it polls the repository on its own short interval. Two ways to
close it:
- dismiss: hide only, the watched order and its banner stay;
- acknowledge: hide and forget the watched order (terminal orders only).
`close()` is the close icon and picks between them from the order status.
"""
import logging
import threading
from enum import Enum
from typing import Callable, Optional

from .models import Order
from .store import OrderStoreError

logger = logging.getLogger(__name__)

IN_PROGRESS_CAUTION = "Please do not exit this website while your order is being processed"

STATUS_TEXT = {
    "pending": "Processing",
    "processing": "Processing",
    "approved": "Succeeded",
    "rejected": "Rejected",
}


class DialogState(str, Enum):
    LOADING = "loading"
    PENDING = "pending"
    PROCESSING = "processing"
    APPROVED = "approved"
    REJECTED = "rejected"
    NOT_FOUND = "not_found"


class OrderStatusDialog:
    def __init__(
        self,
        repository,
        tracker,
        poll_interval: float = 3.0,
        on_change: Optional[Callable[[Order], None]] = None,
    ) -> None:
        self.repository = repository
        self.tracker = tracker
        self.poll_interval = poll_interval
        self.on_change = on_change

        self.is_open = False
        self.order_id: Optional[str] = None
        self.order: Optional[Order] = None
        self.loading = False
        self.not_found = False

        self._polling = False
        self._watch = 0
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # -------------------- view --------------------

    @property
    def state(self) -> DialogState:
        if self.not_found:
            return DialogState.NOT_FOUND
        if self.order is None:
            return DialogState.LOADING
        return DialogState(self.order.status)

    @property
    def polling(self) -> bool:
        return self.is_open and self._polling

    @property
    def status_text(self) -> Optional[str]:
        return STATUS_TEXT.get(self.order.status) if self.order else None

    @property
    def caution(self) -> Optional[str]:
        if self.order is not None and not self.order.is_terminal:
            return IN_PROGRESS_CAUTION
        return None

    @property
    def rejection_reason(self) -> Optional[str]:
        if self.order is not None and self.order.status == "rejected":
            return self.order.rejection_reason or self.order.rejection_message
        return None

    @property
    def approval_message(self) -> Optional[str]:
        if self.order is not None and self.order.status == "approved":
            return self.order.approval_message
        return None

    # -------------------- open / poll --------------------

    def open(self, order_id: str) -> None:
        with self._lock:
            self._watch += 1
            watch = self._watch
            self.is_open = True
            self.order_id = order_id
            shown = self.order is not None and self.order.id == order_id
            # A finished order seen earlier is shown again as-is.
            if shown and self.order.is_terminal:
                self._polling = False
                return
            # The order already on screen stays visible while it is re-read.
            if not shown:
                self.order = None
                self.not_found = False
                self.loading = True
            self._polling = True
        self._load(watch, order_id, initial=not shown)

    def poll(self) -> bool:
        """One poll tick. Returns True when the displayed order changed."""
        with self._lock:
            if not (self.is_open and self._polling and self.order_id):
                return False
            watch, order_id = self._watch, self.order_id
            initial = self.order is None
        return self._load(watch, order_id, initial=initial)

    def _load(self, watch: int, order_id: str, initial: bool) -> bool:
        try:
            record = self.repository.fetch_one(order_id)
        except OrderStoreError as e:
            # Keep showing what we have; the next tick retries.
            logger.warning("Polling order %s failed: %s", order_id, e)
            return False

        with self._lock:
            if watch != self._watch or not self.is_open:
                logger.debug("Discarding response for order %s from an old watch", order_id)
                return False

            if record is None:
                if initial or self.order is None:
                    self.loading = False
                    self.not_found = True
                    self._polling = False
                return False

            self.loading = False
            self.not_found = False
            changed = self._apply(record)
            if self.order.is_terminal:
                self._polling = False
            order = self.order

        if changed:
            logger.info(" [x] Order %s is %s", order.id, order.status)
            if self.on_change is not None:
                self.on_change(order)
        return changed

    def _apply(self, record: Order) -> bool:
        current = self.order
        if current is None:
            self.order = record
            return True
        if current.is_terminal and not record.is_terminal:
            return False
        if current.status == record.status and current.updated_at == record.updated_at:
            return False
        self.order = record
        return True

    # -------------------- close --------------------

    def close(self) -> None:
        """Close icon: acknowledges a finished order, otherwise just dismisses."""
        with self._lock:
            terminal = self.order is not None and self.order.is_terminal
        if terminal:
            self.acknowledge()
        else:
            self.dismiss()

    def dismiss(self) -> None:
        self._hide()

    def acknowledge(self) -> None:
        with self._lock:
            order = self.order
        if order is None or not order.is_terminal:
            self.dismiss()
            return
        self._hide()
        self.tracker.forget(order.id)

    def _hide(self) -> None:
        with self._lock:
            self.is_open = False
            self._watch += 1
            self._polling = False
            if self.order is None or not self.order.is_terminal:
                self.order = None
                self.loading = False
                self.not_found = False

    # -------------------- background polling --------------------

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="order-status", daemon=True)
        self._thread.start()

    def _run(self) -> None:
        while not self._stop_event.wait(self.poll_interval):
            self.poll()

    def stop(self, join: bool = True) -> None:
        self._stop_event.set()
        if join and self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=5)
        self._thread = None
