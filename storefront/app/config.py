import os
from pathlib import Path

# Where the order store (order_service) is reachable.
ORDER_STORE_URL = os.getenv("ORDER_STORE_URL", "http://localhost:8001")
ORDER_STORE_TIMEOUT = float(os.getenv("ORDER_STORE_TIMEOUT", "8"))

# Change feed.
RABBITMQ_HOST = os.getenv("RABBITMQ_HOST", "rabbitmq")
CHANGE_FEED_RECONNECT_DELAY = float(os.getenv("CHANGE_FEED_RECONNECT_DELAY", "5"))

# Durable client-local storage (watched order id, view state).
STORAGE_PATH = Path(os.getenv("STOREFRONT_STORAGE_PATH", str(Path.home() / ".storefront" / "storage.json")))

# Operator order list.
ORDER_PAGE_SIZE = int(os.getenv("ORDER_PAGE_SIZE", "10"))
ORDER_POLL_INTERVAL = float(os.getenv("ORDER_POLL_INTERVAL", "30"))
ORDER_REFRESH_GUARD = float(os.getenv("ORDER_REFRESH_GUARD", "2"))
ORDER_PUSH_DELAY = float(os.getenv("ORDER_PUSH_DELAY", "0.5"))

# Customer status dialog.
STATUS_POLL_INTERVAL = float(os.getenv("STATUS_POLL_INTERVAL", "3"))

ADMIN_MODE = os.getenv("ADMIN_MODE", "0").strip() in {"1", "true", "True", "YES", "yes"}
