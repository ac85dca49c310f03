#!/usr/bin/env python3
"""
Storefront E2E checks against a running order store.

Run:
  python e2e_storefront.py

Optional env:
  ORDER_STORE_URL=http://localhost:8001
  TIMEOUT_SECONDS=45
  POLL_INTERVAL=1
  DEBUG=1
"""

from __future__ import annotations

import os
import sys
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Tuple

import requests

from storefront.app.models import Product, Viewer
from storefront.app.repository import OrderRepository
from storefront.app.status_dialog import DialogState, OrderStatusDialog
from storefront.app.storage import LocalStorage
from storefront.app.store import OrderStoreClient
from storefront.app.tracker import PendingOrderTracker
from storefront.app.placement import OrderPlacementFlow


# =========================
# Simple CLI UI (ANSI)
# =========================

class Style:
    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"

    RED = "\033[91m"
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    BLUE = "\033[94m"
    CYAN = "\033[96m"
    GRAY = "\033[90m"

    BOX_LINE = "─"
    BOX_VERT = "│"
    BOX_TL = "┌"
    BOX_TR = "┐"
    BOX_BL = "└"
    BOX_BR = "┘"


def banner():
    title = " Storefront - Order Lifecycle E2E Checks "
    line = Style.BOX_LINE * len(title)
    print()
    print(f"{Style.CYAN}{Style.BOX_TL}{line}{Style.BOX_TR}{Style.RESET}")
    print(
        f"{Style.CYAN}{Style.BOX_VERT}{Style.RESET}"
        f"{Style.BOLD}{title}{Style.RESET}"
        f"{Style.CYAN}{Style.BOX_VERT}{Style.RESET}"
    )
    print(f"{Style.CYAN}{Style.BOX_BL}{line}{Style.BOX_BR}{Style.RESET}")
    print()


def section_title(text: str):
    line = Style.BOX_LINE * (len(text) + 2)
    print(f"\n{Style.BLUE}{Style.BOX_TL}{line}{Style.BOX_TR}{Style.RESET}")
    print(
        f"{Style.BLUE}{Style.BOX_VERT} "
        f"{Style.BOLD}{text}{Style.RESET}"
        f"{Style.BLUE} {Style.BOX_VERT}{Style.RESET}"
    )
    print(f"{Style.BLUE}{Style.BOX_BL}{line}{Style.BOX_BR}{Style.RESET}")


def info(msg: str):
    print(f"{Style.CYAN}ℹ {msg}{Style.RESET}")


def warn(msg: str):
    print(f"{Style.YELLOW}⚠ {msg}{Style.RESET}")


def ok(msg: str):
    print(f"{Style.GREEN}✔ {msg}{Style.RESET}")


def fail(msg: str):
    print(f"{Style.RED}✘ {msg}{Style.RESET}")


# =========================
# Config
# =========================

ORDER_STORE_URL = os.getenv("ORDER_STORE_URL", "http://localhost:8001")

TIMEOUT_SECONDS = int(os.getenv("TIMEOUT_SECONDS", "45"))
POLL_INTERVAL = float(os.getenv("POLL_INTERVAL", "1"))
DEBUG = os.getenv("DEBUG", "0").strip() in {"1", "true", "True", "YES", "yes"}

ORDERS_PATH = "/api/v1/orders"
ORDER_PATH = "/api/v1/orders/{order_id}"
RECEIPTS_PATH = "/api/v1/receipts"
PAYMENT_METHODS_PATH = "/api/v1/payment-methods"

# Test data
PAYMENT_METHOD = {"id": "gcash", "name": "GCash", "account_number": "09170000000", "account_name": "Store"}
RECEIPT_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64

PRODUCT = Product(
    id="mlbb",
    name="Mobile Legends",
    custom_fields=[
        {"key": "user_id", "label": "User ID", "required": True},
        {"key": "zone_id", "label": "Zone ID", "required": True},
    ],
    variations=[
        {"id": "diamonds-50", "name": "50 Diamonds", "price": 50},
        {"id": "diamonds-80", "name": "86 Diamonds", "price": 80},
    ],
)


def debug(msg: str):
    if DEBUG:
        print(f"{Style.GRAY}… {msg}{Style.RESET}")


# =========================
# Models
# =========================

@dataclass
class CheckResult:
    name: str
    success: bool
    details: str = ""
    scenario: str = ""


# =========================
# HTTP helpers
# =========================

def http(method: str, url: str, **kwargs) -> requests.Response:
    kwargs.setdefault("timeout", 8)
    debug(f"{method} {url} kwargs={kwargs}")
    return requests.request(method, url, **kwargs)


def wait_for_health(base_url: str, service_name: str, timeout: int = 30) -> bool:
    url = f"{base_url}/health"
    start = time.time()
    while time.time() - start < timeout:
        try:
            resp = http("GET", url)
            if resp.status_code == 200:
                ok(f"{service_name} is healthy.")
                return True
        except requests.exceptions.RequestException as e:
            debug(f"{service_name} not ready: {e}")
        time.sleep(1)
    fail(f"{service_name} did not become healthy in {timeout} seconds.")
    return False


def assert_status(resp: requests.Response, expected: int, ctx: str):
    if resp.status_code != expected:
        raise AssertionError(f"{ctx}: expected HTTP {expected}, got {resp.status_code}, body={resp.text}")


# =========================
# API calls
# =========================

def seed_payment_method(scenario: str) -> CheckResult:
    section_title("Seeding Payment Method")
    try:
        resp = http("POST", ORDER_STORE_URL + PAYMENT_METHODS_PATH, json=PAYMENT_METHOD)
        assert_status(resp, 201, "POST payment method")
        methods = http("GET", ORDER_STORE_URL + PAYMENT_METHODS_PATH).json()
        success = any(m.get("id") == PAYMENT_METHOD["id"] for m in methods)
        msg = f"Payment methods: {[m.get('id') for m in methods]}"
        (ok if success else fail)(msg)
        return CheckResult("Seed Payment Method", success, msg, scenario)
    except (requests.exceptions.RequestException, AssertionError) as e:
        fail(f"Exception while seeding payment method: {e}")
        return CheckResult("Seed Payment Method", False, str(e), scenario)


def upload_receipt() -> str:
    resp = http(
        "POST",
        ORDER_STORE_URL + RECEIPTS_PATH,
        files={"file": ("receipt.png", RECEIPT_BYTES, "image/png")},
    )
    assert_status(resp, 201, "POST receipt")
    return resp.json()["url"]


def create_order(total: float, scenario: str, tag: str) -> Tuple[CheckResult, Optional[str]]:
    section_title(f"Create Order {tag}")
    try:
        payload = {
            "order_items": [{
                "id": f"{PRODUCT.id}:::CART:::{tag}",
                "name": PRODUCT.name,
                "selectedVariation": {"id": "custom", "name": "Custom", "price": total},
                "selectedAddOns": [],
                "totalPrice": total,
                "quantity": 1,
            }],
            "customer_info": {"User ID": f"player-{tag}", "Payment Method": PAYMENT_METHOD["name"]},
            "payment_method_id": PAYMENT_METHOD["id"],
            "receipt_url": upload_receipt(),
            "total_price": total,
        }
        info(f"POST {ORDER_STORE_URL + ORDERS_PATH} with total={total}")
        resp = http("POST", ORDER_STORE_URL + ORDERS_PATH, json=payload)
        assert_status(resp, 201, f"POST order {tag}")
        data: Dict[str, Any] = resp.json()

        order_id = data.get("id")
        success = bool(order_id) and data.get("status") == "pending"
        msg = f"Order {tag} created with id={order_id}, invoice={data.get('invoice_number')}, status={data.get('status')}"
        (ok if success else fail)(msg)
        return CheckResult(f"Create Order {tag}", success, msg, scenario), order_id

    except (requests.exceptions.RequestException, AssertionError) as e:
        fail(f"Exception while creating order {tag}: {e}")
        return CheckResult(f"Create Order {tag}", False, str(e), scenario), None


def get_order(order_id: str) -> Dict[str, Any]:
    resp = http("GET", ORDER_STORE_URL + ORDER_PATH.format(order_id=order_id))
    assert_status(resp, 200, f"GET order {order_id}")
    return resp.json()


def set_status(order_id: str, fields: Dict[str, Any]) -> requests.Response:
    return http("PATCH", ORDER_STORE_URL + ORDER_PATH.format(order_id=order_id), json=fields)


def wait_for_order_status(order_id: str, expected: Set[str], scenario: str) -> CheckResult:
    section_title(f"Wait For Order {order_id[:8]} Status")
    info(f"Waiting up to {TIMEOUT_SECONDS}s for order {order_id[:8]} to reach one of: {sorted(expected)}")
    start = time.time()
    last: Optional[str] = None

    while time.time() - start < TIMEOUT_SECONDS:
        try:
            o = get_order(order_id)
            st = str(o.get("status", ""))
            if st != last:
                print(f"    {Style.GRAY}Current status: {st}{Style.RESET}")
                last = st
            if st in expected:
                ok(f"Order {order_id[:8]} reached status: {st}")
                return CheckResult(f"Order {order_id[:8]} Status", True, f"Status={st}", scenario)
        except (requests.exceptions.RequestException, AssertionError) as e:
            debug(f"Order poll error: {e}")

        time.sleep(POLL_INTERVAL)

    fail(f"Timeout. Last status={last}")
    return CheckResult(f"Order {order_id[:8]} Status", False, f"Timeout waiting for {sorted(expected)}. Last={last}", scenario)


# =========================
# Scenarios
# =========================

def scenario_approval() -> List[CheckResult]:
    scenario = "Scenario 1 - Approval"
    section_title(scenario)
    results: List[CheckResult] = []

    results.append(seed_payment_method(scenario))
    if not results[-1].success:
        return results

    create_res, order_id = create_order(total=150.0, scenario=scenario, tag="A1")
    results.append(create_res)
    if order_id is None:
        return results

    results.append(wait_for_order_status(order_id, {"pending"}, scenario))

    resp = set_status(order_id, {"status": "approved", "approval_message": "Credits have been sent!"})
    results.append(CheckResult("Approve Order", resp.status_code == 200, f"HTTP {resp.status_code}", scenario))
    results.append(wait_for_order_status(order_id, {"approved"}, scenario))

    section_title("Verify Terminal Status Is Frozen")
    resp = set_status(order_id, {"status": "rejected"})
    success = resp.status_code == 409
    msg = f"Expected HTTP 409 for approved -> rejected, got {resp.status_code}"
    (ok if success else fail)(msg)
    results.append(CheckResult("Terminal Status Frozen", success, msg, scenario))
    return results


def scenario_rejection() -> List[CheckResult]:
    scenario = "Scenario 2 - Rejection With Reason"
    section_title(scenario)
    results: List[CheckResult] = []

    create_res, order_id = create_order(total=80.0, scenario=scenario, tag="R1")
    results.append(create_res)
    if order_id is None:
        return results

    set_status(order_id, {"status": "processing"})
    results.append(wait_for_order_status(order_id, {"processing"}, scenario))

    set_status(order_id, {"status": "rejected", "rejection_reason": "Receipt is not valid"})
    results.append(wait_for_order_status(order_id, {"rejected"}, scenario))

    try:
        reason = get_order(order_id).get("rejection_reason")
        success = reason == "Receipt is not valid"
        msg = f"rejection_reason={reason!r}"
        (ok if success else fail)(msg)
        results.append(CheckResult("Rejection Reason Stored", success, msg, scenario))
    except (requests.exceptions.RequestException, AssertionError) as e:
        results.append(CheckResult("Rejection Reason Stored", False, str(e), scenario))
    return results


def scenario_storefront_client() -> List[CheckResult]:
    scenario = "Scenario 3 - Storefront Client Flow"
    section_title(scenario)
    results: List[CheckResult] = []

    store = OrderStoreClient(ORDER_STORE_URL)
    repository = OrderRepository(store)
    storage = LocalStorage(Path(tempfile.mkdtemp()) / "storage.json")
    tracker = PendingOrderTracker(storage, repository)
    dialog = OrderStatusDialog(repository, tracker)

    flow = OrderPlacementFlow(
        PRODUCT,
        viewer=Viewer(),
        payment_methods=[],
        uploader=store.upload_receipt,
        multi_account=True,
    )
    flow.set_field(0, "user_id", "111")
    flow.set_field(0, "zone_id", "2001")
    flow.select_variation(0, "diamonds-50", quantity=2)
    second = flow.add_account()
    flow.set_field(second, "user_id", "222")
    flow.set_field(second, "zone_id", "2002")
    flow.select_variation(second, "diamonds-80")
    flow.select_payment_method(PAYMENT_METHOD["id"])
    flow.upload_receipt(RECEIPT_BYTES, "receipt.png", "image/png")

    order = flow.submit(repository)
    success = order.total_price == 180 and len(order.order_items) == 3
    msg = f"total_price={order.total_price}, line items={len(order.order_items)}"
    (ok if success else fail)(msg)
    results.append(CheckResult("Multi-Account Order Total", success, msg, scenario))

    tracker.remember(order.id)
    dialog.open(order.id)
    set_status(order.id, {"status": "rejected", "rejection_reason": "Wrong amount"})

    start = time.time()
    while dialog.state is not DialogState.REJECTED and time.time() - start < TIMEOUT_SECONDS:
        time.sleep(POLL_INTERVAL)
        dialog.poll()
    success = dialog.state is DialogState.REJECTED and dialog.rejection_reason == "Wrong amount"
    msg = f"Dialog state={dialog.state.value}, reason={dialog.rejection_reason!r}"
    (ok if success else fail)(msg)
    results.append(CheckResult("Dialog Reaches Rejected", success, msg, scenario))

    dialog.close()
    resolution = tracker.resolve_on_load()
    success = not resolution.watching
    msg = f"Watched after acknowledge: {resolution.order_id}"
    (ok if success else fail)(msg)
    results.append(CheckResult("Acknowledge Clears Watch", success, msg, scenario))
    return results


# =========================
# Summary
# =========================

def print_results(results: List[CheckResult]):
    print(f"\n{Style.BOLD}================ CHECK RESULTS ================ {Style.RESET}")
    passed = 0
    per_scenario: Dict[str, Dict[str, int]] = {}

    for r in results:
        icon = "✅" if r.success else "❌"
        color = Style.GREEN if r.success else Style.RED
        print(f"{color}{icon} {r.name}{Style.RESET}")
        if r.details:
            print(f"    {Style.DIM}{r.details}{Style.RESET}")

        if r.success:
            passed += 1

        if r.scenario:
            per_scenario.setdefault(r.scenario, {"total": 0, "passed": 0})
            per_scenario[r.scenario]["total"] += 1
            if r.success:
                per_scenario[r.scenario]["passed"] += 1

    total = len(results)
    failed = total - passed
    print(f"{Style.BOLD}==============================================={Style.RESET}")
    print(f"Total checks: {total}  |  Passed: {Style.GREEN}{passed}{Style.RESET}  |  Failed: {Style.RED}{failed}{Style.RESET}")
    print(f"{Style.BOLD}===============================================\n{Style.RESET}")

    if per_scenario:
        print(f"{Style.BOLD}Scenario breakdown:{Style.RESET}")
        for scen, agg in per_scenario.items():
            t = agg["total"]
            p = agg["passed"]
            f = t - p
            color = Style.GREEN if f == 0 else (Style.YELLOW if p > 0 else Style.RED)
            print(f"  {color}- {scen}: {p}/{t} passed{Style.RESET}")

    if failed > 0:
        print(f"\n{Style.YELLOW}{Style.BOLD}Troubleshooting hints:{Style.RESET}")
        print(f"{Style.YELLOW}- If orders never change status: check the PATCH responses and the store logs.{Style.RESET}")
        print(f"{Style.YELLOW}- If receipts fail: RECEIPTS_DIR must be writable by the store.{Style.RESET}")
        print()
    return failed


def main():
    banner()
    info("Waiting for the order store to become healthy...")

    if not wait_for_health(ORDER_STORE_URL, "order_service"):
        sys.exit(1)

    all_results: List[CheckResult] = []
    all_results.extend(scenario_approval())
    all_results.extend(scenario_rejection())
    all_results.extend(scenario_storefront_client())

    if print_results(all_results):
        sys.exit(1)


if __name__ == "__main__":
    main()
