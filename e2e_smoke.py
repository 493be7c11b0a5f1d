#!/usr/bin/env python3
"""
End-to-end smoke checks against a running sales service.

Run:
  python e2e_smoke.py

Optional env:
  SALES_BASE=http://localhost:8000
  ADMIN_USER_ID=1          (the bootstrap admin of a fresh database)
  TIMEOUT_SECONDS=30
  DEBUG=1
"""

from __future__ import annotations

import os
import sys
import time
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List

import requests


# =========================
# Config
# =========================

SALES_BASE = os.getenv("SALES_BASE", "http://localhost:8000")
ADMIN_USER_ID = os.getenv("ADMIN_USER_ID", "1")
TIMEOUT_SECONDS = int(os.getenv("TIMEOUT_SECONDS", "30"))
DEBUG = os.getenv("DEBUG", "0").strip() in {"1", "true", "True", "YES", "yes"}

RUN_TAG = uuid.uuid4().hex[:6].upper()


def debug(msg: str):
    if DEBUG:
        print(f"  … {msg}")


@dataclass
class CheckResult:
    name: str
    success: bool
    details: str = ""


# =========================
# HTTP helpers
# =========================

def http(method: str, path: str, user_id=None, **kwargs) -> requests.Response:
    kwargs.setdefault("timeout", 8)
    if user_id is not None:
        kwargs.setdefault("headers", {})["X-User-Id"] = str(user_id)
    debug(f"{method} {path} {kwargs.get('json', '')}")
    return requests.request(method, SALES_BASE + path, **kwargs)


def expect(resp: requests.Response, status: int, ctx: str) -> Dict[str, Any]:
    if resp.status_code != status:
        raise AssertionError(f"{ctx}: expected HTTP {status}, got {resp.status_code}, body={resp.text}")
    return resp.json()


def wait_for_health(timeout: int = TIMEOUT_SECONDS) -> bool:
    start = time.time()
    while time.time() - start < timeout:
        try:
            if http("GET", "/health").status_code == 200:
                return True
        except requests.exceptions.RequestException as e:
            debug(f"not ready: {e}")
        time.sleep(1)
    return False


def stock_of(variant_id: int) -> int:
    return expect(http("GET", f"/api/v1/variants/{variant_id}"), 200, "get variant")["stock"]


# =========================
# Setup
# =========================

def seed() -> Dict[str, int]:
    """Creates a cashier and a product with variants X (stock 5), Y (stock 0), Z (stock 10)."""
    cashier = expect(
        http("POST", "/api/v1/users", ADMIN_USER_ID, json={"username": f"e2e-cashier-{RUN_TAG}", "role": "cashier"}),
        201, "create cashier",
    )
    product = expect(
        http("POST", "/api/v1/products", ADMIN_USER_ID, json={
            "name": f"E2E Tee {RUN_TAG}",
            "base_price": "100.00",
            "category": "UNISEX",
            "product_type": "tee",
            "variants": [
                {"size": "M", "sku": f"E2E-{RUN_TAG}-M", "stock": 5},
                {"size": "L", "sku": f"E2E-{RUN_TAG}-L", "stock": 0},
                {"size": "S", "sku": f"E2E-{RUN_TAG}-S", "stock": 10},
            ],
        }),
        201, "create product",
    )
    ids = {v["size"]: v["id"] for v in product["variants"]}
    return {"cashier": cashier["id"], "X": ids["M"], "Y": ids["L"], "Z": ids["S"]}


def place(cashier_id: int, lines: List[Dict[str, Any]]) -> requests.Response:
    return http("POST", "/api/v1/orders", cashier_id, json={"lines": lines, "payment_method": "CASH"})


# =========================
# Scenarios
# =========================

def scenario_sell_out(ctx) -> CheckResult:
    resp = place(ctx["cashier"], [{"variant_id": ctx["X"], "quantity": 5, "unit_price": "100"}])
    ok = resp.status_code == 201 and stock_of(ctx["X"]) == 0
    return CheckResult("Order for all remaining stock", ok, f"HTTP {resp.status_code}, stock={stock_of(ctx['X'])}")


def scenario_empty_stock(ctx) -> CheckResult:
    resp = place(ctx["cashier"], [{"variant_id": ctx["Y"], "quantity": 1, "unit_price": "100"}])
    shortages = resp.json().get("shortages", []) if resp.status_code == 409 else []
    ok = shortages == [{"variant_id": ctx["Y"], "requested": 1, "available": 0}] and stock_of(ctx["Y"]) == 0
    return CheckResult("Order against empty stock", ok, f"HTTP {resp.status_code}, body={resp.text}")


def scenario_rollback(ctx) -> CheckResult:
    before = stock_of(ctx["Z"])
    resp = place(ctx["cashier"], [
        {"variant_id": ctx["Z"], "quantity": 2, "unit_price": "100"},
        {"variant_id": ctx["Y"], "quantity": 1, "unit_price": "100"},
    ])
    after = stock_of(ctx["Z"])
    return CheckResult("Short second line rolls back first", resp.status_code == 409 and after == before,
                       f"HTTP {resp.status_code}, stock {before} -> {after}")


def scenario_discount(ctx) -> CheckResult:
    resp = place(ctx["cashier"], [{"variant_id": ctx["Z"], "quantity": 3, "unit_price": "100", "discount_rate": "0.2"}])
    total = Decimal(resp.json().get("total", "0")) if resp.status_code == 201 else None
    return CheckResult("Discounted total", total == Decimal("240.00"), f"HTTP {resp.status_code}, total={total}")


def print_results(results: List[CheckResult]) -> int:
    print("\n================ RESULTS ================")
    for r in results:
        print(f"{'PASS' if r.success else 'FAIL'}  {r.name}")
        if r.details:
            print(f"      {r.details}")
    failed = sum(1 for r in results if not r.success)
    print(f"=========================================\n{len(results) - failed}/{len(results)} passed")
    return failed


def main():
    if not wait_for_health():
        print(f"Sales service at {SALES_BASE} did not become healthy in {TIMEOUT_SECONDS} seconds.")
        sys.exit(1)

    ctx = seed()
    results = [
        scenario_sell_out(ctx),
        scenario_empty_stock(ctx),
        scenario_rollback(ctx),
        scenario_discount(ctx),
    ]
    sys.exit(1 if print_results(results) else 0)


if __name__ == "__main__":
    main()
