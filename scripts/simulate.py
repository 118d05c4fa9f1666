"""
Table Race Simulation Script

Fires many concurrent dine-in orders at the same table to check that
exactly one wins the reservation, then walks the winning order to
completion and checks the table is free again.
Run from project root: python scripts/simulate.py

Author: Khalil Bannouri
Version: 1.0.0
"""

import argparse
import asyncio
import random
import sys
import time
import uuid
from datetime import datetime
from typing import Any

import httpx

# Windows event loop fix
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Configuration
API_BASE_URL = "http://localhost:8001"
TOTAL_ORDERS = 50
ADMIN_HEADERS = {"x-user-id": "simulation-admin"}

MENU_ITEMS = [
    {"menu_item_id": "margherita", "unit_price": 14.99},
    {"menu_item_id": "pepperoni", "unit_price": 16.99},
    {"menu_item_id": "caesar-salad", "unit_price": 8.99},
    {"menu_item_id": "garlic-bread", "unit_price": 5.99},
    {"menu_item_id": "tiramisu", "unit_price": 7.99},
]

STATUS_PATH = ["confirmed", "preparing", "ready", "delivered", "completed"]


def generate_random_items() -> list[dict]:
    """Generate random order items."""
    items = []
    for item in random.sample(MENU_ITEMS, random.randint(1, 3)):
        items.append({**item, "quantity": random.randint(1, 3)})
    return items


def generate_dine_in_payload(restaurant_id: str, table_id: str) -> dict[str, Any]:
    """Generate payload for /api/orders with reconciled totals."""
    items = generate_random_items()
    subtotal = round(sum(i["quantity"] * i["unit_price"] for i in items), 2)
    tax = round(subtotal * 0.08875, 2)
    tip = random.choice([0.0, 2.0, 5.0])
    return {
        "restaurant_id": restaurant_id,
        "order_type": "dine_in",
        "table_id": table_id,
        "items": items,
        "subtotal": subtotal,
        "tax": tax,
        "tip": tip,
        "total": round(subtotal + tax + tip, 2),
        "payment_method": "card",
    }


async def send_order(
    client: httpx.AsyncClient,
    order_num: int,
    restaurant_id: str,
    table_id: str,
) -> dict[str, Any]:
    """Send one dine-in order."""
    payload = generate_dine_in_payload(restaurant_id, table_id)
    start_time = time.time()

    try:
        response = await client.post(f"{API_BASE_URL}/api/orders", json=payload, timeout=30.0)
        elapsed = round(time.time() - start_time, 3)
        data = response.json()
        return {
            "order_num": order_num,
            "status_code": response.status_code,
            "success": response.status_code == 201,
            "order_id": data.get("id"),
            "error": data.get("error"),
            "time": elapsed,
        }
    except Exception as e:
        elapsed = round(time.time() - start_time, 3)
        return {
            "order_num": order_num,
            "status_code": None,
            "success": False,
            "error": str(e)[:100],
            "time": elapsed,
        }


# =============================================================================
# MAIN SIMULATION RUNNER
# =============================================================================

async def setup_table(client: httpx.AsyncClient) -> tuple[str, str]:
    """Create a fresh restaurant table for this run."""
    restaurant_id = f"sim-{uuid.uuid4().hex[:8]}"
    response = await client.post(
        f"{API_BASE_URL}/api/tables",
        json={"restaurant_id": restaurant_id, "table_number": 1},
    )
    response.raise_for_status()
    table = response.json()

    await client.post(
        f"{API_BASE_URL}/api/tables/{table['id']}/qr",
        json={"restaurant_name": "Simulation Bistro"},
    )
    return restaurant_id, table["id"]


async def run_simulation(num_orders: int = TOTAL_ORDERS) -> dict[str, Any]:
    """
    Run the table race.

    Args:
        num_orders: Number of concurrent orders aimed at one table
    """
    print("=" * 70)
    print("🔥 TABLE RACE SIMULATION")
    print("=" * 70)
    print(f"📋 Concurrent Orders: {num_orders}")
    print(f"🎯 Target: {API_BASE_URL}")
    print(f"⏰ Started: {datetime.now().strftime('%H:%M:%S')}")
    print("=" * 70)

    async with httpx.AsyncClient(headers=ADMIN_HEADERS) as client:
        restaurant_id, table_id = await setup_table(client)
        print(f"\n🪑 Table {table_id} ({restaurant_id})")

        print("\n🚀 Firing orders...\n")
        start_time = time.time()
        tasks = [send_order(client, i + 1, restaurant_id, table_id) for i in range(num_orders)]
        results = await asyncio.gather(*tasks)
        total_time = round(time.time() - start_time, 2)

        winners = [r for r in results if r["success"]]
        conflicts = [r for r in results if r["status_code"] == 409]
        errors = [r for r in results if not r["success"] and r["status_code"] != 409]

        print("=" * 70)
        print("📊 RACE RESULTS")
        print("=" * 70)
        print(f"\n✅ Reservations won: {len(winners)} (expected 1)")
        print(f"🚫 Conflicts: {len(conflicts)}")
        print(f"❌ Other errors: {len(errors)}")
        print(f"⏱️  Total Time: {total_time}s")

        for e in errors[:5]:
            print(f"   Order #{e['order_num']}: {e.get('status_code')} {e.get('error')}")

        passed = len(winners) == 1
        if passed:
            order_id = winners[0]["order_id"]
            print(f"\n🍽️ Walking order {order_id} to completion...")
            for status in STATUS_PATH:
                response = await client.patch(
                    f"{API_BASE_URL}/api/orders/{order_id}/status",
                    json={"new_status": status},
                )
                print(f"   {status}: {response.status_code}")

            table = (await client.get(f"{API_BASE_URL}/api/tables/{table_id}")).json()
            released = table.get("is_active") is True
            print(f"\n{'✅' if released else '❌'} Table available again: {table.get('is_active')}")
            passed = passed and released

        audit = (await client.post(
            f"{API_BASE_URL}/api/tables/audit",
            params={"restaurant_id": restaurant_id},
        )).json()
        print(f"🔍 Audit mismatches: {len(audit.get('mismatches', []))}")

    print("\n" + "=" * 70)
    print("✅ PASSED" if passed else "❌ FAILED")
    print("=" * 70)

    return {
        "total": num_orders,
        "winners": len(winners),
        "conflicts": len(conflicts),
        "errors": len(errors),
        "total_time": total_time,
        "passed": passed,
    }


async def test_single_flows() -> bool:
    """Check the API is up before the race."""
    print("\n" + "=" * 70)
    print("🧪 PRE-FLIGHT")
    print("=" * 70)

    async with httpx.AsyncClient() as client:
        response = await client.get(f"{API_BASE_URL}/health")
        if response.status_code != 200:
            print(f"   ❌ Failed: {response.text}")
            return False
        data = response.json()
        print(f"   ✅ Status: {data.get('status')}")
        print(f"   Store: {data.get('store')}")
        print(f"   Redis: {data.get('redis')}")

    return True


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Table Race Simulation Script")
    parser.add_argument("--orders", type=int, default=TOTAL_ORDERS, help="Number of concurrent orders")
    parser.add_argument("--skip-tests", action="store_true", help="Skip pre-flight checks")
    args = parser.parse_args()

    if not args.skip_tests and not asyncio.run(test_single_flows()):
        print("\n❌ Pre-flight checks failed. Is the API running?")
        sys.exit(1)

    summary = asyncio.run(run_simulation(num_orders=args.orders))
    sys.exit(0 if summary["passed"] else 1)
