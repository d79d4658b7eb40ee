"""
Registration Race Simulation

Fires concurrent registrations with the same business name at a running
server to exercise slug collision handling, then checks that every
successful registration got a distinct slug.
Run from project root: python scripts/simulate.py

Author: Khalil Bannouri
Version: 4.0.0
"""

import asyncio
import sys
import os
import time
import uuid
import argparse
from datetime import datetime
from typing import Any

import httpx
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
# Windows event loop fix
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Configuration
API_BASE_URL = "http://localhost:8001"
TOTAL_REGISTRATIONS = 20
BUSINESS_NAME = "Frituur Race Test"


def generate_registration_payload(business_name: str) -> dict[str, str]:
    """Registration body with a unique email."""
    return {
        "businessName": business_name,
        "email": f"race-{uuid.uuid4().hex[:10]}@example.com",
        "phone": "+32 470 00 00 00",
        "password": "simulation-password",
    }


async def send_registration(
    client: httpx.AsyncClient,
    num: int,
    business_name: str,
) -> dict[str, Any]:
    """Send one registration."""
    start_time = time.time()

    try:
        response = await client.post(
            f"{API_BASE_URL}/register",
            json=generate_registration_payload(business_name),
            timeout=30.0
        )
    except httpx.HTTPError as e:
        return {
            "num": num,
            "success": False,
            "status": None,
            "error": str(e)[:100],
            "time": round(time.time() - start_time, 3),
        }

    elapsed = round(time.time() - start_time, 3)
    data = response.json()

    if response.status_code == 200:
        return {
            "num": num,
            "success": True,
            "status": 200,
            "slug": data["tenant"]["tenant_slug"],
            "time": elapsed,
        }
    return {
        "num": num,
        "success": False,
        "status": response.status_code,
        "error": data.get("error", response.text[:100]),
        "time": elapsed,
    }


async def run_simulation(
    num_registrations: int = TOTAL_REGISTRATIONS,
    business_name: str = BUSINESS_NAME,
) -> dict[str, Any]:
    """
    Run the race simulation.

    Args:
        num_registrations: Number of concurrent registrations
        business_name: Shared business name (same slug base for all)
    """
    print("=" * 70)
    print("🔥 REGISTRATION RACE SIMULATION")
    print("=" * 70)
    print(f"📋 Registrations: {num_registrations}")
    print(f"🏷️  Business name: {business_name}")
    print(f"🎯 Target: {API_BASE_URL}")
    print(f"⏰ Started: {datetime.now().strftime('%H:%M:%S')}")
    print("=" * 70)

    start_time = time.time()

    async with httpx.AsyncClient() as client:
        tasks = [send_registration(client, i + 1, business_name) for i in range(num_registrations)]
        results = await asyncio.gather(*tasks)

    total_time = round(time.time() - start_time, 2)

    successful = [r for r in results if r["success"]]
    failed = [r for r in results if not r["success"]]
    slugs = [r["slug"] for r in successful]
    duplicates = len(slugs) - len(set(slugs))

    print("\n" + "=" * 70)
    print("📊 SIMULATION RESULTS")
    print("=" * 70)
    print(f"\n✅ Successful: {len(successful)}/{num_registrations}")
    print(f"❌ Failed: {len(failed)}/{num_registrations}")
    print(f"⏱️  Total Time: {total_time}s")

    if duplicates:
        print(f"\n🚨 {duplicates} DUPLICATE SLUGS HANDED OUT!")
    else:
        print(f"\n✅ All {len(slugs)} slugs distinct: {', '.join(sorted(slugs))}")

    if failed:
        by_status: dict[Any, int] = {}
        for f in failed:
            by_status[f["status"]] = by_status.get(f["status"], 0) + 1
        print(f"\n⚠️  Failures by status: {by_status}")
        for f in failed[:5]:
            print(f"   #{f['num']} [{f['status']}]: {f['error']}")
        if 429 in by_status:
            print("   (429 = rate limited; set RATE_LIMIT_ENABLED=false for this run)")

    print("\n" + "=" * 70)
    print("🔍 NEXT STEPS")
    print("=" * 70)
    print("1. Run: python scripts/find_orphans.py")
    print("2. Check logs/compensation.log for failed compensations")
    print("=" * 70)

    return {
        "total": num_registrations,
        "successful": len(successful),
        "failed": len(failed),
        "duplicate_slugs": duplicates,
        "total_time": total_time,
        "results": results,
    }


async def check_health() -> bool:
    """Pre-flight health check."""
    async with httpx.AsyncClient() as client:
        try:
            response = await client.get(f"{API_BASE_URL}/health", timeout=10.0)
        except httpx.HTTPError as e:
            print(f"   ❌ Server unreachable: {e}")
            return False

    if response.status_code != 200:
        print(f"   ❌ Failed: {response.text}")
        return False

    data = response.json()
    print(f"   ✅ Status: {data.get('status')}")
    print(f"   Database: {data.get('database')}")
    print(f"   Redis: {data.get('redis')}")
    return True


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Registration Race Simulation")
    parser.add_argument("--registrations", type=int, default=TOTAL_REGISTRATIONS, help="Number of registrations")
    parser.add_argument("--name", default=BUSINESS_NAME, help="Business name shared by all registrations")
    parser.add_argument("--skip-health", action="store_true", help="Skip the health check")
    args = parser.parse_args()

    if not args.skip_health:
        print("\n1️⃣ Health Check...")
        if not asyncio.run(check_health()):
            sys.exit(1)

    summary = asyncio.run(run_simulation(args.registrations, args.name))
    sys.exit(1 if summary["duplicate_slugs"] else 0)
