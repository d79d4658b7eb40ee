"""
Orphan Tenant Report

Lists tenants that have no business profile: leftovers of registrations
whose compensating delete failed. Protected tenants are marked.
Run from project root: python scripts/find_orphans.py

Author: Khalil Bannouri
Version: 4.0.0
"""

import asyncio
import os
import sys
from datetime import datetime

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.core.config import get_settings
from app.services.provisioning import ProvisioningConfig
from app.tasks import run_with_repository, find_orphans


def report_orphans() -> bool:
    """Print every orphan tenant; False when any non-protected one exists."""
    settings = get_settings()
    config = ProvisioningConfig.from_settings(settings)

    print("=" * 60)
    print("🔍 ORPHAN TENANT REPORT")
    print("=" * 60)
    print(f"⏰ Timestamp: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print(f"🗄️  Store: {settings.store_backend.value}")
    print("=" * 60)

    orphans = asyncio.run(run_with_repository(find_orphans))

    if not orphans:
        print("\n✅ No orphan tenants")
        return True

    actionable = 0
    print(f"\n📋 {len(orphans)} tenant(s) without a business profile:")
    print("-" * 60)
    for orphan in orphans:
        protected = config.is_protected(orphan["slug"])
        marker = "🛡️  protected" if protected else "⚠️  orphan"
        if not protected:
            actionable += 1
        print(f"   {marker:14} {orphan['slug']:24} {orphan['email']:30} {orphan['created_at']}")

    print("\n" + "=" * 60)
    print(f"{'✅' if not actionable else '⚠️'} {actionable} orphan(s) need operator follow-up")
    print("=" * 60)

    return actionable == 0


if __name__ == "__main__":
    sys.exit(0 if report_orphans() else 1)
