"""
Run website health checks for every ACTIVE business.
Intended for a cron job:
  python scripts/monitor_active_businesses.py
"""

import asyncio
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from services.business_service import BusinessService
from services.database import init_db, get_db_session
from services.errors import BusinessRuleError
from services.monitoring import WebsiteMonitoringService


async def monitor_active_businesses():
    """Check each active business's website and print a one-line status."""
    init_db()
    db = get_db_session()
    monitoring = WebsiteMonitoringService()
    offline = 0
    try:
        businesses = BusinessService().get_active_businesses(db)
        print(f"Checking {len(businesses)} active businesses...")

        for business in businesses:
            try:
                status = await monitoring.check_website_health(business)
            except BusinessRuleError as e:
                print(f"  SKIP  {business.name}: {e.message}")
                continue

            label = "ONLINE " if status["isOnline"] else "OFFLINE"
            if not status["isOnline"]:
                offline += 1
            print(f"  {label} {business.name} ({status['httpStatus']}, {status['responseTime']}ms)")
            for message in status["errorMessages"]:
                print(f"          - {message}")
    finally:
        db.close()

    print(f"Done. {offline} business(es) offline.")
    return offline


if __name__ == "__main__":
    sys.exit(1 if asyncio.run(monitor_active_businesses()) else 0)
