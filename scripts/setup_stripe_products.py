"""
Create Stripe products and monthly prices for ACTIVE businesses that have none yet.
Run after configuring STRIPE_SECRET_KEY:
  python scripts/setup_stripe_products.py
"""

import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from services.business_service import BusinessService
from services.database import init_db, get_db_session
from services.errors import SophiaError
from services.stripe_client import load_stripe_config, create_subscription_product


def setup_stripe_products():
    load_stripe_config()
    init_db()
    db = get_db_session()
    service = BusinessService()
    try:
        pending = [b for b in service.get_active_businesses(db) if not b.stripe_price_id]
        print(f"{len(pending)} active businesses without a Stripe price")

        for business in pending:
            try:
                ids = create_subscription_product(business)
            except SophiaError as e:
                print(f"  FAILED {business.name}: {e.message}")
                continue
            service.update_stripe_data(db, business.id, ids["productId"], ids["priceId"])
            print(f"  {business.name}: product {ids['productId']}, price {ids['priceId']}")
    finally:
        db.close()


if __name__ == "__main__":
    try:
        setup_stripe_products()
    except SophiaError as e:
        print(f"Error: {e.message}")
        sys.exit(1)
