#!/usr/bin/env python3
"""
Fulfill Order Script

Manually (re-)runs fulfillment routing for one order, e.g. after a Gelato
outage left it partially_fulfilled.

NOT idempotent: each run re-submits print items and issues fresh download
links (resetting download counts).

Usage:
    python scripts/fulfill_order.py <order_id> [--status] [--cancel-digital]

Options:
    --status          Only print the current per-method fulfillment status
    --cancel-digital  Expire the order's download links
"""
import os
import sys
import argparse

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv
load_dotenv()

from constants import FULFILLMENT_METHOD_DOWNLOAD, DIGITAL_FULFILLMENT_ID_PREFIX
from services.fulfillment import build_default_router, fulfill_order_by_id
from services.fulfillment_providers.results import grants_from_tracking
from utils.redaction import redact_download_url


def print_status(router, order_id):
    statuses = router.get_order_fulfillment_status(order_id)
    if not statuses:
        print("  No tracked fulfillments")
        return
    for method, status in statuses.items():
        print(f"  {method}: {status.status} - {status.status_message}")


def cancel_digital(router, order_id):
    provider = router.provider_for_method(FULFILLMENT_METHOD_DOWNLOAD)
    if provider.cancel(f"{DIGITAL_FULFILLMENT_ID_PREFIX}{order_id}"):
        print("  Download links expired ✓")
        return True
    print("  Failed to expire download links ✗")
    return False


def fulfill(router, order_id):
    outcome = fulfill_order_by_id(order_id, router=router)
    if outcome is None:
        print(f"  Order {order_id} not found")
        return False

    order, results, status = outcome
    print(f"  Order {order.label}: {status}")
    for result in results:
        mark = "✓" if result.success else "✗"
        print(f"  [{result.provider}] {mark} {result.fulfillment_id or result.error}")
        for grant in grants_from_tracking(result):
            print(f"      {grant.file_name}: {redact_download_url(grant.download_url)}")
    return any(r.success for r in results)


def main():
    parser = argparse.ArgumentParser(description='Run fulfillment routing for one order')
    parser.add_argument('order_id', help='Order id')
    parser.add_argument('--status', action='store_true', help='Only show current fulfillment status')
    parser.add_argument('--cancel-digital', action='store_true', help='Expire the order download links')
    args = parser.parse_args()

    print(f"=== Order Fulfillment: {args.order_id} ===")

    # Need Flask app context for database
    from app import create_app
    app = create_app()

    with app.app_context():
        router = build_default_router()

        if not router.store.get_order(args.order_id):
            print(f"  Order {args.order_id} not found")
            return 1

        if args.status:
            print_status(router, args.order_id)
            return 0
        if args.cancel_digital:
            return 0 if cancel_digital(router, args.order_id) else 1
        return 0 if fulfill(router, args.order_id) else 1


if __name__ == '__main__':
    sys.exit(main())
