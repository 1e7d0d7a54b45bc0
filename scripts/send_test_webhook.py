"""Sign and post a Square-style webhook to a running receiver.

Useful for exercising status reconciliation without a real Square account:

    python scripts/send_test_webhook.py --order-id ORDER_1 --fulfillment-state PREPARED
"""

import argparse
import json
from datetime import datetime, timezone
from uuid import uuid4

import httpx

from sippay.common.config import settings
from sippay.services.webhooks.models import ORDER_FULFILLMENT_UPDATED, ORDER_UPDATED
from sippay.services.webhooks.service import SIGNATURE_HEADER, compute_signature


def build_event(order_id: str, order_state: str | None, fulfillment_state: str | None) -> dict:
    """Build one order.updated or order.fulfillment.updated notification."""

    now = datetime.now(timezone.utc).isoformat()
    if fulfillment_state:
        return {
            "type": ORDER_FULFILLMENT_UPDATED,
            "event_id": str(uuid4()),
            "created_at": now,
            "data": {
                "type": "order_fulfillment_updated",
                "id": order_id,
                "object": {
                    "order_fulfillment_updated": {
                        "order_id": order_id,
                        "state": "OPEN",
                        "fulfillment_update": [
                            {"fulfillment_uid": str(uuid4()), "new_state": fulfillment_state}
                        ],
                    }
                },
            },
        }
    return {
        "type": ORDER_UPDATED,
        "event_id": str(uuid4()),
        "created_at": now,
        "data": {
            "type": "order_updated",
            "id": order_id,
            "object": {"order_updated": {"order_id": order_id, "state": order_state}},
        },
    }


def main() -> None:
    """Parse CLI args, sign the event and POST it."""

    parser = argparse.ArgumentParser(description="Send a signed Square webhook event.")
    parser.add_argument("--url", default="http://localhost:8000/webhooks/square")
    parser.add_argument("--order-id", required=True)
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--order-state", default=None)
    group.add_argument("--fulfillment-state", default=None)
    parser.add_argument("--signature-key", default=settings.square_webhook_signature_key)
    args = parser.parse_args()

    if not args.signature_key:
        raise SystemExit("Provide --signature-key or set SQUARE_WEBHOOK_SIGNATURE_KEY")

    body = json.dumps(build_event(args.order_id, args.order_state, args.fulfillment_state)).encode("utf-8")
    notification_url = settings.square_webhook_url or args.url
    signature = compute_signature(body, args.signature_key, notification_url)
    resp = httpx.post(
        args.url,
        content=body,
        headers={"Content-Type": "application/json", SIGNATURE_HEADER: signature},
        timeout=10.0,
    )
    print(f"status={resp.status_code} body={resp.text}")


if __name__ == "__main__":
    main()
