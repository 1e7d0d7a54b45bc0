"""Seed one merchant's POS credentials into `merchant_tokens` or `clover_credentials`.

Local and sandbox use only; refuses to run when APP_ENV=production.
"""

import argparse

from sippay.common.config import settings
from sippay.common.db import SessionLocal
from sippay.services.orders.repository import OrderRepository


def seed(
    merchant_id: str,
    oauth_token: str,
    location_id: str | None,
    shop_name: str | None,
    pos_type: str = "square",
    clover_merchant_id: str | None = None,
) -> None:
    """Insert or replace the credentials row for `merchant_id`."""

    repository = OrderRepository(SessionLocal)
    if pos_type == "clover":
        repository.save_clover_credentials(
            merchant_id,
            {
                "access_token": oauth_token,
                "clover_merchant_id": clover_merchant_id,
                "shop_name": shop_name,
            },
        )
        return
    repository.save_merchant_tokens(
        merchant_id,
        {
            "oauth_token": oauth_token,
            "location_id": location_id,
            "shop_name": shop_name,
        },
    )


def main() -> None:
    """Parse CLI args and write one credentials row."""

    parser = argparse.ArgumentParser(description="Seed Square or Clover merchant credentials for local testing.")
    parser.add_argument("--merchant-id", required=True)
    parser.add_argument("--oauth-token", required=True, help="Square OAuth token or Clover access token")
    parser.add_argument("--pos-type", choices=["square", "clover"], default="square")
    parser.add_argument("--location-id", default=None)
    parser.add_argument("--clover-merchant-id", default=None)
    parser.add_argument("--shop-name", default=None)
    args = parser.parse_args()

    if settings.is_production:
        raise SystemExit("Refusing to seed merchant tokens in production")

    seed(
        args.merchant_id,
        args.oauth_token,
        args.location_id,
        args.shop_name,
        pos_type=args.pos_type,
        clover_merchant_id=args.clover_merchant_id,
    )
    print(f"Seeded {args.pos_type} credentials for merchant_id={args.merchant_id}")


if __name__ == "__main__":
    main()
