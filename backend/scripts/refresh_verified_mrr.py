"""
Re-run verified MRR for a product on behalf of its owner (support script).

Use after a maker reports a stale badge, or after a link whose first
verification failed. Runs the same refresh path as the maker's button.

Usage (from backend/):
  python -m scripts.refresh_verified_mrr --product-id <product_id>
"""
import asyncio
import argparse
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from database import database
from services.revenue_errors import RevenueVerificationError
import logging

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def run(product_id: str) -> bool:
    from services.revenue_verification import revenue_verification_service

    db = database.get_db()
    product = await db.products.find_one({"product_id": product_id}, {"_id": 0, "owner_id": 1})
    if not product:
        logger.warning("No product found with product_id=%s", product_id)
        return False

    try:
        mrr = await revenue_verification_service.refresh(product_id, product["owner_id"])
    except RevenueVerificationError as e:
        logger.error("Refresh failed for product_id=%s: %s", product_id, e.message)
        return False
    print(f"Product {product_id} verified MRR: {mrr} cents")
    return True


def main():
    parser = argparse.ArgumentParser(description="Refresh verified MRR for a product")
    parser.add_argument("--product-id", required=True, help="Product ID")
    args = parser.parse_args()

    async def _():
        await database.connect()
        try:
            return await run(args.product_id)
        finally:
            await database.close()

    ok = asyncio.run(_())
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
