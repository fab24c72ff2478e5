#!/usr/bin/env python3
import sys
import os
import argparse
import asyncio
import json
import logging

import httpx

# Add project root to path
sys.path.append(os.getcwd())

from src.storefront.config import load_config
from src.storefront.personalization import PersonalizationClient, RequestContext, TargetClient

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("FetchOffers")


async def fetch(mboxes, url, user_agent):
    conf = load_config()
    async with httpx.AsyncClient() as http:
        client = PersonalizationClient(TargetClient.create(conf.target, http))
        context = RequestContext(url=url, user_agent=user_agent)
        return await client.get_offers(context, mboxes)


def main():
    parser = argparse.ArgumentParser(description="Request Target offers for mboxes using the configured credentials")
    parser.add_argument("mboxes", nargs="+", help="mbox names to request")
    parser.add_argument("--url", default="http://localhost:3000/", help="Page URL reported to Target")
    parser.add_argument("--user-agent", default="storefront-fetch-offers/1.0")
    args = parser.parse_args()

    result = asyncio.run(fetch(args.mboxes, args.url, args.user_agent))

    if result.is_demo:
        logger.warning("Target is not configured; only demo fallbacks were returned.")
    if result.error:
        logger.error(f"Delivery failed: {result.error}")
        sys.exit(1)

    for name, offer in result.offers.items():
        logger.info(f"{name}: type={offer.type} redirect={offer.redirect_url}")
        print(json.dumps({
            "mbox": name,
            "content": offer.content,
            "analytics": offer.analytics.to_dict() if offer.analytics else None,
        }, indent=2, default=str))


if __name__ == "__main__":
    main()
