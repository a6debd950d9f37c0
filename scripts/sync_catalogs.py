#!/usr/bin/env python3
"""CLI script to run one catalog sync pass, for every installed shop or a single one."""

import argparse
import asyncio
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import structlog

from catalog_connector.bootstrap import connector_runtime
from catalog_connector.config import get_settings

logger = structlog.get_logger()


async def main(shop: str | None) -> int:
    """Main sync function."""
    settings = get_settings()

    async with connector_runtime(settings) as services:
        if shop is None:
            summary = await services.scheduler.run_once()
            logger.info("Sync pass completed", **summary.to_dict())
            return 1 if summary.failed else 0

        credential = await services.credentials.get(shop)
        if credential is None:
            logger.error("Shop is not installed", shop=shop)
            return 1
        result = await services.ingestor.sync_tenant(shop, credential.access_token)
        return 0 if result.ok else 1


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--shop", help="Only sync this shop")
    args = parser.parse_args()
    sys.exit(asyncio.run(main(args.shop)))
