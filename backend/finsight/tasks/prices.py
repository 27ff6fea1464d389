"""
Scheduled price refresh tasks.

Refreshes current prices for every owner with holdings, one owner at a
time. A failing owner is logged and skipped so the others still refresh.
"""
import asyncio
import logging
from typing import Optional

from finsight.scheduler.celery_app import app
from finsight.core.database import close_db
from finsight.core.redis import close_redis
from finsight.services.portfolio_service import PortfolioService, create_portfolio_service

logger = logging.getLogger(__name__)


async def _refresh_all_async(service: Optional[PortfolioService] = None) -> dict:
    """Async implementation of the periodic refresh."""
    service = service or create_portfolio_service()
    owner_ids = await service.store.list_owner_ids()

    summary = {"owners": len(owner_ids), "refreshed": 0, "failed_owners": [], "failed_symbols": 0}
    for owner_id in owner_ids:
        try:
            result = await service.refresh_prices(owner_id)
        except Exception as e:
            logger.error(f"Price refresh failed for owner {owner_id}: {e}", exc_info=True)
            summary["failed_owners"].append(owner_id)
            continue
        summary["refreshed"] += 1
        if result.failure:
            summary["failed_symbols"] += len(result.failure.failed_symbols)

    logger.info(
        f"Price refresh complete: {summary['refreshed']}/{summary['owners']} owners, "
        f"{summary['failed_symbols']} symbols failed"
    )
    return summary


async def _refresh_owner_async(owner_id: str, service: Optional[PortfolioService] = None) -> dict:
    service = service or create_portfolio_service()
    result = await service.refresh_prices(owner_id)
    return result.to_dict()


async def _run_and_close(coro):
    # each task run gets its own event loop; pooled connections must not outlive it
    try:
        return await coro
    finally:
        await close_db()
        await close_redis()


@app.task(name="finsight.tasks.prices.refresh_all_prices")
def refresh_all_prices() -> dict:
    """Refresh prices for every owner with holdings."""
    return asyncio.run(_run_and_close(_refresh_all_async()))


@app.task(name="finsight.tasks.prices.refresh_owner_prices")
def refresh_owner_prices(owner_id: str) -> dict:
    """Refresh prices for a single owner on demand."""
    return asyncio.run(_run_and_close(_refresh_owner_async(owner_id)))
