"""
Boucle de balayage en tâche de fond (optionnelle), démarrée par le lifespan FastAPI
quand BALANCE_SWEEP_INTERVAL_SECONDS > 0. Sinon le balayage est déclenché de l'extérieur
(cron + POST /api/v1/billing/sweep, ou `python -m rentals.billing`).
"""
import asyncio
import logging

from fastapi.concurrency import run_in_threadpool

logger = logging.getLogger(__name__)


async def run_periodic_sweep(interval_seconds: int, stop: asyncio.Event) -> None:
    from rentals.billing import service as billing_service
    logger.info("billing.runner started interval=%ss", interval_seconds)
    while not stop.is_set():
        try:
            await run_in_threadpool(billing_service.sweep_due_balances)
        except Exception:
            logger.exception("billing.runner sweep failed")
        try:
            await asyncio.wait_for(stop.wait(), timeout=interval_seconds)
        except asyncio.TimeoutError:
            pass
    logger.info("billing.runner stopped")
