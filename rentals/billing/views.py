import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from rentals.errors import PaymentFlowError
from rentals.utils.security import require_operator

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/billing", tags=["Billing API"], dependencies=[Depends(require_operator)])

# module rentals.billing.views
@router.post("/sweep")
async def trigger_sweep():
    """
    Déclencheur du balayage (cron externe).
    Retour: {"checked", "due", "settled", "skipped", "errors", "today", "worker_id"}
    """
    from rentals.billing import service as billing_service
    try:
        summary = await run_in_threadpool(billing_service.sweep_due_balances)
    except PaymentFlowError:
        raise
    except Exception:
        logger.exception("Erreur trigger_sweep")
        raise HTTPException(status_code=500, detail="Échec du balayage")
    return JSONResponse(summary.model_dump(mode="json"))

@router.get("/due")
async def due_balances():
    """Soldes dus non facturés (lecture seule)."""
    from rentals.billing import service as billing_service
    try:
        due = await run_in_threadpool(billing_service.list_due_balances)
    except PaymentFlowError:
        raise
    except Exception:
        logger.exception("Erreur due_balances")
        raise HTTPException(status_code=500, detail="Lecture des soldes impossible")
    return JSONResponse({"due": [d.model_dump(mode="json") for d in due], "count": len(due)})
