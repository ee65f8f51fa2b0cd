import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from rentals.errors import PaymentFlowError
from rentals.gateway import stripe_client
from rentals.utils.rate_limit import optional_rate_limit
from rentals.utils.security import require_operator

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/orders", tags=["Orders API"])
webhook_router = APIRouter(prefix="/api/v1/payments", tags=["Payments API"])

# module rentals.payments.views
async def _token_from_request(request: Request) -> Optional[str]:
    """Jeton via ?token=... (lien email/SMS) ou corps JSON {"token": "..."}."""
    token = request.query_params.get("token")
    if token:
        return token
    if request.method == "POST":
        try:
            body = await request.json()
        except ValueError:
            return None
        if isinstance(body, dict):
            return body.get("token")
    return None

async def _approve(request: Request):
    """
    Approuve la commande portée par le jeton et déclenche l'encaissement.
    - 400 jeton manquant, 401 jeton invalide/expiré
    - 409 déjà encaissée / refusée / non encaissable
    - 402 carte refusée (lien de paiement éventuel dans payment_url), 503 passerelle indisponible
    """
    token = await _token_from_request(request)
    # Importer le module pour bénéficier des monkeypatchs de tests
    from rentals.payments import service as payments_service
    try:
        result = await run_in_threadpool(payments_service.approve_order, token)
    except PaymentFlowError:
        raise
    except Exception:
        logger.exception("Erreur approve")
        raise HTTPException(status_code=500, detail="Échec de l'approbation")
    return JSONResponse({"success": True, **result.model_dump(mode="json")})

async def _decline(request: Request):
    """Refuse la commande portée par le jeton (idempotent: un second refus renvoie already_canceled)."""
    token = await _token_from_request(request)
    from rentals.payments import service as payments_service
    try:
        result = await run_in_threadpool(payments_service.decline_order, token)
    except PaymentFlowError:
        raise
    except Exception:
        logger.exception("Erreur decline")
        raise HTTPException(status_code=500, detail="Échec du refus")
    return JSONResponse({"success": True, **result.model_dump(mode="json")})

router.add_api_route(
    "/approve", _approve, methods=["GET", "POST"], name="approve_order",
    dependencies=[Depends(optional_rate_limit(times=10, seconds=60))],
)
router.add_api_route(
    "/decline", _decline, methods=["GET", "POST"], name="decline_order",
    dependencies=[Depends(optional_rate_limit(times=10, seconds=60))],
)

@router.post("/holds/{hold_ref}/cancel", dependencies=[Depends(require_operator)])
async def cancel_hold(hold_ref: str):
    """Refus opérateur à partir d'une référence d'empreinte (PaymentIntent)."""
    from rentals.payments import service as payments_service
    try:
        result = await run_in_threadpool(payments_service.decline_hold, hold_ref)
    except PaymentFlowError:
        raise
    except Exception:
        logger.exception("Erreur cancel_hold hold_ref=%s", hold_ref)
        raise HTTPException(status_code=500, detail="Échec de l'annulation")
    return JSONResponse({"success": True, **result.model_dump(mode="json")})

@webhook_router.post("/webhook", include_in_schema=False)
async def webhook_stripe(request: Request):
    """
    Webhook Stripe d'intake: consomme checkout.session.completed.
    - Signature: stripe_client.parse_event (Stripe-Signature + STRIPE_WEBHOOK_SECRET)
    - Réponses: {"status": "ok"|"duplicate"|"ignored", ...}
    - Erreurs: 400 si signature/payload invalide; erreurs passerelle via le handler PaymentFlowError
    """
    try:
        event = await stripe_client.parse_event(request)
    except PaymentFlowError:
        raise
    except Exception:
        logger.exception("Erreur webhook_stripe signature")
        raise HTTPException(status_code=400, detail="Invalid Stripe webhook payload")

    from rentals.payments import intake
    result = await run_in_threadpool(intake.handle_checkout_completed, event)
    return JSONResponse(result)
