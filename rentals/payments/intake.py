"""
Intake des commandes: webhook Stripe checkout.session.completed.
- Construit la commande autoritative depuis la session
- Émet les jetons Approuver / Refuser et notifie le propriétaire et le client (best-effort)
- Écrit ensuite l'enregistrement « pending_approval » dans le pseudo-store (clé {ref}:intake)
Une livraison dupliquée du même événement n'envoie pas de seconde notification; une
livraison interrompue avant l'écriture est rejouée par Stripe et notifie à nouveau.
"""
import logging
from typing import Any, Dict, Optional
from urllib.parse import urlencode

from rentals import config
from rentals.notifications import service as notifications
from rentals.orders import repository as orders_repository
from rentals.orders.models import Order, OrderStatus
from rentals.store import ObligationStore, OrderRecord, get_store
from rentals.store.codec import fit_order_blob
from rentals.tokens.service import issue_action_tokens

logger = logging.getLogger(__name__)

HANDLED_EVENT = "checkout.session.completed"


def action_urls(order: Order) -> Dict[str, str]:
    approve_token, decline_token = issue_action_tokens(order)
    base = f"{config.SITE_URL}/api/v1/orders"
    return {
        "approve": f"{base}/approve?{urlencode({'token': approve_token})}",
        "decline": f"{base}/decline?{urlencode({'token': decline_token})}",
    }


def _is_duplicate(current: Optional[OrderRecord], order: Order) -> bool:
    return current is not None and current.order_ref == order.order_ref


def _record_pending(store: ObligationStore, order: Order, current: Optional[OrderRecord]) -> None:
    if current is not None and current.status == OrderStatus.APPROVED and current.obligation and not current.obligation.settled:
        # Le solde d'une commande précédente reste prioritaire: il sera facturé avant réécriture
        logger.warning(
            "payments.intake customer=%s still owes order_ref=%s; new order_ref=%s not persisted",
            order.customer_id, current.order_ref, order.order_ref,
        )
        return
    record = OrderRecord(
        customer_id=order.customer_id,
        order_ref=order.order_ref,
        status=OrderStatus.PENDING_APPROVAL,
        flow=order.flow,
        total_cents=order.total_cents,
        blob=fit_order_blob(order.snapshot()),
        version=current.version if current else 0,
    )
    store.put(record, expected_version=record.version, idempotency_key=f"{order.order_ref}:intake")


def handle_checkout_completed(event: Dict[str, Any], store: Optional[ObligationStore] = None) -> Dict[str, Any]:
    if (event or {}).get("type") != HANDLED_EVENT:
        return {"status": "ignored"}
    session = ((event.get("data") or {}).get("object")) or {}
    order_ref = session.get("id")
    if not order_ref:
        return {"status": "ignored"}

    order = orders_repository.fetch_order(order_ref)
    current = None
    if order.customer_id:
        store = store or get_store()
        current = store.get(order.customer_id)
        if _is_duplicate(current, order):
            logger.info("payments.intake duplicate delivery order_ref=%s", order_ref)
            return {"status": "duplicate", "order_ref": order_ref}

    # Notifier avant d'écrire: une livraison n'est « traitée » qu'une fois les liens envoyés
    urls = action_urls(order)
    try:
        notifications.notify_owner_new_order(order, urls["approve"], urls["decline"])
        notifications.notify_customer_received(order)
    except Exception:
        logger.exception("payments.intake notify failed order_ref=%s", order_ref)

    if order.customer_id:
        _record_pending(store, order, current)

    logger.info("payments.intake order_ref=%s flow=%s total=%s", order_ref, order.flow.value, order.total_cents)
    return {"status": "ok", "order_ref": order_ref, "flow": order.flow.value}
