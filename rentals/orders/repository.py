"""
Chargement de la commande autoritative depuis la passerelle (Checkout Session Stripe).
- Les claims du jeton ne sont qu'un indice: le total et le flux viennent toujours de la session.
- Flux différé: le client et le moyen de paiement viennent du SetupIntent de la session.
- Flux immédiat: l'autorisation est la PaymentIntent (empreinte) de la session.
"""
import logging
from typing import Any, Dict, Optional

import stripe

from rentals.errors import InvalidOrder, OrderNotFound
from rentals.gateway import stripe_client
from rentals.orders.models import CustomerContact, Flow, Order
from rentals.orders.schedule import parse_iso_date

logger = logging.getLogger(__name__)

_TRUE = {"1", "true", "yes", "on"}

# module rentals.orders.repository
def _id_of(value: Any) -> Optional[str]:
    """Les champs Stripe peuvent être un id ou un objet étendu."""
    if isinstance(value, dict):
        return value.get("id")
    return value or None

def order_from_session(session: Dict[str, Any]) -> Order:
    """
    Construit l'Order à partir d'une Checkout Session.
    - total: metadata.total_cents, sinon amount_total
    - flux: metadata.flow, sinon mode (setup => différé, payment => immédiat)
    - livraison: metadata.dropoff_date (ou pickup_date), YYYY-MM-DD
    - InvalidOrder si total absent ou <= 0
    """
    md = session.get("metadata") or {}
    raw_total = md.get("total_cents") or session.get("amount_total")
    try:
        total = int(str(raw_total).strip()) if raw_total not in (None, "") else 0
    except ValueError:
        raise InvalidOrder("Montant total invalide", order_ref=session.get("id"))
    if total <= 0:
        raise InvalidOrder("Montant total absent ou invalide", order_ref=session.get("id"))

    mode = session.get("mode") or ""
    flow = Flow.parse(md.get("flow"), default=Flow.DEFERRED if mode == "setup" else Flow.IMMEDIATE)
    details = session.get("customer_details") or {}
    contact = CustomerContact(
        name=md.get("customer_name") or md.get("name") or details.get("name") or "",
        email=md.get("customer_email") or md.get("email") or details.get("email") or session.get("customer_email") or "",
        phone=md.get("customer_phone") or md.get("phone") or details.get("phone") or "",
    )
    auth_ref = _id_of(session.get("setup_intent")) if flow == Flow.DEFERRED else _id_of(session.get("payment_intent"))
    return Order(
        order_ref=session.get("id") or "",
        total_cents=total,
        flow=flow,
        dropoff_date=parse_iso_date(md.get("dropoff_date") or md.get("pickup_date")),
        urgent=str(md.get("urgent") or "").strip().lower() in _TRUE,
        customer=contact,
        customer_id=_id_of(session.get("customer")),
        authorization_ref=auth_ref,
    )

def fetch_order(order_ref: str, claims=None) -> Order:
    """
    Re-lit la commande autoritative (session + SetupIntent/PaymentIntent).
    - OrderNotFound si la session n'existe pas
    - Un écart entre le total du jeton et celui de la session est journalisé; la session fait foi
    """
    try:
        session = stripe_client.retrieve_checkout_session(order_ref)
    except stripe.InvalidRequestError as e:
        if stripe_client.is_missing_resource(e):
            raise OrderNotFound(order_ref=order_ref) from e
        raise
    order = order_from_session(session)

    if order.flow == Flow.DEFERRED and order.authorization_ref:
        si = stripe_client.retrieve_setup_intent(order.authorization_ref)
        order = order.model_copy(update={
            "customer_id": _id_of(si.get("customer")) or order.customer_id,
            "payment_method_id": _id_of(si.get("payment_method")),
            "authorization_released": (si.get("metadata") or {}).get(stripe_client.SETUP_INTENT_DECLINED_KEY) == "true",
        })

    if claims is not None:
        if claims.total_cents != order.total_cents:
            logger.warning(
                "orders.fetch_order total mismatch order_ref=%s token=%s authoritative=%s",
                order_ref, claims.total_cents, order.total_cents,
            )
        if not order.customer_id and claims.customer_id:
            order = order.model_copy(update={"customer_id": claims.customer_id})
    return order
