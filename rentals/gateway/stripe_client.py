"""
Adaptateur Stripe: centralise la configuration et les primitives de paiement.
- Toute opération qui déplace de l'argent reçoit une clé d'idempotence fournie par l'appelant.
- Les erreurs Stripe sont classées: refus carte (declined) vs panne transitoire (retryable).
- Un appel bloqué expire au niveau transport (GATEWAY_TIMEOUT_SECONDS) et remonte en erreur
  réessayable, jamais en succès silencieux.
"""
import json
import logging
from typing import Any, Dict, List, Optional, Tuple

import stripe
from fastapi import Request

from rentals import config
from rentals.errors import ChargeFailed, GatewayUnavailable

logger = logging.getLogger(__name__)

_http_client = None

# module rentals.gateway.stripe_client
def require_stripe():
    """
    Prépare et retourne le module stripe prêt à l’emploi.
    - Configure stripe.api_key via STRIPE_SECRET_KEY (503 si absente).
    - Désactive les retries réseau implicites du SDK et borne le délai transport.
    """
    global _http_client
    if not config.STRIPE_SECRET_KEY:
        raise GatewayUnavailable("STRIPE_SECRET_KEY manquant")
    stripe.api_key = config.STRIPE_SECRET_KEY
    stripe.max_network_retries = 0
    if _http_client is None:
        _http_client = stripe.RequestsClient(timeout=config.GATEWAY_TIMEOUT_SECONDS)
        stripe.default_http_client = _http_client
    return stripe

def as_dict(obj: Any) -> Dict[str, Any]:
    """Convertit un objet Stripe en dict récursif (les dicts simples sont renvoyés tels quels)."""
    if obj is None:
        return {}
    if isinstance(obj, dict) and not isinstance(obj, stripe.StripeObject):
        return obj
    try:
        return json.loads(str(obj))
    except ValueError:
        return dict(obj)

def _is_transient(exc: Exception) -> bool:
    return isinstance(exc, (stripe.APIConnectionError, stripe.RateLimitError, stripe.APIError))

def classify_error(exc: Exception) -> ChargeFailed:
    """
    Traduit une erreur Stripe en ChargeFailed structuré.
    - CardError: refus (declined=True), non réessayable.
    - APIConnectionError / RateLimitError / APIError: réessayable.
    - Autres (InvalidRequestError, IdempotencyError...): terminal.
    """
    code = getattr(exc, "code", None) or ""
    message = getattr(exc, "user_message", None) or str(exc) or "Erreur passerelle"
    if isinstance(exc, stripe.CardError):
        return ChargeFailed(message, declined=True, retryable=False, code=code)
    if _is_transient(exc):
        return ChargeFailed(message, declined=False, retryable=True, code=code)
    return ChargeFailed(message, declined=False, retryable=False, code=code)

def _call(op: str, fn, *args, **kwargs):
    """Appel Stripe hors encaissement: les pannes transitoires deviennent GatewayUnavailable."""
    require_stripe()
    try:
        return fn(*args, **kwargs)
    except stripe.StripeError as e:
        if _is_transient(e):
            logger.warning("gateway.%s transient failure: %s", op, e)
            raise GatewayUnavailable(f"{op}: {e}") from e
        raise

def _charge_call(op: str, fn, *args, **kwargs):
    """Appel qui déplace de l'argent: toute erreur Stripe devient ChargeFailed (jamais un succès)."""
    require_stripe()
    try:
        return fn(*args, **kwargs)
    except stripe.StripeError as e:
        failure = classify_error(e)
        logger.warning("gateway.%s failed declined=%s retryable=%s code=%s", op, failure.declined, failure.retryable, failure.code)
        raise failure from e

def is_missing_resource(exc: Exception) -> bool:
    return isinstance(exc, stripe.InvalidRequestError) and getattr(exc, "code", "") == "resource_missing"

# --- Lecture ---------------------------------------------------------------

def retrieve_checkout_session(session_id: str) -> Dict[str, Any]:
    return as_dict(_call("retrieve_checkout_session", stripe.checkout.Session.retrieve, session_id))

def find_checkout_session_for_payment_intent(payment_intent_id: str) -> Optional[Dict[str, Any]]:
    """Retrouve la Checkout Session d'origine d'une empreinte (None si aucune)."""
    page = as_dict(_call("list_checkout_sessions", stripe.checkout.Session.list, payment_intent=payment_intent_id, limit=1))
    data = page.get("data") or []
    return data[0] if data else None

def retrieve_setup_intent(setup_intent_id: str) -> Dict[str, Any]:
    return as_dict(_call("retrieve_setup_intent", stripe.SetupIntent.retrieve, setup_intent_id))

# Marque posée sur le SetupIntent d'une commande refusée (la carte détachée ne le dit pas)
SETUP_INTENT_DECLINED_KEY = "rental_declined"

def mark_setup_intent_declined(setup_intent_id: str, *, idempotency_key: str) -> Dict[str, Any]:
    return as_dict(_call(
        "mark_setup_intent_declined",
        stripe.SetupIntent.modify,
        setup_intent_id,
        metadata={SETUP_INTENT_DECLINED_KEY: "true"},
        idempotency_key=idempotency_key,
    ))

def retrieve_payment_intent(payment_intent_id: str) -> Dict[str, Any]:
    return as_dict(_call("retrieve_payment_intent", stripe.PaymentIntent.retrieve, payment_intent_id))

def retrieve_payment_method(payment_method_id: str) -> Dict[str, Any]:
    return as_dict(_call("retrieve_payment_method", stripe.PaymentMethod.retrieve, payment_method_id))

# --- Moyen de paiement -----------------------------------------------------

def attach_payment_method(payment_method_id: str, customer_id: str) -> Dict[str, Any]:
    """
    Attache le moyen de paiement au client (idempotent: déjà attaché au même client => no-op)
    et le définit comme moyen par défaut pour les prélèvements hors session.
    """
    pm = retrieve_payment_method(payment_method_id)
    if pm.get("customer") != customer_id:
        pm = as_dict(_call("attach_payment_method", stripe.PaymentMethod.attach, payment_method_id, customer=customer_id))
    _call(
        "set_default_payment_method",
        stripe.Customer.modify,
        customer_id,
        invoice_settings={"default_payment_method": payment_method_id},
    )
    return pm

def detach_payment_method(payment_method_id: str) -> Dict[str, Any]:
    return as_dict(_call("detach_payment_method", stripe.PaymentMethod.detach, payment_method_id))

# --- Encaissement ----------------------------------------------------------

def create_off_session_charge(
    *,
    amount_cents: int,
    customer_id: str,
    payment_method_id: str,
    idempotency_key: str,
    description: str = "",
    metadata: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    """Encaissement immédiat, hors session, confirmé, sur le moyen de paiement enregistré."""
    pi = _charge_call(
        "create_off_session_charge",
        stripe.PaymentIntent.create,
        amount=int(amount_cents),
        currency=config.CURRENCY,
        customer=customer_id,
        payment_method=payment_method_id,
        off_session=True,
        confirm=True,
        description=description or None,
        metadata=metadata or {},
        idempotency_key=idempotency_key,
    )
    return as_dict(pi)

def capture_payment_intent(payment_intent_id: str, *, idempotency_key: str, amount_cents: Optional[int] = None) -> Dict[str, Any]:
    """Encaisse une empreinte existante (montant autorisé par défaut)."""
    params: Dict[str, Any] = {"idempotency_key": idempotency_key}
    if amount_cents is not None:
        params["amount_to_capture"] = int(amount_cents)
    return as_dict(_charge_call("capture_payment_intent", stripe.PaymentIntent.capture, payment_intent_id, **params))

def cancel_payment_intent(payment_intent_id: str, *, idempotency_key: str) -> Dict[str, Any]:
    return as_dict(_call("cancel_payment_intent", stripe.PaymentIntent.cancel, payment_intent_id, idempotency_key=idempotency_key))

def create_payment_link_session(
    *,
    customer_id: str,
    amount_cents: int,
    product_name: str,
    metadata: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    """Session Checkout de secours (lien de paiement) quand le prélèvement hors session est refusé."""
    session = _call(
        "create_payment_link_session",
        stripe.checkout.Session.create,
        mode="payment",
        payment_method_types=["card"],
        customer=customer_id,
        success_url=f"{config.SITE_URL}/?deposit=paid",
        cancel_url=f"{config.SITE_URL}/?deposit=cancelled",
        line_items=[{
            "price_data": {
                "currency": config.CURRENCY,
                "product_data": {"name": product_name},
                "unit_amount": int(amount_cents),
            },
            "quantity": 1,
        }],
        metadata=metadata or {},
    )
    return as_dict(session)

# --- Client (support du pseudo-store) ------------------------------------

def retrieve_customer(customer_id: str) -> Dict[str, Any]:
    return as_dict(_call("retrieve_customer", stripe.Customer.retrieve, customer_id))

def update_customer(
    customer_id: str,
    *,
    metadata: Optional[Dict[str, str]] = None,
    description: Optional[str] = None,
    idempotency_key: Optional[str] = None,
) -> Dict[str, Any]:
    params: Dict[str, Any] = {}
    if metadata is not None:
        params["metadata"] = metadata
    if description is not None:
        params["description"] = description
    if idempotency_key:
        params["idempotency_key"] = idempotency_key
    return as_dict(_call("update_customer", stripe.Customer.modify, customer_id, **params))

def list_customers(*, limit: int, starting_after: Optional[str] = None) -> Tuple[List[Dict[str, Any]], bool]:
    """Une page de clients (pas de filtre serveur possible sur les métadonnées)."""
    params: Dict[str, Any] = {"limit": int(limit)}
    if starting_after:
        params["starting_after"] = starting_after
    page = as_dict(_call("list_customers", stripe.Customer.list, **params))
    return list(page.get("data") or []), bool(page.get("has_more"))

# --- Facture du solde -----------------------------------------------------

def create_balance_invoice(
    *,
    customer_id: str,
    amount_cents: int,
    due_days: int,
    description: str,
    metadata: Dict[str, str],
    idempotency_prefix: str,
) -> Dict[str, Any]:
    """
    Crée, finalise et envoie la facture du solde (draft -> finalized -> sent).
    Chaque étape est idempotente via une clé dérivée de la référence de commande:
    une relance après crash ne produit pas de seconde facture.
    """
    invoice = _charge_call(
        "create_invoice",
        stripe.Invoice.create,
        customer=customer_id,
        collection_method="send_invoice",
        days_until_due=max(1, int(due_days)),
        auto_advance=False,
        description=description,
        metadata=metadata,
        idempotency_key=f"{idempotency_prefix}:balance-invoice",
    )
    invoice_id = as_dict(invoice).get("id")
    _charge_call(
        "create_invoice_item",
        stripe.InvoiceItem.create,
        customer=customer_id,
        invoice=invoice_id,
        currency=config.CURRENCY,
        amount=int(amount_cents),
        description=description,
        idempotency_key=f"{idempotency_prefix}:balance-item",
    )
    _charge_call(
        "finalize_invoice",
        stripe.Invoice.finalize_invoice,
        invoice_id,
        auto_advance=False,
        idempotency_key=f"{idempotency_prefix}:balance-finalize",
    )
    sent = _charge_call(
        "send_invoice",
        stripe.Invoice.send_invoice,
        invoice_id,
        idempotency_key=f"{idempotency_prefix}:balance-send",
    )
    return as_dict(sent)

# --- Webhook --------------------------------------------------------------

async def parse_event(request: Request) -> Dict[str, Any]:
    """
    Parse et valide un événement Stripe signé (webhook d'intake).
    - Lit le body brut + en-tête Stripe-Signature
    - Valide la signature via Webhook.construct_event (STRIPE_WEBHOOK_SECRET)
    Retour: l’événement sous forme de dict.
    """
    require_stripe()
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature") or request.headers.get("Stripe-Signature")
    event = stripe.Webhook.construct_event(payload, sig_header, config.STRIPE_WEBHOOK_SECRET or "")
    return as_dict(event)
