"""
Cas d'usage 'payments': approbation (encaissement + solde différé) et refus d'une commande.

Approbation:
  1) vérifier le jeton (action=approve) puis re-lire la commande autoritative
  2) refuser si déjà encaissée / annulée / non encaissable
  3) calculer la répartition (acompte ou 100%) dans le calendrier du fuseau métier
  4) encaisser via la stratégie du flux (clé d'idempotence {ref}:immediate)
  5) si solde > 0 en flux différé: persister l'obligation (clé {ref}:deferred)
  6) notifier le client (best-effort) et retourner le résultat

Aucune relance automatique: un échec d'encaissement remonte (ChargeFailed) et
aucune obligation n'est écrite.
"""
import logging
from datetime import date, datetime
from typing import Optional

import stripe
from pydantic import BaseModel

from rentals import config
from rentals.errors import (
    AlreadyCanceled,
    AlreadyCaptured,
    ChargeFailed,
    NotCapturable,
    OrderNotFound,
    PaymentFlowError,
    StaleRecord,
)
from rentals.gateway import stripe_client
from rentals.notifications import service as notifications
from rentals.orders import repository as orders_repository
from rentals.orders.models import AuthorizationState, DeferredObligation, Flow, Order, OrderStatus
from rentals.orders.schedule import balance_due_at, balance_due_date, compute_charge_split
from rentals.payments.strategies import strategy_for
from rentals.store import ObligationStore, OrderRecord, get_store
from rentals.store.codec import fit_order_blob
from rentals.tokens.models import TokenAction, TokenClaims
from rentals.tokens.service import verify_token

logger = logging.getLogger(__name__)


class ApprovalResult(BaseModel):
    order_ref: str
    flow: Flow
    charge_id: str
    charged_cents: int
    remaining_cents: int
    urgent: bool
    obligation_ref: Optional[str] = None
    due_date: Optional[date] = None
    due_at: Optional[datetime] = None


class DeclineResult(BaseModel):
    order_ref: str
    flow: Flow
    already_canceled: bool = False


def _notify(fn, *args, **kwargs) -> None:
    """Les notifications ne bloquent jamais le flux de paiement."""
    try:
        fn(*args, **kwargs)
    except Exception:
        logger.exception("payments.notify %s failed", getattr(fn, "__name__", fn))


def _has_pending_balance(record: Optional[OrderRecord]) -> bool:
    return bool(record and record.status == OrderStatus.APPROVED and record.obligation and not record.obligation.settled)


def _current_record(store: ObligationStore, order: Order, strict: bool = True) -> Optional[OrderRecord]:
    """
    Enregistrement du client pour CETTE commande.
    - None si la commande n'a pas de client passerelle (rien à persister)
    - enregistrement vierge, à la version courante, si le client porte une autre commande
    - solde en attente d'une autre commande: NotCapturable (strict) ou None (jamais écrasé)
    """
    if not order.customer_id:
        return None
    record = store.get(order.customer_id)
    if record is None:
        return OrderRecord(customer_id=order.customer_id)
    if record.order_ref == order.order_ref:
        return record
    if _has_pending_balance(record):
        if strict:
            raise NotCapturable(
                "Un solde différé est déjà en attente pour ce client",
                order_ref=order.order_ref,
                pending_order_ref=record.order_ref,
            )
        logger.warning("payments.decline keeps pending balance of order_ref=%s customer=%s", record.order_ref, order.customer_id)
        return None
    return OrderRecord(customer_id=order.customer_id, version=record.version)


def _offer_payment_link(order: Order, amount_cents: int, failure: ChargeFailed) -> None:
    """Prélèvement refusé: envoie un lien de paiement au client (best-effort)."""
    if not order.customer_id:
        return
    product = "Rental payment" if amount_cents >= order.total_cents else f"Deposit ({int(config.DEPOSIT_FRACTION * 100)}%)"
    try:
        session = stripe_client.create_payment_link_session(
            customer_id=order.customer_id,
            amount_cents=amount_cents,
            product_name=product,
            metadata={"order_ref": order.order_ref, "flow": order.flow.value},
        )
    except (PaymentFlowError, stripe.StripeError):
        logger.exception("payments.approve payment link failed order_ref=%s", order.order_ref)
        return
    url = session.get("url")
    if url:
        failure.extra["payment_url"] = url
        _notify(notifications.notify_customer_payment_link, order, amount_cents, url)


# module rentals.payments.service
def approve_order(token: Optional[str], *, now: Optional[datetime] = None, store: Optional[ObligationStore] = None) -> ApprovalResult:
    claims = verify_token(token, TokenAction.APPROVE)
    return approve_claims(claims, now=now, store=store)


def approve_claims(claims: TokenClaims, *, now: Optional[datetime] = None, store: Optional[ObligationStore] = None) -> ApprovalResult:
    store = store or get_store()
    order = orders_repository.fetch_order(claims.order_ref, claims)
    strategy = strategy_for(order)
    record = _current_record(store, order)

    state = strategy.authorization_state(order, record)
    if state == AuthorizationState.CAPTURED:
        raise AlreadyCaptured(order_ref=order.order_ref)
    if state == AuthorizationState.CANCELED:
        raise AlreadyCanceled("Commande refusée: approbation impossible", order_ref=order.order_ref)
    if state != AuthorizationState.REQUIRES_CAPTURE:
        raise NotCapturable(order_ref=order.order_ref, state=state.value)

    split = compute_charge_split(order, now)
    # Encodé avant tout mouvement d'argent; un instantané trop long est réduit, jamais bloquant
    blob = fit_order_blob(order.snapshot()) if order.customer_id else None

    try:
        charge = strategy.charge(order, split.charge_now_cents)
    except ChargeFailed as failure:
        logger.warning(
            "payments.approve charge failed order_ref=%s declined=%s retryable=%s code=%s",
            order.order_ref, failure.declined, failure.retryable, failure.code,
        )
        if failure.declined and order.flow == Flow.DEFERRED:
            _offer_payment_link(order, split.charge_now_cents, failure)
        raise

    remaining = max(0, split.total_cents - charge.amount_cents)
    obligation = None
    if remaining > 0 and order.flow == Flow.DEFERRED and order.dropoff_date is not None:
        obligation = DeferredObligation(
            customer_id=order.customer_id,
            order_ref=order.order_ref,
            amount_cents=remaining,
            due_date=balance_due_date(order.dropoff_date),
            due_at=balance_due_at(order.dropoff_date),
            dropoff_date=order.dropoff_date,
            invoice_due_days=max(1, config.INVOICE_DUE_DAYS),
        )

    if record is not None:
        _persist_approval(store, order, record, charge.charge_id, charge.amount_cents, obligation, blob)

    logger.info(
        "payments.approve order_ref=%s flow=%s charged=%s remaining=%s charge_id=%s",
        order.order_ref, order.flow.value, charge.amount_cents, remaining, charge.charge_id,
    )
    _notify(
        notifications.notify_customer_approved,
        order,
        charge.amount_cents,
        obligation.amount_cents if obligation else 0,
        obligation.due_date if obligation else None,
    )
    return ApprovalResult(
        order_ref=order.order_ref,
        flow=order.flow,
        charge_id=charge.charge_id,
        charged_cents=charge.amount_cents,
        remaining_cents=obligation.amount_cents if obligation else 0,
        urgent=split.urgent,
        obligation_ref=order.customer_id if obligation else None,
        due_date=obligation.due_date if obligation else None,
        due_at=obligation.due_at if obligation else None,
    )


def _persist_approval(store, order, record, charge_id, charged_cents, obligation, blob) -> None:
    updated = record.model_copy(update={
        "order_ref": order.order_ref,
        "status": OrderStatus.APPROVED,
        "flow": order.flow,
        "total_cents": order.total_cents,
        "deposit_cents": charged_cents,
        "charge_id": charge_id,
        "obligation": obligation,
        "blob": blob,
        "claimed_by": None,
        "claimed_at": None,
    })
    try:
        store.put(updated, expected_version=record.version, idempotency_key=f"{order.order_ref}:deferred")
    except StaleRecord:
        # Approbation concurrente: la même clé {ref}:immediate a garanti un seul encaissement
        current = store.get(order.customer_id)
        if current and current.order_ref == order.order_ref and current.status == OrderStatus.APPROVED:
            raise AlreadyCaptured(order_ref=order.order_ref, charge_id=charge_id)
        logger.error("payments.approve store conflict after charge order_ref=%s charge_id=%s", order.order_ref, charge_id)
        raise
    except Exception:
        logger.exception(
            "payments.approve persist failed AFTER charge order_ref=%s charge_id=%s amount=%s (reconciliation required)",
            order.order_ref, charge_id, charged_cents,
        )
        raise


def decline_order(token: Optional[str], *, store: Optional[ObligationStore] = None) -> DeclineResult:
    claims = verify_token(token, TokenAction.DECLINE)
    order = orders_repository.fetch_order(claims.order_ref, claims)
    return decline(order, store=store)


def decline_hold(hold_ref: str, *, store: Optional[ObligationStore] = None) -> DeclineResult:
    """Refus direct à partir d'une référence d'empreinte (PaymentIntent)."""
    session = stripe_client.find_checkout_session_for_payment_intent(hold_ref)
    if session is None:
        raise OrderNotFound("Aucune commande pour cette empreinte", hold_ref=hold_ref)
    order = orders_repository.order_from_session(session)
    if not order.authorization_ref:
        order = order.model_copy(update={"authorization_ref": hold_ref})
    return decline(order, store=store)


def decline(order: Order, *, store: Optional[ObligationStore] = None) -> DeclineResult:
    """
    Libère l'autorisation, de manière idempotente.
    - Déjà encaissée => AlreadyCaptured (409): on ne refuse pas une commande payée.
    - Déjà annulée => succès sans ré-annulation ni nouvelle notification.
    """
    store = store or get_store()
    strategy = strategy_for(order)
    record = _current_record(store, order, strict=False)

    state = strategy.authorization_state(order, record)
    if state == AuthorizationState.CAPTURED:
        raise AlreadyCaptured("Commande déjà encaissée: refus impossible", order_ref=order.order_ref)
    if state == AuthorizationState.CANCELED:
        logger.info("payments.decline already canceled order_ref=%s", order.order_ref)
        return DeclineResult(order_ref=order.order_ref, flow=order.flow, already_canceled=True)

    strategy.release(order)

    if record is not None:
        updated = record.model_copy(update={
            "order_ref": order.order_ref,
            "status": OrderStatus.DECLINED,
            "flow": order.flow,
            "total_cents": order.total_cents,
            "obligation": None,
        })
        store.put(updated, expected_version=record.version, idempotency_key=f"{order.order_ref}:decline")

    logger.info("payments.decline order_ref=%s flow=%s", order.order_ref, order.flow.value)
    _notify(notifications.notify_customer_declined, order)
    return DeclineResult(order_ref=order.order_ref, flow=order.flow)
