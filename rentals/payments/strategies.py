"""
Stratégies d'encaissement, choisies selon le flux de la commande.
- CaptureHoldStrategy (flux immédiat): capture l'empreinte PaymentIntent existante.
- OffSessionChargeStrategy (flux différé): prélèvement hors session sur la carte enregistrée.
Les deux partagent la même logique de décision et de planification (payments.service).
"""
import logging

import stripe
from pydantic import BaseModel

from rentals.errors import ChargeFailed, NotCapturable
from rentals.gateway import stripe_client
from rentals.orders.models import AuthorizationState, Flow, Order, OrderStatus

logger = logging.getLogger(__name__)

_PI_STATES = {
    "requires_capture": AuthorizationState.REQUIRES_CAPTURE,
    "succeeded": AuthorizationState.CAPTURED,
    "canceled": AuthorizationState.CANCELED,
}


def immediate_key(order: Order) -> str:
    return f"{order.order_ref}:immediate"


class ChargeResult(BaseModel):
    charge_id: str
    amount_cents: int
    status: str


class CaptureHoldStrategy:
    name = "capture_hold"

    def _hold_ref(self, order: Order) -> str:
        if not order.authorization_ref:
            raise NotCapturable("Aucune empreinte associée à la commande", order_ref=order.order_ref)
        return order.authorization_ref

    def authorization_state(self, order: Order, record=None) -> AuthorizationState:
        pi = stripe_client.retrieve_payment_intent(self._hold_ref(order))
        return _PI_STATES.get(pi.get("status") or "", AuthorizationState.PENDING)

    def charge(self, order: Order, amount_cents: int) -> ChargeResult:
        """Capture le montant autorisé de l'empreinte."""
        pi = stripe_client.capture_payment_intent(self._hold_ref(order), idempotency_key=immediate_key(order))
        return ChargeResult(
            charge_id=pi.get("id") or order.authorization_ref,
            amount_cents=int(pi.get("amount_received") or amount_cents),
            status=pi.get("status") or "",
        )

    def release(self, order: Order) -> None:
        stripe_client.cancel_payment_intent(self._hold_ref(order), idempotency_key=f"{order.order_ref}:cancel")


class OffSessionChargeStrategy:
    """
    Le « hold » est la carte enregistrée via SetupIntent: son état se lit dans
    l'enregistrement du pseudo-store (approved => encaissé, declined => annulé),
    puis dans la marque de refus du SetupIntent quand le client porte une autre commande.
    """
    name = "off_session_charge"

    def authorization_state(self, order: Order, record=None) -> AuthorizationState:
        if record is not None and record.order_ref == order.order_ref:
            if record.status == OrderStatus.APPROVED:
                return AuthorizationState.CAPTURED
            if record.status == OrderStatus.DECLINED:
                return AuthorizationState.CANCELED
        if order.authorization_released:
            return AuthorizationState.CANCELED
        if not order.payment_method_id:
            return AuthorizationState.PENDING
        return AuthorizationState.REQUIRES_CAPTURE

    def charge(self, order: Order, amount_cents: int) -> ChargeResult:
        if not order.customer_id or not order.payment_method_id:
            raise NotCapturable("Client ou moyen de paiement manquant sur le SetupIntent", order_ref=order.order_ref)
        try:
            stripe_client.attach_payment_method(order.payment_method_id, order.customer_id)
        except stripe.StripeError as e:
            # Une carte refusée à l'attachement est un refus, pas une panne
            raise stripe_client.classify_error(e) from e
        pi = stripe_client.create_off_session_charge(
            amount_cents=amount_cents,
            customer_id=order.customer_id,
            payment_method_id=order.payment_method_id,
            idempotency_key=immediate_key(order),
            description="Rental payment" if amount_cents >= order.total_cents else "Rental deposit",
            metadata={"order_ref": order.order_ref, "flow": order.flow.value},
        )
        status = pi.get("status") or ""
        if status not in ("succeeded", "processing"):
            raise ChargeFailed("Prélèvement non confirmé", declined=True, retryable=False, code=status)
        return ChargeResult(charge_id=pi.get("id") or "", amount_cents=int(pi.get("amount") or amount_cents), status=status)

    def release(self, order: Order) -> None:
        if order.payment_method_id:
            try:
                stripe_client.detach_payment_method(order.payment_method_id)
            except stripe.InvalidRequestError as e:
                # Déjà détachée ou supprimée
                logger.info("payments.release detach skipped pm=%s error=%s", order.payment_method_id, e)
        if order.authorization_ref:
            stripe_client.mark_setup_intent_declined(order.authorization_ref, idempotency_key=f"{order.order_ref}:release")


def strategy_for(order: Order):
    if order.flow == Flow.DEFERRED:
        return OffSessionChargeStrategy()
    return CaptureHoldStrategy()
