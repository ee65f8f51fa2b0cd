"""
Pseudo-store adossé au Customer Stripe (pas de base de données dédiée).

Disposition d'un enregistrement:
- metadata: drapeaux préfixés `rental_` (statut, obligation, bail, version), valeurs texte;
- description: blob d'audit ORDER_B64:<base64(zlib(json))> de l'instantané de commande.

Stripe n'offre aucun filtre/intervalle sur les métadonnées: l'énumération parcourt
tous les clients page par page (curseur starting_after) et filtre localement.
"""
import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterator, Optional

import stripe

from rentals import config
from rentals.errors import ObligationEncodingError
from rentals.gateway import stripe_client
from rentals.orders.models import DeferredObligation, Flow, ObligationStatus, OrderStatus
from rentals.store.base import ObligationStore, OrderRecord, ScanItem
from rentals.store.codec import decode_order_blob

logger = logging.getLogger(__name__)

K_ORDER_REF = "rental_order_ref"
K_STATUS = "rental_order_status"
K_FLOW = "rental_flow"
K_TOTAL = "rental_total_cents"
K_DEPOSIT = "rental_deposit_cents"
K_CHARGE_ID = "rental_charge_id"
K_INVOICE_SENT = "rental_invoice_sent"
K_SEND_AT = "rental_invoice_send_at"
K_SEND_TS = "rental_invoice_send_ts"
K_DUE_DAYS = "rental_invoice_due_days"
K_BALANCE = "rental_balance_cents"
K_DROPOFF = "rental_dropoff_date"
K_INVOICE_ID = "rental_invoice_id"
K_CLAIMED_BY = "rental_claimed_by"
K_CLAIMED_AT = "rental_claimed_at"
K_VERSION = "rental_version"

OBLIGATION_KEYS = (K_INVOICE_SENT, K_SEND_AT, K_SEND_TS, K_DUE_DAYS, K_BALANCE, K_DROPOFF, K_INVOICE_ID)

def record_to_metadata(record: OrderRecord) -> Dict[str, str]:
    """Aplatit l'enregistrement en métadonnées texte ("" efface la clé côté Stripe)."""
    md = {
        K_ORDER_REF: record.order_ref,
        K_STATUS: record.status.value,
        K_FLOW: record.flow.value if record.flow else "",
        K_TOTAL: str(record.total_cents),
        K_DEPOSIT: str(record.deposit_cents),
        K_CHARGE_ID: record.charge_id or "",
        K_CLAIMED_BY: record.claimed_by or "",
        K_CLAIMED_AT: record.claimed_at.isoformat() if record.claimed_at else "",
        K_VERSION: str(record.version),
    }
    ob = record.obligation
    if ob is None:
        md.update({k: "" for k in OBLIGATION_KEYS})
        return md
    md.update({
        K_INVOICE_SENT: "true" if ob.settled else "false",
        K_SEND_AT: ob.due_date.isoformat(),
        K_SEND_TS: str(int(ob.due_at.timestamp())) if ob.due_at else "",
        K_DUE_DAYS: str(ob.invoice_due_days),
        K_BALANCE: str(ob.amount_cents),
        K_DROPOFF: ob.dropoff_date.isoformat() if ob.dropoff_date else "",
        K_INVOICE_ID: ob.invoice_id or "",
    })
    return md

def _obligation_from_metadata(customer_id: str, md: Dict[str, Any], description: Optional[str]) -> Optional[DeferredObligation]:
    send_at = (md.get(K_SEND_AT) or "").strip()
    if not send_at:
        return None
    balance_raw = (md.get(K_BALANCE) or "").strip()
    if balance_raw:
        amount = int(balance_raw)
    else:
        # Ancien format: solde = total de l'instantané - acompte
        snapshot = decode_order_blob(description) or {}
        if "total" not in snapshot:
            raise ObligationEncodingError("Solde introuvable (ni drapeau ni blob)", customer_id=customer_id)
        amount = int(snapshot["total"]) - int(md.get(K_DEPOSIT) or 0)
    send_ts = (md.get(K_SEND_TS) or "").strip()
    dropoff = (md.get(K_DROPOFF) or "").strip()
    sent = (md.get(K_INVOICE_SENT) or "").strip().lower() == "true"
    return DeferredObligation(
        customer_id=customer_id,
        order_ref=md.get(K_ORDER_REF) or "",
        amount_cents=amount,
        due_date=date.fromisoformat(send_at[:10]),
        due_at=datetime.fromtimestamp(int(send_ts), tz=timezone.utc) if send_ts else None,
        status=ObligationStatus.SETTLED if sent else ObligationStatus.PENDING,
        dropoff_date=date.fromisoformat(dropoff[:10]) if dropoff else None,
        invoice_due_days=max(1, int(md.get(K_DUE_DAYS) or config.INVOICE_DUE_DAYS)),
        invoice_id=md.get(K_INVOICE_ID) or None,
    )

def record_from_customer(customer: Dict[str, Any]) -> Optional[OrderRecord]:
    """
    Reconstruit l'enregistrement depuis un Customer Stripe.
    - None si le client ne porte aucune commande (pas de statut).
    - ObligationEncodingError si des drapeaux sont illisibles.
    """
    md = customer.get("metadata") or {}
    raw_status = (md.get(K_STATUS) or "").strip()
    if not raw_status:
        return None
    customer_id = customer.get("id") or ""
    description = customer.get("description")
    try:
        claimed_at = (md.get(K_CLAIMED_AT) or "").strip()
        return OrderRecord(
            customer_id=customer_id,
            order_ref=md.get(K_ORDER_REF) or "",
            status=OrderStatus(raw_status),
            flow=Flow.parse(md.get(K_FLOW)) if md.get(K_FLOW) else None,
            total_cents=int(md.get(K_TOTAL) or 0),
            deposit_cents=int(md.get(K_DEPOSIT) or 0),
            charge_id=md.get(K_CHARGE_ID) or None,
            obligation=_obligation_from_metadata(customer_id, md, description),
            blob=description or None,
            claimed_by=md.get(K_CLAIMED_BY) or None,
            claimed_at=datetime.fromisoformat(claimed_at) if claimed_at else None,
            version=int(md.get(K_VERSION) or 0),
        )
    except (TypeError, ValueError) as e:
        raise ObligationEncodingError(f"Métadonnées de commande illisibles: {e}", customer_id=customer_id) from e

class CustomerMetadataStore(ObligationStore):

    def get(self, customer_id: str) -> Optional[OrderRecord]:
        try:
            customer = stripe_client.retrieve_customer(customer_id)
        except stripe.InvalidRequestError as e:
            if stripe_client.is_missing_resource(e):
                return None
            raise
        if customer.get("deleted"):
            return None
        return record_from_customer(customer)

    def _write(self, record: OrderRecord, idempotency_key: Optional[str] = None) -> OrderRecord:
        updated = stripe_client.update_customer(
            record.customer_id,
            metadata=record_to_metadata(record),
            description=record.blob,
            idempotency_key=idempotency_key,
        )
        return record_from_customer(updated) or record

    def scan(self, page_size: Optional[int] = None) -> Iterator[ScanItem]:
        size = page_size or config.SCHEDULER_PAGE_SIZE
        cursor = None
        while True:
            customers, has_more = stripe_client.list_customers(limit=size, starting_after=cursor)
            for customer in customers:
                customer_id = customer.get("id") or ""
                try:
                    yield ScanItem(customer_id=customer_id, record=record_from_customer(customer))
                except ObligationEncodingError as e:
                    yield ScanItem(customer_id=customer_id, error=e)
            if not has_more or not customers:
                break
            cursor = customers[-1].get("id")
