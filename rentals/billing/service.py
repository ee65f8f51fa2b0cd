"""
Balayage des soldes différés.

Le pseudo-store n'offre aucune requête serveur: chaque passage énumère tous les clients
page par page, filtre localement (approuvée, non soldée, échéance <= aujourd'hui dans le
fuseau métier), puis pour chaque obligation due:
  1) réserve l'obligation (bail claimed_by / claimed_at + version, relecture de confirmation)
  2) solde <= 0 => marquée soldée sans facture (skipped)
  3) sinon crée, finalise et envoie la facture (clés d'idempotence dérivées de la commande)
  4) marque soldée avec l'id de facture, seulement après création de la facture

Une erreur sur un enregistrement est comptée et journalisée; le balayage continue.
Crash entre facture et marquage: la relance retrouve la même facture via les clés d'idempotence.
"""
import logging
import os
import socket
import uuid
from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel

from rentals import config
from rentals.errors import PaymentFlowError
from rentals.gateway import stripe_client
from rentals.orders.models import OrderStatus
from rentals.orders.schedule import aware_utc, business_today
from rentals.store import ObligationStore, OrderRecord, get_store

logger = logging.getLogger(__name__)

SETTLED = "settled"
SKIPPED = "skipped"
CONTENDED = "contended"


class SweepSummary(BaseModel):
    today: date
    worker_id: str
    checked: int = 0
    due: int = 0
    settled: int = 0
    skipped: int = 0
    errors: int = 0


class DueBalance(BaseModel):
    customer_id: str
    order_ref: str
    amount_cents: int
    due_date: date
    due_at: Optional[datetime] = None
    claimed_by: Optional[str] = None


def default_worker_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


def settle_obligation(store: ObligationStore, record: OrderRecord, worker_id: str, now: datetime) -> str:
    """Réserve puis solde une obligation due; retourne settled / skipped / contended."""
    claimed = store.claim(record.customer_id, worker_id, now, config.CLAIM_LEASE_SECONDS)
    if claimed is None:
        logger.info("billing.settle contended customer=%s worker=%s", record.customer_id, worker_id)
        return CONTENDED
    try:
        if claimed.status != OrderStatus.APPROVED or claimed.obligation is None:
            store.release_claim(claimed.customer_id, worker_id)
            return CONTENDED

        obligation = claimed.obligation
        if obligation.amount_cents <= 0:
            store.mark_settled(claimed.customer_id, worker_id, None)
            logger.info("billing.settle zero balance customer=%s order_ref=%s", claimed.customer_id, claimed.order_ref)
            return SKIPPED

        order_ref = obligation.order_ref or claimed.order_ref or claimed.customer_id
        invoice = stripe_client.create_balance_invoice(
            customer_id=claimed.customer_id,
            amount_cents=obligation.amount_cents,
            due_days=obligation.invoice_due_days,
            description=f"Remaining balance for your {config.BUSINESS_NAME} rental",
            metadata={
                "order_ref": order_ref,
                "invoice_kind": "balance",
                "flow": claimed.flow.value if claimed.flow else "",
                "total_cents": str(claimed.total_cents),
                "deposit_cents": str(claimed.deposit_cents),
                "balance_cents": str(obligation.amount_cents),
                "dropoff_date": obligation.dropoff_date.isoformat() if obligation.dropoff_date else "",
            },
            idempotency_prefix=order_ref,
        )
        store.mark_settled(claimed.customer_id, worker_id, invoice.get("id"))
        logger.info(
            "billing.settle invoiced customer=%s order_ref=%s amount=%s invoice=%s",
            claimed.customer_id, order_ref, obligation.amount_cents, invoice.get("id"),
        )
        return SETTLED
    except Exception:
        # Libère le bail: le prochain passage réessaie, les clés d'idempotence évitent une seconde facture
        try:
            store.release_claim(claimed.customer_id, worker_id)
        except Exception:
            logger.exception("billing.settle release_claim failed customer=%s", claimed.customer_id)
        raise


def sweep_due_balances(
    now: Optional[datetime] = None,
    store: Optional[ObligationStore] = None,
    worker_id: Optional[str] = None,
    page_size: Optional[int] = None,
) -> SweepSummary:
    now = aware_utc(now)
    store = store or get_store()
    summary = SweepSummary(today=business_today(now), worker_id=worker_id or default_worker_id())

    try:
        for item in store.scan(page_size):
            summary.checked += 1
            if item.error is not None:
                summary.errors += 1
                logger.error("billing.sweep undecodable record customer=%s error=%s", item.customer_id, item.error)
                continue
            record = item.record
            if record is None or not record.is_due(summary.today):
                continue
            summary.due += 1
            try:
                outcome = settle_obligation(store, record, summary.worker_id, now)
            except Exception:
                summary.errors += 1
                logger.exception("billing.sweep settle failed customer=%s order_ref=%s", record.customer_id, record.order_ref)
                continue
            if outcome == SETTLED:
                summary.settled += 1
            else:
                summary.skipped += 1
    except PaymentFlowError:
        logger.error("billing.sweep enumeration aborted partial=%s", summary.model_dump(mode="json"))
        raise

    logger.info("billing.sweep done %s", summary.model_dump(mode="json"))
    return summary


def list_due_balances(now: Optional[datetime] = None, store: Optional[ObligationStore] = None) -> List[DueBalance]:
    """Obligations dues non soldées, sans rien facturer (lecture seule)."""
    store = store or get_store()
    today = business_today(now)
    return [
        DueBalance(
            customer_id=r.customer_id,
            order_ref=r.order_ref,
            amount_cents=r.obligation.amount_cents,
            due_date=r.obligation.due_date,
            due_at=r.obligation.due_at,
            claimed_by=r.claimed_by,
        )
        for r in store.scan_due(today)
    ]
