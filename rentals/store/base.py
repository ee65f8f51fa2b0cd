"""
Abstraction de stockage des commandes et obligations différées (get / put / scan / scan_due).
- L'orchestrateur et le balayage ne dépendent que de cette interface; l'implémentation
  intérimaire s'appuie sur les métadonnées Customer Stripe (stripe_store), remplaçable
  par une vraie base sans toucher à la logique métier.
- Concurrence optimiste: chaque écriture incrémente `version`; une écriture avec
  `expected_version` obsolète est rejetée (StaleRecord).
- Bail de réservation (claimed_by / claimed_at) pour que deux balayages concurrents
  ne facturent pas la même obligation.
"""
import logging
from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta
from typing import Any, Dict, Iterator, Optional

from pydantic import BaseModel, ConfigDict

from rentals.errors import OrderNotFound, StaleRecord
from rentals.orders.models import DeferredObligation, Flow, ObligationStatus, OrderStatus
from rentals.store.codec import decode_order_blob

logger = logging.getLogger(__name__)


class OrderRecord(BaseModel):
    customer_id: str
    order_ref: str = ""
    status: OrderStatus = OrderStatus.PENDING_APPROVAL
    flow: Optional[Flow] = None
    total_cents: int = 0
    deposit_cents: int = 0
    charge_id: Optional[str] = None
    obligation: Optional[DeferredObligation] = None
    blob: Optional[str] = None
    claimed_by: Optional[str] = None
    claimed_at: Optional[datetime] = None
    version: int = 0

    def snapshot(self) -> Optional[Dict[str, Any]]:
        return decode_order_blob(self.blob)

    def is_due(self, today: date) -> bool:
        """Approuvée, non soldée et échéance atteinte (comparaison de dates calendaires)."""
        if self.status != OrderStatus.APPROVED or self.obligation is None:
            return False
        if self.obligation.settled:
            return False
        return self.obligation.due_date <= today

    def claim_active(self, now: datetime, lease_seconds: int) -> bool:
        if not self.claimed_by or self.claimed_at is None:
            return False
        return now - self.claimed_at < timedelta(seconds=lease_seconds)


class ScanItem(BaseModel):
    """Résultat d'énumération: un enregistrement décodé, ou l'erreur de décodage associée."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    customer_id: str
    record: Optional[OrderRecord] = None
    error: Optional[Exception] = None


class ObligationStore(ABC):

    @abstractmethod
    def get(self, customer_id: str) -> Optional[OrderRecord]:
        ...

    @abstractmethod
    def _write(self, record: OrderRecord, idempotency_key: Optional[str] = None) -> OrderRecord:
        ...

    @abstractmethod
    def scan(self, page_size: Optional[int] = None) -> Iterator[ScanItem]:
        """Énumère TOUS les enregistrements (pas de requête côté serveur)."""
        ...

    def put(self, record: OrderRecord, *, expected_version: Optional[int] = None, idempotency_key: Optional[str] = None) -> OrderRecord:
        """Écrit l'enregistrement en incrémentant sa version; rejette une version observée obsolète."""
        base_version = record.version
        if expected_version is not None:
            current = self.get(record.customer_id)
            current_version = current.version if current else 0
            if current_version != expected_version:
                raise StaleRecord(
                    "Enregistrement modifié entre-temps",
                    customer_id=record.customer_id,
                    expected=expected_version,
                    actual=current_version,
                )
            base_version = expected_version
        return self._write(record.model_copy(update={"version": base_version + 1}), idempotency_key)

    def scan_due(self, today: date, page_size: Optional[int] = None) -> Iterator[OrderRecord]:
        for item in self.scan(page_size):
            if item.error is not None:
                logger.error("store.scan_due undecodable record customer=%s error=%s", item.customer_id, item.error)
                continue
            if item.record is not None and item.record.is_due(today):
                yield item.record

    def claim(self, customer_id: str, worker_id: str, now: datetime, lease_seconds: int) -> Optional[OrderRecord]:
        """
        Réserve l'obligation pour ce worker puis relit pour confirmer la propriété.
        Retourne None si déjà soldée, réservée par un autre worker (bail non expiré) ou perdue en course.
        """
        record = self.get(customer_id)
        if record is None or record.obligation is None or record.obligation.settled:
            return None
        if record.claim_active(now, lease_seconds) and record.claimed_by != worker_id:
            return None
        claimed = record.model_copy(update={"claimed_by": worker_id, "claimed_at": now})
        try:
            self.put(claimed, expected_version=record.version)
        except StaleRecord:
            return None
        confirmed = self.get(customer_id)
        if confirmed is None or confirmed.claimed_by != worker_id:
            return None
        return confirmed

    def release_claim(self, customer_id: str, worker_id: str) -> None:
        record = self.get(customer_id)
        if record is None or record.claimed_by != worker_id:
            return
        self.put(record.model_copy(update={"claimed_by": None, "claimed_at": None}), expected_version=record.version)

    def mark_settled(self, customer_id: str, worker_id: str, invoice_id: Optional[str] = None) -> OrderRecord:
        """Re-vérifie l'état juste avant de solder; déjà soldée => no-op."""
        current = self.get(customer_id)
        if current is None or current.obligation is None:
            raise OrderNotFound("Obligation introuvable", customer_id=customer_id)
        if current.obligation.settled:
            return current
        if current.claimed_by and current.claimed_by != worker_id:
            logger.warning("store.mark_settled claim lost customer=%s holder=%s worker=%s", customer_id, current.claimed_by, worker_id)
        obligation = current.obligation.model_copy(update={"status": ObligationStatus.SETTLED, "invoice_id": invoice_id})
        updated = current.model_copy(update={"obligation": obligation, "claimed_by": None, "claimed_at": None})
        return self.put(updated, expected_version=current.version)
