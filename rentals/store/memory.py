"""
Store en mémoire (dev local, tests). Même contrat que le pseudo-store Stripe,
avec une écriture conditionnelle atomique sous verrou.
"""
import threading
from typing import Dict, Iterator, List, Optional

from rentals.store.base import ObligationStore, OrderRecord, ScanItem


class InMemoryObligationStore(ObligationStore):

    def __init__(self, records: Optional[List[OrderRecord]] = None):
        self._lock = threading.RLock()
        self._records: Dict[str, OrderRecord] = {}
        # Clés d'idempotence déjà appliquées (rejouer une écriture => même résultat)
        self._applied: Dict[str, OrderRecord] = {}
        for r in records or []:
            self._records[r.customer_id] = r.model_copy(deep=True)

    def get(self, customer_id: str) -> Optional[OrderRecord]:
        with self._lock:
            record = self._records.get(customer_id)
            return record.model_copy(deep=True) if record else None

    def _write(self, record: OrderRecord, idempotency_key: Optional[str] = None) -> OrderRecord:
        with self._lock:
            if idempotency_key and idempotency_key in self._applied:
                return self._applied[idempotency_key].model_copy(deep=True)
            self._records[record.customer_id] = record.model_copy(deep=True)
            if idempotency_key:
                self._applied[idempotency_key] = record.model_copy(deep=True)
            return record.model_copy(deep=True)

    def put(self, record: OrderRecord, *, expected_version: Optional[int] = None, idempotency_key: Optional[str] = None) -> OrderRecord:
        with self._lock:
            return super().put(record, expected_version=expected_version, idempotency_key=idempotency_key)

    def scan(self, page_size: Optional[int] = None) -> Iterator[ScanItem]:
        with self._lock:
            snapshot = [r.model_copy(deep=True) for r in self._records.values()]
        for record in snapshot:
            yield ScanItem(customer_id=record.customer_id, record=record)
