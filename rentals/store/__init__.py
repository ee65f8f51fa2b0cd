"""
Module 'store': accès aux commandes et obligations différées.
get_store() retourne l'implémentation choisie par PSEUDO_STORE_BACKEND.
"""
from rentals import config
from rentals.store.base import ObligationStore, OrderRecord, ScanItem
from rentals.store.memory import InMemoryObligationStore
from rentals.store.stripe_store import CustomerMetadataStore

_stores = {}


def get_store() -> ObligationStore:
    backend = config.PSEUDO_STORE_BACKEND or "stripe"
    store = _stores.get(backend)
    if store is None:
        if backend == "memory":
            store = InMemoryObligationStore()
        elif backend == "stripe":
            store = CustomerMetadataStore()
        else:
            raise ValueError(f"PSEUDO_STORE_BACKEND inconnu: {backend!r}")
        _stores[backend] = store
    return store


def reset_stores() -> None:
    _stores.clear()


__all__ = [
    "ObligationStore",
    "OrderRecord",
    "ScanItem",
    "InMemoryObligationStore",
    "CustomerMetadataStore",
    "get_store",
    "reset_stores",
]
