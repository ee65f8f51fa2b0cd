"""
Modèles de la commande et de l'obligation différée.
- Order: instantané autoritatif d'une commande (montants en centimes, jamais en float).
- DeferredObligation: solde restant à facturer à une date (calendrier du fuseau métier).
"""
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class Flow(str, Enum):
    IMMEDIATE = "immediate-settlement"
    DEFERRED = "deferred-settlement"

    @classmethod
    def parse(cls, raw: Optional[str], default: "Flow" = None) -> "Flow":
        """
        Accepte les valeurs canoniques et les alias des canaux de vente:
        - self_service / payment -> immediate-settlement
        - full_service / setup -> deferred-settlement
        """
        value = (raw or "").strip().lower().replace("_", "-")
        aliases = {
            "self-service": cls.IMMEDIATE,
            "payment": cls.IMMEDIATE,
            "immediate": cls.IMMEDIATE,
            "full-service": cls.DEFERRED,
            "setup": cls.DEFERRED,
            "deferred": cls.DEFERRED,
        }
        for member in cls:
            if member.value == value:
                return member
        if value in aliases:
            return aliases[value]
        if default is not None:
            return default
        raise ValueError(f"Flux inconnu: {raw!r}")


class AuthorizationState(str, Enum):
    PENDING = "pending"
    REQUIRES_CAPTURE = "requires-capture"
    CAPTURED = "captured"
    CANCELED = "canceled"


class OrderStatus(str, Enum):
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    DECLINED = "declined"


class ObligationStatus(str, Enum):
    PENDING = "pending"
    SETTLED = "settled"


class CustomerContact(BaseModel):
    name: str = ""
    email: str = ""
    phone: str = ""


class Order(BaseModel):
    model_config = ConfigDict(frozen=True)

    order_ref: str
    total_cents: int
    flow: Flow
    dropoff_date: Optional[date] = None
    urgent: bool = False
    customer: CustomerContact = Field(default_factory=CustomerContact)
    customer_id: Optional[str] = None
    authorization_ref: Optional[str] = None
    payment_method_id: Optional[str] = None
    authorization_released: bool = False

    def snapshot(self) -> Dict[str, Any]:
        """Instantané compact pour le blob d'audit du pseudo-store."""
        return {
            "ref": self.order_ref,
            "total": self.total_cents,
            "flow": self.flow.value,
            "dropoff": self.dropoff_date.isoformat() if self.dropoff_date else None,
            "urgent": self.urgent,
            "name": self.customer.name,
            "email": self.customer.email,
            "phone": self.customer.phone,
            "auth": self.authorization_ref,
        }


class ChargeSplit(BaseModel):
    total_cents: int
    pay_fraction: float
    charge_now_cents: int
    remaining_cents: int
    urgent: bool


class DeferredObligation(BaseModel):
    customer_id: str
    order_ref: str
    amount_cents: int
    due_date: date
    due_at: Optional[datetime] = None
    status: ObligationStatus = ObligationStatus.PENDING
    dropoff_date: Optional[date] = None
    invoice_due_days: int = 2
    invoice_id: Optional[str] = None

    @property
    def settled(self) -> bool:
        return self.status == ObligationStatus.SETTLED
