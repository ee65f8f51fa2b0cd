from datetime import date
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from rentals.orders.models import Flow, Order


class TokenAction(str, Enum):
    APPROVE = "approve"
    DECLINE = "decline"


class TokenClaims(BaseModel):
    """
    Instantané de commande embarqué dans le jeton.
    Indicatif uniquement: les montants sont toujours revalidés contre la commande autoritative.
    """
    order_ref: str = Field(alias="sub")
    action: TokenAction = Field(alias="act")
    total_cents: int
    dropoff_date: Optional[date] = None
    flow: Flow
    customer_id: Optional[str] = None
    auth_ref: Optional[str] = None
    name: str = ""
    email: str = ""
    phone: str = ""
    iat: Optional[int] = None
    exp: Optional[int] = None
    jti: Optional[str] = None

    model_config = {"populate_by_name": True}

    @classmethod
    def for_order(cls, order: Order, action: TokenAction) -> "TokenClaims":
        return cls(
            sub=order.order_ref,
            act=action,
            total_cents=order.total_cents,
            dropoff_date=order.dropoff_date,
            flow=order.flow,
            customer_id=order.customer_id,
            auth_ref=order.authorization_ref,
            name=order.customer.name,
            email=order.customer.email,
            phone=order.customer.phone,
        )

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "sub": self.order_ref,
            "act": self.action.value,
            "total_cents": self.total_cents,
            "dropoff_date": self.dropoff_date.isoformat() if self.dropoff_date else None,
            "flow": self.flow.value,
            "customer_id": self.customer_id,
            "auth_ref": self.auth_ref,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
        }
        return payload
