"""
Module 'payments' (feature-first): approbation, refus et intake des commandes.
"""
from .service import ApprovalResult, DeclineResult, approve_order, approve_claims, decline_order, decline_hold, decline
from .strategies import CaptureHoldStrategy, OffSessionChargeStrategy, strategy_for
from .intake import handle_checkout_completed

__all__ = [
    "ApprovalResult",
    "DeclineResult",
    "approve_order",
    "approve_claims",
    "decline_order",
    "decline_hold",
    "decline",
    "CaptureHoldStrategy",
    "OffSessionChargeStrategy",
    "strategy_for",
    "handle_checkout_completed",
]
