"""
Module 'tokens': jetons de capacité signés (liens Approuver / Refuser).
"""
from .models import TokenAction, TokenClaims
from .service import issue_token, issue_action_tokens, verify_token

__all__ = [
    "TokenAction",
    "TokenClaims",
    "issue_token",
    "issue_action_tokens",
    "verify_token",
]
