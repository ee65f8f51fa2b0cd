import secrets
from typing import Optional

from fastapi import HTTPException, Request

from rentals import config

OPERATOR_HEADER = "X-Operator-Token"


def _presented_token(request: Request) -> Optional[str]:
    # En-tête dédié, fallback Bearer
    token = request.headers.get(OPERATOR_HEADER)
    if token:
        return token.strip()
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip()
    return None


def require_operator(request: Request) -> None:
    """
    Garde des routes opérateur (balayage, annulation directe d'empreinte).
    - 403 si OPERATOR_TOKEN n'est pas configuré (routes fermées par défaut)
    - 401 si le jeton présenté est absent ou différent
    """
    expected = config.OPERATOR_TOKEN
    if not expected:
        raise HTTPException(status_code=403, detail="Routes opérateur désactivées")
    presented = _presented_token(request)
    if not presented or not secrets.compare_digest(presented, expected):
        raise HTTPException(status_code=401, detail="Jeton opérateur invalide")
