"""
Service de jetons de capacité (PyJWT, HS256).
- issue_token: signe l'instantané de commande avec JWT_SECRET, expiration absolue (exp).
- verify_token: rejette signature invalide, jeton expiré, claims manquants ou action différente.
- Aucune trace de consommation: un jeton reste rejouable jusqu'à expiration.
"""
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

import jwt
from pydantic import ValidationError

from rentals import config
from rentals.errors import InvalidToken, MissingToken
from rentals.orders.models import Order
from rentals.tokens.models import TokenAction, TokenClaims

logger = logging.getLogger(__name__)


def _secret() -> str:
    if not config.JWT_SECRET:
        raise RuntimeError("JWT_SECRET manquant")
    return config.JWT_SECRET


def issue_token(claims: TokenClaims, ttl: Optional[timedelta] = None, now: Optional[datetime] = None) -> str:
    issued = now or datetime.now(timezone.utc)
    lifetime = ttl if ttl is not None else timedelta(hours=config.TOKEN_TTL_HOURS)
    payload = claims.to_payload()
    payload.update({
        "iat": int(issued.timestamp()),
        "exp": int((issued + lifetime).timestamp()),
        "jti": uuid.uuid4().hex,
    })
    return jwt.encode(payload, _secret(), algorithm=config.JWT_ALGORITHM)


def issue_action_tokens(order: Order, ttl: Optional[timedelta] = None) -> Tuple[str, str]:
    """Retourne (jeton_approuver, jeton_refuser) pour la commande."""
    approve = issue_token(TokenClaims.for_order(order, TokenAction.APPROVE), ttl)
    decline = issue_token(TokenClaims.for_order(order, TokenAction.DECLINE), ttl)
    return approve, decline


def verify_token(token: Optional[str], expected_action: TokenAction) -> TokenClaims:
    """
    Vérifie le jeton et retourne ses claims.
    - MissingToken si absent
    - InvalidToken(reason=expired|invalid|malformed|action_mismatch) sinon
    """
    token = (token or "").strip()
    if not token:
        raise MissingToken()
    try:
        payload = jwt.decode(
            token,
            _secret(),
            algorithms=[config.JWT_ALGORITHM],
            options={"require": ["exp", "iat", "sub"]},
        )
    except jwt.ExpiredSignatureError:
        raise InvalidToken(reason="expired")
    except jwt.PyJWTError as e:
        logger.info("tokens.verify rejected: %s", e)
        raise InvalidToken(reason="invalid")
    try:
        claims = TokenClaims.model_validate(payload)
    except ValidationError as e:
        logger.info("tokens.verify malformed claims: %s", e.errors())
        raise InvalidToken(reason="malformed")
    if claims.action != TokenAction(expected_action):
        raise InvalidToken(reason="action_mismatch")
    return claims
