"""
Taxonomie des erreurs du flux de paiement.
- Chaque erreur porte un code HTTP (status_code) et un type stable (kind) exposé au client.
- Les erreurs « terminales » (InvalidToken, ChargeFailed) ne sont jamais réessayées automatiquement.
- AlreadyCaptured / AlreadyCanceled sont des conflits d'idempotence, pas des pannes.
- NotificationFailed est toujours avalée (journalisée seulement).
"""
from typing import Any, Dict


class PaymentFlowError(Exception):
    status_code = 500
    kind = "PaymentFlowError"
    default_message = "Erreur du flux de paiement"

    def __init__(self, message: str = "", **extra: Any):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.extra: Dict[str, Any] = dict(extra)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.kind, "detail": self.message, **self.extra}


class MissingToken(PaymentFlowError):
    status_code = 400
    kind = "MissingToken"
    default_message = "Jeton requis"


class InvalidToken(PaymentFlowError):
    status_code = 401
    kind = "InvalidToken"
    default_message = "Lien expiré ou invalide"

    def __init__(self, message: str = "", reason: str = "invalid", **extra: Any):
        super().__init__(message, reason=reason, **extra)
        self.reason = reason


class InvalidOrder(PaymentFlowError):
    status_code = 400
    kind = "InvalidOrder"
    default_message = "Commande invalide"


class OrderNotFound(PaymentFlowError):
    status_code = 404
    kind = "OrderNotFound"
    default_message = "Commande introuvable"


class AlreadyCaptured(PaymentFlowError):
    status_code = 409
    kind = "AlreadyCaptured"
    default_message = "Paiement déjà encaissé"


class AlreadyCanceled(PaymentFlowError):
    status_code = 409
    kind = "AlreadyCanceled"
    default_message = "Commande déjà refusée"


class NotCapturable(PaymentFlowError):
    status_code = 409
    kind = "NotCapturable"
    default_message = "Autorisation non encaissable dans son état actuel"


class GatewayUnavailable(PaymentFlowError):
    status_code = 503
    kind = "GatewayUnavailable"
    default_message = "Passerelle de paiement indisponible, réessayer plus tard"


class ChargeFailed(PaymentFlowError):
    """
    Échec de l'encaissement immédiat.
    - declined: refus carte (le client doit mettre à jour son moyen de paiement)
    - retryable: panne transitoire (réseau, délai, 5xx, rate limit)
    Aucune obligation différée n'est écrite; un humain doit ré-approuver.
    """
    kind = "ChargeFailed"
    default_message = "Échec de l'encaissement"

    def __init__(self, message: str = "", declined: bool = False, retryable: bool = False, code: str = "", **extra: Any):
        super().__init__(message, declined=declined, retryable=retryable, code=code, **extra)
        self.declined = declined
        self.retryable = retryable
        self.code = code

    @property
    def status_code(self) -> int:
        if self.retryable:
            return 503
        return 402


class StaleRecord(PaymentFlowError):
    status_code = 409
    kind = "StaleRecord"
    default_message = "Version de l'enregistrement obsolète"


class ObligationEncodingError(PaymentFlowError):
    status_code = 500
    kind = "ObligationEncodingError"
    default_message = "Encodage de l'obligation différée invalide"


class NotificationFailed(PaymentFlowError):
    kind = "NotificationFailed"
    default_message = "Échec d'envoi de notification"
