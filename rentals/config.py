# rentals.config
from pathlib import Path
import os
from dotenv import load_dotenv

# Calculer le chemin du projet puis charger .env de manière explicite
BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"
load_dotenv(dotenv_path=ENV_PATH, override=True)

"""
Configuration centrale du service de commandes de location.

- Charge le fichier .env à la racine du projet (BASE_DIR/.env)
- Normalise et expose les secrets (Stripe, JWT, opérateur) et les paramètres métier
  (fuseau horaire, acompte, heure de prélèvement du solde, délai de facture)
- Expose les réglages du pseudo-store (métadonnées Customer Stripe) et du balayage périodique
- Les modules lisent `config.X` au moment de l'appel (monkeypatch facile en tests)
"""

def _clean_env(v: str) -> str:
    """
    Nettoie une valeur d'environnement:
    - supprime les espaces et guillemets (simples, doubles) et backticks
    - retourne toujours une chaîne (jamais None)
    """
    return (v or "").strip().strip("'").strip('"').strip("`")

def _env_int(name: str, default: int) -> int:
    raw = _clean_env(os.getenv(name) or "")
    try:
        return int(raw) if raw else default
    except ValueError:
        return default

def _env_float(name: str, default: float) -> float:
    raw = _clean_env(os.getenv(name) or "")
    try:
        return float(raw) if raw else default
    except ValueError:
        return default

# Stripe: clé secrète et secret du webhook d'intake (checkout.session.completed)
STRIPE_SECRET_KEY = _clean_env(os.getenv("STRIPE_SECRET_KEY") or "")
STRIPE_WEBHOOK_SECRET = _clean_env(os.getenv("STRIPE_WEBHOOK_SECRET") or "")
# Délai réseau max d'un appel Stripe (secondes); un dépassement remonte en 503 « réessayable »
GATEWAY_TIMEOUT_SECONDS = _env_float("GATEWAY_TIMEOUT_SECONDS", 20.0)
CURRENCY = _clean_env(os.getenv("CURRENCY") or "usd").lower()

# Jetons de capacité (liens Approuver / Refuser envoyés au propriétaire)
JWT_SECRET = _clean_env(os.getenv("JWT_SECRET") or "")
JWT_ALGORITHM = "HS256"
TOKEN_TTL_HOURS = _env_int("TOKEN_TTL_HOURS", 24)

# Règles métier
BUSINESS_NAME = os.getenv("BUSINESS_NAME", "Rentals")
BUSINESS_TIMEZONE = _clean_env(os.getenv("BUSINESS_TIMEZONE") or "America/New_York")
DEPOSIT_FRACTION = _env_float("DEPOSIT_FRACTION", 0.30)
# Le solde est dû la veille de la livraison à cette heure locale
BALANCE_CHARGE_LOCAL_HOUR = _env_int("BALANCE_CHARGE_LOCAL_HOUR", 10)
INVOICE_DUE_DAYS = _env_int("INVOICE_DUE_DAYS", 2)

# Pseudo-store: "stripe" (métadonnées Customer) ou "memory" (dev/tests)
PSEUDO_STORE_BACKEND = _clean_env(os.getenv("PSEUDO_STORE_BACKEND") or "stripe").lower()
PSEUDO_STORE_BLOB_MAX_CHARS = _env_int("PSEUDO_STORE_BLOB_MAX_CHARS", 5000)

# Balayage des soldes différés
SCHEDULER_PAGE_SIZE = _env_int("SCHEDULER_PAGE_SIZE", 100)
CLAIM_LEASE_SECONDS = _env_int("CLAIM_LEASE_SECONDS", 300)
# 0 = pas de boucle interne (déclenchement externe: cron, /api/v1/billing/sweep)
BALANCE_SWEEP_INTERVAL_SECONDS = _env_int("BALANCE_SWEEP_INTERVAL_SECONDS", 0)
# Secret partagé des routes opérateur (déclencheur du balayage, annulation directe d'empreinte)
OPERATOR_TOKEN = _clean_env(os.getenv("OPERATOR_TOKEN") or "")

# Notifications (best-effort): Resend (email) et Twilio (SMS)
RESEND_API_KEY = _clean_env(os.getenv("RESEND_API_KEY") or "")
FROM_EMAIL = _clean_env(os.getenv("FROM_EMAIL") or "")
OWNER_EMAIL = _clean_env(os.getenv("OWNER_EMAIL") or "")
TWILIO_ACCOUNT_SID = _clean_env(os.getenv("TWILIO_ACCOUNT_SID") or "")
TWILIO_AUTH_TOKEN = _clean_env(os.getenv("TWILIO_AUTH_TOKEN") or "")
TWILIO_PHONE_NUMBER = _clean_env(os.getenv("TWILIO_PHONE_NUMBER") or "")
OWNER_PHONE = _clean_env(os.getenv("OWNER_PHONE") or "")
NOTIFICATION_TIMEOUT_SECONDS = _env_float("NOTIFICATION_TIMEOUT_SECONDS", 10.0)

# URL publique (liens Approuver/Refuser, liens de paiement)
SITE_URL = _clean_env(os.getenv("SITE_URL") or "http://localhost:8000").rstrip("/")

# CORS / hôtes
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
ALLOWED_HOSTS = [h.strip() for h in os.getenv("ALLOWED_HOSTS", "localhost,127.0.0.1").split(",") if h.strip()]
