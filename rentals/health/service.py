import socket

from rentals import config

STRIPE_API_HOST = "api.stripe.com"


def _dns_check(hostname: str):
    try:
        socket.getaddrinfo(hostname, 443)
        return True, None
    except OSError as e:
        return False, str(e)


def health_gateway_info():
    """Configuration effective (sans secrets) et résolution DNS de la passerelle."""
    dns_ok, dns_error = _dns_check(STRIPE_API_HOST)
    return {
        "stripe_configured": bool(config.STRIPE_SECRET_KEY),
        "webhook_configured": bool(config.STRIPE_WEBHOOK_SECRET),
        "jwt_configured": bool(config.JWT_SECRET),
        "operator_routes_enabled": bool(config.OPERATOR_TOKEN),
        "store_backend": config.PSEUDO_STORE_BACKEND,
        "business_timezone": config.BUSINESS_TIMEZONE,
        "deposit_fraction": config.DEPOSIT_FRACTION,
        "sweep_interval_seconds": config.BALANCE_SWEEP_INTERVAL_SECONDS,
        "notifications": {
            "email": bool(config.RESEND_API_KEY and config.FROM_EMAIL),
            "sms": bool(config.TWILIO_ACCOUNT_SID and config.TWILIO_AUTH_TOKEN and config.TWILIO_PHONE_NUMBER),
        },
        "hostname": STRIPE_API_HOST,
        "dns_ok": dns_ok,
        "dns_error": dns_error,
    }
