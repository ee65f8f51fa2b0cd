"""
Notifications best-effort via les API REST Resend (email) et Twilio (SMS), avec httpx.
- Non configuré (clé absente) => envoi ignoré silencieusement (retour False).
- Toute erreur devient NotificationFailed, journalisée puis avalée.
"""
import html
import logging
from datetime import date
from typing import Any, Dict, Optional

import httpx

from rentals import config
from rentals.errors import NotificationFailed

logger = logging.getLogger(__name__)

RESEND_URL = "https://api.resend.com/emails"
TWILIO_URL = "https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json"


def dollars(cents: int) -> str:
    return f"${int(cents or 0) / 100:.2f}"


def _post(url: str, **kwargs: Any) -> httpx.Response:
    try:
        resp = httpx.post(url, timeout=config.NOTIFICATION_TIMEOUT_SECONDS, **kwargs)
    except httpx.HTTPError as e:
        raise NotificationFailed(f"Transport: {e}") from e
    if not 200 <= resp.status_code < 300:
        raise NotificationFailed(f"HTTP {resp.status_code}", status=resp.status_code, body=resp.text[:200])
    return resp


def send_email(to: str, subject: str, html_body: str) -> bool:
    if not (config.RESEND_API_KEY and config.FROM_EMAIL and to):
        return False
    try:
        _post(
            RESEND_URL,
            json={"from": config.FROM_EMAIL, "to": [to], "subject": subject, "html": html_body},
            headers={"Authorization": f"Bearer {config.RESEND_API_KEY}"},
        )
        return True
    except NotificationFailed as e:
        logger.warning("notifications.send_email failed to=%s subject=%s error=%s", to, subject, e)
        return False


def send_sms(to: str, body: str) -> bool:
    if not (config.TWILIO_ACCOUNT_SID and config.TWILIO_AUTH_TOKEN and config.TWILIO_PHONE_NUMBER and to):
        return False
    try:
        _post(
            TWILIO_URL.format(sid=config.TWILIO_ACCOUNT_SID),
            data={"From": config.TWILIO_PHONE_NUMBER, "To": to, "Body": body},
            auth=(config.TWILIO_ACCOUNT_SID, config.TWILIO_AUTH_TOKEN),
        )
        return True
    except NotificationFailed as e:
        logger.warning("notifications.send_sms failed to=%s error=%s", to, e)
        return False


def _footer() -> str:
    return f"<p>The {html.escape(config.BUSINESS_NAME)} team</p>"


def notify_owner_new_order(order, approve_url: str, decline_url: str) -> Dict[str, bool]:
    """Email + SMS au propriétaire avec les liens Approuver / Refuser."""
    name = html.escape(order.customer.name or "")
    dropoff = order.dropoff_date.isoformat() if order.dropoff_date else "n/a"
    body = (
        f"<p>New rental request from <strong>{name}</strong> "
        f"({html.escape(order.customer.email)}, {html.escape(order.customer.phone)}).</p>"
        f"<p><strong>Total:</strong> {dollars(order.total_cents)}<br>"
        f"<strong>Drop-off:</strong> {dropoff}<br>"
        f"<strong>Flow:</strong> {order.flow.value}</p>"
        f'<p><a href="{approve_url}">Approve</a> &nbsp; <a href="{decline_url}">Decline</a></p>'
    )
    sms = (
        f"New request: {order.customer.name or 'customer'} {dollars(order.total_cents)}, drop-off {dropoff}.\n"
        f"Approve: {approve_url}\nDecline: {decline_url}"
    )
    return {
        "email": send_email(config.OWNER_EMAIL, f"New rental request {dollars(order.total_cents)}", body),
        "sms": send_sms(config.OWNER_PHONE, sms),
    }


def notify_customer_received(order) -> Dict[str, bool]:
    body = (
        f"<p>Hi {html.escape(order.customer.name or '')},</p>"
        "<p>We received your request. You will hear from us once it is reviewed.</p>"
        "<p>Your card will not be charged until the request is approved.</p>" + _footer()
    )
    return {
        "email": send_email(order.customer.email, "We received your rental request", body),
        "sms": send_sms(order.customer.phone, f"{config.BUSINESS_NAME}: we received your request and will review it shortly."),
    }


def notify_customer_approved(order, charged_cents: int, remaining_cents: int, due_date: Optional[date] = None) -> Dict[str, bool]:
    if remaining_cents > 0:
        when = f" ({due_date.isoformat()})" if due_date else ""
        balance_line = (
            f"<p><strong>Remaining balance:</strong> {dollars(remaining_cents)}</p>"
            f"<p>The remaining balance will be invoiced the day before your drop-off{when}.</p>"
        )
    else:
        balance_line = ""
    body = (
        f"<p>Hi {html.escape(order.customer.name or '')},</p>"
        "<p>Your request has been approved.</p>"
        f"<p><strong>Charged today:</strong> {dollars(charged_cents)}</p>"
        f"{balance_line}"
        "<p>If you need to make changes, just reply to this email.</p>" + _footer()
    )
    return {
        "email": send_email(order.customer.email, f"Your {config.BUSINESS_NAME} request is approved", body),
        "sms": send_sms(order.customer.phone, f"Your {config.BUSINESS_NAME} request is approved."),
    }


def notify_customer_declined(order) -> Dict[str, bool]:
    body = (
        f"<p>Hi {html.escape(order.customer.name or '')},</p>"
        "<p>Unfortunately we are unable to accept your request for the selected date. "
        "No charge was made to your card.</p>" + _footer()
    )
    return {
        "email": send_email(order.customer.email, f"Your {config.BUSINESS_NAME} request", body),
        "sms": send_sms(order.customer.phone, f"{config.BUSINESS_NAME}: we are unable to accept your request. No charge was made."),
    }


def notify_customer_payment_link(order, amount_cents: int, payment_url: str) -> Dict[str, bool]:
    body = (
        f"<p>Hi {html.escape(order.customer.name or '')},</p>"
        "<p>Your request has been approved, but we couldn't charge your card automatically.</p>"
        f"<p><strong>Amount due:</strong> {dollars(amount_cents)}</p>"
        f'<p><a href="{payment_url}">Pay here</a>.</p>' + _footer()
    )
    return {"email": send_email(order.customer.email, "Action needed: confirm your payment", body)}
