"""
Calculs calendaires et répartition « payer maintenant / payer plus tard ».

Toutes les comparaisons de dates se font sur le calendrier local du fuseau métier
(config.BUSINESS_TIMEZONE), jamais sur une soustraction d'horodatages UTC: une livraison
« demain » calculée en UTC basculerait autour de minuit.
"""
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional
from zoneinfo import ZoneInfo

from rentals import config
from rentals.orders.models import ChargeSplit, Flow, Order

# Au-delà de ce nombre de jours avant livraison, la commande n'est pas urgente
URGENCY_THRESHOLD_DAYS = 1


def business_tz() -> ZoneInfo:
    return ZoneInfo(config.BUSINESS_TIMEZONE)


def aware_utc(now: Optional[datetime]) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    if now.tzinfo is None:
        # Horodatage naïf: interprété comme UTC
        return now.replace(tzinfo=timezone.utc)
    return now


def business_today(now: Optional[datetime] = None) -> date:
    """Date calendaire « aujourd'hui » dans le fuseau métier."""
    return aware_utc(now).astimezone(business_tz()).date()


def parse_iso_date(raw) -> Optional[date]:
    """Parse 'YYYY-MM-DD' (tolérant: None si vide ou invalide)."""
    if isinstance(raw, date) and not isinstance(raw, datetime):
        return raw
    text = str(raw or "").strip()[:10]
    if not text:
        return None
    try:
        return date.fromisoformat(text)
    except ValueError:
        return None


def days_until_dropoff(dropoff: date, now: Optional[datetime] = None) -> int:
    """Différence en jours calendaires locaux (troncature au jour, pas de division d'horodatages)."""
    return (dropoff - business_today(now)).days


def is_urgent(order: Order, now: Optional[datetime] = None) -> bool:
    """
    Urgent si le drapeau est posé, si la livraison est à J+1 ou moins,
    ou si la date de livraison est absente (impossible de planifier un solde).
    """
    if order.urgent or order.dropoff_date is None:
        return True
    return days_until_dropoff(order.dropoff_date, now) <= URGENCY_THRESHOLD_DAYS


def round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def compute_charge_split(order: Order, now: Optional[datetime] = None, deposit_fraction: Optional[float] = None) -> ChargeSplit:
    """
    Décide le montant encaissé maintenant et le solde différé.
    - Urgent ou flux immédiat: 100% maintenant, aucun solde.
    - Sinon: acompte = arrondi (demi supérieur) de total * DEPOSIT_FRACTION.
    Invariant: charge_now_cents + remaining_cents == total_cents.
    """
    urgent = is_urgent(order, now)
    if urgent or order.flow == Flow.IMMEDIATE:
        fraction = 1.0
    else:
        fraction = config.DEPOSIT_FRACTION if deposit_fraction is None else deposit_fraction

    total = max(0, int(order.total_cents))
    charge_now = round_half_up(Decimal(total) * Decimal(str(fraction)))
    charge_now = min(max(charge_now, 0), total)
    return ChargeSplit(
        total_cents=total,
        pay_fraction=fraction,
        charge_now_cents=charge_now,
        remaining_cents=total - charge_now,
        urgent=urgent,
    )


def balance_due_date(dropoff: date) -> date:
    """Le solde est dû la veille de la livraison."""
    return dropoff - timedelta(days=1)


def balance_due_at(dropoff: date) -> datetime:
    """
    Instant absolu (UTC) de « BALANCE_CHARGE_LOCAL_HOUR heure locale, la veille de la livraison ».
    Le décalage est résolu pour cette date précise (heure d'été/hiver), pas une constante annuelle.
    """
    local = datetime.combine(balance_due_date(dropoff), time(hour=config.BALANCE_CHARGE_LOCAL_HOUR), tzinfo=business_tz())
    return local.astimezone(timezone.utc)
