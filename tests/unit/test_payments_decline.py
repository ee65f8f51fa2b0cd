from datetime import datetime, timezone

import pytest

from rentals.errors import AlreadyCanceled, AlreadyCaptured, InvalidToken, OrderNotFound
from rentals.orders.models import Flow, OrderStatus
from rentals.payments import service as payments_service
from rentals.tokens.models import TokenAction, TokenClaims
from rentals.tokens.service import issue_token
from tests.factories import make_record

NOW = datetime(2025, 6, 1, 15, 0, tzinfo=timezone.utc)


def _token(ref, action, flow=Flow.IMMEDIATE, total=12000):
    return issue_token(TokenClaims(sub=ref, act=action, total_cents=total, flow=flow))


def test_decline_releases_hold_and_notifies(gateway, store, outbox):
    ref = gateway.add_immediate_order()

    result = payments_service.decline_order(_token(ref, TokenAction.DECLINE))

    assert result.already_canceled is False
    assert gateway.calls_named("cancel_payment_intent") == [("cancel_payment_intent", f"pi_{ref}", f"{ref}:cancel")]
    assert store.get("cus_2").status == OrderStatus.DECLINED
    assert sum(1 for m in outbox if m["kind"] == "email") == 1

def test_second_decline_is_a_no_op(gateway, store, outbox):
    ref = gateway.add_immediate_order()
    token = _token(ref, TokenAction.DECLINE)
    payments_service.decline_order(token)

    again = payments_service.decline_order(token)

    assert again.already_canceled is True
    assert len(gateway.calls_named("cancel_payment_intent")) == 1
    assert sum(1 for m in outbox if m["kind"] == "email") == 1

def test_decline_after_capture_is_rejected(gateway, store):
    ref = gateway.add_immediate_order()
    payments_service.approve_order(_token(ref, TokenAction.APPROVE), now=NOW)

    with pytest.raises(AlreadyCaptured) as exc:
        payments_service.decline_order(_token(ref, TokenAction.DECLINE))
    assert exc.value.status_code == 409
    assert gateway.calls_named("cancel_payment_intent") == []

def test_approve_token_cannot_decline(gateway, store):
    ref = gateway.add_immediate_order()
    with pytest.raises(InvalidToken):
        payments_service.decline_order(_token(ref, TokenAction.APPROVE))

def test_deferred_decline_detaches_card(gateway, store):
    ref = gateway.add_deferred_order()

    result = payments_service.decline_order(_token(ref, TokenAction.DECLINE, Flow.DEFERRED, 30000))

    assert result.flow == Flow.DEFERRED
    assert gateway.calls_named("detach_payment_method") == [("detach_payment_method", "pm_1")]
    assert store.get("cus_1").status == OrderStatus.DECLINED
    # Refusée => l'approbation n'est plus possible
    with pytest.raises(AlreadyCanceled):
        payments_service.approve_order(_token(ref, TokenAction.APPROVE, Flow.DEFERRED, 30000), now=NOW)

def test_deferred_decline_after_approval_is_rejected(gateway, store):
    ref = gateway.add_deferred_order()
    payments_service.approve_order(_token(ref, TokenAction.APPROVE, Flow.DEFERRED, 30000), now=NOW)

    with pytest.raises(AlreadyCaptured):
        payments_service.decline_order(_token(ref, TokenAction.DECLINE, Flow.DEFERRED, 30000))
    assert store.get("cus_1").obligation.amount_cents == 21000

def test_decline_never_overwrites_pending_balance_of_another_order(gateway, store):
    store.put(make_record(order_ref="cs_previous", version=0), expected_version=0)
    ref = gateway.add_deferred_order(ref="cs_next")

    payments_service.decline_order(_token(ref, TokenAction.DECLINE, Flow.DEFERRED, 30000))

    record = store.get("cus_1")
    assert record.order_ref == "cs_previous"
    assert record.obligation.amount_cents == 21000

def test_decline_hold_by_payment_intent(gateway, store):
    ref = gateway.add_immediate_order()

    result = payments_service.decline_hold(f"pi_{ref}")

    assert result.order_ref == ref
    assert gateway.payment_intents[f"pi_{ref}"]["status"] == "canceled"

def test_decline_hold_unknown(gateway, store):
    with pytest.raises(OrderNotFound):
        payments_service.decline_hold("pi_unknown")

def test_second_decline_with_pending_balance_of_another_order_is_a_no_op(gateway, store, outbox):
    store.put(make_record(order_ref="cs_previous", version=0), expected_version=0)
    ref = gateway.add_deferred_order(ref="cs_next")
    token = _token(ref, TokenAction.DECLINE, Flow.DEFERRED, 30000)
    payments_service.decline_order(token)

    again = payments_service.decline_order(token)

    assert again.already_canceled is True
    assert len(gateway.calls_named("detach_payment_method")) == 1
    assert sum(1 for m in outbox if m["kind"] == "email") == 1
    assert gateway.setup_intents[f"seti_{ref}"]["metadata"]["rental_declined"] == "true"
    assert store.get("cus_1").order_ref == "cs_previous"
