from datetime import date, datetime

import pytest
import stripe

from rukun.config import settings
from rukun.constants import PaymentStatus
from rukun.core.errors import BadRequestError, ForbiddenError, GatewayError, NotFoundError
from rukun.models.models import Contribution, PaymentTransaction
from rukun.services import gateway
from rukun.services import payments as payment_service
from rukun.services.accrual import Period, yearly_status
from rukun.services.payments import (
    apply_gateway_status,
    build_payment_request,
    cancel_pending,
    list_transactions,
    start_dues_checkout,
)


@pytest.fixture(autouse=True)
def _offline_gateway(monkeypatch):
    monkeypatch.setattr(settings, "stripe_api_key", None)
    monkeypatch.setattr(settings, "stripe_webhook_secret", "whsec_test")


def test_build_payment_request_multiplies_effective_amount(db_session, community, create_rule):
    create_rule(community.rw, amount=50000, due_day=10)

    request = build_payment_request(db_session, community.resident1.id, 3)

    assert request.amount == 150000
    # Joined January 2024 with nothing paid yet.
    assert request.target_paid_through == date(2024, 3, 1)
    assert request.resumed is False


def test_build_payment_request_starts_from_last_paid_period(db_session, community, create_rule):
    create_rule(community.rt1, amount=60000, due_day=None)
    community.resident1.last_paid_period = date(2024, 11, 1)
    db_session.commit()

    request = build_payment_request(db_session, community.resident1.id, 2)

    assert request.amount == 120000
    assert request.target_paid_through == date(2025, 1, 1)


def test_build_payment_request_without_rule_is_bad_request(db_session, community):
    with pytest.raises(BadRequestError):
        build_payment_request(db_session, community.resident1.id, 1)


@pytest.mark.parametrize("months", [0, 13, -1])
def test_months_out_of_range_is_rejected(db_session, community, create_rule, months):
    create_rule(community.rw)
    with pytest.raises(BadRequestError):
        build_payment_request(db_session, community.resident1.id, months)


def test_unknown_user_is_not_found(db_session):
    with pytest.raises(NotFoundError):
        build_payment_request(db_session, 4242, 1)


def test_pending_transaction_is_resumed_ignoring_months(db_session, community, create_rule):
    create_rule(community.rw, amount=50000)
    first = start_dues_checkout(db_session, community.resident1, 3)

    again = build_payment_request(db_session, community.resident1.id, 7)

    assert again.resumed is True
    assert again.order_id == first.order_id
    assert (again.amount, again.target_paid_through, again.months) == (150000, date(2024, 3, 1), 3)
    assert start_dues_checkout(db_session, community.resident1, 1).id == first.id
    assert db_session.query(PaymentTransaction).count() == 1


def test_checkout_without_gateway_key_returns_mock_url(db_session, community, create_rule):
    create_rule(community.rw, amount=50000)

    transaction = start_dues_checkout(db_session, community.resident1, 2)

    assert transaction.status == PaymentStatus.PENDING.value
    assert transaction.order_id.startswith(f"DUES-{community.resident1.id}-")
    assert "mock-checkout" in transaction.checkout_url
    assert transaction.amount == 100000


def test_gateway_failure_marks_transaction_failed(db_session, community, create_rule, monkeypatch):
    create_rule(community.rw, amount=50000)

    def _boom(transaction, user):
        raise GatewayError("Unable to create a checkout session with the payment gateway")

    monkeypatch.setattr(payment_service, "create_checkout_session", _boom)
    with pytest.raises(GatewayError):
        start_dues_checkout(db_session, community.resident1, 1)

    transaction = db_session.query(PaymentTransaction).one()
    assert transaction.status == PaymentStatus.FAILED.value
    # A failed attempt does not block a fresh request.
    assert build_payment_request(db_session, community.resident1.id, 2).resumed is False


def test_paid_notification_records_contributions_once(db_session, community, create_rule):
    create_rule(community.rw, amount=50000)
    transaction = start_dues_checkout(db_session, community.resident1, 3)

    updated = apply_gateway_status(db_session, transaction.order_id, "settlement", reference="pi_123")
    apply_gateway_status(db_session, transaction.order_id, PaymentStatus.PAID)

    assert updated.status == PaymentStatus.PAID.value
    assert updated.paid_at is not None
    assert updated.gateway_reference == "pi_123"
    months = sorted(
        (c.year, c.month)
        for c in db_session.query(Contribution).filter(Contribution.user_id == community.resident1.id)
    )
    assert months == [(2024, 1), (2024, 2), (2024, 3)]
    db_session.refresh(community.resident1)
    assert community.resident1.last_paid_period == date(2024, 3, 1)


def test_next_request_after_payment_builds_on_new_marker(db_session, community, create_rule):
    create_rule(community.rw, amount=50000)
    transaction = start_dues_checkout(db_session, community.resident1, 3)
    apply_gateway_status(db_session, transaction.order_id, "paid")

    follow_up = build_payment_request(db_session, community.resident1.id, 2)

    assert follow_up.resumed is False
    assert follow_up.target_paid_through == date(2024, 5, 1)


def test_first_single_month_payment_pays_only_the_join_month(db_session, community, create_rule, create_user):
    create_rule(community.rw, amount=50000)
    resident = create_user(community.rt1, created_at=datetime(2024, 3, 5))
    transaction = start_dues_checkout(db_session, resident, 1)

    apply_gateway_status(db_session, transaction.order_id, PaymentStatus.PAID)

    contributions = [
        (c.year, c.month, c.amount)
        for c in db_session.query(Contribution).filter(Contribution.user_id == resident.id)
    ]
    assert contributions == [(2024, 3, 50000)]
    db_session.refresh(resident)
    states = yearly_status(db_session, resident, 2024, today=Period(2024, 3))
    assert [row["month"] for row in states if row["state"] == "PAID"] == [3]


def test_expired_notification_frees_the_user(db_session, community, create_rule):
    create_rule(community.rw, amount=50000)
    transaction = start_dues_checkout(db_session, community.resident1, 3)

    apply_gateway_status(db_session, transaction.order_id, "expire")

    assert db_session.query(Contribution).count() == 0
    assert build_payment_request(db_session, community.resident1.id, 1).resumed is False


def test_unknown_order_is_ignored(db_session):
    assert apply_gateway_status(db_session, "DUES-0-0", "paid") is None


def test_unknown_gateway_status_is_rejected(db_session):
    with pytest.raises(BadRequestError):
        apply_gateway_status(db_session, "DUES-0-0", "teleported")


def test_cancel_pending_rules(db_session, community, create_rule):
    create_rule(community.rw, amount=50000)
    transaction = start_dues_checkout(db_session, community.resident1, 1)

    with pytest.raises(ForbiddenError):
        cancel_pending(db_session, community.resident2, transaction.order_id)
    with pytest.raises(ForbiddenError):
        cancel_pending(db_session, community.admin2, transaction.order_id)

    cancelled = cancel_pending(db_session, community.treasurer1, transaction.order_id)
    assert cancelled.status == PaymentStatus.CANCELLED.value
    with pytest.raises(BadRequestError):
        cancel_pending(db_session, community.resident1, transaction.order_id)
    with pytest.raises(NotFoundError):
        cancel_pending(db_session, community.resident1, "DUES-missing")


def test_list_transactions_scope(db_session, community, create_rule):
    create_rule(community.rw, amount=50000)
    start_dues_checkout(db_session, community.resident1, 1)

    assert len(list_transactions(db_session, community.resident1)) == 1
    assert len(list_transactions(db_session, community.leader, user_id=community.resident1.id)) == 1
    assert list_transactions(db_session, community.resident1, status=PaymentStatus.PAID) == []
    with pytest.raises(ForbiddenError):
        list_transactions(db_session, community.admin2, user_id=community.resident1.id)


def _fake_event(event_type, **object_fields):
    return {"id": "evt_1", "type": event_type, "data": {"object": object_fields}}


def test_parse_webhook_maps_checkout_events(monkeypatch):
    event = _fake_event(
        "checkout.session.completed",
        id="cs_1",
        payment_status="paid",
        payment_intent="pi_9",
        metadata={"order_id": "DUES-1-100"},
    )
    monkeypatch.setattr(stripe.Webhook, "construct_event", lambda payload, sig_header, secret: event)

    notification = gateway.parse_webhook(b"{}", "sig")

    assert notification.order_id == "DUES-1-100"
    assert notification.status == PaymentStatus.PAID
    assert notification.reference == "pi_9"


def test_parse_webhook_ignores_unrelated_and_unpaid_events(monkeypatch):
    events = iter(
        [
            _fake_event("invoice.created", id="in_1"),
            _fake_event("checkout.session.completed", id="cs_2", payment_status="unpaid", client_reference_id="DUES-1-1"),
        ]
    )
    monkeypatch.setattr(stripe.Webhook, "construct_event", lambda payload, sig_header, secret: next(events))

    assert gateway.parse_webhook(b"{}", "sig") is None
    assert gateway.parse_webhook(b"{}", "sig") is None


def test_parse_webhook_rejects_bad_signature(monkeypatch):
    def _invalid(payload, sig_header, secret):
        raise stripe.SignatureVerificationError("bad", sig_header)

    monkeypatch.setattr(stripe.Webhook, "construct_event", _invalid)
    with pytest.raises(BadRequestError):
        gateway.parse_webhook(b"{}", "sig")


def test_parse_webhook_requires_secret(monkeypatch):
    monkeypatch.setattr(settings, "stripe_webhook_secret", None)
    with pytest.raises(GatewayError):
        gateway.parse_webhook(b"{}", "sig")
