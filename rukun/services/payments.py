import logging
from dataclasses import dataclass
from datetime import date
from typing import List, Optional, Union

from sqlalchemy.orm import Session

from ..auth.jwt import ensure_capability
from ..constants import (
    CAP_PAYMENTS_VIEW_ALL,
    DUES_ORDER_PREFIX,
    MAX_PAYMENT_MONTHS,
    MIN_PAYMENT_MONTHS,
    PaymentStatus,
)
from ..core.errors import BadRequestError, GatewayError, NotFoundError
from ..models.models import PaymentTransaction, User, utcnow
from .accrual import joined_period, last_paid_of, record_confirmed_payment
from .audit import audit_log
from .dues import get_effective_dues_rule
from .gateway import create_checkout_session
from .hierarchy import ensure_officer_scope
from .persistence import commit_or_conflict

logger = logging.getLogger(__name__)

# Gateway vocabularies differ; everything is normalized to PaymentStatus.
GATEWAY_STATUS_ALIASES = {
    "paid": PaymentStatus.PAID,
    "success": PaymentStatus.PAID,
    "succeeded": PaymentStatus.PAID,
    "settlement": PaymentStatus.PAID,
    "capture": PaymentStatus.PAID,
    "pending": PaymentStatus.PENDING,
    "failed": PaymentStatus.FAILED,
    "failure": PaymentStatus.FAILED,
    "deny": PaymentStatus.FAILED,
    "expired": PaymentStatus.EXPIRED,
    "expire": PaymentStatus.EXPIRED,
    "cancelled": PaymentStatus.CANCELLED,
    "canceled": PaymentStatus.CANCELLED,
    "cancel": PaymentStatus.CANCELLED,
}


@dataclass(frozen=True)
class PaymentRequest:
    amount: int
    target_paid_through: date
    months: int
    order_id: Optional[str] = None
    resumed: bool = False


def _validate_months(months: int) -> None:
    if not isinstance(months, int) or not MIN_PAYMENT_MONTHS <= months <= MAX_PAYMENT_MONTHS:
        raise BadRequestError(
            f"Months must be a whole number between {MIN_PAYMENT_MONTHS} and {MAX_PAYMENT_MONTHS}"
        )


def _get_user_or_404(session: Session, user_id: int) -> User:
    user = session.get(User, user_id)
    if not user:
        raise NotFoundError(f"User {user_id} not found")
    return user


def _pending_transaction(session: Session, user_id: int) -> Optional[PaymentTransaction]:
    return (
        session.query(PaymentTransaction)
        .filter(
            PaymentTransaction.user_id == user_id,
            PaymentTransaction.status == PaymentStatus.PENDING.value,
        )
        .order_by(PaymentTransaction.created_at.desc(), PaymentTransaction.id.desc())
        .first()
    )


def build_payment_request(session: Session, user_id: int, months: int) -> PaymentRequest:
    """Compute what paying ``months`` months of dues costs and covers.

    An unconfirmed transaction is returned as-is, ignoring ``months``, so a
    user never has two obligations in flight. Nothing is written.
    """
    _validate_months(months)
    user = _get_user_or_404(session, user_id)

    pending = _pending_transaction(session, user.id)
    if pending:
        return PaymentRequest(
            amount=pending.amount,
            target_paid_through=pending.target_paid_through,
            months=pending.months,
            order_id=pending.order_id,
            resumed=True,
        )

    effective = get_effective_dues_rule(session, user.community_group_id)
    if effective is None:
        raise BadRequestError("No dues rule is configured for your group or its RW")

    # Without a marker the first month paid is the join month itself.
    baseline = last_paid_of(user) or joined_period(user).advance(-1)
    return PaymentRequest(
        amount=months * effective.amount,
        target_paid_through=baseline.advance(months).first_day(),
        months=months,
    )


def _new_order_id(user_id: int) -> str:
    return f"{DUES_ORDER_PREFIX}{user_id}-{int(utcnow().timestamp() * 1000)}"


def start_dues_checkout(session: Session, actor: User, months: int) -> PaymentTransaction:
    request = build_payment_request(session, actor.id, months)
    if request.resumed:
        logger.info("Resuming pending transaction %s for user %s", request.order_id, actor.id)
        return (
            session.query(PaymentTransaction)
            .filter(PaymentTransaction.order_id == request.order_id)
            .one()
        )

    transaction = PaymentTransaction(
        order_id=_new_order_id(actor.id),
        user_id=actor.id,
        amount=request.amount,
        months=request.months,
        target_paid_through=request.target_paid_through,
        status=PaymentStatus.PENDING.value,
    )
    session.add(transaction)
    session.flush()
    audit_log(
        db_session=session,
        actor_user_id=actor.id,
        action="payments.dues.create",
        target_entity_type="PaymentTransaction",
        target_entity_id=transaction.order_id,
        after={
            "amount": transaction.amount,
            "months": transaction.months,
            "target_paid_through": transaction.target_paid_through,
        },
    )
    commit_or_conflict(session, "A transaction with this order id already exists; retry the request")

    try:
        checkout = create_checkout_session(transaction, actor)
    except GatewayError:
        transaction.status = PaymentStatus.FAILED.value
        session.commit()
        raise

    transaction.checkout_url = checkout.url
    transaction.gateway_reference = checkout.reference
    session.commit()
    session.refresh(transaction)
    return transaction


def normalize_gateway_status(gateway_status: Union[PaymentStatus, str]) -> PaymentStatus:
    if isinstance(gateway_status, PaymentStatus):
        return gateway_status
    normalized = (gateway_status or "").strip().lower()
    try:
        return GATEWAY_STATUS_ALIASES[normalized]
    except KeyError as exc:
        raise BadRequestError(f"Unknown gateway status '{gateway_status}'") from exc


def apply_gateway_status(
    session: Session,
    order_id: str,
    gateway_status: Union[PaymentStatus, str],
    reference: Optional[str] = None,
) -> Optional[PaymentTransaction]:
    """Apply an asynchronous gateway notification to a transaction.

    Unknown orders and repeated notifications for a PAID transaction are
    ignored. A settlement that arrives after a local cancel or expiry is
    still recorded, since the money has moved.
    """
    status = normalize_gateway_status(gateway_status)
    transaction = (
        session.query(PaymentTransaction)
        .filter(PaymentTransaction.order_id == order_id)
        .first()
    )
    if transaction is None:
        logger.warning("Gateway notification for unknown order %s (%s); ignoring", order_id, status.value)
        return None
    if transaction.status == PaymentStatus.PAID.value:
        logger.info("Order %s already PAID; ignoring %s notification", order_id, status.value)
        return transaction
    if status == PaymentStatus.PENDING or status.value == transaction.status:
        return transaction

    before = {"status": transaction.status}
    transaction.status = status.value
    if reference:
        transaction.gateway_reference = reference
    if status == PaymentStatus.PAID:
        transaction.paid_at = utcnow()
        record_confirmed_payment(session, transaction)

    audit_log(
        db_session=session,
        actor_user_id=None,
        action=f"payments.dues.{status.value.lower()}",
        target_entity_type="PaymentTransaction",
        target_entity_id=order_id,
        before=before,
        after={"status": status.value, "reference": transaction.gateway_reference},
    )
    commit_or_conflict(session, f"Contributions for order {order_id} conflict with existing records")
    session.refresh(transaction)
    logger.info("Order %s moved from %s to %s", order_id, before["status"], status.value)
    return transaction


def _ensure_can_access(session: Session, actor: User, owner: User) -> None:
    if owner.id == actor.id:
        return
    ensure_capability(actor, CAP_PAYMENTS_VIEW_ALL, "You may only manage your own payments")
    ensure_officer_scope(session, actor, owner.community_group_id)


def cancel_pending(session: Session, actor: User, order_id: str) -> PaymentTransaction:
    transaction = (
        session.query(PaymentTransaction)
        .filter(PaymentTransaction.order_id == order_id)
        .first()
    )
    if transaction is None:
        raise NotFoundError(f"Transaction {order_id} not found")
    _ensure_can_access(session, actor, transaction.user)
    if transaction.status != PaymentStatus.PENDING.value:
        raise BadRequestError(f"Only PENDING transactions can be cancelled; this one is {transaction.status}")

    transaction.status = PaymentStatus.CANCELLED.value
    audit_log(
        db_session=session,
        actor_user_id=actor.id,
        action="payments.dues.cancel",
        target_entity_type="PaymentTransaction",
        target_entity_id=order_id,
        before={"status": PaymentStatus.PENDING.value},
        after={"status": PaymentStatus.CANCELLED.value},
    )
    session.commit()
    session.refresh(transaction)
    return transaction


def list_transactions(
    session: Session,
    actor: User,
    user_id: Optional[int] = None,
    status: Optional[PaymentStatus] = None,
) -> List[PaymentTransaction]:
    owner = _get_user_or_404(session, user_id) if user_id else actor
    _ensure_can_access(session, actor, owner)

    query = session.query(PaymentTransaction).filter(PaymentTransaction.user_id == owner.id)
    if status:
        query = query.filter(PaymentTransaction.status == PaymentStatus(status).value)
    return query.order_by(PaymentTransaction.created_at.desc(), PaymentTransaction.id.desc()).all()
