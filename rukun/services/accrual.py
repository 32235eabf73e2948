"""Monthly dues status of residents.

A month is PAID when either an itemized Contribution exists for it or the
resident's cumulative ``last_paid_period`` marker has reached it. The marker
only ever moves forward. Status is derived on every request from committed
state and "today" in the reference timezone; nothing is cached.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set
from zoneinfo import ZoneInfo

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..auth.jwt import ensure_capability
from ..config import settings
from ..constants import CAP_DUES_SET_AMOUNT, CAP_DUES_VIEW_GROUP, RoleType
from ..core.errors import BadRequestError, ConflictError, ForbiddenError, NotFoundError
from ..models.models import Contribution, PaymentTransaction, User, utcnow
from .audit import audit_log
from .hierarchy import (
    can_view_group,
    ensure_officer_scope,
    get_group_or_404,
    resolve_user_rw_group_id,
)
from .persistence import commit_or_conflict

logger = logging.getLogger(__name__)


def today_in_reference_zone(tz_name: Optional[str] = None) -> date:
    return datetime.now(ZoneInfo(tz_name or settings.reference_timezone)).date()


@dataclass(frozen=True, order=True)
class Period:
    year: int
    month: int

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise ValueError(f"month must be between 1 and 12, got {self.month}")

    @classmethod
    def from_date(cls, value: date) -> "Period":
        return cls(value.year, value.month)

    @classmethod
    def today(cls, tz_name: Optional[str] = None) -> "Period":
        return cls.from_date(today_in_reference_zone(tz_name))

    def advance(self, months: int) -> "Period":
        index = self.year * 12 + (self.month - 1) + months
        return Period(index // 12, index % 12 + 1)

    def first_day(self) -> date:
        return date(self.year, self.month, 1)

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"


class MonthState(str, Enum):
    NOT_MEMBER = "NOT_MEMBER"
    NOT_YET_DUE = "NOT_YET_DUE"
    UNPAID = "UNPAID"
    PAID = "PAID"


class GroupMonthState(str, Enum):
    FUTURE = "FUTURE"
    NOT_REGISTERED = "NOT_REGISTERED"
    UNPAID = "UNPAID"
    PARTIAL = "PARTIAL"
    PAID = "PAID"


def derive_month_state(
    period: Period,
    joined: Period,
    today: Period,
    last_paid: Optional[Period],
    paid_periods: Set[Period],
) -> MonthState:
    if period < joined:
        return MonthState.NOT_MEMBER
    if period in paid_periods:
        return MonthState.PAID
    if last_paid is not None and last_paid >= period:
        return MonthState.PAID
    if period > today:
        return MonthState.NOT_YET_DUE
    return MonthState.UNPAID


def joined_period(user: User) -> Period:
    created = user.created_at
    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    return Period.from_date(created.astimezone(ZoneInfo(settings.reference_timezone)))


def last_paid_of(user: User) -> Optional[Period]:
    return Period.from_date(user.last_paid_period) if user.last_paid_period else None


def _paid_periods_by_user(session: Session, user_ids: Iterable[int], year: int) -> Dict[int, Set[Period]]:
    ids = list(user_ids)
    result: Dict[int, Set[Period]] = defaultdict(set)
    if not ids:
        return result
    rows = (
        session.query(Contribution.user_id, Contribution.year, Contribution.month)
        .filter(Contribution.user_id.in_(ids), Contribution.year == year)
        .all()
    )
    for user_id, row_year, row_month in rows:
        result[user_id].add(Period(row_year, row_month))
    return result


def _year_states(user: User, year: int, today: Period, paid_periods: Set[Period]) -> List[MonthState]:
    joined = joined_period(user)
    last_paid = last_paid_of(user)
    return [
        derive_month_state(Period(year, month), joined, today, last_paid, paid_periods)
        for month in range(1, 13)
    ]


def yearly_status(session: Session, user: User, year: int, today: Optional[Period] = None) -> List[Dict[str, Any]]:
    today = today or Period.today()
    paid = _paid_periods_by_user(session, [user.id], year)[user.id]
    states = _year_states(user, year, today, paid)
    return [{"month": month, "state": state.value} for month, state in enumerate(states, start=1)]


def get_user_dues_status(
    session: Session,
    actor: User,
    user_id: int,
    year: int,
    today: Optional[Period] = None,
) -> Dict[str, Any]:
    target = session.get(User, user_id)
    if not target:
        raise NotFoundError(f"User {user_id} not found")
    if target.id != actor.id:
        ensure_capability(actor, CAP_DUES_VIEW_GROUP, "Residents may only view their own dues status")
        ensure_officer_scope(session, actor, target.community_group_id)

    return {
        "user_id": target.id,
        "year": year,
        "joined_period": str(joined_period(target)),
        "last_paid_period": target.last_paid_period,
        "months": yearly_status(session, target, year, today),
    }


def _active_residents(group) -> List[User]:
    residents = [
        user for user in group.users if user.is_active and user.role_type == RoleType.RESIDENT.value
    ]
    return sorted(residents, key=lambda user: (user.full_name or "").lower())


def get_group_dues_progress(
    session: Session,
    actor: User,
    group_id: int,
    year: int,
    today: Optional[Period] = None,
) -> Dict[str, Any]:
    ensure_capability(actor, CAP_DUES_VIEW_GROUP, "Only group officers may view dues progress")
    if not can_view_group(session, actor, group_id):
        raise ForbiddenError("You do not have access to this group's dues progress")
    today = today or Period.today()
    group = get_group_or_404(session, group_id)

    residents = _active_residents(group)
    paid_by_user = _paid_periods_by_user(session, (user.id for user in residents), year)
    members = []
    for resident in residents:
        states = _year_states(resident, year, today, paid_by_user[resident.id])
        members.append(
            {
                "id": resident.id,
                "full_name": resident.full_name,
                "phone": resident.phone,
                "joined_period": str(joined_period(resident)),
                "last_paid_period": resident.last_paid_period,
                "months": [state.value for state in states],
                "unpaid_months": sum(1 for state in states if state == MonthState.UNPAID),
            }
        )

    return {
        "group": {"id": group.id, "name": group.name, "type": group.type},
        "year": year,
        "members": members,
    }


def _collective_state(states: List[MonthState]) -> GroupMonthState:
    eligible = [state for state in states if state != MonthState.NOT_MEMBER]
    if not eligible:
        return GroupMonthState.NOT_REGISTERED
    paid = sum(1 for state in eligible if state == MonthState.PAID)
    if paid == 0:
        return GroupMonthState.UNPAID
    if paid == len(eligible):
        return GroupMonthState.PAID
    return GroupMonthState.PARTIAL


def _officer_names(group, role: RoleType) -> str:
    names = [user.full_name for user in group.users if user.is_active and user.role_type == role.value]
    return ", ".join(names) if names else "-"


def get_rw_dues_recap(
    session: Session,
    actor: User,
    year: int,
    today: Optional[Period] = None,
) -> Dict[str, Any]:
    ensure_capability(actor, CAP_DUES_VIEW_GROUP, "Only group officers may view the dues recap")
    today = today or Period.today()
    rw = get_group_or_404(session, resolve_user_rw_group_id(session, actor))

    child_groups = []
    for rt in (child for child in rw.children if child.is_rt):
        residents = _active_residents(rt)
        paid_by_user = _paid_periods_by_user(session, (user.id for user in residents), year)
        per_resident = [_year_states(user, year, today, paid_by_user[user.id]) for user in residents]

        monthly_status = []
        for index in range(12):
            if Period(year, index + 1) > today:
                monthly_status.append(GroupMonthState.FUTURE.value)
                continue
            monthly_status.append(_collective_state([states[index] for states in per_resident]).value)

        child_groups.append(
            {
                "id": rt.id,
                "name": rt.name,
                "admin_name": _officer_names(rt, RoleType.ADMIN),
                "treasurer_name": _officer_names(rt, RoleType.TREASURER),
                "is_fully_paid": all(
                    status in (GroupMonthState.PAID.value, GroupMonthState.FUTURE.value, GroupMonthState.NOT_REGISTERED.value)
                    for status in monthly_status
                ),
                "monthly_status": monthly_status,
            }
        )

    return {"group": {"id": rw.id, "name": rw.name, "type": rw.type}, "year": year, "child_groups": child_groups}


def covered_periods(target: Period, months: int) -> List[Period]:
    """The ``months`` consecutive periods ending at ``target``."""
    return [target.advance(offset) for offset in range(-(months - 1), 1)]


def _split_amount(total: int, parts: int) -> List[int]:
    base, remainder = divmod(total, parts)
    return [base] * (parts - 1) + [base + remainder]


def record_confirmed_payment(session: Session, transaction: PaymentTransaction) -> List[Contribution]:
    """Record the months a confirmed transaction pays for.

    Stages one Contribution per covered month that has none yet and advances
    the user's paid-through marker. The caller commits.
    """
    user = transaction.user
    target = Period.from_date(transaction.target_paid_through)
    periods = covered_periods(target, transaction.months)
    amounts = _split_amount(transaction.amount, transaction.months)

    existing = {
        Period(row.year, row.month)
        for row in session.query(Contribution.year, Contribution.month).filter(Contribution.user_id == user.id)
    }
    paid_at = transaction.paid_at or utcnow()
    created = []
    for period, amount in zip(periods, amounts):
        if period in existing:
            logger.info("User %s already has a contribution for %s; skipping", user.id, period)
            continue
        contribution = Contribution(
            user_id=user.id,
            year=period.year,
            month=period.month,
            amount=amount,
            paid_at=paid_at,
            transaction_id=transaction.id,
        )
        session.add(contribution)
        created.append(contribution)

    if user.last_paid_period is None or target.first_day() > user.last_paid_period:
        user.last_paid_period = target.first_day()

    try:
        session.flush()
    except IntegrityError as exc:
        session.rollback()
        raise ConflictError(f"A contribution for user {user.id} in one of the paid months already exists") from exc
    return created


def record_manual_contribution(
    session: Session,
    actor: User,
    user_id: int,
    year: int,
    month: int,
    amount: int,
) -> Contribution:
    """Record a payment collected outside the gateway (e.g. cash to the treasurer)."""
    ensure_capability(actor, CAP_DUES_SET_AMOUNT, "Only group officers may record contributions")
    if not 1 <= month <= 12:
        raise BadRequestError("Month must be between 1 and 12")
    if amount <= 0:
        raise BadRequestError("Contribution amount must be a positive integer")
    target = session.get(User, user_id)
    if not target:
        raise NotFoundError(f"User {user_id} not found")
    ensure_officer_scope(session, actor, target.community_group_id)

    duplicate = (
        session.query(Contribution)
        .filter(Contribution.user_id == user_id, Contribution.year == year, Contribution.month == month)
        .first()
    )
    if duplicate:
        raise ConflictError(f"User {user_id} already has a contribution for {Period(year, month)}")

    contribution = Contribution(user_id=user_id, year=year, month=month, amount=amount)
    session.add(contribution)
    session.flush()
    audit_log(
        db_session=session,
        actor_user_id=actor.id,
        action="dues.contribution.manual",
        target_entity_type="Contribution",
        target_entity_id=str(contribution.id),
        after={"user_id": user_id, "year": year, "month": month, "amount": amount},
    )
    commit_or_conflict(session, f"User {user_id} already has a contribution for {Period(year, month)}")
    session.refresh(contribution)
    return contribution
