import calendar
import logging
from dataclasses import asdict, dataclass
from datetime import date
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from ..auth.jwt import ensure_capability, has_capability
from ..config import settings
from ..constants import CAP_DUES_SET_AMOUNT, CAP_DUES_SET_DUE_DAY, RoleType
from ..core.errors import BadRequestError, ForbiddenError
from ..models.models import CommunityGroup, DuesRule, User
from .audit import audit_log
from .hierarchy import ensure_same_tenant, get_group_or_404, rw_group_id_for
from .persistence import commit_or_conflict

logger = logging.getLogger(__name__)

SOURCE_OWN = "own"
SOURCE_INHERITED = "inherited"


@dataclass(frozen=True)
class EffectiveDuesRule:
    group_id: int
    amount: int
    due_day: int
    is_active: bool
    source: str

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class DuesConfigResult:
    rule: DuesRule
    due_day_ignored: bool


def _active_rule(group: Optional[CommunityGroup]) -> Optional[DuesRule]:
    if group is None or group.dues_rule is None or not group.dues_rule.is_active:
        return None
    return group.dues_rule


def _parent_group(session: Session, group: CommunityGroup) -> Optional[CommunityGroup]:
    if group.is_rw:
        return None
    return get_group_or_404(session, rw_group_id_for(group))


def get_effective_dues_rule(session: Session, group_id: int) -> Optional[EffectiveDuesRule]:
    group = get_group_or_404(session, group_id)
    parent = _parent_group(session, group)
    parent_rule = _active_rule(parent)

    own_rule = _active_rule(group)
    if own_rule:
        due_day = own_rule.due_day
        if due_day is None:
            due_day = parent_rule.due_day if parent_rule and parent_rule.due_day else settings.default_due_day
        return EffectiveDuesRule(
            group_id=group.id,
            amount=own_rule.amount,
            due_day=due_day,
            is_active=True,
            source=SOURCE_OWN,
        )

    if parent_rule:
        return EffectiveDuesRule(
            group_id=parent.id,
            amount=parent_rule.amount,
            due_day=parent_rule.due_day or settings.default_due_day,
            is_active=True,
            source=SOURCE_INHERITED,
        )
    return None


def effective_due_date(year: int, month: int, due_day: int) -> date:
    """Due date for display; a due day past the month's end falls on its last day."""
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(due_day, last_day))


def _validate_dues_input(amount: int, due_day: Optional[int]) -> None:
    if amount is None or amount <= 0:
        raise BadRequestError("Dues amount must be a positive integer in the smallest currency unit")
    if due_day is not None and not 1 <= due_day <= 31:
        raise BadRequestError("Due day must be between 1 and 31")


def _rule_snapshot(rule: Optional[DuesRule]) -> Optional[Dict[str, Any]]:
    if rule is None:
        return None
    return {"amount": rule.amount, "due_day": rule.due_day, "is_active": rule.is_active}


def set_dues_config(
    session: Session,
    actor: User,
    amount: int,
    due_day: Optional[int] = None,
    group_id: Optional[int] = None,
) -> DuesConfigResult:
    ensure_capability(actor, CAP_DUES_SET_AMOUNT, "Only group officers may configure dues")
    _validate_dues_input(amount, due_day)

    target_id = group_id or actor.community_group_id
    if target_id != actor.community_group_id:
        if not actor.has_role(RoleType.LEADER):
            raise ForbiddenError("Officers may only configure dues for their own group")
        ensure_same_tenant(session, actor, target_id)
    group = get_group_or_404(session, target_id)

    apply_due_day = due_day is not None and has_capability(actor, CAP_DUES_SET_DUE_DAY) and group.is_rw
    due_day_ignored = due_day is not None and not apply_due_day
    if due_day_ignored:
        logger.info(
            "Ignoring due_day=%s from user %s (%s) for group %s: the due day lives on the RW rule only",
            due_day,
            actor.id,
            actor.role_type,
            group.id,
        )

    rule = group.dues_rule
    before = _rule_snapshot(rule)
    if rule is None:
        rule = DuesRule(
            community_group=group,
            amount=amount,
            due_day=due_day if apply_due_day else None,
            is_active=True,
        )
        session.add(rule)
    else:
        rule.amount = amount
        rule.is_active = True
        if apply_due_day:
            rule.due_day = due_day
    session.flush()

    audit_log(
        db_session=session,
        actor_user_id=actor.id,
        action="dues.config.set",
        target_entity_type="DuesRule",
        target_entity_id=str(group.id),
        before=before,
        after=_rule_snapshot(rule),
    )
    commit_or_conflict(session, "A dues rule for this group was written concurrently; retry the request")
    session.refresh(rule)
    return DuesConfigResult(rule=rule, due_day_ignored=due_day_ignored)


def _effective_or_none(session: Session, group_id: int) -> Optional[Dict[str, Any]]:
    effective = get_effective_dues_rule(session, group_id)
    return effective.as_dict() if effective else None


def get_dues_config(session: Session, actor: User) -> Dict[str, Any]:
    group = get_group_or_404(session, actor.community_group_id)
    children = []
    if group.is_rw:
        for child in group.children:
            children.append(
                {
                    "group": {"id": child.id, "name": child.name, "type": child.type},
                    "rule": _rule_snapshot(child.dues_rule),
                    "effective": _effective_or_none(session, child.id),
                }
            )
    return {
        "group": {"id": group.id, "name": group.name, "type": group.type},
        "rule": _rule_snapshot(group.dues_rule),
        "effective": _effective_or_none(session, group.id),
        "can_set_due_day": has_capability(actor, CAP_DUES_SET_DUE_DAY) and group.is_rw,
        "children": children,
    }


def get_current_bill(session: Session, user: User, today: date) -> Dict[str, Any]:
    effective = get_effective_dues_rule(session, user.community_group_id)
    if effective is None:
        return {"configured": False, "amount": 0, "currency": settings.currency, "due_date": None, "source": None}
    return {
        "configured": True,
        "amount": effective.amount,
        "currency": settings.currency,
        "due_date": effective_due_date(today.year, today.month, effective.due_day),
        "source": effective.source,
    }
