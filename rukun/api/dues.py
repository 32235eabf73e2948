from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..api.dependencies import get_db
from ..auth.jwt import get_current_user
from ..models.models import Contribution, User
from ..schemas.schemas import (
    ContributionRead,
    DuesConfigRequest,
    DuesConfigResponse,
    DuesRuleRead,
    EffectiveDuesRuleRead,
    ManualContributionCreate,
    UserDuesStatus,
)
from ..services import accrual, dues
from ..services.hierarchy import ensure_same_tenant

router = APIRouter()


def _year_or_current(year: Optional[int]) -> int:
    return year if year is not None else accrual.Period.today().year


@router.get("/rules/{group_id}", response_model=Optional[EffectiveDuesRuleRead])
def read_effective_rule(
    group_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> Optional[dict]:
    ensure_same_tenant(db, user, group_id)
    effective = dues.get_effective_dues_rule(db, group_id)
    return effective.as_dict() if effective else None


@router.get("/config")
def read_dues_config(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> dict:
    return dues.get_dues_config(db, user)


@router.post("/config", response_model=DuesConfigResponse)
def set_dues_config(
    payload: DuesConfigRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> DuesConfigResponse:
    result = dues.set_dues_config(
        db,
        user,
        amount=payload.amount,
        due_day=payload.due_day,
        group_id=payload.group_id,
    )
    return DuesConfigResponse(
        rule=DuesRuleRead.model_validate(result.rule),
        due_day_ignored=result.due_day_ignored,
    )


@router.get("/bill")
def read_current_bill(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> dict:
    return dues.get_current_bill(db, user, accrual.today_in_reference_zone())


@router.get("/status/{user_id}", response_model=UserDuesStatus)
def read_user_dues_status(
    user_id: int,
    year: Optional[int] = Query(None, ge=2000, le=2100),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> dict:
    return accrual.get_user_dues_status(db, user, user_id, _year_or_current(year))


@router.get("/progress/{group_id}")
def read_group_progress(
    group_id: int,
    year: Optional[int] = Query(None, ge=2000, le=2100),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> dict:
    return accrual.get_group_dues_progress(db, user, group_id, _year_or_current(year))


@router.get("/recap")
def read_rw_recap(
    year: Optional[int] = Query(None, ge=2000, le=2100),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> dict:
    return accrual.get_rw_dues_recap(db, user, _year_or_current(year))


@router.post("/contributions", response_model=ContributionRead, status_code=201)
def record_contribution(
    payload: ManualContributionCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> Contribution:
    return accrual.record_manual_contribution(
        db,
        user,
        user_id=payload.user_id,
        year=payload.year,
        month=payload.month,
        amount=payload.amount,
    )
