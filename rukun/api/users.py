from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..api.dependencies import get_db
from ..auth.jwt import require_capability
from ..constants import CAP_USERS_MANAGE, CAP_USERS_VIEW, RoleType
from ..models.models import User
from ..schemas.schemas import UserCreate, UserPage, UserRead, UserUpdate
from ..services import users as user_service

router = APIRouter()


@router.get("", response_model=UserPage)
def list_users(
    search: Optional[str] = None,
    role_type: Optional[RoleType] = None,
    group_id: Optional[int] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    actor: User = Depends(require_capability(CAP_USERS_VIEW)),
) -> dict:
    return user_service.list_users(
        db,
        actor,
        search=search,
        role_type=role_type,
        group_id=group_id,
        page=page,
        limit=limit,
    )


@router.post("", response_model=UserRead, status_code=201)
def create_user(
    payload: UserCreate,
    db: Session = Depends(get_db),
    actor: User = Depends(require_capability(CAP_USERS_MANAGE)),
) -> User:
    return user_service.create_user(db, actor, payload)


@router.patch("/{user_id}", response_model=UserRead)
def update_user(
    user_id: int,
    payload: UserUpdate,
    db: Session = Depends(get_db),
    actor: User = Depends(require_capability(CAP_USERS_MANAGE)),
) -> User:
    return user_service.update_user(db, actor, user_id, payload)


@router.delete("/{user_id}", response_model=UserRead)
def deactivate_user(
    user_id: int,
    db: Session = Depends(get_db),
    actor: User = Depends(require_capability(CAP_USERS_MANAGE)),
) -> User:
    return user_service.deactivate_user(db, actor, user_id)
