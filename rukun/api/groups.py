from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..api.dependencies import get_db
from ..auth.jwt import get_current_user
from ..models.models import CommunityGroup, User
from ..schemas.schemas import GroupCreate, GroupRead, GroupUpdate, HierarchyRead, RwGroupRef
from ..services import groups as group_service
from ..services.hierarchy import ensure_same_tenant, get_hierarchy

router = APIRouter()


@router.get("/hierarchy", response_model=HierarchyRead)
def read_hierarchy(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> dict:
    return get_hierarchy(db, user)


@router.get("/{group_id}/rw", response_model=RwGroupRef)
def read_rw_group(
    group_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> RwGroupRef:
    rw_group_id = ensure_same_tenant(db, user, group_id)
    return RwGroupRef(group_id=group_id, rw_group_id=rw_group_id)


@router.post("", response_model=GroupRead, status_code=201)
def create_group(
    payload: GroupCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> CommunityGroup:
    return group_service.create_rt_group(db, user, payload.name)


@router.patch("/{group_id}", response_model=GroupRead)
def update_group(
    group_id: int,
    payload: GroupUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> CommunityGroup:
    return group_service.rename_group(db, user, group_id, payload.name)


@router.delete("/{group_id}", status_code=204)
def delete_group(
    group_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> None:
    group_service.delete_group(db, user, group_id)
