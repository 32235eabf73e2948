from typing import Dict, List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..api.dependencies import get_actor_rw_group_id, get_db
from ..auth.jwt import require_capability
from ..constants import CAP_LABELS_MANAGE, RoleType
from ..models.models import RoleLabelSetting, User
from ..schemas.schemas import RoleLabelRead, RoleLabelUpsert
from ..services import role_labels

router = APIRouter()


@router.get("/role-labels", response_model=Dict[str, str])
def read_role_label_map(
    db: Session = Depends(get_db),
    rw_group_id: int = Depends(get_actor_rw_group_id),
) -> Dict[str, str]:
    return role_labels.get_role_label_map(db, rw_group_id)


@router.get("/role-labels/list", response_model=List[RoleLabelRead])
def list_role_labels(
    db: Session = Depends(get_db),
    rw_group_id: int = Depends(get_actor_rw_group_id),
) -> List[RoleLabelSetting]:
    return role_labels.list_role_labels(db, rw_group_id)


@router.put("/role-labels", response_model=RoleLabelRead)
def upsert_role_label(
    payload: RoleLabelUpsert,
    db: Session = Depends(get_db),
    actor: User = Depends(require_capability(CAP_LABELS_MANAGE)),
    rw_group_id: int = Depends(get_actor_rw_group_id),
) -> RoleLabelSetting:
    return role_labels.upsert_role_label(
        db,
        rw_group_id,
        payload.role_type,
        payload.label,
        actor_user_id=actor.id,
    )


@router.delete("/role-labels/{role_type}")
def delete_role_label(
    role_type: RoleType,
    db: Session = Depends(get_db),
    actor: User = Depends(require_capability(CAP_LABELS_MANAGE)),
    rw_group_id: int = Depends(get_actor_rw_group_id),
) -> dict:
    role_labels.delete_role_label(db, rw_group_id, role_type, actor_user_id=actor.id)
    return {"deleted": True, "role_type": role_type.value}
