"""RW/RT hierarchy lookups.

Every tenant check in the service layer goes through ``resolve_rw_group_id``:
a caller's tenant is the RW group their home group resolves to, and data of a
group is only reachable when both resolve to the same RW. Nothing here is
cached because memberships may change between requests.
"""

from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..constants import GroupType, RoleType
from ..core.errors import ForbiddenError, NotFoundError
from ..models.models import CommunityGroup, User


def get_group_or_404(session: Session, group_id: int) -> CommunityGroup:
    group = session.get(CommunityGroup, group_id)
    if not group:
        raise NotFoundError(f"Community group {group_id} not found")
    return group


def rw_group_id_for(group: CommunityGroup) -> int:
    if group.is_rw:
        return group.id
    if group.parent_id is None:
        raise ForbiddenError(f"RT group {group.id} is not attached to any RW group")
    return group.parent_id


def resolve_rw_group_id(session: Session, group_id: int) -> int:
    return rw_group_id_for(get_group_or_404(session, group_id))


def resolve_user_rw_group_id(session: Session, user: User) -> int:
    return resolve_rw_group_id(session, user.community_group_id)


def child_group_ids(session: Session, rw_group_id: int) -> List[int]:
    rows = (
        session.query(CommunityGroup.id)
        .filter(
            CommunityGroup.parent_id == rw_group_id,
            CommunityGroup.type == GroupType.RT.value,
        )
        .order_by(CommunityGroup.name.asc())
        .all()
    )
    return [row.id for row in rows]


def tenant_group_ids(session: Session, rw_group_id: int) -> List[int]:
    return [rw_group_id, *child_group_ids(session, rw_group_id)]


def ensure_same_tenant(session: Session, actor: User, group_id: int) -> int:
    """Reject access to a group outside the actor's RW. Returns the RW id."""
    actor_rw = resolve_user_rw_group_id(session, actor)
    target_rw = resolve_rw_group_id(session, group_id)
    if actor_rw != target_rw:
        raise ForbiddenError("Group belongs to a different RW")
    return actor_rw


def ensure_officer_scope(session: Session, actor: User, group_id: int) -> None:
    """RW-level officers reach their whole RW; RT-level officers only their own RT."""
    own_group = get_group_or_404(session, actor.community_group_id)
    if own_group.is_rw:
        ensure_same_tenant(session, actor, group_id)
        return
    if group_id != own_group.id:
        raise ForbiddenError("Officers of an RT may only act within their own RT")


def can_view_group(session: Session, actor: User, group_id: int) -> bool:
    own_group = get_group_or_404(session, actor.community_group_id)
    target = get_group_or_404(session, group_id)
    if own_group.id == target.id:
        return True
    if own_group.is_rw and target.parent_id == own_group.id:
        return True
    return own_group.parent_id is not None and own_group.parent_id == target.parent_id


def _officer_summary(user: Optional[User]) -> Optional[Dict[str, Any]]:
    if not user:
        return None
    return {"id": user.id, "full_name": user.full_name, "email": user.email, "phone": user.phone}


def _find_officer(users: List[User], role: RoleType) -> Optional[User]:
    return next((user for user in users if user.role_type == role.value), None)


def _member_counts(session: Session, group_ids: List[int]) -> Dict[int, int]:
    rows = (
        session.query(User.community_group_id, func.count(User.id))
        .filter(User.community_group_id.in_(group_ids), User.is_active.is_(True))
        .group_by(User.community_group_id)
        .all()
    )
    return {group_id: count for group_id, count in rows}


def get_hierarchy(session: Session, actor: User) -> Dict[str, Any]:
    rw = get_group_or_404(session, resolve_user_rw_group_id(session, actor))
    children = [child for child in rw.children if child.is_rt]
    counts = _member_counts(session, [rw.id, *(child.id for child in children)])

    rw_officers = [user for user in rw.users if user.is_active]
    rt_groups = []
    for rt in children:
        officers = [user for user in rt.users if user.is_active]
        rt_groups.append(
            {
                "id": rt.id,
                "name": rt.name,
                "type": GroupType.RT.value,
                "member_count": counts.get(rt.id, 0),
                "admin": _officer_summary(_find_officer(officers, RoleType.ADMIN)),
                "treasurer": _officer_summary(_find_officer(officers, RoleType.TREASURER)),
            }
        )

    return {
        "rw": {
            "id": rw.id,
            "name": rw.name,
            "type": GroupType.RW.value,
            "member_count": counts.get(rw.id, 0),
            "leader": _officer_summary(_find_officer(rw_officers, RoleType.LEADER)),
            "treasurer": _officer_summary(_find_officer(rw_officers, RoleType.TREASURER)),
        },
        "rt_groups": rt_groups,
    }
