import logging
import math
from typing import Any, Dict, List, Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ..auth.jwt import ensure_capability, get_password_hash
from ..constants import CAP_USERS_MANAGE, CAP_USERS_VIEW, DEFAULT_RESIDENT_PASSWORD, RoleType
from ..core.errors import BadRequestError, ConflictError, ForbiddenError, NotFoundError
from ..models.models import CommunityGroup, User
from ..schemas.schemas import UserCreate, UserUpdate
from .audit import audit_log
from .hierarchy import (
    ensure_officer_scope,
    ensure_same_tenant,
    get_group_or_404,
    resolve_user_rw_group_id,
    tenant_group_ids,
)
from .persistence import commit_or_conflict

logger = logging.getLogger(__name__)

# Roles an RT admin may hand out; everything else needs the RW leader.
ADMIN_ASSIGNABLE_ROLES = {RoleType.RESIDENT.value, RoleType.TREASURER.value}


def _user_snapshot(user: User) -> Dict[str, Any]:
    return {
        "email": user.email,
        "full_name": user.full_name,
        "role_type": user.role_type,
        "community_group_id": user.community_group_id,
        "is_active": user.is_active,
    }


def _get_user_or_404(session: Session, user_id: int) -> User:
    user = session.get(User, user_id)
    if not user:
        raise NotFoundError(f"User {user_id} not found")
    return user


def _ensure_email_free(session: Session, email: str, exclude_user_id: Optional[int] = None) -> None:
    query = session.query(User.id).filter(func.lower(User.email) == email.lower())
    if exclude_user_id is not None:
        query = query.filter(User.id != exclude_user_id)
    if query.first():
        raise ConflictError(f"Email {email} is already registered")


def _ensure_role_fits_group(role_type: str, group: CommunityGroup) -> None:
    if role_type in (RoleType.RESIDENT.value, RoleType.ADMIN.value) and not group.is_rt:
        raise BadRequestError(f"A {role_type} must belong to an RT group")
    if role_type == RoleType.LEADER.value and not group.is_rw:
        raise BadRequestError("A LEADER must belong to an RW group")


def _ensure_single_treasurer(session: Session, group_id: int, exclude_user_id: Optional[int] = None) -> None:
    query = session.query(User.id).filter(
        User.community_group_id == group_id,
        User.role_type == RoleType.TREASURER.value,
        User.is_active.is_(True),
    )
    if exclude_user_id is not None:
        query = query.filter(User.id != exclude_user_id)
    if query.first():
        raise ConflictError("This group already has an active TREASURER")


def _ensure_can_assign(actor: User, role_type: str) -> None:
    if actor.has_role(RoleType.LEADER):
        return
    if role_type not in ADMIN_ASSIGNABLE_ROLES:
        raise ForbiddenError(f"Only the RW leader may assign the {role_type} role")


def _target_group_for_create(session: Session, actor: User, requested_group_id: Optional[int]) -> CommunityGroup:
    if not actor.has_role(RoleType.LEADER):
        # RT admins always create into their own RT, whatever the input says.
        return get_group_or_404(session, actor.community_group_id)
    group_id = requested_group_id or resolve_user_rw_group_id(session, actor)
    ensure_same_tenant(session, actor, group_id)
    return get_group_or_404(session, group_id)


def create_user(session: Session, actor: User, payload: UserCreate) -> User:
    ensure_capability(actor, CAP_USERS_MANAGE, "Only the RW leader or an RT admin may register users")
    role_type = RoleType(payload.role_type).value
    _ensure_can_assign(actor, role_type)

    email = payload.email.lower()
    _ensure_email_free(session, email)
    group = _target_group_for_create(session, actor, payload.community_group_id)
    _ensure_role_fits_group(role_type, group)
    if role_type == RoleType.TREASURER.value:
        _ensure_single_treasurer(session, group.id)

    user = User(
        email=email,
        full_name=payload.full_name.strip(),
        phone=payload.phone,
        address=payload.address,
        hashed_password=get_password_hash(payload.password or DEFAULT_RESIDENT_PASSWORD),
        role_type=role_type,
        community_group_id=group.id,
        created_by_id=actor.id,
    )
    session.add(user)
    session.flush()
    audit_log(
        db_session=session,
        actor_user_id=actor.id,
        action="user.create",
        target_entity_type="User",
        target_entity_id=str(user.id),
        after=_user_snapshot(user),
    )
    commit_or_conflict(session, f"Email {email} is already registered")
    session.refresh(user)
    logger.info("User %s (%s) created in group %s by %s", user.id, role_type, group.id, actor.id)
    return user


def update_user(session: Session, actor: User, user_id: int, payload: UserUpdate) -> User:
    ensure_capability(actor, CAP_USERS_MANAGE, "Only the RW leader or an RT admin may edit users")
    user = _get_user_or_404(session, user_id)
    ensure_officer_scope(session, actor, user.community_group_id)
    before = _user_snapshot(user)
    changes = payload.model_dump(exclude_unset=True)

    group = user.community_group
    if changes.get("community_group_id") not in (None, user.community_group_id):
        if not actor.has_role(RoleType.LEADER):
            raise ForbiddenError("RT admins cannot move users to another RT")
        ensure_same_tenant(session, actor, changes["community_group_id"])
        group = get_group_or_404(session, changes["community_group_id"])

    role_type = user.role_type
    if changes.get("role_type") is not None:
        role_type = RoleType(changes["role_type"]).value
        if role_type != user.role_type:
            _ensure_can_assign(actor, role_type)

    if role_type != user.role_type or group.id != user.community_group_id:
        _ensure_role_fits_group(role_type, group)
        if role_type == RoleType.TREASURER.value:
            _ensure_single_treasurer(session, group.id, exclude_user_id=user.id)

    if changes.get("email"):
        email = changes["email"].lower()
        _ensure_email_free(session, email, exclude_user_id=user.id)
        user.email = email
    for field in ("full_name", "phone", "address"):
        if field in changes and changes[field] is not None:
            setattr(user, field, changes[field])
    if changes.get("password"):
        user.hashed_password = get_password_hash(changes["password"])
    if changes.get("is_active") is not None:
        user.is_active = changes["is_active"]
    user.role_type = role_type
    user.community_group_id = group.id

    audit_log(
        db_session=session,
        actor_user_id=actor.id,
        action="user.update",
        target_entity_type="User",
        target_entity_id=str(user.id),
        before=before,
        after=_user_snapshot(user),
    )
    commit_or_conflict(session, "Email is already registered")
    session.refresh(user)
    return user


def _visible_group_ids(session: Session, actor: User) -> List[int]:
    own_group = get_group_or_404(session, actor.community_group_id)
    if own_group.is_rw:
        return tenant_group_ids(session, own_group.id)
    return [own_group.id]


def list_users(
    session: Session,
    actor: User,
    search: Optional[str] = None,
    role_type: Optional[RoleType] = None,
    group_id: Optional[int] = None,
    page: int = 1,
    limit: int = 20,
) -> Dict[str, Any]:
    ensure_capability(actor, CAP_USERS_VIEW, "Only group officers may list users")
    if page < 1 or limit < 1:
        raise BadRequestError("Page and limit must be positive")

    visible = _visible_group_ids(session, actor)
    if group_id is not None:
        if group_id not in visible:
            raise ForbiddenError("Group is outside your area")
        visible = [group_id]

    query = session.query(User).filter(User.community_group_id.in_(visible))
    if role_type:
        query = query.filter(User.role_type == RoleType(role_type).value)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(
            or_(User.full_name.ilike(pattern), User.email.ilike(pattern), User.phone.ilike(pattern))
        )

    total = query.count()
    users = (
        query.order_by(User.full_name.asc(), User.id.asc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "data": users,
        "meta": {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": math.ceil(total / limit) if total else 0,
        },
    }


def deactivate_user(session: Session, actor: User, user_id: int) -> User:
    ensure_capability(actor, CAP_USERS_MANAGE, "Only the RW leader or an RT admin may remove users")
    user = _get_user_or_404(session, user_id)
    if user.id == actor.id:
        raise BadRequestError("You cannot deactivate your own account")
    ensure_officer_scope(session, actor, user.community_group_id)

    before = _user_snapshot(user)
    user.is_active = False
    audit_log(
        db_session=session,
        actor_user_id=actor.id,
        action="user.deactivate",
        target_entity_type="User",
        target_entity_id=str(user.id),
        before=before,
        after=_user_snapshot(user),
    )
    session.commit()
    session.refresh(user)
    return user
