import logging

from sqlalchemy.orm import Session

from ..auth.jwt import ensure_capability
from ..constants import CAP_GROUPS_MANAGE, GroupType
from ..core.errors import BadRequestError, ConflictError
from ..models.models import CommunityGroup, User
from .audit import audit_log
from .hierarchy import ensure_same_tenant, get_group_or_404, resolve_user_rw_group_id

logger = logging.getLogger(__name__)


def _clean_name(name: str) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise BadRequestError("Group name must not be empty")
    return cleaned


def create_rt_group(session: Session, actor: User, name: str) -> CommunityGroup:
    """Create an RT under the actor's own RW; the parent is never taken from input."""
    ensure_capability(actor, CAP_GROUPS_MANAGE, "Only the RW leader may create RT groups")
    rw_group_id = resolve_user_rw_group_id(session, actor)

    group = CommunityGroup(name=_clean_name(name), type=GroupType.RT.value, parent_id=rw_group_id)
    session.add(group)
    session.flush()
    audit_log(
        db_session=session,
        actor_user_id=actor.id,
        action="group.create",
        target_entity_type="CommunityGroup",
        target_entity_id=str(group.id),
        after={"name": group.name, "type": group.type, "parent_id": rw_group_id},
    )
    session.commit()
    session.refresh(group)
    logger.info("RT group %s created under RW %s", group.id, rw_group_id)
    return group


def rename_group(session: Session, actor: User, group_id: int, name: str) -> CommunityGroup:
    ensure_capability(actor, CAP_GROUPS_MANAGE, "Only the RW leader may rename groups")
    ensure_same_tenant(session, actor, group_id)
    group = get_group_or_404(session, group_id)

    before = {"name": group.name}
    group.name = _clean_name(name)
    audit_log(
        db_session=session,
        actor_user_id=actor.id,
        action="group.update",
        target_entity_type="CommunityGroup",
        target_entity_id=str(group.id),
        before=before,
        after={"name": group.name},
    )
    session.commit()
    session.refresh(group)
    return group


def delete_group(session: Session, actor: User, group_id: int) -> None:
    ensure_capability(actor, CAP_GROUPS_MANAGE, "Only the RW leader may delete groups")
    ensure_same_tenant(session, actor, group_id)
    group = get_group_or_404(session, group_id)

    if group.is_rw:
        raise BadRequestError("The RW group itself cannot be deleted")
    if group.users:
        raise ConflictError("Group still has members; move or remove them first")
    if group.children:
        raise ConflictError("Group still has child groups")

    audit_log(
        db_session=session,
        actor_user_id=actor.id,
        action="group.delete",
        target_entity_type="CommunityGroup",
        target_entity_id=str(group.id),
        before={"name": group.name, "type": group.type},
    )
    session.delete(group)
    session.commit()
