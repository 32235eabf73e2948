import logging
from typing import Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from ..constants import DEFAULT_ROLE_LABELS, ROLE_LABEL_MAX_LENGTH, RoleType
from ..core.errors import BadRequestError, NotFoundError
from ..models.models import RoleLabelSetting
from .audit import audit_log
from .persistence import commit_or_conflict

logger = logging.getLogger(__name__)


def _role_value(role_type) -> str:
    try:
        return RoleType(role_type).value
    except ValueError as exc:
        raise BadRequestError(f"Unknown role type '{role_type}'") from exc


def _clean_label(label: str) -> str:
    cleaned = (label or "").strip()
    if not 1 <= len(cleaned) <= ROLE_LABEL_MAX_LENGTH:
        raise BadRequestError(f"Role label must be between 1 and {ROLE_LABEL_MAX_LENGTH} characters")
    return cleaned


def _find(session: Session, rw_group_id: int, role_type: str) -> Optional[RoleLabelSetting]:
    return (
        session.query(RoleLabelSetting)
        .filter(
            RoleLabelSetting.community_group_id == rw_group_id,
            RoleLabelSetting.role_type == role_type,
        )
        .first()
    )


def list_role_labels(session: Session, rw_group_id: int) -> List[RoleLabelSetting]:
    return (
        session.query(RoleLabelSetting)
        .filter(RoleLabelSetting.community_group_id == rw_group_id)
        .order_by(RoleLabelSetting.role_type.asc())
        .all()
    )


def get_role_label_map(session: Session, rw_group_id: int) -> Dict[str, str]:
    """Overrides only; roles missing from the map use ``DEFAULT_ROLE_LABELS``."""
    return {setting.role_type: setting.label for setting in list_role_labels(session, rw_group_id)}


def resolve_role_label(role_type, overrides: Dict[str, str]) -> str:
    role = _role_value(role_type)
    return overrides.get(role) or DEFAULT_ROLE_LABELS[role]


def upsert_role_label(
    session: Session,
    rw_group_id: int,
    role_type,
    label: str,
    actor_user_id: Optional[int] = None,
) -> RoleLabelSetting:
    role = _role_value(role_type)
    cleaned = _clean_label(label)

    setting = _find(session, rw_group_id, role)
    before = {"label": setting.label} if setting else None
    if setting is None:
        setting = RoleLabelSetting(community_group_id=rw_group_id, role_type=role, label=cleaned)
        session.add(setting)
    else:
        setting.label = cleaned
    session.flush()

    audit_log(
        db_session=session,
        actor_user_id=actor_user_id,
        action="settings.role_label.upsert",
        target_entity_type="RoleLabelSetting",
        target_entity_id=f"{rw_group_id}:{role}",
        before=before,
        after={"label": cleaned},
    )
    commit_or_conflict(session, f"A label for {role} was written concurrently; retry the request")
    session.refresh(setting)
    return setting


def delete_role_label(
    session: Session,
    rw_group_id: int,
    role_type,
    actor_user_id: Optional[int] = None,
) -> None:
    role = _role_value(role_type)
    setting = _find(session, rw_group_id, role)
    if setting is None:
        raise NotFoundError(f"No custom label for {role} in this RW")

    audit_log(
        db_session=session,
        actor_user_id=actor_user_id,
        action="settings.role_label.delete",
        target_entity_type="RoleLabelSetting",
        target_entity_id=f"{rw_group_id}:{role}",
        before={"label": setting.label},
    )
    session.delete(setting)
    session.commit()


class RoleLabelCache:
    """Per-session cache of the label map.

    The first successful fetch is kept until ``invalidate`` is called; a fetch
    that raises leaves the cache empty so the next call tries again. Callers
    that upsert or delete a label must invalidate (or ``refresh``) afterwards.
    """

    def __init__(self, fetch: Callable[[], Dict[str, str]]):
        self._fetch = fetch
        self._labels: Optional[Dict[str, str]] = None

    @property
    def loaded(self) -> bool:
        return self._labels is not None

    def get(self) -> Dict[str, str]:
        if self._labels is None:
            self._labels = dict(self._fetch())
        return self._labels

    def label_for(self, role_type) -> str:
        return resolve_role_label(role_type, self.get())

    def invalidate(self) -> None:
        self._labels = None

    def refresh(self) -> Dict[str, str]:
        self.invalidate()
        return self.get()
