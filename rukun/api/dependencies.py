from fastapi import Depends
from sqlalchemy.orm import Session

# get_current_user resolves through the same session factory, so overriding
# get_db in tests covers both.
from ..auth.jwt import get_current_user, get_db
from ..models.models import User
from ..services.hierarchy import resolve_user_rw_group_id

__all__ = ["get_db", "get_current_user", "get_actor_rw_group_id"]


def get_actor_rw_group_id(db: Session = Depends(get_db), user: User = Depends(get_current_user)) -> int:
    """The caller's tenant, always derived from their own home group."""
    return resolve_user_rw_group_id(db, user)
