import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.errors import ConflictError

logger = logging.getLogger(__name__)


def commit_or_conflict(session: Session, conflict_message: str) -> None:
    """Commit the unit of work, reporting unique-key violations as conflicts."""
    try:
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        logger.warning("Integrity error on commit: %s", exc.orig)
        raise ConflictError(conflict_message) from exc
