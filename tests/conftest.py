import sys
from collections.abc import Callable, Generator
from datetime import date, datetime
from pathlib import Path
from types import SimpleNamespace
from typing import Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from rukun.config import Base  # noqa: E402
import rukun.config as app_config  # noqa: E402
import rukun.auth.jwt as app_jwt  # noqa: E402
from rukun.constants import GroupType, RoleType  # noqa: E402
# Import the full models module so all tables (including audit_logs) register with Base metadata.
from rukun.models import models as _all_models  # noqa: E402,F401
from rukun.models.models import CommunityGroup, DuesRule, User  # noqa: E402

# Hashing with the real bcrypt cost on every factory call makes the suite crawl.
TEST_PASSWORD_HASH = app_jwt.get_password_hash("changeme")


@pytest.fixture(scope="session", autouse=True)
def _configure_global_test_db(tmp_path_factory):
    """Point the app-wide SessionLocal/engine at a DB with all tables."""
    db_dir = tmp_path_factory.mktemp("globaldb")
    db_path = db_dir / "app.db"
    engine = create_engine(f"sqlite:///{db_path}")
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine)
    app_config.SessionLocal = SessionLocal
    app_config.engine = engine
    app_jwt.SessionLocal = SessionLocal
    yield
    engine.dispose()


@pytest.fixture
def db_session(tmp_path) -> Generator[Session, None, None]:
    """Provide a fresh SQLite database for each test."""
    db_path = tmp_path / "test.db"
    engine = create_engine(f"sqlite:///{db_path}")
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture
def create_group(db_session: Session) -> Callable[..., CommunityGroup]:
    def _create(name: str, group_type: GroupType = GroupType.RT, parent: Optional[CommunityGroup] = None) -> CommunityGroup:
        group = CommunityGroup(
            name=name,
            type=GroupType(group_type).value,
            parent_id=parent.id if parent else None,
        )
        db_session.add(group)
        db_session.commit()
        return group

    return _create


@pytest.fixture
def create_user(db_session: Session) -> Callable[..., User]:
    counter = {"value": 0}

    def _create(
        group: CommunityGroup,
        role: RoleType = RoleType.RESIDENT,
        email: Optional[str] = None,
        full_name: Optional[str] = None,
        created_at: Optional[datetime] = None,
        last_paid_period: Optional[date] = None,
    ) -> User:
        counter["value"] += 1
        user = User(
            email=email or f"user{counter['value']}@example.com",
            full_name=full_name or f"User {counter['value']}",
            hashed_password=TEST_PASSWORD_HASH,
            role_type=RoleType(role).value,
            community_group_id=group.id,
            last_paid_period=last_paid_period,
        )
        if created_at is not None:
            user.created_at = created_at
        db_session.add(user)
        db_session.commit()
        return user

    return _create


@pytest.fixture
def create_rule(db_session: Session) -> Callable[..., DuesRule]:
    def _create(group: CommunityGroup, amount: int = 50000, due_day: Optional[int] = 10, is_active: bool = True) -> DuesRule:
        rule = DuesRule(community_group_id=group.id, amount=amount, due_day=due_day, is_active=is_active)
        db_session.add(rule)
        db_session.commit()
        db_session.refresh(group)
        return rule

    return _create


@pytest.fixture
def community(create_group, create_user) -> SimpleNamespace:
    """One RW with two RTs and the usual officers."""
    rw = create_group("RW 05", GroupType.RW)
    rt1 = create_group("RT 01", GroupType.RT, parent=rw)
    rt2 = create_group("RT 02", GroupType.RT, parent=rw)
    return SimpleNamespace(
        rw=rw,
        rt1=rt1,
        rt2=rt2,
        leader=create_user(rw, RoleType.LEADER, email="leader@example.com", full_name="Pak Leader"),
        rw_treasurer=create_user(rw, RoleType.TREASURER, email="rw.treasurer@example.com"),
        admin1=create_user(rt1, RoleType.ADMIN, email="admin1@example.com", full_name="Admin Satu"),
        treasurer1=create_user(rt1, RoleType.TREASURER, email="treasurer1@example.com"),
        admin2=create_user(rt2, RoleType.ADMIN, email="admin2@example.com"),
        resident1=create_user(rt1, RoleType.RESIDENT, email="resident1@example.com", created_at=datetime(2024, 1, 15)),
        resident2=create_user(rt2, RoleType.RESIDENT, email="resident2@example.com", created_at=datetime(2024, 1, 15)),
    )


@pytest.fixture
def other_community(create_group, create_user) -> SimpleNamespace:
    rw = create_group("RW 09", GroupType.RW)
    rt = create_group("RT 01", GroupType.RT, parent=rw)
    return SimpleNamespace(
        rw=rw,
        rt=rt,
        leader=create_user(rw, RoleType.LEADER, email="leader9@example.com"),
        resident=create_user(rt, RoleType.RESIDENT, email="resident9@example.com"),
    )
