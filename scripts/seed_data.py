#!/usr/bin/env python
"""
Seed script to populate the database with one RW and its RTs for local development.

Usage:
    python scripts/seed_data.py --rt-groups 3 --residents 5
"""

import argparse

from rukun.auth.jwt import get_password_hash
from rukun.config import Base, SessionLocal, engine
from rukun.constants import DEFAULT_RESIDENT_PASSWORD, GroupType, RoleType
from rukun.models.models import CommunityGroup, DuesRule, User

LEADER_EMAIL = "leader@example.com"


def create_user(session, email: str, full_name: str, role: RoleType, group: CommunityGroup) -> User:
    user = session.query(User).filter(User.email == email).first()
    if user:
        return user
    user = User(
        email=email,
        full_name=full_name,
        hashed_password=get_password_hash(DEFAULT_RESIDENT_PASSWORD),
        role_type=role.value,
        community_group_id=group.id,
        is_active=True,
    )
    session.add(user)
    session.flush()
    return user


def create_rw(session, name: str, amount: int, due_day: int) -> CommunityGroup:
    rw = (
        session.query(CommunityGroup)
        .filter(CommunityGroup.name == name, CommunityGroup.type == GroupType.RW.value)
        .first()
    )
    if rw:
        return rw
    rw = CommunityGroup(name=name, type=GroupType.RW.value)
    session.add(rw)
    session.flush()
    session.add(DuesRule(community_group_id=rw.id, amount=amount, due_day=due_day, is_active=True))
    create_user(session, LEADER_EMAIL, "RW Leader", RoleType.LEADER, rw)
    create_user(session, "rw.treasurer@example.com", "RW Treasurer", RoleType.TREASURER, rw)
    return rw


def create_rt_bundle(session, rw: CommunityGroup, index: int, residents: int) -> None:
    rt = CommunityGroup(name=f"RT {index:02d}", type=GroupType.RT.value, parent_id=rw.id)
    session.add(rt)
    session.flush()

    create_user(session, f"rt{index:02d}.admin@example.com", f"RT {index:02d} Admin", RoleType.ADMIN, rt)
    create_user(session, f"rt{index:02d}.treasurer@example.com", f"RT {index:02d} Treasurer", RoleType.TREASURER, rt)
    for number in range(1, residents + 1):
        create_user(
            session,
            f"rt{index:02d}.resident{number:02d}@example.com",
            f"Resident {index:02d}-{number:02d}",
            RoleType.RESIDENT,
            rt,
        )


def seed_database(rw_name: str, rt_groups: int, residents: int, amount: int, due_day: int) -> None:
    Base.metadata.create_all(bind=engine)
    with SessionLocal() as session:
        rw = create_rw(session, rw_name, amount, due_day)

        existing = (
            session.query(CommunityGroup)
            .filter(CommunityGroup.parent_id == rw.id)
            .count()
        )
        targets = max(rt_groups, 0)
        for offset in range(targets):
            create_rt_bundle(session, rw, existing + offset + 1, max(residents, 0))

        session.commit()
        print(
            f"Seed complete. RW '{rw.name}' with {targets} new RT groups "
            f"(login {LEADER_EMAIL}, password: '{DEFAULT_RESIDENT_PASSWORD}')."
        )


def main():
    parser = argparse.ArgumentParser(description="Seed the community database with sample data.")
    parser.add_argument("--rw-name", default="RW 05", help="Name of the RW group to create or reuse")
    parser.add_argument("--rt-groups", type=int, default=3, help="Number of RT groups to create")
    parser.add_argument("--residents", type=int, default=5, help="Residents per RT group")
    parser.add_argument("--amount", type=int, default=50000, help="Monthly dues in the smallest currency unit")
    parser.add_argument("--due-day", type=int, default=10, help="Day of month dues fall due")
    args = parser.parse_args()
    seed_database(args.rw_name, args.rt_groups, args.residents, args.amount, args.due_day)


if __name__ == "__main__":
    main()
