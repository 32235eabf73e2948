from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship as orm_relationship

from ..config import Base
from ..constants import GroupType, PaymentStatus, RoleType


def utcnow():
    return datetime.now(timezone.utc)


class CommunityGroup(Base):
    __tablename__ = "community_groups"
    __table_args__ = (
        CheckConstraint(
            "(type = 'RW' AND parent_id IS NULL) OR (type = 'RT' AND parent_id IS NOT NULL)",
            name="ck_community_group_parent",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    type = Column(String, nullable=False, index=True)
    parent_id = Column(Integer, ForeignKey("community_groups.id"), nullable=True, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    parent = orm_relationship("CommunityGroup", remote_side=[id], back_populates="children")
    children = orm_relationship(
        "CommunityGroup",
        back_populates="parent",
        order_by="CommunityGroup.name",
    )
    dues_rule = orm_relationship(
        "DuesRule",
        back_populates="community_group",
        uselist=False,
        cascade="all, delete-orphan",
    )
    users = orm_relationship("User", back_populates="community_group", foreign_keys="User.community_group_id")
    role_labels = orm_relationship("RoleLabelSetting", back_populates="community_group", cascade="all, delete-orphan")

    @property
    def is_rw(self) -> bool:
        return self.type == GroupType.RW.value

    @property
    def is_rt(self) -> bool:
        return self.type == GroupType.RT.value


class DuesRule(Base):
    __tablename__ = "dues_rules"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_dues_rule_amount_positive"),
        CheckConstraint("due_day IS NULL OR (due_day BETWEEN 1 AND 31)", name="ck_dues_rule_due_day"),
    )

    id = Column(Integer, primary_key=True, index=True)
    community_group_id = Column(
        Integer,
        ForeignKey("community_groups.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    amount = Column(Integer, nullable=False)
    # NULL on an RT rule means the due day comes from the RW rule.
    due_day = Column(Integer, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    community_group = orm_relationship("CommunityGroup", back_populates="dues_rule")


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    full_name = Column(String, nullable=False)
    phone = Column(String, nullable=True)
    address = Column(String, nullable=True)
    hashed_password = Column(String, nullable=False)
    role_type = Column(String, nullable=False, default=RoleType.RESIDENT.value, index=True)
    community_group_id = Column(Integer, ForeignKey("community_groups.id"), nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    # First day of the month the resident has paid through.
    last_paid_period = Column(Date, nullable=True)
    profile_image = Column(String, nullable=True)
    created_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    community_group = orm_relationship("CommunityGroup", back_populates="users", foreign_keys=[community_group_id])
    created_by = orm_relationship("User", remote_side=[id])
    contributions = orm_relationship(
        "Contribution",
        back_populates="user",
        cascade="all, delete-orphan",
    )
    transactions = orm_relationship("PaymentTransaction", back_populates="user", cascade="all, delete-orphan")
    audit_logs = orm_relationship("AuditLog", back_populates="actor")

    @property
    def role(self) -> RoleType:
        return RoleType(self.role_type)

    def has_role(self, role: RoleType) -> bool:
        return self.role_type == RoleType(role).value

    def has_any_role(self, *roles: RoleType) -> bool:
        return any(self.has_role(role) for role in roles)


class Contribution(Base):
    __tablename__ = "contributions"
    __table_args__ = (
        UniqueConstraint("user_id", "month", "year", name="uq_contribution_user_period"),
        CheckConstraint("month BETWEEN 1 AND 12", name="ck_contribution_month"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    month = Column(Integer, nullable=False)
    year = Column(Integer, nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    paid_at = Column(DateTime, default=utcnow, nullable=False)
    transaction_id = Column(Integer, ForeignKey("payment_transactions.id"), nullable=True)

    user = orm_relationship("User", back_populates="contributions")
    transaction = orm_relationship("PaymentTransaction", back_populates="contributions")


class RoleLabelSetting(Base):
    __tablename__ = "role_label_settings"
    __table_args__ = (UniqueConstraint("role_type", "community_group_id", name="uq_role_label_group"),)

    id = Column(Integer, primary_key=True, index=True)
    role_type = Column(String, nullable=False)
    label = Column(String(50), nullable=False)
    community_group_id = Column(
        Integer,
        ForeignKey("community_groups.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    community_group = orm_relationship("CommunityGroup", back_populates="role_labels")


class PaymentTransaction(Base):
    __tablename__ = "payment_transactions"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(String, unique=True, index=True, nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    months = Column(Integer, nullable=False)
    target_paid_through = Column(Date, nullable=False)
    status = Column(String, nullable=False, default=PaymentStatus.PENDING.value, index=True)
    checkout_url = Column(String, nullable=True)
    gateway_reference = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    paid_at = Column(DateTime, nullable=True)

    user = orm_relationship("User", back_populates="transactions")
    contributions = orm_relationship("Contribution", back_populates="transaction")


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    timestamp = Column(DateTime, default=utcnow, index=True, nullable=False)
    actor_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    action = Column(String, nullable=False)
    target_entity_type = Column(String, nullable=True)
    target_entity_id = Column(String, nullable=True)
    before = Column(Text, nullable=True)
    after = Column(Text, nullable=True)

    actor = orm_relationship("User", back_populates="audit_logs")
