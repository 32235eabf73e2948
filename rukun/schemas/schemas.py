from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from ..constants import (
    MAX_PAYMENT_MONTHS,
    MIN_PAYMENT_MONTHS,
    GroupType,
    PaymentStatus,
    RoleType,
)


class Token(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    role_type: RoleType
    expires_in: int
    refresh_expires_in: int


class TokenRefreshRequest(BaseModel):
    refresh_token: str


# --- Groups ---


class GroupRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    type: GroupType
    parent_id: Optional[int] = None
    created_at: datetime


class GroupCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)


class GroupUpdate(BaseModel):
    name: str = Field(min_length=1, max_length=100)


class RwGroupRef(BaseModel):
    group_id: int
    rw_group_id: int


# --- Users ---


class UserRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: EmailStr
    full_name: str
    phone: Optional[str] = None
    address: Optional[str] = None
    role_type: RoleType
    community_group_id: int
    is_active: bool
    created_at: datetime
    last_paid_period: Optional[date] = None


class UserCreate(BaseModel):
    email: EmailStr
    full_name: str = Field(min_length=1, max_length=120)
    password: Optional[str] = Field(default=None, min_length=8)
    phone: Optional[str] = None
    address: Optional[str] = None
    role_type: RoleType = RoleType.RESIDENT
    community_group_id: Optional[int] = None


class UserUpdate(BaseModel):
    email: Optional[EmailStr] = None
    full_name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    password: Optional[str] = Field(default=None, min_length=8)
    phone: Optional[str] = None
    address: Optional[str] = None
    role_type: Optional[RoleType] = None
    community_group_id: Optional[int] = None
    is_active: Optional[bool] = None


class PageMeta(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class UserPage(BaseModel):
    data: List[UserRead]
    meta: PageMeta


# --- Dues ---


class EffectiveDuesRuleRead(BaseModel):
    group_id: int
    amount: int
    due_day: int
    is_active: bool
    source: str


class DuesRuleRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    community_group_id: int
    amount: int
    due_day: Optional[int] = None
    is_active: bool
    updated_at: datetime


class DuesConfigRequest(BaseModel):
    amount: int = Field(gt=0)
    due_day: Optional[int] = Field(default=None, ge=1, le=31)
    group_id: Optional[int] = None


class DuesConfigResponse(BaseModel):
    rule: DuesRuleRead
    due_day_ignored: bool


class MonthStatus(BaseModel):
    month: int
    state: str


class UserDuesStatus(BaseModel):
    user_id: int
    year: int
    joined_period: str
    last_paid_period: Optional[date] = None
    months: List[MonthStatus]


class ManualContributionCreate(BaseModel):
    user_id: int
    year: int = Field(ge=2000, le=2100)
    month: int = Field(ge=1, le=12)
    amount: int = Field(gt=0)


class ContributionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    year: int
    month: int
    amount: int
    paid_at: datetime
    transaction_id: Optional[int] = None


# --- Payments ---


class PaymentRequestCreate(BaseModel):
    months: int = Field(ge=MIN_PAYMENT_MONTHS, le=MAX_PAYMENT_MONTHS)


class PaymentRequestRead(BaseModel):
    amount: int
    target_paid_through: date
    months: int
    order_id: Optional[str] = None
    resumed: bool = False


class PaymentTransactionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    order_id: str
    user_id: int
    amount: int
    months: int
    target_paid_through: date
    status: PaymentStatus
    checkout_url: Optional[str] = None
    created_at: datetime
    paid_at: Optional[datetime] = None


# --- Role labels ---


class RoleLabelUpsert(BaseModel):
    role_type: RoleType
    label: str


class RoleLabelRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    role_type: RoleType
    label: str
    community_group_id: int


class HierarchyRead(BaseModel):
    rw: Dict[str, Any]
    rt_groups: List[Dict[str, Any]]
