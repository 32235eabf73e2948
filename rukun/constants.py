from enum import Enum
from typing import Dict, FrozenSet


class GroupType(str, Enum):
    RW = "RW"
    RT = "RT"


class RoleType(str, Enum):
    LEADER = "LEADER"
    ADMIN = "ADMIN"
    TREASURER = "TREASURER"
    RESIDENT = "RESIDENT"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"


DEFAULT_ROLE_LABELS: Dict[str, str] = {
    RoleType.LEADER.value: "Group Leader",
    RoleType.ADMIN.value: "Sub-group Admin",
    RoleType.TREASURER.value: "Treasurer",
    RoleType.RESIDENT.value: "Resident",
}

ROLE_LABEL_MAX_LENGTH = 50

# Capabilities checked by services and route dependencies.
CAP_GROUPS_MANAGE = "groups:manage"
CAP_USERS_MANAGE = "users:manage"
CAP_USERS_VIEW = "users:view"
CAP_DUES_SET_AMOUNT = "dues:set_amount"
CAP_DUES_SET_DUE_DAY = "dues:set_due_day"
CAP_DUES_VIEW_GROUP = "dues:view_group"
CAP_LABELS_MANAGE = "labels:manage"
CAP_PAYMENTS_VIEW_ALL = "payments:view_all"

_OFFICER_CAPABILITIES = frozenset(
    {
        CAP_USERS_VIEW,
        CAP_DUES_SET_AMOUNT,
        CAP_DUES_VIEW_GROUP,
        CAP_PAYMENTS_VIEW_ALL,
    }
)

ROLE_CAPABILITIES: Dict[RoleType, FrozenSet[str]] = {
    RoleType.LEADER: _OFFICER_CAPABILITIES
    | {
        CAP_GROUPS_MANAGE,
        CAP_USERS_MANAGE,
        CAP_DUES_SET_DUE_DAY,
        CAP_LABELS_MANAGE,
    },
    RoleType.ADMIN: _OFFICER_CAPABILITIES | {CAP_USERS_MANAGE},
    RoleType.TREASURER: _OFFICER_CAPABILITIES,
    RoleType.RESIDENT: frozenset(),
}

MIN_PAYMENT_MONTHS = 1
MAX_PAYMENT_MONTHS = 12
DUES_ORDER_PREFIX = "DUES-"

DEFAULT_RESIDENT_PASSWORD = "Warga123!"
