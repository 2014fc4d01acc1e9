from enum import Enum, IntEnum


class Gender(str, Enum):
    MALE = "male"
    FEMALE = "female"
    OTHER = "others"


class Bit(IntEnum):
    OFF = 0
    ON = 1


class PasswordStatus(str, Enum):
    ACTIVE = "active"
    DEACTIVATED = "deactivated"
    COMPROMISED = "compromised"
    BLACKLISTED = "blacklisted"


class ItemStatus(str, Enum):
    OPEN = "open"
    CREATED = "created"
    PENDING = "pending"
    IN_REVIEW = "in review"
    ACTIVE = "active"
    DEACTIVATED = "deactivated"
    DELETED = "deleted"
    ARCHIVED = "archived"
    SUSPENDED = "suspended"
    HIDDEN = "hidden"
    CLOSED = "closed"
    APPROVED = "approved"
    REJECTED = "rejected"
    USED = "used"
    SKIPPED = "skipped"
