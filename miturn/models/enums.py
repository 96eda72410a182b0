from enum import StrEnum

class Frequency(StrEnum):
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"

class CircleStatus(StrEnum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"

class PayoutPreference(StrEnum):
    FIXED = "fixed"
    RANDOM = "random"

class CircleRole(StrEnum):
    HOST = "host"
    MEMBER = "member"

class UserRole(StrEnum):
    ADMIN = "admin"
    USER = "user"

class TransactionType(StrEnum):
    CONTRIBUTION = "contribution"
    PAYOUT = "payout"

class TransactionStatus(StrEnum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not TransactionStatus.PENDING

class AllocationStatus(StrEnum):
    PENDING = "pending"
    PROCESSED = "processed"
    FAILED = "failed"

class MemberCycleStatus(StrEnum):
    DUE = "due"
    PAID = "paid"
    OVERDUE = "overdue"

class CycleStatus(StrEnum):
    COLLECTING = "collecting"
    READY = "ready"
    PAID = "paid"
    DEFERRED = "deferred"

class ReminderTier(StrEnum):
    GENTLE = "gentle"
    URGENT = "urgent"
    OVERDUE = "overdue"

class ReminderStatus(StrEnum):
    SENT = "sent"
    FAILED = "failed"

class LoyaltyTier(StrEnum):
    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"
    DIAMOND = "diamond"
