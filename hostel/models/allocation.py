import enum
import math
from datetime import datetime
from decimal import Decimal
from sqlalchemy import (
    Column, Integer, Text, ForeignKey, Numeric, Enum, DateTime,
    UniqueConstraint, CheckConstraint, Index,
)
from sqlalchemy.orm import relationship
from hostel.database import Base
from hostel.utils.clock import utcnow


class AllocationStatus(str, enum.Enum):
    PENDING     = "pending"
    ALLOCATED   = "allocated"
    CHECKED_IN  = "checked_in"
    CHECKED_OUT = "checked_out"
    CANCELLED   = "cancelled"


ACTIVE_STATUSES   = (AllocationStatus.ALLOCATED, AllocationStatus.CHECKED_IN)
TERMINAL_STATUSES = (AllocationStatus.CHECKED_OUT, AllocationStatus.CANCELLED)


class HostelAllocation(Base):
    __tablename__ = "hostel_allocations"

    id              = Column(Integer, primary_key=True, index=True)
    userId          = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    roomId          = Column(Integer, ForeignKey("hostel_rooms.id"), nullable=False, index=True)
    status          = Column(Enum(AllocationStatus), default=AllocationStatus.PENDING, nullable=False, index=True)
    bedNumber       = Column(Integer, nullable=True)
    allocatedDate   = Column(DateTime, nullable=False, index=True)
    checkInDate     = Column(DateTime, nullable=True)
    checkOutDate    = Column(DateTime, nullable=True)
    cancelledDate   = Column(DateTime, nullable=True)
    depositPaid     = Column(Numeric(12, 2), nullable=True)   # NULL until confirmed
    depositRefunded = Column(Numeric(12, 2), default=0, nullable=False)
    rentPaid        = Column(Numeric(12, 2), default=0, nullable=False)
    notes           = Column(Text, nullable=True)
    createdAt       = Column(DateTime, default=utcnow, nullable=False)
    updatedAt       = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("userId", "roomId", name="uq_allocation_user_room"),
        CheckConstraint('"bedNumber" IS NULL OR ("bedNumber" >= 1 AND "bedNumber" <= 4)',
                        name="ck_allocation_bed"),
        CheckConstraint('"depositRefunded" >= 0 AND "rentPaid" >= 0', name="ck_allocation_amounts"),
        CheckConstraint('"depositPaid" IS NULL OR "depositRefunded" <= "depositPaid"',
                        name="ck_allocation_refund"),
        # One active allocation per user, one active holder per bed
        Index("uq_allocation_active_user", userId, unique=True,
              sqlite_where=status.in_(ACTIVE_STATUSES),
              postgresql_where=status.in_(ACTIVE_STATUSES)),
        Index("uq_allocation_active_bed", roomId, bedNumber, unique=True,
              sqlite_where=status.in_(ACTIVE_STATUSES),
              postgresql_where=status.in_(ACTIVE_STATUSES)),
        Index("ix_allocation_room_status", roomId, status),
    )

    # ─── Relationships ─────────────────────────────────────────────────────────
    user = relationship("User", back_populates="allocations")
    room = relationship("HostelRoom", back_populates="allocations")

    # ─── Derived ───────────────────────────────────────────────────────────────
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def remainingDeposit(self) -> Decimal:
        return Decimal(self.depositPaid or 0) - Decimal(self.depositRefunded or 0)

    def stay_duration(self, now: datetime | None = None) -> int | None:
        """Whole days from check-in to check-out (or `now`), rounded up."""
        if not self.checkInDate:
            return None
        end = self.checkOutDate or now or utcnow()
        seconds = (end - self.checkInDate).total_seconds()
        return math.ceil(seconds / 86400)

    def __repr__(self):
        return (f"<HostelAllocation id={self.id} user={self.userId} "
                f"room={self.roomId} status={self.status}>")
