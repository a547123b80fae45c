import enum
from sqlalchemy import (
    Column, Integer, String, Text, Boolean, Numeric, Enum, DateTime, JSON,
    CheckConstraint, Index,
)
from sqlalchemy.orm import relationship
from hostel.database import Base
from hostel.utils.clock import utcnow


class RoomType(str, enum.Enum):
    SINGLE = "single"
    DOUBLE = "double"
    TRIPLE = "triple"
    QUAD   = "quad"


class MaintenanceStatus(str, enum.Enum):
    GOOD              = "good"
    NEEDS_REPAIR      = "needs_repair"
    UNDER_MAINTENANCE = "under_maintenance"
    OUT_OF_ORDER      = "out_of_order"


# Higher is worse
MAINTENANCE_SEVERITY = {
    MaintenanceStatus.GOOD:              0,
    MaintenanceStatus.NEEDS_REPAIR:      1,
    MaintenanceStatus.UNDER_MAINTENANCE: 2,
    MaintenanceStatus.OUT_OF_ORDER:      3,
}


MIN_CAPACITY = 1
MAX_CAPACITY = 4
MIN_FLOOR    = 0
MAX_FLOOR    = 50

TYPE_BY_CAPACITY = {
    1: RoomType.SINGLE,
    2: RoomType.DOUBLE,
    3: RoomType.TRIPLE,
    4: RoomType.QUAD,
}


class HostelRoom(Base):
    __tablename__ = "hostel_rooms"
    __table_args__ = (
        CheckConstraint('capacity >= 1 AND capacity <= 4', name="ck_room_capacity"),
        CheckConstraint('"currentOccupancy" >= 0 AND "currentOccupancy" <= capacity',
                        name="ck_room_occupancy"),
        Index("ix_room_block_floor", "block", "floor"),
        Index("ix_room_maintenance_active", "maintenanceStatus", "isActive"),
    )

    id                = Column(Integer, primary_key=True, index=True)
    roomNumber        = Column(String(50), unique=True, nullable=False, index=True)
    block             = Column(String(20), nullable=False, index=True)
    floor             = Column(Integer, nullable=False)
    type              = Column(Enum(RoomType), nullable=False, index=True)
    capacity          = Column(Integer, nullable=False)
    currentOccupancy  = Column(Integer, default=0, nullable=False)
    rent              = Column(Numeric(12, 2), default=0, nullable=False)
    deposit           = Column(Numeric(12, 2), default=0, nullable=False)
    amenities         = Column(JSON, default=list, nullable=False)
    description       = Column(Text, nullable=True)
    maintenanceStatus = Column(Enum(MaintenanceStatus), default=MaintenanceStatus.GOOD, nullable=False)
    isActive          = Column(Boolean, default=True, nullable=False)
    createdAt         = Column(DateTime, default=utcnow, nullable=False)
    updatedAt         = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    # ─── Relationships ─────────────────────────────────────────────────────────
    allocations      = relationship("HostelAllocation", back_populates="room")
    service_requests = relationship("ServiceRequest", back_populates="room",
                                    foreign_keys="ServiceRequest.roomId")

    # ─── Derived ───────────────────────────────────────────────────────────────
    @property
    def availableSpots(self) -> int:
        return self.capacity - self.currentOccupancy

    @property
    def isAvailable(self) -> bool:
        return (
            self.isActive
            and self.maintenanceStatus == MaintenanceStatus.GOOD
            and self.currentOccupancy < self.capacity
        )

    def can_accommodate(self, count: int = 1) -> bool:
        return (
            self.isActive
            and self.maintenanceStatus == MaintenanceStatus.GOOD
            and self.availableSpots >= count
        )

    def __repr__(self):
        return (f"<HostelRoom id={self.id} number={self.roomNumber} "
                f"occupancy={self.currentOccupancy}/{self.capacity}>")
