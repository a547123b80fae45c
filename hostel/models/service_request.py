import enum
from sqlalchemy import Column, Integer, String, Text, ForeignKey, Numeric, Enum, DateTime, CheckConstraint, Index
from sqlalchemy.orm import relationship
from hostel.database import Base
from hostel.models.room import MaintenanceStatus
from hostel.utils.clock import utcnow


class ServiceType(str, enum.Enum):
    MAINTENANCE  = "maintenance"
    CLEANING     = "cleaning"
    PEST_CONTROL = "pest_control"
    ELECTRICAL   = "electrical"
    PLUMBING     = "plumbing"
    FURNITURE    = "furniture"
    OTHER        = "other"


class ServicePriority(str, enum.Enum):
    LOW    = "low"
    MEDIUM = "medium"
    HIGH   = "high"
    URGENT = "urgent"


class ServiceStatus(str, enum.Enum):
    SUBMITTED    = "submitted"
    ACKNOWLEDGED = "acknowledged"
    IN_PROGRESS  = "in_progress"
    RESOLVED     = "resolved"
    CANCELLED    = "cancelled"


OPEN_SERVICE_STATUSES = (ServiceStatus.SUBMITTED, ServiceStatus.ACKNOWLEDGED, ServiceStatus.IN_PROGRESS)


class ServiceRequest(Base):
    __tablename__ = "hostel_service_requests"
    __table_args__ = (
        CheckConstraint('"feedbackRating" IS NULL OR ("feedbackRating" >= 1 AND "feedbackRating" <= 5)',
                        name="ck_service_feedback_rating"),
        Index("ix_service_room_status", "roomId", "status"),
        Index("ix_service_type_priority", "type", "priority"),
    )

    id                  = Column(Integer, primary_key=True, index=True)
    userId              = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    roomId              = Column(Integer, ForeignKey("hostel_rooms.id"), nullable=False, index=True)
    type                = Column(Enum(ServiceType), nullable=False, index=True)
    title               = Column(String(200), nullable=False)
    description         = Column(Text, nullable=False)
    priority            = Column(Enum(ServicePriority), default=ServicePriority.MEDIUM, nullable=False)
    status              = Column(Enum(ServiceStatus), default=ServiceStatus.SUBMITTED, nullable=False, index=True)
    assignedTo          = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    estimatedCost       = Column(Numeric(12, 2), nullable=True)
    actualCost          = Column(Numeric(12, 2), nullable=True)
    scheduledDate       = Column(DateTime, nullable=True)
    completedDate       = Column(DateTime, nullable=True)
    # Maintenance status this request put on its room, if any
    roomStatusFlag      = Column(Enum(MaintenanceStatus), nullable=True)
    # Room change requests only: the room the occupant was in when filing and the one they asked for
    currentRoomId       = Column(Integer, ForeignKey("hostel_rooms.id"), nullable=True)
    requestedRoomId     = Column(Integer, ForeignKey("hostel_rooms.id"), nullable=True)
    feedbackRating      = Column(Integer, nullable=True)
    feedbackComment     = Column(Text, nullable=True)
    feedbackSubmittedAt = Column(DateTime, nullable=True)
    adminNotes          = Column(Text, nullable=True)
    createdAt           = Column(DateTime, default=utcnow, nullable=False)
    updatedAt           = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    # ─── Relationships ─────────────────────────────────────────────────────────
    room           = relationship("HostelRoom", foreign_keys=[roomId], back_populates="service_requests")
    requested_room = relationship("HostelRoom", foreign_keys=[requestedRoomId])
    reporter       = relationship("User", foreign_keys=[userId], back_populates="service_requests")
    assignee       = relationship("User", foreign_keys=[assignedTo])

    # ─── Derived ───────────────────────────────────────────────────────────────
    def can_cancel(self) -> bool:
        return self.status in (ServiceStatus.SUBMITTED, ServiceStatus.ACKNOWLEDGED)

    def can_assign(self) -> bool:
        return self.status not in (ServiceStatus.RESOLVED, ServiceStatus.CANCELLED)

    def is_open(self) -> bool:
        return self.status in OPEN_SERVICE_STATUSES

    def is_room_change(self) -> bool:
        return self.currentRoomId is not None

    def resolution_time(self) -> int | None:
        """Hours from submission to completion, rounded; None until resolved."""
        if not self.completedDate:
            return None
        return round((self.completedDate - self.createdAt).total_seconds() / 3600)

    def __repr__(self):
        return f"<ServiceRequest id={self.id} room={self.roomId} type={self.type} status={self.status}>"
