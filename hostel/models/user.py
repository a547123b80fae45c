from sqlalchemy import Column, Integer, String, Boolean, DateTime
from sqlalchemy.orm import relationship
from hostel.database import Base
from hostel.utils.clock import utcnow


class User(Base):
    """
    Read-only mirror of the platform's identity service.
    The hostel engine only checks that a user exists; it never edits accounts.
    """
    __tablename__ = "users"

    id        = Column(Integer, primary_key=True, index=True)
    name      = Column(String(150), nullable=False)
    email     = Column(String(255), unique=True, nullable=False, index=True)
    isActive  = Column(Boolean, default=True, nullable=False)
    createdAt = Column(DateTime, default=utcnow, nullable=False)

    # ─── Relationships ─────────────────────────────────────────────────────────
    allocations      = relationship("HostelAllocation", back_populates="user")
    service_requests = relationship("ServiceRequest", foreign_keys="ServiceRequest.userId",
                                    back_populates="reporter")
    audit_logs       = relationship("AuditLog", back_populates="user")

    def __repr__(self):
        return f"<User id={self.id} email={self.email}>"
