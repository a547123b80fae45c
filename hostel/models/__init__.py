"""
Import all models here so that:
1. Alembic can auto-detect them when generating migrations
2. Relationships between models resolve correctly

Order matters: import parent tables before child tables.
"""

from hostel.models.user import User
from hostel.models.room import HostelRoom, RoomType, MaintenanceStatus
from hostel.models.allocation import HostelAllocation, AllocationStatus
from hostel.models.service_request import ServiceRequest, ServiceType, ServicePriority, ServiceStatus
from hostel.models.audit_log import AuditLog

__all__ = [
    "User",
    "HostelRoom",
    "RoomType",
    "MaintenanceStatus",
    "HostelAllocation",
    "AllocationStatus",
    "ServiceRequest",
    "ServiceType",
    "ServicePriority",
    "ServiceStatus",
    "AuditLog",
]
