from collections import defaultdict
from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.orm import Session

from hostel.database import atomic
from hostel.models.allocation import HostelAllocation, AllocationStatus, ACTIVE_STATUSES
from hostel.models.room import HostelRoom, MaintenanceStatus
from hostel.models.service_request import ServiceRequest, ServiceStatus, OPEN_SERVICE_STATUSES
from hostel.services.room_service import RoomService, room_service
from hostel.utils.clock import Clock, utcnow
from hostel.utils.exceptions import NotFoundException
from hostel.utils.identity import UserDirectory, DatabaseUserDirectory


def _money(value) -> float:
    return round(float(value or 0), 2)


def _zeroed(enum_cls) -> dict:
    return {m.value: 0 for m in enum_cls}


class ReportService:
    """
    Read-only rollups over rooms, allocations and service requests.
    Each report runs inside a single transaction, so the figures are taken
    from one consistent snapshot.
    """

    def __init__(
        self,
        rooms: RoomService = room_service,
        users: UserDirectory | None = None,
        clock: Clock = utcnow,
    ):
        self.rooms = rooms
        self.users = users or DatabaseUserDirectory()
        self.clock = clock

    # ─── User Summary ─────────────────────────────────────────────────────────
    def user_summary(self, db: Session, user_id: int) -> dict:
        with atomic(db):
            if not self.users.user_exists(db, user_id):
                raise NotFoundException("User")

            by_status = _zeroed(AllocationStatus)
            rows = db.query(
                HostelAllocation.status,
                func.count(HostelAllocation.id),
                func.coalesce(func.sum(HostelAllocation.depositPaid), 0),
                func.coalesce(func.sum(HostelAllocation.depositRefunded), 0),
                func.coalesce(func.sum(HostelAllocation.rentPaid), 0),
            ).filter(HostelAllocation.userId == user_id)\
             .group_by(HostelAllocation.status).all()

            deposit_paid = refunded = rent_paid = Decimal(0)
            for status, count, paid, back, rent in rows:
                by_status[status.value] = count
                deposit_paid += Decimal(str(paid))
                refunded     += Decimal(str(back))
                rent_paid    += Decimal(str(rent))

            active_id = db.query(HostelAllocation.id).filter(
                HostelAllocation.userId == user_id,
                HostelAllocation.status.in_(ACTIVE_STATUSES),
            ).scalar()

            requests = _zeroed(ServiceStatus)
            cost_rows = db.query(
                ServiceRequest.status,
                func.count(ServiceRequest.id),
                func.coalesce(func.sum(ServiceRequest.actualCost), 0),
            ).filter(ServiceRequest.userId == user_id)\
             .group_by(ServiceRequest.status).all()
            total_cost = Decimal(0)
            for status, count, cost in cost_rows:
                requests[status.value] = count
                total_cost += Decimal(str(cost))

        return {
            "userId": user_id,
            "allocations": {
                "total":              sum(by_status.values()),
                "byStatus":           by_status,
                "activeAllocationId": active_id,
                "depositPaid":        _money(deposit_paid),
                "depositRefunded":    _money(refunded),
                "remainingDeposit":   _money(deposit_paid - refunded),
                "rentPaid":           _money(rent_paid),
            },
            "serviceRequests": {
                "total":           sum(requests.values()),
                "byStatus":        requests,
                "totalActualCost": _money(total_cost),
            },
        }

    # ─── Room Summary ─────────────────────────────────────────────────────────
    def room_summary(self, db: Session, room_id: int) -> dict:
        with atomic(db):
            room = self.rooms.get_room(db, room_id, fresh=True)
            active = db.query(func.count(HostelAllocation.id)).filter(
                HostelAllocation.roomId == room.id,
                HostelAllocation.status.in_(ACTIVE_STATUSES),
            ).scalar()

            requests = db.query(
                ServiceRequest.type, ServiceRequest.status,
                ServiceRequest.createdAt, ServiceRequest.completedDate,
            ).filter(ServiceRequest.roomId == room.id).all()

            snapshot = {
                "roomId":            room.id,
                "roomNumber":        room.roomNumber,
                "capacity":          room.capacity,
                "currentOccupancy":  room.currentOccupancy,
                "availableSpots":    room.availableSpots,
                "isAvailable":       room.isAvailable,
                "maintenanceStatus": room.maintenanceStatus.value,
                "activeAllocations": active,
            }

        # Grouped in Python: resolution hours are computed the same way as ServiceRequest.resolution_time()
        groups = defaultdict(lambda: {"count": 0, "hours": []})
        for service_type, status, created, completed in requests:
            g = groups[(service_type.value, status.value)]
            g["count"] += 1
            if completed:
                g["hours"].append((completed - created).total_seconds() / 3600)

        by_type_status = [
            {
                "type":   service_type,
                "status": status,
                "count":  g["count"],
                "averageResolutionHours": round(sum(g["hours"]) / len(g["hours"]), 1) if g["hours"] else None,
            }
            for (service_type, status), g in sorted(groups.items())
        ]
        return {
            "room": snapshot,
            "serviceRequests": {
                "total":        len(requests),
                "byTypeStatus": by_type_status,
            },
        }

    # ─── Hostel Stats ─────────────────────────────────────────────────────────
    def hostel_stats(self, db: Session) -> dict:
        with atomic(db):
            total_rooms, total_capacity, occupancy = db.query(
                func.count(HostelRoom.id),
                func.coalesce(func.sum(HostelRoom.capacity), 0),
                func.coalesce(func.sum(HostelRoom.currentOccupancy), 0),
            ).filter(HostelRoom.isActive.is_(True)).one()

            occupied_rooms = db.query(func.count(HostelRoom.id)).filter(
                HostelRoom.isActive.is_(True),
                HostelRoom.currentOccupancy > 0,
            ).scalar()
            available_rooms = db.query(func.count(HostelRoom.id)).filter(
                HostelRoom.isActive.is_(True),
                HostelRoom.maintenanceStatus == MaintenanceStatus.GOOD,
                HostelRoom.currentOccupancy < HostelRoom.capacity,
            ).scalar()
            under_maintenance = db.query(func.count(HostelRoom.id)).filter(
                HostelRoom.isActive.is_(True),
                HostelRoom.maintenanceStatus != MaintenanceStatus.GOOD,
            ).scalar()

            allocations = _zeroed(AllocationStatus)
            for status, count in db.query(HostelAllocation.status, func.count(HostelAllocation.id))\
                                   .group_by(HostelAllocation.status).all():
                allocations[status.value] = count

            requests = _zeroed(ServiceStatus)
            for status, count in db.query(ServiceRequest.status, func.count(ServiceRequest.id))\
                                   .group_by(ServiceRequest.status).all():
                requests[status.value] = count

        return {
            "rooms": {
                "totalRooms":       total_rooms,
                "occupiedRooms":    occupied_rooms,
                "availableRooms":   available_rooms,
                "underMaintenance": under_maintenance,
                "totalCapacity":    int(total_capacity),
                "currentOccupancy": int(occupancy),
                "occupancyRate":    round(occupancy / total_capacity * 100, 1) if total_capacity else 0,
            },
            "allocations": {
                "total":    sum(allocations.values()),
                "byStatus": allocations,
            },
            "serviceRequests": {
                "total":      sum(requests.values()),
                "open":       sum(requests[s.value] for s in OPEN_SERVICE_STATUSES),
                "inProgress": requests[ServiceStatus.IN_PROGRESS.value],
                "byStatus":   requests,
            },
            "generatedAt": self.clock().isoformat(),
        }


report_service = ReportService()
