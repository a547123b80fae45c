import logging
from datetime import datetime

from sqlalchemy import update
from sqlalchemy.orm import Session

from hostel.database import atomic
from hostel.models.allocation import HostelAllocation
from hostel.models.room import MaintenanceStatus, MAINTENANCE_SEVERITY
from hostel.models.service_request import (
    ServiceRequest, ServiceType, ServicePriority, ServiceStatus, OPEN_SERVICE_STATUSES,
)
from hostel.schemas.service_request import (
    ServiceRequestCreateRequest, ServiceRequestUpdateRequest, ResolveRequest,
)
from hostel.services.allocation_service import AllocationService, allocation_service
from hostel.services.room_service import RoomService, room_service
from hostel.utils.audit import log_action
from hostel.utils.clock import Clock, utcnow, to_naive_utc
from hostel.utils.exceptions import NotFoundException, ConflictException, InvalidStateException, ValidationException
from hostel.utils.guards import (
    require_text, optional_text, require_enum, require_non_negative, require_range,
)
from hostel.utils.identity import UserDirectory, DatabaseUserDirectory
from hostel.utils.notify import send_room_reassigned_notice

logger = logging.getLogger(__name__)


def serialize_service_request(s: ServiceRequest) -> dict:
    return {
        "id":     s.id,
        "userId": s.userId,
        "room": {
            "id":                s.room.id,
            "roomNumber":        s.room.roomNumber,
            "block":             s.room.block,
            "floor":             s.room.floor,
            "maintenanceStatus": s.room.maintenanceStatus.value,
        },
        "type":           s.type.value,
        "title":          s.title,
        "description":    s.description,
        "priority":       s.priority.value,
        "status":         s.status.value,
        "assignedTo":     s.assignedTo,
        "estimatedCost":  float(s.estimatedCost) if s.estimatedCost is not None else None,
        "actualCost":     float(s.actualCost) if s.actualCost is not None else None,
        "scheduledDate":  s.scheduledDate.isoformat() if s.scheduledDate else None,
        "completedDate":  s.completedDate.isoformat() if s.completedDate else None,
        "roomStatusFlag": s.roomStatusFlag.value if s.roomStatusFlag else None,
        "isRoomChange":    s.is_room_change(),
        "currentRoomId":   s.currentRoomId,
        "requestedRoomId": s.requestedRoomId,
        "feedback": {
            "rating":      s.feedbackRating,
            "comment":     s.feedbackComment,
            "submittedAt": s.feedbackSubmittedAt.isoformat() if s.feedbackSubmittedAt else None,
        } if s.feedbackRating is not None else None,
        "adminNotes":     s.adminNotes,
        "resolutionTime": s.resolution_time(),
        "canCancel":      s.can_cancel(),
        "canAssign":      s.can_assign(),
        "createdAt":      s.createdAt.isoformat(),
        "updatedAt":      s.updatedAt.isoformat(),
    }


class ServiceRequestService:
    """
    Room service request tracker.

    State machine:
        submitted -> acknowledged -> in_progress -> resolved
        submitted | acknowledged -> cancelled

    Room change requests follow the same machine; approving one moves the
    requester through AllocationService.reassign_room and resolves it.
    """

    def __init__(
        self,
        rooms: RoomService = room_service,
        users: UserDirectory | None = None,
        clock: Clock = utcnow,
        allocations: AllocationService = allocation_service,
    ):
        self.rooms = rooms
        self.allocations = allocations
        self.users = users or DatabaseUserDirectory()
        self.clock = clock

    # ─── Internal helpers ─────────────────────────────────────────────────────
    def _get(self, db: Session, request_id: int, refresh: bool = False) -> ServiceRequest:
        s = db.get(ServiceRequest, request_id)
        if not s:
            raise NotFoundException("Service request")
        if refresh:
            db.refresh(s)
        return s

    def _compare_and_set(
        self, db: Session, request_id: int, expected: tuple[ServiceStatus, ...],
        action: str, **values,
    ) -> ServiceRequest:
        result = db.execute(
            update(ServiceRequest)
            .where(ServiceRequest.id == request_id, ServiceRequest.status.in_(expected))
            .values(updatedAt=self.clock(), **values)
            .execution_options(synchronize_session=False)
        )
        s = self._get(db, request_id, refresh=True)
        if result.rowcount == 0:
            raise InvalidStateException(f"Cannot {action} a service request that is {s.status.value}")
        return s

    def _require_status(self, s: ServiceRequest, allowed: tuple[ServiceStatus, ...], action: str) -> None:
        if s.status not in allowed:
            raise InvalidStateException(f"Cannot {action} a service request that is {s.status.value}")

    def _check_scheduled(self, scheduled: datetime | None) -> datetime | None:
        scheduled = to_naive_utc(scheduled)
        if scheduled is not None and scheduled < self.clock():
            raise ValidationException("Scheduled date cannot be in the past", field="scheduledDate")
        return scheduled

    # ─── Queries ──────────────────────────────────────────────────────────────
    def get_service_request(self, db: Session, request_id: int) -> ServiceRequest:
        return self._get(db, request_id)

    def list_service_requests(
        self, db: Session, page: int, limit: int,
        user_id: int | None = None, room_id: int | None = None, status: str | None = None,
        service_type: str | None = None, priority: str | None = None,
    ) -> tuple[list[ServiceRequest], int]:
        q = db.query(ServiceRequest)

        if user_id:      q = q.filter(ServiceRequest.userId == user_id)
        if room_id:      q = q.filter(ServiceRequest.roomId == room_id)
        if status:       q = q.filter(ServiceRequest.status == require_enum(status, ServiceStatus, "status"))
        if service_type: q = q.filter(ServiceRequest.type == require_enum(service_type, ServiceType, "type"))
        if priority:     q = q.filter(ServiceRequest.priority == require_enum(priority, ServicePriority, "priority"))

        total = q.count()
        items = q.order_by(ServiceRequest.createdAt.desc(), ServiceRequest.id.desc())\
                 .offset((page - 1) * limit).limit(limit).all()
        return items, total

    # ─── Transitions ──────────────────────────────────────────────────────────
    def create_service_request(
        self, db: Session, data: ServiceRequestCreateRequest, actor_id: int | None = None,
    ) -> ServiceRequest:
        """
        File a new request against a room. When `roomStatus` is given the room is
        flagged in the same transaction, blocking new allocations until cleared.
        """
        title        = require_text(data.title, "title", 200)
        description  = require_text(data.description, "description", 2000)
        service_type = require_enum(data.type, ServiceType, "type")
        priority     = require_enum(data.priority, ServicePriority, "priority")
        estimated    = require_non_negative(data.estimatedCost, "estimatedCost") \
            if data.estimatedCost is not None else None
        scheduled    = self._check_scheduled(data.scheduledDate)
        room_flag    = require_enum(data.roomStatus, MaintenanceStatus, "roomStatus") if data.roomStatus else None
        if room_flag == MaintenanceStatus.GOOD:
            raise ValidationException("roomStatus must describe a problem, not 'good'", field="roomStatus")

        with atomic(db):
            if not self.users.user_exists(db, data.userId):
                raise NotFoundException("User")
            room = self.rooms.get_room(db, data.roomId, fresh=True)

            now = self.clock()
            s = ServiceRequest(
                userId=data.userId,
                roomId=room.id,
                type=service_type,
                title=title,
                description=description,
                priority=priority,
                status=ServiceStatus.SUBMITTED,
                estimatedCost=estimated,
                scheduledDate=scheduled,
                roomStatusFlag=room_flag,
                createdAt=now,
                updatedAt=now,
            )
            db.add(s)
            db.flush()
            # Never downgrade a room that is already flagged as worse
            if room_flag and MAINTENANCE_SEVERITY[room_flag] > MAINTENANCE_SEVERITY[room.maintenanceStatus]:
                self.rooms.set_maintenance_status(db, room.id, room_flag, actor_id,
                                                  reason=f"Service request #{s.id}", commit=False)
            log_action(db, actor_id or data.userId, "CREATE", "ServiceRequest", s.id,
                       f"{service_type.value} request '{title}' for room {room.roomNumber}")
        logger.info(f"Service request #{s.id} ({service_type.value}, {priority.value}) filed for room {room.roomNumber}")
        return s

    def acknowledge_service_request(self, db: Session, request_id: int, actor_id: int | None = None) -> ServiceRequest:
        with atomic(db):
            s = self._get(db, request_id)
            self._require_status(s, (ServiceStatus.SUBMITTED,), "acknowledge")
            s = self._compare_and_set(db, s.id, (ServiceStatus.SUBMITTED,), "acknowledge",
                                      status=ServiceStatus.ACKNOWLEDGED)
            log_action(db, actor_id, "ACKNOWLEDGE", "ServiceRequest", s.id, f"Service request #{s.id} acknowledged")
        return s

    def assign_service_request(
        self, db: Session, request_id: int, staff_id: int, actor_id: int | None = None,
    ) -> ServiceRequest:
        """Hand the request to a staff member. Allowed until it is resolved or cancelled."""
        with atomic(db):
            s = self._get(db, request_id)
            if not s.can_assign():
                raise InvalidStateException(f"Cannot assign a service request that is {s.status.value}")
            if not self.users.user_exists(db, staff_id):
                raise NotFoundException("Staff user")
            s = self._compare_and_set(db, s.id, OPEN_SERVICE_STATUSES, "assign", assignedTo=staff_id)
            log_action(db, actor_id, "ASSIGN", "ServiceRequest", s.id,
                       f"Service request #{s.id} assigned to user {staff_id}")
        logger.info(f"Service request #{s.id} assigned to user {staff_id}")
        return s

    def start_service_request(self, db: Session, request_id: int, actor_id: int | None = None) -> ServiceRequest:
        with atomic(db):
            s = self._get(db, request_id)
            self._require_status(s, (ServiceStatus.ACKNOWLEDGED,), "start work on")
            s = self._compare_and_set(db, s.id, (ServiceStatus.ACKNOWLEDGED,), "start work on",
                                      status=ServiceStatus.IN_PROGRESS)
            log_action(db, actor_id, "START", "ServiceRequest", s.id, f"Work started on service request #{s.id}")
        return s

    def resolve_service_request(
        self, db: Session, request_id: int, data: ResolveRequest | None = None, actor_id: int | None = None,
    ) -> tuple[ServiceRequest, bool]:
        """
        in_progress -> resolved. Stamps completedDate and may carry feedback.

        With `restoreRoom` the room goes back to 'good' unless another open
        request on the same room still holds a maintenance flag. Returns the
        request and whether the room was restored.
        """
        data = data or ResolveRequest()
        with atomic(db):
            s = self._get(db, request_id)
            self._require_status(s, (ServiceStatus.IN_PROGRESS,), "resolve")

            now = self.clock()
            values = {"status": ServiceStatus.RESOLVED, "completedDate": s.completedDate or now}
            if data.actualCost is not None:
                values["actualCost"] = require_non_negative(data.actualCost, "actualCost")
            if data.adminNotes is not None:
                values["adminNotes"] = optional_text(data.adminNotes, "adminNotes", 2000)
            if data.feedback is not None:
                values["feedbackRating"]      = require_range(data.feedback.rating, 1, 5, "rating")
                values["feedbackComment"]     = optional_text(data.feedback.comment, "comment", 1000)
                values["feedbackSubmittedAt"] = now

            s = self._compare_and_set(db, s.id, (ServiceStatus.IN_PROGRESS,), "resolve", **values)

            room_restored = False
            if data.restoreRoom:
                still_flagged = db.query(ServiceRequest.id).filter(
                    ServiceRequest.roomId == s.roomId,
                    ServiceRequest.id != s.id,
                    ServiceRequest.status.in_(OPEN_SERVICE_STATUSES),
                    ServiceRequest.roomStatusFlag.is_not(None),
                ).count()
                if still_flagged:
                    logger.warning(f"Room {s.roomId} left flagged: {still_flagged} other open request(s) hold it")
                else:
                    self.rooms.set_maintenance_status(db, s.roomId, MaintenanceStatus.GOOD, actor_id,
                                                      reason=f"Service request #{s.id} resolved", commit=False)
                    room_restored = True

            log_action(db, actor_id, "RESOLVE", "ServiceRequest", s.id,
                       f"Service request #{s.id} resolved" + (" and room restored" if room_restored else ""))
        logger.info(f"Service request #{s.id} resolved after {s.resolution_time()}h")
        return s, room_restored

    def cancel_service_request(self, db: Session, request_id: int, actor_id: int | None = None) -> ServiceRequest:
        with atomic(db):
            s = self._get(db, request_id)
            if not s.can_cancel():
                raise InvalidStateException(f"Cannot cancel a service request that is {s.status.value}")
            cancellable = (ServiceStatus.SUBMITTED, ServiceStatus.ACKNOWLEDGED)
            s = self._compare_and_set(db, s.id, cancellable, "cancel", status=ServiceStatus.CANCELLED)
            log_action(db, actor_id, "CANCEL", "ServiceRequest", s.id, f"Service request #{s.id} cancelled")
        return s

    def submit_feedback(
        self, db: Session, request_id: int, rating: int, comment: str | None = None,
        actor_id: int | None = None,
    ) -> ServiceRequest:
        with atomic(db):
            s = self._get(db, request_id)
            if s.status != ServiceStatus.RESOLVED:
                raise InvalidStateException("Feedback can only be given for resolved requests")
            s = self._compare_and_set(
                db, s.id, (ServiceStatus.RESOLVED,), "give feedback on",
                feedbackRating=require_range(rating, 1, 5, "rating"),
                feedbackComment=optional_text(comment, "comment", 1000),
                feedbackSubmittedAt=self.clock(),
            )
            log_action(db, actor_id or s.userId, "FEEDBACK", "ServiceRequest", s.id,
                       f"Feedback {rating}/5 on service request #{s.id}")
        return s

    def update_service_request(
        self, db: Session, request_id: int, data: ServiceRequestUpdateRequest, actor_id: int | None = None,
    ) -> ServiceRequest:
        with atomic(db):
            s = self._get(db, request_id)
            self._require_status(s, OPEN_SERVICE_STATUSES, "update")

            values = {}
            if data.priority is not None:
                values["priority"] = require_enum(data.priority, ServicePriority, "priority")
            if data.estimatedCost is not None:
                values["estimatedCost"] = require_non_negative(data.estimatedCost, "estimatedCost")
            if data.scheduledDate is not None:
                values["scheduledDate"] = self._check_scheduled(data.scheduledDate)
            if data.adminNotes is not None:
                values["adminNotes"] = optional_text(data.adminNotes, "adminNotes", 2000)

            s = self._compare_and_set(db, s.id, OPEN_SERVICE_STATUSES, "update", **values)
            log_action(db, actor_id, "UPDATE", "ServiceRequest", s.id, f"Updated service request #{s.id}")
        return s


    # ─── Room Changes ─────────────────────────────────────────────────────────
    def request_room_change(
        self, db: Session, user_id: int, preferred_room_id: int | None = None,
        reason: str | None = None, actor_id: int | None = None,
    ) -> ServiceRequest:
        """
        File a request to move the user out of their current room. It is an
        'other' request against the current room; one may be open per user.
        """
        reason = optional_text(reason, "reason", 2000)
        with atomic(db):
            if not self.users.user_exists(db, user_id):
                raise NotFoundException("User")
            a = self.allocations.find_active_allocation(db, user_id)
            if not a:
                raise InvalidStateException("No active room allocation found")

            pending = db.query(ServiceRequest.id).filter(
                ServiceRequest.userId == user_id,
                ServiceRequest.currentRoomId.is_not(None),
                ServiceRequest.status.in_(OPEN_SERVICE_STATUSES),
            ).first()
            if pending:
                raise ConflictException("You already have a pending room change request")

            if preferred_room_id is not None:
                preferred = self.rooms.get_room(db, preferred_room_id)
                if preferred.id == a.roomId:
                    raise ValidationException("Preferred room is the current room", field="preferredRoomId")

            now = self.clock()
            s = ServiceRequest(
                userId=user_id,
                roomId=a.roomId,
                type=ServiceType.OTHER,
                title="Room change request",
                description=reason or "Room change requested",
                priority=ServicePriority.MEDIUM,
                status=ServiceStatus.SUBMITTED,
                currentRoomId=a.roomId,
                requestedRoomId=preferred_room_id,
                createdAt=now,
                updatedAt=now,
            )
            db.add(s)
            db.flush()
            log_action(db, actor_id or user_id, "CREATE", "ServiceRequest", s.id,
                       f"Room change requested from room {a.room.roomNumber}")
        logger.info(f"Room change request #{s.id} filed by user {user_id}")
        return s

    def approve_room_change(
        self, db: Session, request_id: int, new_room_id: int | None = None,
        admin_notes: str | None = None, actor_id: int | None = None,
    ) -> tuple[ServiceRequest, HostelAllocation]:
        """
        Resolve an open room change request by reassigning the requester's
        active allocation. The move and the resolution commit together.
        """
        admin_notes = optional_text(admin_notes, "adminNotes", 2000)
        with atomic(db):
            s = self._get(db, request_id)
            if not s.is_room_change():
                raise InvalidStateException("Service request is not a room change request")
            self._require_status(s, OPEN_SERVICE_STATUSES, "approve")

            target = new_room_id if new_room_id is not None else s.requestedRoomId
            if target is None:
                raise ValidationException("A room to move into is required", field="newRoomId")
            a = self.allocations.find_active_allocation(db, s.userId)
            if not a:
                raise InvalidStateException("Requester no longer has an active allocation")
            old_number = a.room.roomNumber

            a = self.allocations.reassign_room(db, a.id, target, reason=f"Room change request #{s.id}",
                                               actor_id=actor_id, commit=False)
            values = {"status": ServiceStatus.RESOLVED, "completedDate": self.clock(), "requestedRoomId": target}
            if admin_notes is not None:
                values["adminNotes"] = admin_notes
            s = self._compare_and_set(db, s.id, OPEN_SERVICE_STATUSES, "approve", **values)
            new_number = a.room.roomNumber
            log_action(db, actor_id, "RESOLVE", "ServiceRequest", s.id,
                       f"Room change request #{s.id} approved: {old_number} -> {new_number}")

        logger.info(f"Room change request #{s.id} approved; allocation #{a.id} now in room {new_number}")
        send_room_reassigned_notice(a.userId, a.id, old_number, new_number)
        return s, a


service_request_service = ServiceRequestService()
