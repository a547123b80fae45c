"""
Tests for the service request tracker and its effect on room availability.
"""
from datetime import timedelta

import pytest

from hostel.models.room import MaintenanceStatus
from hostel.models.service_request import ServiceStatus, ServicePriority, ServiceType
from hostel.schemas.allocation import AllocationRequest
from hostel.schemas.service_request import (
    ServiceRequestCreateRequest, ServiceRequestUpdateRequest, ResolveRequest, FeedbackRequest,
)
from hostel.utils.exceptions import (
    ValidationException, NotFoundException, InvalidStateException, RoomUnavailableException,
    ConflictException, CapacityExceededException,
)


@pytest.fixture
def file_request(db_session, service_requests, users):
    def _file(room_id: int, **extra):
        data = ServiceRequestCreateRequest(
            userId=extra.pop("userId", users[0]),
            roomId=room_id,
            type=extra.pop("type", "plumbing"),
            title=extra.pop("title", "Leaking tap"),
            description=extra.pop("description", "The bathroom tap drips all night."),
            **extra,
        )
        return service_requests.create_service_request(db_session, data)
    return _file


@pytest.fixture
def in_progress(db_session, service_requests, file_request):
    def _in_progress(room_id: int, **extra):
        s = file_request(room_id, **extra)
        service_requests.acknowledge_service_request(db_session, s.id)
        return service_requests.start_service_request(db_session, s.id)
    return _in_progress


class TestCreate:

    def test_create_defaults(self, file_request, make_room, users, clock):
        room = make_room()
        s = file_request(room.id)
        assert s.status == ServiceStatus.SUBMITTED
        assert s.priority == ServicePriority.MEDIUM
        assert s.createdAt == clock.now
        assert s.roomStatusFlag is None
        assert s.resolution_time() is None
        assert room.maintenanceStatus == MaintenanceStatus.GOOD

    def test_unknown_user_or_room(self, file_request, make_room):
        room = make_room()
        with pytest.raises(NotFoundException):
            file_request(room.id, userId=9999)
        with pytest.raises(NotFoundException):
            file_request(9999)

    def test_scheduled_date_in_past(self, file_request, make_room, clock):
        room = make_room()
        with pytest.raises(ValidationException) as exc:
            file_request(room.id, scheduledDate=clock.now - timedelta(hours=1))
        assert exc.value.field == "scheduledDate"
        s = file_request(room.id, scheduledDate=clock.now + timedelta(days=1))
        assert s.scheduledDate == clock.now + timedelta(days=1)

    def test_room_flag_blocks_allocation(self, db_session, allocations, file_request, make_room, users):
        room = make_room()
        s = file_request(room.id, roomStatus="needs_repair")
        assert s.roomStatusFlag == MaintenanceStatus.NEEDS_REPAIR
        assert room.maintenanceStatus == MaintenanceStatus.NEEDS_REPAIR
        with pytest.raises(RoomUnavailableException):
            allocations.request_allocation(db_session, AllocationRequest(userId=users[1], roomId=room.id))

    def test_room_flag_cannot_be_good(self, file_request, make_room):
        room = make_room()
        with pytest.raises(ValidationException):
            file_request(room.id, roomStatus="good")

    def test_milder_flag_does_not_downgrade_room(self, db_session, file_request, make_room):
        room = make_room()
        file_request(room.id, type="electrical", title="Sparking socket", roomStatus="out_of_order")
        s = file_request(room.id, roomStatus="needs_repair")
        assert s.roomStatusFlag == MaintenanceStatus.NEEDS_REPAIR
        assert room.maintenanceStatus == MaintenanceStatus.OUT_OF_ORDER

    def test_worse_flag_escalates_room(self, db_session, file_request, make_room):
        room = make_room()
        file_request(room.id, roomStatus="needs_repair")
        file_request(room.id, type="electrical", title="Sparking socket", roomStatus="under_maintenance")
        assert room.maintenanceStatus == MaintenanceStatus.UNDER_MAINTENANCE


class TestLifecycle:

    def test_feedback_only_after_resolution(self, db_session, service_requests, file_request, make_room, clock):
        room = make_room()
        s = file_request(room.id)
        with pytest.raises(InvalidStateException):
            service_requests.submit_feedback(db_session, s.id, 5)

        service_requests.acknowledge_service_request(db_session, s.id)
        service_requests.start_service_request(db_session, s.id)
        clock.advance(hours=2, minutes=40)
        s, restored = service_requests.resolve_service_request(db_session, s.id, ResolveRequest(actualCost="350"))
        assert s.status == ServiceStatus.RESOLVED
        assert s.completedDate == clock.now
        assert s.resolution_time() == 3
        assert restored is False

        s = service_requests.submit_feedback(db_session, s.id, 4, "Fixed quickly")
        assert s.feedbackRating == 4
        assert s.feedbackComment == "Fixed quickly"
        assert s.feedbackSubmittedAt == clock.now

    def test_feedback_rating_range(self, db_session, service_requests, in_progress, make_room):
        room = make_room()
        s = in_progress(room.id)
        service_requests.resolve_service_request(db_session, s.id)
        with pytest.raises(ValidationException):
            service_requests.submit_feedback(db_session, s.id, 6)

    def test_resolve_carries_feedback(self, db_session, service_requests, in_progress, make_room):
        room = make_room()
        s = in_progress(room.id)
        s, _ = service_requests.resolve_service_request(db_session, s.id, ResolveRequest(
            adminNotes="Replaced washer", feedback=FeedbackRequest(rating=5, comment="great"),
        ))
        assert s.feedbackRating == 5
        assert s.adminNotes == "Replaced washer"

    def test_resolve_requires_in_progress(self, db_session, service_requests, file_request, make_room):
        room = make_room()
        s = file_request(room.id)
        with pytest.raises(InvalidStateException):
            service_requests.resolve_service_request(db_session, s.id)

    def test_acknowledge_twice(self, db_session, service_requests, file_request, make_room):
        room = make_room()
        s = file_request(room.id)
        service_requests.acknowledge_service_request(db_session, s.id)
        with pytest.raises(InvalidStateException):
            service_requests.acknowledge_service_request(db_session, s.id)

    def test_start_requires_acknowledgement(self, db_session, service_requests, file_request, make_room):
        room = make_room()
        s = file_request(room.id)
        with pytest.raises(InvalidStateException):
            service_requests.start_service_request(db_session, s.id)

    def test_cancel_rules(self, db_session, service_requests, file_request, in_progress, make_room):
        room = make_room()
        s = file_request(room.id)
        s = service_requests.cancel_service_request(db_session, s.id)
        assert s.status == ServiceStatus.CANCELLED
        assert not s.can_cancel()

        busy = in_progress(room.id)
        with pytest.raises(InvalidStateException):
            service_requests.cancel_service_request(db_session, busy.id)

    def test_assign(self, db_session, service_requests, in_progress, make_room, users):
        room = make_room()
        s = in_progress(room.id)
        s = service_requests.assign_service_request(db_session, s.id, users[2])
        assert s.assignedTo == users[2]
        assert s.status == ServiceStatus.IN_PROGRESS

        with pytest.raises(NotFoundException):
            service_requests.assign_service_request(db_session, s.id, 9999)

        service_requests.resolve_service_request(db_session, s.id)
        with pytest.raises(InvalidStateException):
            service_requests.assign_service_request(db_session, s.id, users[1])

    def test_update_open_request(self, db_session, service_requests, file_request, make_room):
        room = make_room()
        s = file_request(room.id)
        s = service_requests.update_service_request(db_session, s.id, ServiceRequestUpdateRequest(
            priority="urgent", estimatedCost="120.00",
        ))
        assert s.priority == ServicePriority.URGENT
        assert float(s.estimatedCost) == 120.0

        service_requests.cancel_service_request(db_session, s.id)
        with pytest.raises(InvalidStateException):
            service_requests.update_service_request(db_session, s.id, ServiceRequestUpdateRequest(priority="low"))


class TestRoomRestore:
    """Resolving with restoreRoom only clears a flag nobody else still holds."""

    def test_restore_when_last_flag(self, db_session, service_requests, in_progress, make_room):
        room = make_room()
        s = in_progress(room.id, roomStatus="under_maintenance")
        assert room.maintenanceStatus == MaintenanceStatus.UNDER_MAINTENANCE

        s, restored = service_requests.resolve_service_request(db_session, s.id, ResolveRequest(restoreRoom=True))
        assert restored is True
        assert room.maintenanceStatus == MaintenanceStatus.GOOD
        assert room.isAvailable is True

    def test_other_open_flag_keeps_room_blocked(self, db_session, service_requests, file_request, in_progress, make_room):
        room = make_room()
        file_request(room.id, type="electrical", title="Sparking socket", roomStatus="out_of_order")
        s = in_progress(room.id, roomStatus="needs_repair")

        s, restored = service_requests.resolve_service_request(db_session, s.id, ResolveRequest(restoreRoom=True))
        assert s.status == ServiceStatus.RESOLVED
        assert restored is False
        assert room.maintenanceStatus != MaintenanceStatus.GOOD

    def test_resolve_without_restore_leaves_flag(self, db_session, service_requests, in_progress, make_room):
        room = make_room()
        s = in_progress(room.id, roomStatus="needs_repair")
        _, restored = service_requests.resolve_service_request(db_session, s.id)
        assert restored is False
        assert room.maintenanceStatus == MaintenanceStatus.NEEDS_REPAIR


class TestRoomChange:
    """Room change requests: filing guards and approval through reassignment."""

    def test_requires_active_allocation(self, db_session, service_requests, make_room, users):
        make_room()
        with pytest.raises(InvalidStateException):
            service_requests.request_room_change(db_session, users[0], reason="too noisy")

    def test_files_against_current_room(self, db_session, service_requests, allocate, make_room, users):
        current, preferred = make_room(), make_room()
        allocate(users[0], current.id)
        s = service_requests.request_room_change(db_session, users[0], preferred.id, "too noisy")
        assert s.type == ServiceType.OTHER
        assert s.status == ServiceStatus.SUBMITTED
        assert s.roomId == current.id
        assert s.currentRoomId == current.id
        assert s.requestedRoomId == preferred.id
        assert s.description == "too noisy"
        assert s.is_room_change()

    def test_one_open_request_per_user(self, db_session, service_requests, allocate, make_room, users):
        current, preferred = make_room(), make_room()
        allocate(users[0], current.id)
        first = service_requests.request_room_change(db_session, users[0], preferred.id)
        with pytest.raises(ConflictException):
            service_requests.request_room_change(db_session, users[0])

        service_requests.cancel_service_request(db_session, first.id)
        again = service_requests.request_room_change(db_session, users[0])
        assert again.requestedRoomId is None

    def test_other_open_requests_do_not_count(self, db_session, service_requests, file_request, allocate,
                                              make_room, users):
        room = make_room()
        allocate(users[0], room.id)
        file_request(room.id, type="other", title="Window", description="Window will not close")
        s = service_requests.request_room_change(db_session, users[0])
        assert s.is_room_change()

    def test_preferred_room_checks(self, db_session, service_requests, allocate, make_room, users):
        room = make_room()
        allocate(users[0], room.id)
        with pytest.raises(NotFoundException):
            service_requests.request_room_change(db_session, users[0], 9999)
        with pytest.raises(ValidationException) as exc:
            service_requests.request_room_change(db_session, users[0], room.id)
        assert exc.value.field == "preferredRoomId"

    def test_approve_moves_occupant(self, db_session, service_requests, rooms, allocate, make_room, users, clock):
        current, preferred = make_room(), make_room()
        a = allocate(users[0], current.id)
        s = service_requests.request_room_change(db_session, users[0], preferred.id, "too noisy")

        clock.advance(hours=2)
        s, moved = service_requests.approve_room_change(db_session, s.id, admin_notes="approved by warden")
        assert s.status == ServiceStatus.RESOLVED
        assert s.completedDate == clock.now
        assert s.adminNotes == "approved by warden"
        assert moved.id == a.id
        assert moved.roomId == preferred.id
        assert rooms.get_room(db_session, current.id, fresh=True).currentOccupancy == 0
        assert rooms.get_room(db_session, preferred.id, fresh=True).currentOccupancy == 1

    def test_approve_without_target_room(self, db_session, service_requests, allocate, make_room, users):
        current, other = make_room(), make_room()
        allocate(users[0], current.id)
        s = service_requests.request_room_change(db_session, users[0])
        with pytest.raises(ValidationException) as exc:
            service_requests.approve_room_change(db_session, s.id)
        assert exc.value.field == "newRoomId"

        s, moved = service_requests.approve_room_change(db_session, s.id, new_room_id=other.id)
        assert moved.roomId == other.id
        assert s.requestedRoomId == other.id

    def test_failed_move_leaves_request_open(self, db_session, service_requests, allocate, make_room, users):
        current, full = make_room(), make_room(capacity=1)
        allocate(users[0], current.id)
        allocate(users[1], full.id)
        s = service_requests.request_room_change(db_session, users[0], full.id)
        with pytest.raises(CapacityExceededException):
            service_requests.approve_room_change(db_session, s.id)
        assert service_requests.get_service_request(db_session, s.id).status == ServiceStatus.SUBMITTED
        assert full.currentOccupancy == 1

    def test_only_room_change_requests_can_be_approved(self, db_session, service_requests, file_request,
                                                        make_room):
        room, other = make_room(), make_room()
        s = file_request(room.id)
        with pytest.raises(InvalidStateException):
            service_requests.approve_room_change(db_session, s.id, new_room_id=other.id)


class TestQueries:
    def test_list_filters(self, db_session, service_requests, file_request, make_room, users):
        r1, r2 = make_room(), make_room()
        file_request(r1.id, priority="high")
        file_request(r2.id, userId=users[1], type="cleaning")

        items, total = service_requests.list_service_requests(db_session, 1, 20, room_id=r1.id)
        assert total == 1 and items[0].priority == ServicePriority.HIGH
        items, total = service_requests.list_service_requests(db_session, 1, 20, service_type="cleaning")
        assert total == 1 and items[0].userId == users[1]
        _, total = service_requests.list_service_requests(db_session, 1, 20, status="submitted")
        assert total == 2
        with pytest.raises(ValidationException):
            service_requests.list_service_requests(db_session, 1, 20, priority="whenever")
