"""
Tests for the room registry: creation rules, availability and occupancy bounds.
"""
import pytest

from hostel.models.room import RoomType, MaintenanceStatus
from hostel.models.audit_log import AuditLog
from hostel.schemas.room import RoomCreateRequest, RoomUpdateRequest
from hostel.utils.exceptions import (
    ValidationException, ConflictException, NotFoundException,
    CapacityExceededException, RoomUnavailableException,
)


class TestRoomCreation:
    """Tests for createRoom."""

    def test_create_room_defaults(self, db_session, rooms, clock):
        room = rooms.create_room(db_session, RoomCreateRequest(
            roomNumber="B-204", block="b", floor=2, capacity=3, rent="4500", deposit="5000",
            amenities=["wifi", " desk ", ""],
        ))
        assert room.id is not None
        assert room.block == "B"
        assert room.type == RoomType.TRIPLE
        assert room.currentOccupancy == 0
        assert room.maintenanceStatus == MaintenanceStatus.GOOD
        assert room.isActive is True
        assert room.amenities == ["wifi", "desk"]
        assert room.createdAt == clock.now
        assert room.isAvailable is True
        assert room.availableSpots == 3

    def test_explicit_type_is_kept(self, make_room):
        room = make_room(capacity=2, type=RoomType.QUAD)
        assert room.type == RoomType.QUAD

    @pytest.mark.parametrize("capacity", [0, 5, -1])
    def test_capacity_out_of_range(self, db_session, rooms, capacity):
        with pytest.raises(ValidationException) as exc:
            rooms.create_room(db_session, RoomCreateRequest(
                roomNumber="X-1", block="X", floor=1, capacity=capacity,
            ))
        assert exc.value.field == "capacity"

    @pytest.mark.parametrize("floor", [-1, 51])
    def test_floor_out_of_range(self, db_session, rooms, floor):
        with pytest.raises(ValidationException) as exc:
            rooms.create_room(db_session, RoomCreateRequest(
                roomNumber="X-1", block="X", floor=floor, capacity=1,
            ))
        assert exc.value.field == "floor"

    def test_duplicate_room_number(self, db_session, rooms, make_room):
        make_room(roomNumber="A-101")
        with pytest.raises(ConflictException):
            rooms.create_room(db_session, RoomCreateRequest(
                roomNumber="A-101", block="A", floor=1, capacity=1,
            ))

    def test_creation_is_audited(self, db_session, make_room):
        room = make_room()
        entry = db_session.query(AuditLog).filter(
            AuditLog.entityType == "Room", AuditLog.entityId == room.id,
        ).one()
        assert entry.action == "CREATE"


class TestRoomQueries:
    """Tests for getRoom, listRooms, getAvailableRooms and canAccommodate."""

    def test_get_missing_room(self, db_session, rooms):
        with pytest.raises(NotFoundException):
            rooms.get_room(db_session, 9999)

    def test_available_rooms_skip_full_maintenance_and_retired(self, db_session, rooms, make_room):
        open_room = make_room(capacity=2, block="A")
        full      = make_room(capacity=1, block="A")
        broken    = make_room(capacity=2, block="B")
        retired   = make_room(capacity=2, block="B")

        rooms.adjust_occupancy(db_session, full.id, +1)
        db_session.commit()
        rooms.set_maintenance_status(db_session, broken.id, MaintenanceStatus.NEEDS_REPAIR)
        rooms.retire_room(db_session, retired.id)

        available = [r.id for r in rooms.get_available_rooms(db_session)]
        assert available == [open_room.id]

    def test_available_rooms_is_restartable_and_filtered(self, db_session, rooms, make_room):
        a1 = make_room(capacity=1, block="A", floor=1)
        a2 = make_room(capacity=2, block="A", floor=2)
        make_room(capacity=2, block="C", floor=1)

        first  = [r.id for r in rooms.get_available_rooms(db_session, block="a")]
        second = [r.id for r in rooms.get_available_rooms(db_session, block="A")]
        assert first == second == [a1.id, a2.id]
        assert [r.id for r in rooms.get_available_rooms(db_session, block="A", room_type="double")] == [a2.id]

    def test_list_rooms_availability_filter(self, db_session, rooms, make_room):
        free = make_room(capacity=2)
        full = make_room(capacity=1)
        rooms.adjust_occupancy(db_session, full.id, +1)
        db_session.commit()

        items, total = rooms.list_rooms(db_session, 1, 20, availability="full")
        assert total == 1 and items[0].id == full.id
        items, total = rooms.list_rooms(db_session, 1, 20, availability="available")
        assert total == 1 and items[0].id == free.id

        with pytest.raises(ValidationException):
            rooms.list_rooms(db_session, 1, 20, availability="sometimes")

    def test_can_accommodate(self, db_session, rooms, make_room):
        room = make_room(capacity=2)
        assert rooms.can_accommodate(db_session, room.id, 2) is True
        assert rooms.can_accommodate(db_session, room.id, 3) is False

        rooms.set_maintenance_status(db_session, room.id, MaintenanceStatus.UNDER_MAINTENANCE)
        assert rooms.can_accommodate(db_session, room.id, 1) is False

    def test_ensure_can_accommodate_kinds(self, db_session, rooms, make_room):
        room = make_room(capacity=1)
        rooms.set_maintenance_status(db_session, room.id, "out_of_order")
        with pytest.raises(RoomUnavailableException) as exc:
            rooms.ensure_can_accommodate(room, 1)
        # Unavailable rooms are rejected as a capacity-class failure
        assert isinstance(exc.value, CapacityExceededException)


class TestOccupancy:
    """Tests for adjustOccupancy bounds."""

    def test_adjust_within_bounds(self, db_session, rooms, make_room):
        room = make_room(capacity=2)
        room = rooms.adjust_occupancy(db_session, room.id, +2)
        db_session.commit()
        assert room.currentOccupancy == 2
        assert room.isAvailable is False

    def test_cannot_exceed_capacity(self, db_session, rooms, make_room):
        room = make_room(capacity=1)
        rooms.adjust_occupancy(db_session, room.id, +1)
        db_session.commit()
        with pytest.raises(CapacityExceededException):
            rooms.adjust_occupancy(db_session, room.id, +1)
        db_session.rollback()
        assert rooms.get_room(db_session, room.id, fresh=True).currentOccupancy == 1

    def test_cannot_go_negative(self, db_session, rooms, make_room):
        room = make_room(capacity=1)
        with pytest.raises(CapacityExceededException):
            rooms.adjust_occupancy(db_session, room.id, -1)
        db_session.rollback()

    def test_missing_room(self, db_session, rooms):
        with pytest.raises(NotFoundException):
            rooms.adjust_occupancy(db_session, 4242, +1)
        db_session.rollback()


class TestRoomUpdates:
    """Tests for updateRoom, maintenance status and retirement."""

    def test_update_fields(self, db_session, rooms, make_room):
        room = make_room(capacity=2)
        room = rooms.update_room(db_session, room.id, RoomUpdateRequest(
            rent="3200.50", amenities=["fan"], block="d", description="  corner room ",
        ))
        assert float(room.rent) == 3200.50
        assert room.block == "D"
        assert room.amenities == ["fan"]
        assert room.description == "corner room"

    def test_capacity_cannot_drop_below_occupancy(self, db_session, rooms, make_room):
        room = make_room(capacity=3)
        rooms.adjust_occupancy(db_session, room.id, +2)
        db_session.commit()

        with pytest.raises(CapacityExceededException):
            rooms.update_room(db_session, room.id, RoomUpdateRequest(capacity=1))
        room = rooms.update_room(db_session, room.id, RoomUpdateRequest(capacity=2))
        assert room.capacity == 2
        assert room.availableSpots == 0

    def test_maintenance_status_validation(self, db_session, rooms, make_room):
        room = make_room()
        with pytest.raises(ValidationException):
            rooms.set_maintenance_status(db_session, room.id, "haunted")

    def test_retire_and_reactivate(self, db_session, rooms, make_room):
        room = make_room()
        room = rooms.retire_room(db_session, room.id)
        assert room.isActive is False and room.isAvailable is False
        room = rooms.reactivate_room(db_session, room.id)
        assert room.isActive is True and room.isAvailable is True
