import logging
from typing import Iterator

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from hostel.database import atomic
from hostel.models.room import (
    HostelRoom, RoomType, MaintenanceStatus, TYPE_BY_CAPACITY,
    MIN_CAPACITY, MAX_CAPACITY, MIN_FLOOR, MAX_FLOOR,
)
from hostel.schemas.room import RoomCreateRequest, RoomUpdateRequest
from hostel.utils.audit import log_action
from hostel.utils.clock import Clock, utcnow
from hostel.utils.exceptions import (
    NotFoundException, ConflictException, CapacityExceededException,
    RoomUnavailableException, ValidationException,
)
from hostel.utils.guards import (
    require_range, require_non_negative, require_text, optional_text, require_enum,
)

logger = logging.getLogger(__name__)


def serialize_room(r: HostelRoom) -> dict:
    return {
        "id":                r.id,
        "roomNumber":        r.roomNumber,
        "block":             r.block,
        "floor":             r.floor,
        "type":              r.type.value,
        "capacity":          r.capacity,
        "currentOccupancy":  r.currentOccupancy,
        "availableSpots":    r.availableSpots,
        "isAvailable":       r.isAvailable,
        "maintenanceStatus": r.maintenanceStatus.value,
        "isActive":          r.isActive,
        "rent":              float(r.rent),
        "deposit":           float(r.deposit),
        "amenities":         list(r.amenities or []),
        "description":       r.description,
        "createdAt":         r.createdAt.isoformat(),
        "updatedAt":         r.updatedAt.isoformat(),
    }


def _available_clause():
    return (
        HostelRoom.isActive.is_(True),
        HostelRoom.maintenanceStatus == MaintenanceStatus.GOOD,
        HostelRoom.currentOccupancy < HostelRoom.capacity,
    )


class RoomService:
    """Room registry: the only component allowed to touch occupancy."""

    def __init__(self, clock: Clock = utcnow):
        self.clock = clock

    # ─── Queries ──────────────────────────────────────────────────────────────
    def get_room(self, db: Session, room_id: int, fresh: bool = False) -> HostelRoom:
        """Load a room; `fresh` bypasses whatever copy the session already holds."""
        r = db.get(HostelRoom, room_id, populate_existing=fresh)
        if not r:
            raise NotFoundException("Room")
        return r

    def list_rooms(
        self, db: Session, page: int, limit: int,
        block: str | None = None, floor: int | None = None,
        room_type: str | None = None, availability: str | None = None,
    ) -> tuple[list[HostelRoom], int]:
        q = db.query(HostelRoom)

        if block:            q = q.filter(HostelRoom.block == block.strip().upper())
        if floor is not None: q = q.filter(HostelRoom.floor == floor)
        if room_type:        q = q.filter(HostelRoom.type == require_enum(room_type, RoomType, "type"))
        if availability == "available":
            q = q.filter(*_available_clause())
        elif availability == "full":
            q = q.filter(HostelRoom.currentOccupancy >= HostelRoom.capacity)
        elif availability is not None:
            raise ValidationException("availability must be 'available' or 'full'", field="availability")

        total = q.count()
        items = q.order_by(HostelRoom.roomNumber).offset((page - 1) * limit).limit(limit).all()
        return items, total

    def get_available_rooms(
        self, db: Session,
        block: str | None = None, floor: int | None = None, room_type: str | None = None,
    ) -> Iterator[HostelRoom]:
        """
        Lazily yield rooms that can take at least one more occupant.
        Each call runs a fresh query, so the sequence can be restarted by calling again.
        """
        stmt = select(HostelRoom).where(*_available_clause())
        if block:             stmt = stmt.where(HostelRoom.block == block.strip().upper())
        if floor is not None: stmt = stmt.where(HostelRoom.floor == floor)
        if room_type:         stmt = stmt.where(HostelRoom.type == require_enum(room_type, RoomType, "type"))
        stmt = stmt.order_by(HostelRoom.block, HostelRoom.floor, HostelRoom.roomNumber)
        for room in db.execute(stmt.execution_options(yield_per=50)).scalars():
            yield room

    def can_accommodate(self, db: Session, room_id: int, count: int = 1) -> bool:
        return self.get_room(db, room_id).can_accommodate(count)

    def ensure_can_accommodate(self, room: HostelRoom, count: int = 1) -> None:
        """Raise the matching rejection when `room` cannot take `count` more occupants."""
        if not room.isActive or room.maintenanceStatus != MaintenanceStatus.GOOD:
            raise RoomUnavailableException(
                f"Room {room.roomNumber} is not available "
                f"(active={room.isActive}, maintenance={room.maintenanceStatus.value})"
            )
        if room.availableSpots < count:
            raise CapacityExceededException(f"Room {room.roomNumber} is already at full capacity")

    # ─── Occupancy ────────────────────────────────────────────────────────────
    def adjust_occupancy(self, db: Session, room_id: int, delta: int) -> HostelRoom:
        """
        Apply `delta` to the room's occupancy as one conditional UPDATE.

        The capacity check lives in the WHERE clause, so two callers racing for
        the last slot cannot both match. Does NOT commit; the caller's
        transaction commits the occupancy change together with its own writes.
        """
        new_value = HostelRoom.currentOccupancy + delta
        result = db.execute(
            update(HostelRoom)
            .where(HostelRoom.id == room_id, new_value >= 0, new_value <= HostelRoom.capacity)
            .values(currentOccupancy=new_value, updatedAt=self.clock())
            .execution_options(synchronize_session=False)
        )
        room = db.get(HostelRoom, room_id, populate_existing=True)
        if not room:
            raise NotFoundException("Room")
        if result.rowcount == 0:
            logger.warning(
                f"Occupancy change {delta:+d} rejected for room {room.roomNumber} "
                f"({room.currentOccupancy}/{room.capacity})"
            )
            if delta > 0:
                raise CapacityExceededException(f"Room {room.roomNumber} is already at full capacity")
            raise CapacityExceededException(f"Room {room.roomNumber} occupancy cannot go below zero")
        return room

    # ─── Mutations ────────────────────────────────────────────────────────────
    def create_room(self, db: Session, data: RoomCreateRequest, actor_id: int | None = None) -> HostelRoom:
        room_number = require_text(data.roomNumber, "roomNumber", 50)
        block       = require_text(data.block, "block", 20).upper()
        capacity    = require_range(data.capacity, MIN_CAPACITY, MAX_CAPACITY, "capacity")
        floor       = require_range(data.floor, MIN_FLOOR, MAX_FLOOR, "floor")
        room_type   = require_enum(data.type, RoomType, "type") if data.type else TYPE_BY_CAPACITY[capacity]

        with atomic(db):
            if db.query(HostelRoom.id).filter(HostelRoom.roomNumber == room_number).first():
                raise ConflictException(f"Room number '{room_number}' already exists", field="roomNumber")

            now = self.clock()
            room = HostelRoom(
                roomNumber=room_number,
                block=block,
                floor=floor,
                type=room_type,
                capacity=capacity,
                currentOccupancy=0,
                rent=require_non_negative(data.rent, "rent"),
                deposit=require_non_negative(data.deposit, "deposit"),
                amenities=[a.strip() for a in data.amenities if a.strip()],
                description=optional_text(data.description, "description", 1000),
                maintenanceStatus=MaintenanceStatus.GOOD,
                isActive=True,
                createdAt=now,
                updatedAt=now,
            )
            db.add(room)
            db.flush()
            log_action(db, actor_id, "CREATE", "Room", room.id,
                       f"Created room {room_number} (block {block}, floor {floor}, capacity {capacity})")
        logger.info(f"Room {room_number} created with capacity {capacity}")
        return room

    def update_room(self, db: Session, room_id: int, data: RoomUpdateRequest, actor_id: int | None = None) -> HostelRoom:
        with atomic(db):
            r = self.get_room(db, room_id)

            if data.capacity is not None and data.capacity != r.capacity:
                capacity = require_range(data.capacity, MIN_CAPACITY, MAX_CAPACITY, "capacity")
                # Same compare-and-update rule as occupancy: never shrink below current occupants
                result = db.execute(
                    update(HostelRoom)
                    .where(HostelRoom.id == room_id, HostelRoom.currentOccupancy <= capacity)
                    .values(capacity=capacity)
                    .execution_options(synchronize_session=False)
                )
                r = db.get(HostelRoom, room_id, populate_existing=True)
                if result.rowcount == 0:
                    raise CapacityExceededException(
                        f"Cannot reduce capacity of room {r.roomNumber} below its "
                        f"{r.currentOccupancy} current occupants"
                    )

            if data.block:               r.block       = require_text(data.block, "block", 20).upper()
            if data.floor is not None:   r.floor       = require_range(data.floor, MIN_FLOOR, MAX_FLOOR, "floor")
            if data.type:                r.type        = require_enum(data.type, RoomType, "type")
            if data.rent is not None:    r.rent        = require_non_negative(data.rent, "rent")
            if data.deposit is not None: r.deposit     = require_non_negative(data.deposit, "deposit")
            if data.amenities is not None:
                r.amenities = [a.strip() for a in data.amenities if a.strip()]
            if data.description is not None:
                r.description = optional_text(data.description, "description", 1000)
            r.updatedAt = self.clock()

            log_action(db, actor_id, "UPDATE", "Room", r.id, f"Updated room {r.roomNumber}")
        return r

    def set_maintenance_status(
        self, db: Session, room_id: int, status: MaintenanceStatus | str,
        actor_id: int | None = None, reason: str | None = None, commit: bool = True,
    ) -> HostelRoom:
        """
        Change the room's maintenance flag. Existing allocations are untouched;
        only future allocation attempts see the new status.

        With commit=False the change joins the caller's open transaction.
        """
        status = require_enum(status, MaintenanceStatus, "maintenanceStatus")
        if not commit:
            return self._apply_maintenance_status(db, room_id, status, actor_id, reason)
        with atomic(db):
            r = self._apply_maintenance_status(db, room_id, status, actor_id, reason)
        return r

    def _apply_maintenance_status(
        self, db: Session, room_id: int, status: MaintenanceStatus,
        actor_id: int | None, reason: str | None,
    ) -> HostelRoom:
        r = self.get_room(db, room_id)
        old = r.maintenanceStatus
        r.maintenanceStatus = status
        r.updatedAt = self.clock()
        log_action(db, actor_id, "UPDATE", "Room", r.id,
                   f"Maintenance {old.value} -> {status.value}" + (f" | {reason}" if reason else ""))
        logger.info(f"Room {r.roomNumber} maintenance status {old.value} -> {status.value}")
        return r

    def retire_room(self, db: Session, room_id: int, actor_id: int | None = None) -> HostelRoom:
        return self._set_active(db, room_id, False, actor_id)

    def reactivate_room(self, db: Session, room_id: int, actor_id: int | None = None) -> HostelRoom:
        return self._set_active(db, room_id, True, actor_id)

    def _set_active(self, db: Session, room_id: int, active: bool, actor_id: int | None) -> HostelRoom:
        with atomic(db):
            r = self.get_room(db, room_id)
            r.isActive  = active
            r.updatedAt = self.clock()
            log_action(db, actor_id, "REACTIVATE" if active else "RETIRE", "Room", r.id,
                       f"Room {r.roomNumber} {'reactivated' if active else 'retired'}")
        return r


room_service = RoomService()
