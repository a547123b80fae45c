import logging
from datetime import datetime

from sqlalchemy import update
from sqlalchemy.orm import Session

from hostel.database import atomic
from hostel.models.allocation import HostelAllocation, AllocationStatus, ACTIVE_STATUSES
from hostel.models.room import HostelRoom
from hostel.schemas.allocation import AllocationRequest
from hostel.services.room_service import RoomService, room_service
from hostel.utils.audit import log_action
from hostel.utils.clock import Clock, utcnow, to_naive_utc
from hostel.utils.exceptions import (
    NotFoundException, ConflictException, CapacityExceededException,
    InvalidStateException, InvalidRefundException, ValidationException,
)
from hostel.utils.guards import require_range, require_non_negative, require_positive, optional_text, require_enum
from hostel.utils.identity import UserDirectory, DatabaseUserDirectory
from hostel.utils.notify import send_allocation_status_notice, send_room_reassigned_notice

logger = logging.getLogger(__name__)


def _money(value) -> float | None:
    return float(value) if value is not None else None


def _append_note(existing: str | None, line: str) -> str:
    return f"{existing}\n{line}" if existing else line


def serialize_allocation(a: HostelAllocation, now: datetime | None = None) -> dict:
    return {
        "id":     a.id,
        "userId": a.userId,
        "status": a.status.value,
        "room": {
            "id":         a.room.id,
            "roomNumber": a.room.roomNumber,
            "block":      a.room.block,
            "floor":      a.room.floor,
            "type":       a.room.type.value,
        },
        "bedNumber":        a.bedNumber,
        "allocatedDate":    a.allocatedDate.isoformat(),
        "checkInDate":      a.checkInDate.isoformat()   if a.checkInDate   else None,
        "checkOutDate":     a.checkOutDate.isoformat()  if a.checkOutDate  else None,
        "cancelledDate":    a.cancelledDate.isoformat() if a.cancelledDate else None,
        "depositPaid":      _money(a.depositPaid),
        "depositRefunded":  _money(a.depositRefunded),
        "remainingDeposit": _money(a.remainingDeposit),
        "rentPaid":         _money(a.rentPaid),
        "isActive":         a.is_active(),
        "stayDuration":     a.stay_duration(now),
        "notes":            a.notes,
        "createdAt":        a.createdAt.isoformat(),
        "updatedAt":        a.updatedAt.isoformat(),
    }


class AllocationService:
    """
    Allocation ledger.

    State machine:
        pending -> allocated -> checked_in -> checked_out
        pending | allocated -> cancelled

    Every status change is a compare-and-set UPDATE on (id, expected status),
    committed in the same transaction as the matching occupancy adjustment.
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

    # ─── Internal helpers ─────────────────────────────────────────────────────
    def _get(self, db: Session, allocation_id: int, refresh: bool = False) -> HostelAllocation:
        a = db.get(HostelAllocation, allocation_id)
        if not a:
            raise NotFoundException("Allocation")
        if refresh:
            db.refresh(a)
        return a

    def _compare_and_set(
        self, db: Session, allocation_id: int, expected: tuple[AllocationStatus, ...],
        action: str, **values,
    ) -> HostelAllocation:
        """
        Write `values` only if the allocation is still in one of `expected`.
        Losing a race (or an illegal transition) surfaces as InvalidStateException.
        """
        result = db.execute(
            update(HostelAllocation)
            .where(HostelAllocation.id == allocation_id, HostelAllocation.status.in_(expected))
            .values(updatedAt=self.clock(), **values)
            .execution_options(synchronize_session=False)
        )
        a = self._get(db, allocation_id, refresh=True)
        if result.rowcount == 0:
            raise InvalidStateException(f"Cannot {action} an allocation that is {a.status.value}")
        return a

    def _require_status(self, a: HostelAllocation, allowed: tuple[AllocationStatus, ...], action: str) -> None:
        if a.status not in allowed:
            raise InvalidStateException(f"Cannot {action} an allocation that is {a.status.value}")

    def _active_for_user(self, db: Session, user_id: int, exclude_id: int | None = None) -> HostelAllocation | None:
        q = db.query(HostelAllocation).filter(
            HostelAllocation.userId == user_id,
            HostelAllocation.status.in_(ACTIVE_STATUSES),
        )
        if exclude_id:
            q = q.filter(HostelAllocation.id != exclude_id)
        return q.first()

    def _pick_bed(self, db: Session, room: HostelRoom, requested: int | None, exclude_id: int | None = None) -> int:
        """Validate a requested bed, or choose the lowest bed no active allocation holds."""
        q = db.query(HostelAllocation.bedNumber).filter(
            HostelAllocation.roomId == room.id,
            HostelAllocation.status.in_(ACTIVE_STATUSES),
            HostelAllocation.bedNumber.is_not(None),
        )
        if exclude_id:
            q = q.filter(HostelAllocation.id != exclude_id)
        taken = {bed for (bed,) in q.all()}

        if requested is not None:
            require_range(requested, 1, room.capacity, "bedNumber")
            if requested in taken:
                raise ConflictException(f"Bed {requested} in room {room.roomNumber} is already taken",
                                        field="bedNumber")
            return requested

        for bed in range(1, room.capacity + 1):
            if bed not in taken:
                return bed
        raise CapacityExceededException(f"Room {room.roomNumber} has no free bed")

    # ─── Queries ──────────────────────────────────────────────────────────────
    def get_allocation(self, db: Session, allocation_id: int) -> HostelAllocation:
        return self._get(db, allocation_id)

    def list_allocations(
        self, db: Session, page: int, limit: int,
        user_id: int | None = None, room_id: int | None = None, status: str | None = None,
    ) -> tuple[list[HostelAllocation], int]:
        q = db.query(HostelAllocation)

        if user_id: q = q.filter(HostelAllocation.userId == user_id)
        if room_id: q = q.filter(HostelAllocation.roomId == room_id)
        if status:  q = q.filter(HostelAllocation.status == require_enum(status, AllocationStatus, "status"))

        total = q.count()
        items = q.order_by(HostelAllocation.allocatedDate.desc(), HostelAllocation.id.desc())\
                 .offset((page - 1) * limit).limit(limit).all()
        return items, total

    def find_active_allocation(self, db: Session, user_id: int) -> HostelAllocation | None:
        return self._active_for_user(db, user_id)

    def get_active_allocation(self, db: Session, user_id: int) -> HostelAllocation:
        a = self._active_for_user(db, user_id)
        if not a:
            raise NotFoundException("Active allocation")
        return a

    # ─── Transitions ──────────────────────────────────────────────────────────
    def request_allocation(self, db: Session, data: AllocationRequest, actor_id: int | None = None) -> HostelAllocation:
        """Create a pending allocation. Occupancy is not touched until confirmation."""
        with atomic(db):
            if not self.users.user_exists(db, data.userId):
                raise NotFoundException("User")
            room = self.rooms.get_room(db, data.roomId, fresh=True)

            if self._active_for_user(db, data.userId):
                raise ConflictException("User already has an active allocation")
            duplicate = db.query(HostelAllocation.id).filter(
                HostelAllocation.userId == data.userId,
                HostelAllocation.roomId == data.roomId,
            ).first()
            if duplicate:
                raise ConflictException(f"User already has an allocation for room {room.roomNumber}")

            self.rooms.ensure_can_accommodate(room, 1)
            bed = self._pick_bed(db, room, data.bedNumber) if data.bedNumber is not None else None

            now = self.clock()
            a = HostelAllocation(
                userId=data.userId,
                roomId=room.id,
                status=AllocationStatus.PENDING,
                bedNumber=bed,
                allocatedDate=now,
                depositRefunded=0,
                rentPaid=0,
                notes=optional_text(data.notes, "notes", 1000),
                createdAt=now,
                updatedAt=now,
            )
            db.add(a)
            db.flush()
            log_action(db, actor_id, "REQUEST", "Allocation", a.id,
                       f"User {data.userId} requested room {room.roomNumber}")
        logger.info(f"Allocation #{a.id} requested by user {a.userId} for room {room.roomNumber}")
        return a

    def confirm_allocation(
        self, db: Session, allocation_id: int, deposit_paid,
        bed_number: int | None = None, actor_id: int | None = None,
    ) -> HostelAllocation:
        """
        pending -> allocated. Reserves the slot: occupancy +1 and the status
        change commit together, or neither does.
        """
        deposit = require_non_negative(deposit_paid, "depositPaid")
        with atomic(db):
            a = self._get(db, allocation_id)
            self._require_status(a, (AllocationStatus.PENDING,), "confirm")
            if self._active_for_user(db, a.userId, exclude_id=a.id):
                raise ConflictException("User already has an active allocation")

            room = self.rooms.get_room(db, a.roomId, fresh=True)
            self.rooms.ensure_can_accommodate(room, 1)
            bed = self._pick_bed(db, room, bed_number if bed_number is not None else a.bedNumber,
                                 exclude_id=a.id)

            # Occupancy first: a competing confirm blocks on the room row and then fails the capacity check
            room = self.rooms.adjust_occupancy(db, room.id, +1)
            a = self._compare_and_set(
                db, a.id, (AllocationStatus.PENDING,), "confirm",
                status=AllocationStatus.ALLOCATED, depositPaid=deposit, bedNumber=bed,
            )
            log_action(db, actor_id, "CONFIRM", "Allocation", a.id,
                       f"Allocation #{a.id} confirmed: room {room.roomNumber}, bed {bed}, deposit {deposit}")

        logger.info(f"Allocation #{a.id} confirmed; room {room.roomNumber} now "
                    f"{room.currentOccupancy}/{room.capacity}")
        send_allocation_status_notice(a.userId, a.id, room.roomNumber, a.status.value)
        return a

    def check_in(
        self, db: Session, allocation_id: int,
        check_in_date: datetime | None = None, actor_id: int | None = None,
    ) -> HostelAllocation:
        """allocated -> checked_in. Repeating it on a checked-in allocation changes nothing."""
        with atomic(db):
            a = self._get(db, allocation_id)
            if a.status == AllocationStatus.CHECKED_IN:
                return a
            self._require_status(a, (AllocationStatus.ALLOCATED,), "check in")

            when = to_naive_utc(check_in_date) or a.checkInDate or self.clock()
            if when < a.allocatedDate:
                raise ValidationException("Check-in date cannot be before allocation date", field="checkInDate")
            if when > self.clock():
                raise ValidationException("Check-in date cannot be in the future", field="checkInDate")

            a = self._compare_and_set(
                db, a.id, (AllocationStatus.ALLOCATED,), "check in",
                status=AllocationStatus.CHECKED_IN, checkInDate=when,
            )
            log_action(db, actor_id, "CHECK_IN", "Allocation", a.id, f"Allocation #{a.id} checked in")
        logger.info(f"Allocation #{a.id} checked in")
        return a

    def check_out(
        self, db: Session, allocation_id: int,
        check_out_date: datetime | None = None, actor_id: int | None = None,
    ) -> HostelAllocation:
        """checked_in -> checked_out. Releases the slot."""
        with atomic(db):
            a = self._get(db, allocation_id)
            self._require_status(a, (AllocationStatus.CHECKED_IN,), "check out")

            when = to_naive_utc(check_out_date) or a.checkOutDate or self.clock()
            if a.checkInDate and when < a.checkInDate:
                raise ValidationException("Check-out date cannot be before check-in date", field="checkOutDate")

            a = self._compare_and_set(
                db, a.id, (AllocationStatus.CHECKED_IN,), "check out",
                status=AllocationStatus.CHECKED_OUT, checkOutDate=when,
            )
            room = self.rooms.adjust_occupancy(db, a.roomId, -1)
            log_action(db, actor_id, "CHECK_OUT", "Allocation", a.id,
                       f"Allocation #{a.id} checked out of room {room.roomNumber}")
        logger.info(f"Allocation #{a.id} checked out; room {room.roomNumber} now "
                    f"{room.currentOccupancy}/{room.capacity}")
        return a

    def cancel_allocation(
        self, db: Session, allocation_id: int,
        reason: str | None = None, actor_id: int | None = None,
    ) -> HostelAllocation:
        """
        pending | allocated -> cancelled. A confirmed slot is released; deposit
        refunds are a separate operation.
        """
        with atomic(db):
            a = self._get(db, allocation_id)
            was = a.status
            self._require_status(a, (AllocationStatus.PENDING, AllocationStatus.ALLOCATED), "cancel")

            values = {"status": AllocationStatus.CANCELLED, "cancelledDate": self.clock()}
            reason = optional_text(reason, "reason", 1000)
            if reason:
                values["notes"] = _append_note(a.notes, f"Cancelled: {reason}")
            a = self._compare_and_set(db, a.id, (was,), "cancel", **values)
            if was == AllocationStatus.ALLOCATED:
                self.rooms.adjust_occupancy(db, a.roomId, -1)
            log_action(db, actor_id, "CANCEL", "Allocation", a.id,
                       f"Allocation #{a.id} cancelled (was {was.value})")
            room_number = a.room.roomNumber
        logger.info(f"Allocation #{a.id} cancelled (was {was.value})")
        send_allocation_status_notice(a.userId, a.id, room_number, a.status.value, reason)
        return a

    # ─── Money ────────────────────────────────────────────────────────────────
    def record_refund(self, db: Session, allocation_id: int, amount, actor_id: int | None = None) -> HostelAllocation:
        """
        Return part of the deposit. Refunds accumulate; the running total can
        never exceed the deposit paid.
        """
        amount = require_positive(amount, "amount")
        with atomic(db):
            a = self._get(db, allocation_id)
            if a.status == AllocationStatus.PENDING or a.depositPaid is None:
                raise InvalidStateException("No deposit has been recorded for this allocation")

            refunded = HostelAllocation.depositRefunded + amount
            result = db.execute(
                update(HostelAllocation)
                .where(
                    HostelAllocation.id == a.id,
                    HostelAllocation.depositPaid.is_not(None),
                    refunded <= HostelAllocation.depositPaid,
                )
                .values(depositRefunded=refunded, updatedAt=self.clock())
                .execution_options(synchronize_session=False)
            )
            a = self._get(db, a.id, refresh=True)
            if result.rowcount == 0:
                raise InvalidRefundException(amount, a.remainingDeposit)
            log_action(db, actor_id, "REFUND", "Allocation", a.id,
                       f"Refunded {amount} of deposit; {a.remainingDeposit} remaining")
        logger.info(f"Allocation #{a.id} refund {amount}, remaining deposit {a.remainingDeposit}")
        return a

    def record_rent_payment(self, db: Session, allocation_id: int, amount, actor_id: int | None = None) -> HostelAllocation:
        amount = require_positive(amount, "amount")
        with atomic(db):
            a = self._get(db, allocation_id)
            self._require_status(a, ACTIVE_STATUSES, "record rent for")
            a = self._compare_and_set(
                db, a.id, ACTIVE_STATUSES, "record rent for",
                rentPaid=HostelAllocation.rentPaid + amount,
            )
            log_action(db, actor_id, "RENT", "Allocation", a.id, f"Rent payment of {amount} recorded")
        return a

    # ─── Reassignment ─────────────────────────────────────────────────────────
    def _move(
        self, db: Session, a: HostelAllocation, new_room_id: int,
        reason: str | None, actor_id: int | None,
    ) -> tuple[HostelAllocation, HostelRoom, HostelRoom]:
        self._require_status(a, ACTIVE_STATUSES, "reassign")
        if a.roomId == new_room_id:
            raise ValidationException("Allocation is already in that room", field="newRoomId")

        old_room = self.rooms.get_room(db, a.roomId, fresh=True)
        new_room = self.rooms.get_room(db, new_room_id, fresh=True)
        self.rooms.ensure_can_accommodate(new_room, 1)
        duplicate = db.query(HostelAllocation.id).filter(
            HostelAllocation.userId == a.userId,
            HostelAllocation.roomId == new_room.id,
        ).first()
        if duplicate:
            raise ConflictException(f"User already has an allocation for room {new_room.roomNumber}")

        bed = self._pick_bed(db, new_room, None)
        was = a.status
        reason = optional_text(reason, "reason", 1000)

        # Room rows are locked lowest id first
        adjusted = {}
        for room_id, delta in sorted(((new_room.id, +1), (old_room.id, -1))):
            adjusted[room_id] = self.rooms.adjust_occupancy(db, room_id, delta)
        old_room, new_room = adjusted[old_room.id], adjusted[new_room.id]

        a = self._compare_and_set(
            db, a.id, (was,), "reassign",
            roomId=new_room.id, bedNumber=bed,
            notes=_append_note(a.notes, f"Room reassigned: {reason}" if reason else "Room reassigned by admin"),
        )
        log_action(db, actor_id, "REASSIGN", "Allocation", a.id,
                   f"Allocation #{a.id} moved from room {old_room.roomNumber} to {new_room.roomNumber}")
        return a, old_room, new_room

    def reassign_room(
        self, db: Session, allocation_id: int, new_room_id: int,
        reason: str | None = None, actor_id: int | None = None, commit: bool = True,
    ) -> HostelAllocation:
        """
        Move an active allocation to another room, shifting one slot of occupancy.

        With commit=False the move joins the caller's transaction and the caller
        is responsible for committing and for notifying the occupant.
        """
        if not commit:
            a, _, _ = self._move(db, self._get(db, allocation_id), new_room_id, reason, actor_id)
            return a

        with atomic(db):
            a, old_room, new_room = self._move(db, self._get(db, allocation_id), new_room_id, reason, actor_id)

        logger.info(f"Allocation #{a.id} reassigned {old_room.roomNumber} -> {new_room.roomNumber}")
        send_room_reassigned_notice(a.userId, a.id, old_room.roomNumber, new_room.roomNumber)
        return a


allocation_service = AllocationService()
