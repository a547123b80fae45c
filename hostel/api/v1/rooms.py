from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Optional

from hostel.config import settings
from hostel.database import get_db
from hostel.dependencies import get_actor_id
from hostel.schemas.room import RoomCreateRequest, RoomUpdateRequest, RoomStatusRequest
from hostel.schemas.common import success_response, paginated_response
from hostel.services.room_service import room_service, serialize_room

router = APIRouter(prefix="/rooms")


@router.get("", summary="List rooms (paginated)")
def list_rooms(
    page:         int           = Query(1, ge=1),
    limit:        int           = Query(settings.DEFAULT_PAGE_LIMIT, ge=1, le=settings.MAX_PAGE_LIMIT),
    block:        Optional[str] = Query(None),
    floor:        Optional[int] = Query(None),
    type:         Optional[str] = Query(None, description="single | double | triple | quad"),
    availability: Optional[str] = Query(None, description="available | full"),
    db:           Session       = Depends(get_db),
):
    items, total = room_service.list_rooms(db, page, limit, block, floor, type, availability)
    return paginated_response("Rooms retrieved successfully", [serialize_room(r) for r in items],
                              total, page, limit)


@router.get("/available", summary="Rooms that can take another occupant")
def available_rooms(
    block: Optional[str] = Query(None),
    floor: Optional[int] = Query(None),
    type:  Optional[str] = Query(None),
    db:    Session       = Depends(get_db),
):
    rooms = [serialize_room(r) for r in room_service.get_available_rooms(db, block, floor, type)]
    return success_response(f"{len(rooms)} room(s) available", rooms)


@router.get("/{room_id}", summary="Get room by ID")
def get_room(room_id: int, db: Session = Depends(get_db)):
    return success_response("Room retrieved", serialize_room(room_service.get_room(db, room_id)))


@router.get("/{room_id}/can-accommodate", summary="Check whether a room can take N more occupants")
def can_accommodate(
    room_id: int,
    count:   int     = Query(1, ge=1),
    db:      Session = Depends(get_db),
):
    ok = room_service.can_accommodate(db, room_id, count)
    return success_response("Room capacity checked", {"roomId": room_id, "count": count, "canAccommodate": ok})


@router.post("", status_code=status.HTTP_201_CREATED, summary="Create room (Admin)")
def create_room(
    body:     RoomCreateRequest,
    db:       Session     = Depends(get_db),
    actor_id: int | None  = Depends(get_actor_id),
):
    room = room_service.create_room(db, body, actor_id)
    return success_response("Room created successfully", serialize_room(room))


@router.put("/{room_id}", summary="Update room (Admin)")
def update_room(
    room_id:  int,
    body:     RoomUpdateRequest,
    db:       Session    = Depends(get_db),
    actor_id: int | None = Depends(get_actor_id),
):
    room = room_service.update_room(db, room_id, body, actor_id)
    return success_response("Room updated successfully", serialize_room(room))


@router.patch("/{room_id}/status", summary="Change room maintenance status (Admin)")
def update_status(
    room_id:  int,
    body:     RoomStatusRequest,
    db:       Session    = Depends(get_db),
    actor_id: int | None = Depends(get_actor_id),
):
    room = room_service.set_maintenance_status(db, room_id, body.maintenanceStatus, actor_id, body.reason)
    return success_response("Room status updated", serialize_room(room))


@router.post("/{room_id}/retire", summary="Retire room (Admin)")
def retire_room(room_id: int, db: Session = Depends(get_db), actor_id: int | None = Depends(get_actor_id)):
    room = room_service.retire_room(db, room_id, actor_id)
    return success_response("Room retired", serialize_room(room))


@router.post("/{room_id}/reactivate", summary="Reactivate retired room (Admin)")
def reactivate_room(room_id: int, db: Session = Depends(get_db), actor_id: int | None = Depends(get_actor_id)):
    room = room_service.reactivate_room(db, room_id, actor_id)
    return success_response("Room reactivated", serialize_room(room))
