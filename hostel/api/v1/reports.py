from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from hostel.database import get_db
from hostel.schemas.common import success_response
from hostel.services.report_service import report_service

router = APIRouter(prefix="/reports")


# ─── Hostel Overview ──────────────────────────────────────────────────────────
@router.get("/hostel", summary="Occupancy and workload overview (Admin)")
def report_hostel(db: Session = Depends(get_db)):
    return success_response("Hostel statistics generated", report_service.hostel_stats(db))


# ─── Per User ─────────────────────────────────────────────────────────────────
@router.get("/users/{user_id}", summary="Allocation and service history of a user")
def report_user(user_id: int, db: Session = Depends(get_db)):
    return success_response("User summary generated", report_service.user_summary(db, user_id))


# ─── Per Room ─────────────────────────────────────────────────────────────────
@router.get("/rooms/{room_id}", summary="Occupancy snapshot and service history of a room")
def report_room(room_id: int, db: Session = Depends(get_db)):
    return success_response("Room summary generated", report_service.room_summary(db, room_id))
