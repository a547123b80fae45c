from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Optional

from hostel.config import settings
from hostel.database import get_db
from hostel.dependencies import get_actor_id
from hostel.schemas.allocation import (
    AllocationRequest, ConfirmRequest, CheckInRequest, CheckOutRequest,
    CancelRequest, AmountRequest, ReassignRequest,
)
from hostel.schemas.common import success_response, paginated_response
from hostel.services.allocation_service import allocation_service, serialize_allocation

router = APIRouter(prefix="/allocations")


# ─── Queries ──────────────────────────────────────────────────────────────────
@router.get("", summary="List allocations (paginated)")
def list_allocations(
    page:   int           = Query(1, ge=1),
    limit:  int           = Query(settings.DEFAULT_PAGE_LIMIT, ge=1, le=settings.MAX_PAGE_LIMIT),
    userId: Optional[int] = Query(None),
    roomId: Optional[int] = Query(None),
    status: Optional[str] = Query(None, description="pending | allocated | checked_in | checked_out | cancelled"),
    db:     Session       = Depends(get_db),
):
    items, total = allocation_service.list_allocations(db, page, limit, userId, roomId, status)
    now = allocation_service.clock()
    return paginated_response("Allocations retrieved successfully",
                              [serialize_allocation(a, now) for a in items], total, page, limit)


@router.get("/active/{user_id}", summary="Current active allocation of a user")
def get_active_allocation(user_id: int, db: Session = Depends(get_db)):
    a = allocation_service.get_active_allocation(db, user_id)
    return success_response("Active allocation retrieved", serialize_allocation(a, allocation_service.clock()))


@router.get("/{allocation_id}", summary="Get allocation by ID")
def get_allocation(allocation_id: int, db: Session = Depends(get_db)):
    a = allocation_service.get_allocation(db, allocation_id)
    return success_response("Allocation retrieved", serialize_allocation(a, allocation_service.clock()))


# ─── Lifecycle ────────────────────────────────────────────────────────────────
@router.post("", status_code=status.HTTP_201_CREATED, summary="Request an allocation")
def request_allocation(
    body:     AllocationRequest,
    db:       Session    = Depends(get_db),
    actor_id: int | None = Depends(get_actor_id),
):
    a = allocation_service.request_allocation(db, body, actor_id)
    return success_response("Allocation requested", serialize_allocation(a, allocation_service.clock()))


@router.post("/{allocation_id}/confirm", summary="Confirm allocation and reserve the bed (Admin)")
def confirm_allocation(
    allocation_id: int,
    body:          ConfirmRequest,
    db:            Session    = Depends(get_db),
    actor_id:      int | None = Depends(get_actor_id),
):
    a = allocation_service.confirm_allocation(db, allocation_id, body.depositPaid, body.bedNumber, actor_id)
    return success_response("Allocation confirmed", serialize_allocation(a, allocation_service.clock()))


@router.post("/{allocation_id}/check-in", summary="Check in")
def check_in(
    allocation_id: int,
    body:          CheckInRequest | None = None,
    db:            Session    = Depends(get_db),
    actor_id:      int | None = Depends(get_actor_id),
):
    when = body.checkInDate if body else None
    a = allocation_service.check_in(db, allocation_id, when, actor_id)
    return success_response("Checked in", serialize_allocation(a, allocation_service.clock()))


@router.post("/{allocation_id}/check-out", summary="Check out and release the bed")
def check_out(
    allocation_id: int,
    body:          CheckOutRequest | None = None,
    db:            Session    = Depends(get_db),
    actor_id:      int | None = Depends(get_actor_id),
):
    when = body.checkOutDate if body else None
    a = allocation_service.check_out(db, allocation_id, when, actor_id)
    return success_response("Checked out", serialize_allocation(a, allocation_service.clock()))


@router.post("/{allocation_id}/cancel", summary="Cancel allocation")
def cancel_allocation(
    allocation_id: int,
    body:          CancelRequest | None = None,
    db:            Session    = Depends(get_db),
    actor_id:      int | None = Depends(get_actor_id),
):
    a = allocation_service.cancel_allocation(db, allocation_id, body.reason if body else None, actor_id)
    return success_response("Allocation cancelled", serialize_allocation(a, allocation_service.clock()))


@router.post("/{allocation_id}/reassign", summary="Move allocation to another room (Admin)")
def reassign_room(
    allocation_id: int,
    body:          ReassignRequest,
    db:            Session    = Depends(get_db),
    actor_id:      int | None = Depends(get_actor_id),
):
    a = allocation_service.reassign_room(db, allocation_id, body.newRoomId, body.reason, actor_id)
    return success_response("Room reassigned", serialize_allocation(a, allocation_service.clock()))


# ─── Money ────────────────────────────────────────────────────────────────────
@router.post("/{allocation_id}/refunds", summary="Record a deposit refund (Admin)")
def record_refund(
    allocation_id: int,
    body:          AmountRequest,
    db:            Session    = Depends(get_db),
    actor_id:      int | None = Depends(get_actor_id),
):
    a = allocation_service.record_refund(db, allocation_id, body.amount, actor_id)
    return success_response("Refund recorded", serialize_allocation(a, allocation_service.clock()))


@router.post("/{allocation_id}/rent-payments", summary="Record a rent payment (Admin)")
def record_rent_payment(
    allocation_id: int,
    body:          AmountRequest,
    db:            Session    = Depends(get_db),
    actor_id:      int | None = Depends(get_actor_id),
):
    a = allocation_service.record_rent_payment(db, allocation_id, body.amount, actor_id)
    return success_response("Rent payment recorded", serialize_allocation(a, allocation_service.clock()))
