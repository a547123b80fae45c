from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Optional

from hostel.config import settings
from hostel.database import get_db
from hostel.dependencies import get_actor_id
from hostel.schemas.service_request import (
    ServiceRequestCreateRequest, ServiceRequestUpdateRequest,
    AssignRequest, FeedbackRequest, ResolveRequest,
    RoomChangeRequest, RoomChangeApproveRequest,
)
from hostel.schemas.common import success_response, paginated_response
from hostel.services.allocation_service import allocation_service, serialize_allocation
from hostel.services.service_request_service import service_request_service, serialize_service_request

router = APIRouter(prefix="/service-requests")


@router.get("", summary="List service requests (paginated)")
def list_service_requests(
    page:     int           = Query(1, ge=1),
    limit:    int           = Query(settings.DEFAULT_PAGE_LIMIT, ge=1, le=settings.MAX_PAGE_LIMIT),
    userId:   Optional[int] = Query(None),
    roomId:   Optional[int] = Query(None),
    status:   Optional[str] = Query(None, description="submitted | acknowledged | in_progress | resolved | cancelled"),
    type:     Optional[str] = Query(None),
    priority: Optional[str] = Query(None, description="low | medium | high | urgent"),
    db:       Session       = Depends(get_db),
):
    items, total = service_request_service.list_service_requests(
        db, page, limit, userId, roomId, status, type, priority,
    )
    return paginated_response("Service requests retrieved successfully",
                              [serialize_service_request(s) for s in items], total, page, limit)


@router.get("/{request_id}", summary="Get service request by ID")
def get_service_request(request_id: int, db: Session = Depends(get_db)):
    s = service_request_service.get_service_request(db, request_id)
    return success_response("Service request retrieved", serialize_service_request(s))


@router.post("", status_code=status.HTTP_201_CREATED, summary="File a service request")
def create_service_request(
    body:     ServiceRequestCreateRequest,
    db:       Session    = Depends(get_db),
    actor_id: int | None = Depends(get_actor_id),
):
    s = service_request_service.create_service_request(db, body, actor_id)
    return success_response("Service request submitted", serialize_service_request(s))


@router.post("/room-change", status_code=status.HTTP_201_CREATED, summary="Ask to move to another room")
def request_room_change(
    body:     RoomChangeRequest,
    db:       Session    = Depends(get_db),
    actor_id: int | None = Depends(get_actor_id),
):
    s = service_request_service.request_room_change(db, body.userId, body.preferredRoomId, body.reason, actor_id)
    return success_response("Room change request submitted", serialize_service_request(s))


@router.put("/{request_id}", summary="Update an open service request (Admin)")
def update_service_request(
    request_id: int,
    body:       ServiceRequestUpdateRequest,
    db:         Session    = Depends(get_db),
    actor_id:   int | None = Depends(get_actor_id),
):
    s = service_request_service.update_service_request(db, request_id, body, actor_id)
    return success_response("Service request updated", serialize_service_request(s))


@router.post("/{request_id}/acknowledge", summary="Acknowledge (Admin)")
def acknowledge(request_id: int, db: Session = Depends(get_db), actor_id: int | None = Depends(get_actor_id)):
    s = service_request_service.acknowledge_service_request(db, request_id, actor_id)
    return success_response("Service request acknowledged", serialize_service_request(s))


@router.post("/{request_id}/assign", summary="Assign to staff (Admin)")
def assign(
    request_id: int,
    body:       AssignRequest,
    db:         Session    = Depends(get_db),
    actor_id:   int | None = Depends(get_actor_id),
):
    s = service_request_service.assign_service_request(db, request_id, body.staffId, actor_id)
    return success_response("Service request assigned", serialize_service_request(s))


@router.post("/{request_id}/start", summary="Start work (Staff)")
def start(request_id: int, db: Session = Depends(get_db), actor_id: int | None = Depends(get_actor_id)):
    s = service_request_service.start_service_request(db, request_id, actor_id)
    return success_response("Work started", serialize_service_request(s))


@router.post("/{request_id}/resolve", summary="Resolve (Staff/Admin)")
def resolve(
    request_id: int,
    body:       ResolveRequest | None = None,
    db:         Session    = Depends(get_db),
    actor_id:   int | None = Depends(get_actor_id),
):
    s, restored = service_request_service.resolve_service_request(db, request_id, body, actor_id)
    data = serialize_service_request(s)
    data["roomRestored"] = restored
    return success_response("Service request resolved", data)


@router.post("/{request_id}/approve-room-change", summary="Approve a room change and move the occupant (Admin)")
def approve_room_change(
    request_id: int,
    body:       RoomChangeApproveRequest | None = None,
    db:         Session    = Depends(get_db),
    actor_id:   int | None = Depends(get_actor_id),
):
    body = body or RoomChangeApproveRequest()
    s, a = service_request_service.approve_room_change(db, request_id, body.newRoomId, body.adminNotes, actor_id)
    data = serialize_service_request(s)
    data["allocation"] = serialize_allocation(a, allocation_service.clock())
    return success_response("Room change approved", data)


@router.post("/{request_id}/cancel", summary="Cancel")
def cancel(request_id: int, db: Session = Depends(get_db), actor_id: int | None = Depends(get_actor_id)):
    s = service_request_service.cancel_service_request(db, request_id, actor_id)
    return success_response("Service request cancelled", serialize_service_request(s))


@router.post("/{request_id}/feedback", summary="Rate a resolved request")
def submit_feedback(
    request_id: int,
    body:       FeedbackRequest,
    db:         Session    = Depends(get_db),
    actor_id:   int | None = Depends(get_actor_id),
):
    s = service_request_service.submit_feedback(db, request_id, body.rating, body.comment, actor_id)
    return success_response("Feedback submitted", serialize_service_request(s))
