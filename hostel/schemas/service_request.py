from pydantic import BaseModel, Field, field_validator
from typing import Optional
from datetime import datetime
from decimal import Decimal
from hostel.models.room import MaintenanceStatus
from hostel.models.service_request import ServiceType, ServicePriority


class ServiceRequestCreateRequest(BaseModel):
    userId:        int
    roomId:        int
    type:          ServiceType
    title:         str                       = Field(max_length=200)
    description:   str                       = Field(max_length=2000)
    priority:      ServicePriority           = ServicePriority.MEDIUM
    estimatedCost: Optional[Decimal]         = None
    scheduledDate: Optional[datetime]        = None
    roomStatus:    Optional[MaintenanceStatus] = None

    @field_validator("title", "description")
    @classmethod
    def check_not_empty(cls, v):
        if not v.strip(): raise ValueError("Field cannot be empty")
        return v.strip()

    @field_validator("estimatedCost")
    @classmethod
    def check_cost(cls, v):
        if v is not None and v < 0: raise ValueError("Cost cannot be negative")
        return v


class ServiceRequestUpdateRequest(BaseModel):
    priority:      Optional[ServicePriority] = None
    estimatedCost: Optional[Decimal]         = None
    scheduledDate: Optional[datetime]        = None
    adminNotes:    Optional[str]             = Field(None, max_length=2000)

    @field_validator("estimatedCost")
    @classmethod
    def check_cost(cls, v):
        if v is not None and v < 0: raise ValueError("Cost cannot be negative")
        return v


class AssignRequest(BaseModel):
    staffId: int


class FeedbackRequest(BaseModel):
    rating:  int           = Field(ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=1000)


class ResolveRequest(BaseModel):
    actualCost:  Optional[Decimal]         = None
    adminNotes:  Optional[str]             = Field(None, max_length=2000)
    feedback:    Optional[FeedbackRequest] = None
    restoreRoom: bool                      = False

    @field_validator("actualCost")
    @classmethod
    def check_cost(cls, v):
        if v is not None and v < 0: raise ValueError("Cost cannot be negative")
        return v


class RoomChangeRequest(BaseModel):
    userId:          int
    preferredRoomId: Optional[int] = None
    reason:          Optional[str] = Field(None, max_length=2000)


class RoomChangeApproveRequest(BaseModel):
    newRoomId:  Optional[int] = None
    adminNotes: Optional[str] = Field(None, max_length=2000)
