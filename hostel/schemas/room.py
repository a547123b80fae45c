from pydantic import BaseModel, Field, field_validator
from typing import Optional
from decimal import Decimal
from hostel.models.room import RoomType, MaintenanceStatus


class RoomCreateRequest(BaseModel):
    roomNumber:  str
    block:       str
    floor:       int
    capacity:    int
    type:        Optional[RoomType] = None
    rent:        Decimal       = Decimal("0")
    deposit:     Decimal       = Decimal("0")
    amenities:   list[str]     = []
    description: Optional[str] = Field(None, max_length=1000)

    @field_validator("roomNumber", "block")
    @classmethod
    def check_not_empty(cls, v):
        if not v.strip(): raise ValueError("Field cannot be empty")
        return v.strip()

    @field_validator("rent", "deposit")
    @classmethod
    def check_amount(cls, v):
        if v < 0: raise ValueError("Amount cannot be negative")
        return v


class RoomUpdateRequest(BaseModel):
    block:       Optional[str]       = None
    floor:       Optional[int]       = None
    capacity:    Optional[int]       = None
    type:        Optional[RoomType]  = None
    rent:        Optional[Decimal]   = None
    deposit:     Optional[Decimal]   = None
    amenities:   Optional[list[str]] = None
    description: Optional[str]       = Field(None, max_length=1000)

    @field_validator("rent", "deposit")
    @classmethod
    def check_amount(cls, v):
        if v is not None and v < 0: raise ValueError("Amount cannot be negative")
        return v


class RoomStatusRequest(BaseModel):
    maintenanceStatus: MaintenanceStatus
    reason:            Optional[str] = None
