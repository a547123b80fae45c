from pydantic import BaseModel, Field, field_validator
from typing import Optional
from datetime import datetime
from decimal import Decimal


class AllocationRequest(BaseModel):
    userId:    int
    roomId:    int
    bedNumber: Optional[int] = None
    notes:     Optional[str] = Field(None, max_length=1000)


class ConfirmRequest(BaseModel):
    depositPaid: Decimal
    bedNumber:   Optional[int] = None

    @field_validator("depositPaid")
    @classmethod
    def check_deposit(cls, v):
        if v < 0: raise ValueError("Deposit cannot be negative")
        return v


class CheckInRequest(BaseModel):
    checkInDate: Optional[datetime] = None


class CheckOutRequest(BaseModel):
    checkOutDate: Optional[datetime] = None


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)


class AmountRequest(BaseModel):
    amount: Decimal

    @field_validator("amount")
    @classmethod
    def check_amount(cls, v):
        if v <= 0: raise ValueError("Amount must be greater than 0")
        return v


class ReassignRequest(BaseModel):
    newRoomId: int
    reason:    Optional[str] = Field(None, max_length=1000)
