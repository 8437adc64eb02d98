import uuid
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field


class ReserveItemIn(BaseModel):
    product_id: int
    # not constrained here: a bad quantity fails only its own item
    quantity: int
    warehouse_id: Optional[int] = None


class ReserveRequestIn(BaseModel):
    items: List[ReserveItemIn] = Field(min_length=1, max_length=100)
    duration_minutes: Optional[float] = Field(default=None, gt=0)
    order_id: Optional[str] = Field(default=None, max_length=64)
    cart_session_id: Optional[str] = Field(default=None, max_length=128)


class ReservationOut(BaseModel):
    id: uuid.UUID
    product_id: int
    warehouse_id: int
    quantity: int
    status: str
    expires_at: datetime
    order_id: Optional[str] = None


class ItemFailureOut(BaseModel):
    product_id: int
    warehouse_id: Optional[int] = None
    code: str
    reason: str
    available: Optional[int] = None
    requested: Optional[int] = None


class ReserveResponse(BaseModel):
    success: bool
    reservations: List[ReservationOut] = []
    failures: List[ItemFailureOut] = []


class AttachOrderIn(BaseModel):
    reservation_ids: List[uuid.UUID] = Field(min_length=1)
    order_id: str = Field(min_length=1, max_length=64)
