from pydantic import BaseModel, Field
from typing import List, Optional

class ReserveRequest(BaseModel):
    units: List[str] = Field(min_length=1)  # unit ids, e.g. ["A1", "A2"]

class BookingUnitOut(BaseModel):
    unitId: str
    unitType: str
    price: int

class BookingOut(BaseModel):
    bookingId: str
    eventId: str
    ticketNumber: str
    status: str
    totalAmount: int
    currency: str
    units: List[BookingUnitOut] = []
    paymentRef: Optional[str] = None
    holdExpiresAt: Optional[str] = None
    createdAt: Optional[str] = None
    paidAt: Optional[str] = None
    cancelledAt: Optional[str] = None
    message: Optional[str] = None  # e.g. "Reservation expired, please try again"

class ReservationOut(BaseModel):
    bookingId: str
    ticketNumber: str
    status: str
    totalAmount: int
    currency: str
    holdExpiresAt: str
    paymentRef: Optional[str] = None
    paymentClientSecret: Optional[str] = None
