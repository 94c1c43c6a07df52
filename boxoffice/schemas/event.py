from pydantic import BaseModel
from typing import List, Optional

class UnitTypeOut(BaseModel):
    name: str
    price: int
    quantity: int
    color: str = "#4F46E5"

class UnitOut(BaseModel):
    unitId: str
    unitType: str
    price: int
    section: str = ""
    row: str = ""

class EventOut(BaseModel):
    id: str
    title: str
    startsAt: str
    isSeated: bool
    currency: str
    isActive: bool
    unitTypes: List[UnitTypeOut]
    units: List[UnitOut]

class SeatOut(UnitOut):
    status: str  # available, held, sold

class AttendeesOut(BaseModel):
    eventId: str
    attendees: List[str]
    count: Optional[int] = None
