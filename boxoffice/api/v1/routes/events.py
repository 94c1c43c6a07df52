from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from boxoffice.core.clock import as_utc
from boxoffice.db.session import get_db
from boxoffice.api.deps import CurrentUser, require_roles
from boxoffice.schemas.event import AttendeesOut, EventOut, SeatOut, UnitOut, UnitTypeOut
from boxoffice.services.inventory_service import get_event, get_event_inventory, list_attendees, seat_map

router = APIRouter(tags=["events"])

@router.get("/public/events/{event_id}", response_model=EventOut)
def get_event_detail(event_id: str, db: Session = Depends(get_db)):
    event, types, units = get_event_inventory(db, event_id)
    return EventOut(
        id=event.id,
        title=event.title,
        startsAt=as_utc(event.starts_at).isoformat(),
        isSeated=event.is_seated,
        currency=event.currency,
        isActive=event.is_active,
        unitTypes=[UnitTypeOut(name=t.name, price=t.price, quantity=t.quantity, color=t.color) for t in types],
        units=[UnitOut(unitId=u.unit_id, unitType=u.unit_type, price=u.price, section=u.section, row=u.row_label) for u in units],
    )

@router.get("/public/events/{event_id}/seats", response_model=list[SeatOut])
def get_seat_map(event_id: str, db: Session = Depends(get_db)):
    return [SeatOut(**s) for s in seat_map(db, event_id)]

@router.get("/ops/events/{event_id}/attendees", response_model=AttendeesOut)
def get_attendees(event_id: str, db: Session = Depends(get_db), user: CurrentUser = Depends(require_roles("organizer", "admin"))):
    event = get_event(db, event_id)
    if user.role == "organizer" and event.organizer_id != user.id:
        # organizers only see their own events
        raise HTTPException(status_code=403, detail="Forbidden")
    attendees = list_attendees(db, event_id)
    return AttendeesOut(eventId=event_id, attendees=attendees, count=len(attendees))