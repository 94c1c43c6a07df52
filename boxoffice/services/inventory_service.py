import math
import uuid
from datetime import datetime
from sqlalchemy.orm import Session
from sqlalchemy import select
from boxoffice.core.clock import utcnow
from boxoffice.core.config import settings
from boxoffice.models.event import Event
from boxoffice.models.unit_type import UnitType
from boxoffice.models.inventory_unit import InventoryUnit
from boxoffice.models.hold import Hold
from boxoffice.models.allocation import Allocation
from boxoffice.models.attendee import EventAttendee
from boxoffice.services.errors import EventNotFound, UnitNotFound

GA_TYPE = "General Admission"

def _row_label(i: int) -> str:
    # A..Z, then AA, AB, ...
    label = ""
    i += 1
    while i:
        i, rem = divmod(i - 1, 26)
        label = chr(65 + rem) + label
    return label

def generate_seat_layout(seat_types: list[dict], seats_per_row: int) -> list[dict]:
    """Lay seats out row by row (A1, A2, ... B1); types are handed out in the order given, by quantity."""
    if seats_per_row < 1:
        raise ValueError("seats_per_row must be >= 1")
    total = sum(int(t["quantity"]) for t in seat_types)
    rows = math.ceil(total / seats_per_row)

    # seat type for each running seat number
    bounds = []
    running = 0
    for t in seat_types:
        running += int(t["quantity"])
        bounds.append((running, t))

    seats = []
    n = 0
    for r in range(rows):
        label = _row_label(r)
        for j in range(seats_per_row):
            if n >= total:
                break
            n += 1
            t = next(t for upper, t in bounds if n <= upper)
            seats.append({"unit_id": f"{label}{j + 1}", "row_label": label, "unit_type": t["name"], "price": int(t["price"])})
    return seats

def define_event(
    db: Session,
    *,
    title: str,
    starts_at: datetime,
    organizer_id: str,
    seat_types: list[dict] | None = None,
    general_admission: dict | None = None,
    seats_per_row: int = 10,
    section_name: str = "Main Section",
    currency: str | None = None,
) -> Event:
    """Create an event together with its allocatable units.

    Seated events take `seat_types` ([{name, price, quantity}]); general admission
    events take `general_admission` ({capacity, price}) and get slots GA-0001...
    """
    if seat_types:
        names = [t["name"] for t in seat_types]
        if len(set(names)) != len(names):
            raise ValueError("seat type names must be unique")
        if any(int(t["quantity"]) < 0 or int(t["price"]) < 0 for t in seat_types):
            raise ValueError("seat type quantity and price must be >= 0")
    elif general_admission:
        if int(general_admission.get("capacity", 0)) < 1 or int(general_admission.get("price", -1)) < 0:
            raise ValueError("general admission events require capacity and price")
    else:
        raise ValueError("seated events require seat types; others require general admission")

    event = Event(
        id=str(uuid.uuid4()),
        title=title,
        organizer_id=organizer_id,
        starts_at=starts_at,
        is_seated=bool(seat_types),
        ga_capacity=0 if seat_types else int(general_admission["capacity"]),
        currency=(currency or settings.DEFAULT_CURRENCY).lower(),
        is_active=True,
    )
    db.add(event)

    if seat_types:
        for t in seat_types:
            db.add(UnitType(event_id=event.id, name=t["name"], price=int(t["price"]),
                            quantity=int(t["quantity"]), color=t.get("color") or "#4F46E5"))
        for s in generate_seat_layout(seat_types, seats_per_row):
            db.add(InventoryUnit(event_id=event.id, section=section_name, **s))
    else:
        cap = int(general_admission["capacity"])
        price = int(general_admission["price"])
        db.add(UnitType(event_id=event.id, name=GA_TYPE, price=price, quantity=cap))
        for i in range(cap):
            db.add(InventoryUnit(event_id=event.id, unit_id=f"GA-{i + 1:04d}", unit_type=GA_TYPE, price=price))

    db.commit()
    db.refresh(event)
    return event

def get_event(db: Session, event_id: str) -> Event:
    event = db.get(Event, event_id)
    if not event:
        raise EventNotFound(event_id)
    return event

def get_event_inventory(db: Session, event_id: str) -> tuple[Event, list[UnitType], list[InventoryUnit]]:
    event = get_event(db, event_id)
    types = db.execute(select(UnitType).where(UnitType.event_id == event_id).order_by(UnitType.name)).scalars().all()
    units = db.execute(select(InventoryUnit).where(InventoryUnit.event_id == event_id)).scalars().all()
    return event, list(types), list(units)

def get_units(db: Session, event_id: str, unit_ids: list[str]) -> dict[str, InventoryUnit]:
    rows = db.execute(
        select(InventoryUnit).where(InventoryUnit.event_id == event_id, InventoryUnit.unit_id.in_(unit_ids))
    ).scalars().all()
    return {u.unit_id: u for u in rows}

def unit_type_names(db: Session, event_id: str) -> set[str]:
    return set(db.execute(select(UnitType.name).where(UnitType.event_id == event_id)).scalars().all())

def blocked_units(db: Session, event_id: str, unit_ids: list[str], now: datetime) -> list[str]:
    """Units among `unit_ids` that carry a live hold or are already sold."""
    held = db.execute(
        select(Hold.unit_id).where(Hold.event_id == event_id, Hold.unit_id.in_(unit_ids), Hold.expires_at >= now)
    ).scalars().all()
    sold = db.execute(
        select(Allocation.unit_id).where(Allocation.event_id == event_id, Allocation.unit_id.in_(unit_ids))
    ).scalars().all()
    return sorted(set(held) | set(sold))

def seat_map(db: Session, event_id: str, now: datetime | None = None) -> list[dict]:
    now = now or utcnow()
    _, _, units = get_event_inventory(db, event_id)
    held = set(db.execute(
        select(Hold.unit_id).where(Hold.event_id == event_id, Hold.expires_at >= now)
    ).scalars().all())
    sold = set(db.execute(select(Allocation.unit_id).where(Allocation.event_id == event_id)).scalars().all())

    out = []
    for u in units:
        status = "sold" if u.unit_id in sold else "held" if u.unit_id in held else "available"
        out.append({
            "unitId": u.unit_id,
            "unitType": u.unit_type,
            "price": u.price,
            "section": u.section,
            "row": u.row_label,
            "status": status,
        })
    return out

def reprice_unit(db: Session, event_id: str, unit_id: str, price: int) -> InventoryUnit:
    if price < 0:
        raise ValueError("price must be >= 0")
    get_event(db, event_id)
    unit = db.get(InventoryUnit, (event_id, unit_id))
    if not unit:
        raise UnitNotFound(event_id, unit_id)
    unit.price = int(price)
    db.commit()
    db.refresh(unit)
    return unit

def list_attendees(db: Session, event_id: str) -> list[str]:
    get_event(db, event_id)
    return list(db.execute(
        select(EventAttendee.user_id).where(EventAttendee.event_id == event_id).order_by(EventAttendee.created_at)
    ).scalars().all())
