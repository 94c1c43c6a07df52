import logging
import random
import string
import uuid
from datetime import datetime, timedelta
from sqlalchemy.orm import Session
from sqlalchemy import select, update, delete, or_
from sqlalchemy.exc import IntegrityError
from boxoffice.core.clock import utcnow, as_utc
from boxoffice.core.config import settings
from boxoffice.models.booking import Booking, PENDING, PAID, CANCELLED
from boxoffice.models.booking_unit import BookingUnit
from boxoffice.models.event import Event
from boxoffice.models.hold import Hold
from boxoffice.services.audit_service import log_audit
from boxoffice.services.errors import (
    BookingNotFound, GatewayUnavailable, InvalidReservation, InvalidTransition, ReservationExpired, SeatUnavailable,
)
from boxoffice.services.inventory_service import blocked_units, get_event, get_units, unit_type_names

logger = logging.getLogger(__name__)

def make_ticket_number(now: datetime) -> str:
    return f"TKT-{now:%Y%m%d}-" + "".join(random.choices(string.ascii_uppercase + string.digits, k=8))

def transition(db: Session, booking_id: str, source: str, target: str, **values) -> bool:
    """Conditional status change. False means the booking was not in `source` any more."""
    res = db.execute(
        update(Booking)
        .where(Booking.id == booking_id, Booking.status == source)
        .values(status=target, **values)
        .execution_options(synchronize_session=False)
    )
    return res.rowcount == 1

def release_holds(db: Session, booking_id: str) -> int:
    res = db.execute(
        delete(Hold).where(Hold.booking_id == booking_id).execution_options(synchronize_session=False)
    )
    return res.rowcount

def reserve(
    db: Session,
    event_id: str,
    user_id: str,
    unit_ids: list[str],
    now: datetime | None = None,
    hold_minutes: int | None = None,
) -> Booking:
    """Create a pending booking holding every requested unit, or nothing at all."""
    now = now or utcnow()
    requested = [str(u).strip() for u in (unit_ids or [])]
    if not requested or any(not u for u in requested):
        raise InvalidReservation("At least one unit is required")
    dupes = sorted({u for u in requested if requested.count(u) > 1})
    if dupes:
        raise InvalidReservation("Units requested more than once", dupes)

    event = get_event(db, event_id)
    if not event.is_active or as_utc(event.starts_at) <= now:
        raise InvalidReservation("Event is not open for sale")

    units = get_units(db, event_id, requested)
    unknown = [u for u in requested if u not in units]
    if unknown:
        raise InvalidReservation("Units do not belong to this event", unknown)
    types = unit_type_names(db, event_id)
    untyped = [u for u in requested if units[u].unit_type not in types]
    if untyped:
        raise InvalidReservation("Units reference an unknown unit type", untyped)

    # ticket_number must be unique
    for _ in range(10):
        ticket_number = make_ticket_number(now)
        exists = db.query(Booking).filter(Booking.ticket_number == ticket_number).first()
        if not exists:
            break
    else:
        raise InvalidReservation("Could not allocate ticket number")

    expires_at = now + timedelta(minutes=settings.HOLD_DURATION_MINUTES if hold_minutes is None else hold_minutes)
    booking = Booking(
        id=str(uuid.uuid4()),
        ticket_number=ticket_number,
        event_id=event_id,
        user_id=user_id,
        total_amount=sum(units[u].price for u in requested),
        currency=event.currency,
        status=PENDING,
        hold_expires_at=expires_at,
        created_at=now,
    )

    try:
        # Lapsed claims on these units free their slot; live ones stay and block us.
        db.execute(
            delete(Hold)
            .where(Hold.event_id == event_id, Hold.unit_id.in_(requested), Hold.expires_at < now)
            .execution_options(synchronize_session=False)
        )
        blocked = blocked_units(db, event_id, requested, now)
        if blocked:
            db.rollback()
            logger.info("Reserve conflict event=%s units=%s", event_id, blocked)
            raise SeatUnavailable(blocked)

        db.add(booking)
        for uid in requested:
            u = units[uid]
            db.add(BookingUnit(booking_id=booking.id, unit_id=uid, unit_type=u.unit_type, price=u.price))
            db.add(Hold(event_id=event_id, unit_id=uid, booking_id=booking.id, expires_at=expires_at, created_at=now))
        log_audit(db, actor=user_id, action="booking.reserved", entity_type="booking", entity_id=booking.id,
                  details={"units": requested, "totalAmount": booking.total_amount, "holdExpiresAt": expires_at})
        db.commit()
    except IntegrityError:
        # Lost the race on the holds primary key to a concurrent reserve.
        db.rollback()
        blocked = blocked_units(db, event_id, requested, now) or requested
        logger.info("Reserve lost race event=%s units=%s", event_id, blocked)
        raise SeatUnavailable(blocked)

    db.refresh(booking)
    logger.info("Reserved booking=%s event=%s units=%d until %s", booking.id, event_id, len(requested), expires_at.isoformat())
    return booking

def get_booking(db: Session, booking_id: str, user_id: str | None = None) -> Booking:
    b = db.get(Booking, booking_id)
    if not b or (user_id is not None and b.user_id != user_id):
        raise BookingNotFound(booking_id)
    return b

def booking_units(db: Session, booking_id: str) -> list[BookingUnit]:
    return list(db.execute(
        select(BookingUnit).where(BookingUnit.booking_id == booking_id).order_by(BookingUnit.unit_id)
    ).scalars().all())

def list_user_bookings(db: Session, user_id: str, status: str = PAID) -> list[Booking]:
    return list(db.execute(
        select(Booking).where(Booking.user_id == user_id, Booking.status == status).order_by(Booking.created_at.desc())
    ).scalars().all())

def hold_lapsed(b: Booking, now: datetime | None = None) -> bool:
    return b.status == PENDING and b.hold_expires_at is not None and as_utc(b.hold_expires_at) < (now or utcnow())

def start_payment(db: Session, gateway, booking_id: str, user_id: str | None = None, now: datetime | None = None):
    """Create (or re-fetch) the gateway payment intent for a pending booking and remember its reference.

    Safe to call repeatedly: the gateway call is idempotent per booking.
    """
    now = now or utcnow()
    b = get_booking(db, booking_id, user_id)
    if b.status != PENDING:
        raise InvalidTransition(b.status, "payment")
    if hold_lapsed(b, now):
        raise ReservationExpired(b.id)

    try:
        intent = gateway.create_payment_intent(b)
    except GatewayUnavailable as e:
        # Booking stays pending; the client may retry or let the hold lapse.
        e.booking_id = b.id
        logger.error("Payment intent failed booking=%s: %s", b.id, e.message)
        raise

    if b.payment_ref != intent.payment_ref:
        res = db.execute(
            update(Booking)
            .where(Booking.id == b.id, Booking.status == PENDING,
                   or_(Booking.payment_ref.is_(None), Booking.payment_ref == intent.payment_ref))
            .values(payment_ref=intent.payment_ref)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount == 0:
            db.rollback()
            if b.status != PENDING:
                raise InvalidTransition(b.status, "payment")
            # never hand out a client secret for an intent the booking does not record
            logger.error("Booking %s already bound to payment %s; gateway returned %s", b.id, b.payment_ref, intent.payment_ref)
            raise InvalidTransition(b.status, "payment", "Booking is already bound to another payment")
        else:
            log_audit(db, actor=b.user_id, action="booking.payment_intent", entity_type="booking", entity_id=b.id,
                      details={"paymentRef": intent.payment_ref})
            db.commit()
    db.refresh(b)
    return intent

def cancel(db: Session, booking_id: str, actor_user_id: str, now: datetime | None = None) -> Booking:
    """Customer cancellation of a paid booking before the event starts. Sold units stay allocated."""
    now = now or utcnow()
    b = get_booking(db, booking_id, actor_user_id)
    if b.status != PAID:
        raise InvalidTransition(b.status, CANCELLED)
    event = db.get(Event, b.event_id)
    if event and as_utc(event.starts_at) <= now:
        raise InvalidTransition(b.status, CANCELLED, "Cannot cancel booking for past events")

    if not transition(db, b.id, PAID, CANCELLED, cancelled_at=now):
        db.rollback()
        raise InvalidTransition(b.status, CANCELLED)
    log_audit(db, actor=actor_user_id, action="booking.cancelled", entity_type="booking", entity_id=b.id)
    db.commit()
    db.refresh(b)
    logger.info("Cancelled booking=%s by %s", b.id, actor_user_id)
    return b
