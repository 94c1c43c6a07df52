"""Reconciliation engine: moves bookings out of `pending` and keeps them in step with the gateway.

The webhook handler and the recovery poll both end up in `confirm_paid` /
`mark_failed`, so there is a single implementation of each transition. Every
transition is a conditional UPDATE on the current status; a second writer sees
zero rows changed and resolves it by re-reading the booking.
"""

import logging
from datetime import datetime
from sqlalchemy.orm import Session
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from boxoffice.core.clock import utcnow
from boxoffice.models.allocation import Allocation
from boxoffice.models.attendee import EventAttendee
from boxoffice.models.booking import Booking, PENDING, PAID, FAILED, REFUNDED
from boxoffice.models.hold import Hold
from boxoffice.services.audit_service import log_audit
from boxoffice.services.booking_service import booking_units, get_booking, release_holds, transition
from boxoffice.services.errors import BookingNotFound, InvalidPayload, InvalidTransition, SeatUnavailable
from boxoffice.services.payment_gateway import FAILED as GW_FAILED, SUCCEEDED as GW_SUCCEEDED

logger = logging.getLogger(__name__)

SOLD_ELSEWHERE = "units_sold_elsewhere"

def _reload(db: Session, booking_id: str) -> Booking:
    db.rollback()
    return get_booking(db, booking_id)

def _fail_sold_elsewhere(db: Session, booking_id: str, units: list[str], payment_ref: str | None, actor: str, now: datetime):
    """The payment arrived for units someone else now holds or owns: fail the booking and raise."""
    units = sorted(set(units))
    if transition(db, booking_id, PENDING, FAILED, failed_at=now, failure_reason=SOLD_ELSEWHERE):
        release_holds(db, booking_id)
        log_audit(db, actor=actor, action="booking.failed", entity_type="booking", entity_id=booking_id,
                  details={"reason": SOLD_ELSEWHERE, "units": units, "paymentRef": payment_ref})
        db.commit()
    else:
        db.rollback()
    logger.error("Payment %s for booking %s succeeded but units %s were sold elsewhere; refund required",
                 payment_ref, booking_id, units)
    raise SeatUnavailable(units)

def confirm_paid(db: Session, booking_id: str, payment_ref: str | None = None, actor: str = "gateway", now: datetime | None = None) -> Booking:
    """pending -> paid, converting holds into allocations. Calling it again for a paid booking is a no-op."""
    now = now or utcnow()
    b = get_booking(db, booking_id)
    if payment_ref and b.payment_ref and b.payment_ref != payment_ref:
        raise InvalidPayload(f"Payment {payment_ref} does not belong to booking {booking_id}")

    values = {"paid_at": now}
    if payment_ref:
        values["payment_ref"] = payment_ref
    if not transition(db, b.id, PENDING, PAID, **values):
        current = _reload(db, booking_id)
        if current.status == PAID:
            logger.info("Booking %s already paid; duplicate confirmation ignored", booking_id)
            return current
        raise InvalidTransition(current.status, PAID)

    units = booking_units(db, b.id)
    unit_ids = [u.unit_id for u in units]
    # A live hold of another booking is an exclusive claim, even on a unit we held before it.
    claimed = db.execute(
        select(Hold.unit_id).where(
            Hold.event_id == b.event_id,
            Hold.unit_id.in_(unit_ids),
            Hold.booking_id != b.id,
            Hold.expires_at >= now,
        )
    ).scalars().all()
    if claimed:
        db.rollback()
        _fail_sold_elsewhere(db, b.id, claimed, payment_ref, actor, now)

    try:
        for uid in unit_ids:
            db.add(Allocation(event_id=b.event_id, unit_id=uid, booking_id=b.id, allocated_at=now))
        db.flush()
    except IntegrityError:
        # Another booking bought one of these units after our hold lapsed.
        db.rollback()
        taken = db.execute(
            select(Allocation.unit_id).where(
                Allocation.event_id == b.event_id,
                Allocation.unit_id.in_(unit_ids),
                Allocation.booking_id != b.id,
            )
        ).scalars().all()
        _fail_sold_elsewhere(db, b.id, taken, payment_ref, actor, now)

    released = release_holds(db, b.id)
    if db.get(EventAttendee, (b.event_id, b.user_id)) is None:
        db.add(EventAttendee(event_id=b.event_id, user_id=b.user_id, created_at=now))
    log_audit(db, actor=actor, action="booking.paid", entity_type="booking", entity_id=b.id,
              details={"paymentRef": payment_ref, "units": unit_ids})
    db.commit()
    db.refresh(b)
    logger.info("Booking %s paid (%d units allocated, %d holds released)", b.id, len(units), released)
    return b

def mark_failed(db: Session, booking_id: str, reason: str = "payment_failed", actor: str = "gateway", now: datetime | None = None) -> Booking:
    """pending -> failed; holds are dropped straight away so the units can be sold again."""
    now = now or utcnow()
    b = get_booking(db, booking_id)
    if not transition(db, b.id, PENDING, FAILED, failed_at=now, failure_reason=reason):
        current = _reload(db, booking_id)
        if current.status == FAILED:
            return current
        raise InvalidTransition(current.status, FAILED)
    released = release_holds(db, b.id)
    log_audit(db, actor=actor, action="booking.failed", entity_type="booking", entity_id=b.id, details={"reason": reason})
    db.commit()
    db.refresh(b)
    logger.info("Booking %s failed (%s); %d holds released", b.id, reason, released)
    return b

def mark_refunded(db: Session, booking_id: str, actor: str = "gateway", now: datetime | None = None) -> Booking:
    """paid -> refunded. Allocations stay; re-listing a refunded seat is up to the organizer."""
    now = now or utcnow()
    b = get_booking(db, booking_id)
    if not transition(db, b.id, PAID, REFUNDED, refunded_at=now):
        current = _reload(db, booking_id)
        if current.status == REFUNDED:
            return current
        raise InvalidTransition(current.status, REFUNDED)
    log_audit(db, actor=actor, action="booking.refunded", entity_type="booking", entity_id=b.id)
    db.commit()
    db.refresh(b)
    logger.info("Booking %s refunded", b.id)
    return b

def find_by_payment_ref(db: Session, payment_ref: str) -> Booking:
    b = db.execute(select(Booking).where(Booking.payment_ref == payment_ref)).scalars().first()
    if not b:
        raise BookingNotFound(payment_ref)
    return b

def handle_gateway_event(db: Session, event: dict) -> str:
    """Apply one verified gateway event. Returns what happened, for the webhook response and logs."""
    etype = event.get("type") or ""
    obj = ((event.get("data") or {}).get("object")) or {}
    metadata = obj.get("metadata") or {}

    if etype in ("payment_intent.succeeded", "payment_intent.payment_failed", "payment_intent.canceled"):
        booking_id = metadata.get("bookingId")
        payment_ref = obj.get("id")
        if not booking_id or not payment_ref:
            raise InvalidPayload("Missing bookingId metadata or payment intent id")
        if etype == "payment_intent.succeeded":
            b = confirm_paid(db, booking_id, payment_ref)
        else:
            b = get_booking(db, booking_id)
            if b.payment_ref and b.payment_ref != payment_ref:
                raise InvalidPayload(f"Payment {payment_ref} does not belong to booking {booking_id}")
            reason = ((obj.get("last_payment_error") or {}).get("code")) or etype.split(".")[-1]
            b = mark_failed(db, booking_id, reason=reason)
        return b.status

    if etype == "charge.refunded":
        payment_ref = obj.get("payment_intent")
        if not payment_ref:
            raise InvalidPayload("Refund event without payment intent")
        b = mark_refunded(db, find_by_payment_ref(db, payment_ref).id)
        return b.status

    logger.info("Ignoring gateway event type %s", etype)
    return "ignored"

def recover_booking(db: Session, gateway, booking_id: str, user_id: str | None = None) -> Booking:
    """Ask the gateway directly when the webhook may have been lost."""
    b = get_booking(db, booking_id, user_id)
    if b.status != PENDING or not b.payment_ref:
        return b

    status = gateway.get_payment_status(b.payment_ref)
    logger.info("Recovery poll booking=%s payment=%s status=%s", b.id, b.payment_ref, status)
    try:
        if status == GW_SUCCEEDED:
            return confirm_paid(db, b.id, b.payment_ref, actor="recovery")
        if status == GW_FAILED:
            return mark_failed(db, b.id, reason="payment_failed", actor="recovery")
    except InvalidTransition:
        # The webhook or the sweeper got there first.
        return get_booking(db, booking_id)
    return b

def request_refund(db: Session, gateway, booking_id: str, actor: str) -> Booking:
    b = get_booking(db, booking_id)
    if b.status != PAID:
        raise InvalidTransition(b.status, REFUNDED)
    if not b.payment_ref:
        raise InvalidTransition(b.status, REFUNDED, "Booking has no payment to refund")
    gateway.create_refund(b.payment_ref, booking_id=b.id)
    return mark_refunded(db, b.id, actor=actor)
