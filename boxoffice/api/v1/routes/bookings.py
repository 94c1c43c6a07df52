from datetime import datetime
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from boxoffice.core.clock import as_utc, utcnow
from boxoffice.db.session import get_db
from boxoffice.api.deps import CurrentUser, gateway_dep, get_current_user, require_roles
from boxoffice.models.booking import Booking, EXPIRED
from boxoffice.schemas.booking import BookingOut, BookingUnitOut, ReservationOut, ReserveRequest
from boxoffice.schemas.payments import PaymentIntentOut
from boxoffice.services.booking_service import (
    booking_units, cancel, get_booking, hold_lapsed, list_user_bookings, reserve, start_payment,
)
from boxoffice.services.errors import ReservationExpired
from boxoffice.services.inventory_service import get_event
from boxoffice.services.payment_gateway import StripeGateway
from boxoffice.services.reconciliation_service import recover_booking, request_refund

router = APIRouter(tags=["bookings"])

def _iso(dt: datetime | None) -> str | None:
    return as_utc(dt).isoformat() if dt else None

def booking_out(db: Session, b: Booking, now: datetime | None = None) -> BookingOut:
    units = booking_units(db, b.id)
    return BookingOut(
        bookingId=b.id,
        eventId=b.event_id,
        ticketNumber=b.ticket_number,
        status=b.status,
        totalAmount=b.total_amount,
        currency=b.currency,
        units=[BookingUnitOut(unitId=u.unit_id, unitType=u.unit_type, price=u.price) for u in units],
        paymentRef=b.payment_ref,
        holdExpiresAt=_iso(b.hold_expires_at),
        createdAt=_iso(b.created_at),
        paidAt=_iso(b.paid_at),
        cancelledAt=_iso(b.cancelled_at),
        message=ReservationExpired(b.id).message if hold_lapsed(b, now) or b.status == EXPIRED else None,
    )

@router.post("/events/{event_id}/reservations", response_model=ReservationOut, status_code=201)
def create_reservation(
    event_id: str,
    body: ReserveRequest,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
    gateway: StripeGateway = Depends(gateway_dep),
):
    booking = reserve(db, event_id, user.id, body.units)
    # A gateway failure here leaves the booking pending; the 503 body carries the bookingId for a retry.
    intent = start_payment(db, gateway, booking.id)
    return ReservationOut(
        bookingId=booking.id,
        ticketNumber=booking.ticket_number,
        status=booking.status,
        totalAmount=booking.total_amount,
        currency=booking.currency,
        holdExpiresAt=_iso(booking.hold_expires_at),
        paymentRef=intent.payment_ref,
        paymentClientSecret=intent.client_secret,
    )

@router.post("/bookings/{booking_id}/payment-intent", response_model=PaymentIntentOut)
def retry_payment_intent(
    booking_id: str,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
    gateway: StripeGateway = Depends(gateway_dep),
):
    intent = start_payment(db, gateway, booking_id, user_id=user.id)
    return PaymentIntentOut(bookingId=booking_id, paymentRef=intent.payment_ref, paymentClientSecret=intent.client_secret)

@router.get("/bookings/mine", response_model=list[BookingOut])
def my_bookings(db: Session = Depends(get_db), user: CurrentUser = Depends(get_current_user)):
    return [booking_out(db, b) for b in list_user_bookings(db, user.id)]

@router.get("/bookings/{booking_id}", response_model=BookingOut)
def get_booking_status(booking_id: str, db: Session = Depends(get_db), user: CurrentUser = Depends(get_current_user)):
    return booking_out(db, get_booking(db, booking_id, user.id), utcnow())

@router.post("/bookings/{booking_id}/recover", response_model=BookingOut)
def recover(
    booking_id: str,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
    gateway: StripeGateway = Depends(gateway_dep),
):
    return booking_out(db, recover_booking(db, gateway, booking_id, user.id))

@router.post("/bookings/{booking_id}/cancel", response_model=BookingOut)
def cancel_booking(booking_id: str, db: Session = Depends(get_db), user: CurrentUser = Depends(get_current_user)):
    return booking_out(db, cancel(db, booking_id, user.id))

@router.post("/ops/bookings/{booking_id}/refund", response_model=BookingOut)
def refund_booking(
    booking_id: str,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(require_roles("organizer", "admin")),
    gateway: StripeGateway = Depends(gateway_dep),
):
    b = get_booking(db, booking_id)
    if user.role == "organizer" and get_event(db, b.event_id).organizer_id != user.id:
        raise HTTPException(status_code=403, detail="Forbidden")
    return booking_out(db, request_refund(db, gateway, booking_id, actor=user.id))
