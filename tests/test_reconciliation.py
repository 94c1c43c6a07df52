from datetime import timedelta

import pytest

from boxoffice.core.clock import as_utc, utcnow
from boxoffice.models.allocation import Allocation
from boxoffice.models.audit_log import AuditLog
from boxoffice.models.booking import Booking
from boxoffice.models.hold import Hold
from boxoffice.services.booking_service import cancel, reserve, start_payment
from boxoffice.services.errors import BookingNotFound, InvalidPayload, InvalidTransition, SeatUnavailable
from boxoffice.services.inventory_service import list_attendees
from boxoffice.services.payment_gateway import FAILED, SUCCEEDED
from boxoffice.services.reconciliation_service import (
    SOLD_ELSEWHERE, confirm_paid, handle_gateway_event, mark_failed, mark_refunded, recover_booking, request_refund,
)
from boxoffice.services.sweeper import expire_holds


def _intent_event(etype, booking_id, payment_ref, **extra):
    obj = {"id": payment_ref, "object": "payment_intent", "metadata": {"bookingId": booking_id}, **extra}
    return {"id": f"evt_{etype}", "type": etype, "data": {"object": obj}}


@pytest.fixture
def pending(db, seated_event, gateway):
    b = reserve(db, seated_event.id, "user-1", ["A1", "A2"])
    start_payment(db, gateway, b.id)
    db.refresh(b)
    return b


def test_confirm_paid_allocates_and_releases(db, pending):
    b = confirm_paid(db, pending.id, pending.payment_ref)

    assert b.status == "paid"
    assert b.paid_at is not None
    allocs = db.query(Allocation).filter(Allocation.booking_id == b.id).all()
    assert sorted(a.unit_id for a in allocs) == ["A1", "A2"]
    assert db.query(Hold).filter(Hold.booking_id == b.id).count() == 0
    assert list_attendees(db, b.event_id) == ["user-1"]


def test_confirm_paid_twice_is_a_noop(db, pending):
    first = confirm_paid(db, pending.id, pending.payment_ref)
    paid_at = as_utc(first.paid_at)

    second = confirm_paid(db, pending.id, pending.payment_ref, now=utcnow() + timedelta(minutes=1))
    assert second.status == "paid"
    assert as_utc(second.paid_at) == paid_at
    assert db.query(Allocation).filter(Allocation.booking_id == pending.id).count() == 2
    assert db.query(AuditLog).filter(AuditLog.action == "booking.paid").count() == 1


def test_confirm_paid_rejects_foreign_payment(db, pending):
    with pytest.raises(InvalidPayload):
        confirm_paid(db, pending.id, "pi_someone_else")
    assert db.get(Booking, pending.id).status == "pending"


def test_mark_failed_releases_units(db, seated_event, pending):
    b = mark_failed(db, pending.id, reason="card_declined")
    assert b.status == "failed"
    assert b.failure_reason == "card_declined"
    assert db.query(Hold).filter(Hold.booking_id == b.id).count() == 0

    # the units can be reserved straight away
    other = reserve(db, seated_event.id, "user-2", ["A1", "A2"])
    assert other.status == "pending"

    assert mark_failed(db, pending.id).status == "failed"


def test_failure_after_success_leaves_booking_paid(db, pending):
    handle_gateway_event(db, _intent_event("payment_intent.succeeded", pending.id, pending.payment_ref))
    with pytest.raises(InvalidTransition):
        handle_gateway_event(db, _intent_event("payment_intent.payment_failed", pending.id, pending.payment_ref))
    db.expire_all()
    assert db.get(Booking, pending.id).status == "paid"


def test_success_after_failure_is_rejected(db, pending):
    handle_gateway_event(db, _intent_event("payment_intent.payment_failed", pending.id, pending.payment_ref,
                                           last_payment_error={"code": "card_declined"}))
    with pytest.raises(InvalidTransition):
        handle_gateway_event(db, _intent_event("payment_intent.succeeded", pending.id, pending.payment_ref))
    b = db.get(Booking, pending.id)
    assert b.status == "failed"
    assert b.failure_reason == "card_declined"
    assert db.query(Allocation).count() == 0


def test_late_success_for_expired_booking(db, seated_event, gateway):
    t0 = utcnow()
    b = reserve(db, seated_event.id, "user-1", ["A1"], now=t0)
    start_payment(db, gateway, b.id, now=t0)
    db.refresh(b)
    expire_holds(db, now=t0 + timedelta(minutes=16))

    with pytest.raises(InvalidTransition) as exc:
        confirm_paid(db, b.id, b.payment_ref)
    assert exc.value.current == "expired"


def test_success_after_units_sold_elsewhere(db, seated_event, gateway):
    t0 = utcnow()
    slow = reserve(db, seated_event.id, "user-1", ["A1"], now=t0)
    start_payment(db, gateway, slow.id, now=t0)
    db.refresh(slow)

    # hold lapses before the sweeper runs, someone else buys the seat
    fast = reserve(db, seated_event.id, "user-2", ["A1"], now=t0 + timedelta(minutes=20))
    confirm_paid(db, fast.id, now=t0 + timedelta(minutes=21))

    with pytest.raises(SeatUnavailable) as exc:
        confirm_paid(db, slow.id, slow.payment_ref, now=t0 + timedelta(minutes=22))
    assert exc.value.units == ["A1"]

    b = db.get(Booking, slow.id)
    assert b.status == "failed"
    assert b.failure_reason == SOLD_ELSEWHERE
    assert db.get(Allocation, (seated_event.id, "A1")).booking_id == fast.id


def test_lapsed_booking_cannot_take_a_live_hold(db, seated_event):
    t0 = utcnow()
    lapsed = reserve(db, seated_event.id, "user-1", ["A1", "A3"], now=t0 - timedelta(minutes=30))
    # sweeper has not run; the newer reservation takes over A1
    holder = reserve(db, seated_event.id, "user-2", ["A1"], now=t0)

    with pytest.raises(SeatUnavailable) as exc:
        confirm_paid(db, lapsed.id, "pi_lapsed", now=t0 + timedelta(minutes=1))
    assert exc.value.units == ["A1"]

    b = db.get(Booking, lapsed.id)
    assert b.status == "failed"
    assert b.failure_reason == SOLD_ELSEWHERE
    assert db.query(Allocation).count() == 0
    assert db.query(Hold).filter(Hold.booking_id == lapsed.id).count() == 0
    assert db.get(Hold, (seated_event.id, "A1")).booking_id == holder.id

    paid = confirm_paid(db, holder.id, "pi_holder", now=t0 + timedelta(minutes=2))
    assert paid.status == "paid"
    assert db.get(Allocation, (seated_event.id, "A1")).booking_id == holder.id


def test_lapsed_booking_confirms_when_nobody_claimed_its_units(db, seated_event):
    t0 = utcnow()
    lapsed = reserve(db, seated_event.id, "user-1", ["A1"], now=t0 - timedelta(minutes=30))
    assert confirm_paid(db, lapsed.id, "pi_lapsed", now=t0).status == "paid"


def test_gateway_event_routing(db, pending):
    assert handle_gateway_event(db, {"id": "evt_1", "type": "customer.created", "data": {"object": {}}}) == "ignored"

    with pytest.raises(InvalidPayload):
        handle_gateway_event(db, {"id": "evt_2", "type": "payment_intent.succeeded", "data": {"object": {"id": "pi_x"}}})
    with pytest.raises(BookingNotFound):
        handle_gateway_event(db, _intent_event("payment_intent.succeeded", "no-such-booking", "pi_x"))

    assert handle_gateway_event(db, _intent_event("payment_intent.succeeded", pending.id, pending.payment_ref)) == "paid"

    refund = {"id": "evt_3", "type": "charge.refunded",
              "data": {"object": {"id": "ch_1", "payment_intent": pending.payment_ref}}}
    assert handle_gateway_event(db, refund) == "refunded"
    assert handle_gateway_event(db, refund) == "refunded"


def test_failure_event_for_other_payment_is_rejected(db, pending):
    with pytest.raises(InvalidPayload):
        handle_gateway_event(db, _intent_event("payment_intent.canceled", pending.id, "pi_other"))
    assert db.get(Booking, pending.id).status == "pending"


@pytest.mark.parametrize("gateway_status,expected", [(SUCCEEDED, "paid"), (FAILED, "failed")])
def test_recovery_matches_webhook_outcome(db, seated_event, gateway, gateway_status, expected):
    via_webhook = reserve(db, seated_event.id, "user-1", ["A1"])
    start_payment(db, gateway, via_webhook.id)
    via_recovery = reserve(db, seated_event.id, "user-2", ["A2"])
    start_payment(db, gateway, via_recovery.id)
    db.expire_all()

    w = db.get(Booking, via_webhook.id)
    if gateway_status == SUCCEEDED:
        handle_gateway_event(db, _intent_event("payment_intent.succeeded", w.id, w.payment_ref))
    else:
        handle_gateway_event(db, _intent_event("payment_intent.payment_failed", w.id, w.payment_ref))

    gateway.status = gateway_status
    r = recover_booking(db, gateway, via_recovery.id, user_id="user-2")

    db.expire_all()
    assert db.get(Booking, via_webhook.id).status == expected
    assert r.status == expected
    allocated = {a.unit_id for a in db.query(Allocation).all()}
    assert allocated == ({"A1", "A2"} if expected == "paid" else set())
    assert db.query(Hold).count() == 0


def test_recovery_while_payment_pending(db, pending, gateway):
    b = recover_booking(db, gateway, pending.id, user_id="user-1")
    assert b.status == "pending"

    with pytest.raises(BookingNotFound):
        recover_booking(db, gateway, pending.id, user_id="user-2")


def test_refund_paid_booking(db, pending, gateway):
    with pytest.raises(InvalidTransition):
        request_refund(db, gateway, pending.id, actor="org-1")

    confirm_paid(db, pending.id, pending.payment_ref)
    b = request_refund(db, gateway, pending.id, actor="org-1")
    assert b.status == "refunded"
    assert b.refunded_at is not None
    assert gateway.refunds == [pending.payment_ref]
    # allocations are kept
    assert db.query(Allocation).filter(Allocation.booking_id == b.id).count() == 2
    assert mark_refunded(db, b.id).status == "refunded"


def test_cancel_rules(db, seated_event, pending):
    with pytest.raises(InvalidTransition):
        cancel(db, pending.id, "user-1")

    confirm_paid(db, pending.id, pending.payment_ref)
    with pytest.raises(BookingNotFound):
        cancel(db, pending.id, "user-2")
    with pytest.raises(InvalidTransition):
        cancel(db, pending.id, "user-1", now=utcnow() + timedelta(days=8))

    b = cancel(db, pending.id, "user-1")
    assert b.status == "cancelled"
    assert b.cancelled_at is not None
    assert db.query(Allocation).filter(Allocation.booking_id == b.id).count() == 2

    with pytest.raises(InvalidTransition):
        cancel(db, pending.id, "user-1")
