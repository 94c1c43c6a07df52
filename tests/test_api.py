import json
from datetime import timedelta

from sqlalchemy.exc import OperationalError

from boxoffice.api.v1.routes import payments as payments_routes
from boxoffice.core.clock import utcnow
from boxoffice.services.booking_service import reserve


def _webhook(client, sign, event: dict, secret=None):
    body = json.dumps(event).encode()
    header = sign(body) if secret is None else sign(body, secret=secret)
    return client.post("/api/v1/webhooks/payments", content=body,
                       headers={"Stripe-Signature": header, "Content-Type": "application/json"})


def _succeeded(booking_id, payment_ref, etype="payment_intent.succeeded"):
    return {"id": f"evt_{etype}_{booking_id[:8]}", "type": etype,
            "data": {"object": {"id": payment_ref, "metadata": {"bookingId": booking_id}}}}


def _reserve(client, auth_headers, event_id, units, user="user-1"):
    return client.post(f"/api/v1/events/{event_id}/reservations", json={"units": units}, headers=auth_headers(user))


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_public_event_and_seat_map(client, seated_event):
    r = client.get(f"/api/v1/public/events/{seated_event.id}")
    assert r.status_code == 200
    body = r.json()
    assert body["isSeated"] is True
    assert len(body["units"]) == 10

    seats = client.get(f"/api/v1/public/events/{seated_event.id}/seats").json()
    assert {s["status"] for s in seats} == {"available"}

    missing = client.get("/api/v1/public/events/nope")
    assert missing.status_code == 404
    assert missing.json()["detail"]["code"] == "EVENT_NOT_FOUND"


def test_reserve_requires_token(client, seated_event):
    r = client.post(f"/api/v1/events/{seated_event.id}/reservations", json={"units": ["A1"]})
    assert r.status_code == 401


def test_reserve_pay_by_webhook(client, auth_headers, sign, seated_event):
    r = _reserve(client, auth_headers, seated_event.id, ["A1", "A3"])
    assert r.status_code == 201
    body = r.json()
    assert body["status"] == "pending"
    assert body["totalAmount"] == 7000
    assert body["paymentClientSecret"] == f"{body['paymentRef']}_secret"

    booking_id = body["bookingId"]
    w = _webhook(client, sign, _succeeded(booking_id, body["paymentRef"]))
    assert w.status_code == 200
    assert w.json() == {"received": True, "outcome": "paid", "ignored": None}

    # replayed delivery is acknowledged the same way
    assert _webhook(client, sign, _succeeded(booking_id, body["paymentRef"])).json()["outcome"] == "paid"

    status = client.get(f"/api/v1/bookings/{booking_id}", headers=auth_headers()).json()
    assert status["status"] == "paid"
    assert [u["unitId"] for u in status["units"]] == ["A1", "A3"]

    mine = client.get("/api/v1/bookings/mine", headers=auth_headers()).json()
    assert [b["bookingId"] for b in mine] == [booking_id]

    seats = {s["unitId"]: s["status"] for s in client.get(f"/api/v1/public/events/{seated_event.id}/seats").json()}
    assert seats["A1"] == seats["A3"] == "sold"


def test_conflicting_reservation(client, auth_headers, seated_event):
    assert _reserve(client, auth_headers, seated_event.id, ["A1"]).status_code == 201

    r = _reserve(client, auth_headers, seated_event.id, ["A1", "A2"], user="user-2")
    assert r.status_code == 409
    assert r.json()["detail"] == {
        "code": "SEAT_UNAVAILABLE",
        "message": "Some seats are no longer available",
        "unavailableUnits": ["A1"],
    }


def test_invalid_reservation(client, auth_headers, seated_event):
    r = _reserve(client, auth_headers, seated_event.id, ["A1", "Q7"])
    assert r.status_code == 400
    assert r.json()["detail"]["units"] == ["Q7"]
    assert _reserve(client, auth_headers, seated_event.id, []).status_code == 422


def test_gateway_outage_then_retry(client, auth_headers, gateway, seated_event):
    gateway.fail = True
    r = _reserve(client, auth_headers, seated_event.id, ["A1"])
    assert r.status_code == 503
    detail = r.json()["detail"]
    assert detail["code"] == "GATEWAY_UNAVAILABLE"
    booking_id = detail["bookingId"]

    assert client.get(f"/api/v1/bookings/{booking_id}", headers=auth_headers()).json()["status"] == "pending"

    gateway.fail = False
    retry = client.post(f"/api/v1/bookings/{booking_id}/payment-intent", headers=auth_headers())
    assert retry.status_code == 200
    assert retry.json()["paymentRef"] == gateway.intents[booking_id]


def test_booking_is_private(client, auth_headers, seated_event):
    booking_id = _reserve(client, auth_headers, seated_event.id, ["A1"]).json()["bookingId"]
    r = client.get(f"/api/v1/bookings/{booking_id}", headers=auth_headers("user-2"))
    assert r.status_code == 404


def test_lapsed_reservation_message(client, auth_headers, db, seated_event):
    b = reserve(db, seated_event.id, "user-1", ["A1"], now=utcnow() - timedelta(minutes=20))
    body = client.get(f"/api/v1/bookings/{b.id}", headers=auth_headers()).json()
    assert body["status"] == "pending"
    assert body["message"] == "Reservation expired, please try again"

    r = client.post(f"/api/v1/bookings/{b.id}/payment-intent", headers=auth_headers())
    assert r.status_code == 410
    assert r.json()["detail"]["code"] == "RESERVATION_EXPIRED"


def test_webhook_bad_signature(client, sign, seated_event):
    r = _webhook(client, sign, _succeeded("b-1", "pi_1"), secret="whsec_wrong")
    assert r.status_code == 400
    assert r.json()["detail"]["code"] == "SIGNATURE_INVALID"


def test_webhook_acknowledges_inapplicable_events(client, auth_headers, sign, seated_event):
    body = _reserve(client, auth_headers, seated_event.id, ["A1"]).json()
    booking_id, ref = body["bookingId"], body["paymentRef"]

    assert _webhook(client, sign, {"id": "evt_x", "type": "customer.created"}).json()["outcome"] == "ignored"
    unknown = _webhook(client, sign, _succeeded("no-such-booking", "pi_x"))
    assert unknown.status_code == 200
    assert unknown.json()["ignored"] == "BOOKING_NOT_FOUND"

    assert _webhook(client, sign, _succeeded(booking_id, ref)).json()["outcome"] == "paid"
    late_failure = _webhook(client, sign, _succeeded(booking_id, ref, etype="payment_intent.payment_failed"))
    assert late_failure.status_code == 200
    assert late_failure.json()["ignored"] == "INVALID_TRANSITION"
    assert client.get(f"/api/v1/bookings/{booking_id}", headers=auth_headers()).json()["status"] == "paid"


def test_webhook_storage_failure_asks_for_retry(client, sign, monkeypatch):
    def broken(db, event):
        raise OperationalError("UPDATE bookings", {}, Exception("database is locked"))

    monkeypatch.setattr(payments_routes, "handle_gateway_event", broken)
    r = _webhook(client, sign, _succeeded("b-1", "pi_1"))
    assert r.status_code == 500
    assert r.json() == {"received": False}


def test_recover_endpoint(client, auth_headers, gateway, seated_event):
    body = _reserve(client, auth_headers, seated_event.id, ["A2"]).json()
    gateway.status = "succeeded"
    r = client.post(f"/api/v1/bookings/{body['bookingId']}/recover", headers=auth_headers())
    assert r.status_code == 200
    assert r.json()["status"] == "paid"
    assert r.json()["paidAt"] is not None


def test_cancel_and_refund_endpoints(client, auth_headers, sign, gateway, seated_event):
    body = _reserve(client, auth_headers, seated_event.id, ["A1"]).json()
    booking_id = body["bookingId"]

    early = client.post(f"/api/v1/bookings/{booking_id}/cancel", headers=auth_headers())
    assert early.status_code == 409
    assert early.json()["detail"]["status"] == "pending"

    _webhook(client, sign, _succeeded(booking_id, body["paymentRef"]))

    forbidden = client.post(f"/api/v1/ops/bookings/{booking_id}/refund", headers=auth_headers())
    assert forbidden.status_code == 403
    other_organizer = client.post(f"/api/v1/ops/bookings/{booking_id}/refund", headers=auth_headers("org-2", "organizer"))
    assert other_organizer.status_code == 403

    refunded = client.post(f"/api/v1/ops/bookings/{booking_id}/refund", headers=auth_headers("org-1", "organizer"))
    assert refunded.status_code == 200
    assert refunded.json()["status"] == "refunded"
    assert gateway.refunds == [body["paymentRef"]]

    second = _reserve(client, auth_headers, seated_event.id, ["A2"]).json()
    _webhook(client, sign, _succeeded(second["bookingId"], second["paymentRef"]))
    cancelled = client.post(f"/api/v1/bookings/{second['bookingId']}/cancel", headers=auth_headers())
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "cancelled"


def test_attendees_endpoint(client, auth_headers, sign, seated_event):
    body = _reserve(client, auth_headers, seated_event.id, ["A1"]).json()
    _webhook(client, sign, _succeeded(body["bookingId"], body["paymentRef"]))

    url = f"/api/v1/ops/events/{seated_event.id}/attendees"
    r = client.get(url, headers=auth_headers("org-1", "organizer"))
    assert r.status_code == 200
    assert r.json() == {"eventId": seated_event.id, "attendees": ["user-1"], "count": 1}

    assert client.get(url, headers=auth_headers("org-2", "organizer")).status_code == 403
    assert client.get(url, headers=auth_headers("admin-1", "admin")).status_code == 200
    assert client.get(url, headers=auth_headers("user-1")).status_code == 403
