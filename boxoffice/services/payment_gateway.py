"""Payment gateway adapter.

The rest of the core never talks to Stripe directly: it calls this adapter,
which turns every transport or API failure into `GatewayUnavailable` and never
touches the database.
"""

import json
import logging
from dataclasses import dataclass
from functools import lru_cache

from boxoffice.core.config import settings
from boxoffice.services.errors import GatewayUnavailable, InvalidPayload, SignatureInvalid
from boxoffice.services.stripe_client import StripeClient, StripeConfig, StripeError, verify_signature

logger = logging.getLogger(__name__)

SUCCEEDED = "succeeded"
PENDING = "pending"
FAILED = "failed"


@dataclass
class PaymentIntent:
    payment_ref: str
    client_secret: str
    status: str = PENDING


def intent_status(intent: dict) -> str:
    status = intent.get("status") or ""
    if status == "succeeded":
        return SUCCEEDED
    if status == "canceled":
        return FAILED
    if status == "requires_payment_method" and intent.get("last_payment_error"):
        return FAILED
    return PENDING


def idempotency_key(booking_id: str, op: str = "intent") -> str:
    return f"booking-{booking_id}-{op}"


class StripeGateway:
    def __init__(self, client: StripeClient | None, webhook_secret: str, tolerance: int = 300):
        self.client = client
        self.webhook_secret = webhook_secret
        self.tolerance = tolerance

    def _call(self, method: str, *args, **kwargs) -> dict:
        if self.client is None:
            raise GatewayUnavailable("Payment gateway is not configured")
        try:
            return getattr(self.client, method)(*args, **kwargs)
        except StripeError as e:
            logger.error("Stripe %s failed: %s", method, e)
            raise GatewayUnavailable(str(e)) from e

    def create_payment_intent(self, booking) -> PaymentIntent:
        resp = self._call(
            "create_payment_intent",
            amount=booking.total_amount,
            currency=booking.currency,
            description=f"Tickets {booking.ticket_number}",
            metadata={
                "bookingId": booking.id,
                "eventId": booking.event_id,
                "userId": booking.user_id,
                "ticketNumber": booking.ticket_number,
            },
            idempotency_key=idempotency_key(booking.id),
        )
        return PaymentIntent(payment_ref=str(resp.get("id") or ""), client_secret=str(resp.get("client_secret") or ""),
                             status=intent_status(resp))

    def get_payment_status(self, payment_ref: str) -> str:
        resp = self._call("retrieve_payment_intent", payment_ref)
        return intent_status(resp)

    def create_refund(self, payment_ref: str, booking_id: str) -> dict:
        return self._call("create_refund",
                          payment_intent_id=payment_ref, idempotency_key=idempotency_key(booking_id, "refund"))

    def parse_webhook(self, payload: bytes, signature_header: str | None) -> dict:
        if not verify_signature(payload, signature_header, self.webhook_secret, tolerance=self.tolerance):
            raise SignatureInvalid()
        try:
            event = json.loads(payload.decode("utf-8") or "{}")
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise InvalidPayload(f"Webhook body is not JSON: {e}")
        if not isinstance(event, dict) or not event.get("type"):
            raise InvalidPayload("Webhook event has no type")
        return event


class SandboxGateway(StripeGateway):
    """Answers locally so the full flow can be exercised without Stripe. Payments always succeed."""

    def __init__(self, webhook_secret: str, tolerance: int = 300):
        super().__init__(None, webhook_secret, tolerance)

    def create_payment_intent(self, booking) -> PaymentIntent:
        ref = f"pi_sandbox_{booking.id}"
        return PaymentIntent(payment_ref=ref, client_secret=f"{ref}_secret", status=PENDING)

    def get_payment_status(self, payment_ref: str) -> str:
        return SUCCEEDED

    def create_refund(self, payment_ref: str, booking_id: str) -> dict:
        return {"id": f"re_sandbox_{booking_id}", "status": "succeeded"}


@lru_cache
def get_gateway() -> StripeGateway:
    if settings.GATEWAY_SANDBOX:
        return SandboxGateway(settings.STRIPE_WEBHOOK_SECRET, settings.WEBHOOK_TOLERANCE_SECONDS)
    client = None
    if settings.STRIPE_SECRET_KEY:
        client = StripeClient(StripeConfig(
            secret_key=settings.STRIPE_SECRET_KEY,
            api_base=settings.STRIPE_API_BASE,
            timeout=settings.GATEWAY_TIMEOUT_SECONDS,
        ))
    return StripeGateway(client, settings.STRIPE_WEBHOOK_SECRET, settings.WEBHOOK_TOLERANCE_SECONDS)
