import logging
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from boxoffice.db.session import get_db
from boxoffice.api.deps import gateway_dep
from boxoffice.schemas.payments import WebhookAck
from boxoffice.services.audit_service import log_audit
from boxoffice.services.errors import BookingNotFound, InvalidPayload, InvalidTransition, SeatUnavailable, SignatureInvalid
from boxoffice.services.payment_gateway import StripeGateway
from boxoffice.services.reconciliation_service import handle_gateway_event

logger = logging.getLogger(__name__)

router = APIRouter(tags=["payments"])

# Verified but not applicable: acknowledge so the gateway stops retrying.
PERMANENT_ERRORS = (InvalidPayload, BookingNotFound, InvalidTransition, SeatUnavailable)


def _record(db: Session, event: dict, outcome: str) -> None:
    log_audit(db, actor="gateway", action="webhook.received", entity_type="gateway_event",
              entity_id=str(event.get("id") or "")[:36], details={"type": event.get("type"), "outcome": outcome})
    db.commit()


@router.post("/webhooks/payments", response_model=WebhookAck)
async def payments_webhook(req: Request, db: Session = Depends(get_db), gateway: StripeGateway = Depends(gateway_dep)):
    body = await req.body()
    try:
        event = gateway.parse_webhook(body, req.headers.get("stripe-signature"))
    except SignatureInvalid:
        logger.warning("Rejected payment webhook with invalid signature")
        raise
    except InvalidPayload as e:
        logger.warning("Dropping unreadable payment webhook: %s", e.message)
        return WebhookAck(ignored=e.code.value)

    etype = event.get("type")
    try:
        outcome = handle_gateway_event(db, event)
    except PERMANENT_ERRORS as e:
        db.rollback()
        if etype == "payment_intent.succeeded":
            logger.error("Payment captured but not applied (event %s): %s; refund may be required", event.get("id"), e)
        else:
            logger.warning("Webhook %s (%s) acknowledged without effect: %s", event.get("id"), etype, e)
        _record(db, event, f"ignored:{e.code.value}")
        return WebhookAck(ignored=e.code.value)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Webhook %s (%s) failed; gateway will retry", event.get("id"), etype)
        return JSONResponse(status_code=500, content={"received": False})

    _record(db, event, outcome)
    logger.info("Webhook %s (%s) applied: %s", event.get("id"), etype, outcome)
    return WebhookAck(outcome=outcome)
