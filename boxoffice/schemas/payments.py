from pydantic import BaseModel
from typing import Optional


class PaymentIntentOut(BaseModel):
    bookingId: str
    paymentRef: str
    paymentClientSecret: str


class WebhookAck(BaseModel):
    received: bool = True
    outcome: Optional[str] = None
    ignored: Optional[str] = None  # error code when the event was acknowledged but not applied
