"""Authenticated payment-provider callbacks.

Nothing in the body is trusted until the signature over the raw bytes
checks out. After that the checkout metadata we embedded at session
creation is parsed against a strict schema; the amount and currency come
from the provider's own totals, never from metadata.
"""
from __future__ import annotations
from typing import Any, Dict, Mapping, Optional

import orjson
import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import (
    InvalidSignature, MalformedCallback, MissingSecret, MissingSignature,
)
from .fulfillment import (
    Buyer, FulfillmentEngine, FulfillmentOrder, SOURCE_PAYMENT,
)
from .helpers import normalize_email
from .payments import PaymentAdapter

logger = structlog.get_logger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"
PAYMENT_FAILED = "payment_intent.payment_failed"
CHARGE_REFUNDED = "charge.refunded"
SESSION_EXPIRED = "checkout.session.expired"

# payment_status values that grant the entitlement
SETTLED_STATUSES = ("paid", "no_payment_required")


class CheckoutMetadata(BaseModel):
    """What registration embeds in the payment session, echoed back."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    eventId: str = Field(min_length=1)
    ticketId: str = Field(min_length=1)
    ticketName: str = ""
    customerName: str = ""
    customerSurname: str = ""
    customerEmail: str = Field(min_length=3)
    locale: str = "en"


class CheckoutSession(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1)
    amount_total: int = Field(ge=0)
    currency: str = Field(min_length=3)
    payment_status: Optional[str] = None
    payment_intent: Optional[str] = None
    metadata: CheckoutMetadata


class CallbackEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    type: str
    data: Dict[str, Any] = Field(default_factory=dict)

    @property
    def data_object(self) -> Dict[str, Any]:
        obj = self.data.get("object")
        return obj if isinstance(obj, dict) else {}


class CallbackVerifier:
    def __init__(self, adapter: PaymentAdapter,
                 engine: FulfillmentEngine) -> None:
        self.adapter = adapter
        self.engine = engine

    def authenticate(self, payload: bytes,
                     headers: Mapping[str, str]) -> CallbackEvent:
        """Verify the signature over the raw body, then parse it."""
        if not self.adapter.webhook_secret:
            logger.error("callback_secret_missing",
                         provider=self.adapter.name)
            raise MissingSecret(
                f"{self.adapter.name} webhook secret is not configured"
            )
        signature = headers.get(self.adapter.signature_header)
        if not signature:
            logger.warning("callback_signature_missing",
                           provider=self.adapter.name)
            raise MissingSignature()
        if not self.adapter.verify_signature(payload, signature):
            logger.warning("callback_signature_invalid",
                           provider=self.adapter.name)
            raise InvalidSignature()

        try:
            return CallbackEvent.model_validate(orjson.loads(payload))
        except (orjson.JSONDecodeError, ValidationError) as e:
            logger.error("callback_unparseable", provider=self.adapter.name,
                         error=str(e))
            raise MalformedCallback(str(e)) from e

    async def handle(self, payload: bytes,
                     headers: Mapping[str, str]) -> Dict[str, Any]:
        event = self.authenticate(payload, headers)
        log = logger.bind(provider=self.adapter.name,
                          callback_id=event.id, type=event.type)

        if event.type == CHECKOUT_COMPLETED:
            return await self._completed(event, log)

        if event.type in (PAYMENT_FAILED, CHARGE_REFUNDED, SESSION_EXPIRED):
            # acknowledged, no bookkeeping for failures or refunds
            log.info("callback_outcome_logged",
                     object_id=event.data_object.get("id"))
        else:
            log.info("callback_ignored")
        return {"received": True}

    async def _completed(self, event: CallbackEvent,
                         log: Any) -> Dict[str, Any]:
        try:
            session = CheckoutSession.model_validate(event.data_object)
        except ValidationError as e:
            log.error("callback_metadata_invalid",
                      object_id=event.data_object.get("id"), error=str(e))
            raise MalformedCallback(str(e)) from e

        if session.payment_status not in SETTLED_STATUSES:
            # async payment methods complete the session before settling
            log.warning("callback_session_unpaid", session_id=session.id,
                        payment_status=session.payment_status)
            return {"received": True}

        meta = session.metadata
        # exceptions propagate so the provider redelivers
        result = await self.engine.fulfill(FulfillmentOrder(
            event_id=meta.eventId,
            idempotency_key=session.id,
            buyer=Buyer(
                name=meta.customerName,
                surname=meta.customerSurname,
                email=normalize_email(meta.customerEmail),
                locale=meta.locale,
            ),
            tier_id=meta.ticketId,
            tier_name=meta.ticketName,
            amount_cents=session.amount_total,
            currency=session.currency.lower(),
            source=SOURCE_PAYMENT,
            payment_intent=session.payment_intent,
        ))
        log.info("callback_fulfilled", session_id=session.id,
                 attendee_id=result.attendee_id, created=result.created)
        if not result.created:
            return {"received": True, "idempotent": True}
        return {"received": True}
