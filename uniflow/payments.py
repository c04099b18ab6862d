from __future__ import annotations
from abc import ABC, abstractmethod
import asyncio
import base64
import hashlib
import hmac
import time
import uuid
from dataclasses import dataclass, field
from typing import (
    Any, AsyncContextManager, Callable, Dict, Optional, TypedDict
)

import stripe
import structlog

from .errors import Misconfigured
from .helpers import now_ts
from .model.paymentsession import PaymentSessionStore

logger = structlog.get_logger(__name__)

# Stripe rejects expiries closer than 30 minutes to session creation
STRIPE_MIN_EXPIRY_SECONDS = 30 * 60 + 60


@dataclass
class SessionRequest:
    amount_cents: int
    currency: str
    customer_email: str
    product_name: str
    success_url: str
    cancel_url: str
    expires_at: float
    description: str = ""
    locale: str = "en"
    metadata: Dict[str, str] = field(default_factory=dict)


# ----------------------------
# Payment Adapter Interface
# ----------------------------
class CreateSessionResult(TypedDict):
    payment_session_id: str
    redirect_url: str


class PaymentAdapter(ABC):
    name: str = ""
    # inbound header carrying the callback signature
    signature_header: str = ""

    @abstractmethod
    async def create_session(
            self, request: SessionRequest
    ) -> CreateSessionResult: ...

    @property
    @abstractmethod
    def webhook_secret(self) -> Optional[str]: ...

    # True when `signature` authenticates the raw `payload`
    @abstractmethod
    def verify_signature(self, payload: bytes, signature: str) -> bool: ...


# ----------------------------
# MockPay implementation
# ----------------------------
SessionsFactory = Callable[[], AsyncContextManager[PaymentSessionStore]]

MOCK_EVENT_TYPES = {
    "succeeded": "checkout.session.completed",
    "failed": "payment_intent.payment_failed",
    "canceled": "checkout.session.expired",
}


class MockPay(PaymentAdapter):
    name = "mock"
    signature_header = "x-mockpay-signature"

    def __init__(self, *, secret: Optional[str], base_url: str,
                 sessions: SessionsFactory) -> None:
        self._secret = secret
        self.base_url = base_url.rstrip("/")
        self.sessions = sessions

    @property
    def webhook_secret(self) -> Optional[str]:
        return self._secret

    async def create_session(
            self, request: SessionRequest
    ) -> CreateSessionResult:
        psid = f"mock_{uuid.uuid4().hex}"
        async with self.sessions() as store:
            await store.save_payment_session(psid, {
                "amount_cents": request.amount_cents,
                "currency": request.currency,
                "customer_email": request.customer_email,
                "product_name": request.product_name,
                "metadata": dict(request.metadata),
                "success_url": request.success_url,
                "cancel_url": request.cancel_url,
                "created_at": now_ts(),
                "expires_at": request.expires_at,
            })
        redirect_url = f"{self.base_url}/mockpay/{psid}"
        return {"payment_session_id": psid, "redirect_url": redirect_url}

    async def get_session(self, psid: str) -> Optional[Dict[str, Any]]:
        async with self.sessions() as store:
            return await store.get_payment_session(psid)

    async def close_session(self, psid: str) -> None:
        async with self.sessions() as store:
            await store.remove(psid)

    def sign(self, payload: bytes) -> str:
        if not self._secret:
            raise Misconfigured("MOCK_SECRET is not configured")
        mac = hmac.new(self._secret.encode(), payload, hashlib.sha256)
        return base64.b64encode(mac.digest()).decode()

    def verify_signature(self, payload: bytes, signature: str) -> bool:
        if not self._secret:
            return False
        return hmac.compare_digest(
            self.sign(payload).encode(), signature.encode()
        )

    def build_event(self, kind: str, ps: Dict[str, Any]) -> Dict[str, Any]:
        """Stripe-shaped event for a stored session.

        kind: succeeded | failed | canceled
        """
        psid = ps["psid"]
        paid = kind == "succeeded"
        return {
            "id": f"evt_{uuid.uuid4().hex}",
            "type": MOCK_EVENT_TYPES[kind],
            "created": int(time.time()),
            "data": {
                "object": {
                    "id": psid,
                    "object": "checkout.session",
                    "amount_total": int(ps["amount_cents"]),
                    "currency": ps["currency"],
                    "customer_email": ps.get("customer_email", ""),
                    "payment_status": "paid" if paid else "unpaid",
                    "payment_intent": f"pi_mock_{psid[5:]}" if paid else None,
                    "metadata": dict(ps.get("metadata") or {}),
                },
            },
        }


# ----------------------------
# Stripe implementation
# ----------------------------
class StripePay(PaymentAdapter):
    name = "stripe"
    signature_header = "stripe-signature"

    def __init__(self, *, secret_key: Optional[str],
                 webhook_secret: Optional[str],
                 tolerance: int = stripe.Webhook.DEFAULT_TOLERANCE) -> None:
        self._secret_key = secret_key
        self._webhook_secret = webhook_secret
        self.tolerance = tolerance

    @property
    def webhook_secret(self) -> Optional[str]:
        return self._webhook_secret

    def _session_params(self, request: SessionRequest) -> Dict[str, Any]:
        expires_at = max(
            int(request.expires_at),
            int(time.time()) + STRIPE_MIN_EXPIRY_SECONDS,
        )
        product_data = {"name": request.product_name}
        if request.description:
            product_data["description"] = request.description
        return dict(  # noqa: C408
            mode="payment",
            payment_method_types=["card"],
            customer_email=request.customer_email,
            line_items=[
                {
                    "price_data": {
                        "currency": request.currency,
                        "product_data": product_data,
                        "unit_amount": request.amount_cents,
                    },
                    "quantity": 1,
                }
            ],
            metadata=dict(request.metadata),
            payment_intent_data={"metadata": dict(request.metadata)},
            success_url=request.success_url,
            cancel_url=request.cancel_url,
            locale="fr" if request.locale == "fr" else "auto",
            expires_at=expires_at,
        )

    async def create_session(
            self, request: SessionRequest
    ) -> CreateSessionResult:
        if not self._secret_key:
            raise Misconfigured("STRIPE_SECRET_KEY is not configured")
        params = self._session_params(request)
        # the SDK call is blocking
        session = await asyncio.to_thread(
            stripe.checkout.Session.create,
            api_key=self._secret_key,
            **params,
        )
        logger.info(
            "stripe_session_created",
            session_id=session.id,
            amount_cents=request.amount_cents,
            currency=request.currency,
        )
        return {"payment_session_id": session.id, "redirect_url": session.url}

    def verify_signature(self, payload: bytes, signature: str) -> bool:
        if not self._webhook_secret:
            return False
        try:
            stripe.WebhookSignature.verify_header(
                payload.decode("utf-8"),
                signature,
                self._webhook_secret,
                self.tolerance,
            )
        except (stripe.SignatureVerificationError, UnicodeDecodeError):
            return False
        return True
