from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, TypedDict
import base64
import hashlib
import hmac
import json
import logging
import time
import uuid

import stripe
from starlette.concurrency import run_in_threadpool

from . import config
from .currency import to_minor_units
from .helpers import ct_equal
from .infra.timings import timeit

logger = logging.getLogger(__name__)

# Stripe event types the webhook acts on
EVENT_SUCCEEDED = "payment_intent.succeeded"
EVENT_FAILED = "payment_intent.payment_failed"


class InvalidSignature(Exception):
    pass


class IntentResult(TypedDict):
    id: str
    client_secret: str
    amount: int  # minor units
    currency: str


# ----------------------------
# Payment Adapter Interface
# ----------------------------
class PaymentAdapter(ABC):
    name: str
    signature_header: str

    @property
    @abstractmethod
    def webhook_configured(self) -> bool: ...

    @abstractmethod
    async def create_payment_intent(
            self, *, amount: float, currency: str, product_id: str,
            seller_id: str, buyer_id: str,
            metadata: Optional[Dict[str, str]] = None,
    ) -> IntentResult: ...

    @abstractmethod
    async def get_payment_intent(self, intent_id: str) -> Dict[str, Any]: ...

    @abstractmethod
    async def create_customer(
            self, email: str, name: Optional[str] = None
    ) -> Dict[str, Any]: ...

    @abstractmethod
    def verify_webhook(self, payload: bytes, signature: str) -> dict: ...

    # events from both adapters are Stripe-shaped
    def event_id(self, event: dict) -> str:
        return event.get("id", "")

    def event_kind(self, event: dict) -> str:
        return event.get("type", "")

    def event_object(self, event: dict) -> dict:
        return (event.get("data") or {}).get("object") or {}


def _require_object(event: Any) -> dict:
    if not isinstance(event, dict):
        raise InvalidSignature("Event payload is not an object")
    return event


def _intent_metadata(product_id: str, seller_id: str, buyer_id: str,
                     extra: Optional[Dict[str, str]]) -> Dict[str, str]:
    meta = {
        "productId": product_id,
        "sellerId": seller_id,
        "buyerId": buyer_id,
    }
    for k, v in (extra or {}).items():
        # Stripe metadata values are strings
        meta[k] = "" if v is None else str(v)
    return meta


# ----------------------------
# Stripe implementation
# ----------------------------
class StripePay(PaymentAdapter):
    name = "stripe"
    signature_header = "stripe-signature"

    def __init__(self, secret_key: str, webhook_secret: str = "",
                 api_version: Optional[str] = None,
                 tolerance: int = stripe.Webhook.DEFAULT_TOLERANCE):
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.api_version = api_version
        self.tolerance = tolerance

    @property
    def webhook_configured(self) -> bool:
        return bool(self.webhook_secret)

    def _opts(self) -> Dict[str, Any]:
        opts: Dict[str, Any] = {"api_key": self.secret_key}
        if self.api_version:
            opts["stripe_version"] = self.api_version
        return opts

    async def create_payment_intent(
            self, *, amount: float, currency: str, product_id: str,
            seller_id: str, buyer_id: str,
            metadata: Optional[Dict[str, str]] = None,
    ) -> IntentResult:
        minor = to_minor_units(amount)
        async with timeit("stripe.create_intent"):
            intent = await run_in_threadpool(
                stripe.PaymentIntent.create,
                amount=minor,
                currency=currency.lower(),
                metadata=_intent_metadata(
                    product_id, seller_id, buyer_id, metadata
                ),
                automatic_payment_methods={
                    "enabled": True,
                    "allow_redirects": "never",
                },
                **self._opts(),
            )
        return {
            "id": intent.id,
            "client_secret": intent.client_secret,
            "amount": minor,
            "currency": currency.lower(),
        }

    async def get_payment_intent(self, intent_id: str) -> Dict[str, Any]:
        async with timeit("stripe.retrieve_intent"):
            intent = await run_in_threadpool(
                stripe.PaymentIntent.retrieve, intent_id, **self._opts()
            )
        return {
            "id": intent.id,
            "status": intent.status,
            "amount": intent.amount,
            "currency": intent.currency,
        }

    async def create_customer(
            self, email: str, name: Optional[str] = None
    ) -> Dict[str, Any]:
        async with timeit("stripe.create_customer"):
            customer = await run_in_threadpool(
                stripe.Customer.create, email=email, name=name,
                **self._opts(),
            )
        return {"id": customer.id, "email": email, "name": name}

    def verify_webhook(self, payload: bytes, signature: str) -> dict:
        try:
            text = payload.decode("utf-8")
        except UnicodeDecodeError as e:
            raise InvalidSignature("Payload is not valid UTF-8") from e
        try:
            stripe.WebhookSignature.verify_header(
                text, signature, self.webhook_secret, self.tolerance,
            )
        except stripe.SignatureVerificationError as e:
            raise InvalidSignature(str(e)) from e
        try:
            event = json.loads(text)
        except ValueError as e:
            raise InvalidSignature("Invalid JSON payload") from e
        return _require_object(event)


# ----------------------------
# MockPay implementation
# ----------------------------
class MockPay(PaymentAdapter):
    """
    Local stand-in for Stripe: mints intent ids and signs Stripe-shaped
    webhook events with a shared HMAC secret. The /mockpay screen emits the
    events so the whole checkout can run without a Stripe account.
    """
    name = "mock"
    signature_header = "x-mockpay-signature"

    def __init__(self, secret: str):
        self.secret = secret

    @property
    def webhook_configured(self) -> bool:
        return bool(self.secret)

    async def create_payment_intent(
            self, *, amount: float, currency: str, product_id: str,
            seller_id: str, buyer_id: str,
            metadata: Optional[Dict[str, str]] = None,
    ) -> IntentResult:
        intent_id = f"pi_mock_{uuid.uuid4().hex}"
        return {
            "id": intent_id,
            "client_secret": f"{intent_id}_secret_{uuid.uuid4().hex[:16]}",
            "amount": to_minor_units(amount),
            "currency": currency.lower(),
        }

    async def get_payment_intent(self, intent_id: str) -> Dict[str, Any]:
        # nothing is kept; the payments table is the source of truth
        return {"id": intent_id, "status": "requires_payment_method"}

    async def create_customer(
            self, email: str, name: Optional[str] = None
    ) -> Dict[str, Any]:
        return {"id": f"cus_mock_{uuid.uuid4().hex[:14]}",
                "email": email, "name": name}

    def sign(self, payload: bytes) -> str:
        mac = hmac.new(self.secret.encode(), payload, hashlib.sha256).digest()
        return base64.b64encode(mac).decode()

    def build_event(self, kind: str, intent_id: str, amount: int,
                    currency: str) -> dict:
        # kind: "succeeded" | "failed"
        event_type = EVENT_SUCCEEDED if kind == "succeeded" else EVENT_FAILED
        return {
            "id": f"evt_mock_{uuid.uuid4().hex}",
            "type": event_type,
            "created": int(time.time()),
            "data": {
                "object": {
                    "id": intent_id,
                    "object": "payment_intent",
                    "amount": amount,
                    "currency": currency.lower(),
                    "payment_method": (
                        "pm_mock_card" if kind == "succeeded" else None
                    ),
                    "status": (
                        "succeeded" if kind == "succeeded"
                        else "requires_payment_method"
                    ),
                },
            },
        }

    def verify_webhook(self, payload: bytes, signature: str) -> dict:
        expected = self.sign(payload)
        if not signature or not ct_equal(expected, signature):
            raise InvalidSignature("Invalid signature")
        try:
            event = json.loads(payload.decode())
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise InvalidSignature("Invalid JSON") from e
        return _require_object(event)


def new_adapter() -> Optional[PaymentAdapter]:
    if config.PAYMENTS_BACKEND == "mock":
        return MockPay(config.MOCK_SECRET)
    if not config.STRIPE_SECRET_KEY:
        logger.warning("STRIPE_SECRET_KEY not set; payments are disabled")
        return None
    return StripePay(
        config.STRIPE_SECRET_KEY,
        config.STRIPE_WEBHOOK_SECRET,
        api_version=config.STRIPE_API_VERSION,
    )
