"""POST /api/create-payment-intent

Checks run in order: payments configured, signed in, product exists, not
the buyer's own listing, still for sale, currency supported. A pending
payment row is written for every intent handed out.
"""

from sqlalchemy import select

from souq.errors import AuthError
from souq.model.db import Payment
from souq.server import app, get_auth, get_payments

from conftest import ALICE, BOB, BOB_ID, ALICE_ID


async def test_creates_intent_in_egp_by_default(client, product, test_db):
    res = await client.post("/api/create-payment-intent", headers=BOB,
                            json={"productId": product.id})
    assert res.status_code == 200
    body = res.json()
    assert body["paymentIntentId"].startswith("pi_mock_")
    assert body["clientSecret"].startswith(body["paymentIntentId"])
    assert body["amount"] == 3100.0
    assert body["currency"] == "EGP"
    assert body["formattedAmount"] == "3,100.00 ج.م"

    payment = (await test_db.execute(
        select(Payment).where(Payment.id == body["paymentIntentId"])
    )).scalar_one()
    assert payment.status == "pending"
    assert payment.buyer_id == BOB_ID
    assert payment.seller_id == ALICE_ID
    assert payment.product_id == product.id
    assert payment.amount == 3100.0
    assert payment.currency == "EGP"
    assert payment.stripe_payment_intent_id == body["paymentIntentId"]


async def test_usd_is_not_converted(client, product):
    res = await client.post("/api/create-payment-intent", headers=BOB,
                            json={"productId": product.id, "currency": "usd"})
    assert res.status_code == 200
    assert res.json()["amount"] == 100.0
    assert res.json()["currency"] == "USD"
    assert res.json()["formattedAmount"] == "$100.00"


async def test_shipping_address_is_kept_on_payment(client, product, test_db):
    address = {"fullName": "Bob Buyer", "city": "Giza", "governorate": "Giza"}
    res = await client.post("/api/create-payment-intent", headers=BOB, json={
        "productId": product.id, "shippingAddress": address,
    })
    payment = await test_db.get(Payment, res.json()["paymentIntentId"])
    assert payment.meta == {"shipping_address": address}


async def test_requires_sign_in(client, product):
    res = await client.post("/api/create-payment-intent",
                            json={"productId": product.id})
    assert res.status_code == 401
    assert res.json() == {"error": "Unauthorized"}


async def test_invalid_token_is_unauthorized(client, product):
    res = await client.post("/api/create-payment-intent",
                            headers={"authorization": "Bearer expired"},
                            json={"productId": product.id})
    assert res.status_code == 401


async def test_unknown_product(client, profiles):
    res = await client.post("/api/create-payment-intent", headers=BOB,
                            json={"productId": "missing"})
    assert res.status_code == 404
    assert res.json() == {"error": "Product not found"}


async def test_missing_product_id(client, profiles):
    res = await client.post("/api/create-payment-intent", headers=BOB, json={})
    assert res.status_code == 404


async def test_cannot_buy_own_product(client, product):
    res = await client.post("/api/create-payment-intent", headers=ALICE,
                            json={"productId": product.id})
    assert res.status_code == 400
    assert res.json() == {"error": "Cannot purchase your own product"}


async def test_sold_product_is_unavailable(client, sold_product):
    res = await client.post("/api/create-payment-intent", headers=BOB,
                            json={"productId": sold_product.id})
    assert res.status_code == 400
    assert res.json() == {"error": "Product is no longer available"}


async def test_unsupported_currency(client, product, test_db):
    res = await client.post("/api/create-payment-intent", headers=BOB,
                            json={"productId": product.id, "currency": "GBP"})
    assert res.status_code == 400
    assert "GBP" in res.json()["error"]
    assert (await test_db.execute(select(Payment))).first() is None


async def test_not_configured_comes_first(client, product):
    app.dependency_overrides[get_payments] = lambda: None
    res = await client.post("/api/create-payment-intent",
                            json={"productId": product.id})
    assert res.status_code == 500
    assert res.json() == {"error": "Payment system not configured"}


class DownAuth:
    async def get_user(self, token):
        raise AuthError("auth service unavailable", http_status=502)


async def test_not_configured_comes_before_sign_in(client, product):
    app.dependency_overrides[get_payments] = lambda: None
    app.dependency_overrides[get_auth] = lambda: DownAuth()
    res = await client.post("/api/create-payment-intent", headers=BOB,
                            json={"productId": product.id})
    assert res.status_code == 500
    assert res.json() == {"error": "Payment system not configured"}


async def test_provider_failure(client, product, mock_pay, monkeypatch):
    async def boom(**kwargs):
        raise RuntimeError("card network down")

    monkeypatch.setattr(mock_pay, "create_payment_intent", boom)
    res = await client.post("/api/create-payment-intent", headers=BOB,
                            json={"productId": product.id})
    assert res.status_code == 500
    assert res.json() == {"error": "Failed to create payment intent"}
