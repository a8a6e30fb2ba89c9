from __future__ import annotations
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import Forbidden, NotFound, SouqError
from ..helpers import now_ts, to_iso
from .db import Order, Payment, Product

logger = logging.getLogger(__name__)

ORDER_STATUSES = ("confirmed", "shipped", "delivered", "cancelled")
ORDER_EDITABLE_FIELDS = ("tracking_number", "notes", "shipping_address")


def payment_to_dict(p: Payment) -> Dict[str, Any]:
    return {
        "id": p.id,
        "product_id": p.product_id,
        "buyer_id": p.buyer_id,
        "seller_id": p.seller_id,
        "amount": p.amount,
        "currency": p.currency,
        "status": p.status,
        "stripe_payment_intent_id": p.stripe_payment_intent_id,
        "payment_method_id": p.payment_method_id,
        "metadata": p.meta,
        "created_at": to_iso(p.created_at),
        "completed_at": to_iso(p.completed_at),
    }


def order_to_dict(o: Order) -> Dict[str, Any]:
    return {
        "id": o.id,
        "payment_id": o.payment_id,
        "product_id": o.product_id,
        "buyer_id": o.buyer_id,
        "seller_id": o.seller_id,
        "status": o.status,
        "shipping_address": o.shipping_address,
        "tracking_number": o.tracking_number,
        "notes": o.notes,
        "created_at": to_iso(o.created_at),
        "updated_at": to_iso(o.updated_at),
        "shipped_at": to_iso(o.shipped_at),
        "delivered_at": to_iso(o.delivered_at),
    }


# ----------------------------
# Payments
# ----------------------------
async def record_pending_payment(db: AsyncSession, *, intent_id: str,
                                 product: Product, buyer_id: str,
                                 amount: float, currency: str,
                                 meta: Optional[Dict[str, Any]] = None
                                 ) -> Payment:
    payment = Payment(
        id=intent_id,
        product_id=product.id,
        buyer_id=buyer_id,
        seller_id=product.seller_id,
        amount=amount,
        currency=currency,
        status="pending",
        stripe_payment_intent_id=intent_id,
        meta=meta or None,
        created_at=now_ts(),
    )
    db.add(payment)
    await db.commit()
    return payment


async def get_payment_by_intent(db: AsyncSession,
                                intent_id: str) -> Optional[Payment]:
    result = await db.execute(
        select(Payment).where(Payment.stripe_payment_intent_id == intent_id)
    )
    return result.scalars().first()


async def complete_payment(db: AsyncSession, intent_id: str,
                           payment_method_id: Optional[str]
                           ) -> Optional[Payment]:
    payment = await get_payment_by_intent(db, intent_id)
    if payment is None:
        return None
    payment.status = "completed"
    payment.completed_at = now_ts()
    payment.payment_method_id = payment_method_id
    await db.commit()
    return payment


async def fail_payment(db: AsyncSession, intent_id: str) -> bool:
    payment = await get_payment_by_intent(db, intent_id)
    if payment is None:
        return False
    if payment.status != "pending":
        logger.info("payment %s already %s; failure event ignored",
                    payment.id, payment.status,
                    extra={"payment_intent_id": intent_id})
        return False
    payment.status = "failed"
    await db.commit()
    return True


async def list_user_payments(db: AsyncSession,
                             user_id: str) -> List[Dict[str, Any]]:
    result = await db.execute(
        select(Payment, Product)
        .outerjoin(Product, Product.id == Payment.product_id)
        .where(or_(Payment.buyer_id == user_id, Payment.seller_id == user_id))
        .order_by(Payment.created_at.desc())
    )
    items = []
    for payment, product in result.all():
        d = payment_to_dict(payment)
        d["products"] = None if product is None else {
            "title": product.title,
            "images": list(product.images or []),
            "category": product.category,
        }
        items.append(d)
    return items


# ----------------------------
# Orders
# ----------------------------
async def create_order_for_payment(db: AsyncSession,
                                   payment: Payment) -> Optional[Order]:
    payment_id = payment.id
    shipping = (payment.meta or {}).get("shipping_address")
    order = Order(
        payment_id=payment.id,
        product_id=payment.product_id,
        buyer_id=payment.buyer_id,
        seller_id=payment.seller_id,
        status="confirmed",
        shipping_address=shipping,
        created_at=now_ts(),
    )
    db.add(order)
    try:
        await db.commit()
    except IntegrityError:
        # replayed webhook racing the first write
        await db.rollback()
        logger.info("order for payment %s already exists", payment_id,
                    extra={"payment_intent_id": payment_id})
        return None
    return order


async def list_user_orders(db: AsyncSession,
                           user_id: str) -> List[Dict[str, Any]]:
    result = await db.execute(
        select(Order, Product, Payment)
        .outerjoin(Product, Product.id == Order.product_id)
        .outerjoin(Payment, Payment.id == Order.payment_id)
        .where(or_(Order.buyer_id == user_id, Order.seller_id == user_id))
        .order_by(Order.created_at.desc())
    )
    items = []
    for order, product, payment in result.all():
        d = order_to_dict(order)
        d["products"] = None if product is None else {
            "title": product.title,
            "images": list(product.images or []),
            "category": product.category,
            "price": product.price,
        }
        d["payments"] = None if payment is None else {
            "amount": payment.amount,
            "currency": payment.currency,
            "status": payment.status,
        }
        items.append(d)
    return items


async def update_order_status(db: AsyncSession, order_id: str,
                              seller_id: str, status: str,
                              updates: Optional[Dict[str, Any]] = None
                              ) -> Dict[str, Any]:
    if status not in ORDER_STATUSES:
        raise SouqError(f"Invalid order status: {status}")
    order = await db.get(Order, order_id)
    if order is None:
        raise NotFound("Order not found")
    if order.seller_id != seller_id:
        raise Forbidden("Only the seller can update this order")

    ts = now_ts()
    order.status = status
    order.updated_at = ts
    for key in ORDER_EDITABLE_FIELDS:
        if updates and key in updates:
            setattr(order, key, updates[key])
    if status == "shipped":
        order.shipped_at = ts
    elif status == "delivered":
        order.delivered_at = ts
    await db.commit()
    return order_to_dict(order)
