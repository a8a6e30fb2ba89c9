from sqlalchemy.orm import declarative_base
from sqlalchemy import (
    Column,
    String,
    Float,
    Text,
    JSON,
    UniqueConstraint,
)

from ..helpers import new_id, now_ts


Base = declarative_base()


# ----------------------------
# ORM models
# ----------------------------
class Product(Base):
    __tablename__ = "products"
    id = Column(String, primary_key=True, default=new_id)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=False, default="")
    price = Column(Float, nullable=False)  # USD
    category = Column(String, nullable=False)
    condition = Column(String, nullable=False, default="New")
    images = Column(JSON, nullable=False, default=list)
    seller_id = Column(String, nullable=False, index=True)

    # active | sold
    status = Column(String, nullable=False, default="active")
    created_at = Column(Float, nullable=False, default=now_ts)
    updated_at = Column(Float, nullable=False, default=now_ts)


class UserProfile(Base):
    __tablename__ = "user_profiles"
    id = Column(String, primary_key=True)  # Supabase auth user id
    full_name = Column(String, nullable=False, default="")
    avatar_url = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    address = Column(String, nullable=True)
    created_at = Column(Float, nullable=False, default=now_ts)
    updated_at = Column(Float, nullable=False, default=now_ts)


class Payment(Base):
    __tablename__ = "payments"
    id = Column(String, primary_key=True)  # payment intent id
    product_id = Column(String, nullable=False, index=True)
    buyer_id = Column(String, nullable=False, index=True)
    seller_id = Column(String, nullable=False, index=True)
    amount = Column(Float, nullable=False)  # major units of `currency`
    currency = Column(String, nullable=False)

    # pending | completed | failed
    status = Column(String, nullable=False, default="pending")
    stripe_payment_intent_id = Column(String, nullable=False, unique=True)
    payment_method_id = Column(String, nullable=True)
    meta = Column("metadata", JSON, nullable=True)
    created_at = Column(Float, nullable=False, default=now_ts)
    completed_at = Column(Float, nullable=True)


class Order(Base):
    __tablename__ = "orders"
    id = Column(String, primary_key=True, default=new_id)
    # one order per payment; a replayed webhook trips this
    payment_id = Column(String, nullable=False, unique=True)
    product_id = Column(String, nullable=False)
    buyer_id = Column(String, nullable=False, index=True)
    seller_id = Column(String, nullable=False, index=True)

    # confirmed | shipped | delivered | cancelled
    status = Column(String, nullable=False, default="confirmed")
    shipping_address = Column(JSON, nullable=True)
    tracking_number = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(Float, nullable=False, default=now_ts)
    updated_at = Column(Float, nullable=True)
    shipped_at = Column(Float, nullable=True)
    delivered_at = Column(Float, nullable=True)


class WishlistItem(Base):
    __tablename__ = "wishlists"
    __table_args__ = (
        UniqueConstraint("user_id", "product_id", name="uq_wishlist_user_product"),
    )
    id = Column(String, primary_key=True, default=new_id)
    user_id = Column(String, nullable=False, index=True)
    product_id = Column(String, nullable=False)
    created_at = Column(Float, nullable=False, default=now_ts)
    updated_at = Column(Float, nullable=False, default=now_ts)


class WebhookEventSeen(Base):
    __tablename__ = "webhook_events_seen"
    event_id = Column(String, primary_key=True)
    created_at = Column(Float, nullable=False, default=now_ts)
