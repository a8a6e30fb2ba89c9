from .db import (
    Base, Product, UserProfile, Payment, Order, WishlistItem, WebhookEventSeen
)

__all__ = [
    "Base", "Product", "UserProfile", "Payment", "Order", "WishlistItem",
    "WebhookEventSeen",
]
