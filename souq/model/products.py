from __future__ import annotations
import logging
from typing import Any, Dict, Iterable, List, Optional, TypedDict

from sqlalchemy import select, delete, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import ALL_CATEGORIES
from ..errors import Forbidden, NotFound, SouqError
from ..helpers import now_ts, to_iso
from .db import Product, UserProfile, WishlistItem

logger = logging.getLogger(__name__)

UNKNOWN_SELLER = {"full_name": "Unknown Seller", "avatar_url": None}

EDITABLE_FIELDS = (
    "title", "description", "price", "category", "condition", "images",
    "status",
)
PRODUCT_STATUSES = ("active", "sold")


class ProductFilters(TypedDict, total=False):
    category: str
    search: str
    min_price: float
    max_price: float
    condition: List[str]


def product_to_dict(p: Product, seller: Optional[dict] = None,
                    is_wishlisted: bool = False) -> Dict[str, Any]:
    return {
        "id": p.id,
        "title": p.title,
        "description": p.description,
        "price": p.price,
        "category": p.category,
        "condition": p.condition,
        "images": list(p.images or []),
        "seller_id": p.seller_id,
        "status": p.status,
        "created_at": to_iso(p.created_at),
        "updated_at": to_iso(p.updated_at),
        "seller": seller or dict(UNKNOWN_SELLER),
        "isWishlisted": is_wishlisted,
    }


async def _seller_map(db: AsyncSession,
                      seller_ids: Iterable[str]) -> Dict[str, dict]:
    ids = list(set(seller_ids))
    if not ids:
        return {}
    result = await db.execute(
        select(UserProfile.id, UserProfile.full_name, UserProfile.avatar_url)
        .where(UserProfile.id.in_(ids))
    )
    return {
        r.id: {"full_name": r.full_name or "", "avatar_url": r.avatar_url}
        for r in result
    }


async def _wishlisted_ids(db: AsyncSession, user_id: Optional[str]) -> set:
    if not user_id:
        return set()
    result = await db.execute(
        select(WishlistItem.product_id).where(WishlistItem.user_id == user_id)
    )
    return set(result.scalars().all())


async def _enrich(db: AsyncSession, products: List[Product],
                  viewer_id: Optional[str],
                  wishlisted: Optional[set] = None) -> List[Dict[str, Any]]:
    if not products:
        return []
    sellers = await _seller_map(db, (p.seller_id for p in products))
    if wishlisted is None:
        wishlisted = await _wishlisted_ids(db, viewer_id)
    return [
        product_to_dict(p, sellers.get(p.seller_id), p.id in wishlisted)
        for p in products
    ]


# ----------------------------
# Products
# ----------------------------
async def create_product(db: AsyncSession, seller_id: str,
                         data: Dict[str, Any]) -> Product:
    ts = now_ts()
    product = Product(
        title=data["title"],
        description=data.get("description") or "",
        price=float(data["price"]),
        category=data["category"],
        condition=data.get("condition") or "New",
        images=list(data.get("images") or []),
        seller_id=seller_id,
        status="active",
        created_at=ts,
        updated_at=ts,
    )
    db.add(product)
    await db.commit()
    logger.info("product listed", extra={"product_id": product.id,
                                         "user_id": seller_id})
    return product


async def list_products(db: AsyncSession,
                        filters: Optional[ProductFilters] = None,
                        viewer_id: Optional[str] = None,
                        limit: Optional[int] = None) -> List[Dict[str, Any]]:
    filters = filters or {}
    query = (
        select(Product)
        .where(Product.status == "active")
        .order_by(Product.created_at.desc())
    )

    category = filters.get("category")
    if category and category != ALL_CATEGORIES:
        query = query.where(Product.category == category)

    search = (filters.get("search") or "").strip()
    if search:
        pattern = f"%{search}%"
        query = query.where(or_(
            Product.title.ilike(pattern),
            Product.description.ilike(pattern),
        ))

    if filters.get("min_price") is not None:
        query = query.where(Product.price >= filters["min_price"])
    if filters.get("max_price") is not None:
        query = query.where(Product.price <= filters["max_price"])

    conditions = filters.get("condition") or []
    if conditions:
        query = query.where(Product.condition.in_(conditions))

    if limit:
        query = query.limit(limit)

    products = list((await db.execute(query)).scalars().all())
    return await _enrich(db, products, viewer_id)


async def get_product_row(db: AsyncSession,
                          product_id: str) -> Optional[Product]:
    return await db.get(Product, product_id)


async def get_product(db: AsyncSession, product_id: str,
                      viewer_id: Optional[str] = None
                      ) -> Optional[Dict[str, Any]]:
    product = await get_product_row(db, product_id)
    if product is None:
        return None
    enriched = await _enrich(db, [product], viewer_id)
    return enriched[0]


async def list_products_by_seller(db: AsyncSession,
                                  seller_id: str) -> List[Dict[str, Any]]:
    result = await db.execute(
        select(Product)
        .where(Product.seller_id == seller_id)
        .order_by(Product.created_at.desc())
    )
    products = list(result.scalars().all())
    return await _enrich(db, products, seller_id)


async def _owned_product(db: AsyncSession, product_id: str,
                         seller_id: str) -> Product:
    product = await get_product_row(db, product_id)
    if product is None:
        raise NotFound("Product not found")
    if product.seller_id != seller_id:
        raise Forbidden("You can only modify your own products")
    return product


async def update_product(db: AsyncSession, product_id: str, seller_id: str,
                         updates: Dict[str, Any]) -> Dict[str, Any]:
    product = await _owned_product(db, product_id, seller_id)
    status = updates.get("status")
    if status is not None and status not in PRODUCT_STATUSES:
        raise SouqError(f"Invalid product status: {status}")
    for field in EDITABLE_FIELDS:
        if field not in updates or updates[field] is None:
            continue
        value = updates[field]
        if field == "price":
            value = float(value)
        setattr(product, field, value)
    product.updated_at = now_ts()
    await db.commit()
    return (await _enrich(db, [product], seller_id))[0]


async def delete_product(db: AsyncSession, product_id: str,
                         seller_id: str) -> None:
    product = await _owned_product(db, product_id, seller_id)
    await db.execute(
        delete(WishlistItem).where(WishlistItem.product_id == product.id)
    )
    await db.delete(product)
    await db.commit()
    logger.info("product deleted", extra={"product_id": product_id,
                                          "user_id": seller_id})


async def mark_product_sold(db: AsyncSession, product_id: str) -> None:
    product = await get_product_row(db, product_id)
    if product is None:
        return
    product.status = "sold"
    product.updated_at = now_ts()
    await db.commit()


# ----------------------------
# Wishlist
# ----------------------------
async def add_to_wishlist(db: AsyncSession, user_id: str,
                          product_id: str) -> Dict[str, Any]:
    if await get_product_row(db, product_id) is None:
        raise NotFound("Product not found")
    item = WishlistItem(user_id=user_id, product_id=product_id,
                        updated_at=now_ts())
    db.add(item)
    try:
        await db.commit()
    except IntegrityError:
        # unique (user_id, product_id)
        await db.rollback()
        return {"alreadyExists": True}
    return {
        "id": item.id,
        "user_id": user_id,
        "product_id": product_id,
        "created_at": to_iso(item.created_at),
    }


async def remove_from_wishlist(db: AsyncSession, user_id: str,
                               product_id: str) -> bool:
    result = await db.execute(
        delete(WishlistItem)
        .where(WishlistItem.user_id == user_id)
        .where(WishlistItem.product_id == product_id)
    )
    await db.commit()
    return result.rowcount > 0


async def get_wishlist(db: AsyncSession,
                       user_id: str) -> List[Dict[str, Any]]:
    ids = await _wishlisted_ids(db, user_id)
    if not ids:
        return []
    result = await db.execute(
        select(Product)
        .where(Product.id.in_(ids))
        .order_by(Product.created_at.desc())
    )
    products = list(result.scalars().all())
    return await _enrich(db, products, user_id, wishlisted=ids)
