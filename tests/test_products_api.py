"""Product listings, filters, ownership and the wishlist."""

import pytest

from souq.model.db import Product, WishlistItem

from conftest import ALICE, ALICE_ID, BOB


@pytest.fixture
async def catalog(test_db, profiles):
    items = [
        Product(title="Phone", description="Unlocked smartphone", price=300.0,
                category="Electronics", condition="Like New",
                seller_id=ALICE_ID, created_at=1.0),
        Product(title="Laptop bag", description="Fits 15 inch", price=40.0,
                category="Fashion", condition="New",
                seller_id=ALICE_ID, created_at=2.0),
        Product(title="Desk lamp", description="Brass, works with phone app",
                price=25.0, category="Home", condition="Used",
                seller_id=ALICE_ID, created_at=3.0),
        Product(title="Sold phone", price=10.0, category="Electronics",
                condition="Fair", seller_id=ALICE_ID, status="sold",
                created_at=4.0),
    ]
    test_db.add_all(items)
    await test_db.commit()
    return items


def titles(res):
    return [p["title"] for p in res.json()["items"]]


async def test_lists_active_products_newest_first(client, catalog):
    res = await client.get("/api/products")
    assert res.status_code == 200
    assert titles(res) == ["Desk lamp", "Laptop bag", "Phone"]
    first = res.json()["items"][0]
    assert first["seller"]["full_name"] == "Alice Seller"
    assert first["isWishlisted"] is False


async def test_category_filter(client, catalog):
    assert titles(await client.get("/api/products?category=Electronics")) == ["Phone"]


async def test_all_categories_means_no_filter(client, catalog):
    res = await client.get("/api/products", params={"category": "All Categories"})
    assert len(titles(res)) == 3


async def test_search_matches_title_or_description(client, catalog):
    res = await client.get("/api/products?search=PHONE")
    assert titles(res) == ["Desk lamp", "Phone"]


async def test_price_range(client, catalog):
    res = await client.get("/api/products?min_price=30&max_price=300")
    assert titles(res) == ["Laptop bag", "Phone"]


async def test_blank_price_bounds_are_ignored(client, catalog):
    res = await client.get("/api/products?min_price=&max_price=")
    assert len(titles(res)) == 3


async def test_condition_filter_takes_several_values(client, catalog):
    res = await client.get("/api/products?condition=New&condition=Used")
    assert titles(res) == ["Desk lamp", "Laptop bag"]


async def test_seller_without_profile_is_unknown(client, test_db):
    test_db.add(Product(title="Orphan", price=1.0, category="Toys",
                        seller_id="nobody"))
    await test_db.commit()
    res = await client.get("/api/products")
    assert res.json()["items"][0]["seller"]["full_name"] == "Unknown Seller"


async def test_get_product_and_404(client, product):
    res = await client.get(f"/api/products/{product.id}")
    assert res.status_code == 200
    assert res.json()["title"] == "Vintage Camera"
    assert res.json()["images"] == ["https://img.test/camera.jpg"]

    res = await client.get("/api/products/missing")
    assert res.status_code == 404
    assert res.json() == {"error": "Product not found"}


async def test_create_product(client, profiles):
    res = await client.post("/api/products", headers=ALICE, json={
        "title": "Bike", "price": 120.5, "category": "Sports",
        "condition": "Good", "images": ["https://img.test/bike.jpg"],
    })
    assert res.status_code == 201
    body = res.json()
    assert body["seller_id"] == ALICE_ID
    assert body["status"] == "active"
    assert body["price"] == 120.5


async def test_create_product_requires_sign_in(client):
    res = await client.post("/api/products", json={
        "title": "Bike", "price": 1, "category": "Sports",
    })
    assert res.status_code == 401
    assert res.json() == {"error": "Unauthorized"}


async def test_create_product_validation(client, profiles):
    res = await client.post("/api/products", headers=ALICE, json={
        "title": "", "price": -1, "category": "Sports",
    })
    assert res.status_code == 400
    body = res.json()
    assert body["error"] == "Invalid request data"
    fields = {d["field"] for d in body["details"]}
    assert "body.title" in fields
    assert "body.price" in fields


async def test_create_product_unknown_category(client, profiles):
    res = await client.post("/api/products", headers=ALICE, json={
        "title": "Thing", "price": 5, "category": "Spaceships",
    })
    assert res.status_code == 400


async def test_owner_updates_product(client, product):
    res = await client.patch(f"/api/products/{product.id}", headers=ALICE,
                             json={"price": 80, "title": "Camera (price drop)"})
    assert res.status_code == 200
    assert res.json()["price"] == 80.0
    assert res.json()["title"] == "Camera (price drop)"


async def test_update_rejects_unknown_status(client, product, test_db):
    res = await client.patch(f"/api/products/{product.id}", headers=ALICE,
                             json={"status": "archived", "price": 1})
    assert res.status_code == 400
    assert res.json() == {"error": "Invalid product status: archived"}
    await test_db.refresh(product)
    assert product.status == "active"
    assert product.price == 100.0


async def test_other_user_cannot_update(client, product):
    res = await client.patch(f"/api/products/{product.id}", headers=BOB,
                             json={"price": 1})
    assert res.status_code == 403


async def test_owner_deletes_product_and_wishlist_rows(client, product, test_db):
    await client.post(f"/api/wishlist/{product.id}", headers=BOB)

    res = await client.delete(f"/api/products/{product.id}", headers=ALICE)
    assert res.status_code == 200
    assert res.json() == {"deleted": True}

    assert (await client.get(f"/api/products/{product.id}")).status_code == 404
    assert (await test_db.execute(
        WishlistItem.__table__.select()
    )).first() is None


async def test_other_user_cannot_delete(client, product):
    res = await client.delete(f"/api/products/{product.id}", headers=BOB)
    assert res.status_code == 403


async def test_wishlist_add_is_idempotent(client, product):
    first = await client.post(f"/api/wishlist/{product.id}", headers=BOB)
    assert first.status_code == 201
    assert first.json()["product_id"] == product.id

    second = await client.post(f"/api/wishlist/{product.id}", headers=BOB)
    assert second.status_code == 200
    assert second.json() == {"alreadyExists": True}


async def test_wishlist_flag_and_listing(client, product):
    await client.post(f"/api/wishlist/{product.id}", headers=BOB)

    detail = await client.get(f"/api/products/{product.id}", headers=BOB)
    assert detail.json()["isWishlisted"] is True
    anonymous = await client.get(f"/api/products/{product.id}")
    assert anonymous.json()["isWishlisted"] is False

    res = await client.get("/api/wishlist", headers=BOB)
    assert [p["id"] for p in res.json()["items"]] == [product.id]


async def test_wishlist_remove(client, product):
    await client.post(f"/api/wishlist/{product.id}", headers=BOB)
    res = await client.delete(f"/api/wishlist/{product.id}", headers=BOB)
    assert res.json() == {"removed": True}
    res = await client.delete(f"/api/wishlist/{product.id}", headers=BOB)
    assert res.json() == {"removed": False}
    assert (await client.get("/api/wishlist", headers=BOB)).json() == {"items": []}


async def test_wishlist_unknown_product(client, profiles):
    res = await client.post("/api/wishlist/missing", headers=BOB)
    assert res.status_code == 404
