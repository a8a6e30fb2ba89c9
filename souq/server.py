from __future__ import annotations
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx
from fastapi import Depends, FastAPI, Form, HTTPException, Query, Request
from fastapi.responses import HTMLResponse, RedirectResponse, ORJSONResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.middleware.sessions import SessionMiddleware
from starlette.status import HTTP_303_SEE_OTHER

import redis.asyncio as redis

from . import config
from .auth import AuthSession, AuthUser, SupabaseAuth, pkce_pair
from .currency import (
    BASE_CURRENCY, DEFAULT_CHECKOUT_CURRENCY, EGYPTIAN_PAYMENT_METHODS,
    SUPPORTED_CURRENCIES, convert_currency, format_money, is_supported,
    to_minor_units,
)
from .errors import AuthError, CurrencyError, register_error_handlers, wants_json
from .helpers import is_valid_email, parse_float
from .infra.logs import setup_logging
from .infra.sql import make_async_engine
from .infra.timings import install_shutdown_report, timeit
from .model import Base
from .model import payments as payment_store
from .model import products as product_store
from .model import profiles as profile_store
from .model.webhookevents import new_store as new_event_store
from .model.webhookevents import BACKEND as EVENTS_BACKEND
from .payments import (
    EVENT_FAILED, EVENT_SUCCEEDED, InvalidSignature, MockPay, PaymentAdapter,
    new_adapter,
)

logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parent
templates = Jinja2Templates(directory=str(BASE_DIR / "templates"))
templates.env.filters["money"] = format_money
templates.env.filters["day"] = lambda iso: (iso or "")[:10]

HOME_CATEGORIES = [
    {"name": "Electronics", "description": "Latest gadgets and tech"},
    {"name": "Fashion", "description": "Clothing and accessories"},
    {"name": "Home", "description": "Home and garden essentials"},
    {"name": "Toys", "description": "Fun for all ages"},
]

EGYPTIAN_GOVERNORATES = [
    "Cairo", "Alexandria", "Giza", "Qalyubia", "Port Said", "Suez", "Luxor",
    "Aswan", "Asyut", "Beheira", "Beni Suef", "Dakahlia", "Damietta",
    "Fayyum", "Gharbia", "Ismailia", "Kafr el-Sheikh", "Matrouh", "Minya",
    "Monufia", "New Valley", "North Sinai", "Qena", "Red Sea", "Sharqia",
    "Sohag", "South Sinai",
]

STRIPE_TEST_CARDS = [
    {"number": "4242 4242 4242 4242", "type": "Success",
     "description": "Payment succeeds"},
    {"number": "4000 0000 0000 0002", "type": "Declined",
     "description": "Payment declined"},
    {"number": "4000 0000 0000 9995", "type": "Insufficient Funds",
     "description": "Insufficient funds"},
    {"number": "4000 0025 0000 3155", "type": "3D Secure",
     "description": "Requires authentication"},
]


engine, SessionAsync = make_async_engine(config.DATABASE_URL)


async def get_db() -> AsyncSession:
    async with SessionAsync() as session:
        yield session

adapter: Optional[PaymentAdapter] = new_adapter()

app = FastAPI(
    title="Souq",
    default_response_class=ORJSONResponse,
)
app.mount("/static", StaticFiles(directory=str(BASE_DIR / "static")), name="static")
app.add_middleware(SessionMiddleware, secret_key=config.SESSION_SECRET,
                   same_site="lax")
register_error_handlers(app, templates)

# shutdown handler logging latency of hosted-service calls
install_shutdown_report(app)


def get_payments() -> Optional[PaymentAdapter]:
    return adapter


def get_auth(request: Request) -> SupabaseAuth:
    auth = getattr(request.app.state, "auth", None)
    if auth is None:
        raise RuntimeError("Supabase auth client not initialized")
    return auth


async def webhook_events(db: AsyncSession = Depends(get_db)):
    if EVENTS_BACKEND == "redis":
        return new_event_store(r=app.state.redis)
    return new_event_store(db=db)


# ---
# startup / shutdown
# ---
@app.on_event("startup")
async def _say_hello():
    setup_logging(config.LOG_LEVEL, config.LOG_FORMAT)
    P = adapter.name if adapter is not None else "disabled"
    E = "Redis" if EVENTS_BACKEND == "redis" else "PostgreSQL"
    logger.info("Souq is starting up...")
    logger.info("   - Payments backend: %s", P)
    logger.info("   - Webhook events backend: %s", E)


@app.on_event("startup")
async def _db_init():
    if config.AUTO_CREATE_SCHEMA:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)


@app.on_event("startup")
async def _http_client_start():
    app.state.http = httpx.AsyncClient(
        timeout=10.0,
        limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
    )
    app.state.auth = SupabaseAuth(
        app.state.http, config.SUPABASE_URL, config.SUPABASE_ANON_KEY
    )


@app.on_event("startup")
async def _redis_start():
    if EVENTS_BACKEND == "redis":
        app.state.redis = redis.from_url(
            config.REDIS_URL,
            decode_responses=True,
            socket_timeout=2.0,
            socket_connect_timeout=2.0,
        )


@app.on_event("shutdown")
async def _http_client_stop():
    http = getattr(app.state, "http", None)
    if http is not None:
        await http.aclose()
        app.state.http = None
        app.state.auth = None


@app.on_event("shutdown")
async def _redis_stop():
    r = getattr(app.state, "redis", None)
    if r is not None:
        await r.aclose()
        app.state.redis = None


@app.on_event("shutdown")
async def _db_stop():
    await engine.dispose()


# ----------------------------
# Helpers
# ----------------------------
def _bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip() or None
    return None


def _store_session(request: Request, session: AuthSession) -> None:
    request.session["access_token"] = session["access_token"]
    request.session["refresh_token"] = session["refresh_token"]


def _flash(request: Request, kind: str, text: str) -> None:
    # kind: "success" | "error"
    request.session["flash"] = {"type": kind, "text": text}


def _safe_next(next_url: Optional[str], default: str = "/") -> str:
    # only same-site paths
    if not next_url or not next_url.startswith("/") or next_url.startswith("//"):
        return default
    return next_url


def _see_other(url: str) -> RedirectResponse:
    return RedirectResponse(url=url, status_code=HTTP_303_SEE_OTHER)


def _api_error(status_code: int, message: str) -> ORJSONResponse:
    return ORJSONResponse({"error": message}, status_code=status_code)


async def current_user(
    request: Request, auth: SupabaseAuth = Depends(get_auth),
) -> Optional[AuthUser]:
    bearer = _bearer_token(request)
    if bearer:
        try:
            return await auth.get_user(bearer)
        except AuthError as e:
            if e.http_status >= 500:
                raise
            return None

    token = request.session.get("access_token")
    if not token:
        return None
    try:
        return await auth.get_user(token)
    except AuthError as e:
        if e.http_status >= 500:
            raise

    # access token expired; one refresh attempt
    refresh = request.session.get("refresh_token")
    if refresh:
        try:
            session = await auth.refresh_session(refresh)
        except AuthError:
            request.session.clear()
            return None
        _store_session(request, session)
        return session["user"]
    request.session.clear()
    return None


async def require_user(
    request: Request, user: Optional[AuthUser] = Depends(current_user),
) -> AuthUser:
    if user is None:
        if wants_json(request):
            raise HTTPException(status_code=401, detail="Unauthorized")
        # preserve where we wanted to go
        dest = request.url.path
        if request.url.query:
            dest = f"{dest}?{request.url.query}"
        code = 307 if request.method == "GET" else HTTP_303_SEE_OTHER
        raise HTTPException(status_code=code, detail="redirect to login",
                            headers={"Location": f"/auth?next={quote(dest)}"})
    return user


def render(request: Request, name: str, user: Optional[AuthUser],
           status_code: int = 200, **ctx: Any) -> HTMLResponse:
    ctx.update({
        "request": request,
        "user": user,
        "site_name": config.SITE_NAME,
        "all_categories": config.CATEGORIES,
        "flash": request.session.pop("flash", None),
    })
    return templates.TemplateResponse(name, ctx, status_code=status_code)


def _filters_from_query(request: Request) -> product_store.ProductFilters:
    q = request.query_params
    filters: product_store.ProductFilters = {}
    if q.get("category"):
        filters["category"] = q["category"]
    if q.get("search"):
        filters["search"] = q["search"]
    min_price = parse_float(q.get("min_price"))
    if min_price is not None:
        filters["min_price"] = min_price
    max_price = parse_float(q.get("max_price"))
    if max_price is not None:
        filters["max_price"] = max_price
    conditions = [c for c in q.getlist("condition") if c]
    if conditions:
        filters["condition"] = conditions
    return filters


# ----------------------------
# Pages: home & listings
# ----------------------------
@app.get("/", response_class=HTMLResponse)
async def home_page(
    request: Request,
    db: AsyncSession = Depends(get_db),
    user: Optional[AuthUser] = Depends(current_user),
):
    latest = await product_store.list_products(
        db, viewer_id=user["id"] if user else None, limit=8
    )
    return render(request, "home.html", user,
                  categories=HOME_CATEGORIES, products=latest)


@app.get("/products", response_class=HTMLResponse)
async def product_listing_page(
    request: Request,
    db: AsyncSession = Depends(get_db),
    user: Optional[AuthUser] = Depends(current_user),
):
    filters = _filters_from_query(request)
    products = await product_store.list_products(
        db, filters, viewer_id=user["id"] if user else None
    )
    return render(request, "products.html", user,
                  products=products, filters=filters,
                  conditions=config.CONDITIONS,
                  all_label=config.ALL_CATEGORIES)


@app.get("/products/{product_id}", response_class=HTMLResponse)
async def product_detail_page(
    request: Request, product_id: str,
    db: AsyncSession = Depends(get_db),
    user: Optional[AuthUser] = Depends(current_user),
):
    product = await product_store.get_product(
        db, product_id, viewer_id=user["id"] if user else None
    )
    if product is None:
        raise HTTPException(404, detail="Product not found")
    return render(request, "product_detail.html", user, product=product,
                  is_owner=bool(user and user["id"] == product["seller_id"]))


@app.post("/products/{product_id}/wishlist")
async def toggle_wishlist(
    product_id: str,
    request: Request,
    next: str = Form(""),
    db: AsyncSession = Depends(get_db),
    user: AuthUser = Depends(require_user),
):
    removed = await product_store.remove_from_wishlist(db, user["id"], product_id)
    if removed:
        _flash(request, "success", "Removed from wishlist")
    else:
        await product_store.add_to_wishlist(db, user["id"], product_id)
        _flash(request, "success", "Added to wishlist")
    return _see_other(_safe_next(next, f"/products/{product_id}"))


@app.post("/products/{product_id}/delete")
async def delete_product_form(
    product_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    user: AuthUser = Depends(require_user),
):
    await product_store.delete_product(db, product_id, user["id"])
    _flash(request, "success", "Product deleted successfully!")
    return _see_other("/profile?tab=products")


# ----------------------------
# Pages: auth & sell
# ----------------------------
@app.get("/auth", response_class=HTMLResponse)
async def auth_page(
    request: Request,
    tab: str = "login",
    next: str = "/",
    user: Optional[AuthUser] = Depends(current_user),
):
    if tab not in ("login", "signup", "sell"):
        tab = "login"
    return render(request, "auth.html", user, tab=tab, next=_safe_next(next),
                  error=None, form={}, conditions=config.CONDITIONS)


def _auth_error_page(request: Request, tab: str, next: str, error: str,
                     form: Dict[str, Any],
                     user: Optional[AuthUser] = None) -> HTMLResponse:
    return render(request, "auth.html", user, status_code=400, tab=tab,
                  next=_safe_next(next), error=error, form=form,
                  conditions=config.CONDITIONS)


@app.post("/auth/login", response_class=HTMLResponse)
async def login(
    request: Request,
    email: str = Form(...),
    password: str = Form(...),
    next: str = Form("/"),
    auth: SupabaseAuth = Depends(get_auth),
):
    email = email.strip()
    try:
        session = await auth.sign_in(email, password)
    except AuthError as e:
        return _auth_error_page(request, "login", next, e.message,
                                {"email": email})
    _store_session(request, session)
    return _see_other(_safe_next(next))


@app.post("/auth/signup", response_class=HTMLResponse)
async def signup(
    request: Request,
    name: str = Form(...),
    email: str = Form(...),
    password: str = Form(...),
    next: str = Form("/"),
    db: AsyncSession = Depends(get_db),
    auth: SupabaseAuth = Depends(get_auth),
):
    name, email = name.strip(), email.strip()
    form = {"name": name, "email": email}
    if not name:
        return _auth_error_page(request, "signup", next,
                                "Full name is required", form)
    if not is_valid_email(email):
        return _auth_error_page(request, "signup", next,
                                "Please enter a valid email address", form)
    if len(password) < config.MIN_PASSWORD_LENGTH:
        return _auth_error_page(
            request, "signup", next,
            f"Password must be at least {config.MIN_PASSWORD_LENGTH} "
            "characters long", form,
        )
    try:
        result = await auth.sign_up(email, password, name)
    except AuthError as e:
        return _auth_error_page(request, "signup", next, e.message, form)

    await profile_store.upsert_profile(db, result["user"]["id"],
                                       {"full_name": name})
    if result["session"] is None:
        _flash(request, "success",
               "Check your email to confirm your account, then log in.")
        return _see_other("/auth?tab=login")
    _store_session(request, result["session"])
    return _see_other(_safe_next(next))


@app.get("/auth/google")
async def google_sign_in(
    request: Request, auth: SupabaseAuth = Depends(get_auth),
):
    verifier, challenge = pkce_pair()
    request.session["pkce_verifier"] = verifier
    url = auth.oauth_url("google", f"{config.SITE_URL}/auth/callback",
                         challenge)
    return RedirectResponse(url=url, status_code=HTTP_303_SEE_OTHER)


@app.get("/auth/callback")
async def auth_callback(
    request: Request,
    code: Optional[str] = None,
    error_description: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    auth: SupabaseAuth = Depends(get_auth),
):
    verifier = request.session.pop("pkce_verifier", None)
    if error_description or not code or not verifier:
        _flash(request, "error", error_description or "Sign in failed")
        return _see_other("/auth")
    try:
        session = await auth.exchange_code(code, verifier)
    except AuthError as e:
        _flash(request, "error", e.message)
        return _see_other("/auth")
    _store_session(request, session)
    u = session["user"]
    if await profile_store.get_profile(db, u["id"]) is None:
        await profile_store.upsert_profile(db, u["id"],
                                           {"full_name": u["full_name"]})
    return _see_other("/")


@app.post("/auth/logout")
async def logout(request: Request, auth: SupabaseAuth = Depends(get_auth)):
    token = request.session.get("access_token")
    if token:
        try:
            await auth.sign_out(token)
        except AuthError as e:
            # token already expired or revoked; the cookie goes anyway
            logger.info("sign out: %s", e.message)
    request.session.clear()
    return _see_other("/")


@app.post("/sell", response_class=HTMLResponse)
async def sell_product(
    request: Request,
    title: str = Form(""),
    description: str = Form(""),
    price: str = Form(""),
    category: str = Form(""),
    condition: str = Form("New"),
    images: str = Form(""),
    db: AsyncSession = Depends(get_db),
    user: AuthUser = Depends(require_user),
):
    image_urls = [line.strip() for line in images.splitlines() if line.strip()]
    form = {"title": title, "description": description, "price": price,
            "category": category, "condition": condition,
            "images": images}
    amount = parse_float(price)
    error = None
    if not title.strip():
        error = "Title is required"
    elif amount is None or amount <= 0:
        error = "Price must be a positive number"
    elif category not in config.CATEGORIES:
        error = "Please choose a category"
    if error:
        return _auth_error_page(request, "sell", "/", error, form, user)

    product = await product_store.create_product(db, user["id"], {
        "title": title.strip(),
        "description": description.strip(),
        "price": amount,
        "category": category,
        "condition": condition or "New",
        "images": image_urls,
    })
    _flash(request, "success", "Your product is live!")
    return _see_other(f"/products/{product.id}")


# ----------------------------
# Pages: profile
# ----------------------------
@app.get("/profile", response_class=HTMLResponse)
async def profile_page(
    request: Request,
    tab: str = "profile",
    db: AsyncSession = Depends(get_db),
    user: AuthUser = Depends(require_user),
):
    profile = await profile_store.get_profile(db, user["id"])
    if profile is not None:
        details = profile_store.profile_to_dict(profile)
    else:
        details = {"full_name": user["full_name"], "phone": "", "address": ""}
    return render(
        request, "profile.html", user,
        tab=tab,
        profile=details,
        my_products=await product_store.list_products_by_seller(db, user["id"]),
        wishlist=await product_store.get_wishlist(db, user["id"]),
        orders=await payment_store.list_user_orders(db, user["id"]),
        payments=await payment_store.list_user_payments(db, user["id"]),
        order_statuses=payment_store.ORDER_STATUSES,
    )


@app.post("/profile")
async def update_profile_form(
    request: Request,
    full_name: str = Form(""),
    phone: str = Form(""),
    address: str = Form(""),
    db: AsyncSession = Depends(get_db),
    user: AuthUser = Depends(require_user),
):
    await profile_store.upsert_profile(db, user["id"], {
        "full_name": full_name.strip(),
        "phone": phone.strip(),
        "address": address.strip(),
    })
    _flash(request, "success", "Profile updated successfully!")
    return _see_other("/profile")


@app.post("/profile/password")
async def change_password(
    request: Request,
    new_password: str = Form(...),
    confirm_password: str = Form(...),
    user: AuthUser = Depends(require_user),
    auth: SupabaseAuth = Depends(get_auth),
):
    back = "/profile?tab=settings"
    if new_password != confirm_password:
        _flash(request, "error", "New passwords don't match")
        return _see_other(back)
    if len(new_password) < config.MIN_PASSWORD_LENGTH:
        _flash(request, "error",
               f"Password must be at least {config.MIN_PASSWORD_LENGTH} "
               "characters long")
        return _see_other(back)
    token = _bearer_token(request) or request.session.get("access_token")
    try:
        await auth.update_password(token, new_password)
    except AuthError as e:
        _flash(request, "error", e.message)
        return _see_other(back)
    _flash(request, "success", "Password updated successfully!")
    return _see_other(back)


@app.post("/orders/{order_id}/status")
async def update_order_form(
    order_id: str,
    request: Request,
    status: str = Form(...),
    tracking_number: str = Form(""),
    db: AsyncSession = Depends(get_db),
    user: AuthUser = Depends(require_user),
):
    tracking_number = tracking_number.strip()
    updates = {"tracking_number": tracking_number} if tracking_number else None
    await payment_store.update_order_status(db, order_id, user["id"], status, updates)
    _flash(request, "success", f"Order marked as {status}")
    return _see_other("/profile?tab=orders")


# ----------------------------
# Pages: checkout
# ----------------------------
@app.get("/checkout/complete", response_class=HTMLResponse)
async def checkout_complete_page(
    request: Request,
    payment_intent: str,
    user: AuthUser = Depends(require_user),
):
    return render(request, "checkout_complete.html", user,
                  payment_intent=payment_intent)


@app.get("/checkout/{product_id}", response_class=HTMLResponse)
async def checkout_page(
    request: Request,
    product_id: str,
    currency: str = DEFAULT_CHECKOUT_CURRENCY,
    status: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    user: AuthUser = Depends(require_user),
    payments: Optional[PaymentAdapter] = Depends(get_payments),
):
    product = await product_store.get_product(db, product_id, user["id"])
    if product is None:
        raise HTTPException(404, detail="Product not found")
    if product["seller_id"] == user["id"]:
        _flash(request, "error", "You cannot purchase your own product")
        return _see_other(f"/products/{product_id}")
    if product["status"] != "active":
        _flash(request, "error", "This product has already been sold")
        return _see_other(f"/products/{product_id}")

    currency = currency.upper()
    if not is_supported(currency):
        currency = DEFAULT_CHECKOUT_CURRENCY
    amount = convert_currency(product["price"], BASE_CURRENCY, currency)
    return render(
        request, "checkout.html", user,
        product=product,
        currency=currency,
        amount=amount,
        currencies=SUPPORTED_CURRENCIES,
        governorates=EGYPTIAN_GOVERNORATES,
        payment_methods=EGYPTIAN_PAYMENT_METHODS,
        payments_backend=payments.name if payments else None,
        stripe_publishable_key=config.STRIPE_PUBLISHABLE_KEY,
        status=status,
    )


@app.get("/test-payment", response_class=HTMLResponse)
async def test_payment_page(
    request: Request,
    db: AsyncSession = Depends(get_db),
    user: Optional[AuthUser] = Depends(current_user),
    payments: Optional[PaymentAdapter] = Depends(get_payments),
):
    candidates = await product_store.list_products(
        db, viewer_id=user["id"] if user else None, limit=20
    )
    if user:
        candidates = [p for p in candidates if p["seller_id"] != user["id"]]
    return render(request, "test_payment.html", user,
                  test_cards=STRIPE_TEST_CARDS,
                  products=candidates[:6],
                  payments_backend=payments.name if payments else None)


# ----------------------------
# MockPay UI (simple page with 2 buttons)
# ----------------------------
def _mockpay(payments: Optional[PaymentAdapter]) -> MockPay:
    if not isinstance(payments, MockPay):
        raise HTTPException(404, detail="MockPay is not enabled")
    return payments


@app.get("/mockpay/{intent_id}", response_class=HTMLResponse)
async def mockpay_screen(
    request: Request, intent_id: str,
    db: AsyncSession = Depends(get_db),
    payments: Optional[PaymentAdapter] = Depends(get_payments),
):
    _mockpay(payments)
    payment = await payment_store.get_payment_by_intent(db, intent_id)
    if payment is None:
        raise HTTPException(404, detail="payment not found")
    product = await product_store.get_product_row(db, payment.product_id)
    return render(request, "mockpay.html", None,
                  payment=payment_store.payment_to_dict(payment),
                  product_title=product.title if product else "",
                  webhook_url=config.MOCK_WEBHOOK_URL)


@app.post("/mockpay/{intent_id}/emit")
async def mockpay_emit(
    intent_id: str, request: Request,
    db: AsyncSession = Depends(get_db),
    payments: Optional[PaymentAdapter] = Depends(get_payments),
):
    mock = _mockpay(payments)
    form = await request.form()
    kind = form.get("t")  # succeeded|failed
    if kind not in {"succeeded", "failed"}:
        raise HTTPException(400, detail="invalid kind")

    payment = await payment_store.get_payment_by_intent(db, intent_id)
    if payment is None:
        raise HTTPException(404, detail="payment not found")
    product_id = payment.product_id

    event = mock.build_event(kind, intent_id,
                             to_minor_units(payment.amount),
                             payment.currency)
    payload = json.dumps(event).encode()

    client_http: httpx.AsyncClient = app.state.http
    try:
        await client_http.post(
            config.MOCK_WEBHOOK_URL,
            content=payload,
            headers={
                mock.signature_header: mock.sign(payload),
                "content-type": "application/json",
            },
        )
    except httpx.HTTPError as e:
        # the buyer can press the button again
        logger.warning("MockPay webhook delivery failed: %s", e)

    if kind == "succeeded":
        return _see_other(f"/checkout/complete?payment_intent={intent_id}")
    return _see_other(f"/checkout/{product_id}?status=failed")


# ----------------------------
# API: currencies & payment methods
# ----------------------------
@app.get("/api/currencies")
async def api_currencies():
    return {"currencies": SUPPORTED_CURRENCIES,
            "default": DEFAULT_CHECKOUT_CURRENCY,
            "base": BASE_CURRENCY}


@app.get("/api/currencies/convert")
async def api_convert_currency(
    amount: float,
    from_code: str = Query(BASE_CURRENCY, alias="from"),
    to_code: str = Query(DEFAULT_CHECKOUT_CURRENCY, alias="to"),
):
    converted = convert_currency(amount, from_code, to_code)
    return {
        "amount": amount,
        "from": from_code.upper(),
        "to": to_code.upper(),
        "converted": converted,
        "formatted": format_money(converted, to_code),
    }


@app.get("/api/payment-methods")
async def api_payment_methods():
    return {"items": EGYPTIAN_PAYMENT_METHODS}


# ----------------------------
# API: products & wishlist
# ----------------------------
class ProductIn(BaseModel):
    title: str = Field(min_length=1)
    description: str = ""
    price: float = Field(gt=0)
    category: str
    condition: str = "New"
    images: List[str] = Field(default_factory=list)


class ProductUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(default=None, gt=0)
    category: Optional[str] = None
    condition: Optional[str] = None
    images: Optional[List[str]] = None
    status: Optional[str] = None


@app.get("/api/products")
async def api_list_products(
    request: Request,
    db: AsyncSession = Depends(get_db),
    user: Optional[AuthUser] = Depends(current_user),
):
    items = await product_store.list_products(
        db, _filters_from_query(request),
        viewer_id=user["id"] if user else None,
    )
    return {"items": items}


@app.post("/api/products", status_code=201)
async def api_create_product(
    body: ProductIn,
    db: AsyncSession = Depends(get_db),
    user: AuthUser = Depends(require_user),
):
    if body.category not in config.CATEGORIES:
        raise HTTPException(400, detail=f"Unknown category: {body.category}")
    product = await product_store.create_product(db, user["id"], body.model_dump())
    return await product_store.get_product(db, product.id, user["id"])


@app.get("/api/products/{product_id}")
async def api_get_product(
    product_id: str,
    db: AsyncSession = Depends(get_db),
    user: Optional[AuthUser] = Depends(current_user),
):
    product = await product_store.get_product(
        db, product_id, viewer_id=user["id"] if user else None
    )
    if product is None:
        raise HTTPException(404, detail="Product not found")
    return product


@app.patch("/api/products/{product_id}")
async def api_update_product(
    product_id: str,
    body: ProductUpdate,
    db: AsyncSession = Depends(get_db),
    user: AuthUser = Depends(require_user),
):
    updates = body.model_dump(exclude_unset=True)
    if updates.get("category") and updates["category"] not in config.CATEGORIES:
        raise HTTPException(400, detail=f"Unknown category: {updates['category']}")
    return await product_store.update_product(db, product_id, user["id"], updates)


@app.delete("/api/products/{product_id}")
async def api_delete_product(
    product_id: str,
    db: AsyncSession = Depends(get_db),
    user: AuthUser = Depends(require_user),
):
    await product_store.delete_product(db, product_id, user["id"])
    return {"deleted": True}


@app.get("/api/wishlist")
async def api_get_wishlist(
    db: AsyncSession = Depends(get_db),
    user: AuthUser = Depends(require_user),
):
    return {"items": await product_store.get_wishlist(db, user["id"])}


@app.post("/api/wishlist/{product_id}")
async def api_add_to_wishlist(
    product_id: str,
    db: AsyncSession = Depends(get_db),
    user: AuthUser = Depends(require_user),
):
    result = await product_store.add_to_wishlist(db, user["id"], product_id)
    return ORJSONResponse(
        result, status_code=200 if result.get("alreadyExists") else 201
    )


@app.delete("/api/wishlist/{product_id}")
async def api_remove_from_wishlist(
    product_id: str,
    db: AsyncSession = Depends(get_db),
    user: AuthUser = Depends(require_user),
):
    removed = await product_store.remove_from_wishlist(db, user["id"], product_id)
    return {"removed": removed}


# ----------------------------
# API: profile
# ----------------------------
class ProfileIn(BaseModel):
    full_name: Optional[str] = None
    avatar_url: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None


@app.get("/api/profile")
async def api_get_profile(
    db: AsyncSession = Depends(get_db),
    user: AuthUser = Depends(require_user),
):
    profile = await profile_store.get_profile(db, user["id"])
    return {"profile": profile_store.profile_to_dict(profile) if profile else None}


@app.put("/api/profile")
async def api_upsert_profile(
    body: ProfileIn,
    db: AsyncSession = Depends(get_db),
    user: AuthUser = Depends(require_user),
):
    profile = await profile_store.upsert_profile(
        db, user["id"], body.model_dump(exclude_unset=True)
    )
    return {"profile": profile_store.profile_to_dict(profile)}


# ----------------------------
# API: payments & orders
# ----------------------------
class OrderStatusIn(BaseModel):
    status: str
    tracking_number: Optional[str] = None
    notes: Optional[str] = None
    shipping_address: Optional[Dict[str, Any]] = None


@app.get("/api/payments")
async def api_list_payments(
    db: AsyncSession = Depends(get_db),
    user: AuthUser = Depends(require_user),
):
    return {"items": await payment_store.list_user_payments(db, user["id"])}


@app.get("/api/payments/{intent_id}")
async def api_get_payment(
    intent_id: str,
    db: AsyncSession = Depends(get_db),
    user: AuthUser = Depends(require_user),
):
    # polled by the checkout-complete page
    payment = await payment_store.get_payment_by_intent(db, intent_id)
    if payment is None or user["id"] not in (payment.buyer_id, payment.seller_id):
        raise HTTPException(404, detail="payment not found")
    return payment_store.payment_to_dict(payment)


@app.get("/api/orders")
async def api_list_orders(
    db: AsyncSession = Depends(get_db),
    user: AuthUser = Depends(require_user),
):
    return {"items": await payment_store.list_user_orders(db, user["id"])}


@app.patch("/api/orders/{order_id}")
async def api_update_order(
    order_id: str,
    body: OrderStatusIn,
    db: AsyncSession = Depends(get_db),
    user: AuthUser = Depends(require_user),
):
    updates = body.model_dump(exclude_unset=True, exclude={"status"})
    return await payment_store.update_order_status(
        db, order_id, user["id"], body.status, updates
    )


# ----------------------------
# API: create payment intent
# ----------------------------
@app.post("/api/create-payment-intent")
async def create_payment_intent(
    payload: dict,
    request: Request,
    db: AsyncSession = Depends(get_db),
    auth: SupabaseAuth = Depends(get_auth),
    payments: Optional[PaymentAdapter] = Depends(get_payments),
):
    if payments is None:
        return _api_error(500, "Payment system not configured")
    # resolved here so a down auth service cannot mask the check above
    user = await current_user(request, auth)
    if user is None:
        return _api_error(401, "Unauthorized")

    product_id = payload.get("productId")
    currency = str(payload.get("currency") or DEFAULT_CHECKOUT_CURRENCY).upper()
    shipping = payload.get("shippingAddress")

    try:
        product = None
        if product_id:
            async with timeit("db.get_product"):
                product = await product_store.get_product_row(db, str(product_id))
        if product is None:
            return _api_error(404, "Product not found")

        # Prevent self-purchase
        if product.seller_id == user["id"]:
            return _api_error(400, "Cannot purchase your own product")
        if product.status != "active":
            return _api_error(400, "Product is no longer available")
        if not is_supported(currency):
            return _api_error(400, f"Unsupported currency: {currency}")

        amount = product.price
        if currency != BASE_CURRENCY:
            amount = convert_currency(product.price, BASE_CURRENCY, currency)

        intent = await payments.create_payment_intent(
            amount=amount,
            currency=currency,
            product_id=product.id,
            seller_id=product.seller_id,
            buyer_id=user["id"],
            metadata={
                "productTitle": product.title,
                "productCategory": product.category,
            },
        )
    except CurrencyError as e:
        return _api_error(400, e.message)
    except Exception:
        logger.exception("Error creating payment intent")
        return _api_error(500, "Failed to create payment intent")

    meta = {"shipping_address": shipping} if isinstance(shipping, dict) else None
    try:
        async with timeit("db.record_payment"):
            await payment_store.record_pending_payment(
                db, intent_id=intent["id"], product=product,
                buyer_id=user["id"], amount=amount, currency=currency,
                meta=meta,
            )
    except SQLAlchemyError:
        # the intent exists at the provider either way
        await db.rollback()
        logger.error("Error storing payment record", exc_info=True,
                     extra={"payment_intent_id": intent["id"]})

    return {
        "clientSecret": intent["client_secret"],
        "paymentIntentId": intent["id"],
        "amount": amount,
        "currency": currency,
        "formattedAmount": format_money(amount, currency),
    }


# ----------------------------
# Webhook endpoint (shared for Stripe/Mock)
# ----------------------------
async def _dispatch_event(db: AsyncSession, payments: PaymentAdapter,
                          event: dict) -> None:
    kind = payments.event_kind(event)
    obj = payments.event_object(event)
    intent_id = obj.get("id", "")

    if kind == EVENT_SUCCEEDED:
        async with timeit("db.complete_payment"):
            payment = await payment_store.complete_payment(
                db, intent_id, obj.get("payment_method")
            )
        if payment is None:
            logger.warning("no payment record for succeeded intent",
                           extra={"payment_intent_id": intent_id})
            return
        product_id = payment.product_id
        async with timeit("db.create_order"):
            await payment_store.create_order_for_payment(db, payment)
        async with timeit("db.mark_sold"):
            await product_store.mark_product_sold(db, product_id)
        logger.info("payment completed",
                    extra={"payment_intent_id": intent_id,
                           "product_id": product_id})

    elif kind == EVENT_FAILED:
        async with timeit("db.fail_payment"):
            await payment_store.fail_payment(db, intent_id)
        logger.info("payment failed", extra={"payment_intent_id": intent_id})

    else:
        logger.info("Unhandled event type: %s", kind,
                    extra={"event_type": kind})


@app.post("/api/webhooks/stripe")
async def payments_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    payments: Optional[PaymentAdapter] = Depends(get_payments),
    events=Depends(webhook_events),
):
    if payments is None or not payments.webhook_configured:
        logger.warning("Stripe webhook not configured")
        return _api_error(500, "Webhook not configured")

    payload = await request.body()
    signature = request.headers.get(payments.signature_header)
    if not signature:
        return _api_error(400, "No signature")

    try:
        event = payments.verify_webhook(payload, signature)
    except InvalidSignature as e:
        logger.warning("Webhook signature verification failed: %s", e)
        return _api_error(400, "Invalid signature")

    event_id = ""
    marked = False
    try:
        event_id = payments.event_id(event)
        if not await events.mark_event_seen(event_id):
            return {"received": True, "duplicate": True}
        marked = True
        await _dispatch_event(db, payments, event)
    except Exception:
        logger.exception("Webhook error", extra={"event_id": event_id})
        await db.rollback()
        if marked:
            # let the provider's retry run the dispatch again
            await events.forget_event(event_id)
        return _api_error(500, "Webhook handler failed")

    return {"received": True}
