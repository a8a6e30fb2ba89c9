from typing import Dict, List, TypedDict

from .errors import CurrencyError

# Listing prices are entered and stored in USD.
BASE_CURRENCY = "USD"
DEFAULT_CHECKOUT_CURRENCY = "EGP"


class CurrencyInfo(TypedDict):
    code: str
    name: str
    symbol: str


class PaymentMethodInfo(TypedDict):
    id: str
    name: str
    description: str
    available: bool


SUPPORTED_CURRENCIES: List[CurrencyInfo] = [
    {"code": "EGP", "name": "Egyptian Pound", "symbol": "ج.م"},
    {"code": "USD", "name": "US Dollar", "symbol": "$"},
    {"code": "EUR", "name": "Euro", "symbol": "€"},
]

# Static table; swap for an exchange rate API before going live.
RATES: Dict[str, Dict[str, float]] = {
    "USD": {"EGP": 31.0, "EUR": 0.85},
    "EGP": {"USD": 0.032, "EUR": 0.027},
    "EUR": {"USD": 1.18, "EGP": 36.5},
}

EGYPTIAN_PAYMENT_METHODS: List[PaymentMethodInfo] = [
    {"id": "card", "name": "Credit/Debit Card",
     "description": "Visa, Mastercard, Meeza", "available": True},
    {"id": "bank_transfer", "name": "Bank Transfer",
     "description": "Coming soon", "available": False},
    {"id": "wallet", "name": "Mobile Wallet",
     "description": "Coming soon", "available": False},
]

_SYMBOLS = {c["code"]: c["symbol"] for c in SUPPORTED_CURRENCIES}


def is_supported(code: str) -> bool:
    return code.upper() in _SYMBOLS


def convert_currency(amount: float, from_code: str, to_code: str) -> float:
    from_code, to_code = from_code.upper(), to_code.upper()
    if from_code == to_code:
        return amount
    rate = RATES.get(from_code, {}).get(to_code)
    if not rate:
        raise CurrencyError(
            f"Conversion rate not available for {from_code} to {to_code}"
        )
    return round(amount * rate, 2)


def to_minor_units(amount: float) -> int:
    # cents / piastres
    return int(round(amount * 100))


def format_money(amount: float, code: str) -> str:
    code = code.upper()
    symbol = _SYMBOLS.get(code)
    if symbol is None:
        return f"{amount} {code}"
    if code == "EGP":
        return f"{amount:,.2f} {symbol}"
    return f"{symbol}{amount:,.2f}"
