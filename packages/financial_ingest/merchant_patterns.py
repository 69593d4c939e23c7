"""Declarative rule tables for transaction categorization.

Three tables, all immutable and shared process-wide:

- ``MERCHANT_PATTERNS``: regexes over an accent-stripped, lower-cased
  description. Among all matches the highest ``priority`` wins; ties go to the
  earlier entry. Each carries a display ``summary`` for the merchant.
- ``CATEGORY_RULES``: ordered substring rules gated by amount sign, applied
  when neither a pattern nor the AI tier produced a category.
- ``CATEGORY_KEYWORDS``: per-category keyword lists for the last-resort
  scoring pass.

Category names here are hints in the default taxonomy; the engine resolves
them against the caller's taxonomy before emitting anything.
"""

from __future__ import annotations

import re

from .models import CategoryRule, MerchantPattern


def _p(
    regex: str,
    summary: str,
    category: str,
    priority: int = 10,
    amount_sign: str = "any",
) -> MerchantPattern:
    return MerchantPattern(
        pattern=re.compile(regex),
        summary=summary,
        category=category,
        priority=priority,
        amount_sign=amount_sign,  # type: ignore[arg-type]
    )


MERCHANT_PATTERNS: tuple[MerchantPattern, ...] = (
    # E-commerce
    _p(r"\bamazon\b|\bamzn\b", "Amazon", "Shopping"),
    _p(r"zalando", "Zalando", "Shopping"),
    _p(r"aliexpress", "AliExpress", "Shopping"),
    _p(r"\bebay\b", "eBay", "Shopping"),
    _p(r"\bshein\b", "Shein", "Shopping"),
    _p(r"\bzara\b", "Zara", "Shopping"),
    _p(r"\bikea\b", "IKEA", "Shopping"),
    _p(r"el corte ingles|corte\s*ingles", "El Corte Ingles", "Shopping"),
    _p(r"\bapple\b|\bitunes\b", "Apple", "Shopping", priority=5),
    # Streaming and subscriptions
    _p(r"netflix", "Netflix", "Utilities"),
    _p(r"spotify", "Spotify", "Utilities"),
    _p(r"disney\s*\+|disneyplus|disney\s*plus", "Disney+", "Utilities"),
    _p(r"\bhbo\b", "HBO Max", "Utilities"),
    _p(r"youtube|google\s*play", "Google/YouTube", "Utilities"),
    # Supermarkets
    _p(r"mercadona", "Mercadona", "Groceries", priority=20),
    _p(r"carrefour", "Carrefour", "Groceries", priority=20),
    _p(r"\blidl\b", "Lidl", "Groceries", priority=20),
    _p(r"\baldi\b", "Aldi", "Groceries", priority=20),
    _p(r"eroski", "Eroski", "Groceries", priority=20),
    _p(r"\bdia\b|dia retail", "DIA", "Groceries", priority=15),
    _p(r"alcampo", "Alcampo", "Groceries", priority=20),
    _p(r"hipercor", "Hipercor", "Groceries", priority=20),
    _p(r"\bconsum\b", "Consum", "Groceries", priority=20),
    # Transport
    _p(r"\buber\b(?!\s*eats)", "Uber", "Transport"),
    _p(r"\blyft\b", "Lyft", "Transport"),
    _p(r"cabify", "Cabify", "Transport"),
    _p(r"\bbolt\b(?!\s*food)", "Bolt", "Transport"),
    _p(r"\brenfe\b", "Renfe", "Transport"),
    _p(r"\bmetro\b|\btmb\b|\bemt\b", "Public Transport", "Transport", priority=5),
    _p(r"repsol|cepsa|\bbp\b|\bshell\b|gasolinera", "Gas Station", "Transport"),
    _p(r"vueling", "Vueling", "Transport"),
    _p(r"ryanair", "Ryanair", "Transport"),
    _p(r"\biberia\b", "Iberia", "Transport"),
    # Food delivery and restaurants
    _p(r"ubereats|uber\s*eats", "Uber Eats", "Restaurants", priority=20),
    _p(r"glovo", "Glovo", "Restaurants"),
    _p(r"just\s*eat", "Just Eat", "Restaurants"),
    _p(r"deliveroo", "Deliveroo", "Restaurants"),
    _p(r"doordash", "DoorDash", "Restaurants"),
    _p(r"starbucks", "Starbucks", "Restaurants"),
    _p(r"mcdonald", "McDonald's", "Restaurants"),
    _p(r"burger\s*king", "Burger King", "Restaurants"),
    _p(r"telepizza", "Telepizza", "Restaurants"),
    _p(r"domino'?s", "Domino's", "Restaurants"),
    # Insurance
    _p(r"mapfre", "Mapfre", "Insurance"),
    _p(r"\baxa\b", "AXA", "Insurance"),
    _p(r"allianz", "Allianz", "Insurance"),
    _p(r"sanitas", "Sanitas", "Insurance"),
    _p(r"\basisa\b", "Asisa", "Insurance"),
    _p(r"\bdkv\b", "DKV", "Insurance"),
    _p(r"seguro|insurance|poliza", "Insurance", "Insurance", priority=5),
    # Telecom and energy
    _p(r"movistar|telefonica", "Movistar", "Utilities"),
    _p(r"vodafone", "Vodafone", "Utilities"),
    _p(r"\borange\b", "Orange", "Utilities"),
    _p(r"\byoigo\b", "Yoigo", "Utilities"),
    _p(r"\bdigi\b", "Digi", "Utilities"),
    _p(r"masmovil", "MasMovil", "Utilities"),
    _p(r"iberdrola", "Iberdrola", "Utilities"),
    _p(r"endesa", "Endesa", "Utilities"),
    _p(r"naturgy|gas\s*natural", "Naturgy", "Utilities"),
    # Money movements
    _p(r"\bbizum\b", "Bizum Transfer", "Transfers", priority=5),
    _p(r"paypal", "PayPal", "Transfers", priority=5),
    _p(r"transferencia|\btransfer\b", "Bank Transfer", "Transfers", priority=5),
    _p(r"nomina|salario|sueldo|payroll|\bsalary\b", "Salary", "Income", priority=30, amount_sign="positive"),
    _p(r"\bingreso\b|deposito", "Deposit", "Income", priority=5, amount_sign="positive"),
    # Taxes and fees
    _p(r"comision", "Bank Fee", "Taxes & Fees"),
    _p(r"hacienda|agencia\s*tributaria", "Tax Agency", "Taxes & Fees"),
    _p(r"impuesto|\biva\b", "Tax", "Taxes & Fees", priority=5),
    # Travel and lodging
    _p(r"booking\.com|\bbooking\b", "Booking.com", "Shopping"),
    _p(r"airbnb", "Airbnb", "Shopping"),
    _p(r"\bhotel\b", "Hotel", "Shopping", priority=5),
)


def _r(category: str, patterns: tuple[str, ...], amount_sign: str = "any", priority: int = 0) -> CategoryRule:
    return CategoryRule(category=category, patterns=patterns, amount_sign=amount_sign, priority=priority)  # type: ignore[arg-type]


# Checked top to bottom; the first rule whose sign gate passes and whose
# substrings hit wins (an empty pattern list hits anything). Positive amounts
# without a transfer keyword are income.
CATEGORY_RULES: tuple[CategoryRule, ...] = (
    _r("Transfers", ("transfer", "transferencia", "ingreso", "bizum"), "positive"),
    _r("Income", (), "positive"),
    _r("Transfers", ("transfer", "transferencia", "bizum"), "negative"),
    _r(
        "Utilities",
        (
            "digi",
            "telecom",
            "internet",
            "phone",
            "utility",
            "electric",
            "water",
            "recibo",
            "netflix",
            "spotify",
        ),
        "negative",
    ),
    _r("Insurance", ("mapfre", "seguro", "insurance", "poliza"), "negative"),
    _r("Shopping", ("zalando", "amazon", "shopping", "compra", "hotel", "booking"), "negative"),
    _r(
        "Groceries",
        ("grocer", "supermarket", "mercadona", "carrefour", "food", "tienda", "lidl", "aldi"),
        "negative",
    ),
    _r(
        "Restaurants",
        ("restaurant", "cafe", "bar ", "starbucks", "comida", "glovo", "just eat", "deliveroo"),
        "negative",
    ),
    _r(
        "Transport",
        ("uber", "taxi", "metro", "bus ", "transport", "gasolina", "renfe", "cabify"),
        "negative",
    ),
    _r("Taxes & Fees", ("comision", "fee", "tax", "impuesto"), "negative"),
    _r("Savings", ("saving", "ahorro"), "any"),
)

# Keyword lists for the scoring pass. Keywords of six or more characters
# count double.
CATEGORY_KEYWORDS: tuple[CategoryRule, ...] = (
    _r("Groceries", ("super", "mercado", "market", "fruteria", "carniceria", "panaderia", "alimentacion"), "negative"),
    _r("Restaurants", ("rest", "bar", "cafeteria", "pizza", "burger", "kebab", "sushi", "tapas"), "negative"),
    _r("Shopping", ("shop", "store", "tienda", "moda", "fashion", "outlet", "libreria"), "negative"),
    _r("Transport", ("parking", "peaje", "toll", "fuel", "gasoil", "diesel", "autobus", "train", "tren"), "negative"),
    _r("Utilities", ("luz", "agua", "gas", "fibra", "movil", "mobile", "energia", "energy"), "negative"),
    _r("Insurance", ("seguros", "aseguradora", "mutua", "cover"), "negative"),
    _r("Taxes & Fees", ("tasa", "tributo", "multa", "cuota", "mantenimiento", "charge"), "negative"),
    _r("Income", ("abono", "devolucion", "refund", "reembolso", "bonus", "interest", "intereses"), "positive"),
    _r("Transfers", ("traspaso", "envio", "sent", "received", "recibida"), "any"),
    _r("Savings", ("invest", "inversion", "fondo", "deposit"), "any"),
)


__all__ = ["CATEGORY_KEYWORDS", "CATEGORY_RULES", "MERCHANT_PATTERNS"]
