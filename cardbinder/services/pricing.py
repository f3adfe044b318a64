"""Market price display."""

from typing import Literal

Currency = Literal["USD", "EUR"]

# Fixed conversion applied to USD market prices; no live rates.
EUR_RATE = 0.85 * 0.85

PRICE_PLACEHOLDER = "—"

_SYMBOLS: dict[str, str] = {"USD": "$", "EUR": "€"}


def convert_usd_to_eur(usd: float) -> float:
    return usd * EUR_RATE


def format_price(
    value: float | None,
    currency: Currency = "USD",
    placeholder: str = PRICE_PLACEHOLDER,
) -> str:
    """
    Format a USD market price for display.

    Examples:
        format_price(2.5)          -> "$2.50"
        format_price(2.5, "EUR")   -> "€1.81"
        format_price(None)         -> "—"
    """
    if value is None:
        return placeholder
    amount = convert_usd_to_eur(value) if currency == "EUR" else value
    return f"{_SYMBOLS[currency]}{amount:.2f}"
