from decimal import Decimal, ROUND_HALF_UP

from app.core.config import settings

MONEY_QUANT = Decimal("0.01")
ZERO_MONEY = Decimal("0.00")
AD_PLATFORM_CURRENCY = "USD"


def to_money(value: Decimal | int | float | str) -> Decimal:
    return Decimal(str(value)).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def normalize_currency_code(value: str | None) -> str:
    return (value or "").strip().upper()


def convert_to_usd(value: Decimal | int | float | str, currency: str | None) -> float:
    """Ad platforms are always reported in USD; IQD amounts use the configured rate."""
    amount = Decimal(str(value))
    if normalize_currency_code(currency) == "IQD":
        amount = amount / Decimal(str(settings.iqd_to_usd_rate))
    return float(to_money(amount))
