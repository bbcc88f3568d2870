"""Integer money helpers. Amounts are minor currency units (satang for THB)."""


def percent_of(amount: int, percent: int) -> int:
    """Return amount * percent / 100 rounded half-up, in integer arithmetic.

    Both arguments must be non-negative.
    """
    if amount < 0 or percent < 0:
        raise ValueError("amount and percent must be non-negative")
    return (amount * percent + 50) // 100


def format_major(amount: int) -> str:
    """Render minor units as a major-unit string: 50000 -> '500', 50050 -> '500.5'."""
    whole, fraction = divmod(amount, 100)
    if fraction == 0:
        return str(whole)
    return f"{whole}.{fraction:02d}".rstrip("0")


def format_currency(amount: int, currency: str = "THB") -> str:
    """Render minor units with two decimals and thousands separators."""
    whole, fraction = divmod(amount, 100)
    return f"{whole:,}.{fraction:02d} {currency}"
