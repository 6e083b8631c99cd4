"""Helpers for integer cent amounts."""


def format_cents(amount_cents: int) -> str:
    """Render cents as a dollar string, e.g. ``1050 -> "$10.50"``."""

    sign = "-" if amount_cents < 0 else ""
    whole, cents = divmod(abs(amount_cents), 100)
    return f"{sign}${whole:,}.{cents:02d}"
