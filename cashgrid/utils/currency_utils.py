"""
Currency utility functions.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Iterable, Optional

CENT = Decimal('0.01')
ZERO = Decimal('0.00')


class CurrencyUtils:
    """Utility functions for amount parsing, rounding and display."""

    # Common currency symbols
    CURRENCY_SYMBOLS = {
        'USD': '$',
        'CRC': '₡',
        'EUR': '€',
        'GBP': '£',
        'JPY': '¥'
    }

    @staticmethod
    def round2(amount: Any) -> Decimal:
        """Coerce to Decimal and round half-up to 2 decimal places."""
        try:
            if isinstance(amount, Decimal):
                value = amount
            elif isinstance(amount, float):
                value = Decimal(repr(amount))
            else:
                value = Decimal(str(amount).strip())
        except InvalidOperation:
            raise ValueError(f"Not an amount: {amount!r}")
        if not value.is_finite():
            raise ValueError(f"Non-finite amount: {amount!r}")
        try:
            return value.quantize(CENT, rounding=ROUND_HALF_UP)
        except InvalidOperation:
            raise ValueError(f"Amount out of range: {amount!r}")

    @staticmethod
    def parse_amount(amount_str: str) -> Optional[Decimal]:
        """Parse a locale formatted amount, e.g. ``1,234.50``, ``$-12`` or ``(1,000)``.

        Returns None when the text is not a number.
        """
        if amount_str is None or str(amount_str).strip() == '':
            return None

        cleaned = str(amount_str).strip()
        for symbol in CurrencyUtils.CURRENCY_SYMBOLS.values():
            cleaned = cleaned.replace(symbol, '')
        cleaned = cleaned.replace(',', '').replace(' ', '')

        negative = False
        if cleaned.startswith('(') and cleaned.endswith(')'):
            negative = True
            cleaned = cleaned[1:-1]

        try:
            value = Decimal(cleaned)
        except (InvalidOperation, ValueError, TypeError):
            return None
        if not value.is_finite():
            return None
        return -value if negative else value

    @staticmethod
    def parse_cell_input(raw: str) -> Decimal:
        """Parse grid cell input; anything unparseable becomes 0."""
        value = CurrencyUtils.parse_amount(raw)
        if value is None:
            return ZERO
        try:
            return CurrencyUtils.round2(value)
        except ValueError:
            return ZERO

    @staticmethod
    def format_amount(amount: Decimal, currency: str = 'USD', show_symbol: bool = False) -> str:
        """Accounting format: ``1,234.56`` or ``(1,234.56)`` for negatives."""
        if amount is None:
            return "N/A"

        rounded_amount = CurrencyUtils.round2(amount)
        formatted = f"{abs(rounded_amount):,.2f}"

        if show_symbol:
            symbol = CurrencyUtils.CURRENCY_SYMBOLS.get(currency.upper(), currency)
            formatted = f"{symbol}{formatted}"

        return f"({formatted})" if rounded_amount < 0 else formatted

    @staticmethod
    def sum_amounts(amounts: Iterable[Decimal]) -> Decimal:
        """Sum decimal amounts safely."""
        return sum(amounts, ZERO)
