"""Formatting utilities for alert text."""

from __future__ import annotations

from typing import Union

CURRENCY_SYMBOLS = {'USD': '$', 'CAD': '$', 'AUD': '$', 'EUR': '€', 'GBP': '£', 'JPY': '¥'}


def format_currency(amount: Union[float, int], currency: str = 'USD') -> str:
    """Format a currency amount with separators and the currency's symbol.

    Example:
        >>> format_currency(1234.5)
        '$1,234.50'
        >>> format_currency(-20, 'GBP')
        '-£20.00'
    """
    symbol = CURRENCY_SYMBOLS.get(currency.upper(), f"{currency.upper()} ")
    sign = '-' if amount < 0 else ''
    return f"{sign}{symbol}{abs(amount):,.2f}"


def format_percent(value: float) -> str:
    """Format a percentage without trailing zeros, e.g. ``85%`` or ``92.5%``."""
    return f"{value:.1f}".rstrip('0').rstrip('.') + '%'
