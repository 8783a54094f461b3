"""Symbol validation for anything that turns a symbol into a storage key."""

from __future__ import annotations

import re

from .exceptions import InvalidSymbolError

SYMBOL_PATTERN = re.compile(r"^[A-Z0-9]+$")


def validate_symbol(symbol: str) -> str:
    """
    Return ``symbol`` if it is uppercase alphanumeric.

    Raises:
        InvalidSymbolError: For anything else, including path separators.
    """
    if not isinstance(symbol, str) or not SYMBOL_PATTERN.match(symbol):
        raise InvalidSymbolError(f"invalid symbol: {symbol!r}")
    return symbol
