#!/usr/bin/env python3
"""
Amount Converter Utility
Centralized conversion between display amounts and the 8-decimal fixed-point
integers the Copperx API expects.
"""

from decimal import Decimal, InvalidOperation, ROUND_DOWN, ROUND_HALF_UP
from typing import Optional, Union

Number = Union[int, str, Decimal]


class AmountConverter:
    """
    Centralized amount conversion utility.
    Keeps the 10^8 scale factor in one place.
    """

    # Constants
    DECIMALS = 8
    SCALE = Decimal(10) ** DECIMALS

    @classmethod
    def to_fixed_point(cls, amount: Number) -> int:
        """
        Convert a display amount to its fixed-point integer.

        Args:
            amount: Amount in whole units (e.g. "12.5" USDC)

        Returns:
            Amount scaled by 10^8, truncated towards zero
        """
        scaled = Decimal(str(amount)) * cls.SCALE
        return int(scaled.to_integral_value(rounding=ROUND_DOWN))

    @classmethod
    def from_fixed_point(cls, amount: Number) -> Decimal:
        """
        Convert a fixed-point integer (int or digit string) to a display amount.

        Args:
            amount: Amount scaled by 10^8

        Returns:
            Amount in whole units
        """
        return Decimal(str(amount)) / cls.SCALE

    @staticmethod
    def quantize(amount: Number, places: int = 2) -> str:
        """Round half-up to a fixed number of decimal places and render it."""
        exponent = Decimal(1).scaleb(-places)
        return str(Decimal(str(amount)).quantize(exponent, rounding=ROUND_HALF_UP))

    @classmethod
    def format_fixed_point(cls, amount: Number, symbol: str = "", places: int = 2) -> str:
        """Format a fixed-point integer for display, e.g. ``9.90 USDC``."""
        text = cls.quantize(cls.from_fixed_point(amount), places)
        return f"{text} {symbol}" if symbol else text

    @staticmethod
    def parse_positive(text: str) -> Optional[Decimal]:
        """
        Parse user input as a strictly positive, finite decimal.

        Returns:
            The parsed amount, or None when the text is not a positive number
        """
        try:
            value = Decimal(text.strip())
        except (InvalidOperation, AttributeError):
            return None
        if not value.is_finite() or value <= 0:
            return None
        return value
