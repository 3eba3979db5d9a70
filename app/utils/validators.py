"""Input validation helpers for the transfer flows."""

import re
from decimal import Decimal
from typing import Optional, Tuple

from app.utils.amount_converter import AmountConverter

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
WALLET_ADDRESS_PREFIX = "0x"
WALLET_ADDRESS_LENGTH = 42


def is_valid_email(email: str) -> bool:
    return bool(EMAIL_PATTERN.match(email))


def is_valid_wallet_address(address: str) -> bool:
    return address.startswith(WALLET_ADDRESS_PREFIX) and len(address) == WALLET_ADDRESS_LENGTH


def validate_amount(
    amount_text: str, minimum: Optional[Decimal] = None
) -> Tuple[bool, Optional[Decimal], Optional[str]]:
    """
    Validate an amount typed by the user.

    Returns (is_valid, amount, error) where error is ``"format"`` when the
    text is not a positive number or has more decimal places than the API
    carries, and ``"minimum"`` when it is below ``minimum``.
    """
    amount = AmountConverter.parse_positive(amount_text)
    if amount is None:
        return False, None, "format"
    # Anything finer than the fixed-point scale would be truncated on submit
    if amount.normalize().as_tuple().exponent < -AmountConverter.DECIMALS:
        return False, None, "format"
    if minimum is not None and amount < minimum:
        return False, amount, "minimum"
    return True, amount, None
