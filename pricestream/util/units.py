from decimal import Decimal, InvalidOperation, ROUND_DOWN, getcontext
from typing import Union

from pricestream.errors import InvalidInputError

getcontext().prec = 60  # 18-decimal token amounts need the headroom

# Quote input precision per side
STABLECOIN_DECIMALS = 6
TOKEN_DECIMALS = 18


def parse_units(amount: Union[str, Decimal], decimals: int) -> int:
    """
    Convert a human decimal string to integer base units, truncating extra precision.

    Raises InvalidInputError for empty, non-numeric, non-finite or out-of-range input.
    """
    text = str(amount).strip()
    if not text:
        raise InvalidInputError("Amount is empty")
    try:
        d = Decimal(text)
    except InvalidOperation:
        raise InvalidInputError("Amount is not a number", {"amount": text})
    if not d.is_finite():
        raise InvalidInputError("Amount is not finite", {"amount": text})

    q = Decimal(10) ** -decimals
    try:
        d = d.quantize(q, rounding=ROUND_DOWN)
        return int(d.scaleb(decimals))
    except InvalidOperation:
        raise InvalidInputError("Amount out of range", {"amount": text, "decimals": decimals})


def quote_decimals(is_buy: bool) -> int:
    """Buy amounts are stablecoin, sell amounts are commodity tokens."""
    return STABLECOIN_DECIMALS if is_buy else TOKEN_DECIMALS
