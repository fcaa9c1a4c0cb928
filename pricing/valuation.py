"""
Valuation helpers.

Raw balances can exceed 2**256, so all math runs on Decimal in a
local context wide enough to hold them exactly.
"""

from decimal import Decimal, localcontext

from core.constants import VALUATION_PRECISION


def value_usd(balance: int, decimals: int, price: Decimal) -> Decimal:
    """
    USD value of a raw integer balance.

    Args:
        balance: Raw token units
        decimals: Token decimals (balance / 10**decimals = whole tokens)
        price: USD price of one whole token

    Returns:
        balance / 10**decimals * price
    """
    if balance == 0 or price == 0:
        return Decimal(0)
    with localcontext() as ctx:
        ctx.prec = VALUATION_PRECISION
        return Decimal(balance).scaleb(-decimals) * price


def to_token_units(balance: int, decimals: int) -> Decimal:
    """Raw units to whole tokens, exactly."""
    with localcontext() as ctx:
        ctx.prec = VALUATION_PRECISION
        return Decimal(balance).scaleb(-decimals)
