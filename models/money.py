"""Helpers for cent-exact monetary arithmetic."""
from decimal import ROUND_HALF_UP, Decimal
from typing import Annotated, Union

from pydantic import BeforeValidator

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value: Union[Decimal, int, float, str]) -> Decimal:
    """Quantise a value to cents. Floats go through str() so 0.1 stays 0.10."""
    if isinstance(value, float):
        value = str(value)
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


# Field type for every monetary amount on the models
Money = Annotated[Decimal, BeforeValidator(to_money)]
