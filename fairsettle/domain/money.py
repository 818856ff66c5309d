"""Integer minor-unit money.

Amounts inside the engine are always ``MinorUnits`` (cents). Display amounts
(``Decimal`` dollars) are converted with ``from_display``/``to_display`` at the
I/O boundary only.
"""

from decimal import Decimal, InvalidOperation

MINOR_PER_MAJOR = 100


def _as_int(value) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(
            f"minor units only combine with integers, got {type(value).__name__}"
        )
    return int(value)


class MinorUnits(int):
    """An ``int`` that refuses to mix with floats, decimals or fractions."""

    def __new__(cls, value=0):
        return super().__new__(cls, _as_int(value))

    def __add__(self, other):
        return MinorUnits(int(self) + _as_int(other))

    __radd__ = __add__

    def __sub__(self, other):
        return MinorUnits(int(self) - _as_int(other))

    def __rsub__(self, other):
        return MinorUnits(_as_int(other) - int(self))

    def __mul__(self, other):
        return MinorUnits(int(self) * _as_int(other))

    __rmul__ = __mul__

    def __floordiv__(self, other):
        return MinorUnits(int(self) // _as_int(other))

    def __neg__(self):
        return MinorUnits(-int(self))

    def __truediv__(self, other):
        raise TypeError("true division of minor units would produce a float")

    def __repr__(self) -> str:
        return f"MinorUnits({int(self)})"


def from_display(amount: Decimal | str) -> MinorUnits:
    """Convert a display amount such as ``Decimal("10.25")`` to ``MinorUnits(1025)``.

    Args:
        amount (Decimal | str): Amount in major currency units, at most two decimals

    Returns:
        MinorUnits: The same amount in minor units
    """
    try:
        value = Decimal(amount) * MINOR_PER_MAJOR
    except (InvalidOperation, TypeError) as e:
        raise ValueError(f"not a currency amount: {amount!r}") from e
    if not value.is_finite() or value != value.to_integral_value():
        raise ValueError(f"amount has more than two decimal places: {amount!r}")
    return MinorUnits(int(value))


def to_display(amount: int) -> Decimal:
    return (Decimal(_as_int(amount)) / MINOR_PER_MAJOR).quantize(Decimal("0.01"))
