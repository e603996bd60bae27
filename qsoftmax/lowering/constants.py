from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

import numpy as np

from qsoftmax.utils.enums import INT_DTYPES_BY_BITS


# Largest possible (x - max(x)) magnitude for an int8 operand.
INT8_MAX_SPREAD = 255
# Shift amounts are only defined inside [0, MAX_SHIFT] for the int64 domain.
MAX_SHIFT = 63
INT64_MAX = (1 << 63) - 1


class ShiftGuard(str, Enum):
    SATURATE = "saturate"
    STRICT = "strict"

    @classmethod
    def resolve(cls, value: Optional[Any] = None) -> "ShiftGuard":
        if value is None:
            value = os.environ.get("QSOFTMAX_SHIFT_GUARD", cls.SATURATE.value)
        if isinstance(value, ShiftGuard):
            return value
        v = str(value).strip().lower()
        for guard in cls:
            if guard.value == v:
                return guard
        raise ValueError(
            f"shift guard must be one of {[g.value for g in cls]}. got: {value}"
        )


def _shift_based_scale(shifted: int) -> int:
    return shifted + (shifted >> 1) - (shifted >> 4)


@dataclass(frozen=True)
class AlgorithmConstants:
    """Fixed-point budget of the integer softmax.

    n: headroom of the exponent left shift.
    m: fractional bits kept while dividing by the exponent sum.
    bits: precision of the value handed to the requantize step.

    The three are coupled, so they are validated together.
    """
    n: int = 30
    m: int = 60
    bits: int = 8

    def __post_init__(self) -> None:
        if int(self.bits) not in INT_DTYPES_BY_BITS:
            raise ValueError(
                f"bits must be one of {sorted(INT_DTYPES_BY_BITS.keys())}. got: {self.bits}"
            )
        if not 1 <= int(self.n) <= MAX_SHIFT - 1:
            raise ValueError(f"n must be in [1, {MAX_SHIFT - 1}]. got: {self.n}")
        if not int(self.bits) < int(self.m) <= MAX_SHIFT - 1:
            raise ValueError(
                f"m must satisfy bits < m <= {MAX_SHIFT - 1}. m={self.m} bits={self.bits}"
            )

    @property
    def output_dtype(self) -> str:
        return INT_DTYPES_BY_BITS[int(self.bits)]

    @property
    def synthetic_scale(self) -> np.float32:
        # Power of two, exact in float32.
        return np.float32(1.0 / float(1 << int(self.bits)))

    @property
    def normalizer(self) -> int:
        return 1 << int(self.m)

    @property
    def output_shift(self) -> int:
        return int(self.m) - int(self.bits)

    def max_quotient(self, x0: int) -> int:
        """Largest `q` step 7 can produce for an int8 operand and reciprocal `x0`."""
        adjusted_min = _shift_based_scale(-INT8_MAX_SPREAD)
        return (-adjusted_min) // int(x0)

    def shift_in_range(self, x0: int) -> bool:
        return self.max_quotient(x0) <= int(self.n)

    def exp_sum_bound(self, x0: int, extent: int = 1) -> int:
        """Upper bound of the exponent sum over `extent` lanes, each at most `x0 << n`."""
        return int(extent) * (int(x0) << int(self.n))


DEFAULT_ALGORITHM_CONSTANTS = AlgorithmConstants()
