"""
Validation at ingestion boundaries. Every float() conversion of upstream
orderbook data goes through these, so NaN/Inf/out-of-range values never reach
the math components.
"""

from __future__ import annotations

import math


def validate_price(p: float, context: str = "price") -> float:
    """
    Validate a price value is within [0.0, 1.0] and finite.

    Raises:
        ValueError: If price is NaN, infinite, negative, or > 1.0.
    """
    if math.isnan(p):
        raise ValueError(f"Invalid {context}: NaN")
    if math.isinf(p):
        raise ValueError(f"Invalid {context}: Inf")
    if p < 0.0:
        raise ValueError(f"Invalid {context}: negative value {p}")
    if p > 1.0:
        raise ValueError(f"Invalid {context}: {p} out of range [0.0, 1.0]")
    return p


def validate_size(s: float, context: str = "size") -> float:
    """
    Validate a size/quantity value is non-negative and finite.

    Raises:
        ValueError: If size is NaN, infinite, or negative.
    """
    if math.isnan(s):
        raise ValueError(f"Invalid {context}: NaN")
    if math.isinf(s):
        raise ValueError(f"Invalid {context}: Inf")
    if s < 0.0:
        raise ValueError(f"Invalid {context}: negative value {s}")
    return s


def validate_rate(r: float, context: str = "fee rate") -> float:
    """
    Validate a fee rate is a finite fraction in [0.0, 1.0).

    A rate of 1.0 or above would consume the whole notional and is treated as
    a decoding error rather than a real fee.
    """
    if math.isnan(r) or math.isinf(r):
        raise ValueError(f"Invalid {context}: {r}")
    if r < 0.0 or r >= 1.0:
        raise ValueError(f"Invalid {context}: {r} out of range [0.0, 1.0)")
    return r


def parse_level(raw_price, raw_size, context: str = "level") -> tuple[float, float]:
    """Convert a raw (price, size) pair from the wire into validated floats."""
    try:
        price = float(raw_price)
        size = float(raw_size)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Unparsable {context}: price={raw_price!r} size={raw_size!r}") from e
    return validate_price(price, f"{context} price"), validate_size(size, f"{context} size")
