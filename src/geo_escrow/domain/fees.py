"""FeeSplitter — platform fee computation in integer minor units.

The fee is ``gross * rate`` rounded half-up to a whole minor unit, computed
entirely in integers so that ``fee + net == gross`` holds exactly for every
amount. Floats never touch money here.
"""

from __future__ import annotations

from dataclasses import dataclass

BASIS_POINTS_PER_UNIT = 10_000


@dataclass(frozen=True)
class FeeSplit:
    gross_minor_units: int
    fee_minor_units: int
    net_minor_units: int
    fee_rate_bps: int


def split(gross_minor_units: int, fee_rate_bps: int) -> FeeSplit:
    """Split a gross amount into (platform fee, net to payee).

    Args:
        gross_minor_units: Gross amount in the smallest currency unit, > 0.
        fee_rate_bps: Fee rate in basis points, 0..10_000 (200 == 2%).

    Raises:
        ValueError: On a non-positive amount or an out-of-range rate.
    """
    if isinstance(gross_minor_units, bool) or not isinstance(gross_minor_units, int):
        raise ValueError("gross_minor_units must be an integer")
    if gross_minor_units <= 0:
        raise ValueError("gross_minor_units must be positive")
    if not 0 <= fee_rate_bps <= BASIS_POINTS_PER_UNIT:
        raise ValueError("fee_rate_bps must be between 0 and 10000")

    half = BASIS_POINTS_PER_UNIT // 2
    fee = (gross_minor_units * fee_rate_bps + half) // BASIS_POINTS_PER_UNIT
    return FeeSplit(
        gross_minor_units=gross_minor_units,
        fee_minor_units=fee,
        net_minor_units=gross_minor_units - fee,
        fee_rate_bps=fee_rate_bps,
    )
