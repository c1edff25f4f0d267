"""
Rolling volume statistics.

The baseline of a bar is an EMA of the volumes preceding it, and the dispersion
is the population standard deviation of those volumes measured around the EMA
(deviation from the trailing trend, not from a static mean).
"""
import math
from typing import NamedTuple, Optional, Sequence


class Baseline(NamedTuple):
    """Trailing volume baseline for a candidate bar."""
    ema: float
    std_dev: float


def calculate_ema(values: Sequence[float], period: int) -> float:
    """Exponential moving average seeded with the first value."""
    k = 2 / (period + 1)
    ema = values[0]
    for value in values[1:]:
        # Same as value * k + ema * (1 - k), but exact for a constant series
        ema += k * (value - ema)
    return ema


def calculate_std_dev(values: Sequence[float], center: float) -> float:
    """Population standard deviation of `values` around `center`."""
    square_diffs = [(value - center) ** 2 for value in values]
    return math.sqrt(sum(square_diffs) / len(values))


def compute_baseline(window: Sequence[float], period: int) -> Optional[Baseline]:
    """
    Compute the EMA/standard deviation baseline of a volume window.

    Args:
        window: Volumes strictly preceding the candidate bar, oldest first
        period: EMA period; also the number of trailing samples used for the
            standard deviation

    Returns:
        Baseline, or None when the window holds fewer than `period` samples
    """
    if period < 1 or len(window) < period:
        return None

    ema = calculate_ema(window, period)
    std_dev = calculate_std_dev(window[-period:], ema)
    return Baseline(ema=ema, std_dev=std_dev)


def compute_z_score(volume: float, baseline: Baseline) -> Optional[float]:
    """Z-score of `volume` against `baseline`; None when the dispersion is zero."""
    if baseline.std_dev == 0:
        return None
    return (volume - baseline.ema) / baseline.std_dev
