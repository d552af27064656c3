"""Technical indicators — multi-window SMA, momentum, trend strength. Pure functions, no I/O.

Every function takes prices **newest-first**, matching the order strategies
keep their local history in.
"""

from typing import Optional, Sequence

from perppulse.strategy.models import LONG, NONE, SHORT, HistoryPoint, IndicatorSnapshot, Signal

# MA periods for multiple timeframe analysis
SHORT_PERIOD = 9
MEDIUM_PERIOD = 21
LONG_PERIOD = 50

# Signal thresholds
TREND_STRENGTH_THRESHOLD = 0.02
MOMENTUM_THRESHOLD = 0.01


def calculate_sma(prices: Sequence[float], period: int) -> Optional[float]:
    """Simple moving average of the *period* most recent prices.

    Returns ``None`` when fewer than *period* prices are available.

    Raises ``ValueError`` if *period* is not positive.
    """
    if period <= 0:
        raise ValueError(f"period must be positive, got {period}")
    if len(prices) < period:
        return None
    window = prices[:period]
    return sum(window) / period


def calculate_window_momentum(prices: Sequence[float], period: int = SHORT_PERIOD) -> float:
    """Deviation of the newest price from the mean of the first *period* prices.

        ``momentum = (current - mean) / mean``

    Returns 0.0 for an empty sequence or a zero mean.
    """
    window = prices[:period]
    if not window:
        return 0.0
    avg = sum(window) / len(window)
    if avg == 0:
        return 0.0
    return (window[0] - avg) / avg


def calculate_trend_strength(
    short_ma: Optional[float],
    medium_ma: Optional[float],
    long_ma: Optional[float],
) -> float:
    """Normalized divergence between the MA windows.

    - medium and long ready: mean of ``|s-m|/m`` and ``|m-l|/l``
    - medium only: ``|s-m|/m``
    - otherwise 0.0
    """
    if short_ma is None or medium_ma is None or medium_ma == 0:
        return 0.0
    short_medium = abs(short_ma - medium_ma) / medium_ma
    if long_ma is None or long_ma == 0:
        return short_medium
    medium_long = abs(medium_ma - long_ma) / long_ma
    return (short_medium + medium_long) / 2


def compute_indicators(prices: Sequence[float]) -> Optional[IndicatorSnapshot]:
    """Build an :class:`IndicatorSnapshot` from newest-first *prices*.

    Returns ``None`` until the short window (9 prices) is ready.  Medium and
    long averages stay ``None`` until their own windows fill.
    """
    short_ma = calculate_sma(prices, SHORT_PERIOD)
    if short_ma is None:
        return None

    medium_ma = calculate_sma(prices, MEDIUM_PERIOD)
    long_ma = calculate_sma(prices, LONG_PERIOD)

    return IndicatorSnapshot(
        price=prices[0],
        short_ma=short_ma,
        medium_ma=medium_ma,
        long_ma=long_ma,
        trend_strength=calculate_trend_strength(short_ma, medium_ma, long_ma),
        momentum=calculate_window_momentum(prices, SHORT_PERIOD),
    )


def generate_signal(snapshot: Optional[IndicatorSnapshot]) -> tuple[Signal, float]:
    """Derive ``(signal, strength)`` from a snapshot.

    Rules are tiered by how many windows are ready:

    - **All three**: long iff short > medium > long, trend strength > 2 %
      and momentum > 1 %; short mirrors it.
    - **Short + medium**: long iff short > medium and momentum > 1 %;
      short mirrors it.
    - **Short only**: long iff price > short and momentum > 1 %;
      short mirrors it.

    Strength is the snapshot's trend strength (0 with only the short window).
    """
    if snapshot is None or snapshot.short_ma is None:
        return NONE, 0.0

    s = snapshot.short_ma
    m = snapshot.medium_ma
    l = snapshot.long_ma
    strength = snapshot.trend_strength
    momentum = snapshot.momentum

    if m is not None and l is not None:
        if s > m > l and strength > TREND_STRENGTH_THRESHOLD and momentum > MOMENTUM_THRESHOLD:
            signal = LONG
        elif s < m < l and strength > TREND_STRENGTH_THRESHOLD and momentum < -MOMENTUM_THRESHOLD:
            signal = SHORT
        else:
            signal = NONE
    elif m is not None:
        if s > m and momentum > MOMENTUM_THRESHOLD:
            signal = LONG
        elif s < m and momentum < -MOMENTUM_THRESHOLD:
            signal = SHORT
        else:
            signal = NONE
    else:
        if snapshot.price > s and momentum > MOMENTUM_THRESHOLD:
            signal = LONG
        elif snapshot.price < s and momentum < -MOMENTUM_THRESHOLD:
            signal = SHORT
        else:
            signal = NONE

    return signal, strength


def price_history_stats(history: Sequence[HistoryPoint]) -> dict:
    """Summary statistics over a newest-first history.

    Returns count, min/max/avg price (``None`` when empty) and the time span
    in seconds between the newest and oldest point.
    """
    prices = [p.price for p in history]
    if not prices:
        return {
            "count": 0,
            "min_price": None,
            "max_price": None,
            "avg_price": None,
            "time_span_seconds": 0.0,
        }
    return {
        "count": len(prices),
        "min_price": min(prices),
        "max_price": max(prices),
        "avg_price": sum(prices) / len(prices),
        "time_span_seconds": (history[0].timestamp_ms - history[-1].timestamp_ms) / 1000.0,
    }
