"""
Frame Construction

Turns an irregular stream of price ticks into the fixed-length observation
vector fed to the actor-critic network.
"""

import numpy as np
from dataclasses import dataclass
from typing import Sequence
from loguru import logger

from a3c_trader.errors import EmptyBinError


HOUR_MS = 60 * 60 * 1000


@dataclass(frozen=True)
class PricePoint:
    """A single price tick."""
    timestamp: int  # epoch millis
    instrument: str
    value: float


def bin_edges(bin_count: int, window_start: int, window_end: int) -> np.ndarray:
    """
    Edges of the frame bins.

    The step is ``(window_end - window_start) // bin_count``; when the window
    is not an exact multiple of ``bin_count`` the remainder at the end of the
    window is left out of the frame.

    Returns:
        Array of ``bin_count + 1`` integer edges, earliest first
    """
    if bin_count <= 0:
        raise ValueError(f"bin_count must be positive, got {bin_count}")
    if window_end <= window_start:
        raise ValueError(f"Empty window [{window_start}, {window_end})")

    step = (window_end - window_start) // bin_count
    if step == 0:
        raise ValueError(
            f"Window of {window_end - window_start}ms is too short for {bin_count} bins"
        )

    return window_start + step * np.arange(bin_count + 1, dtype=np.int64)


def build_frame(
    points: Sequence[PricePoint],
    bin_count: int,
    window_start: int,
    window_end: int
) -> np.ndarray:
    """
    Bin price points and average each bin.

    Bin ``i`` covers ``(edge[i], edge[i+1]]``: the lower edge is exclusive and
    the upper edge inclusive. Points may arrive in any order.

    Args:
        points: Price points, unordered
        bin_count: Number of bins (frame length)
        window_start: Window start, epoch millis
        window_end: Window end, epoch millis

    Returns:
        Frame of shape [bin_count], earliest bin first

    Raises:
        EmptyBinError: If any bin has no points
    """
    edges = bin_edges(bin_count, window_start, window_end)

    timestamps = np.fromiter((p.timestamp for p in points), dtype=np.int64, count=len(points))
    values = np.fromiter((p.value for p in points), dtype=np.float64, count=len(points))

    frame = np.empty(bin_count, dtype=np.float64)
    for i in range(bin_count):
        lo, hi = int(edges[i]), int(edges[i + 1])
        mask = (timestamps > lo) & (timestamps <= hi)
        if not mask.any():
            logger.error(f"Frame bin {i} ({lo}, {hi}] is empty; refusing to build frame")
            raise EmptyBinError(i, lo, hi)
        frame[i] = values[mask].sum() / mask.sum()

    return frame


def hour_frame(store, now: int, frame_size: int, instrument: str = "EURUSD") -> np.ndarray:
    """
    Frame over the hour preceding ``now``.

    Args:
        store: PriceStore to query
        now: Window end, epoch millis
        frame_size: Number of bins
        instrument: Instrument symbol

    Returns:
        Frame of shape [frame_size]
    """
    start = now - HOUR_MS
    points = store.fetch_prices(start, now, instrument)
    logger.debug(f"Building {frame_size}-bin frame for {instrument} from {len(points)} ticks")
    return build_frame(points, frame_size, start, now)
