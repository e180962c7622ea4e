"""
Error types raised by the model core.
"""


class A3CError(Exception):
    """Base class for model-core errors."""


class EmptyBinError(A3CError):
    """A frame bin contained no price points."""

    def __init__(self, bin_index: int, lo: int, hi: int):
        self.bin_index = bin_index
        self.lo = lo
        self.hi = hi
        super().__init__(f"No price points in bin {bin_index} ({lo}, {hi}]")


class GradientShapeError(A3CError):
    """A gradient map does not match the network parameters."""


class DataStoreError(A3CError):
    """The price/prediction store failed after all retries."""
