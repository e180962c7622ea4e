"""
Trade Trajectories

A trade is the ordered sequence of decisions taken from entering a
position to leaving it, together with what the network predicted at each
decision.
"""

import numpy as np
from dataclasses import dataclass, replace
from typing import Dict, List, Optional

from a3c_trader.models.actor_critic import Action


@dataclass(frozen=True)
class TradeStep:
    """One decision point inside a trade."""
    time: int
    action_probabilities: np.ndarray
    value_prediction: float
    portfolio_change: Dict[str, float]
    action: Action
    frame: Optional[np.ndarray] = None  # observation the decision was made on


@dataclass
class Trade:
    """A completed trajectory."""
    steps: List[TradeStep]
    profit: Optional[float] = None

    def __len__(self) -> int:
        return len(self.steps)

    def realized_profit(self) -> float:
        return self.profit if self.profit is not None else compute_profit(self)


def compute_profit(trade: Trade) -> float:
    """Realized return: net portfolio change over every step and asset."""
    return float(sum(sum(step.portfolio_change.values()) for step in trade.steps))


def pad_with_hold(trade: Trade, interval: int) -> Trade:
    """
    Fill gaps between decisions with implicit HOLD steps.

    Between two consecutive decisions, every ``interval`` without a decision
    counts as a HOLD. Padding steps copy the first step's predictions and
    carry a zero portfolio change.

    Args:
        trade: Trade to pad
        interval: Decision interval, same unit as ``TradeStep.time``

    Returns:
        New trade with the padding inserted
    """
    if interval <= 0:
        raise ValueError(f"interval must be positive, got {interval}")
    if not trade.steps:
        return Trade(steps=[], profit=trade.profit)

    first = trade.steps[0]
    padded = [first]
    for prev, step in zip(trade.steps, trade.steps[1:]):
        for t in range(prev.time + interval, step.time, interval):
            padded.append(replace(
                first,
                time=t,
                action=Action.HOLD,
                portfolio_change={asset: 0.0 for asset in first.portfolio_change}
            ))
        padded.append(step)

    return Trade(steps=padded, profit=trade.profit)
