"""
Actor-Critic Trainer

Turns completed trades into one gradient update of the shared network.

For a trade of ``n`` steps with realized ``profit``:

    r      = profit / n
    init_r = value prediction of the last step
    for i = n-2 .. 0:
        td  = 1 + ln(t_last - t_i)
        R_i = init_r * gamma**td + i * r

Each non-terminal step backpropagates ``ln(p_i) * (R_i - V_i)`` through the
action head and ``(R_i - V_i)**2`` through the value head. The per-step
gradient maps are summed over the trade, the trade maps are summed over the
batch, and the total is applied once.
"""

import math
import numpy as np
import torch
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable, List, Optional, Sequence, Tuple
from tqdm import tqdm

from a3c_trader.models.actor_critic import GradientMap
from a3c_trader.training.trajectory import Trade
from a3c_trader.utils.logger import model_logger


def accumulate(total: GradientMap, gradient: GradientMap) -> GradientMap:
    """Add ``gradient`` into ``total`` in place; new names start from their first contribution."""
    for name, grad in gradient.items():
        if name not in total:
            total[name] = grad.clone()
        else:
            total[name] = total[name] + grad
    return total


def merge_gradient_maps(maps: Iterable[GradientMap]) -> GradientMap:
    """Sum a collection of gradient maps."""
    total: GradientMap = {}
    for gradient in maps:
        accumulate(total, gradient)
    return total


def compute_targets(trade: Trade, gamma: float, profit: float) -> List[Tuple[int, float]]:
    """
    Target returns of the non-terminal steps.

    Args:
        trade: Completed trade
        gamma: Discount factor in (0, 1)
        profit: Realized profit of the trade

    Returns:
        ``(i, R_i)`` pairs in traversal order (last non-terminal step first)
    """
    steps = trade.steps
    if not steps:
        raise ValueError("Cannot compute targets for an empty trade")

    r = profit / len(steps)
    init_r = float(steps[-1].value_prediction)
    last_time = steps[-1].time

    targets = []
    for i in reversed(range(len(steps) - 1)):
        elapsed = last_time - steps[i].time
        if elapsed <= 0:
            raise ValueError(
                f"Step {i} at {steps[i].time} is not before the last step at {last_time}"
            )
        td = 1.0 + math.log(elapsed)
        targets.append((i, init_r * gamma ** td + i * r))

    return targets


class A3CTrainer:
    """
    Policy-gradient-with-baseline trainer for an A3CModel.

    Holds no state between batches: every call to ``train`` reads the
    current parameters, applies one update and optionally persists it.
    """

    def __init__(
        self,
        model,
        lifecycle=None,
        gamma: float = 0.99,
        learning_rate: Optional[float] = None,
        num_workers: int = 1,
        show_progress: bool = False
    ):
        if not 0.0 < gamma < 1.0:
            raise ValueError(f"gamma must be in (0, 1), got {gamma}")

        self.model = model
        self.lifecycle = lifecycle
        self.gamma = gamma
        self.learning_rate = learning_rate
        self.num_workers = num_workers
        self.show_progress = show_progress
        self.log = model_logger(model.id)

    @property
    def network(self):
        return self.model.network

    def compute_targets(self, trade: Trade, profit: Optional[float] = None) -> List[Tuple[int, float]]:
        if profit is None:
            profit = trade.realized_profit()
        return compute_targets(trade, self.gamma, profit)

    def compute_gradient_map(self, trade: Trade, profit: Optional[float] = None) -> GradientMap:
        """
        Summed gradient map of one trade.

        Steps are visited in reverse; the last step only anchors the
        bootstrap and contributes no gradient.
        """
        total: GradientMap = {}

        for i, target in self.compute_targets(trade, profit):
            step = trade.steps[i]
            if step.frame is None:
                raise ValueError(f"Step {i} at {step.time} has no frame to backpropagate")

            advantage = target - float(step.value_prediction)
            action_error = np.log(np.asarray(step.action_probabilities, dtype=np.float64)) * advantage
            value_error = np.array([advantage ** 2])

            gradient = self.network.backpropagate(step.frame, action_error, value_error)
            accumulate(total, gradient)

        return total

    def _trade_maps(self, trades: Sequence[Trade]) -> List[GradientMap]:
        if self.num_workers > 1 and len(trades) > 1:
            with ThreadPoolExecutor(max_workers=self.num_workers) as pool:
                return list(pool.map(self.compute_gradient_map, trades))

        iterator = tqdm(trades, desc="Trades", disable=not self.show_progress)
        return [self.compute_gradient_map(trade) for trade in iterator]

    def train(self, trades: Sequence[Trade]):
        """
        Apply one update computed from a batch of trades.

        Either the whole batch is applied (and saved when a lifecycle is
        attached) or, if any trade or the save fails, the parameters are
        left as they were.

        Returns:
            The trained model
        """
        trades = list(trades)
        if not trades:
            self.log.info("Empty trade batch; nothing to train")
            return self.model

        gradient_map = merge_gradient_maps(self._trade_maps(trades))
        if not gradient_map:
            self.log.info("Trades had no non-terminal steps; nothing to train")
            return self.model

        grad_norm = torch.sqrt(sum((g.double() ** 2).sum() for g in gradient_map.values())).item()
        previous = self.network.snapshot_state() if self.lifecycle is not None else None
        self.network.apply_gradient(gradient_map, self.learning_rate)

        num_steps = sum(max(len(t) - 1, 0) for t in trades)
        self.log.info(
            f"Applied update from {len(trades)} trades ({num_steps} steps), gradient norm {grad_norm:.4f}"
        )

        if self.lifecycle is not None:
            try:
                self.lifecycle.save(self.model)
            except BaseException:
                self.log.error("Saving the updated network failed; rolling back the update")
                self.network.restore(previous)
                raise

        return self.model
