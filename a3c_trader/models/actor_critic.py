"""
Actor-Critic Network for Trading Decisions

A shared convolutional trunk over the price frame feeds two heads: a
categorical policy over the discrete action set and a scalar state value.
"""

import torch
import torch.nn as nn
import torch.nn.functional as F
from enum import Enum
from typing import Dict, Mapping, Optional, Tuple
import numpy as np

from a3c_trader.errors import GradientShapeError
from a3c_trader.utils.concurrency import ReadWriteLock


GradientMap = Dict[str, torch.Tensor]


class Action(Enum):
    """Discrete action set. Values index the action head."""
    BUY = 0
    SELL = 1
    HOLD = 2
    CLOSE = 3


NUM_ACTIONS = len(Action)


def conv_output_length(input_size: int) -> int:
    """Temporal length left after the two convolution stages."""
    l1 = (input_size - 5) // 5 + 1
    return (l1 - 5) // 2 + 1


class ActorCriticNetwork(nn.Module):
    """
    Shared-trunk actor-critic network.

    frame [input_size]
      -> Conv1d(1, 20, k=5, s=5) -> ReLU
      -> Conv1d(20, 20, k=5, s=2) -> ReLU
      -> flatten -> Linear(., 100) -> ReLU
      -> action_head: Linear(100, 4) -> softmax
      -> value_head:  Linear(100, 1)

    Parameters are only changed through ``apply_gradient``, which is
    serialised against ``infer`` and ``backpropagate`` by a read/write lock.
    """

    def __init__(
        self,
        input_size: int,
        channels: int = 20,
        hidden_dim: int = 100,
        seed: Optional[int] = 123,
        learning_rate: float = 1e-3
    ):
        super().__init__()

        if input_size < 5 or conv_output_length(input_size) < 1:
            raise ValueError(f"input_size {input_size} is too small for the convolution stages")

        self.input_size = input_size
        self.learning_rate = learning_rate
        self._lock = ReadWriteLock()

        self.layer1 = nn.Conv1d(1, channels, kernel_size=5, stride=5)
        self.layer2 = nn.Conv1d(channels, channels, kernel_size=5, stride=2)
        self.fc = nn.Linear(channels * conv_output_length(input_size), hidden_dim)
        self.action_head = nn.Linear(hidden_dim, NUM_ACTIONS)
        self.value_head = nn.Linear(hidden_dim, 1)

        self._init_weights(seed)
        self.eval()

    def _init_weights(self, seed: Optional[int]):
        generator = torch.Generator()
        if seed is not None:
            generator.manual_seed(seed)
        else:
            generator.seed()

        for module in (self.layer1, self.layer2, self.fc, self.action_head, self.value_head):
            nn.init.xavier_uniform_(module.weight, generator=generator)
            nn.init.zeros_(module.bias)

    def forward(self, frame: torch.Tensor) -> Tuple[torch.Tensor, torch.Tensor]:
        """
        Args:
            frame: [batch, input_size]

        Returns:
            probabilities: [batch, 4]
            value: [batch, 1]
        """
        x = frame.unsqueeze(1)  # [batch, 1, input_size]
        x = F.relu(self.layer1(x))
        x = F.relu(self.layer2(x))
        x = F.relu(self.fc(x.flatten(start_dim=1)))

        probabilities = F.softmax(self.action_head(x), dim=-1)
        value = self.value_head(x)

        return probabilities, value

    def _as_input(self, frame) -> torch.Tensor:
        x = torch.as_tensor(np.asarray(frame, dtype=np.float32)).reshape(1, -1)
        if x.shape[1] != self.input_size:
            raise ValueError(f"Expected frame of length {self.input_size}, got {x.shape[1]}")
        return x

    @torch.no_grad()
    def infer(self, frame) -> Tuple[np.ndarray, float]:
        """
        Action probabilities and value estimate for one frame.

        Args:
            frame: Sequence of input_size floats

        Returns:
            probabilities: [4] non-negative, summing to 1
            value: Scalar value estimate
        """
        x = self._as_input(frame)
        with self._lock.read():
            probabilities, value = self.forward(x)

        return probabilities[0].numpy().astype(np.float64), float(value[0, 0])

    def backpropagate(self, frame, action_error, value_error) -> GradientMap:
        """
        Gradient of both heads for one frame against the current parameters.

        The head errors are used as the output gradients of a single backward
        pass through the shared trunk, so both signals shape the same
        features. Parameters and their ``.grad`` fields are left untouched.

        Args:
            frame: Observation the outputs were produced from
            action_error: [4] error at the action head
            value_error: [1] error at the value head

        Returns:
            Gradient map keyed by parameter name
        """
        x = self._as_input(frame)
        action_error = torch.as_tensor(np.asarray(action_error, dtype=np.float32)).reshape(1, NUM_ACTIONS)
        value_error = torch.as_tensor(np.asarray(value_error, dtype=np.float32)).reshape(1, 1)

        with self._lock.read():
            names, params = zip(*self.named_parameters())
            with torch.enable_grad():
                probabilities, value = self.forward(x)
                grads = torch.autograd.grad(
                    outputs=(probabilities, value),
                    inputs=params,
                    grad_outputs=(action_error, value_error),
                    allow_unused=True
                )

        return {
            name: grad.detach() if grad is not None else torch.zeros_like(param)
            for name, param, grad in zip(names, params, grads)
        }

    def check_gradient(self, gradient_map: Mapping[str, torch.Tensor]):
        """Raise GradientShapeError unless every entry matches a parameter."""
        params = dict(self.named_parameters())
        for name, grad in gradient_map.items():
            if name not in params:
                raise GradientShapeError(f"Unknown parameter {name!r} in gradient map")
            if tuple(grad.shape) != tuple(params[name].shape):
                raise GradientShapeError(
                    f"Gradient for {name!r} has shape {tuple(grad.shape)}, "
                    f"expected {tuple(params[name].shape)}"
                )

    @torch.no_grad()
    def apply_gradient(self, gradient_map: Mapping[str, torch.Tensor], learning_rate: Optional[float] = None):
        """
        Descend along a gradient map in one step.

        The whole map is validated before any parameter is touched, and the
        update runs under the write lock so no inference sees a half-applied
        step.
        """
        self.check_gradient(gradient_map)
        lr = self.learning_rate if learning_rate is None else learning_rate
        params = dict(self.named_parameters())

        with self._lock.write():
            for name, grad in gradient_map.items():
                params[name].sub_(grad.to(params[name].dtype), alpha=lr)

    def restore(self, state_dict: Mapping[str, torch.Tensor]):
        """Replace all parameters from a state dict under the write lock."""
        with self._lock.write():
            self.load_state_dict(state_dict)

    def snapshot_state(self) -> Dict[str, torch.Tensor]:
        """Detached copy of the state dict, taken under the read lock."""
        with self._lock.read():
            return {k: v.detach().clone() for k, v in self.state_dict().items()}

    def parameter_shapes(self) -> Dict[str, Tuple[int, ...]]:
        return {name: tuple(p.shape) for name, p in self.named_parameters()}
