"""
Model Lifecycle

Load-or-create and save of actor-critic models keyed by a model id. A
snapshot lives at ``<model_folder>/<id>``.
"""

import os
import pickle
import torch
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Sequence

import numpy as np

from a3c_trader.models.actor_critic import ActorCriticNetwork
from a3c_trader.models.predictor import Predictor
from a3c_trader.utils.config import ensure_dir
from a3c_trader.utils.logger import model_logger


@dataclass
class A3CModel:
    """Handle on one network and its id."""
    id: str
    network: ActorCriticNetwork
    gamma: float = 0.99
    predictor: Predictor = field(init=False, repr=False)

    def __post_init__(self):
        self.predictor = Predictor(self.network, self.id)

    def predict(self, frame) -> Dict[str, np.ndarray]:
        return self.predictor.predict(frame)

    def train(self, trades: Sequence, lifecycle: Optional["ModelLifecycle"] = None) -> "A3CModel":
        from a3c_trader.training.trainer import A3CTrainer

        return A3CTrainer(self, lifecycle=lifecycle, gamma=self.gamma).train(trades)


class ModelLifecycle:
    """Creates, restores and persists models under a folder."""

    def __init__(
        self,
        model_folder: str,
        input_size: int,
        seed: Optional[int] = 123,
        gamma: float = 0.99,
        learning_rate: float = 1e-3
    ):
        self.model_folder = Path(model_folder)
        self.input_size = input_size
        self.seed = seed
        self.gamma = gamma
        self.learning_rate = learning_rate

    @classmethod
    def from_config(cls, config) -> "ModelLifecycle":
        return cls(
            model_folder=config.model_folder,
            input_size=config.input_size,
            gamma=config.gamma,
            learning_rate=config.learning_rate,
        )

    def path_for(self, model_id: str) -> Path:
        return self.model_folder / model_id

    def _new_network(self) -> ActorCriticNetwork:
        return ActorCriticNetwork(
            self.input_size,
            seed=self.seed,
            learning_rate=self.learning_rate
        )

    def create(self, model_id: str) -> A3CModel:
        """Fresh model from the fixed topology."""
        model_logger(model_id).info(f"Creating actor-critic network (input_size={self.input_size})")
        return A3CModel(model_id, self._new_network(), gamma=self.gamma)

    def load(self, model_id: str) -> A3CModel:
        """
        Restore a model, falling back to a fresh one.

        A missing or unreadable snapshot is not an error: the model is
        created from scratch instead.
        """
        log = model_logger(model_id)
        path = self.path_for(model_id)

        if not path.exists():
            log.info(f"No snapshot at {path}")
            return self.create(model_id)

        log.info(f"Loading actor-critic network from {path}")
        try:
            snapshot = torch.load(path, map_location="cpu", weights_only=True)
        except (OSError, EOFError, RuntimeError, ValueError, pickle.UnpicklingError) as e:
            log.warning(f"Snapshot at {path} is unreadable ({e}); creating a new network")
            return self.create(model_id)

        if not isinstance(snapshot, dict) or not isinstance(snapshot.get("state_dict"), dict):
            log.warning(f"Snapshot at {path} has no state dict; creating a new network")
            return self.create(model_id)
        if snapshot.get("input_size", self.input_size) != self.input_size:
            log.warning(
                f"Snapshot at {path} is for input size {snapshot['input_size']}, "
                f"expected {self.input_size}; creating a new network"
            )
            return self.create(model_id)

        network = self._new_network()
        try:
            network.restore(snapshot["state_dict"])
        except (RuntimeError, KeyError, TypeError, ValueError) as e:
            log.warning(f"Snapshot at {path} does not match the network ({e}); creating a new network")
            return self.create(model_id)

        return A3CModel(model_id, network, gamma=self.gamma)

    def save(self, model: A3CModel, model_id: Optional[str] = None) -> Path:
        """
        Persist the model, replacing any previous snapshot.

        The snapshot is written to a temporary file next to the target and
        moved into place, so an interrupted save leaves the old one intact.
        """
        model_id = model_id or model.id
        path = self.path_for(model_id)
        ensure_dir(path.parent)
        tmp = path.with_name(path.name + ".tmp")

        snapshot = {
            "model_id": model_id,
            "input_size": model.network.input_size,
            "state_dict": model.network.snapshot_state(),
        }

        try:
            torch.save(snapshot, tmp)
            os.replace(tmp, path)
        except BaseException:
            tmp.unlink(missing_ok=True)
            raise

        model_logger(model_id).info(f"Saved actor-critic network to {path}")
        return path
