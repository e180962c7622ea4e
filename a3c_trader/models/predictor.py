"""
Prediction front-end used by the execution layer.
"""

import numpy as np
from typing import Dict

from a3c_trader.data.store import PredictionRecord
from a3c_trader.models.actor_critic import ActorCriticNetwork


class Predictor:
    """Names the network outputs for downstream consumers."""

    def __init__(self, network: ActorCriticNetwork, model_id: str = "a3c"):
        self.network = network
        self.model_id = model_id

    def predict(self, frame) -> Dict[str, np.ndarray]:
        probabilities, value = self.network.infer(frame)
        return {
            "probabilities": probabilities,
            "valueFun": np.array([value], dtype=np.float64),
        }

    def predict_record(self, frame, timestamp: int) -> PredictionRecord:
        """Prediction packaged for the prediction log."""
        output = self.predict(frame)
        return PredictionRecord(
            model=self.model_id,
            timestamp=timestamp,
            action_probabilities=tuple(float(p) for p in output["probabilities"]),
            value_prediction=float(output["valueFun"][0]),
        )
