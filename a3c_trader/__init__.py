"""
A3C Trading Model Core
"""

__version__ = "0.1.0"

from .data.frame import PricePoint, build_frame, hour_frame
from .data.store import PriceStore, SQLitePriceStore, PredictionRecord
from .errors import A3CError, EmptyBinError, GradientShapeError, DataStoreError
from .models.actor_critic import ActorCriticNetwork, Action
from .models.predictor import Predictor
from .models.lifecycle import A3CModel, ModelLifecycle
from .training.trajectory import Trade, TradeStep, compute_profit, pad_with_hold
from .training.trainer import A3CTrainer

__all__ = [
    'PricePoint',
    'build_frame',
    'hour_frame',
    'PriceStore',
    'SQLitePriceStore',
    'PredictionRecord',
    'A3CError',
    'EmptyBinError',
    'GradientShapeError',
    'DataStoreError',
    'ActorCriticNetwork',
    'Action',
    'Predictor',
    'A3CModel',
    'ModelLifecycle',
    'Trade',
    'TradeStep',
    'compute_profit',
    'pad_with_hold',
    'A3CTrainer'
]
