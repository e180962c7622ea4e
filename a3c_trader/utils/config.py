"""
Configuration loading.

The model core only reads configuration; it is supplied by the process
that embeds it, usually from a YAML file such as ``config.yaml``.
"""

import yaml
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Any, Optional


def load_config(config_path: str) -> Dict[str, Any]:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to config file

    Returns:
        Configuration dictionary
    """
    with open(config_path, 'r') as f:
        config = yaml.safe_load(f) or {}

    return _replace_env_vars(config)


def _replace_env_vars(config: Any) -> Any:
    """Replace ${VAR} with environment variables."""
    if isinstance(config, dict):
        return {k: _replace_env_vars(v) for k, v in config.items()}
    elif isinstance(config, list):
        return [_replace_env_vars(item) for item in config]
    elif isinstance(config, str) and config.startswith("${") and config.endswith("}"):
        var_name = config[2:-1]
        return os.getenv(var_name, config)
    else:
        return config


def ensure_dir(path: str) -> Path:
    """
    Ensure directory exists.

    Args:
        path: Directory path

    Returns:
        Path object
    """
    p = Path(path)
    p.mkdir(parents=True, exist_ok=True)
    return p


@dataclass
class StoreConfig:
    """Connection settings for the price/prediction store."""
    path: str = "./tradr.db"
    price_table: str = "prices"
    prediction_table: str = "predictions"
    retries: int = 3


@dataclass
class A3CConfig:
    """Typed view over the recognised configuration keys."""
    model_folder: str = "./models"
    input_size: int = 300
    frame_size: int = 60
    gamma: float = 0.99
    learning_rate: float = 1e-3
    store: StoreConfig = field(default_factory=StoreConfig)
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> "A3CConfig":
        predictor = config.get('predictor') or {}
        a3c = predictor.get('a3c') or {}
        store = config.get('store') or {}
        logging = config.get('logging') or {}
        defaults = cls()

        return cls(
            model_folder=str(predictor.get('model_folder', defaults.model_folder)),
            input_size=int(a3c.get('input_size', defaults.input_size)),
            frame_size=int(predictor.get('frame_size', defaults.frame_size)),
            gamma=float(a3c.get('gamma', defaults.gamma)),
            learning_rate=float(a3c.get('learning_rate', defaults.learning_rate)),
            store=StoreConfig(
                path=str(store.get('path', defaults.store.path)),
                price_table=str(store.get('price_table', defaults.store.price_table)),
                prediction_table=str(store.get('prediction_table', defaults.store.prediction_table)),
                retries=int(store.get('retries', defaults.store.retries)),
            ),
            log_level=str(logging.get('level', defaults.log_level)),
            log_file=logging.get('file', defaults.log_file),
        )

    @classmethod
    def load(cls, config_path: str) -> "A3CConfig":
        return cls.from_dict(load_config(config_path))
