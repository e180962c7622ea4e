"""
Price and Prediction Store

Boundary to the time-series store that supplies raw ticks and keeps the
prediction log. Reads are retried with bounded exponential backoff; a
persistent failure surfaces as ``DataStoreError``.
"""

import json
import sqlite3
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, List, Sequence, TypeVar

from loguru import logger
from tenacity import RetryError, Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from a3c_trader.data.frame import PricePoint
from a3c_trader.errors import DataStoreError


T = TypeVar("T")


@dataclass(frozen=True)
class PredictionRecord:
    """One logged model output."""
    model: str
    timestamp: int
    action_probabilities: tuple
    value_prediction: float


def with_retry(
    fn: Callable[[], T],
    attempts: int = 3,
    min_wait: float = 1,
    max_wait: float = 10,
    retry_on: tuple = (sqlite3.OperationalError, ConnectionError, TimeoutError),
) -> T:
    """
    Call ``fn`` with bounded exponential backoff.

    Args:
        fn: Zero-argument callable
        attempts: Maximum number of calls
        min_wait: Lower bound of the backoff in seconds
        max_wait: Upper bound of the backoff in seconds
        retry_on: Exception types worth retrying

    Returns:
        Result of ``fn``

    Raises:
        DataStoreError: When every attempt failed, or on any other sqlite3 error
    """
    retrying = Retrying(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=1, min=min_wait, max=max_wait),
        retry=retry_if_exception_type(retry_on),
        before_sleep=_log_retry,
    )
    try:
        return retrying(fn)
    except RetryError as e:
        cause = e.last_attempt.exception()
        logger.error(f"Store call failed after {attempts} attempts: {cause}")
        raise DataStoreError(str(cause)) from cause
    except sqlite3.Error as e:
        logger.error(f"Store call failed: {e}")
        raise DataStoreError(str(e)) from e


def _log_retry(retry_state) -> None:
    logger.warning(
        f"Store call failed (attempt {retry_state.attempt_number}): "
        f"{retry_state.outcome.exception()}; retrying"
    )


class PriceStore(ABC):
    """Query interface of the external time-series store."""

    @abstractmethod
    def fetch_prices(self, start: int, end: int, instrument: str) -> List[PricePoint]:
        """Ticks for ``instrument`` with ``start <= timestamp < end``."""

    @abstractmethod
    def fetch_predictions(self, start: int, end: int, model_id: str) -> List[PredictionRecord]:
        """Logged predictions of ``model_id`` with ``start <= timestamp < end``."""

    @abstractmethod
    def record_prices(self, points: Iterable[PricePoint]) -> None:
        ...

    @abstractmethod
    def record_prediction(self, record: PredictionRecord) -> None:
        ...


class SQLitePriceStore(PriceStore):
    """SQLite-backed store for ticks and the prediction log."""

    def __init__(
        self,
        path="tradr.db",
        price_table: str = "prices",
        prediction_table: str = "predictions",
        retries: int = 3,
        min_wait: float = 1,
        max_wait: float = 10
    ):
        for table in (price_table, prediction_table):
            if not table.isidentifier():
                raise ValueError(f"Invalid table name: {table!r}")

        self.path = Path(path) if path != ":memory:" else path
        self.price_table = price_table
        self.prediction_table = prediction_table
        self.retries = retries
        self.min_wait = min_wait
        self.max_wait = max_wait

        self.conn = sqlite3.connect(self.path, check_same_thread=False)
        self._lock = threading.Lock()
        if self.path != ":memory:":
            self.conn.execute("PRAGMA journal_mode=WAL")
        self._init_db()
        logger.info(f"Opened price store at {self.path}")

    @classmethod
    def from_config(cls, store_config) -> "SQLitePriceStore":
        return cls(
            path=store_config.path,
            price_table=store_config.price_table,
            prediction_table=store_config.prediction_table,
            retries=store_config.retries,
        )

    def _init_db(self) -> None:
        with self._lock:
            self.conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self.price_table} (
                    timestamp INTEGER NOT NULL,
                    instrument TEXT NOT NULL,
                    value REAL NOT NULL
                )
                """
            )
            self.conn.execute(
                f"CREATE INDEX IF NOT EXISTS {self.price_table}_instrument_ts "
                f"ON {self.price_table} (instrument, timestamp)"
            )
            self.conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self.prediction_table} (
                    model TEXT NOT NULL,
                    timestamp INTEGER NOT NULL,
                    probabilities TEXT NOT NULL,
                    value_prediction REAL NOT NULL
                )
                """
            )
            self.conn.commit()

    def _query(self, sql: str, params: Sequence) -> list:
        def run():
            with self._lock:
                return self.conn.execute(sql, params).fetchall()

        return with_retry(run, attempts=self.retries, min_wait=self.min_wait, max_wait=self.max_wait)

    def _execute_many(self, sql: str, rows: list) -> None:
        def run():
            with self._lock:
                self.conn.executemany(sql, rows)
                self.conn.commit()

        with_retry(run, attempts=self.retries, min_wait=self.min_wait, max_wait=self.max_wait)

    # reads -------------------------------------------------------------
    def fetch_prices(self, start: int, end: int, instrument: str) -> List[PricePoint]:
        rows = self._query(
            f"SELECT timestamp, instrument, value FROM {self.price_table} "
            "WHERE instrument = ? AND timestamp >= ? AND timestamp < ?",
            (instrument, start, end),
        )
        return [PricePoint(timestamp=int(ts), instrument=sym, value=float(v)) for ts, sym, v in rows]

    def fetch_predictions(self, start: int, end: int, model_id: str) -> List[PredictionRecord]:
        rows = self._query(
            f"SELECT model, timestamp, probabilities, value_prediction FROM {self.prediction_table} "
            "WHERE model = ? AND timestamp >= ? AND timestamp < ? ORDER BY timestamp",
            (model_id, start, end),
        )
        return [
            PredictionRecord(
                model=model,
                timestamp=int(ts),
                action_probabilities=tuple(json.loads(probs)),
                value_prediction=float(value),
            )
            for model, ts, probs, value in rows
        ]

    # writes ------------------------------------------------------------
    def record_prices(self, points: Iterable[PricePoint]) -> None:
        rows = [(p.timestamp, p.instrument, p.value) for p in points]
        self._execute_many(
            f"INSERT INTO {self.price_table} (timestamp, instrument, value) VALUES (?, ?, ?)",
            rows,
        )

    def record_prediction(self, record: PredictionRecord) -> None:
        self._execute_many(
            f"INSERT INTO {self.prediction_table} (model, timestamp, probabilities, value_prediction) "
            "VALUES (?, ?, ?, ?)",
            [(
                record.model,
                record.timestamp,
                json.dumps([float(p) for p in record.action_probabilities]),
                float(record.value_prediction),
            )],
        )

    def close(self) -> None:
        with self._lock:
            self.conn.close()
