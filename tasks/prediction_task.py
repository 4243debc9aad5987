# tasks/prediction_task.py
import logging
import os
from typing import Any, Dict, List, Optional

import joblib
import numpy as np

from services import artifact_store
from services.artifact_store import Matrices
from services.research_scope import ResearchScope
from tasks.base_task import YearRange, YearlyTask
from tasks.time_series_task import TimeSeriesExtractionTask

logger = logging.getLogger(__name__)


class ModelUnavailableError(RuntimeError):
    pass


class PredictionTask(YearlyTask):
    """
    Predicts future citation series for publications whose observed targets
    are incomplete (the horizon runs past the last year of the range).

    The trained model is an opaque artifact saved with joblib; any object with
    a `predict(X)` method taking one flattened input matrix per row works.
    """

    name = "Prediction"
    key = "prediction"

    def __init__(
        self,
        path: str,
        keywords: str,
        years: YearRange,
        model_path: str,
        time_series: TimeSeriesExtractionTask,
    ):
        self.path = path
        self.keywords = ResearchScope.from_keywords(path, keywords).keywords
        self.years = years
        self.model_path = model_path
        self.time_series = time_series
        self._model: Optional[Any] = None

    def prediction_years(self) -> List[int]:
        ts = self.time_series
        return [
            y for y in ts.extraction_years()
            if y + ts.history + ts.horizon - 1 > self.years.last
        ]

    def step_years(self) -> List[int]:
        return self.prediction_years()

    def ready(self, year: int) -> bool:
        return self.time_series.has_completed([year])

    def process_year(self, year: int) -> bool:
        series = self.time_series.load(year)

        predictions: Dict[int, Matrices] = {}
        if series:
            model = self._load_model()
            ids = sorted(series)
            X = np.vstack([series[pid][0].reshape(1, -1) for pid in ids])
            Y = np.asarray(model.predict(X), dtype=np.float64).reshape(len(ids), -1)
            predictions = {pid: (series[pid][0], Y[i].reshape(1, -1)) for i, pid in enumerate(ids)}

        if not artifact_store.save_predictions(self.path, self.keywords, year, predictions):
            return False
        logger.info(f"{year}: predictions for {len(predictions)} publications")
        return True

    def _load_model(self) -> Any:
        if self._model is None:
            if not os.path.isfile(self.model_path):
                raise ModelUnavailableError(f"Prediction model not found at {self.model_path}")
            try:
                self._model = joblib.load(self.model_path)
            except Exception as e:
                raise ModelUnavailableError(f"Cannot load prediction model {self.model_path}: {e}") from e
            if not hasattr(self._model, "predict"):
                raise ModelUnavailableError(f"{self.model_path} does not contain a model with predict()")
            logger.info(f"Loaded prediction model from {self.model_path}")
        return self._model

    def load(self, year: int) -> Dict[int, Matrices]:
        return artifact_store.load_predictions(self.path, self.keywords, year)
