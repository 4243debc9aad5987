# File: workflow.py
import logging
from typing import List, Optional

from clients.openalex_client import OpenAlexClient
from services.research_scope import ResearchScope
from tasks.base_task import BaseTask, YearRange
from tasks.biterm_weight_task import BitermWeightTask
from tasks.candidate_identification_task import CandidateIdentificationTask
from tasks.openalex_task import OpenAlexAcquisitionTask
from tasks.prediction_task import PredictionTask
from tasks.time_series_task import TimeSeriesExtractionTask
from tasks.topic_identification_task import TopicIdentificationTask

logger = logging.getLogger(__name__)


def prepare_scope(path: str, keywords: str) -> Optional[ResearchScope]:
    """
    Validate the keywords and register the scope in the store.
    Returns None, with the reason logged, when either step fails.
    """
    try:
        scope = ResearchScope.from_keywords(path, keywords)
    except ValueError as e:
        logger.error(f"Invalid research scope: {e}")
        return None

    if not scope.register():
        logger.error(f"Cannot register '{scope.keywords}': the store at {path} is not usable")
        return None

    logger.info(f"Research scope '{scope.keywords}' ready ({scope.num_combinations()} combinations)")
    return scope


def build_pipeline(
    path: str,
    keywords: str,
    years: YearRange,
    model_path: str,
    client: Optional[OpenAlexClient] = None,
    history: int = 5,
    horizon: int = 3,
) -> List[BaseTask]:
    """Acquisition -> weighting -> candidates -> topics -> time series -> prediction."""
    acquisition = OpenAlexAcquisitionTask(path, keywords, years, client=client)
    biterm_weight = BitermWeightTask(path, keywords, years)
    candidates = CandidateIdentificationTask(path, keywords, years, biterm_weight)
    topics = TopicIdentificationTask(path, keywords, years, biterm_weight, candidates)
    time_series = TimeSeriesExtractionTask(path, keywords, years, topics, history=history, horizon=horizon)
    prediction = PredictionTask(path, keywords, years, model_path, time_series)

    return [acquisition, biterm_weight, candidates, topics, time_series, prediction]
