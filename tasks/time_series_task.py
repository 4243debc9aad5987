# tasks/time_series_task.py
import logging
from collections import Counter
from typing import Dict, List, Set

import numpy as np

from services import artifact_store
from services.artifact_store import Matrices
from services.research_scope import ResearchScope
from services.term_extraction import covers_biterm
from tasks.base_task import YearRange, YearlyTask
from tasks.topic_identification_task import TopicIdentificationTask

logger = logging.getLogger(__name__)


def matched_topics(terms: List[str], topics: List[List[str]]) -> Set[int]:
    return {
        i for i, topic in enumerate(topics)
        if any(covers_biterm(terms, key) for key in topic)
    }


class TimeSeriesExtractionTask(YearlyTask):
    """
    Builds, for every publication of a year, the yearly series the
    prediction model consumes.

    inputs  (2 x history): citations received per year, and the number of
                           publications per year sharing one of its topics,
                           over [year, year + history)
    targets (1 x k):       citations per year over the following `horizon`
                           years, truncated at the last year of the range
                           (k may be smaller than horizon, or 0)

    Only years with a complete history window inside the range get a step.
    A year waits until its topics exist and every year its series reads from
    has been fetched and weighted.
    """

    name = "Time series extraction"
    key = "time_series"

    def __init__(
        self,
        path: str,
        keywords: str,
        years: YearRange,
        topic_identification: TopicIdentificationTask,
        history: int = 5,
        horizon: int = 3,
    ):
        self.path = path
        self.scope = ResearchScope.from_keywords(path, keywords)
        self.keywords = self.scope.keywords
        self.years = years
        self.topic_identification = topic_identification
        self.history = history
        self.horizon = horizon

    def extraction_years(self) -> List[int]:
        return list(range(self.years.first, self.years.last - self.history + 2))

    def step_years(self) -> List[int]:
        return self.extraction_years()

    def ready(self, year: int) -> bool:
        last_read = min(year + self.history + self.horizon - 1, self.years.last)
        return (
            self.topic_identification.has_completed([year])
            and self.topic_identification.biterm_weight.has_completed(list(range(year, last_read + 1)))
        )

    def process_year(self, year: int) -> bool:
        keywords = self.keywords

        pubs = self.scope.load_year(year)
        history_years = list(range(year, year + self.history))
        horizon_years = [
            t for t in range(year + self.history, year + self.history + self.horizon)
            if t <= self.years.last
        ]

        citing = self.scope.citing_years(pubs.keys())
        related = self._related_counts(year, list(pubs), history_years)

        series: Dict[int, Matrices] = {}
        for pid in pubs:
            cites = Counter(citing.get(pid, []))
            inputs = np.array(
                [[cites[t] for t in history_years], related[pid]],
                dtype=np.float64,
            )
            targets = np.array([[cites[t] for t in horizon_years]], dtype=np.float64)
            series[pid] = (inputs, targets)

        if not artifact_store.save_time_series(self.path, keywords, year, series):
            return False
        logger.info(f"{year}: time series for {len(series)} publications")
        return True

    def _related_counts(self, year: int, ids: List[int], history_years: List[int]) -> Dict[int, List[int]]:
        topics = self.topic_identification.load(year)
        if not topics:
            return {pid: [0] * len(history_years) for pid in ids}

        terms_of_year = artifact_store.load_pub_scope_terms(self.path, self.scope.keywords, year)
        own_topics = {pid: matched_topics(terms_of_year.get(pid, []), topics) for pid in ids}

        topics_per_year = {}
        for t in history_years:
            terms_t = artifact_store.load_pub_scope_terms(self.path, self.scope.keywords, t)
            topics_per_year[t] = [matched_topics(terms, topics) for terms in terms_t.values()]

        return {
            pid: [
                sum(1 for other in topics_per_year[t] if other & own_topics[pid])
                for t in history_years
            ]
            for pid in ids
        }

    def load(self, year: int) -> Dict[int, Matrices]:
        return artifact_store.load_time_series(self.path, self.scope.keywords, year)
