# tasks/candidate_identification_task.py
import logging
from typing import List

from database.models.analysis_model import ScopeCandidates
from services import artifact_store
from services.research_scope import ResearchScope
from tasks.base_task import YearRange, YearlyTask
from tasks.biterm_weight_task import BitermWeightTask

logger = logging.getLogger(__name__)


class CandidateIdentificationTask(YearlyTask):
    """Per year: the heaviest biterms become topic candidates."""

    name = "Candidate identification"
    key = "candidate_identification"

    def __init__(
        self,
        path: str,
        keywords: str,
        years: YearRange,
        biterm_weight: BitermWeightTask,
        max_candidates: int = 100,
        min_weight: float = 0.01,
    ):
        self.path = path
        self.keywords = ResearchScope.from_keywords(path, keywords).keywords
        self.years = years
        self.biterm_weight = biterm_weight
        self.max_candidates = max_candidates
        self.min_weight = min_weight

    def ready(self, year: int) -> bool:
        return self.biterm_weight.has_completed([year])

    def process_year(self, year: int) -> bool:
        weights = self.biterm_weight.load(year)
        if not weights:
            logger.warning(f"No biterm weights for {self.keywords}/{year}, no candidates")

        ranked = sorted(
            (key for key, w in weights.items() if w >= self.min_weight),
            key=lambda key: (-weights[key], key),
        )
        candidates = ranked[:self.max_candidates]

        return artifact_store.save_json_artifact(
            self.path, ScopeCandidates, "candidates", self.keywords, year, candidates
        )

    def load(self, year: int) -> List[str]:
        return artifact_store.load_json_artifact(self.path, ScopeCandidates, "candidates", self.keywords, year) or []
