# tasks/biterm_weight_task.py
import logging
from typing import Dict, List

from database.models.analysis_model import ScopeBiterms
from services import artifact_store
from services.research_scope import ResearchScope
from services.term_extraction import biterm_weights, build_vocabulary, extract_terms
from tasks.base_task import YearRange, YearlyTask

logger = logging.getLogger(__name__)


class BitermWeightTask(YearlyTask):
    """
    Per year: extract terms of the scope's publications, keep the most
    frequent ones as the year's vocabulary, and weight every pair of
    vocabulary terms by the share of publications in which both occur.
    A year is only processed once every combination has been fetched for it.
    """

    name = "Biterm weighting"
    key = "biterm_weight"

    def __init__(
        self,
        path: str,
        keywords: str,
        years: YearRange,
        vocabulary_size: int = 200,
        min_document_frequency: int = 2,
    ):
        self.path = path
        self.scope = ResearchScope.from_keywords(path, keywords)
        self.keywords = self.scope.keywords
        self.years = years
        self.vocabulary_size = vocabulary_size
        self.min_document_frequency = min_document_frequency

    def ready(self, year: int) -> bool:
        return self.scope.year_queried(year)

    def process_year(self, year: int) -> bool:
        keywords = self.keywords

        pubs = self.scope.load_year(year)
        terms_by_pub = self._terms_of(pubs)

        vocabulary = build_vocabulary(terms_by_pub, self.vocabulary_size, self.min_document_frequency)
        in_vocabulary = set(vocabulary)
        scope_terms_by_pub = {
            pid: [t for t in terms if t in in_vocabulary] for pid, terms in terms_by_pub.items()
        }
        weights = biterm_weights(scope_terms_by_pub)

        if not artifact_store.save_year_terms(self.path, keywords, year, vocabulary, scope_terms_by_pub):
            return False
        if not artifact_store.save_json_artifact(self.path, ScopeBiterms, "weights", keywords, year, weights):
            return False
        logger.info(f"{year}: {len(pubs)} publications, {len(vocabulary)} terms, {len(weights)} biterms")
        return True

    def _terms_of(self, pubs: Dict) -> Dict[int, List[str]]:
        """Cached terms where available; extract and store the rest."""
        terms_by_pub = artifact_store.load_pub_terms(self.path, pubs.keys())
        extracted = {
            pid: extract_terms(pub.get("title", ""), pub.get("abstract", ""))
            for pid, pub in pubs.items()
            if pid not in terms_by_pub
        }
        if extracted:
            artifact_store.save_pub_terms(self.path, extracted)
            terms_by_pub.update(extracted)
        return terms_by_pub

    def load(self, year: int) -> Dict[str, float]:
        weights = artifact_store.load_json_artifact(self.path, ScopeBiterms, "weights", self.scope.keywords, year)
        return weights or {}
