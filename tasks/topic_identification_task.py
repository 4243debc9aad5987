# tasks/topic_identification_task.py
import logging
from typing import Dict, List

import networkx as nx

from database.models.analysis_model import ScopeTopics
from services import artifact_store
from services.research_scope import ResearchScope
from services.term_extraction import split_biterm
from tasks.base_task import YearRange, YearlyTask
from tasks.biterm_weight_task import BitermWeightTask
from tasks.candidate_identification_task import CandidateIdentificationTask

logger = logging.getLogger(__name__)


def group_topics(candidates: List[str], weights: Dict[str, float]) -> List[List[str]]:
    """
    Biterms sharing a term belong to the same topic: build a graph with one
    node per candidate biterm, link biterms that share a term, and return the
    connected components, heaviest topic first.
    """
    G = nx.Graph()
    G.add_nodes_from(candidates)

    by_term: Dict[str, List[str]] = {}
    for key in candidates:
        for term in split_biterm(key):
            by_term.setdefault(term, []).append(key)
    for keys in by_term.values():
        for other in keys[1:]:
            G.add_edge(keys[0], other)

    topics = [
        sorted(component, key=lambda k: (-weights.get(k, 0.0), k))
        for component in nx.connected_components(G)
    ]
    topics.sort(key=lambda t: (-sum(weights.get(k, 0.0) for k in t), t[0]))
    return topics


class TopicIdentificationTask(YearlyTask):
    name = "Topic identification"
    key = "topic_identification"

    def __init__(
        self,
        path: str,
        keywords: str,
        years: YearRange,
        biterm_weight: BitermWeightTask,
        candidate_identification: CandidateIdentificationTask,
    ):
        self.path = path
        self.keywords = ResearchScope.from_keywords(path, keywords).keywords
        self.years = years
        self.biterm_weight = biterm_weight
        self.candidate_identification = candidate_identification

    def ready(self, year: int) -> bool:
        return self.candidate_identification.has_completed([year])

    def process_year(self, year: int) -> bool:
        candidates = self.candidate_identification.load(year)
        topics = group_topics(candidates, self.biterm_weight.load(year))

        if not artifact_store.save_json_artifact(self.path, ScopeTopics, "topics", self.keywords, year, topics):
            return False
        logger.info(f"{year}: {len(topics)} topics from {len(candidates)} candidates")
        return True

    def load(self, year: int) -> List[List[str]]:
        return artifact_store.load_json_artifact(self.path, ScopeTopics, "topics", self.keywords, year) or []
