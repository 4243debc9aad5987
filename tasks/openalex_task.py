# tasks/openalex_task.py
import logging
import threading
from typing import List, Optional, Set, Tuple

import requests

from clients.openalex_client import OpenAlexClient
from services import artifact_store
from services.research_scope import ResearchScope
from tasks.base_task import BaseTask, YearRange

logger = logging.getLogger(__name__)

# Step mark stored per (combination, year) once its referenced works were looked up
REFERENCES_KEY = "references"


class OpenAlexAcquisitionTask(BaseTask):
    """
    Fetches the publications of every (combination, year) of a scope that has
    not been queried yet, then pulls in the works they cite.

    Steps walk the pending pairs year by year, combination `i` before `i + 1`;
    on an empty store step `s` is combination `s % N` of year `first + s // N`.
    A pair is pending until it has a token and, when references are followed,
    until its citation frontier was fetched once. A step persists its result
    and marks the pair before returning, so a cancelled or crashed run resumes
    where it stopped. A failed fetch leaves the pair pending and it is retried
    on the next run.
    """

    name = "Fetching publications"

    def __init__(
        self,
        path: str,
        keywords: str,
        years: YearRange,
        client: Optional[OpenAlexClient] = None,
        follow_references: bool = True,
    ):
        self.path = path
        self.scope = ResearchScope.from_keywords(path, keywords)
        self.years = years
        self.client = client or OpenAlexClient()
        self.follow_references = follow_references
        self.failed_steps: List[int] = []
        self._pending: Optional[List[Tuple[int, int]]] = None

    def pending_pairs(self) -> List[Tuple[int, int]]:
        """(combination index, year) pairs still missing a token or their references."""
        n = self.scope.num_combinations()
        years = self.years.years()
        queried = self.scope.queried(years)

        referenced: Set[Tuple[str, int]] = set()
        if self.follow_references:
            combinations = [self.scope.combination_at(i) for i in range(n)]
            referenced = artifact_store.completed_pairs(self.path, REFERENCES_KEY, combinations, years)

        pending = []
        for year in years:
            for index in range(n):
                pair = (self.scope.combination_at(index), year)
                if pair not in queried or (self.follow_references and pair not in referenced):
                    pending.append((index, year))
        return pending

    def _locate(self, step_id: int) -> Tuple[int, int]:
        if self._pending is None:
            self._pending = self.pending_pairs()
        return self._pending[step_id]

    def num_steps(self) -> int:
        self._pending = self.pending_pairs()
        return len(self._pending)

    def finished(self) -> bool:
        return not self.pending_pairs()

    def do_step(self, step_id: int, cancel_event: threading.Event) -> None:
        index, year = self._locate(step_id)
        combination = self.scope.combination_at(index)

        if self.scope.already_queried(index, year):
            logger.debug(f"{combination}/{year} already queried")
        else:
            try:
                pubs = self.client.search(combination, year)
            except requests.RequestException as e:
                logger.warning(f"Fetch failed for {combination}/{year}, will retry next run: {e}")
                self.failed_steps.append(step_id)
                return

            if not self.scope.persist_fetch_result(index, year, pubs):
                self.failed_steps.append(step_id)
                return
            self.scope.mark_queried(index, year)

        if self.follow_references and not cancel_event.is_set():
            if self._fetch_frontier(index, year):
                artifact_store.mark_step(self.path, combination, REFERENCES_KEY, year)

    def _fetch_frontier(self, index: int, year: int) -> bool:
        """Fetch the stored result's missing references. False when the lookup failed."""
        missing = self.scope.missing_referenced_ids(index, year)
        if not missing:
            return True

        combination = self.scope.combination_at(index)
        logger.info(f"Fetching {len(missing)} referenced works of {combination}/{year}")
        try:
            refs = self.client.fetch_by_ids(missing)
        except requests.RequestException as e:
            logger.warning(f"Reference fetch failed for {combination}/{year}, will retry next run: {e}")
            return False
        return self.scope.save_publications(refs)
