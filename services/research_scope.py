# File: services/research_scope.py

import logging
import time
from typing import Dict, Iterable, List, Mapping, Optional, Set, Tuple, Union

from sqlalchemy import select
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from database.db import StorageUnavailableError, init_db, open_session
from database.models.publication_model import Publication
from database.models.publication_normalized import NormalizedPublication, from_row, to_row
from database.models.query_model import OpenAlexQuery, OpenAlexToken
from database.models.scope_model import ResearchScopeRecord
from utils.keywords import split_keywords
from utils.text_lists import join_ids, split_ids

logger = logging.getLogger(__name__)

# Keeps "IN (...)" lists and multi-row VALUES under SQLite's bound-parameter limit
ID_CHUNK = 500
ROW_CHUNK = 100

_STORE_ERRORS = (StorageUnavailableError, SQLAlchemyError)

Keywords = Union[str, Iterable[str]]
Publications = Union[Mapping[int, NormalizedPublication], Iterable[NormalizedPublication]]


class InvalidScopeError(ValueError):
    """Malformed scope or keyword input."""


class QueryNotFoundError(LookupError):
    """No query record cached for a combination and year (a cache miss)."""


def canonical_combination(a: str, b: str) -> str:
    """Order-independent serialization of a keyword pair."""
    return f"{a}&{b}" if a < b else f"{b}&{a}"


def _as_keyword_list(value: Keywords) -> List[str]:
    if isinstance(value, str):
        return split_keywords(value)
    return split_keywords(",".join(value))


def _by_id(publications: Publications) -> Dict[int, NormalizedPublication]:
    if isinstance(publications, Mapping):
        return {int(pid): pub for pid, pub in publications.items()}
    return {int(pub["id"]): pub for pub in publications}


def _chunks(items: List, size: int):
    for start in range(0, len(items), size):
        yield items[start:start + size]


class ResearchScope:
    """
    A research topic defined by two keyword sets. Every pair of one keyword
    from each set is a combination; the scope caches, per combination and
    year, which publications the bibliographic source returned and which
    publications they cite.

    All store access goes through short-lived sessions, one per operation.
    Storage failures are logged and reported as False / empty results.
    """

    def __init__(self, path: str, kws1: Keywords, kws2: Keywords):
        self.path = path
        self.kws1 = _as_keyword_list(kws1)
        self.kws2 = _as_keyword_list(kws2)
        if not self.kws1 or not self.kws2:
            raise InvalidScopeError(
                f"Both keyword groups must be non-empty (got {self.kws1!r} and {self.kws2!r})"
            )

    @classmethod
    def from_keywords(cls, path: str, keywords: str) -> "ResearchScope":
        """Build a scope from its serialization "k1a,k1b;k2a,k2b"."""
        groups = (keywords or "").split(";")
        if len(groups) != 2:
            raise InvalidScopeError(f"Invalid keywords '{keywords}': expected exactly two ';'-separated groups")
        return cls(path, groups[0], groups[1])

    def __repr__(self) -> str:
        return f"ResearchScope({self.keywords!r})"

    # ------------------------------------------------------------
    # Combination space
    # ------------------------------------------------------------
    @property
    def keywords(self) -> str:
        return ",".join(self.kws1) + ";" + ",".join(self.kws2)

    def num_combinations(self) -> int:
        return len(self.kws1) * len(self.kws2)

    def combination_at(self, index: int) -> str:
        # Indices wrap around the combination space
        temp = index % self.num_combinations()
        i1 = temp % len(self.kws1)
        i2 = temp // len(self.kws1)
        return canonical_combination(self.kws1[i1], self.kws2[i2])

    def combinations(self) -> str:
        return ",".join(
            canonical_combination(k1, k2) for k1 in self.kws1 for k2 in self.kws2
        )

    def _all_combinations(self) -> List[str]:
        return sorted({self.combination_at(i) for i in range(self.num_combinations())})

    # ------------------------------------------------------------
    # Schema & registration
    # ------------------------------------------------------------
    def ensure_storable(self) -> bool:
        """Create every table if absent. Safe to call repeatedly and to retry."""
        try:
            init_db(self.path)
            return True
        except _STORE_ERRORS as e:
            logger.error(f"Publication store at {self.path} is unavailable: {e}", exc_info=True)
            return False

    def register(self) -> bool:
        """Record the scope; an existing record for the same keywords is left untouched."""
        if not self.ensure_storable():
            return False

        stmt = (
            insert(ResearchScopeRecord.__table__)
            .values(
                keywords=self.keywords,
                combinations=self.combinations(),
                update_time=int(time.time()),
            )
            .on_conflict_do_nothing(index_elements=["keywords"])
        )
        try:
            with open_session(self.path) as db:
                db.execute(stmt)
                db.commit()
            return True
        except _STORE_ERRORS as e:
            logger.error(f"Failed to register scope '{self.keywords}': {e}", exc_info=True)
            return False

    @staticmethod
    def list_scopes(path: str) -> List[str]:
        """Keywords of all registered scopes, oldest registration first."""
        try:
            with open_session(path) as db:
                rows = db.execute(
                    select(ResearchScopeRecord.keywords).order_by(
                        ResearchScopeRecord.update_time.asc(),
                        ResearchScopeRecord.keywords.asc(),
                    )
                ).scalars().all()
                return list(rows)
        except _STORE_ERRORS as e:
            logger.error(f"Cannot list research scopes in {path}: {e}", exc_info=True)
            return []

    # ------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------
    def already_queried(self, combination_index: int, year: int) -> bool:
        combination = self.combination_at(combination_index)
        try:
            with open_session(self.path) as db:
                return db.get(OpenAlexToken, (combination, year)) is not None
        except _STORE_ERRORS as e:
            logger.error(f"Token lookup failed for {combination}/{year}: {e}", exc_info=True)
            return False

    def mark_queried(self, combination_index: int, year: int) -> bool:
        combination = self.combination_at(combination_index)
        stmt = (
            insert(OpenAlexToken.__table__)
            .values(combination=combination, year=year, update_time=int(time.time()))
            .on_conflict_do_nothing(index_elements=["combination", "year"])
        )
        try:
            with open_session(self.path) as db:
                db.execute(stmt)
                db.commit()
            return True
        except _STORE_ERRORS as e:
            logger.error(f"Failed to mark {combination}/{year} as queried: {e}", exc_info=True)
            return False

    def queried(self, years: Iterable[int]) -> Set[Tuple[str, int]]:
        """(combination, year) pairs of this scope that already have a token."""
        years = list(years)
        if not years:
            return set()
        try:
            with open_session(self.path) as db:
                rows = db.execute(
                    select(OpenAlexToken.combination, OpenAlexToken.year)
                    .where(OpenAlexToken.combination.in_(self._all_combinations()))
                    .where(OpenAlexToken.year.in_(years))
                ).all()
                return {(c, y) for c, y in rows}
        except _STORE_ERRORS as e:
            logger.error(f"Token scan failed for scope '{self.keywords}': {e}", exc_info=True)
            return set()

    def year_queried(self, year: int) -> bool:
        """True once every combination of the scope has a token for `year`."""
        return len(self.queried([year])) == len(self._all_combinations())

    # ------------------------------------------------------------
    # Query records
    # ------------------------------------------------------------
    def _query_record(self, db: Session, combination_index: int, year: int) -> OpenAlexQuery:
        combination = self.combination_at(combination_index)
        record = db.get(OpenAlexQuery, (combination, year))
        if record is None:
            raise QueryNotFoundError(f"No cached query for {combination}/{year}")
        return record

    def load_cached(self, combination_index: int, year: int) -> Dict[int, NormalizedPublication]:
        """Publications returned by the last successful fetch, or {} on a cache miss."""
        try:
            with open_session(self.path) as db:
                record = self._query_record(db, combination_index, year)
                ids = split_ids(record.ids)
                pubs = self._resolve(db, ids)
        except QueryNotFoundError:
            return {}
        except _STORE_ERRORS as e:
            logger.error(f"Failed to load cached publications: {e}", exc_info=True)
            return {}

        if len(pubs) < len(set(ids)):
            logger.warning(
                f"{len(set(ids)) - len(pubs)} publication(s) of "
                f"{self.combination_at(combination_index)}/{year} are missing from the store"
            )
        return pubs

    def persist_fetch_result(self, combination_index: int, year: int, publications: Publications) -> bool:
        """
        Store a fetch result in one transaction: insert unseen publications,
        then overwrite the query record with the full id set and the union of
        their references. Re-running with the same data is harmless.
        """
        combination = self.combination_at(combination_index)
        pubs = _by_id(publications)
        ref_ids = sorted({int(r) for pub in pubs.values() for r in pub.get("ref_ids") or []})

        stmt = insert(OpenAlexQuery.__table__).values(
            combination=combination,
            year=year,
            update_time=int(time.time()),
            ids=join_ids(sorted(pubs)),
            ref_ids=join_ids(ref_ids),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["combination", "year"],
            set_={
                "update_time": stmt.excluded.update_time,
                "ids": stmt.excluded.ids,
                "ref_ids": stmt.excluded.ref_ids,
            },
        )

        try:
            with open_session(self.path) as db:
                inserted = self._insert_new(db, pubs)
                db.execute(stmt)
                db.commit()
        except _STORE_ERRORS as e:
            logger.error(
                f"Failed to persist {combination}/{year}, transaction rolled back: {e}",
                exc_info=True,
            )
            return False

        logger.info(
            f"Persisted {combination}/{year}: {len(pubs)} publications "
            f"({inserted} new), {len(ref_ids)} references"
        )
        return True

    def missing_referenced_ids(self, combination_index: int, year: int) -> Optional[List[int]]:
        """
        The citation frontier: ids referenced by the cached result that are not
        stored yet. None when nothing is cached for (combination, year).
        """
        try:
            with open_session(self.path) as db:
                record = self._query_record(db, combination_index, year)
                ref_ids = split_ids(record.ref_ids)
                known = self._existing_ids(db, ref_ids)
        except QueryNotFoundError:
            return None
        except _STORE_ERRORS as e:
            logger.error(f"Failed to compute citation frontier: {e}", exc_info=True)
            return None

        return [r for r in ref_ids if r not in known]

    # ------------------------------------------------------------
    # Publications
    # ------------------------------------------------------------
    def save_publications(self, publications: Publications) -> bool:
        """Insert unseen publications without touching any query record."""
        pubs = _by_id(publications)
        if not pubs:
            return True
        try:
            with open_session(self.path) as db:
                inserted = self._insert_new(db, pubs)
                db.commit()
        except _STORE_ERRORS as e:
            logger.error(f"Failed to save {len(pubs)} publications: {e}", exc_info=True)
            return False

        logger.debug(f"Saved {inserted} new of {len(pubs)} publications")
        return True

    def load_publications(self, ids: Iterable[int]) -> Dict[int, NormalizedPublication]:
        try:
            with open_session(self.path) as db:
                return self._resolve(db, list(ids))
        except _STORE_ERRORS as e:
            logger.error(f"Failed to load publications: {e}", exc_info=True)
            return {}

    def load_year(self, year: int) -> Dict[int, NormalizedPublication]:
        """Publications cached for any combination of the scope in a year."""
        try:
            with open_session(self.path) as db:
                rows = db.execute(
                    select(OpenAlexQuery.ids)
                    .where(OpenAlexQuery.combination.in_(self._all_combinations()))
                    .where(OpenAlexQuery.year == year)
                ).scalars().all()
                ids = sorted({pid for value in rows for pid in split_ids(value)})
                return self._resolve(db, ids)
        except _STORE_ERRORS as e:
            logger.error(f"Failed to load {year} publications of '{self.keywords}': {e}", exc_info=True)
            return {}

    def citing_years(self, ids: Iterable[int]) -> Dict[int, List[int]]:
        """For each requested id, the publication years of stored works citing it."""
        wanted = set(ids)
        citing: Dict[int, List[int]] = {pid: [] for pid in wanted}
        try:
            with open_session(self.path) as db:
                rows = db.execute(select(Publication.year, Publication.ref_ids)).all()
        except _STORE_ERRORS as e:
            logger.error(f"Failed to scan references: {e}", exc_info=True)
            return citing

        for year, ref_ids in rows:
            if year is None:
                continue
            for ref in split_ids(ref_ids):
                if ref in wanted:
                    citing[ref].append(year)
        return citing

    # ------------------------------------------------------------
    # Internal helpers (caller owns the session/transaction)
    # ------------------------------------------------------------
    def _existing_ids(self, db: Session, ids: Iterable[int]) -> Set[int]:
        found: Set[int] = set()
        for chunk in _chunks(sorted(set(ids)), ID_CHUNK):
            found.update(db.execute(select(Publication.id).where(Publication.id.in_(chunk))).scalars())
        return found

    def _insert_new(self, db: Session, pubs: Dict[int, NormalizedPublication]) -> int:
        existing = self._existing_ids(db, pubs.keys())
        rows = [to_row(pub) for pid, pub in sorted(pubs.items()) if pid not in existing]
        for chunk in _chunks(rows, ROW_CHUNK):
            db.execute(
                insert(Publication.__table__).values(chunk).on_conflict_do_nothing(index_elements=["id"])
            )
        return len(rows)

    def _resolve(self, db: Session, ids: List[int]) -> Dict[int, NormalizedPublication]:
        pubs: Dict[int, NormalizedPublication] = {}
        for chunk in _chunks(sorted(set(ids)), ID_CHUNK):
            for row in db.execute(select(Publication).where(Publication.id.in_(chunk))).scalars():
                pubs[row.id] = from_row(row)
        return dict(sorted(pubs.items()))
