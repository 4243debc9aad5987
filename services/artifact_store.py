# File: services/artifact_store.py
"""
Persistence of derived-pipeline artifacts (terms, biterm weights, candidates,
topics, time series, predictions) and of per-year step marks.

Every function opens its own short-lived session. Writes return False and
reads return empty results when the store fails; the error is logged.
"""

import logging
import time
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

import numpy as np
from sqlalchemy import select
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.exc import SQLAlchemyError

from database.db import StorageUnavailableError, open_session
from database.models.analysis_model import Prediction, TaskStep, TimeSeries
from database.models.term_model import PubScopeTerms, PubTerms, ScopeTerms
from utils.matrix_blob import from_blob, to_blob
from utils.text_lists import join_terms, split_terms

logger = logging.getLogger(__name__)

_STORE_ERRORS = (StorageUnavailableError, SQLAlchemyError)
ROW_CHUNK = 100
ID_CHUNK = 500

Matrices = Tuple[np.ndarray, np.ndarray]


def _upsert_statements(model, rows: List[Dict[str, Any]], keys: List[str], overwrite: bool = True):
    table = model.__table__
    for start in range(0, len(rows), ROW_CHUNK):
        stmt = insert(table).values(rows[start:start + ROW_CHUNK])
        if overwrite:
            stmt = stmt.on_conflict_do_update(
                index_elements=keys,
                set_={c.name: stmt.excluded[c.name] for c in table.columns if c.name not in keys},
            )
        else:
            stmt = stmt.on_conflict_do_nothing(index_elements=keys)
        yield stmt


def _write(path: str, description: str, statements) -> bool:
    try:
        with open_session(path) as db:
            for stmt in statements:
                db.execute(stmt)
            db.commit()
        return True
    except _STORE_ERRORS as e:
        logger.error(f"Failed to save {description}: {e}", exc_info=True)
        return False


# ------------------------------------------------------------
# Step marks
# ------------------------------------------------------------
def mark_step(path: str, keywords: str, task: str, year: int) -> bool:
    row = {"keywords": keywords, "task": task, "year": year, "update_time": int(time.time())}
    return _write(
        path,
        f"step mark {task}/{year}",
        _upsert_statements(TaskStep, [row], ["keywords", "task", "year"]),
    )


def completed_years(path: str, keywords: str, task: str, years: Iterable[int]) -> Set[int]:
    years = list(years)
    try:
        with open_session(path) as db:
            rows = db.execute(
                select(TaskStep.year)
                .where(TaskStep.keywords == keywords)
                .where(TaskStep.task == task)
                .where(TaskStep.year.in_(years))
            ).scalars().all()
            return set(rows)
    except _STORE_ERRORS as e:
        logger.error(f"Failed to read step marks of {task}: {e}", exc_info=True)
        return set()


def completed_pairs(path: str, task: str, keys: Iterable[str], years: Iterable[int]) -> Set[Tuple[str, int]]:
    """(keywords, year) marks of `task` over several keyword strings at once."""
    keys, years = list(keys), list(years)
    if not keys or not years:
        return set()
    try:
        with open_session(path) as db:
            rows = db.execute(
                select(TaskStep.keywords, TaskStep.year)
                .where(TaskStep.task == task)
                .where(TaskStep.keywords.in_(keys))
                .where(TaskStep.year.in_(years))
            ).all()
            return {(k, y) for k, y in rows}
    except _STORE_ERRORS as e:
        logger.error(f"Failed to read step marks of {task}: {e}", exc_info=True)
        return set()


# ------------------------------------------------------------
# Terms
# ------------------------------------------------------------
def load_pub_terms(path: str, ids: Iterable[int]) -> Dict[int, List[str]]:
    ids = sorted(set(ids))
    found: Dict[int, List[str]] = {}
    try:
        with open_session(path) as db:
            for start in range(0, len(ids), ID_CHUNK):
                chunk = ids[start:start + ID_CHUNK]
                for pid, terms in db.execute(
                    select(PubTerms.id, PubTerms.terms).where(PubTerms.id.in_(chunk))
                ):
                    found[pid] = split_terms(terms)
    except _STORE_ERRORS as e:
        logger.error(f"Failed to load publication terms: {e}", exc_info=True)
    return found


def save_pub_terms(path: str, terms_by_pub: Dict[int, List[str]]) -> bool:
    # Publications never change, so neither do their terms
    rows = [{"id": pid, "terms": join_terms(terms)} for pid, terms in sorted(terms_by_pub.items())]
    if not rows:
        return True
    return _write(path, "publication terms", _upsert_statements(PubTerms, rows, ["id"], overwrite=False))


def save_year_terms(
    path: str,
    keywords: str,
    year: int,
    vocabulary: List[str],
    scope_terms_by_pub: Dict[int, List[str]],
) -> bool:
    """Vocabulary of a year plus each publication's terms within it, in one transaction."""
    now = int(time.time())
    statements = list(_upsert_statements(
        ScopeTerms,
        [{"keywords": keywords, "year": year, "update_time": now, "terms": join_terms(vocabulary)}],
        ["keywords", "year"],
    ))
    pub_rows = [
        {"id": pid, "scope_keywords": keywords, "year": year, "update_time": now, "terms": join_terms(terms)}
        for pid, terms in sorted(scope_terms_by_pub.items())
    ]
    statements.extend(_upsert_statements(PubScopeTerms, pub_rows, ["id", "scope_keywords"]))
    return _write(path, f"scope terms {keywords}/{year}", statements)


def load_scope_terms(path: str, keywords: str, year: int) -> Optional[List[str]]:
    try:
        with open_session(path) as db:
            row = db.get(ScopeTerms, (keywords, year))
            return split_terms(row.terms) if row is not None else None
    except _STORE_ERRORS as e:
        logger.error(f"Failed to load scope terms {keywords}/{year}: {e}", exc_info=True)
        return None


def load_pub_scope_terms(path: str, keywords: str, year: int) -> Dict[int, List[str]]:
    try:
        with open_session(path) as db:
            rows = db.execute(
                select(PubScopeTerms.id, PubScopeTerms.terms)
                .where(PubScopeTerms.scope_keywords == keywords)
                .where(PubScopeTerms.year == year)
            ).all()
            return {pid: split_terms(terms) for pid, terms in rows}
    except _STORE_ERRORS as e:
        logger.error(f"Failed to load publication scope terms {keywords}/{year}: {e}", exc_info=True)
        return {}


# ------------------------------------------------------------
# JSON artifacts (biterm weights, candidates, topics)
# ------------------------------------------------------------
def save_json_artifact(path: str, model, field: str, keywords: str, year: int, value: Any) -> bool:
    row = {"keywords": keywords, "year": year, "update_time": int(time.time()), field: value}
    return _write(
        path,
        f"{model.__tablename__} {keywords}/{year}",
        _upsert_statements(model, [row], ["keywords", "year"]),
    )


def load_json_artifact(path: str, model, field: str, keywords: str, year: int) -> Optional[Any]:
    try:
        with open_session(path) as db:
            row = db.get(model, (keywords, year))
            return getattr(row, field) if row is not None else None
    except _STORE_ERRORS as e:
        logger.error(f"Failed to load {model.__tablename__} {keywords}/{year}: {e}", exc_info=True)
        return None


# ------------------------------------------------------------
# Matrices (time series, predictions)
# ------------------------------------------------------------
def save_time_series(path: str, keywords: str, year: int, series: Dict[int, Matrices]) -> bool:
    now = int(time.time())
    rows = [
        {"keywords": keywords, "year": year, "id": pid, "update_time": now,
         "inputs": to_blob(inputs), "targets": to_blob(targets)}
        for pid, (inputs, targets) in sorted(series.items())
    ]
    if not rows:
        return True
    return _write(path, f"time series {keywords}/{year}", _upsert_statements(TimeSeries, rows, ["keywords", "year", "id"]))


def load_time_series(path: str, keywords: str, year: int) -> Dict[int, Matrices]:
    try:
        with open_session(path) as db:
            rows = db.execute(
                select(TimeSeries.id, TimeSeries.inputs, TimeSeries.targets)
                .where(TimeSeries.keywords == keywords)
                .where(TimeSeries.year == year)
                .order_by(TimeSeries.id)
            ).all()
            return {pid: (from_blob(inputs), from_blob(targets)) for pid, inputs, targets in rows}
    except _STORE_ERRORS as e:
        logger.error(f"Failed to load time series {keywords}/{year}: {e}", exc_info=True)
        return {}


def save_predictions(path: str, keywords: str, year: int, predictions: Dict[int, Matrices]) -> bool:
    now = int(time.time())
    rows = [
        {"keywords": keywords, "year": year, "id": pid, "update_time": now,
         "inputs": to_blob(inputs), "predicted": to_blob(predicted)}
        for pid, (inputs, predicted) in sorted(predictions.items())
    ]
    if not rows:
        return True
    return _write(path, f"predictions {keywords}/{year}", _upsert_statements(Prediction, rows, ["keywords", "year", "id"]))


def load_predictions(path: str, keywords: str, year: int) -> Dict[int, Matrices]:
    try:
        with open_session(path) as db:
            rows = db.execute(
                select(Prediction.id, Prediction.inputs, Prediction.predicted)
                .where(Prediction.keywords == keywords)
                .where(Prediction.year == year)
                .order_by(Prediction.id)
            ).all()
            return {pid: (from_blob(inputs), from_blob(predicted)) for pid, inputs, predicted in rows}
    except _STORE_ERRORS as e:
        logger.error(f"Failed to load predictions {keywords}/{year}: {e}", exc_info=True)
        return {}
