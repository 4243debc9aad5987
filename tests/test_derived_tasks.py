import threading

import joblib
import numpy as np
import pytest

from services.research_scope import ResearchScope
from services.task_runner import TaskRunner
from services.term_extraction import biterm_weights, build_vocabulary, extract_terms
from tasks.base_task import YearRange
from tasks.biterm_weight_task import BitermWeightTask
from tasks.candidate_identification_task import CandidateIdentificationTask
from tasks.prediction_task import ModelUnavailableError
from tasks.time_series_task import matched_topics
from tasks.topic_identification_task import group_topics
from workflow import build_pipeline

KEYWORDS = "ai;health"
YEARS = YearRange(2016, 2020)


class ConstantModel:
    """Stands in for the trained forecaster: predicts one citation per year."""

    def __init__(self, horizon):
        self.horizon = horizon

    def predict(self, X):
        return np.ones((len(X), self.horizon))


# ------------------------------------------------------------
# Term extraction & grouping
# ------------------------------------------------------------
def test_extract_terms_drops_stopwords_and_duplicates():
    terms = extract_terms("Deep learning for health", "The health of deep models in 2020")
    assert terms == ["deep", "learning", "health", "models"]


def test_build_vocabulary_ranks_by_document_frequency():
    terms = {1: ["aaa", "bbb"], 2: ["aaa", "ccc"], 3: ["aaa", "bbb"]}

    assert build_vocabulary(terms, size=10) == ["aaa", "bbb"]
    assert build_vocabulary(terms, size=1) == ["aaa"]
    assert build_vocabulary(terms, size=10, min_document_frequency=1) == ["aaa", "bbb", "ccc"]


def test_biterm_weights_are_shares_of_publications():
    weights = biterm_weights({1: ["a", "b"], 2: ["a", "b", "c"], 3: []})

    assert weights == pytest.approx({"a&b": 2 / 3, "a&c": 1 / 3, "b&c": 1 / 3})
    assert biterm_weights({}) == {}


def test_group_topics_by_shared_terms():
    weights = {"a&b": 0.5, "b&c": 0.2, "x&y": 0.9}

    topics = group_topics(["a&b", "b&c", "x&y"], weights)

    assert topics == [["x&y"], ["a&b", "b&c"]]
    assert matched_topics(["a", "b"], topics) == {1}
    assert matched_topics(["a", "x"], topics) == set()


# ------------------------------------------------------------
# Pipeline over a seeded store
# ------------------------------------------------------------
def seed_store(path, make_pub):
    scope = ResearchScope.from_keywords(path, KEYWORDS)
    assert scope.register()
    for year in YEARS.years():
        pubs = []
        for i in range(1, 4):
            refs = [20161] if (year in (2018, 2019) and i == 1) else []
            pubs.append(make_pub(
                year * 10 + i,
                year=year,
                title=f"Neural networks for hospital diagnosis {i}",
                abstract="Neural networks improve hospital diagnosis accuracy.",
                refs=refs,
            ))
        assert scope.persist_fetch_result(0, year, pubs)
        scope.mark_queried(0, year)
    return scope


@pytest.fixture
def model_path(tmp_path):
    path = tmp_path / "model.joblib"
    joblib.dump(ConstantModel(horizon=2), path)
    return str(path)


def run_chain(tasks):
    runner = TaskRunner(tasks)
    runner.start()
    assert runner.wait(30)
    runner.finalize()
    return runner


def test_pipeline_builds_series_and_predictions(db_path, make_pub, model_path):
    seed_store(db_path, make_pub)
    tasks = build_pipeline(db_path, KEYWORDS, YEARS, model_path, client=object(), history=2, horizon=2)
    biterm, candidates, topics, time_series, prediction = tasks[1:]

    runner = run_chain(tasks)

    assert runner.failures == []
    assert all(task.finished() for task in tasks)

    assert biterm.load(2016)["hospital&neural"] == pytest.approx(1.0)
    assert "hospital&neural" in candidates.load(2016)
    assert len(topics.load(2016)) == 1

    series = time_series.load(2016)
    assert sorted(series) == [20161, 20162, 20163]
    inputs, targets = series[20161]
    assert inputs.shape == (2, 2)
    assert targets.tolist() == [[1.0, 1.0]]
    assert inputs[1].tolist() == [3.0, 3.0]
    assert series[20162][1].tolist() == [[0.0, 0.0]]

    # Horizon runs past the last year: shortened targets
    assert time_series.load(2019)[20191][1].shape == (1, 0)

    assert prediction.prediction_years() == [2018, 2019]
    predicted = prediction.load(2018)
    assert sorted(predicted) == [20181, 20182, 20183]
    assert predicted[20181][1].tolist() == [[1.0, 1.0]]
    assert prediction.load(2016) == {}


def test_rerun_has_nothing_left(db_path, make_pub, model_path, progress):
    seed_store(db_path, make_pub)
    run_chain(build_pipeline(db_path, KEYWORDS, YEARS, model_path, client=object(), history=2, horizon=2))

    runner = TaskRunner(
        build_pipeline(db_path, KEYWORDS, YEARS, model_path, client=object(), history=2, horizon=2),
        reporter=progress,
    )
    runner.start()
    runner.finalize()

    assert progress.events() == [("Done", 6, 6, 100)]


def test_missing_model_fails_prediction_only(db_path, make_pub, tmp_path):
    seed_store(db_path, make_pub)
    missing = str(tmp_path / "nowhere.joblib")
    tasks = build_pipeline(db_path, KEYWORDS, YEARS, missing, client=object(), history=2, horizon=2)

    runner = run_chain(tasks)

    assert [f.task_name for f in runner.failures] == ["Prediction"]
    assert tasks[4].finished()
    assert not tasks[5].finished()

    with pytest.raises(ModelUnavailableError):
        tasks[5].do_step(0, threading.Event())


def test_unusable_model_file(db_path, make_pub, tmp_path):
    seed_store(db_path, make_pub)
    path = tmp_path / "broken.joblib"
    path.write_bytes(b"not a model")
    tasks = build_pipeline(db_path, KEYWORDS, YEARS, str(path), client=object(), history=2, horizon=2)
    run_chain(tasks[:5])

    with pytest.raises(ModelUnavailableError):
        tasks[5].do_step(0, threading.Event())


def test_year_without_fetched_data_stays_pending(db_path, make_pub):
    scope = ResearchScope.from_keywords(db_path, KEYWORDS)
    scope.register()
    years = YearRange(2020, 2020)

    # 1. Nothing fetched for 2020 yet: no weights, no step mark
    biterm = BitermWeightTask(db_path, KEYWORDS, years)
    candidates = CandidateIdentificationTask(db_path, KEYWORDS, years, biterm)
    run_chain([biterm, candidates])

    assert biterm.load(2020) == {}
    assert not biterm.finished()
    assert not candidates.finished()

    # 2. Once the year is fetched a new chain computes it
    pubs = [
        make_pub(i, title="Neural networks for hospital diagnosis", abstract="Neural networks improve diagnosis.")
        for i in (1, 2)
    ]
    scope.persist_fetch_result(0, 2020, pubs)
    scope.mark_queried(0, 2020)

    rerun = BitermWeightTask(db_path, KEYWORDS, years)
    assert rerun.num_steps() == 1
    run_chain([rerun, CandidateIdentificationTask(db_path, KEYWORDS, years, rerun)])

    assert rerun.finished()
    assert rerun.load(2020)["diagnosis&neural"] == pytest.approx(1.0)
    assert "diagnosis&neural" in candidates.load(2020)


def test_steps_cover_only_pending_years(db_path, make_pub):
    scope = seed_store(db_path, make_pub)
    run_chain([BitermWeightTask(db_path, KEYWORDS, YearRange(2016, 2018))])

    task = BitermWeightTask(db_path, KEYWORDS, YEARS)

    assert task.num_steps() == 2
    assert [task.year_of(0), task.year_of(1)] == [2019, 2020]
    assert scope.year_queried(2020)
