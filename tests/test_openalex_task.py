import threading
from unittest.mock import MagicMock

import requests

from services.research_scope import ResearchScope
from services.task_runner import TaskRunner
from tasks.base_task import YearRange
from tasks.openalex_task import OpenAlexAcquisitionTask

KEYWORDS = "ai;health,law"


class RecordingReporter:
    def __init__(self):
        self.events = []

    def report(self, label, current_index, total_count, percent):
        self.events.append((label, current_index, total_count, percent))


def fake_client(results=None, references=()):
    client = MagicMock()
    client.search.side_effect = lambda combination, year: list((results or {}).get((combination, year), []))
    client.fetch_by_ids.return_value = list(references)
    return client


def test_steps_cover_every_combination_and_year(db_path):
    task = OpenAlexAcquisitionTask(db_path, KEYWORDS, YearRange(2019, 2020), client=fake_client())

    assert task.num_steps() == 4
    assert [task._locate(s) for s in range(4)] == [(0, 2019), (1, 2019), (0, 2020), (1, 2020)]


def test_fetch_then_nothing_left(db_path, make_pub, progress):
    ResearchScope.from_keywords(db_path, KEYWORDS).register()
    pubs = [make_pub(i) for i in range(1, 6)]
    client = fake_client({("ai&health", 2020): pubs, ("ai&law", 2020): pubs[:2]})

    # 1. First run fetches and caches every pair
    task = OpenAlexAcquisitionTask(db_path, KEYWORDS, YearRange(2020, 2020), client=client)
    runner = TaskRunner([task], reporter=progress)
    runner.start()
    assert runner.wait(5)
    runner.finalize()

    scope = ResearchScope.from_keywords(db_path, KEYWORDS)
    assert sorted(scope.load_cached(0, 2020)) == [1, 2, 3, 4, 5]
    assert sorted(scope.load_cached(1, 2020)) == [1, 2]
    assert task.finished()
    assert client.search.call_count == 2

    # 2. A second chain has nothing left to do
    second = RecordingReporter()
    again = TaskRunner(
        [OpenAlexAcquisitionTask(db_path, KEYWORDS, YearRange(2020, 2020), client=client)],
        reporter=second,
    )
    again.start()
    again.finalize()

    assert second.events == [("Done", 1, 1, 100)]
    assert client.search.call_count == 2


def test_queried_pair_is_not_fetched_again(db_path):
    scope = ResearchScope.from_keywords(db_path, KEYWORDS)
    scope.register()
    scope.mark_queried(0, 2020)
    client = fake_client()

    task = OpenAlexAcquisitionTask(db_path, KEYWORDS, YearRange(2020, 2020), client=client)
    task.do_step(0, threading.Event())

    client.search.assert_not_called()


def test_failed_fetch_leaves_pair_unqueried(db_path):
    scope = ResearchScope.from_keywords(db_path, KEYWORDS)
    scope.register()
    client = MagicMock()
    client.search.side_effect = requests.ConnectionError("offline")

    task = OpenAlexAcquisitionTask(db_path, KEYWORDS, YearRange(2020, 2020), client=client)
    task.do_step(0, threading.Event())

    assert task.failed_steps == [0]
    assert not scope.already_queried(0, 2020)
    assert scope.missing_referenced_ids(0, 2020) is None
    assert not task.finished()


def test_empty_result_still_marks_pair(db_path):
    scope = ResearchScope.from_keywords(db_path, KEYWORDS)
    scope.register()

    task = OpenAlexAcquisitionTask(db_path, KEYWORDS, YearRange(2020, 2020), client=fake_client())
    task.do_step(1, threading.Event())

    assert scope.already_queried(1, 2020)
    assert scope.load_cached(1, 2020) == {}


def test_referenced_works_are_fetched(db_path, make_pub):
    scope = ResearchScope.from_keywords(db_path, KEYWORDS)
    scope.register()
    scope.save_publications([make_pub(100, year=2001)])
    client = fake_client(
        {("ai&health", 2020): [make_pub(1, refs=[100, 200]), make_pub(2, refs=[200, 300])]},
        references=[make_pub(200, year=2010), make_pub(300, year=2011)],
    )

    task = OpenAlexAcquisitionTask(db_path, KEYWORDS, YearRange(2020, 2020), client=client)
    task.do_step(0, threading.Event())

    client.fetch_by_ids.assert_called_once_with([200, 300])
    assert scope.missing_referenced_ids(0, 2020) == []
    assert sorted(scope.load_publications([100, 200, 300])) == [100, 200, 300]


def test_steps_only_cover_pending_pairs(db_path):
    scope = ResearchScope.from_keywords(db_path, KEYWORDS)
    scope.register()
    OpenAlexAcquisitionTask(db_path, KEYWORDS, YearRange(2019, 2020), client=fake_client()).do_step(0, threading.Event())

    task = OpenAlexAcquisitionTask(db_path, KEYWORDS, YearRange(2019, 2020), client=fake_client())

    assert task.num_steps() == 3
    assert [task._locate(s) for s in range(3)] == [(1, 2019), (0, 2020), (1, 2020)]


def test_failed_reference_fetch_is_retried(db_path, make_pub):
    scope = ResearchScope.from_keywords(db_path, KEYWORDS)
    scope.register()
    results = {("ai&health", 2020): [make_pub(1, refs=[5])]}

    # 1. References cannot be fetched: the pair is queried but still pending
    offline = fake_client(results)
    offline.fetch_by_ids.side_effect = requests.ConnectionError("offline")
    task = OpenAlexAcquisitionTask(db_path, KEYWORDS, YearRange(2020, 2020), client=offline)
    task.do_step(0, threading.Event())

    assert scope.already_queried(0, 2020)
    assert scope.missing_referenced_ids(0, 2020) == [5]
    assert (0, 2020) in task.pending_pairs()
    assert not task.finished()

    # 2. Next run fetches only the references
    online = fake_client(results, references=[make_pub(5, year=2000)])
    rerun = OpenAlexAcquisitionTask(db_path, KEYWORDS, YearRange(2020, 2020), client=online)
    assert rerun._locate(0) == (0, 2020)
    rerun.do_step(0, threading.Event())

    online.search.assert_not_called()
    online.fetch_by_ids.assert_called_once_with([5])
    assert scope.missing_referenced_ids(0, 2020) == []
    assert (0, 2020) not in rerun.pending_pairs()


def test_references_skipped_on_cancel_are_fetched_later(db_path, make_pub):
    scope = ResearchScope.from_keywords(db_path, KEYWORDS)
    scope.register()
    client = fake_client(
        {("ai&health", 2020): [make_pub(1, refs=[5])]},
        references=[make_pub(5, year=2000)],
    )
    cancelled = threading.Event()
    cancelled.set()

    task = OpenAlexAcquisitionTask(db_path, KEYWORDS, YearRange(2020, 2020), client=client)
    task.do_step(0, cancelled)

    client.fetch_by_ids.assert_not_called()
    assert scope.already_queried(0, 2020)
    assert not task.finished()

    rerun = OpenAlexAcquisitionTask(db_path, KEYWORDS, YearRange(2020, 2020), client=client)
    rerun.do_step(0, threading.Event())

    client.fetch_by_ids.assert_called_once_with([5])
    assert client.search.call_count == 1
    assert scope.missing_referenced_ids(0, 2020) == []


def test_without_references_tokens_are_enough(db_path):
    scope = ResearchScope.from_keywords(db_path, KEYWORDS)
    scope.register()
    scope.mark_queried(0, 2020)
    scope.mark_queried(1, 2020)

    assert OpenAlexAcquisitionTask(
        db_path, KEYWORDS, YearRange(2020, 2020), client=fake_client(), follow_references=False
    ).finished()
    assert not OpenAlexAcquisitionTask(db_path, KEYWORDS, YearRange(2020, 2020), client=fake_client()).finished()
