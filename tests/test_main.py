from unittest.mock import patch

import main
from services.research_scope import ResearchScope
from tasks.base_task import BaseTask


class FakeTask(BaseTask):
    def __init__(self, name, steps, fail_at=None):
        self.name = name
        self.steps = steps
        self.fail_at = fail_at
        self.done_steps = []

    def finished(self):
        return False

    def num_steps(self):
        return self.steps

    def do_step(self, step_id, cancel_event):
        if step_id == self.fail_at:
            raise RuntimeError("boom")
        self.done_steps.append(step_id)


def test_list_scopes(db_path, capsys):
    ResearchScope.from_keywords(db_path, "ai;law").register()

    assert main.run(main.parse_args(["--db", db_path, "--list-scopes"])) == 0
    assert capsys.readouterr().out.strip() == "ai;law"


def test_invalid_scope_is_refused(db_path):
    assert main.run(main.parse_args(["ai", "--db", db_path])) == 1
    assert ResearchScope.list_scopes(db_path) == []


def test_invalid_year_range(db_path):
    args = main.parse_args(["ai;law", "--db", db_path, "--first-year", "2020", "--last-year", "2010"])
    assert main.run(args) == 2


def test_run_registers_scope_and_runs_chain(db_path):
    task = FakeTask("T1", 2)
    with patch("main.build_pipeline", return_value=[task]) as mock_build:
        code = main.run(main.parse_args(["Law;AI", "--db", db_path, "--first-year", "2018", "--last-year", "2020"]))

    assert code == 0
    assert task.done_steps == [0, 1]
    assert ResearchScope.list_scopes(db_path) == ["law;ai"]
    assert mock_build.call_args.args[1] == "law;ai"


def test_failures_give_nonzero_exit(db_path):
    with patch("main.build_pipeline", return_value=[FakeTask("T1", 1, fail_at=0)]):
        assert main.run(main.parse_args(["ai;law", "--db", db_path])) == 1
