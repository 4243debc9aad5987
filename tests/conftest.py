import pytest

from database.db import dispose_engine
from services.progress_tracker import PipelineProgress


@pytest.fixture
def db_path(tmp_path):
    path = str(tmp_path / "store.db")
    yield path
    dispose_engine(path)


@pytest.fixture
def progress():
    return PipelineProgress("test")


@pytest.fixture
def make_pub():
    def _make(pid, year=2020, title="", abstract="", refs=(), authors=("A. Author",)):
        return {
            "id": pid,
            "year": year,
            "title": title or f"Publication {pid}",
            "abstract": abstract,
            "source": "Journal of Tests",
            "language": "en",
            "authors": list(authors),
            "ref_ids": list(refs),
        }
    return _make
