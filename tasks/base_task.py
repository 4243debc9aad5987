# tasks/base_task.py
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from services import artifact_store

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class YearRange:
    """Inclusive range of publication years a pipeline works on."""

    first: int
    last: int

    def __post_init__(self):
        if self.first > self.last:
            raise ValueError(f"Invalid year range {self.first}-{self.last}")

    @classmethod
    def last_n_years(cls, n: int, last: Optional[int] = None) -> "YearRange":
        last = last if last is not None else datetime.now().year - 1
        return cls(last - n + 1, last)

    def years(self) -> List[int]:
        return list(range(self.first, self.last + 1))

    def __len__(self) -> int:
        return self.last - self.first + 1


class BaseTask(ABC):
    """
    One steppable, resumable unit of work in a task chain.

    The runner only relies on this contract:
    - `finished()` is True when the outputs are already computed and cached;
    - `num_steps()` is the number of progress increments (0 = nothing to do);
    - `do_step(step_id, cancel_event)` does one increment and persists it, so
      re-running a step after a crash or a cancel is safe.

    `cancel_event` is set when the user asked to cancel. The runner acts on it
    between steps; a long step may also check it to stop early.
    """

    name: str = "Task"

    @abstractmethod
    def finished(self) -> bool:
        ...

    @abstractmethod
    def num_steps(self) -> int:
        ...

    @abstractmethod
    def do_step(self, step_id: int, cancel_event: threading.Event) -> None:
        ...

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name!r}>"


class YearlyTask(BaseTask):
    """
    A task with one step per pending year. A year is done once its step mark
    is stored; `num_steps()` snapshots the pending years so step ids stay
    stable while steps mark years done.

    Subclasses set `key`, `path`, `keywords` and `years`, and implement
    `ready(year)` (upstream data is complete) and `process_year(year)`
    (returns True when the year's outputs were stored).
    """

    key: str = "task"
    path: str
    keywords: str
    years: YearRange

    _pending: Optional[List[int]] = None

    def step_years(self) -> List[int]:
        return self.years.years()

    def pending_years(self) -> List[int]:
        wanted = self.step_years()
        done = artifact_store.completed_years(self.path, self.keywords, self.key, wanted)
        return [y for y in wanted if y not in done]

    def finished(self) -> bool:
        return not self.pending_years()

    def has_completed(self, years: List[int]) -> bool:
        done = artifact_store.completed_years(self.path, self.keywords, self.key, years)
        return set(years) <= done

    def num_steps(self) -> int:
        self._pending = self.pending_years()
        return len(self._pending)

    def year_of(self, step_id: int) -> int:
        if self._pending is None:
            self._pending = self.pending_years()
        return self._pending[step_id]

    def do_step(self, step_id: int, cancel_event: threading.Event) -> None:
        year = self.year_of(step_id)
        if not self.ready(year):
            logger.warning(f"'{self.name}' {year}: upstream data incomplete, left pending")
            return
        if self.process_year(year):
            artifact_store.mark_step(self.path, self.keywords, self.key, year)

    @abstractmethod
    def ready(self, year: int) -> bool:
        ...

    @abstractmethod
    def process_year(self, year: int) -> bool:
        ...
