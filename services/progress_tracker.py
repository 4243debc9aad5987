# services/progress_tracker.py
import logging
import threading
from datetime import datetime
from typing import Any, Dict, List, NamedTuple, Optional, Protocol

logger = logging.getLogger(__name__)

DONE_LABEL = "Done"
CANCELLED_LABEL = "Cancelled"


class ProgressReporter(Protocol):
    """
    Sink for task progress. Called from the background worker, so
    implementations must return quickly or they stall the pipeline.
    """

    def report(self, label: str, current_index: int, total_count: int, percent: int) -> None:
        ...


class ProgressEvent(NamedTuple):
    label: str
    current_index: int
    total_count: int
    percent: int


class PipelineProgress:
    """
    Thread-safe progress record for one task chain. The worker reports into
    it; the interactive thread polls `to_dict()` or `events()`.
    """

    _HISTORY_LIMIT = 10_000

    def __init__(self, pipeline_id: str = "pipeline"):
        self.pipeline_id = pipeline_id
        self.label: Optional[str] = None
        self.current_index = 0
        self.total_count = 0
        self.percent = 0
        self.last_updated = datetime.now()
        self._history: List[ProgressEvent] = []
        self._lock = threading.Lock()

    def report(self, label: str, current_index: int, total_count: int, percent: int) -> None:
        event = ProgressEvent(label, current_index, total_count, percent)
        with self._lock:
            self.label = label
            self.current_index = current_index
            self.total_count = total_count
            self.percent = percent
            self.last_updated = datetime.now()
            if len(self._history) < self._HISTORY_LIMIT:
                self._history.append(event)

        logger.info(f"[{self.pipeline_id}] {label} ({current_index}/{total_count}) {percent}%")

    @property
    def terminal(self) -> bool:
        with self._lock:
            return self.label in (DONE_LABEL, CANCELLED_LABEL)

    def events(self) -> List[ProgressEvent]:
        with self._lock:
            return list(self._history)

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "pipeline_id": self.pipeline_id,
                "label": self.label,
                "current_index": self.current_index,
                "total_count": self.total_count,
                "percent": self.percent,
                "last_updated": self.last_updated.isoformat(),
            }
