"""Thread-safe result aggregation for a running scan job.

The aggregator is the only state shared between the scanning and processing
stages: a bounded ring buffer of matched log events, three monotonically
increasing file counters, and the job lifecycle state. Every mutation goes
through a lock; observers are notified through the EventBus synchronously on
the thread that made the change, after the lock has been released.
"""

import logging
import threading
from collections import deque
from datetime import datetime
from typing import Any, Callable, Iterable, List, Optional

from pydantic import BaseModel

from logscan.domain.events import EventsAppended, PropertyChanged
from logscan.domain.models import JobState, LogEvent
from logscan.infrastructure.event_bus import EventBus

logger = logging.getLogger(__name__)

JOB_STATE = "jobState"
FILES_TO_PROCESS = "filesToProcess"
PROCESSED_FILES = "processedFiles"
SELECTED_FILES = "selectedFiles"
PROPERTIES = (JOB_STATE, FILES_TO_PROCESS, PROCESSED_FILES, SELECTED_FILES)


class ResultSnapshot(BaseModel):
    """Consistent point-in-time view for polling observers."""

    job_state: JobState
    files_to_process: int
    processed_files: int
    selected_files: int
    event_count: int
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    error: Optional[str] = None
    success: bool = False
    stop_requested: bool = False


class _PropertyListener:
    """Filters PropertyChanged events down to one property name."""

    def __init__(self, name: str, callback: Callable[[PropertyChanged], None]):
        self.name = name
        self.callback = callback

    def __call__(self, event: PropertyChanged):
        if event.name == self.name:
            self.callback(event)

    def __eq__(self, other: Any) -> bool:
        return (
            isinstance(other, _PropertyListener)
            and other.name == self.name
            and other.callback == self.callback
        )

    def __hash__(self) -> int:
        return hash((self.name, self.callback))


def format_duration(start: Optional[datetime], end: Optional[datetime]) -> str:
    if start is None or end is None:
        return "--:--"
    seconds = int(max(0.0, (end - start).total_seconds()))
    hours, rem = divmod(seconds, 3600)
    minutes, secs = divmod(rem, 60)
    if hours:
        return f"{hours}h {minutes:02d}m {secs:02d}s"
    return f"{minutes:02d}m {secs:02d}s"


class ResultAggregator:
    """Bounded event buffer, progress counters and job state of one scan job."""

    def __init__(self, max_results: int = 1000, event_bus: Optional[EventBus] = None):
        if max_results < 1:
            raise ValueError("max_results must be >= 1")
        self._lock = threading.RLock()
        self.event_bus = event_bus or EventBus()

        self._events: deque = deque(maxlen=max_results)
        self._selected_index = -1

        # Counters
        self._files_to_process = 0
        self._processed_files = 0
        self._selected_files = 0

        # Lifecycle
        self._job_state = JobState.STOPPED
        self._stop_event = threading.Event()
        self._start_time: Optional[datetime] = None
        self._end_time: Optional[datetime] = None
        self._error: Optional[BaseException] = None

    # --- Events buffer ---

    @property
    def max_results(self) -> int:
        return self._events.maxlen

    def add(self, event: LogEvent):
        self.add_all([event])

    def add_all(self, events: Iterable[LogEvent]):
        """Appends a batch atomically; observers get a single notification."""
        batch = list(events)
        if not batch:
            return
        with self._lock:
            self._events.extend(batch)
            size = len(self._events)
        self.event_bus.publish(EventsAppended(count=len(batch), size=size))

    def events(self) -> List[LogEvent]:
        with self._lock:
            return list(self._events)

    def get(self, index: int) -> Optional[LogEvent]:
        with self._lock:
            if 0 <= index < len(self._events):
                return self._events[index]
            return None

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    def select(self, index: int):
        with self._lock:
            self._selected_index = index

    def selected_event(self) -> Optional[LogEvent]:
        with self._lock:
            return self.get(self._selected_index)

    # --- Counters ---

    @property
    def files_to_process(self) -> int:
        with self._lock:
            return self._files_to_process

    @property
    def processed_files(self) -> int:
        with self._lock:
            return self._processed_files

    @property
    def selected_files(self) -> int:
        with self._lock:
            return self._selected_files

    def add_files_to_process(self, count: int):
        if count <= 0:
            return
        with self._lock:
            old = self._files_to_process
            self._files_to_process = old + count
        self._fire(FILES_TO_PROCESS, old, old + count)

    def add_processed_file(self):
        with self._lock:
            old = self._processed_files
            self._processed_files = old + 1
        self._fire(PROCESSED_FILES, old, old + 1)

    def add_selected_file(self):
        with self._lock:
            old = self._selected_files
            self._selected_files = old + 1
        self._fire(SELECTED_FILES, old, old + 1)

    def clear(self):
        """Resets buffer, counters, error and timestamps."""
        with self._lock:
            changes = self._reset()
        for name, old in changes:
            self._fire(name, old, 0)

    def _reset(self):
        changes = [
            (name, old)
            for name, old in (
                (FILES_TO_PROCESS, self._files_to_process),
                (PROCESSED_FILES, self._processed_files),
                (SELECTED_FILES, self._selected_files),
            )
            if old != 0
        ]
        self._events.clear()
        self._selected_index = -1
        self._files_to_process = 0
        self._processed_files = 0
        self._selected_files = 0
        self._error = None
        self._start_time = None
        self._end_time = None
        return changes

    # --- Lifecycle ---

    @property
    def job_state(self) -> JobState:
        with self._lock:
            return self._job_state

    @property
    def error(self) -> Optional[BaseException]:
        with self._lock:
            return self._error

    @property
    def start_time(self) -> Optional[datetime]:
        with self._lock:
            return self._start_time

    @property
    def end_time(self) -> Optional[datetime]:
        with self._lock:
            return self._end_time

    @property
    def stop_requested(self) -> bool:
        """True once cancellation was requested for the current (or last) run."""
        return self._stop_event.is_set()

    def is_stopping(self) -> bool:
        return self._stop_event.is_set()

    def is_success(self) -> bool:
        with self._lock:
            return self._end_time is not None and self._error is None

    def before_run(self):
        """STOPPED -> RUNNING: clears previous results and records the start time."""
        with self._lock:
            if self._job_state != JobState.STOPPED:
                raise RuntimeError(f"Cannot start a job while {self._job_state.value}")
            changes = self._reset()
            self._stop_event.clear()
            self._start_time = datetime.now()
            old_state = self._job_state
            self._job_state = JobState.RUNNING
        logger.info("Job started")
        for name, old in changes:
            self._fire(name, old, 0)
        self._fire(JOB_STATE, old_state, JobState.RUNNING)

    def request_stop(self) -> bool:
        """RUNNING -> STOPPING. Returns False when there is no running job to stop."""
        with self._lock:
            if self._job_state != JobState.RUNNING:
                return False
            self._stop_event.set()
            self._job_state = JobState.STOPPING
        logger.info("Job stop requested")
        self._fire(JOB_STATE, JobState.RUNNING, JobState.STOPPING)
        return True

    def after_run(self, error: Optional[BaseException] = None):
        """RUNNING/STOPPING -> STOPPED: records the end time and the fatal error, if any."""
        with self._lock:
            self._end_time = datetime.now()
            if error is not None:
                self._error = error
            old_state = self._job_state
            self._job_state = JobState.STOPPED
            duration = format_duration(self._start_time, self._end_time)
            stats = (
                f"files_to_process={self._files_to_process}, processed={self._processed_files}, "
                f"selected={self._selected_files}, events={len(self._events)}"
            )
        logger.info(f"Work time {duration}")
        logger.info(f"Job statistics: {stats}")
        if error is not None:
            logger.error(f"Job failed: {error}")
        if old_state != JobState.STOPPED:
            self._fire(JOB_STATE, old_state, JobState.STOPPED)

    def snapshot(self) -> ResultSnapshot:
        with self._lock:
            return ResultSnapshot(
                job_state=self._job_state,
                files_to_process=self._files_to_process,
                processed_files=self._processed_files,
                selected_files=self._selected_files,
                event_count=len(self._events),
                start_time=self._start_time,
                end_time=self._end_time,
                error=str(self._error) if self._error is not None else None,
                success=self._end_time is not None and self._error is None,
                stop_requested=self._stop_event.is_set(),
            )

    # --- Observation ---

    def subscribe(self, property_name: str, callback: Callable[[PropertyChanged], None]):
        if property_name not in PROPERTIES:
            raise ValueError(f"Unknown property {property_name!r}. Use one of {list(PROPERTIES)}")
        self.event_bus.subscribe(PropertyChanged, _PropertyListener(property_name, callback))

    def unsubscribe(self, property_name: str, callback: Callable[[PropertyChanged], None]) -> bool:
        return self.event_bus.unsubscribe(PropertyChanged, _PropertyListener(property_name, callback))

    def subscribe_events(self, callback: Callable[[EventsAppended], None]):
        self.event_bus.subscribe(EventsAppended, callback)

    def unsubscribe_events(self, callback: Callable[[EventsAppended], None]) -> bool:
        return self.event_bus.unsubscribe(EventsAppended, callback)

    def _fire(self, name: str, old_value: Any, new_value: Any):
        self.event_bus.publish(PropertyChanged(name=name, old_value=old_value, new_value=new_value))
