"""Domain events for the log scanning pipeline.

Events flow through the EventBus and decouple the pipeline and the result
aggregator from whatever presents progress (dashboard, console summary).

See `infrastructure/event_bus.py` for the pub/sub mechanism.
"""

from typing import Any

from pydantic import BaseModel


class Event(BaseModel):
    """Base class for all domain events."""

    pass


class PropertyChanged(Event):
    """Emitted by the result aggregator when a named observable property changes.

    Names: ``jobState``, ``filesToProcess``, ``processedFiles``, ``selectedFiles``.
    """

    name: str
    old_value: Any = None
    new_value: Any = None


class EventsAppended(Event):
    """Emitted once per appended batch of log events."""

    count: int
    size: int


class StopRequested(Event):
    """Emitted when the user asks a running job to stop (Ctrl+C)."""

    pass
