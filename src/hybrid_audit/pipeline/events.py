from typing import Any, Callable, Literal, Optional

from pydantic import BaseModel, Field

from ..log import get_logger
from ..schemas.evidence import utc_now_iso

logger = get_logger("events")

EventType = Literal[
    "layer1:start",
    "layer1:collector",
    "layer1:complete",
    "layer3:start",
    "layer3:audit",
    "layer3:finding",
    "layer3:complete",
]
EventStatus = Literal["started", "completed", "failed"]


class ProgressEvent(BaseModel):
    type: EventType
    subject: Optional[str] = None  # collector name or audit type
    status: Optional[EventStatus] = None
    message: Optional[str] = None
    data: Optional[Any] = None
    timestamp: str = Field(default_factory=utc_now_iso)


EventCallback = Callable[[ProgressEvent], None]


class EventEmitter:
    """
    Forwards progress events to an optional callback. A failing callback is
    logged and otherwise ignored so it can never change an orchestrator's result.
    """

    def __init__(self, on_event: Optional[EventCallback] = None):
        self.on_event = on_event

    def emit(self, type: EventType, **fields):
        if self.on_event is None:
            return
        try:
            self.on_event(ProgressEvent(type=type, **fields))
        except Exception:
            logger.exception(f"Progress callback failed on {type}")
