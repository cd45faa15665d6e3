"""Named-event pub/sub used by the workflow simulator."""

from enum import Enum
from typing import Callable, Dict, List, Optional, Union

from ..models.execution import ExecutionStep, ExecutionTrace
from .logging import get_logger

logger = get_logger(__name__)

EventListener = Callable[[ExecutionTrace, Optional[ExecutionStep]], None]


class SimulationEvent(str, Enum):
    """Lifecycle events emitted while a trace advances."""
    STEP_START = "stepStart"
    STEP_COMPLETE = "stepComplete"
    STEP_FAILED = "stepFailed"
    BREAKPOINT = "breakpoint"
    TRACE_COMPLETE = "traceComplete"


class EventEmitter:
    """Synchronous observer registry keyed by event name.

    A listener that raises is logged and skipped; the remaining listeners
    still run and the emitter's caller never sees the exception.
    """

    def __init__(self):
        self._listeners: Dict[str, List[EventListener]] = {}

    def on(self, event: Union[SimulationEvent, str], callback: EventListener) -> None:
        """Register ``callback`` for ``event``."""
        self._listeners.setdefault(self._key(event), []).append(callback)

    def off(self, event: Union[SimulationEvent, str], callback: EventListener) -> bool:
        """Remove ``callback``; returns False if it was not registered."""
        listeners = self._listeners.get(self._key(event), [])
        try:
            listeners.remove(callback)
            return True
        except ValueError:
            return False

    def emit(
        self,
        event: Union[SimulationEvent, str],
        trace: ExecutionTrace,
        step: Optional[ExecutionStep]
    ) -> None:
        """Deliver ``(trace, step)`` to every listener of ``event``."""
        key = self._key(event)
        for callback in list(self._listeners.get(key, [])):
            try:
                callback(trace, step)
            except Exception as e:
                logger.error(f"Error in '{key}' event listener: {str(e)}", exc_info=True)

    def listener_count(self, event: Union[SimulationEvent, str]) -> int:
        return len(self._listeners.get(self._key(event), []))

    def clear(self) -> None:
        self._listeners.clear()

    @staticmethod
    def _key(event: Union[SimulationEvent, str]) -> str:
        return event.value if isinstance(event, SimulationEvent) else str(event)
