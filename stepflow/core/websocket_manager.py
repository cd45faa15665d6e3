"""WebSocket fan-out of simulator events for live trace monitoring."""

import asyncio
import json
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from fastapi import WebSocket, WebSocketDisconnect

from ..models.execution import ExecutionStep, ExecutionTrace
from .events import SimulationEvent
from .logging import get_logger
from .simulator import WorkflowSimulator

logger = get_logger(__name__)


class WebSocketConnection:
    """Represents a WebSocket connection with metadata."""

    def __init__(self, websocket: WebSocket, connection_id: str):
        self.websocket = websocket
        self.connection_id = connection_id
        self.connected_at = datetime.utcnow()
        self.subscribed_traces: Set[str] = set()
        self.is_active = True


class TraceEventBroadcaster:
    """Relays simulator lifecycle events to WebSocket subscribers of a trace."""

    def __init__(self):
        self._connections: Dict[str, WebSocketConnection] = {}
        self._trace_subscribers: Dict[str, Set[str]] = {}
        self._broadcast_lock = asyncio.Lock()
        self._pending: Set[asyncio.Task] = set()
        self._listeners: List[Tuple[WorkflowSimulator, SimulationEvent, Callable]] = []

        logger.info("TraceEventBroadcaster initialized")

    # Simulator wiring

    def attach(self, simulator: WorkflowSimulator) -> None:
        """Subscribe to every lifecycle event of ``simulator``."""
        for event in SimulationEvent:
            listener = self._make_listener(event)
            simulator.on(event, listener)
            self._listeners.append((simulator, event, listener))
        logger.debug("Broadcaster attached to simulator events")

    def detach(self) -> None:
        for simulator, event, listener in self._listeners:
            simulator.off(event, listener)
        self._listeners.clear()

    def _make_listener(self, event: SimulationEvent) -> Callable[[ExecutionTrace, Optional[ExecutionStep]], None]:
        def listener(trace: ExecutionTrace, step: Optional[ExecutionStep]) -> None:
            if trace.id not in self._trace_subscribers:
                return

            # Snapshot now; the trace keeps mutating after the listener returns
            data = self.build_event_data(trace, step)
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                logger.debug(f"No running event loop, dropping {event.value} for trace {trace.id}")
                return

            task = loop.create_task(self.broadcast_trace_event(trace.id, event.value, data))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

        return listener

    @staticmethod
    def build_event_data(trace: ExecutionTrace, step: Optional[ExecutionStep]) -> Dict[str, Any]:
        return {
            "status": trace.status.value,
            "currentStepIndex": trace.current_step_index,
            "step": step.model_dump(mode="json", by_alias=True) if step is not None else None
        }

    async def flush(self) -> None:
        """Wait for broadcasts scheduled by simulator events to be sent."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # Connections

    async def connect(self, websocket: WebSocket) -> str:
        """
        Accept a new WebSocket connection.

        Returns:
            Connection ID for the new connection
        """
        await websocket.accept()

        connection_id = str(uuid.uuid4())
        self._connections[connection_id] = WebSocketConnection(websocket, connection_id)

        logger.info(f"WebSocket connection established: {connection_id}")

        await self._send_to_connection(connection_id, {
            "event_type": "connection_established",
            "connection_id": connection_id,
            "timestamp": datetime.utcnow().isoformat(),
            "message": "WebSocket connection established successfully"
        })

        return connection_id

    async def disconnect(self, connection_id: str) -> None:
        """Forget a connection and all of its subscriptions."""
        connection = self._connections.pop(connection_id, None)
        if connection is None:
            return

        connection.is_active = False
        for trace_id in list(connection.subscribed_traces):
            self._remove_subscriber(connection_id, trace_id)

        logger.info(f"WebSocket connection disconnected and cleaned up: {connection_id}")

    async def subscribe_to_trace(self, connection_id: str, trace_id: str) -> bool:
        """
        Subscribe a connection to the events of one trace.

        Returns:
            True if subscription was successful, False otherwise
        """
        connection = self._connections.get(connection_id)
        if connection is None or not connection.is_active:
            logger.warning(f"Attempted to subscribe unknown or inactive connection: {connection_id}")
            return False

        connection.subscribed_traces.add(trace_id)
        self._trace_subscribers.setdefault(trace_id, set()).add(connection_id)

        logger.info(f"Connection {connection_id} subscribed to trace {trace_id}")

        await self._send_to_connection(connection_id, {
            "event_type": "subscription_confirmed",
            "trace_id": trace_id,
            "timestamp": datetime.utcnow().isoformat(),
            "message": f"Subscribed to trace {trace_id}"
        })

        return True

    async def unsubscribe_from_trace(self, connection_id: str, trace_id: str) -> bool:
        if connection_id not in self._connections:
            return False
        self._remove_subscriber(connection_id, trace_id)
        logger.info(f"Connection {connection_id} unsubscribed from trace {trace_id}")
        return True

    def _remove_subscriber(self, connection_id: str, trace_id: str) -> None:
        connection = self._connections.get(connection_id)
        if connection is not None:
            connection.subscribed_traces.discard(trace_id)

        subscribers = self._trace_subscribers.get(trace_id)
        if subscribers is not None:
            subscribers.discard(connection_id)
            if not subscribers:
                del self._trace_subscribers[trace_id]

    # Broadcasting

    async def broadcast_trace_event(self, trace_id: str, event_type: str, data: Dict[str, Any]) -> None:
        """
        Send an event to all subscribers of a trace.

        Connections whose send fails are disconnected.
        """
        if trace_id not in self._trace_subscribers:
            logger.debug(f"No subscribers for trace {trace_id}, skipping broadcast")
            return

        async with self._broadcast_lock:
            event = {
                "event_type": event_type,
                "trace_id": trace_id,
                "timestamp": datetime.utcnow().isoformat(),
                "data": data
            }

            subscribers = self._trace_subscribers.get(trace_id, set()).copy()

            disconnected = []
            for connection_id in subscribers:
                if not await self._send_to_connection(connection_id, event):
                    disconnected.append(connection_id)

            for connection_id in disconnected:
                await self.disconnect(connection_id)

            logger.debug(f"Broadcasted {event_type} event for trace {trace_id} to {len(subscribers)} subscribers")

    async def _send_to_connection(self, connection_id: str, data: Dict[str, Any]) -> bool:
        connection = self._connections.get(connection_id)
        if connection is None or not connection.is_active:
            return False

        try:
            await connection.websocket.send_text(json.dumps(data, default=str))
            return True

        except WebSocketDisconnect:
            logger.info(f"WebSocket disconnected during send: {connection_id}")
            connection.is_active = False
            return False
        except Exception as e:
            logger.error(f"Error sending WebSocket message to {connection_id}: {str(e)}")
            connection.is_active = False
            return False

    async def send_to_connection(self, connection_id: str, data: Dict[str, Any]) -> bool:
        return await self._send_to_connection(connection_id, data)

    # Introspection

    def get_connection_count(self) -> int:
        return len([conn for conn in self._connections.values() if conn.is_active])

    def get_trace_subscriber_count(self, trace_id: str) -> int:
        return len(self._trace_subscribers.get(trace_id, set()))

    def get_connection_info(self) -> Dict[str, Any]:
        """Describe active connections and per-trace subscriber counts."""
        active_connections = [
            {
                "connection_id": conn_id,
                "connected_at": conn.connected_at.isoformat(),
                "subscribed_traces": sorted(conn.subscribed_traces)
            }
            for conn_id, conn in self._connections.items()
            if conn.is_active
        ]

        return {
            "total_connections": len(active_connections),
            "connections": active_connections,
            "trace_subscribers": {
                trace_id: len(subscribers)
                for trace_id, subscribers in self._trace_subscribers.items()
            }
        }
