"""Tests for the WebSocket trace event broadcaster."""

import json

import pytest

from stepflow.core.websocket_manager import TraceEventBroadcaster
from stepflow.models import ExecutionTrace


class FakeWebSocket:
    """Records messages sent through it; optionally fails every send."""

    def __init__(self, fail_sends: bool = False):
        self.accepted = False
        self.fail_sends = fail_sends
        self.sent = []

    async def accept(self):
        self.accepted = True

    async def send_text(self, text: str):
        if self.fail_sends:
            raise RuntimeError("socket closed")
        self.sent.append(json.loads(text))

    def event_types(self):
        return [message["event_type"] for message in self.sent]


@pytest.fixture
def broadcaster():
    return TraceEventBroadcaster()


class TestConnections:

    @pytest.mark.asyncio
    async def test_connect_sends_greeting(self, broadcaster):
        websocket = FakeWebSocket()

        connection_id = await broadcaster.connect(websocket)

        assert websocket.accepted
        assert websocket.sent[0]["event_type"] == "connection_established"
        assert websocket.sent[0]["connection_id"] == connection_id
        assert broadcaster.get_connection_count() == 1

    @pytest.mark.asyncio
    async def test_subscribe_and_unsubscribe(self, broadcaster):
        websocket = FakeWebSocket()
        connection_id = await broadcaster.connect(websocket)

        assert await broadcaster.subscribe_to_trace(connection_id, "trace-1")
        assert websocket.event_types()[-1] == "subscription_confirmed"
        assert broadcaster.get_trace_subscriber_count("trace-1") == 1

        assert await broadcaster.unsubscribe_from_trace(connection_id, "trace-1")
        assert broadcaster.get_trace_subscriber_count("trace-1") == 0

    @pytest.mark.asyncio
    async def test_subscribe_unknown_connection(self, broadcaster):
        assert not await broadcaster.subscribe_to_trace("missing", "trace-1")
        assert not await broadcaster.unsubscribe_from_trace("missing", "trace-1")

    @pytest.mark.asyncio
    async def test_disconnect_drops_subscriptions(self, broadcaster):
        connection_id = await broadcaster.connect(FakeWebSocket())
        await broadcaster.subscribe_to_trace(connection_id, "trace-1")

        await broadcaster.disconnect(connection_id)

        assert broadcaster.get_connection_count() == 0
        assert broadcaster.get_trace_subscriber_count("trace-1") == 0
        assert broadcaster.get_connection_info()["trace_subscribers"] == {}

    @pytest.mark.asyncio
    async def test_connection_info(self, broadcaster):
        connection_id = await broadcaster.connect(FakeWebSocket())
        await broadcaster.subscribe_to_trace(connection_id, "trace-2")
        await broadcaster.subscribe_to_trace(connection_id, "trace-1")

        info = broadcaster.get_connection_info()

        assert info["total_connections"] == 1
        assert info["connections"][0]["subscribed_traces"] == ["trace-1", "trace-2"]
        assert info["trace_subscribers"] == {"trace-2": 1, "trace-1": 1}


class TestBroadcasting:

    @pytest.mark.asyncio
    async def test_broadcast_reaches_only_subscribers(self, broadcaster):
        subscriber = FakeWebSocket()
        bystander = FakeWebSocket()
        subscriber_id = await broadcaster.connect(subscriber)
        await broadcaster.connect(bystander)
        await broadcaster.subscribe_to_trace(subscriber_id, "trace-1")

        await broadcaster.broadcast_trace_event("trace-1", "stepStart", {"currentStepIndex": 0})

        message = subscriber.sent[-1]
        assert message["event_type"] == "stepStart"
        assert message["trace_id"] == "trace-1"
        assert message["data"] == {"currentStepIndex": 0}
        assert bystander.event_types() == ["connection_established"]

    @pytest.mark.asyncio
    async def test_failed_send_disconnects(self, broadcaster):
        websocket = FakeWebSocket()
        connection_id = await broadcaster.connect(websocket)
        await broadcaster.subscribe_to_trace(connection_id, "trace-1")
        websocket.fail_sends = True

        await broadcaster.broadcast_trace_event("trace-1", "stepStart", {})

        assert broadcaster.get_connection_count() == 0
        assert broadcaster.get_trace_subscriber_count("trace-1") == 0

    @pytest.mark.asyncio
    async def test_relays_simulator_events(self, broadcaster, simulator, order_flow):
        websocket = FakeWebSocket()
        connection_id = await broadcaster.connect(websocket)
        broadcaster.attach(simulator)

        trace_id = simulator.create_trace("r")
        await broadcaster.subscribe_to_trace(connection_id, trace_id)
        await simulator.start_simulation(trace_id, order_flow, "r")
        await broadcaster.flush()

        assert websocket.event_types()[2:] == [
            "stepStart", "stepComplete", "stepStart", "stepComplete", "traceComplete"
        ]
        first = websocket.sent[2]["data"]
        assert first["status"] == "running"
        assert first["currentStepIndex"] == 0
        assert first["step"]["nodeId"] == "A"
        assert first["step"]["status"] == "running"
        assert websocket.sent[-1]["data"]["status"] == "success"

    @pytest.mark.asyncio
    async def test_unsubscribed_traces_are_not_relayed(self, broadcaster, simulator, order_flow):
        websocket = FakeWebSocket()
        await broadcaster.connect(websocket)
        broadcaster.attach(simulator)

        trace_id = simulator.create_trace("r")
        await simulator.start_simulation(trace_id, order_flow, "r")
        await broadcaster.flush()

        assert websocket.event_types() == ["connection_established"]

    @pytest.mark.asyncio
    async def test_detach(self, broadcaster, simulator, order_flow):
        websocket = FakeWebSocket()
        connection_id = await broadcaster.connect(websocket)
        broadcaster.attach(simulator)
        broadcaster.detach()

        trace_id = simulator.create_trace("r")
        await broadcaster.subscribe_to_trace(connection_id, trace_id)
        await simulator.start_simulation(trace_id, order_flow, "r")
        await broadcaster.flush()

        assert websocket.event_types() == ["connection_established", "subscription_confirmed"]

    def test_event_data_snapshot(self):
        trace = ExecutionTrace(id="trace-1", workflow_name="r", start_time=0)

        data = TraceEventBroadcaster.build_event_data(trace, None)

        assert data == {"status": "running", "currentStepIndex": -1, "step": None}
