"""
Unit tests for chain events, the event bus and the JSONL sink.
"""

import json
import logging

import pytest

from modelchain.events import (
    ChainEvent,
    ChainEventType,
    ChainFailedPayload,
    ChainStartedPayload,
    EventBus,
    EventLogConfig,
    JsonlEventSink,
    LoggingObserver,
    RoleCompletedPayload,
    RoleStartedPayload,
)


def started_event(chain_id: str = "chain_1") -> ChainEvent:
    return ChainEvent(
        type=ChainEventType.CHAIN_STARTED,
        chain_id=chain_id,
        payload=ChainStartedPayload(task="t", mode="auto", roles=["planner"], models={"planner": "m1"}),
    )


class RecordingObserver:
    """Observer that records every event."""

    def __init__(self):
        self.events = []

    def on_event(self, event):
        self.events.append(event)


class TestChainEvent:
    """Tests for ChainEvent."""

    def test_event_names(self):
        """Event names are the wire contract."""
        assert [t.value for t in ChainEventType] == [
            "chain:started",
            "role:started",
            "role:completed",
            "chain:completed",
            "chain:failed",
            "chain:stopped",
        ]

    def test_to_dict_flattens_payload(self):
        """The wire form carries the name, chain id and payload fields."""
        data = started_event().to_dict()

        assert data["event"] == "chain:started"
        assert data["chain_id"] == "chain_1"
        assert data["models"] == {"planner": "m1"}
        assert "timestamp" in data

    def test_to_dict_is_json(self):
        """The wire form is JSON-serializable."""
        json.dumps(started_event().to_dict())


class TestEventBus:
    """Tests for EventBus."""

    def test_observer_object(self):
        """Objects with on_event receive events."""
        bus = EventBus()
        observer = RecordingObserver()
        bus.subscribe(observer)

        bus.emit(started_event())
        assert len(observer.events) == 1

    def test_plain_callable(self):
        """Plain callables receive events."""
        bus = EventBus()
        received = []
        bus.subscribe(received.append)

        bus.emit(started_event())
        assert received[0].chain_id == "chain_1"

    def test_unsubscribe(self):
        """Unsubscribed observers stop receiving events."""
        bus = EventBus()
        received = []
        unsubscribe = bus.subscribe(received.append)

        unsubscribe()
        bus.emit(started_event())

        assert received == []
        assert bus.observer_count == 0

    def test_subscription_order(self):
        """Observers are called in subscription order."""
        bus = EventBus()
        calls = []
        bus.subscribe(lambda event: calls.append("first"))
        bus.subscribe(lambda event: calls.append("second"))

        bus.emit(started_event())
        assert calls == ["first", "second"]

    def test_failing_observer_isolated(self, caplog):
        """A raising observer is logged and the next one still runs."""
        bus = EventBus()
        received = []

        def broken(event):
            raise RuntimeError("boom")

        bus.subscribe(broken)
        bus.subscribe(received.append)

        with caplog.at_level(logging.ERROR, logger="modelchain.events"):
            bus.emit(started_event())

        assert len(received) == 1
        assert "chain:started" in caplog.text


class TestLoggingObserver:
    """Tests for LoggingObserver."""

    def test_failure_logged_as_error(self, caplog):
        """chain:failed is logged at ERROR."""
        observer = LoggingObserver()
        event = ChainEvent(
            type=ChainEventType.CHAIN_FAILED,
            chain_id="chain_1",
            payload=ChainFailedPayload(error="Role planner failed on model m1: boom"),
        )

        with caplog.at_level(logging.INFO, logger="modelchain.events"):
            observer.on_event(event)

        assert caplog.records[-1].levelno == logging.ERROR
        assert "Role planner failed" in caplog.text

    def test_role_events_logged(self, caplog):
        """Role events include role, model and usage."""
        observer = LoggingObserver()
        with caplog.at_level(logging.INFO, logger="modelchain.events"):
            observer.on_event(
                ChainEvent(
                    type=ChainEventType.ROLE_STARTED,
                    chain_id="c",
                    payload=RoleStartedPayload(role="planner", model="m1", step=1, total_steps=3),
                )
            )
            observer.on_event(
                ChainEvent(
                    type=ChainEventType.ROLE_COMPLETED,
                    chain_id="c",
                    payload=RoleCompletedPayload(
                        role="planner", model="m1", duration_ms=12, input_tokens=10, output_tokens=5
                    ),
                )
            )

        assert "planner on m1 (1/3)" in caplog.text
        assert "15 tokens" in caplog.text


class TestJsonlEventSink:
    """Tests for JsonlEventSink."""

    def test_disabled_by_default(self, tmp_path):
        """A disabled sink writes nothing."""
        sink = JsonlEventSink(EventLogConfig(log_path=str(tmp_path / "events.jsonl")))
        sink.on_event(started_event())

        assert sink.event_count == 0
        assert not (tmp_path / "events.jsonl").exists()

    def test_writes_and_reads_events(self, tmp_path):
        """Events are appended one per line and read back in order."""
        sink = JsonlEventSink(EventLogConfig(log_path=str(tmp_path / "events.jsonl"), enabled=True))
        sink.on_event(started_event("a"))
        sink.on_event(started_event("b"))

        events = sink.read_events()
        assert [e["chain_id"] for e in events] == ["a", "b"]
        assert events[0]["event"] == "chain:started"
        assert "session_start" in events[0]
        assert sink.event_count == 2

    def test_read_limit(self, tmp_path):
        """read_events(limit) returns the newest events."""
        sink = JsonlEventSink(EventLogConfig(log_path=str(tmp_path / "events.jsonl"), enabled=True))
        for chain_id in ("a", "b", "c"):
            sink.on_event(started_event(chain_id))

        assert [e["chain_id"] for e in sink.read_events(limit=2)] == ["b", "c"]

    def test_skips_malformed_lines(self, tmp_path):
        """Malformed lines are skipped on read."""
        path = tmp_path / "events.jsonl"
        sink = JsonlEventSink(EventLogConfig(log_path=str(path), enabled=True))
        sink.on_event(started_event())
        with open(path, "a") as f:
            f.write("not json\n")

        assert len(sink.read_events()) == 1

    def test_rotation(self, tmp_path):
        """The log rotates once it exceeds the size limit."""
        path = tmp_path / "events.jsonl"
        config = EventLogConfig(log_path=str(path), enabled=True, max_size_mb=0.0001, max_files=3)
        sink = JsonlEventSink(config)

        for i in range(20):
            sink.on_event(started_event(f"chain_{i}"))

        assert path.exists()
        assert path.with_suffix(".jsonl.1").exists()
        assert not path.with_suffix(".jsonl.3").exists()

    def test_usable_as_observer(self, tmp_path):
        """The sink can be subscribed to an event bus."""
        bus = EventBus()
        sink = JsonlEventSink(EventLogConfig(log_path=str(tmp_path / "e.jsonl"), enabled=True))
        bus.subscribe(sink)

        bus.emit(started_event())
        assert sink.event_count == 1
