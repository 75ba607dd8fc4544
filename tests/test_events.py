"""Tests for the event bus."""

from token_snapshot_pipeline.events import EventBus, EventType, PipelineEvent


class TestEventBus:
    """Tests for EventBus delivery and isolation."""

    def test_emit_delivers_payload(self) -> None:
        bus = EventBus()
        received: list[PipelineEvent] = []
        bus.subscribe(received.append)

        event = bus.emit(EventType.TOKEN_ADDED, mint="abc", tier="high")

        assert received == [event]
        assert event.type is EventType.TOKEN_ADDED
        assert event.payload == {"mint": "abc", "tier": "high"}

    def test_payload_may_carry_event_type_key(self) -> None:
        event = EventBus().emit(EventType.INTERESTING_EVENT, mint="abc", event_type="pump_detected")

        assert event.type is EventType.INTERESTING_EVENT
        assert event.payload == {"mint": "abc", "event_type": "pump_detected"}

    def test_type_filter(self) -> None:
        bus = EventBus()
        received: list[PipelineEvent] = []
        bus.subscribe(received.append, {EventType.DRIFT_CRITICAL})

        bus.emit(EventType.DRIFT_HIGH)
        bus.emit(EventType.DRIFT_CRITICAL)

        assert [e.type for e in received] == [EventType.DRIFT_CRITICAL]

    def test_failing_subscriber_is_isolated(self) -> None:
        bus = EventBus()
        received: list[PipelineEvent] = []

        def broken(event: PipelineEvent) -> None:
            raise RuntimeError("boom")

        bus.subscribe(broken)
        bus.subscribe(received.append)

        bus.emit(EventType.BUFFER_FLUSHED, count=3)

        assert len(received) == 1

    def test_unsubscribe(self) -> None:
        bus = EventBus()
        received: list[PipelineEvent] = []
        unsubscribe = bus.subscribe(received.append)
        assert bus.subscriber_count == 1

        unsubscribe()
        unsubscribe()
        bus.emit(EventType.COLLECTION_COMPLETE)

        assert received == []
        assert bus.subscriber_count == 0
