"""Tests for the typed event channel."""
from experiment_engine import EventChannel, EventRecorder, EventType


def test_subscribe_and_unsubscribe():
    channel = EventChannel()
    recorder = EventRecorder()
    sub = channel.subscribe(recorder)
    assert sub.active
    assert channel.handler_count == 1

    channel.publish(EventType.EXPERIMENT_CREATED, "exp_1", name="Test")
    assert sub.unsubscribe()
    assert not sub.active
    assert not sub.unsubscribe()

    channel.publish(EventType.EXPERIMENT_STARTED, "exp_1")
    assert [e.event_type for e in recorder.events] == [EventType.EXPERIMENT_CREATED]
    assert recorder.events[0].payload == {"name": "Test"}


def test_typed_subscription():
    channel = EventChannel()
    recorder = EventRecorder()
    channel.subscribe(recorder, EventType.GUARDRAIL_ALERT)

    channel.publish(EventType.USER_ASSIGNED, "exp_1", user_id="u1")
    channel.publish(EventType.GUARDRAIL_ALERT, "exp_1", metric_id="error_rate")

    assert len(recorder.events) == 1
    assert recorder.events[0].event_type == EventType.GUARDRAIL_ALERT


def test_failing_handler_isolated():
    """A raising handler neither reaches the publisher nor blocks other handlers."""
    channel = EventChannel()
    recorder = EventRecorder()

    def broken(event):
        raise ValueError("dashboard offline")

    channel.subscribe(broken)
    channel.subscribe(recorder)

    event = channel.publish(EventType.CONVERSION_TRACKED, "exp_1", value=1.0)

    assert recorder.events == [event]
    assert channel.handler_errors == 1


def test_channels_are_independent():
    first, second = EventChannel(), EventChannel()
    recorder = EventRecorder()
    first.subscribe(recorder)
    second.publish(EventType.EXPERIMENT_STOPPED, "exp_1")
    assert recorder.events == []


def test_event_to_dict():
    channel = EventChannel()
    event = channel.publish(EventType.BIAS_DETECTED, "exp_1", bias_types=["selection"])
    d = event.to_dict()
    assert d["event_type"] == "biasDetected"
    assert d["experiment_id"] == "exp_1"
    assert d["payload"] == {"bias_types": ["selection"]}
    assert "timestamp" in d


def test_service_lifecycle_events(service, recorder, running_experiment):
    service.pause_experiment(running_experiment)
    service.resume_experiment(running_experiment)
    service.stop_experiment(running_experiment)
    types = [e.event_type for e in recorder.events if e.experiment_id == running_experiment]
    assert types == [
        EventType.EXPERIMENT_CREATED,
        EventType.EXPERIMENT_STARTED,
        EventType.EXPERIMENT_PAUSED,
        EventType.EXPERIMENT_RESUMED,
        EventType.EXPERIMENT_STOPPED,
    ]
