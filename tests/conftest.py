"""Pytest configuration - add src/ to path and shared fixtures."""
import itertools
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(ROOT / "src"))

from experiment_engine import (  # noqa: E402
    ApprovalGate,
    EngineSettings,
    EventChannel,
    EventRecorder,
    ExperimentConfig,
    ExperimentationService,
    InMemoryExperimentStore,
    TrafficAllocation,
    Variant,
)


class FakeClock:
    """Settable clock for schedule tests."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


def sequential_ids(prefix: str = "exp_test"):
    counter = itertools.count(1)
    return lambda: f"{prefix}_{next(counter):03d}"


def make_config(name: str = "Checkout copy", split=(50, 50), **overrides) -> ExperimentConfig:
    """Config with one variant per entry in split; the first is control."""
    ids = ["control"] + [f"variant_{i}" for i in range(1, len(split))]
    return ExperimentConfig(
        name=name,
        hypothesis="New copy increases completion",
        variants=[Variant(vid, vid.title(), weight) for vid, weight in zip(ids, split)],
        traffic_allocation=[TrafficAllocation(vid, pct) for vid, pct in zip(ids, split)],
        **overrides,
    )


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def store():
    return InMemoryExperimentStore()


@pytest.fixture
def channel():
    return EventChannel()


@pytest.fixture
def recorder(channel):
    r = EventRecorder()
    channel.subscribe(r)
    return r


@pytest.fixture
def service(store, channel, clock):
    svc = ExperimentationService(
        store=store,
        channel=channel,
        settings=EngineSettings(monitor_interval_seconds=0.01),
        clock=clock,
        id_factory=sequential_ids(),
    )
    yield svc
    svc.shutdown(timeout=5)


@pytest.fixture
def two_arm_config():
    return make_config()


def launch(service: ExperimentationService, config: ExperimentConfig) -> str:
    """Create, approve every gate the config needs and start."""
    experiment_id = service.create_experiment(config)
    if config.cultural_segments:
        service.approve_experiment(experiment_id, ApprovalGate.CULTURAL_APPROVAL)
    if config.neuroscience_objectives:
        service.approve_experiment(experiment_id, ApprovalGate.NEUROSCIENCE_VALIDATION)
    service.approve_experiment(experiment_id, ApprovalGate.ETHICS_REVIEW)
    service.start_experiment(experiment_id)
    return experiment_id


@pytest.fixture
def running_experiment(service, two_arm_config):
    return launch(service, two_arm_config)
