"""
Pytest configuration and fixtures for the roofedit test suite.
"""

from typing import Iterable, List, Optional

import pytest

from roofedit.app import create_app
from roofedit.app.container import get_editor_registry
from roofedit.domain.geometry import NormalizedPoint
from roofedit.domain.measurement import LinearFeatureSet, Measurement, RoofFacet
from roofedit.extensions import db
from roofedit.services.persistence_gate import TIMER_FACTORY_KEY


class ManualTimer:
    """Stand-in for ``threading.Timer`` that only fires when told to."""

    def __init__(self, delay, callback):
        self.delay = delay
        self.callback = callback
        self.started = False
        self.cancelled = False
        self.fired = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        self.fired = True
        self.callback()


class ManualTimers:
    """Timer factory that keeps every timer it creates."""

    def __init__(self):
        self.created: List[ManualTimer] = []

    def __call__(self, delay, callback):
        timer = ManualTimer(delay, callback)
        self.created.append(timer)
        return timer

    @property
    def active(self) -> List[ManualTimer]:
        return [t for t in self.created if t.started and not t.cancelled and not t.fired]

    def fire_all(self) -> None:
        for timer in self.active:
            timer.fire()


def points(coords: Iterable) -> tuple:
    return tuple(NormalizedPoint(x, y) for x, y in coords)


def square(facet_id: str, x0: float, y0: float, size: float, area: float, label: Optional[str] = None) -> RoofFacet:
    return RoofFacet(
        id=facet_id,
        boundary=points([(x0, y0), (x0 + size, y0), (x0 + size, y0 + size), (x0, y0 + size)]),
        area=area,
        pitch=6.0,
        label=label,
    )


@pytest.fixture
def timers():
    return ManualTimers()


@pytest.fixture
def two_facet_measurement():
    """Two adjacent squares sharing the edge x = 0.5."""
    return Measurement(
        id="roof-1",
        facets=(
            square("facet-a", 0.0, 0.0, 0.5, 100.0),
            square("facet-b", 0.5, 0.0, 0.5, 100.0),
        ),
        linear_features=LinearFeatureSet(),
        metadata={"feetPerNormalizedUnit": 100.0},
    )


@pytest.fixture
def app(tmp_path, timers):
    app = create_app("testing", instance_path=str(tmp_path / "instance"))
    app.extensions[TIMER_FACTORY_KEY] = timers
    yield app
    with app.app_context():
        get_editor_registry().unmount_all()
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()
