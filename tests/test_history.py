import pytest

from roofedit.domain.measurement import Measurement
from roofedit.services.history import HistoryManager


def snapshot(n):
    return Measurement(id="roof", metadata={"step": n})


def test_undo_redo_walk_through_snapshots():
    history = HistoryManager()
    history.record(snapshot(0))
    history.record(snapshot(1))
    current = snapshot(2)

    previous = history.undo(current)
    assert previous == snapshot(1)
    assert history.can_redo()

    assert history.redo(previous) == snapshot(2)
    assert history.undo_depth == 2
    assert history.redo_depth == 0


def test_empty_stacks_return_none():
    history = HistoryManager()
    assert history.undo(snapshot(0)) is None
    assert history.redo(snapshot(0)) is None


def test_recording_clears_redo():
    history = HistoryManager()
    history.record(snapshot(0))
    history.undo(snapshot(1))

    history.record(snapshot(5))

    assert not history.can_redo()


def test_limit_drops_oldest_entries():
    history = HistoryManager(limit=3)
    for n in range(5):
        history.record(snapshot(n))

    current = snapshot(5)
    restored = []
    while history.can_undo():
        current = history.undo(current)
        restored.append(current.metadata["step"])

    assert restored == [4, 3, 2]


def test_recorded_snapshots_are_isolated_from_later_mutation():
    history = HistoryManager()
    live = snapshot(0)
    history.record(live)

    live.metadata["step"] = 99

    assert history.undo(snapshot(1)).metadata["step"] == 0


def test_limit_must_be_positive():
    with pytest.raises(ValueError):
        HistoryManager(limit=0)
