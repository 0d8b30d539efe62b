import pytest

from controller_state import (
    AXIS_TOLERANCE,
    InputDelta,
    InputSnapshot,
    SwitchPosition,
    diff_snapshots,
)


def _snapshot(buttons=None, switches=None, axes=None):
    return InputSnapshot(buttons or {}, switches or {}, axes or {})


def test_equal_snapshots_give_empty_delta():
    previous = _snapshot({0: True, 1: False}, {0: SwitchPosition.UP}, {0: 0.25, 1: -1.0})
    current = _snapshot({1: False, 0: True}, {0: SwitchPosition.UP}, {1: -1.0, 0: 0.25})

    delta = diff_snapshots(previous, current)

    assert not delta
    assert dict(delta.buttons) == {}
    assert dict(delta.switches) == {}
    assert dict(delta.axes) == {}


def test_first_snapshot_reports_everything():
    current = _snapshot({0: False, 1: True}, {0: SwitchPosition.CENTER}, {0: 0.0, 1: 0.5})

    delta = diff_snapshots(None, current)

    assert dict(delta.buttons) == {0: False, 1: True}
    assert dict(delta.switches) == {0: SwitchPosition.CENTER}
    assert dict(delta.axes) == {0: 0.0, 1: 0.5}


def test_empty_first_snapshot_gives_empty_delta():
    assert not diff_snapshots(None, InputSnapshot())


def test_only_changed_indices_are_reported():
    previous = _snapshot({0: False, 1: False, 2: True}, {0: SwitchPosition.CENTER, 1: SwitchPosition.LEFT})
    current = _snapshot({0: True, 1: False, 2: False}, {0: SwitchPosition.DOWN, 1: SwitchPosition.LEFT})

    delta = diff_snapshots(previous, current)

    assert dict(delta.buttons) == {0: True, 2: False}
    assert dict(delta.switches) == {0: SwitchPosition.DOWN}


def test_new_index_is_always_reported():
    previous = _snapshot({0: False}, axes={0: 0.0})
    current = _snapshot({0: False, 5: False}, axes={0: 0.0, 3: 0.0})

    delta = diff_snapshots(previous, current)

    assert dict(delta.buttons) == {5: False}
    assert dict(delta.axes) == {3: 0.0}


def test_removed_index_is_not_reported():
    delta = diff_snapshots(_snapshot({0: True, 1: True}), _snapshot({0: True}))
    assert not delta


@pytest.mark.parametrize("previous, current, tolerance, reported", [
    (0.0, AXIS_TOLERANCE, AXIS_TOLERANCE, False),
    (0.0, 2 * AXIS_TOLERANCE, AXIS_TOLERANCE, True),
    (0.5, 0.75, 0.25, False),
    (0.75, 0.5, 0.25, False),
    (0.5, 0.8, 0.25, True),
    (0.5, 0.2, 0.25, True),
])
def test_axis_tolerance_boundary(previous, current, tolerance, reported):
    delta = diff_snapshots(_snapshot(axes={0: previous}), _snapshot(axes={0: current}), tolerance)
    assert (0 in delta.axes) is reported


def test_snapshot_is_read_only():
    source = {0: True}
    snapshot = InputSnapshot(buttons=source)
    source[0] = False

    assert snapshot.buttons[0] is True
    with pytest.raises(TypeError):
        snapshot.buttons[0] = False


def test_delta_truthiness():
    assert not InputDelta()
    assert InputDelta(axes={0: 0.1})


@pytest.mark.parametrize("hat, position", [
    ((0, 0), SwitchPosition.CENTER),
    ((0, 1), SwitchPosition.UP),
    ((1, 1), SwitchPosition.UP_RIGHT),
    ((1, 0), SwitchPosition.RIGHT),
    ((1, -1), SwitchPosition.DOWN_RIGHT),
    ((0, -1), SwitchPosition.DOWN),
    ((-1, -1), SwitchPosition.DOWN_LEFT),
    ((-1, 0), SwitchPosition.LEFT),
    ((-1, 1), SwitchPosition.UP_LEFT),
    ([0, 1], SwitchPosition.UP),
])
def test_switch_position_from_hat(hat, position):
    assert SwitchPosition.from_hat(hat) is position
