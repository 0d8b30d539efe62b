"""
ObsPad
Copyright (C) 2024 thiccaxe

This program is free software: you can redistribute it and/or modify
it under the terms of the GNU Affero General Public License as published
by the Free Software Foundation, either version 3 of the License, or
(at your option) any later version.

This program is distributed in the hope that it will be useful,
but WITHOUT ANY WARRANTY; without even the implied warranty of
MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
GNU Affero General Public License for more details.

You should have received a copy of the GNU Affero General Public License
along with this program.  If not, see <https://www.gnu.org/licenses/>.
"""

import dataclasses
import enum
from types import MappingProxyType
from typing import Mapping, Optional

AXIS_TOLERANCE = 1e-6


class SwitchPosition(enum.IntEnum):
    CENTER = 0
    UP = 1
    UP_RIGHT = 2
    RIGHT = 3
    DOWN_RIGHT = 4
    DOWN = 5
    DOWN_LEFT = 6
    LEFT = 7
    UP_LEFT = 8

    @staticmethod
    def from_hat(hat) -> "SwitchPosition":
        """pygame reports hats as (x, y) with y = 1 pointing up."""
        return _HAT_POSITIONS.get(tuple(hat), SwitchPosition.CENTER)


_HAT_POSITIONS = {
    (0, 0): SwitchPosition.CENTER,
    (0, 1): SwitchPosition.UP,
    (1, 1): SwitchPosition.UP_RIGHT,
    (1, 0): SwitchPosition.RIGHT,
    (1, -1): SwitchPosition.DOWN_RIGHT,
    (0, -1): SwitchPosition.DOWN,
    (-1, -1): SwitchPosition.DOWN_LEFT,
    (-1, 0): SwitchPosition.LEFT,
    (-1, 1): SwitchPosition.UP_LEFT,
}


def _freeze(values: Mapping) -> Mapping:
    return MappingProxyType(dict(values))


@dataclasses.dataclass(frozen=True)
class InputSnapshot:
    """
    One complete read of the device. Keys are device indices.
    """
    buttons: Mapping[int, bool] = dataclasses.field(default_factory=dict)
    switches: Mapping[int, int] = dataclasses.field(default_factory=dict)
    axes: Mapping[int, float] = dataclasses.field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "buttons", _freeze(self.buttons))
        object.__setattr__(self, "switches", _freeze(self.switches))
        object.__setattr__(self, "axes", _freeze(self.axes))


@dataclasses.dataclass(frozen=True)
class InputDelta:
    """
    Only the indices whose value changed since the previous snapshot, with their new value.
    """
    buttons: Mapping[int, bool] = dataclasses.field(default_factory=dict)
    switches: Mapping[int, int] = dataclasses.field(default_factory=dict)
    axes: Mapping[int, float] = dataclasses.field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "buttons", _freeze(self.buttons))
        object.__setattr__(self, "switches", _freeze(self.switches))
        object.__setattr__(self, "axes", _freeze(self.axes))

    def __bool__(self):
        return bool(self.buttons or self.switches or self.axes)

    def __repr__(self):
        return f"InputDelta(buttons={dict(self.buttons)}, switches={dict(self.switches)}, axes={dict(self.axes)})"


EMPTY_SNAPSHOT = InputSnapshot()


def diff_snapshots(previous: Optional[InputSnapshot], current: InputSnapshot,
                   tolerance: float = AXIS_TOLERANCE) -> InputDelta:
    """
    Compare two snapshots. With no previous snapshot every populated index counts as changed.
    Indices that disappear from the current snapshot are not reported.
    """
    if previous is None:
        previous = EMPTY_SNAPSHOT

    buttons = {
        index: pressed for index, pressed in current.buttons.items()
        if index not in previous.buttons or previous.buttons[index] != pressed
    }
    switches = {
        index: position for index, position in current.switches.items()
        if index not in previous.switches or previous.switches[index] != position
    }
    # sensor noise on the sticks would otherwise produce a delta on every poll
    axes = {
        index: value for index, value in current.axes.items()
        if index not in previous.axes or abs(previous.axes[index] - value) > tolerance
    }
    return InputDelta(buttons, switches, axes)
