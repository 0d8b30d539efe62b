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

import abc
import asyncio
import dataclasses
import logging
import os
from typing import Optional

os.environ.setdefault("PYGAME_HIDE_SUPPORT_PROMPT", "1")
import pygame

from bridge_data import BridgeData
from controller_state import AXIS_TOLERANCE, InputDelta, InputSnapshot, SwitchPosition, diff_snapshots

DEFAULT_POLL_HZ = 30


class GamepadError(Exception): pass


@dataclasses.dataclass(frozen=True)
class GamepadCapabilities:
    name: str
    button_count: int = 0
    switch_count: int = 0
    axis_count: int = 0


class GamepadSource(abc.ABC):

    @property
    @abc.abstractmethod
    def capabilities(self) -> GamepadCapabilities:
        raise NotImplementedError

    @abc.abstractmethod
    def poll(self) -> InputSnapshot:
        raise NotImplementedError

    def close(self):
        pass


class NullGamepadSource(GamepadSource):
    """
    used when no joystick is attached, keeps the rest of the bridge running
    """

    def __init__(self):
        self._capabilities = GamepadCapabilities(name="no gamepad")
        self._snapshot = InputSnapshot()

    @property
    def capabilities(self) -> GamepadCapabilities:
        return self._capabilities

    def poll(self) -> InputSnapshot:
        return self._snapshot


class PygameGamepadSource(GamepadSource):

    def __init__(self, joystick, pump=pygame.event.pump):
        self._joystick = joystick
        self._joystick.init()
        self._pump = pump
        self._capabilities = GamepadCapabilities(
            name=joystick.get_name(),
            button_count=joystick.get_numbuttons(),
            switch_count=joystick.get_numhats(),
            axis_count=joystick.get_numaxes(),
        )

    @property
    def capabilities(self) -> GamepadCapabilities:
        return self._capabilities

    def poll(self) -> InputSnapshot:
        js = self._joystick
        try:
            self._pump()
            buttons = {i: bool(js.get_button(i)) for i in range(self._capabilities.button_count)}
            switches = {i: int(SwitchPosition.from_hat(js.get_hat(i))) for i in range(self._capabilities.switch_count)}
            axes = {i: float(js.get_axis(i)) for i in range(self._capabilities.axis_count)}
        except pygame.error as e:
            raise GamepadError(f"Could not read {self._capabilities.name}: {e}") from e
        return InputSnapshot(buttons, switches, axes)

    def close(self):
        try:
            self._joystick.quit()
        except pygame.error as e:
            logging.debug(f"Error while releasing {self._capabilities.name}: {e}")


def _detect_joysticks(rescan: bool = False) -> list:
    if rescan:
        # re-enumerating is the only way to see hotplugged devices without an event loop
        pygame.joystick.quit()
    pygame.joystick.init()
    return [pygame.joystick.Joystick(i) for i in range(pygame.joystick.get_count())]


def _init_pygame():
    pygame.init()
    pygame.joystick.init()


def list_gamepads() -> list[tuple[int, str, str]]:
    _init_pygame()
    gamepads = [(index, js.get_name(), js.get_guid()) for index, js in enumerate(_detect_joysticks())]
    if not gamepads:
        logging.info("No joysticks reported by pygame.")
    else:
        logging.info("Detected joysticks:")
        for index, name, guid in gamepads:
            logging.info(f"   [{index}] {name} (guid {guid})")
    return gamepads


async def open_gamepad_source(device_identifier: Optional[str] = None,
                              discovery_timeout: float = 10.0) -> GamepadSource:
    """
    Picks the joystick whose GUID or name matches device_identifier, else the first one.
    Waits up to discovery_timeout seconds for a device to show up before settling for NullGamepadSource.
    """
    _init_pygame()
    joysticks = _detect_joysticks()
    waited = 0.0
    while not joysticks and waited < discovery_timeout:
        await asyncio.sleep(1.0)
        waited += 1.0
        joysticks = _detect_joysticks(rescan=True)

    if not joysticks:
        logging.warning("No gamepad detected, controller will be idle.")
        return NullGamepadSource()

    if device_identifier:
        for js in joysticks:
            if device_identifier in (js.get_guid(), js.get_name()):
                logging.info(f"Using gamepad {js.get_name()}")
                return PygameGamepadSource(js)
        logging.warning(f"No gamepad matches {device_identifier!r}")

    logging.info(f"Using the first gamepad: {joysticks[0].get_name()} (guid {joysticks[0].get_guid()})")
    return PygameGamepadSource(joysticks[0])


class GamepadPoller:

    def __init__(self, source: GamepadSource, data: BridgeData, poll_hz: int = DEFAULT_POLL_HZ,
                 axis_tolerance: float = AXIS_TOLERANCE):
        self._source = source
        self._data = data
        self._interval = 1.0 / poll_hz
        self._axis_tolerance = axis_tolerance
        self._previous: Optional[InputSnapshot] = None

    @property
    def source(self) -> GamepadSource:
        return self._source

    def poll_once(self) -> InputDelta:
        try:
            snapshot = self._source.poll()
        except GamepadError as e:
            logging.exception(e)
            logging.error(f"Lost {self._source.capabilities.name}, continuing without a gamepad")
            self._source.close()
            self._source = NullGamepadSource()
            snapshot = self._source.poll()

        delta = diff_snapshots(self._previous, snapshot, self._axis_tolerance)
        self._previous = snapshot
        if delta:
            logging.debug(f"Input changed: {delta}")
            self._data.deltas.put_nowait(delta)
        return delta

    async def run(self):
        logging.debug(f"Polling {self._source.capabilities.name} every {self._interval:.3f}s")
        while not self._data.shutdown_event.is_set():
            self.poll_once()
            await asyncio.sleep(self._interval)
        logging.debug("Stopped polling")
