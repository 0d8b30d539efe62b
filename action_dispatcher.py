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
import logging
from types import MappingProxyType
from typing import Mapping, Optional

from bridge_data import BridgeData
from controller_state import InputDelta
from obs_client import ObsClient, ObsError

START_STREAMING = "StartStreaming"
STOP_STREAMING = "StopStreaming"
TOGGLE_RECORDING = "ToggleRecording"
SWITCH_SCENE = "SwitchScene"


class UnknownActionError(Exception): pass


@dataclasses.dataclass(frozen=True)
class ActionBinding:
    action: str
    parameter: Optional[str] = None


def _binding_table(table: Optional[dict]) -> Mapping[int, ActionBinding]:
    """
    {"0": {"action": ..., "parameter": ...}} -> {0: ActionBinding}
    """
    return MappingProxyType({
        int(index): ActionBinding(entry["action"], entry.get("parameter"))
        for index, entry in (table or {}).items()
    })


@dataclasses.dataclass(frozen=True)
class ActionBindings:
    buttons: Mapping[int, ActionBinding] = dataclasses.field(default_factory=dict)
    switches: Mapping[int, ActionBinding] = dataclasses.field(default_factory=dict)
    axes: Mapping[int, ActionBinding] = dataclasses.field(default_factory=dict)

    @staticmethod
    def from_tables(button_map: Optional[dict] = None, switch_map: Optional[dict] = None,
                    axis_map: Optional[dict] = None) -> "ActionBindings":
        return ActionBindings(
            buttons=_binding_table(button_map),
            switches=_binding_table(switch_map),
            axes=_binding_table(axis_map),
        )


class ActionDispatcher:
    """
    Fires the bound OBS action once per button press. Releases, switches and axes are not dispatched.
    """

    def __init__(self, client: ObsClient, bindings: ActionBindings, data: BridgeData):
        self._client = client
        self._bindings = bindings
        self._data = data
        self._action_handlers = {
            START_STREAMING: self._start_streaming,
            STOP_STREAMING: self._stop_streaming,
            TOGGLE_RECORDING: self._toggle_recording,
            SWITCH_SCENE: self._switch_scene,
        }

    def _resolve(self, binding: ActionBinding):
        if binding.action not in self._action_handlers:
            raise UnknownActionError(f"Unknown action '{binding.action}'")
        return self._action_handlers[binding.action]

    async def dispatch(self, delta: InputDelta) -> list[str]:
        dispatched = []
        for index, pressed in delta.buttons.items():
            if not pressed:
                continue

            binding = self._bindings.buttons.get(index)
            if binding is None:
                continue

            try:
                handler = self._resolve(binding)
                await handler(binding)
            except (UnknownActionError, ValueError) as e:
                logging.warning(f"{e} for button {index}, skipping")
                continue
            except ObsError as e:
                logging.error(f"Failed to execute action '{binding.action}' for button {index}: {e}")
                continue

            logging.debug(f"Button {index} -> {binding.action}")
            dispatched.append(binding.action)
        return dispatched

    async def run(self):
        """runs until cancelled"""
        while True:
            delta = await self._data.deltas.get()
            await self.dispatch(delta)

    async def _start_streaming(self, binding: ActionBinding):
        await self._client.start_streaming()

    async def _stop_streaming(self, binding: ActionBinding):
        await self._client.stop_streaming()

    async def _toggle_recording(self, binding: ActionBinding):
        await self._client.toggle_recording()

    async def _switch_scene(self, binding: ActionBinding):
        if not binding.parameter:
            raise ValueError(f"'{SWITCH_SCENE}' needs a scene name parameter")
        await self._client.switch_scene(binding.parameter)
