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

import asyncio

from controller_state import InputDelta


class BridgeData:

    def __init__(self):
        # written by the gamepad poller, drained by the action dispatcher
        self.deltas: asyncio.Queue[InputDelta] = asyncio.Queue()

        self.shutdown_event = asyncio.Event()
