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
import argparse
import asyncio
import logging
import os
import sys

from action_dispatcher import ActionDispatcher
from bridge_data import BridgeData
from config import Config, ConfigurationLoadError
from gamepad_source import GamepadPoller, list_gamepads, open_gamepad_source
from logger import setup_logging
from obs_client import ObsAuthenticationError, ObsClient, ObsConnectionError


class ObsPad:

    def __init__(self, config: Config):
        self._config = config
        self._data = BridgeData()
        self._client = ObsClient(
            config.obs["host"],
            config.obs["port"],
            config.obs["password"] or None,
            request_timeout=config.obs["request_timeout"],
            handshake_timeout=config.obs["handshake_timeout"],
        )
        self._dispatcher = ActionDispatcher(self._client, config.bindings(), self._data)

    @property
    def client(self) -> ObsClient:
        return self._client

    async def connect(self) -> bool:
        """
        A failed connection is reported once; the bridge keeps running with a dead session.
        """
        try:
            await self._client.connect()
        except ObsAuthenticationError as e:
            logging.error(f"OBS at {self._client.uri} rejected the authentication: {e}")
        except ObsConnectionError as e:
            logging.error(f"Could not connect to OBS at {self._client.uri}: {e}")
        else:
            return True
        logging.warning("Continuing without an OBS session, button presses will not reach OBS.")
        return False

    async def _drain_events(self):
        while True:
            event = await self._client.next_event()
            logging.debug(f"OBS event {event.get('eventType')}: {event.get('eventData')}")

    async def begin(self):
        logging.info("Starting ObsPad")
        await self.connect()

        gamepad = self._config.gamepad
        source = await open_gamepad_source(gamepad["device_identifier"] or None, gamepad["discovery_timeout"])
        poller = GamepadPoller(source, self._data, gamepad["poll_hz"], gamepad["axis_tolerance"])

        tasks = [
            asyncio.create_task(poller.run()),
            asyncio.create_task(self._dispatcher.run()),
            asyncio.create_task(self._drain_events()),
        ]
        try:
            logging.info(f"Listening on {source.capabilities.name}, Ctrl^C to quit")
            await asyncio.gather(*tasks)
        except asyncio.CancelledError:
            logging.info("Cancelled ...")
        finally:
            logging.info("Stopping ...")
            self._data.shutdown_event.set()
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            poller.source.close()
            await self._client.close()


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="ObsPad: gamepad buttons -> OBS actions")
    parser.add_argument("--config", default=os.environ.get("OBS_PAD_CONFIG", "./config.toml"),
                        help="TOML configuration file (default: ./config.toml or $OBS_PAD_CONFIG)")
    parser.add_argument("--host", help="OBS websocket host (overrides the config file)")
    parser.add_argument("--port", type=int, help="OBS websocket port (overrides the config file)")
    parser.add_argument("--password", help="OBS websocket password (overrides the config file)")
    parser.add_argument("--list-gamepads", action="store_true", help="Show detected joysticks and exit")
    parser.add_argument("--log-level", default=os.environ.get("LOGLEVEL", "INFO"),
                        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
    return parser.parse_args(argv)


async def main(args: argparse.Namespace) -> int:
    logging.info("Starting obs pad ...")

    config = Config(args.config)
    try:
        await config.initialize()
    except ConfigurationLoadError:
        logging.error("Could not load configuration. Exiting")
        return 1

    config.apply_overrides(args.host, args.port, args.password)
    await ObsPad(config).begin()
    return 0


def run(argv=None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_level)
    if args.list_gamepads:
        list_gamepads()
        return 0
    try:
        return asyncio.run(main(args))
    except KeyboardInterrupt:
        logging.info("Cancelled ...")
        return 0


if __name__ == "__main__":
    sys.exit(run())
