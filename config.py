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

import logging

from voluptuous import Schema, Required, Optional, All, Range, Length, Match, Coerce
import voluptuous.error
import aiofiles
import tomlkit
import tomlkit.exceptions
from pathlib import Path

from action_dispatcher import ActionBindings
from controller_state import AXIS_TOLERANCE
from obs_client import DEFAULT_HANDSHAKE_TIMEOUT, DEFAULT_REQUEST_TIMEOUT


class ConfigurationLoadError(Exception): pass


# unknown action names are accepted here and rejected when dispatched
BINDING_TABLE = {
    Match(r"^\d+$"): {
        Required('action'): All(str, Length(min=1)),
        Optional('parameter'): str,
    }
}


class Config:
    config: dict

    def __init__(self, config_location: Path):
        self.config_location = Path(config_location)
        self.config = dict()

        self.config_schema = Schema({
            Optional('obs', default={}): {
                Optional('host', default='localhost'): All(str, Length(min=1)),
                Optional('port', default=4455): All(int, Range(min=1, max=65535)),
                Optional('password', default=''): str,
                Optional('request_timeout', default=DEFAULT_REQUEST_TIMEOUT):
                    All(Coerce(float), Range(min=0, min_included=False)),
                Optional('handshake_timeout', default=DEFAULT_HANDSHAKE_TIMEOUT):
                    All(Coerce(float), Range(min=0, min_included=False)),
            },
            Optional('gamepad', default={}): {
                Optional('device_identifier', default=''): str,
                Optional('poll_hz', default=30): All(int, Range(min=1, max=1000)),
                Optional('discovery_timeout', default=10.0): All(Coerce(float), Range(min=0)),
                Optional('axis_tolerance', default=AXIS_TOLERANCE): All(Coerce(float), Range(min=0)),
            },
            Optional('button_map', default={}): BINDING_TABLE,
            Optional('switch_map', default={}): BINDING_TABLE,
            Optional('axis_map', default={}): BINDING_TABLE,
        })

    async def initialize(self):
        try:
            async with aiofiles.open(self.config_location, 'r') as config_file:
                file_data = await config_file.read()
                document = tomlkit.parse(file_data)
                logging.debug("Loaded Configuration without toml format error")
                logging.debug("Validating against Schema.")
                self.config = self.config_schema(document.unwrap())
                logging.debug("Validated against Schema.")
        except FileNotFoundError as e:
            logging.exception(e)
            logging.warning(
                f"Could not find {self.config_location}. Copy from .example/config.toml to {self.config_location}")
            raise ConfigurationLoadError() from e
        except IOError as e:
            logging.exception(e)
            logging.warning(f"Could not open file {self.config_location}")
            raise ConfigurationLoadError() from e
        except tomlkit.exceptions.ParseError as e:
            logging.exception(e)
            logging.warning(f"Configuration in {self.config_location} is invalid")
            raise ConfigurationLoadError() from e
        except voluptuous.error.MultipleInvalid as e:
            logging.exception(e)
            logging.warning(f"Configuration in {self.config_location} does not match expected format")
            logging.warning(f"Issue configuration item: {e.path}")
            raise ConfigurationLoadError() from e

        logging.info(f"Configuration loaded, {len(self.config['button_map'])} button binding(s).")

    def apply_overrides(self, host: str = None, port: int = None, password: str = None):
        """command line values win over the file"""
        if host and host.strip():
            self.config["obs"]["host"] = host
        if port is not None and 0 < port <= 65535:
            self.config["obs"]["port"] = port
        if password:
            self.config["obs"]["password"] = password

    @property
    def obs(self) -> dict:
        return self.config["obs"]

    @property
    def gamepad(self) -> dict:
        return self.config["gamepad"]

    def bindings(self) -> ActionBindings:
        return ActionBindings.from_tables(
            self.config["button_map"],
            self.config["switch_map"],
            self.config["axis_map"],
        )
