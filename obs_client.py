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

"""
Minimal obs-websocket (v5) client.

Handshake: Hello (op 0) -> Identify (op 1) -> Identified (op 2).
After that a background task reads every frame and routes it: events (op 5) go to an
unbounded queue, request responses (op 7) resolve the future registered under their requestId.
"""

import asyncio
import base64
import enum
import hashlib
import itertools
import json
import logging
from typing import Optional

import websockets
from websockets.protocol import State as WebsocketState

RPC_VERSION = 1
DEFAULT_REQUEST_TIMEOUT = 5.0
DEFAULT_HANDSHAKE_TIMEOUT = 10.0
AUTHENTICATION_FAILED_CLOSE_CODE = 4009


class OpCode(enum.IntEnum):
    HELLO = 0
    IDENTIFY = 1
    IDENTIFIED = 2
    EVENT = 5
    REQUEST = 6
    REQUEST_RESPONSE = 7


class ConnectionState(enum.Enum):
    DISCONNECTED = "Disconnected"
    CONNECTING = "Connecting"
    AWAITING_GREETING = "AwaitingGreeting"
    AUTHENTICATING = "Authenticating"
    READY = "Ready"
    CLOSING = "Closing"
    CLOSED = "Closed"


# identify is sent while authenticating, requests only once ready
_SENDABLE_STATES = (ConnectionState.AUTHENTICATING, ConnectionState.READY)


class ObsError(Exception): pass


class ObsConnectionError(ObsError): pass


class ObsAuthenticationError(ObsError): pass


class ObsRequestTimeout(ObsError, TimeoutError): pass


class MalformedMessageError(ObsError): pass


class ObsRequestFailed(ObsError):

    def __init__(self, request_type: str, code, comment):
        super().__init__(f"{request_type} failed with code {code}: {comment}")
        self.request_type = request_type
        self.code = code
        self.comment = comment


def _b64_sha256(value: str) -> str:
    _hash = hashlib.sha256()
    _hash.update(value.encode("utf-8"))
    return base64.b64encode(_hash.digest()).decode("utf-8")


def compute_authentication(password: str, salt: str, challenge: str) -> str:
    secret = _b64_sha256(password + salt)
    return _b64_sha256(secret + challenge)


def parse_frame(message) -> dict:
    if not isinstance(message, str):
        raise MalformedMessageError("binary frame")
    try:
        frame = json.loads(message)
    except json.JSONDecodeError as e:
        raise MalformedMessageError(f"non-JSON data ({e})") from e
    if not isinstance(frame, dict):
        raise MalformedMessageError("frame is not an object")
    op = frame.get("op")
    if not isinstance(op, int) or isinstance(op, bool):
        raise MalformedMessageError(f"invalid op {op!r}")
    if not isinstance(frame.setdefault("d", {}), dict):
        raise MalformedMessageError(f"invalid payload for op {op}")
    return frame


class ObsClient:

    def __init__(self, host: str = "localhost", port: int = 4455, password: Optional[str] = None,
                 request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
                 handshake_timeout: float = DEFAULT_HANDSHAKE_TIMEOUT):
        self._uri = f"ws://{host}:{port}"
        self._password = password
        self._request_timeout = request_timeout
        self._handshake_timeout = handshake_timeout
        self._websocket = None
        self._state = ConnectionState.DISCONNECTED
        self._receive_task: Optional[asyncio.Task] = None
        self._send_lock = asyncio.Lock()
        # only state shared between callers and the receive loop
        self._request_ids = itertools.count(1)
        self._pending_requests: dict[str, asyncio.Future] = dict()
        self._events: asyncio.Queue = asyncio.Queue()

    @property
    def uri(self) -> str:
        return self._uri

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is ConnectionState.READY

    @property
    def pending_count(self) -> int:
        return len(self._pending_requests)

    @property
    def events(self) -> asyncio.Queue:
        return self._events

    async def next_event(self) -> dict:
        return await self._events.get()

    async def connect(self):
        if self._state is not ConnectionState.DISCONNECTED:
            raise ObsConnectionError(f"Cannot connect to {self._uri} from state {self._state.value}")

        self._state = ConnectionState.CONNECTING
        logging.debug(f"Connecting to {self._uri}")
        try:
            await asyncio.wait_for(self._open_session(), self._handshake_timeout)
        except asyncio.TimeoutError as e:
            await self.close()
            raise ObsConnectionError(
                f"Handshake with {self._uri} timed out after {self._handshake_timeout}s") from e
        except (ObsError, asyncio.CancelledError):
            await self.close()
            raise

        self._state = ConnectionState.READY
        self._receive_task = asyncio.create_task(self._receive_loop())
        logging.info(f"Connected to OBS at {self._uri}")

    async def _open_session(self):
        try:
            self._websocket = await websockets.connect(self._uri)
        except (OSError, websockets.exceptions.WebSocketException) as e:
            raise ObsConnectionError(f"Could not open {self._uri}: {e}") from e

        self._state = ConnectionState.AWAITING_GREETING
        hello = await self._receive_handshake_frame(OpCode.HELLO)
        logging.debug(f"Hello from obs-websocket {hello['d'].get('obsWebSocketVersion')}")

        self._state = ConnectionState.AUTHENTICATING
        identify = {"rpcVersion": RPC_VERSION}
        authentication = hello["d"].get("authentication")
        if authentication is not None:
            if not self._password:
                raise ObsAuthenticationError(f"{self._uri} requires a password but none is configured")
            try:
                identify["authentication"] = compute_authentication(
                    self._password, authentication["salt"], authentication["challenge"])
            except (KeyError, TypeError) as e:
                raise ObsConnectionError(f"Malformed authentication challenge from {self._uri}") from e
        await self._send({"op": OpCode.IDENTIFY.value, "d": identify})

        identified = await self._receive_handshake_frame(OpCode.IDENTIFIED)
        logging.debug(f"Identified, negotiated rpc version {identified['d'].get('negotiatedRpcVersion')}")

    async def _receive_handshake_frame(self, expected: OpCode) -> dict:
        try:
            message = await self._websocket.recv()
        except websockets.exceptions.ConnectionClosed as e:
            if e.rcvd is not None and e.rcvd.code == AUTHENTICATION_FAILED_CLOSE_CODE:
                raise ObsAuthenticationError(f"{self._uri} rejected the authentication: {e.rcvd.reason}") from e
            raise ObsConnectionError(f"{self._uri} closed the connection during the handshake") from e

        try:
            frame = parse_frame(message)
        except MalformedMessageError as e:
            raise ObsConnectionError(f"Malformed handshake message from {self._uri}: {e}") from e
        if frame["op"] != expected:
            raise ObsConnectionError(f"Expected op {expected.value} ({expected.name}), got op {frame['op']}")
        return frame

    async def _send(self, payload: dict):
        message = json.dumps(payload)
        logging.debug(f"Sending {message}")
        async with self._send_lock:
            # close() may have run while this send waited for the lock
            if self._websocket is None or self._state not in _SENDABLE_STATES:
                raise ObsConnectionError(f"Cannot send to {self._uri}, connection is {self._state.value}")
            try:
                await self._websocket.send(message)
            except websockets.exceptions.ConnectionClosed as e:
                raise ObsConnectionError(f"Connection to {self._uri} is closed") from e

    async def request(self, request_type: str, request_data: Optional[dict] = None,
                      timeout: Optional[float] = None) -> dict:
        """
        Send one request and wait for the response carrying the same requestId.
        Returns the response payload (the "d" object).
        """
        if self._state is not ConnectionState.READY:
            raise ObsConnectionError(f"Cannot send {request_type}, connection is {self._state.value}")
        timeout = self._request_timeout if timeout is None else timeout

        request_id = str(next(self._request_ids))
        future = asyncio.get_running_loop().create_future()
        self._pending_requests[request_id] = future
        try:
            await self._send({
                "op": OpCode.REQUEST.value,
                "d": {
                    "requestType": request_type,
                    "requestId": request_id,
                    "requestData": request_data if request_data is not None else {},
                }
            })
            return await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError as e:
            raise ObsRequestTimeout(f"{request_type} ({request_id=}) got no response within {timeout}s") from e
        finally:
            self._pending_requests.pop(request_id, None)
            if future.done() and not future.cancelled():
                # failed by close() before the send finished, nobody else awaits it
                future.exception()

    async def _receive_loop(self):
        try:
            async for message in self._websocket:
                try:
                    frame = parse_frame(message)
                except MalformedMessageError as e:
                    logging.warning(f"Dropping malformed message from {self._uri}: {e}")
                    continue
                self._route_frame(frame)
        except websockets.exceptions.ConnectionClosedError as e:
            logging.warning(f"Connection to {self._uri} lost: {e}")
        finally:
            if self._state is ConnectionState.READY:
                self._state = ConnectionState.CLOSED
                logging.error(f"OBS at {self._uri} closed the connection")
            self._fail_pending_requests(f"connection to {self._uri} closed")

    def _route_frame(self, frame: dict):
        op, data = frame["op"], frame["d"]
        if op == OpCode.EVENT:
            logging.debug(f"Event {data.get('eventType')}")
            self._events.put_nowait(data)
        elif op == OpCode.REQUEST_RESPONSE:
            request_id = str(data.get("requestId"))
            future = self._pending_requests.pop(request_id, None)
            if future is None or future.done():
                # already timed out, or never ours
                logging.debug(f"Dropping response with unknown {request_id=}")
                return
            future.set_result(data)
        else:
            logging.debug(f"Ignoring message with op {op}")

    def _fail_pending_requests(self, reason: str):
        pending = list(self._pending_requests.values())
        self._pending_requests.clear()
        for future in pending:
            if not future.done():
                future.set_exception(ObsConnectionError(reason))

    async def close(self):
        if self._state is ConnectionState.CLOSED and self._receive_task is None and self._websocket is None:
            return
        was_ready = self._state is ConnectionState.READY
        self._state = ConnectionState.CLOSING

        if self._receive_task is not None:
            self._receive_task.cancel()
            try:
                await self._receive_task
            except asyncio.CancelledError:
                pass
            self._receive_task = None

        if self._websocket is not None:
            if self._websocket.state is WebsocketState.OPEN:
                logging.debug(f"Closing websocket to {self._uri}")
                try:
                    await self._websocket.close()
                except (OSError, websockets.exceptions.WebSocketException) as e:
                    logging.debug(f"Error while closing {self._uri}: {e}")
            self._websocket = None

        self._fail_pending_requests(f"connection to {self._uri} closed")
        self._state = ConnectionState.CLOSED
        if was_ready:
            logging.info(f"Disconnected from OBS at {self._uri}")

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _checked_request(self, request_type: str, request_data: Optional[dict] = None) -> dict:
        response = await self.request(request_type, request_data)
        status = response.get("requestStatus") or {}
        if status.get("result") is False:
            raise ObsRequestFailed(request_type, status.get("code"), status.get("comment"))
        return response

    async def start_streaming(self) -> dict:
        return await self._checked_request("StartStream")

    async def stop_streaming(self) -> dict:
        return await self._checked_request("StopStream")

    async def toggle_recording(self) -> dict:
        return await self._checked_request("ToggleRecord")

    async def switch_scene(self, scene_name: str) -> dict:
        return await self._checked_request("SetCurrentProgramScene", {"sceneName": scene_name})
