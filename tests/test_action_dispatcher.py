import asyncio

from action_dispatcher import ActionBinding, ActionBindings, ActionDispatcher
from bridge_data import BridgeData
from controller_state import InputDelta
from fake_obs_server import FakeObsServer
from obs_client import ObsClient, ObsConnectionError, ObsRequestTimeout


class RecordingClient:

    def __init__(self, failing=()):
        self.calls = []
        self.failing = dict(failing)

    async def _record(self, name, *args):
        self.calls.append((name, *args))
        if name in self.failing:
            raise self.failing[name]

    async def start_streaming(self):
        await self._record("start_streaming")

    async def stop_streaming(self):
        await self._record("stop_streaming")

    async def toggle_recording(self):
        await self._record("toggle_recording")

    async def switch_scene(self, scene_name):
        await self._record("switch_scene", scene_name)


def _dispatch(bindings, delta, client=None):
    client = client or RecordingClient()
    dispatcher = ActionDispatcher(client, bindings, BridgeData())
    dispatched = asyncio.run(dispatcher.dispatch(delta))
    return client, dispatched


def test_press_fires_bound_action_once():
    bindings = ActionBindings.from_tables({"0": {"action": "StartStreaming"}})

    client, dispatched = _dispatch(bindings, InputDelta(buttons={0: True}))

    assert client.calls == [("start_streaming",)]
    assert dispatched == ["StartStreaming"]


def test_release_fires_nothing():
    bindings = ActionBindings.from_tables({"0": {"action": "StartStreaming"}})

    client, dispatched = _dispatch(bindings, InputDelta(buttons={0: False}))

    assert client.calls == []
    assert dispatched == []


def test_switch_scene_carries_parameter():
    bindings = ActionBindings.from_tables({"3": {"action": "SwitchScene", "parameter": "Game"}})

    client, _ = _dispatch(bindings, InputDelta(buttons={3: True}))

    assert client.calls == [("switch_scene", "Game")]


def test_switch_scene_without_parameter_is_skipped():
    bindings = ActionBindings.from_tables({
        "3": {"action": "SwitchScene"},
        "4": {"action": "ToggleRecording"},
    })

    client, dispatched = _dispatch(bindings, InputDelta(buttons={3: True, 4: True}))

    assert client.calls == [("toggle_recording",)]
    assert dispatched == ["ToggleRecording"]


def test_unbound_and_unknown_actions_are_skipped():
    bindings = ActionBindings.from_tables({
        "1": {"action": "SetSourceVisibility", "parameter": "Camera,true"},
        "2": {"action": "StopStreaming"},
    })

    client, dispatched = _dispatch(bindings, InputDelta(buttons={0: True, 1: True, 2: True}))

    assert client.calls == [("stop_streaming",)]
    assert dispatched == ["StopStreaming"]


def test_switches_and_axes_are_not_dispatched():
    bindings = ActionBindings.from_tables(
        switch_map={"0": {"action": "StartStreaming"}},
        axis_map={"0": {"action": "StopStreaming"}},
    )

    client, dispatched = _dispatch(bindings, InputDelta(switches={0: 1}, axes={0: 0.9}))

    assert client.calls == []
    assert dispatched == []


def test_failure_does_not_stop_sibling_bindings():
    bindings = ActionBindings.from_tables({
        "0": {"action": "StartStreaming"},
        "1": {"action": "ToggleRecording"},
        "2": {"action": "SwitchScene", "parameter": "Game"},
    })
    client = RecordingClient(failing={
        "start_streaming": ObsRequestTimeout("no answer"),
        "toggle_recording": ObsConnectionError("gone"),
    })

    _, dispatched = _dispatch(bindings, InputDelta(buttons={0: True, 1: True, 2: True}), client)

    assert [call[0] for call in client.calls] == ["start_streaming", "toggle_recording", "switch_scene"]
    assert dispatched == ["SwitchScene"]


def test_bindings_from_tables():
    bindings = ActionBindings.from_tables({"0": {"action": "StartStreaming"}, "12": {"action": "x", "parameter": "y"}})

    assert bindings.buttons == {0: ActionBinding("StartStreaming"), 12: ActionBinding("x", "y")}
    assert dict(bindings.switches) == {}
    assert dict(bindings.axes) == {}


def test_run_drains_delta_queue():
    async def scenario():
        data = BridgeData()
        client = RecordingClient()
        bindings = ActionBindings.from_tables({"0": {"action": "StartStreaming"}, "1": {"action": "StopStreaming"}})
        dispatcher = ActionDispatcher(client, bindings, data)

        task = asyncio.create_task(dispatcher.run())
        data.deltas.put_nowait(InputDelta(buttons={0: True}))
        data.deltas.put_nowait(InputDelta(buttons={0: False, 1: True}))
        while data.deltas.qsize() or len(client.calls) < 2:
            await asyncio.sleep(0.01)
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        return client.calls

    assert asyncio.run(scenario()) == [("start_streaming",), ("stop_streaming",)]


def test_run_stops_only_when_cancelled():
    async def scenario():
        data = BridgeData()
        client = RecordingClient()
        dispatcher = ActionDispatcher(client, ActionBindings.from_tables({"0": {"action": "StartStreaming"}}), data)

        task = asyncio.create_task(dispatcher.run())
        data.shutdown_event.set()
        data.deltas.put_nowait(InputDelta(buttons={0: True}))
        while not client.calls:
            await asyncio.sleep(0.01)
        still_running = not task.done()
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        return still_running, task.cancelled(), client.calls

    still_running, cancelled, calls = asyncio.run(scenario())

    assert still_running
    assert cancelled
    assert calls == [("start_streaming",)]


def test_scene_switch_reaches_obs():
    async def scenario():
        async with FakeObsServer() as server:
            async with ObsClient("127.0.0.1", server.port) as client:
                bindings = ActionBindings.from_tables({"3": {"action": "SwitchScene", "parameter": "Game"}})
                dispatcher = ActionDispatcher(client, bindings, BridgeData())
                dispatched = await dispatcher.dispatch(InputDelta(buttons={3: True}))
        return server.requests, dispatched

    requests, dispatched = asyncio.run(scenario())

    assert dispatched == ["SwitchScene"]
    assert len(requests) == 1
    assert requests[0]["requestType"] == "SetCurrentProgramScene"
    assert requests[0]["requestData"] == {"sceneName": "Game"}


def test_dead_session_is_reported_per_press():
    async def scenario():
        client = ObsClient("127.0.0.1", 4455)
        bindings = ActionBindings.from_tables({"0": {"action": "StartStreaming"}})
        dispatcher = ActionDispatcher(client, bindings, BridgeData())
        return await dispatcher.dispatch(InputDelta(buttons={0: True}))

    assert asyncio.run(scenario()) == []
