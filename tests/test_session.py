"""
tests/test_session.py — Session behaviour against an in-memory obs-websocket.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from pydantic import BaseModel, Field

from obs_link.core import (
    APIError,
    BatchItem,
    DeserializationError,
    DisconnectedError,
    EventDispatcher,
    EventSubscription,
    HandshakeClosedError,
    HandshakeError,
    HandshakeTimeoutError,
    OBSConnectionError,
    OBSStudioVersionError,
    OBSWebSocketVersionError,
    OpCode,
    PasswordRequiredError,
    ResponseShapeError,
    RpcVersionMismatchError,
    SendError,
    SerializationError,
    Session,
    SessionState,
    StatusCode,
    UnexpectedMessageError,
)


async def _wait_until(predicate, timeout: float = 1.0) -> None:
    async def _poll():
        while not predicate():
            await asyncio.sleep(0)
    await asyncio.wait_for(_poll(), timeout)


# ─── Handshake ────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_handshake_without_auth(transport, connect):
    session = await connect()
    assert session.state is SessionState.ACTIVE
    assert session.rpc_version == 1
    identify = transport.sent_with_op(OpCode.IDENTIFY)[0]
    assert identify == {"rpcVersion": 1, "eventSubscriptions": int(EventSubscription.ALL)}
    await session.disconnect()
    assert session.state is SessionState.TERMINATED
    assert transport.closed


@pytest.mark.asyncio
async def test_handshake_with_auth(transport):
    transport.hello(authentication={"challenge": "challenge", "salt": "salt"})
    transport.identified()
    session = await Session.from_transport(
        transport, "password", event_subscriptions=EventSubscription.SCENES, verify_versions=False
    )
    identify = transport.sent_with_op(OpCode.IDENTIFY)[0]
    assert identify["authentication"] == "zTM5ki6L2vVvBQiTG9ckH1Lh64AbnCf6XZ226UmnkIA="
    assert identify["eventSubscriptions"] == 4
    await session.disconnect()


@pytest.mark.asyncio
async def test_handshake_password_required(transport):
    transport.hello(authentication={"challenge": "c", "salt": "s"})
    with pytest.raises(PasswordRequiredError):
        await Session.from_transport(transport)
    assert transport.sent_with_op(OpCode.IDENTIFY) == []
    assert transport.closed


@pytest.mark.asyncio
async def test_handshake_timeout_before_hello(transport):
    with pytest.raises(HandshakeTimeoutError):
        await Session.from_transport(transport, handshake_timeout=0.05)
    assert transport.closed


@pytest.mark.asyncio
async def test_handshake_closed_by_server(transport):
    transport.hello(authentication={"challenge": "c", "salt": "s"})
    transport.hang_up(4009, "Authentication failed.")
    with pytest.raises(HandshakeClosedError) as exc:
        await Session.from_transport(transport, "wrong")
    assert exc.value.code == 4009
    assert isinstance(exc.value, OBSConnectionError)


@pytest.mark.asyncio
async def test_handshake_unexpected_message(transport):
    transport.event("CurrentProgramSceneChanged", {"sceneName": "Live"})
    with pytest.raises(UnexpectedMessageError) as exc:
        await Session.from_transport(transport)
    assert exc.value.op == OpCode.EVENT


@pytest.mark.asyncio
async def test_handshake_rpc_version_mismatch(transport):
    transport.hello()
    transport.identified(rpc_version=2)
    with pytest.raises(RpcVersionMismatchError) as exc:
        await Session.from_transport(transport)
    assert (exc.value.requested, exc.value.negotiated) == (1, 2)
    assert transport.closed


@pytest.mark.asyncio
async def test_version_check_after_identify(transport, connect):
    task = asyncio.create_task(connect(verify_versions=True))
    (request,) = await transport.wait_sent(1, OpCode.REQUEST)
    assert request["requestType"] == "GetVersion"
    transport.respond(request, data={"obsVersion": "30.2.3", "obsWebSocketVersion": "5.5.4", "rpcVersion": 1})
    session = await asyncio.wait_for(task, 1.0)
    assert session.is_active()
    assert session.pending_requests() == 0
    await session.disconnect()


@pytest.mark.asyncio
@pytest.mark.parametrize("obs_version, websocket_version, error", [
    ("26.1.2", "5.0.0", OBSStudioVersionError),
    ("27.2.4", "4.9.1", OBSWebSocketVersionError),
])
async def test_version_check_rejects_unsupported_peer(transport, connect, obs_version, websocket_version, error):
    task = asyncio.create_task(connect(verify_versions=True))
    (request,) = await transport.wait_sent(1, OpCode.REQUEST)
    transport.respond(request, data={"obsVersion": obs_version, "obsWebSocketVersion": websocket_version})
    with pytest.raises(error) as exc:
        await asyncio.wait_for(task, 1.0)
    assert isinstance(exc.value, HandshakeError)
    assert transport.closed


# ─── Requests ─────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_concurrent_requests_matched_by_id(transport, connect):
    session = await connect()
    tasks = [asyncio.create_task(session.send_request("Echo", {"n": n})) for n in range(5)]
    requests = await transport.wait_sent(5, OpCode.REQUEST)
    assert len({r["requestId"] for r in requests}) == 5

    # reply in reverse order
    for request in reversed(requests):
        transport.respond(request, data={"n": request["requestData"]["n"]})

    results = await asyncio.gather(*tasks)
    assert [r["n"] for r in results] == list(range(5))
    assert session.pending_requests() == 0
    await session.disconnect()


@pytest.mark.asyncio
async def test_request_without_response_data(transport, connect):
    session = await connect()
    task = asyncio.create_task(session.send_request("StartStream"))
    (request,) = await transport.wait_sent(1, OpCode.REQUEST)
    assert "requestData" not in request
    transport.respond(request)
    assert await task == {}
    await session.disconnect()


@pytest.mark.asyncio
async def test_request_api_error(transport, connect):
    session = await connect()
    task = asyncio.create_task(session.send_request("GetInputMute", {"inputName": "Mic"}))
    (request,) = await transport.wait_sent(1, OpCode.REQUEST)
    transport.respond(request, result=False, code=600, comment="No source was found by the name of `Mic`.")

    with pytest.raises(APIError) as exc:
        await task
    assert exc.value.code is StatusCode.RESOURCE_NOT_FOUND
    assert "Mic" in exc.value.comment
    # the session survives a rejected request
    assert session.is_active()
    await session.disconnect()


class VersionInfo(BaseModel):
    obs_version: str = Field(alias="obsVersion")
    rpc_version: int = Field(alias="rpcVersion")


@pytest.mark.asyncio
async def test_request_typed_response(transport, connect):
    session = await connect()
    task = asyncio.create_task(session.send_request("GetVersion", response_type=VersionInfo))
    (request,) = await transport.wait_sent(1, OpCode.REQUEST)
    transport.respond(request, data={"obsVersion": "30.1.2", "rpcVersion": 1, "platform": "linux"})
    version = await task
    assert version == VersionInfo(obsVersion="30.1.2", rpcVersion=1)
    await session.disconnect()


@pytest.mark.asyncio
async def test_request_response_shape_mismatch(transport, connect):
    session = await connect()
    task = asyncio.create_task(session.send_request("GetVersion", response_type=VersionInfo))
    (request,) = await transport.wait_sent(1, OpCode.REQUEST)
    transport.respond(request, data={"obsVersion": "30.1.2"})
    with pytest.raises(ResponseShapeError):
        await task
    assert not isinstance(ResponseShapeError("x", "y"), APIError)
    await session.disconnect()


@pytest.mark.asyncio
async def test_request_answered_with_batch_response(transport, connect):
    session = await connect()
    task = asyncio.create_task(session.send_request("GetStats"))
    (request,) = await transport.wait_sent(1, OpCode.REQUEST)
    transport.push(OpCode.REQUEST_BATCH_RESPONSE, {"requestId": request["requestId"], "results": []})
    with pytest.raises(DeserializationError, match="RequestResponse"):
        await task
    assert session.pending_requests() == 0
    assert session.is_active()
    await session.disconnect()


@pytest.mark.asyncio
async def test_send_failure_does_not_leak(transport, connect):
    session = await connect()
    before = session.pending_requests()
    transport.fail_send = True
    with pytest.raises(SendError):
        await session.send_request("GetSceneList")
    assert session.pending_requests() == before
    await session.disconnect()


@pytest.mark.asyncio
async def test_serialization_failure_does_not_leak(transport, connect):
    session = await connect()
    with pytest.raises(SerializationError):
        await session.send_request("SetInputSettings", {"inputSettings": {1, 2}})
    assert session.pending_requests() == 0
    assert transport.sent_with_op(OpCode.REQUEST) == []
    await session.disconnect()


@pytest.mark.asyncio
async def test_cancelled_request_is_abandoned(transport, connect):
    session = await connect()
    task = asyncio.create_task(session.send_request("Sleep", {"sleepMillis": 10000}))
    (request,) = await transport.wait_sent(1, OpCode.REQUEST)
    assert session.pending_requests() == 1
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert session.pending_requests() == 0
    # a late reply for the abandoned request is ignored
    transport.respond(request)
    await asyncio.sleep(0)
    assert session.is_active()
    await session.disconnect()


@pytest.mark.asyncio
async def test_pending_requests_fail_when_connection_drops(transport, connect):
    session = await connect()
    tasks = [asyncio.create_task(session.send_request("GetStats")) for _ in range(4)]
    await transport.wait_sent(4, OpCode.REQUEST)

    transport.hang_up(1001, "going away")
    results = await asyncio.wait_for(asyncio.gather(*tasks, return_exceptions=True), 1.0)
    assert all(isinstance(r, DisconnectedError) for r in results)
    assert session.state is SessionState.TERMINATED
    assert session.close_code == 1001
    assert session.pending_requests() == 0

    with pytest.raises(DisconnectedError):
        await session.send_request("GetStats")
    await session.disconnect()


@pytest.mark.asyncio
async def test_disconnect_fails_pending_requests(transport, connect):
    session = await connect()
    task = asyncio.create_task(session.send_request("GetStats"))
    await transport.wait_sent(1, OpCode.REQUEST)
    await session.disconnect()
    with pytest.raises(DisconnectedError):
        await task


@pytest.mark.asyncio
async def test_malformed_frame_is_skipped(transport, connect):
    session = await connect()
    first = asyncio.create_task(session.send_request("GetSceneList"))
    second = asyncio.create_task(session.send_request("GetInputList"))
    requests = await transport.wait_sent(2, OpCode.REQUEST)

    transport.respond(requests[0], data={"scenes": []})
    transport.push_raw("{this is not json")
    transport.push_raw(b'{"op": 5, "d": {"eventType": "\xff"}}')
    transport.push(OpCode.REQUEST_RESPONSE, {"requestId": "7"})
    transport.push(99, {"fromTheFuture": True})
    transport.respond(requests[1], data={"inputs": []})

    assert await first == {"scenes": []}
    assert await second == {"inputs": []}
    assert session.is_active()
    assert session._router.frames_skipped == 3
    await session.disconnect()


# ─── Batches ──────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_batch_maps_results_back_by_id(transport, connect):
    session = await connect()
    task = asyncio.create_task(session.send_batch(
        [
            "GetVersion",
            ("SetCurrentProgramScene", {"sceneName": "Missing"}),
            BatchItem(request_type="GetStats", request_id="mine"),
        ],
        execution_type=None,
    ))
    (batch,) = await transport.wait_sent(1, OpCode.REQUEST_BATCH)
    assert [r["requestId"] for r in batch["requests"]] == ["0", "1", "2"]
    assert batch["requests"][1]["requestData"] == {"sceneName": "Missing"}
    assert "haltOnFailure" not in batch

    ok = {"result": True, "code": 100}
    transport.push(OpCode.REQUEST_BATCH_RESPONSE, {
        "requestId": batch["requestId"],
        "results": [
            {"requestType": "GetStats", "requestId": "2", "requestStatus": ok, "responseData": {"cpuUsage": 1.5}},
            {"requestType": "SetCurrentProgramScene", "requestId": "1",
             "requestStatus": {"result": False, "code": 600, "comment": "No scene"}},
            {"requestType": "GetVersion", "requestId": "0", "requestStatus": ok, "responseData": {"rpcVersion": 1}},
        ],
    })
    results = await task
    assert [r.request_type for r in results] == ["GetVersion", "SetCurrentProgramScene", "GetStats"]
    assert [r.ok for r in results] == [True, False, True]
    assert results[0].unwrap() == {"rpcVersion": 1}
    assert results[1].error.code is StatusCode.RESOURCE_NOT_FOUND
    with pytest.raises(APIError):
        results[1].unwrap()
    assert results[2].data == {"cpuUsage": 1.5}
    await session.disconnect()


@pytest.mark.asyncio
async def test_batch_halt_on_failure_keeps_per_item_outcome(transport, connect):
    session = await connect()
    task = asyncio.create_task(session.send_batch(["StartRecord", "StopStream", "GetStats"], halt_on_failure=True))
    (batch,) = await transport.wait_sent(1, OpCode.REQUEST_BATCH)
    assert batch["haltOnFailure"] is True

    # server stopped after the failing second item and omitted ids
    transport.push(OpCode.REQUEST_BATCH_RESPONSE, {
        "requestId": batch["requestId"],
        "results": [
            {"requestType": "StartRecord", "requestStatus": {"result": True, "code": 100}},
            {"requestType": "StopStream", "requestStatus": {"result": False, "code": 501}},
        ],
    })
    results = await task
    assert [r.executed for r in results] == [True, True, False]
    assert [r.ok for r in results] == [True, False, False]
    assert results[1].error.code is StatusCode.OUTPUT_NOT_RUNNING
    await session.disconnect()


@pytest.mark.asyncio
async def test_empty_batch_sends_nothing(transport, connect):
    session = await connect()
    assert await session.send_batch([]) == []
    assert transport.sent_with_op(OpCode.REQUEST_BATCH) == []
    await session.disconnect()


@pytest.mark.asyncio
async def test_empty_batch_on_closed_session_is_rejected(transport, connect):
    session = await connect()
    await session.disconnect()
    with pytest.raises(DisconnectedError):
        await session.send_batch([])


@pytest.mark.asyncio
async def test_batch_answered_with_single_response(transport, connect):
    session = await connect()
    task = asyncio.create_task(session.send_batch(["GetStats"]))
    (batch,) = await transport.wait_sent(1, OpCode.REQUEST_BATCH)
    transport.push(OpCode.REQUEST_RESPONSE, {
        "requestType": "GetStats",
        "requestId": batch["requestId"],
        "requestStatus": {"result": True, "code": 100},
    })
    with pytest.raises(DeserializationError, match="RequestBatchResponse"):
        await task
    assert session.pending_requests() == 0
    await session.disconnect()


# ─── Reidentify ───────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_reidentify_resolves_in_issue_order(transport, connect):
    session = await connect()
    r1 = asyncio.create_task(session.reidentify(EventSubscription.SCENES))
    r2 = asyncio.create_task(session.reidentify(EventSubscription.INPUTS))
    frames = await transport.wait_sent(2, OpCode.REIDENTIFY)
    transport.identified(rpc_version=1)
    r3 = asyncio.create_task(session.reidentify(EventSubscription.UI))
    frames = await transport.wait_sent(3, OpCode.REIDENTIFY)
    transport.identified(rpc_version=2)
    transport.identified(rpc_version=3)

    results = await asyncio.gather(r1, r2, r3)
    assert [r.negotiated_rpc_version for r in results] == [1, 2, 3]
    assert [f["eventSubscriptions"] for f in frames] == [4, 8, 1024]
    await session.disconnect()


@pytest.mark.asyncio
async def test_reidentify_fails_on_disconnect(transport, connect):
    session = await connect()
    task = asyncio.create_task(session.reidentify(EventSubscription.NONE))
    await transport.wait_sent(1, OpCode.REIDENTIFY)
    transport.hang_up()
    with pytest.raises(DisconnectedError):
        await asyncio.wait_for(task, 1.0)


@pytest.mark.asyncio
async def test_reidentify_send_failure(transport, connect):
    session = await connect()
    transport.fail_send = True
    with pytest.raises(SendError):
        await session.reidentify(EventSubscription.ALL)
    # the failed call left no waiter behind to steal a later confirmation
    transport.fail_send = False
    task = asyncio.create_task(session.reidentify(EventSubscription.GENERAL))
    await transport.wait_sent(1, OpCode.REIDENTIFY)
    transport.identified()
    assert (await task).negotiated_rpc_version == 1
    await session.disconnect()


@pytest.mark.asyncio
async def test_reidentify_cancelled_during_send_leaves_no_waiter(transport, connect):
    session = await connect()
    transport.send_gate = asyncio.Event()
    task = asyncio.create_task(session.reidentify(EventSubscription.SCENES))
    await _wait_until(lambda: len(session._reidentify) == 1)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert len(session._reidentify) == 0

    # the next confirmation goes to the next caller
    transport.send_gate = None
    follow_up = asyncio.create_task(session.reidentify(EventSubscription.INPUTS))
    await transport.wait_sent(1, OpCode.REIDENTIFY)
    transport.identified()
    assert (await asyncio.wait_for(follow_up, 1.0)).negotiated_rpc_version == 1
    await session.disconnect()


# ─── Events ───────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_events_fan_out_without_replay(transport, connect):
    session = await connect()
    early_a, early_b = session.events(), session.events()
    transport.event("SceneNameChanged", {"sceneName": "A"})
    await _wait_until(lambda: len(early_a._buffer) == 1)

    late = session.events()
    transport.event("SceneNameChanged", {"sceneName": "B"})
    await _wait_until(lambda: len(late._buffer) == 1)
    await session.disconnect()

    assert [e.event_data["sceneName"] async for e in early_a] == ["A", "B"]
    assert [e.event_data["sceneName"] async for e in early_b] == ["A", "B"]
    assert [e.event_data["sceneName"] async for e in late] == ["B"]


@pytest.mark.asyncio
async def test_event_streams_end_when_connection_drops(transport, connect):
    session = await connect()
    stream = session.events()
    consumer = asyncio.create_task(_collect(stream))
    transport.event("ExitStarted")
    transport.hang_up(1000)
    events = await asyncio.wait_for(consumer, 1.0)
    assert [e.event_type for e in events] == ["ExitStarted"]
    assert [e async for e in session.events()] == []


async def _collect(stream):
    return [e async for e in stream]


@pytest.mark.asyncio
async def test_event_dispatcher_callbacks(transport, connect):
    session = await connect()
    dispatcher = EventDispatcher(session)
    scenes, everything = [], []

    async def broken(event):
        raise RuntimeError("listener bug")

    async def on_scene(event):
        scenes.append(event.event_data["sceneName"])

    async def on_any(event):
        everything.append(event.event_type)

    dispatcher.on("CurrentProgramSceneChanged", broken)
    dispatcher.on("CurrentProgramSceneChanged", on_scene)
    dispatcher.on_any(on_any)
    dispatcher.start()
    assert dispatcher.is_running()

    transport.event("CurrentProgramSceneChanged", {"sceneName": "BRB"})
    transport.event("InputMuteStateChanged", {"inputName": "Mic", "inputMuted": True})
    await _wait_until(lambda: len(everything) == 2)

    assert scenes == ["BRB"]
    assert everything == ["CurrentProgramSceneChanged", "InputMuteStateChanged"]
    await session.disconnect()
    await dispatcher.stop()
    assert not dispatcher.is_running()


# ─── Connection manager ───────────────────────────────────────────────────────

from obs_link.config import OBSSettings
from obs_link.core import close_session, get_session, open_session


@pytest.mark.asyncio
async def test_open_session_from_settings():
    fake = MagicMock()
    fake.is_active.return_value = True
    fake.disconnect = AsyncMock()
    settings = OBSSettings(host="obs.local", port=4460, password="", event_subscriptions="scenes")

    with patch.object(Session, "connect", AsyncMock(return_value=fake)) as connect:
        assert await open_session(settings) is fake

    kwargs = connect.call_args.kwargs
    assert kwargs["host"] == "obs.local"
    assert kwargs["port"] == 4460
    assert kwargs["password"] is None
    assert kwargs["event_subscriptions"] == EventSubscription.SCENES
    assert kwargs["verify_versions"] is True
    assert get_session() is fake

    await close_session()
    fake.disconnect.assert_awaited_once()
    with pytest.raises(RuntimeError, match="not open"):
        get_session()
