import asyncio

import pytest

from shared.crypto.auth import generate_authentication
from shared.envelope import ConnectionFailedError, ConnectionLostError, TransportNotOpenError
from shared.opcodes import ConnectionState, EventSubscription


async def wait_for(predicate, timeout=1.0):
    loop = asyncio.get_running_loop()
    end = loop.time() + timeout
    while loop.time() < end:
        if predicate():
            return True
        await asyncio.sleep(0.005)
    return predicate()


@pytest.mark.asyncio
async def test_endpointless_client_is_idle(make_client):
    client = make_client(host=None, port=None)

    await client.connect()
    await asyncio.wait_for(client.wait_for_initialization(), 0.1)

    assert client.is_connected() is False
    assert client.is_identified() is False
    assert client.state is ConnectionState.DISCONNECTED
    assert client.transport.opened_urls == []


@pytest.mark.asyncio
async def test_handshake_without_password(make_client):
    client = make_client()

    await client.connect()
    await asyncio.wait_for(client.wait_for_initialization(), 1.0)

    assert client.transport.opened_urls == ["ws://localhost:4455"]
    assert client.is_connected() and client.is_identified()
    assert client.state is ConnectionState.IDENTIFIED
    assert client.negotiated_rpc_version == 1
    assert client.hello.obs_studio_version == "30.2.0"
    [identify] = client.transport.sent_ops(1)
    assert identify == {"rpcVersion": 1, "eventSubscriptions": int(EventSubscription.ALL)}

    await client.close()


@pytest.mark.asyncio
async def test_handshake_with_authentication(make_client):
    client = make_client(password="pw", event_subscriptions=EventSubscription.SCENES | EventSubscription.INPUT_VOLUME_METERS)
    client.transport.hello = {"rpcVersion": 1, "authentication": {"challenge": "C", "salt": "S"}}

    await client.connect()
    await asyncio.wait_for(client.wait_for_initialization(), 1.0)

    [identify] = client.transport.sent_ops(1)
    assert identify["authentication"] == generate_authentication("pw", "C", "S")
    assert identify["eventSubscriptions"] == (1 << 2) | (1 << 16)

    await client.close()


@pytest.mark.asyncio
async def test_auth_required_without_password_sends_no_proof(make_client):
    client = make_client()
    client.transport.hello = {"rpcVersion": 1, "authentication": {"challenge": "C", "salt": "S"}}
    client.transport.auto_identify = False

    await client.connect()
    [identify] = await client.transport.wait_sent(1)

    assert "authentication" not in identify
    assert client.is_identified() is False
    await client.close()


@pytest.mark.asyncio
async def test_initialize_factory(fake_transport_cls):
    from client.session import ObsClient

    client = await asyncio.wait_for(
        ObsClient.initialize("127.0.0.1", 4455, transport_factory=fake_transport_cls), 1.0
    )
    assert client.is_identified()
    await client.close()


@pytest.mark.asyncio
async def test_wait_blocks_until_identified(make_client):
    client = make_client()
    client.transport.auto_identify = False

    await client.connect()
    waiter = asyncio.create_task(client.wait_for_initialization())
    await client.transport.wait_sent(1)
    await asyncio.sleep(0.01)
    assert not waiter.done()
    assert client.state is ConnectionState.CONNECTED_UNIDENTIFIED

    client.transport.push(2, {"negotiatedRpcVersion": 1})
    await asyncio.wait_for(waiter, 1.0)
    assert client.is_identified()
    await client.close()


@pytest.mark.asyncio
async def test_events_reach_listeners(make_client):
    client = make_client()
    seen = []
    client.add_event_listener("CurrentProgramSceneChanged", lambda e: seen.append(("scene", e.event_data)))

    @client.on()
    def everything(event):
        seen.append(("all", event.event_type))

    await client.connect()
    await client.wait_for_initialization()
    client.transport.push(5, {"eventType": "CurrentProgramSceneChanged", "eventIntent": 4, "eventData": {"sceneName": "Live"}})
    client.transport.push(5, {"eventType": "InputCreated", "eventIntent": 8, "eventData": {}})

    assert await wait_for(lambda: len(seen) == 3)
    assert seen == [
        ("scene", {"sceneName": "Live"}),
        ("all", "CurrentProgramSceneChanged"),
        ("all", "InputCreated"),
    ]
    await client.close()


@pytest.mark.asyncio
async def test_request_round_trip_through_session(make_client):
    client = make_client()
    await client.connect()
    await client.wait_for_initialization()

    task = asyncio.create_task(client.send_request("GetVersion"))
    [request] = await client.transport.wait_sent(6)
    client.transport.push(7, {
        "requestType": "GetVersion",
        "requestId": request["requestId"],
        "requestStatus": {"result": True, "code": 100},
        "responseData": {"obsVersion": "30.2.0"},
    })

    response = await asyncio.wait_for(task, 1.0)
    assert response.ok
    assert response.response_data == {"obsVersion": "30.2.0"}
    await client.close()


@pytest.mark.asyncio
async def test_malformed_and_unknown_frames_are_ignored(make_client):
    client = make_client()
    await client.connect()
    await client.wait_for_initialization()
    seen = []
    client.add_event_listener(None, seen.append)

    client.transport.push_raw("{nope")
    client.transport.push_raw('{"op": 99, "d": {}}')
    client.transport.push(7, {"requestId": "nobody-asked", "requestStatus": {"result": True, "code": 100}})
    client.transport.push(5, {"eventType": "After", "eventIntent": 1})

    assert await wait_for(lambda: len(seen) == 1)
    assert seen[0].event_type == "After"
    assert client.is_identified()
    await client.close()


@pytest.mark.asyncio
async def test_request_while_disconnected_fails_fast(make_client):
    client = make_client(host=None, port=None)

    with pytest.raises(TransportNotOpenError):
        await client.send_request("GetVersion")
    with pytest.raises(TransportNotOpenError):
        await client.send_batch_request([("GetVersion", None)])
    with pytest.raises(TransportNotOpenError):
        await client.reidentify(EventSubscription.NONE)

    assert client._correlator.pending_count == 0


@pytest.mark.asyncio
async def test_reconnect_reruns_handshake(make_client):
    client = make_client(reconnect_delay=0.05)
    await client.connect()
    await client.wait_for_initialization()
    first_ready = client._ready

    client.transport.auto_identify = False
    client.transport.drop()

    assert await wait_for(lambda: client.state is ConnectionState.RECONNECTING)
    assert client.is_identified() is False
    assert client.is_connected() is False
    assert client._ready is not first_ready

    # Reconnected and greeted, but not identified until a fresh Identified arrives
    await client.transport.wait_sent(1, count=2)
    assert len(client.transport.opened_urls) == 2
    assert client.is_connected() is True
    assert client.is_identified() is False

    client.transport.push(2, {"negotiatedRpcVersion": 1})
    await asyncio.wait_for(client.wait_for_initialization(), 1.0)
    assert client.is_identified()
    await client.close()


@pytest.mark.asyncio
async def test_waiter_survives_reconnect(make_client):
    client = make_client(reconnect_delay=0.02)
    client.transport.auto_identify = False
    await client.connect()

    waiter = asyncio.create_task(client.wait_for_initialization())
    await client.transport.wait_sent(1)
    client.transport.drop()
    await client.transport.wait_sent(1, count=2)
    assert not waiter.done()

    client.transport.push(2, {"negotiatedRpcVersion": 1})
    await asyncio.wait_for(waiter, 1.0)
    await client.close()


@pytest.mark.asyncio
async def test_reconnect_retries_refused_connections(make_client):
    client = make_client(reconnect_delay=0.01)
    client.transport.refuse = 3

    await asyncio.wait_for(client.connect(), 1.0)
    await asyncio.wait_for(client.wait_for_initialization(), 1.0)

    assert len(client.transport.opened_urls) == 4
    assert isinstance(client.last_error, ConnectionRefusedError)
    await client.close()


@pytest.mark.asyncio
async def test_pending_requests_rejected_on_disconnect(make_client):
    client = make_client(reconnect_delay=0.05)
    await client.connect()
    await client.wait_for_initialization()

    task = asyncio.create_task(client.send_request("GetStats"))
    await client.transport.wait_sent(6)
    client.transport.drop()

    with pytest.raises(ConnectionLostError):
        await asyncio.wait_for(task, 1.0)
    assert client._correlator.pending_count == 0
    await client.close()


@pytest.mark.asyncio
async def test_no_auto_reconnect_fails_connect(make_client):
    client = make_client(auto_reconnect=False)
    client.transport.refuse = 1

    with pytest.raises(ConnectionFailedError):
        await client.connect()
    with pytest.raises(ConnectionFailedError):
        await client.wait_for_initialization()
    assert client.state is ConnectionState.DISCONNECTED
    assert len(client.transport.opened_urls) == 1


@pytest.mark.asyncio
async def test_no_auto_reconnect_after_drop_releases_waiters(make_client):
    client = make_client(auto_reconnect=False)
    client.transport.auto_identify = False
    await client.connect()

    waiter = asyncio.create_task(client.wait_for_initialization())
    await client.transport.wait_sent(1)
    client.transport.drop()

    with pytest.raises(ConnectionFailedError):
        await asyncio.wait_for(waiter, 1.0)
    await asyncio.sleep(0.05)
    assert len(client.transport.opened_urls) == 1


@pytest.mark.asyncio
async def test_unexpected_open_error_fails_connect(make_client):
    client = make_client()
    client.transport.open_error = ValueError("Port out of range 0-65535")

    with pytest.raises(ConnectionFailedError) as excinfo:
        await asyncio.wait_for(client.connect(), 1.0)
    assert isinstance(excinfo.value.__cause__, ValueError)
    with pytest.raises(ConnectionFailedError):
        await asyncio.wait_for(client.wait_for_initialization(), 1.0)

    # auto-reconnect is on, but the loop does not retry such errors
    await asyncio.sleep(0.05)
    assert len(client.transport.opened_urls) == 1
    assert client.state is ConnectionState.DISCONNECTED
    assert isinstance(client.last_error, ValueError)
    await client.close()


@pytest.mark.asyncio
async def test_unexpected_receive_error_releases_waiters(make_client):
    client = make_client()
    client.transport.auto_identify = False

    async def broken_receive():
        raise RuntimeError("boom")

    client.transport.receive_forever = broken_receive
    await client.connect()

    with pytest.raises(ConnectionFailedError):
        await asyncio.wait_for(client.wait_for_initialization(), 1.0)
    assert client.is_connected() is False
    await client.close()


@pytest.mark.parametrize("port", [0, 70000, -1])
def test_invalid_port_is_rejected(make_client, port):
    with pytest.raises(ValueError):
        make_client(port=port)


@pytest.mark.asyncio
async def test_redirect_to_invalid_port_keeps_session(make_client):
    client = make_client()
    await client.connect()
    await client.wait_for_initialization()

    with pytest.raises(ValueError):
        await client.redirect("otherhost", 70000)
    assert client.is_identified()
    assert client.url == "ws://localhost:4455"
    await client.close()


@pytest.mark.asyncio
async def test_close_is_idempotent(make_client):
    never_connected = make_client(host=None, port=None)
    await never_connected.close()
    await never_connected.close()

    client = make_client(password="pw")
    client.add_event_listener(None, lambda e: None)
    await client.connect()
    await client.wait_for_initialization()

    await client.close()
    await client.close()

    assert client.is_connected() is False
    assert client.is_identified() is False
    assert client.state is ConnectionState.DISCONNECTED
    assert client.host is None and client.port is None
    assert len(client._events) == 0
    # Closed clients behave like endpoint-less ones
    await asyncio.wait_for(client.wait_for_initialization(), 0.1)


@pytest.mark.asyncio
async def test_close_during_backoff_cancels_reconnect(make_client):
    client = make_client(reconnect_delay=0.1)
    await client.connect()
    await client.wait_for_initialization()

    client.transport.drop()
    assert await wait_for(lambda: client.state is ConnectionState.RECONNECTING)
    await client.close()
    await asyncio.sleep(0.2)

    assert len(client.transport.opened_urls) == 1
    assert client.state is ConnectionState.DISCONNECTED


@pytest.mark.asyncio
async def test_close_while_connecting_aborts_connect(make_client):
    client = make_client(reconnect_delay=0.05)
    client.transport.refuse = 100

    connecting = asyncio.create_task(client.connect())
    assert await wait_for(lambda: len(client.transport.opened_urls) >= 1)
    await client.close()

    with pytest.raises(ConnectionFailedError):
        await asyncio.wait_for(connecting, 1.0)


@pytest.mark.asyncio
async def test_close_rejects_pending_requests(make_client):
    client = make_client()
    await client.connect()
    await client.wait_for_initialization()

    task = asyncio.create_task(client.send_request("GetStats"))
    await client.transport.wait_sent(6)
    await client.close()

    with pytest.raises(ConnectionLostError):
        await asyncio.wait_for(task, 1.0)


@pytest.mark.asyncio
async def test_redirect_switches_endpoint_and_forgets_listeners(make_client):
    client = make_client(password="old")
    client.add_event_listener(None, lambda e: None)
    await client.connect()
    await client.wait_for_initialization()
    transport = client.transport

    transport.hello = {"rpcVersion": 1, "authentication": {"challenge": "C2", "salt": "S2"}}
    await client.redirect("obs.local", 4466, "new")
    await asyncio.wait_for(client.wait_for_initialization(), 1.0)

    assert client.transport is transport
    assert transport.opened_urls == ["ws://localhost:4455", "ws://obs.local:4466"]
    assert transport.sent_ops(1)[-1]["authentication"] == generate_authentication("new", "C2", "S2")
    assert len(client._events) == 0
    await client.close()


@pytest.mark.asyncio
async def test_reidentify_updates_subscriptions(make_client):
    client = make_client(reconnect_delay=0.01)
    await client.connect()
    await client.wait_for_initialization()

    await client.reidentify(EventSubscription.INPUT_VOLUME_METERS)
    [reidentify] = client.transport.sent_ops(3)
    assert reidentify == {"eventSubscriptions": 1 << 16}

    # The new mask is used when the session identifies again after a reconnect
    client.transport.drop()
    identifies = await client.transport.wait_sent(1, count=2)
    assert identifies[-1]["eventSubscriptions"] == 1 << 16
    await client.close()


@pytest.mark.asyncio
async def test_async_context_manager(make_client):
    async with make_client() as client:
        assert client.is_identified()
    assert client.is_connected() is False
