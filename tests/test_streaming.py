import json

import pytest
from socketio.exceptions import ConnectionError as SocketConnectionError

from immers_client.streaming import CONNECT, INBOX_UPDATE, FRIENDS_UPDATE, ChannelState, ImmersSocket

from .conftest import ACTOR_ID, HOME, FakeSio


@pytest.fixture
def sio():
    return FakeSio()


@pytest.fixture
def socket(sio):
    return ImmersSocket(HOME, "tok-123", sio=sio, auto_connect=False)


def test_connect_notifies_every_time(socket, sio):
    calls = []
    socket.on(CONNECT, lambda: calls.append("connect"))
    sio.trigger("connect")
    sio.trigger("disconnect")
    sio.trigger("connect")
    assert calls == ["connect", "connect"]
    assert socket.connected


def test_connection_id_tracks_each_connection(socket, sio):
    assert socket.connection_id() is None
    sio.trigger("connect")
    first = socket.connection_id()
    sio.trigger("disconnect")
    assert socket.connection_id() is None
    sio.trigger("connect")
    assert socket.connection_id() == first + 1


def test_keyed_listener_replaces_previous(socket, sio):
    calls = []
    socket.on(CONNECT, lambda: calls.append("first"), key="reenter")
    socket.on(CONNECT, lambda: calls.append("second"), key="reenter")
    sio.trigger("connect")
    assert calls == ["second"]

    socket.off(CONNECT, "reenter")
    assert not socket.has_listener(CONNECT, "reenter")
    sio.trigger("connect")
    assert calls == ["second"]


def test_handler_errors_do_not_stop_dispatch(socket, sio):
    calls = []

    def broken():
        raise RuntimeError("boom")

    socket.on(FRIENDS_UPDATE, broken)
    socket.on(FRIENDS_UPDATE, lambda: calls.append("ok"))
    sio.trigger(FRIENDS_UPDATE)
    assert calls == ["ok"]


def test_inbox_payload_is_parsed(socket, sio):
    received = []
    socket.on(INBOX_UPDATE, received.append)
    sio.trigger(INBOX_UPDATE, json.dumps({"type": "Create", "id": "x"}))
    sio.trigger(INBOX_UPDATE, "{broken")
    assert received == [{"type": "Create", "id": "x"}]


def test_prepare_leave_on_disconnect(socket, sio, actor):
    place = {"type": "Place", "name": "Lobby", "url": "https://game.example/lobby"}
    socket.prepare_leave_on_disconnect(actor, place)
    event, payload = sio.emitted[0]
    assert event == "entered"
    assert payload["outbox"] == f"{ACTOR_ID}/outbox"
    assert payload["authorization"] == "Bearer tok-123"
    assert payload["leave"] == {
        "type": "Leave",
        "actor": ACTOR_ID,
        "target": place,
        "to": f"{ACTOR_ID}/followers",
        "summary": "Alice left Lobby.",
    }


def test_clear_leave_only_while_connected(socket, sio):
    socket.clear_leave_on_disconnect()
    assert sio.emitted == []
    sio.trigger("connect")
    socket.clear_leave_on_disconnect()
    assert sio.emitted == [("entered", {})]


def test_connect_sends_bearer_token(socket, sio):
    socket.state = ChannelState.CONNECTING
    socket._connect()
    assert sio.connect_calls == [(HOME, {"Authorization": "Bearer tok-123"})]
    assert socket.connected


def test_connect_failure_leaves_channel_disconnected():
    sio = FakeSio(connect_error=SocketConnectionError("refused"))
    socket = ImmersSocket(HOME, "tok-123", sio=sio, auto_connect=False)
    socket.state = ChannelState.CONNECTING
    socket._connect()
    assert socket.state is ChannelState.DISCONNECTED


def test_disconnect_is_idempotent(socket, sio):
    sio.trigger("connect")
    socket.disconnect()
    socket.disconnect()
    assert sio.disconnect_calls == 1
    assert socket.state is ChannelState.DISCONNECTED
    # closed sockets do not reconnect
    socket.connect()
    assert socket.state is ChannelState.DISCONNECTED
