import json

import keyring
import pytest
from keyring.errors import KeyringError

from immers_client.auth import AuthFlow
from immers_client.auth_config import ALL_SCOPES, PUBLIC_ADDRESS
from immers_client.auth_storage import SessionStore
from immers_client.client import ImmersClient, SessionState
from immers_client.data_models import Destination, FriendStatusType, MessageType
from immers_client.errors import LoginRequired, PostError, ValidationError
from immers_client.streaming import CONNECT, INBOX_UPDATE, OUTBOX_UPDATE, FRIENDS_UPDATE

from .conftest import ACTOR_ID, HOME, FakePopupOpener, FakeResponse, token_message

HANDLE = "alice[home.example]"
BOB_ID = "https://other.example/u/bob"
LOBBY = Destination(name="Lobby", url="https://game.example/lobby#")
OUTBOX = f"{ACTOR_ID}/outbox"


@pytest.fixture
def posted(http):
    activities = []

    def respond(url, kwargs):
        activities.append(json.loads(kwargs["data"]))
        return FakeResponse(201, headers={"Location": f"{HOME}/s/{len(activities)}"})

    http.route("POST", OUTBOX, respond)
    return activities


@pytest.fixture
def home_routes(http, actor):
    http.route("GET", f"{HOME}/auth/me", FakeResponse(200, actor))
    http.route("GET", f"{ACTOR_ID}/friends", FakeResponse(200, {"orderedItems": [
        {"type": "Follow", "id": f"{BOB_ID}/follow/1", "actor": {"id": BOB_ID, "preferredUsername": "bob"}, "object": ACTOR_ID},
    ]}))
    http.route("GET", f"{HOME}/blocked/alice", FakeResponse(200, {"orderedItems": ["https://troll.example/u/t"]}))


@pytest.fixture
def make_client(http, sockets, auth_flow):
    def make(store=None, flow=None, **kwargs):
        return ImmersClient(
            kwargs.pop("destination", LOBBY),
            store=store or SessionStore(),
            auth_flow=flow or auth_flow,
            session_factory=lambda: http,
            socket_factory=sockets,
            **kwargs,
        )
    return make


@pytest.fixture
def client(make_client, home_routes):
    client = make_client()
    client.login(handle=HANDLE)
    return client


def _socket(sockets):
    return sockets.built[-1]


def test_login_requires_valid_handle(make_client):
    client = make_client()
    with pytest.raises(ValidationError):
        client.login(handle="not a handle")
    assert client.state is SessionState.LOGGED_OUT
    assert not client.connected


def test_login(make_client, home_routes, popup_opener):
    client = make_client()
    connected = []
    seen_friends = []
    client.on("connected", lambda profile: connected.append(profile))
    client.on("friends-update", lambda friends: seen_friends.append(friends))

    assert client.login(handle=HANDLE) == "tok-123"

    assert client.connected
    assert client.state is SessionState.LOGGED_IN
    assert client.wait_until_connected(timeout=0)
    assert client.handle == HANDLE
    assert client.authorized_scopes == ALL_SCOPES
    assert connected == [client.profile]
    assert client.profile.display_name == "Alice"
    assert seen_friends[0][0].status is FriendStatusType.REQUEST_RECEIVED
    assert client.block_list() == ["https://troll.example/u/t"]
    assert "me=alice%5Bhome.example%5D" in popup_opener.popups[0].url
    # place is re-derived with the user's followers once logged in
    assert client.place["audience"] == [f"{ACTOR_ID}/followers"]
    assert client.place["url"] == "https://game.example/lobby"


def test_restore_session_yields_same_profile(make_client, home_routes):
    store = SessionStore()
    first = make_client(store=store)
    first.login(handle=HANDLE)

    second = make_client(store=store)
    assert second.restore_session() is True
    assert second.profile == first.profile


def test_restore_session_never_raises(make_client, http):
    client = make_client()
    assert client.restore_session() is False
    http.route("GET", f"{HOME}/auth/me", FakeResponse(401, text="expired"))
    assert client.login_with_token("old", "home.example", "viewProfile") is False
    assert not client.connected


def test_login_with_token_expands_wildcard(make_client, home_routes):
    client = make_client()
    assert client.login_with_token("tok-9", "home.example", "*") is True
    assert client.authorized_scopes == ALL_SCOPES
    assert client.store.credential.home_immer == HOME


def test_operations_require_login(make_client):
    client = make_client()
    with pytest.raises(LoginRequired):
        client.enter()
    with pytest.raises(LoginRequired):
        client.friends_list()


def test_enter_while_disconnected_arrives_on_connect(client, sockets, posted):
    sock = _socket(sockets)
    client.enter()
    assert posted == []

    sock.sio.trigger("connect")
    assert [a["type"] for a in posted] == ["Arrive"]
    assert posted[0]["target"]["name"] == "Lobby"
    event, payload = sock.sio.emitted[-1]
    assert event == "entered"
    assert payload["leave"]["type"] == "Leave"
    assert client.present


def test_reconnect_arrives_again_without_duplicate_handlers(client, sockets, posted):
    sock = _socket(sockets)
    sock.sio.trigger("connect")
    client.enter()
    client.enter()
    assert len(posted) == 2

    sock.sio.trigger("disconnect")
    sock.sio.trigger("connect")
    assert [a["type"] for a in posted] == ["Arrive", "Arrive", "Arrive"]


def test_enter_racing_connect_arrives_once(client, sockets, posted, monkeypatch):
    sock = _socket(sockets)
    dispatch = sock._dispatch

    def enter_then_dispatch(event, *args):
        # the app calls enter() after the channel is up but before CONNECT listeners run
        if event == CONNECT:
            client.enter()
        dispatch(event, *args)

    monkeypatch.setattr(sock, "_dispatch", enter_then_dispatch)
    sock.sio.trigger("connect")
    assert [a["type"] for a in posted] == ["Arrive"]

    monkeypatch.setattr(sock, "_dispatch", dispatch)
    sock.sio.trigger("disconnect")
    sock.sio.trigger("connect")
    assert [a["type"] for a in posted] == ["Arrive", "Arrive"]


def test_exit_stops_rearrive(client, sockets, posted):
    sock = _socket(sockets)
    sock.sio.trigger("connect")
    client.enter()
    client.exit()

    assert not sock.has_listener(CONNECT, "immers-client-reenter")
    assert not client.present
    assert [a["type"] for a in posted] == ["Arrive", "Leave"]
    assert sock.sio.emitted[-1] == ("entered", {})

    sock.sio.trigger("connect")
    assert len(posted) == 2


def test_exit_cleans_up_when_leave_fails(client, sockets, http):
    sock = _socket(sockets)
    sock.sio.trigger("connect")
    http.route("POST", OUTBOX, FakeResponse(201, headers={"Location": f"{HOME}/s/1"}))
    client.enter()
    http.route("POST", OUTBOX, FakeResponse(500, text="boom"))

    with pytest.raises(PostError):
        client.move(Destination(name="Arena", url="https://game.example/arena"))

    assert not sock.has_listener(CONNECT, "immers-client-reenter")
    assert sock.sio.emitted[-1] == ("entered", {})
    assert not client.present


def test_move_changes_place(client, sockets, posted):
    _socket(sockets).sio.trigger("connect")
    client.enter()
    client.move(Destination(name="Arena", url="https://game.example/arena", privacy="public"))
    assert [a["type"] for a in posted] == ["Arrive", "Leave", "Arrive"]
    assert posted[1]["target"]["name"] == "Lobby"
    assert posted[2]["target"]["name"] == "Arena"
    assert PUBLIC_ADDRESS in posted[2]["target"]["audience"]


def test_enter_without_location_scope_is_noop(make_client, home_routes, sockets, posted):
    client = make_client()
    client.login_with_token("tok", HOME, "viewProfile viewFriends")
    sock = _socket(sockets)
    sock.sio.trigger("connect")
    client.enter()
    client.exit()
    assert posted == []
    assert not sock.has_listener(CONNECT, "immers-client-reenter")


def test_channel_notifications_are_republished(client, sockets):
    sock = _socket(sockets)
    messages, profiles, seen_friends = [], [], []
    client.on("new-message", lambda message: messages.append(message))
    client.on("profile-update", lambda profile: profiles.append(profile))
    client.on("friends-update", lambda friends: seen_friends.append(friends))

    sock.sio.trigger(INBOX_UPDATE, json.dumps({
        "type": "Create",
        "actor": {"id": BOB_ID, "preferredUsername": "bob"},
        "object": {"type": "Note", "content": "<p>hey</p>"},
    }))
    sock.sio.trigger(INBOX_UPDATE, json.dumps({"type": "Like", "actor": BOB_ID}))
    sock.sio.trigger(OUTBOX_UPDATE, json.dumps({
        "type": "Update",
        "object": dict(client.activities.actor, name="Alicia"),
    }))
    sock.sio.trigger(FRIENDS_UPDATE)

    assert len(messages) == 1
    assert messages[0].type is MessageType.CHAT
    assert profiles[0].display_name == "Alicia"
    assert client.profile.display_name == "Alicia"
    assert len(seen_friends) == 1


def test_disconnect_keeps_credential(client, sockets):
    sock = _socket(sockets)
    sock.sio.trigger("connect")
    events = []
    client.on("disconnected", lambda: events.append("disconnected"))
    client.disconnect()
    assert events == ["disconnected"]
    assert not client.connected
    assert client.profile is None and client.activities is None
    assert sock.state.value == "disconnected"
    assert client.store.credential is not None


def test_login_survives_keyring_failure(make_client, home_routes, sockets, memory_keyring, monkeypatch):
    def refuse(service, key, value):
        raise KeyringError("no backend")

    monkeypatch.setattr(keyring, "set_password", refuse)
    client = make_client(store=SessionStore(persist=True))
    connected = []
    client.on("connected", lambda profile: connected.append(profile))

    assert client.login_with_token("tok-9", "home.example", "*") is True
    assert client.connected
    assert client.state is SessionState.LOGGED_IN
    assert connected == [client.profile]
    assert client.handle == HANDLE

    client.logout()
    assert not client.connected
    assert not _socket(sockets).connected


def test_login_rejects_unknown_role(make_client, popup_opener):
    client = make_client()
    with pytest.raises(ValidationError):
        client.login(requested_role="admin", handle=HANDLE)
    assert popup_opener.popups == []
    assert client.state is SessionState.LOGGED_OUT


def test_logout_clears_identity(client):
    client.logout()
    assert client.store.credential is None
    assert client.handle is None
    assert not client.connected


def test_add_friend_accepts_pending_request(client, posted):
    client.add_friend(BOB_ID)
    assert posted[0]["type"] == "Accept"
    assert posted[0]["object"] == f"{BOB_ID}/follow/1"


def test_add_friend_follows_stranger(client, posted):
    client.add_friend("https://third.example/u/carol")
    assert posted[0]["type"] == "Follow"
    assert posted[0]["to"] == "https://third.example/u/carol"


def test_remove_friend_rejects_pending_request(client, posted):
    client.remove_friend(BOB_ID)
    assert posted[0]["type"] == "Reject"
    assert posted[0]["object"] == f"{BOB_ID}/follow/1"


def test_unblock_requires_blocked_user(client, posted):
    with pytest.raises(ValidationError):
        client.unblock_user(BOB_ID)
    client.unblock_user("https://troll.example/u/t")
    assert posted[0]["type"] == "Undo"
    assert posted[0]["object"] == "https://troll.example/u/t"


def test_send_chat_message_is_sanitized(client, posted):
    client.send_chat_message("<b>hi</b><script>x()</script>", "friends", [BOB_ID])
    assert posted[0]["content"] == "<b>hi</b>"
    assert posted[0]["to"] == [BOB_ID, f"{ACTOR_ID}/followers"]


def test_delete_message(client, posted):
    client.delete_message({"id": f"{HOME}/s/7", "type": "Create", "object": {"id": f"{HOME}/o/7", "to": [BOB_ID]}})
    client.delete_message({"id": f"{HOME}/s/8", "type": "Arrive"})
    assert [a["type"] for a in posted] == ["Delete", "Undo"]
    assert posted[0]["object"] == f"{HOME}/o/7"
    with pytest.raises(ValidationError):
        client.delete_message({"id": f"{HOME}/s/9", "type": "Follow"})


def test_use_avatar(client, posted):
    avatar = {"id": f"{HOME}/o/avatar", "type": "Model", "url": "https://cdn.example/a.glb", "icon": "https://cdn.example/a.png"}
    client.use_avatar({"type": "Create", "object": avatar})
    assert posted[0]["type"] == "Update"
    assert posted[0]["object"]["avatar"] == avatar
    assert posted[0]["object"]["icon"] == "https://cdn.example/a.png"
    with pytest.raises(ValidationError):
        client.use_avatar({"id": f"{HOME}/o/broken", "type": "Model"})


def test_add_avatar_targets_avatar_collection(client, posted):
    client.add_avatar(f"{HOME}/o/avatar")
    assert posted[0] == {
        "type": "Add",
        "actor": ACTOR_ID,
        "object": f"{HOME}/o/avatar",
        "target": f"{ACTOR_ID}/avatars",
    }


def test_update_profile_info(client, posted):
    assert client.update_profile_info() is None
    client.update_profile_info(display_name="Alicia", bio="hi")
    assert posted[0]["object"] == {"name": "Alicia", "summary": "hi", "id": ACTOR_ID}


def test_feed_merges_inbox_and_outbox(client, http):
    http.route("GET", f"{ACTOR_ID}/inbox", FakeResponse(200, {"orderedItems": [
        {"type": "Arrive", "actor": BOB_ID, "summary": "<span>Arrived</span>", "published": "2022-01-01T00:00:00Z"},
    ]}))
    http.route("GET", f"{ACTOR_ID}/outbox", FakeResponse(200, {"orderedItems": [
        {"type": "Create", "actor": ACTOR_ID, "object": {"type": "Note", "content": "hi"}, "published": "2022-02-01T00:00:00Z"},
        {"type": "Like", "actor": ACTOR_ID},
    ]}))
    feed = client.feed()
    assert [m.type for m in feed] == [MessageType.CHAT, MessageType.STATUS]


def test_resolve_profile_iri_via_webfinger(make_client, http):
    client = make_client()
    finger = "https://other.example/.well-known/webfinger?resource=acct:bob@other.example"
    http.route("GET", finger, FakeResponse(200, {"links": [
        {"rel": "http://webfinger.net/rel/profile-page", "href": "https://other.example/bob"},
        {"rel": "self", "href": BOB_ID},
    ]}))
    assert client.resolve_profile_iri("bob[other.example]") == BOB_ID
    assert client.resolve_profile_iri("bob[other.example]") == BOB_ID
    assert len(http.calls_to("GET", finger)) == 1
    assert client.resolve_profile_iri("nobody") is None


def test_get_node_info_prefers_newest_schema(make_client, http):
    client = make_client()
    http.route("GET", "https://other.example/.well-known/nodeinfo", FakeResponse(200, {"links": [
        {"rel": "http://nodeinfo.diaspora.software/ns/schema/2.0", "href": "https://other.example/nodeinfo/2.0"},
        {"rel": "http://nodeinfo.diaspora.software/ns/schema/2.1", "href": "https://other.example/nodeinfo/2.1"},
    ]}))
    http.route("GET", "https://other.example/nodeinfo/2.1", FakeResponse(200, {"version": "2.1"}))
    assert client.get_node_info("bob@other.example") == {"version": "2.1"}
    assert client.get_node_info("nobody") is None


def test_discovery_failure_yields_none(make_client):
    client = make_client()
    assert client.get_profile("bob[other.example]") is None


def test_local_immer_login_uses_local_place(http, sockets):
    local_place = {"type": "Place", "id": "https://local.example/o/immer", "name": "Local"}
    http.route("GET", "https://local.example/o/immer", FakeResponse(200, local_place))
    opener = FakePopupOpener([token_message()])
    http.route("GET", f"{HOME}/auth/me", FakeResponse(200, {"id": ACTOR_ID, "preferredUsername": "alice"}))
    client = ImmersClient(
        LOBBY,
        local_immer="local.example",
        store=SessionStore(),
        auth_flow=AuthFlow(popup_opener=opener, session=http),
        session_factory=lambda: http,
        socket_factory=sockets,
    )
    assert client.place["context"] == local_place

    client.login(registration=True)
    url = opener.popups[0].url
    assert url.startswith("https://local.example/auth/authorize?")
    assert "client_id=https%3A%2F%2Flocal.example%2Fo%2Fimmer" in url
    assert "tab=Register" in url
    # grant issued by the user's own home immer
    assert client.store.credential.home_immer == HOME


def test_page_url_me_hash_seeds_handle(make_client):
    client = make_client(page_url="https://game.example/lobby#me=bob[other.example]")
    assert client.handle == "bob[other.example]"
    assert client.page_url == "https://game.example/lobby"


def test_immer_link(client):
    assert client.immer_link("https://next.example/") == "https://next.example/#me=alice%5Bhome.example%5D"
