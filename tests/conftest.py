import json

import keyring
import pytest
from keyring.errors import PasswordDeleteError

from immers_client.auth import AuthFlow
from immers_client.auth_config import AUTH_MESSAGE_TYPE
from immers_client.streaming import ImmersSocket

HOME = "https://home.example"
ACTOR_ID = f"{HOME}/u/alice"


class FakeResponse:
    def __init__(self, status_code=200, payload=None, headers=None, text=None):
        self.status_code = status_code
        self._payload = payload
        self.headers = headers or {}
        self.text = text if text is not None else (json.dumps(payload) if payload is not None else "")
        self.reason = "OK" if self.ok else "Error"

    @property
    def ok(self):
        return 200 <= self.status_code < 300

    def json(self):
        if self._payload is None:
            raise ValueError("no json body")
        return self._payload


class FakeSession:
    """Records requests and answers them from a (method, url) route table."""

    def __init__(self):
        self.headers = {}
        self.routes = {}
        self.calls = []

    def route(self, method, url, response):
        self.routes[(method.upper(), url)] = response

    def request(self, method, url, **kwargs):
        self.calls.append((method.upper(), url, kwargs))
        response = self.routes.get((method.upper(), url))
        if callable(response):
            response = response(url, kwargs)
        return response or FakeResponse(404, text="not found")

    def get(self, url, **kwargs):
        return self.request("GET", url, **kwargs)

    def post(self, url, **kwargs):
        return self.request("POST", url, **kwargs)

    def calls_to(self, method, url):
        return [c for c in self.calls if c[0] == method and c[1] == url]


class FakeSio:
    """Stands in for socketio.Client; trigger() simulates server events."""

    def __init__(self, connect_error=None):
        self.handlers = {}
        self.emitted = []
        self.connect_calls = []
        self.disconnect_calls = 0
        self.connect_error = connect_error

    def on(self, event, handler):
        self.handlers[event] = handler

    def emit(self, event, data=None):
        self.emitted.append((event, data))

    def connect(self, url, headers=None, retry=False):
        self.connect_calls.append((url, headers))
        if self.connect_error:
            raise self.connect_error
        self.trigger("connect")

    def disconnect(self):
        self.disconnect_calls += 1
        self.trigger("disconnect")

    def trigger(self, event, *args):
        self.handlers[event](*args)


class FakePopup:
    def __init__(self, url):
        self.url = url
        self.closed = 0

    def close(self):
        self.closed += 1


class FakePopupOpener:
    """Opens a fake popup and immediately delivers the configured messages."""

    def __init__(self, messages=None, blocked=False):
        self.messages = list(messages or [])
        self.blocked = blocked
        self.popups = []

    def __call__(self, url, redirect_uri, channel):
        if self.blocked:
            return None
        popup = FakePopup(url)
        self.popups.append(popup)
        for message in self.messages:
            channel.post_message(message)
        return popup


def token_message(token="tok-123", scopes="*", **session_info):
    return {
        "type": AUTH_MESSAGE_TYPE,
        "token": token,
        "homeImmer": HOME,
        "authorizedScopes": scopes.split(" "),
        "sessionInfo": session_info,
    }


def make_actor():
    return {
        "id": ACTOR_ID,
        "type": "Person",
        "preferredUsername": "alice",
        "name": "Alice",
        "summary": "<p>Hello<script>alert(1)</script></p>",
        "inbox": f"{ACTOR_ID}/inbox",
        "outbox": f"{ACTOR_ID}/outbox",
        "followers": f"{ACTOR_ID}/followers",
        "streams": {
            "avatars": f"{ACTOR_ID}/avatars",
            "blocked": f"{HOME}/blocked/alice",
        },
        "endpoints": {
            "proxyUrl": f"{HOME}/proxy",
            "uploadMedia": f"{HOME}/media",
            "friends": f"{ACTOR_ID}/friends",
        },
    }


@pytest.fixture
def actor():
    return make_actor()


@pytest.fixture
def http():
    return FakeSession()


@pytest.fixture
def memory_keyring(monkeypatch):
    """Replace the system keyring with a dict."""
    store = {}

    def get_password(service, key):
        return store.get((service, key))

    def set_password(service, key, value):
        store[(service, key)] = value

    def delete_password(service, key):
        if (service, key) not in store:
            raise PasswordDeleteError(key)
        del store[(service, key)]

    monkeypatch.setattr(keyring, "get_password", get_password)
    monkeypatch.setattr(keyring, "set_password", set_password)
    monkeypatch.setattr(keyring, "delete_password", delete_password)
    return store


@pytest.fixture
def sockets():
    """Socket factory producing ImmersSockets over FakeSio; keeps what it built."""
    built = []

    def factory(home_immer, token):
        sock = ImmersSocket(home_immer, token, sio=FakeSio(), auto_connect=False)
        built.append(sock)
        return sock

    factory.built = built
    return factory


@pytest.fixture
def popup_opener():
    return FakePopupOpener([token_message()])


@pytest.fixture
def auth_flow(popup_opener, http):
    return AuthFlow(popup_opener=popup_opener, alert=lambda message: None, session=http)
