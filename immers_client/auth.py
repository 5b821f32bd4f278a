"""
Popup OAuth2 (implicit grant) handshake against an immers server.

The opener registers a single-shot listener on a MessageChannel, opens the
authorization page in a popup (the system browser by default) and blocks
until the token catcher forwards the grant. The opener closes the popup
itself on receipt; a popup closing itself crashes at least one browser
engine, so the catcher page never does.
"""
import enum
import sys
import threading
import webbrowser
from typing import Any, Callable, Dict, List, Optional, Protocol, Union
from urllib.parse import urlencode, urlparse

import requests

from .auth_config import (
    ALL_SCOPES,
    AUTH_MESSAGE_TYPE,
    AUTHORIZE_PATH,
    JSONLD_MIME,
    ME_PATH,
    POPUP_HEIGHT,
    POPUP_NAME,
    POPUP_WIDTH,
    REQUEST_TIMEOUT,
)
from .data_models import AuthResult
from .errors import AuthorizationError, FetchError
from .log import get_logger
from .oauth_server import TokenCatcherServer
from .utils import get_url_part

logger = get_logger("auth")

Listener = Callable[[Dict[str, Any]], None]


class AuthState(enum.Enum):
    IDLE = "idle"
    POPUP_OPENED = "popup-opened"
    AUTHORIZED = "authorized"
    DENIED = "denied"
    CLOSED = "closed"


class MessageChannel:
    """In-process stand-in for window.postMessage between popup and opener."""

    def __init__(self):
        self._listeners: List[Listener] = []
        self._lock = threading.Lock()

    def add_listener(self, listener: Listener) -> None:
        with self._lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def post_message(self, data: Dict[str, Any]) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            listener(data)


class Popup(Protocol):
    def close(self) -> None: ...


PopupOpener = Callable[[str, str, MessageChannel], Optional[Popup]]


class BrowserPopup:
    """Authorization window in the system browser.

    A browser tab cannot be closed from here, so closing the popup means
    shutting down its token catcher; the catcher page tells the user to
    return to the application.
    """

    def __init__(self, url: str, server: Optional[TokenCatcherServer] = None):
        self.url = url
        self.server = server
        self.closed = False

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self.server:
            self.server.stop()


def open_browser_popup(url: str, redirect_uri: str, channel: MessageChannel) -> Optional[BrowserPopup]:
    """Open `url` in the system browser.

    When the redirect target is a loopback url a TokenCatcherServer is
    started for it, wired to `channel`. Returns None if no browser could be
    launched (the popup was "blocked").
    """
    server = None
    if urlparse(redirect_uri).hostname in ("localhost", "127.0.0.1", "::1"):
        server = TokenCatcherServer(redirect_uri, channel.post_message)
        try:
            server.start()
        except OSError as e:
            logger.warning("Token catcher could not listen on %s: %s", redirect_uri, e)
            server = None
    try:
        opened = webbrowser.open(url, new=1)
    except webbrowser.Error:
        opened = False
    if not opened:
        if server:
            server.stop()
        return None
    return BrowserPopup(url, server)


def _stderr_alert(message: str) -> None:
    print(f"⚠️  {message}", file=sys.stderr, flush=True)


def preprocess_scopes(authorized_scopes: Union[str, List[str], None]) -> List[str]:
    """Normalize granted scopes; the wildcard "*" expands to every scope."""
    if not authorized_scopes:
        return []
    if isinstance(authorized_scopes, str):
        authorized_scopes = authorized_scopes.split(" ")
    if authorized_scopes[0] == "*":
        return list(ALL_SCOPES)
    return list(authorized_scopes)


def build_authorization_url(
    auth_origin: str,
    scope: str,
    redirect_uri: str,
    client_id: Optional[str] = None,
    handle: Optional[str] = None,
    deep_link: Optional[str] = None,
) -> str:
    params = {
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "response_type": "token",
        "scope": scope,
        "me": handle,
        "tab": deep_link,
    }
    query = urlencode({k: v for k, v in params.items() if v is not None})
    return f"{get_url_part(auth_origin, 'origin')}{AUTHORIZE_PATH}?{query}"


def token_to_actor(token: str, home_immer: str, session: Optional[requests.Session] = None) -> Dict[str, Any]:
    """Exchange an access token for the user's ActivityPub actor."""
    http = session or requests
    resp = http.get(
        f"{get_url_part(home_immer, 'origin')}{ME_PATH}",
        headers={"Accept": JSONLD_MIME, "Authorization": f"Bearer {token}"},
        timeout=REQUEST_TIMEOUT,
    )
    if not resp.ok:
        raise FetchError(resp.status_code, resp.text, f"Error fetching actor {resp.status_code} {resp.reason}")
    return resp.json()


class _PendingAuthorization:
    def __init__(self):
        self.event = threading.Event()
        self.message: Optional[Dict[str, Any]] = None
        self.cancelled = False

    def resolve(self, message: Dict[str, Any]) -> None:
        self.message = message
        self.event.set()

    def cancel(self) -> None:
        self.cancelled = True
        self.event.set()


class AuthFlow:
    """Runs one popup authorization at a time.

    request_authorization blocks until the grant arrives. There is no
    default timeout; cancel() (from another thread) is the way out of a
    flow whose popup was closed by the user.
    """

    def __init__(
        self,
        channel: Optional[MessageChannel] = None,
        popup_opener: Optional[PopupOpener] = None,
        alert: Optional[Callable[[str], None]] = None,
        session: Optional[requests.Session] = None,
    ):
        self.channel = channel or MessageChannel()
        self.open_popup = popup_opener or open_browser_popup
        self.alert = alert or _stderr_alert
        self.session = session
        self.state = AuthState.IDLE
        self._pending: Optional[_PendingAuthorization] = None
        self._lock = threading.Lock()

    def request_authorization(
        self,
        auth_origin: str,
        scope: str,
        redirect_uri: str,
        client_id: Optional[str] = None,
        handle: Optional[str] = None,
        deep_link: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> AuthResult:
        with self._lock:
            if self._pending is not None:
                raise AuthorizationError("An authorization is already in progress")
            pending = self._pending = _PendingAuthorization()

        auth_url = build_authorization_url(auth_origin, scope, redirect_uri, client_id, handle, deep_link)

        def handler(data: Dict[str, Any]) -> None:
            if not isinstance(data, dict) or data.get("type") != AUTH_MESSAGE_TYPE:
                return
            self.channel.remove_listener(handler)
            pending.resolve(data)

        # listen before opening so an immediate redirect is not missed
        self.channel.add_listener(handler)
        popup = None
        try:
            logger.debug("Opening authorization popup %s (%dx%d): %s", POPUP_NAME, POPUP_WIDTH, POPUP_HEIGHT, auth_url)
            popup = self.open_popup(auth_url, redirect_uri, self.channel)
            if popup is None:
                self.alert("Could not open login window. Please check if popup was blocked and allow it")
                raise AuthorizationError("Login popup was blocked")
            self.state = AuthState.POPUP_OPENED

            if not pending.event.wait(timeout) or pending.cancelled:
                self.state = AuthState.CLOSED
                raise AuthorizationError("Authorization was cancelled")
            # close from the opener side
            popup.close()
            popup = None

            data = pending.message or {}
            if data.get("error") or not data.get("token"):
                self.state = AuthState.DENIED
                raise AuthorizationError(data.get("error") or "Not authorized")

            token = data["token"]
            home_immer = get_url_part(data.get("homeImmer") or auth_origin, "origin")
            authorized_scopes = preprocess_scopes(data.get("authorizedScopes"))
            actor = token_to_actor(token, home_immer, self.session)
            self.state = AuthState.AUTHORIZED
            logger.debug("Authorized %s with scopes %s", actor.get("id"), authorized_scopes)
            return AuthResult(
                actor=actor,
                token=token,
                home_immer=home_immer,
                authorized_scopes=authorized_scopes,
                session_info=dict(data.get("sessionInfo") or {}),
            )
        finally:
            self.channel.remove_listener(handler)
            if popup is not None:
                popup.close()
            with self._lock:
                self._pending = None
            self.state = AuthState.IDLE

    def cancel(self) -> None:
        """Abandon the pending authorization, if any."""
        with self._lock:
            pending = self._pending
        if pending is not None:
            logger.debug("Cancelling pending authorization")
            pending.cancel()
