"""
Realtime channel to the user's home immer.

Socket.IO push connection that announces friends/blocklist changes and new
inbox activities, and lets the client register a "Leave" activity the
server will post on its behalf if the connection drops unexpectedly.
"""
import enum
import json
import threading
from typing import Any, Callable, Dict, Hashable, Optional

import socketio
from socketio.exceptions import ConnectionError as SocketConnectionError

from .log import get_logger

logger = get_logger("streaming")

CONNECT = "connect"
FRIENDS_UPDATE = "friends-update"
BLOCKED_UPDATE = "blocked-update"
INBOX_UPDATE = "inbox-update"
OUTBOX_UPDATE = "outbox-update"


class ChannelState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class ImmersSocket:
    """Socket.IO connection with keyed listener registration.

    Listeners are stored per event in a dict keyed by `key` (the handler
    itself by default), so registering the same key again replaces the
    handler instead of adding a duplicate.

    There is no delivery guarantee across an outage: CONNECT fires on every
    (re)connection and callers re-assert presence from it.
    """

    def __init__(self, home_immer: str, token: str, sio: Optional[socketio.Client] = None, auto_connect: bool = True):
        self.home_immer = home_immer
        self._token = token
        self.sio = sio or socketio.Client(reconnection=True, logger=False, engineio_logger=False)
        self.state = ChannelState.DISCONNECTED
        # bumped on every successful (re)connection
        self.generation = 0
        self._closed = False
        self._listeners: Dict[str, Dict[Hashable, Callable[..., Any]]] = {}
        self._lock = threading.Lock()
        self._setup_internal_handlers()
        if auto_connect:
            self.connect()

    @property
    def connected(self) -> bool:
        return self.state is ChannelState.CONNECTED

    def _setup_internal_handlers(self) -> None:
        self.sio.on("connect", self._on_connect)
        self.sio.on("disconnect", self._on_disconnect)
        self.sio.on("connect_error", self._on_connect_error)
        self.sio.on(FRIENDS_UPDATE, lambda *_: self._dispatch(FRIENDS_UPDATE))
        self.sio.on(BLOCKED_UPDATE, lambda *_: self._dispatch(BLOCKED_UPDATE))
        self.sio.on(INBOX_UPDATE, lambda data: self._on_activity(INBOX_UPDATE, data))
        self.sio.on(OUTBOX_UPDATE, lambda data: self._on_activity(OUTBOX_UPDATE, data))

    def connection_id(self) -> Optional[int]:
        """Generation of the live connection, or None while disconnected."""
        with self._lock:
            return self.generation if self.state is ChannelState.CONNECTED else None

    def _on_connect(self) -> None:
        with self._lock:
            self.generation += 1
            self.state = ChannelState.CONNECTED
        logger.info("Socket connected to %s", self.home_immer)
        self._dispatch(CONNECT)

    def _on_disconnect(self, *args) -> None:
        self.state = ChannelState.DISCONNECTED
        logger.info("Socket disconnected from %s", self.home_immer)

    def _on_connect_error(self, data=None) -> None:
        logger.warning("Socket connection error: %s", data or "unknown")

    def _on_activity(self, event: str, data: Any) -> None:
        try:
            activity = json.loads(data) if isinstance(data, (str, bytes)) else data
        except ValueError:
            logger.warning("Discarding unparseable %s payload", event)
            return
        self._dispatch(event, activity)

    # --- lifecycle ---
    def connect(self) -> None:
        """Start connecting in the background; errors leave the channel disconnected."""
        if self._closed or self.state is not ChannelState.DISCONNECTED:
            return
        self.state = ChannelState.CONNECTING
        thread = threading.Thread(target=self._connect, daemon=True)
        thread.start()

    def _connect(self) -> None:
        try:
            self.sio.connect(
                self.home_immer,
                headers={"Authorization": f"Bearer {self._token}"},
                retry=True,
            )
        except SocketConnectionError as e:
            logger.warning("Unable to connect socket to %s: %s", self.home_immer, e)
            if self.state is ChannelState.CONNECTING:
                self.state = ChannelState.DISCONNECTED
            return
        if self._closed:
            # disconnect() ran while we were still connecting
            self.sio.disconnect()

    def disconnect(self) -> None:
        """Terminate the socket connection. Safe to call repeatedly."""
        self._closed = True
        if self.state is not ChannelState.DISCONNECTED:
            try:
                self.sio.disconnect()
            except Exception as e:
                logger.warning("Error during socket disconnect: %s", e)
        self.state = ChannelState.DISCONNECTED

    # --- listeners ---
    def on(self, event: str, handler: Callable[..., Any], key: Optional[Hashable] = None) -> None:
        with self._lock:
            self._listeners.setdefault(event, {})[key if key is not None else handler] = handler

    def off(self, event: str, key: Hashable) -> None:
        with self._lock:
            self._listeners.get(event, {}).pop(key, None)

    def has_listener(self, event: str, key: Hashable) -> bool:
        with self._lock:
            return key in self._listeners.get(event, {})

    def _dispatch(self, event: str, *args: Any) -> None:
        with self._lock:
            handlers = list(self._listeners.get(event, {}).values())
        for handler in handlers:
            try:
                handler(*args)
            except Exception:
                logger.exception("Error in %s handler", event)

    # --- deferred departure ---
    def prepare_leave_on_disconnect(self, actor: Dict[str, Any], place: Dict[str, Any]) -> None:
        """Register a Leave the server posts for us if the socket drops."""
        self.sio.emit("entered", {
            "outbox": actor.get("outbox"),
            "authorization": f"Bearer {self._token}",
            "leave": {
                "type": "Leave",
                "actor": actor.get("id"),
                "target": place,
                "to": actor.get("followers"),
                "summary": f"{actor.get('name')} left {place.get('name')}.",
            },
        })

    def clear_leave_on_disconnect(self) -> None:
        if self.connected:
            self.sio.emit("entered", {})
