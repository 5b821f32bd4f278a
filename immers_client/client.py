"""
High-level interface to Immers profile, presence and social features.

ImmersClient owns the session: it runs the login handshake, builds the
protocol client and realtime channel for the granted credential, and is the
single source of events for the embedding application:

  connected, disconnected, friends-update, blocked-update,
  new-message, profile-update

Socket notifications arrive on the socket.io client's thread. Presence
transitions (enter/exit/move) and the reconnect re-arrive handler share one
re-entrant lock.
"""
import enum
import threading
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

import requests

from . import auth_config
from .activities import Activities, UploadFile
from .auth import AuthFlow, token_to_actor, preprocess_scopes
from .auth_config import (
    JSONLD_MIME,
    LOCAL_PLACE_PATH,
    LOGOUT_PATH,
    NODEINFO_V20,
    NODEINFO_V21,
    REQUEST_TIMEOUT,
    ROLES,
    SCOPES,
)
from .auth_storage import SessionStore
from .data_models import Credential, Destination, FriendStatus, FriendStatusType, Message, Profile
from .errors import FetchError, ImmersError, LoginRequired, ValidationError
from .log import get_logger
from .mappers import (
    Sanitizer,
    friend_status_from_activity,
    friends_sort_key,
    message_from_activity,
    place_from_destination,
    profile_from_actor,
    sanitize_html,
    url_from_property,
)
from .streaming import BLOCKED_UPDATE, CONNECT, FRIENDS_UPDATE, INBOX_UPDATE, OUTBOX_UPDATE, ImmersSocket
from .utils import add_me_hash, get_url_part, parse_handle, pop_me_hash, url_origin

logger = get_logger("client")

DestinationDescription = Union[Destination, Dict[str, Any], str]
EventHandler = Callable[..., Any]

CONNECTED = "connected"
DISCONNECTED = "disconnected"
FRIENDS_UPDATED = "friends-update"
BLOCKED_UPDATED = "blocked-update"
NEW_MESSAGE = "new-message"
PROFILE_UPDATED = "profile-update"

_REENTER_KEY = "immers-client-reenter"


class SessionState(enum.Enum):
    LOGGED_OUT = "logged-out"
    AUTHORIZING = "authorizing"
    LOGGED_IN = "logged-in"


class ImmersClient:
    def __init__(
        self,
        destination: DestinationDescription,
        local_immer: Optional[str] = None,
        allow_storage: Optional[bool] = None,
        page_url: Optional[str] = None,
        store: Optional[SessionStore] = None,
        auth_flow: Optional[AuthFlow] = None,
        session_factory: Callable[[], requests.Session] = requests.Session,
        socket_factory: Callable[[str, str], ImmersSocket] = ImmersSocket,
        sanitize: Sanitizer = sanitize_html,
    ):
        """
        Args:
            destination: Destination, Place dict, or url where a Place can be fetched.
            local_immer: Host or origin of the local Immers Server, if there is one.
                Defaults to IMMERS_LOCAL_IMMER.
            allow_storage: Persist handle & credential in the system keyring for
                later restore_session(). Defaults to IMMERS_ALLOW_STORAGE.
            page_url: Url this experience was reached through; a `#me=<handle>`
                fragment pre-fills the user's handle.
        """
        local_immer = local_immer or auth_config.LOCAL_IMMER
        self.local_immer = get_url_part(local_immer, "host") if local_immer else None
        self.local_origin = get_url_part(local_immer, "origin") if local_immer else None
        self.allow_storage = auth_config.ALLOW_STORAGE if allow_storage is None else allow_storage
        self.store = store or SessionStore(persist=self.allow_storage)
        self.session_factory = session_factory
        self.http = session_factory()
        self.auth_flow = auth_flow or AuthFlow(session=self.http)
        self.socket_factory = socket_factory
        self.sanitize = sanitize

        self.activities: Optional[Activities] = None
        self.streaming: Optional[ImmersSocket] = None
        self.profile: Optional[Profile] = None
        self.place: Optional[Dict[str, Any]] = None
        self.session_info: Dict[str, Any] = {}
        self.state = SessionState.LOGGED_OUT
        self.connected = False
        self.present = False
        self._arrived_generation: Optional[int] = None

        self._presence_lock = threading.RLock()
        self._connected_event = threading.Event()
        self._listeners: Dict[str, List[EventHandler]] = {}
        self._destination: Optional[DestinationDescription] = None
        self._local_place: Optional[Dict[str, Any]] = None
        self._friends: Optional[List[FriendStatus]] = None
        self._blocked: Optional[List[str]] = None
        self._handle_iris: Dict[str, str] = {}
        self._actors: Dict[str, Dict[str, Any]] = {}
        self._node_infos: Dict[str, Dict[str, Any]] = {}

        self.page_url = page_url
        if page_url:
            me, self.page_url = pop_me_hash(page_url)
            if me:
                self.store.handle = me

        if self.local_origin:
            # some functionality enabled prior to login when local immer present
            self.activities = Activities({}, self.local_origin, None, None, self.local_origin, session=self.http)
        self.set_place(destination)

    # --- events ---
    def on(self, event: str, handler: EventHandler) -> None:
        handlers = self._listeners.setdefault(event, [])
        if handler not in handlers:
            handlers.append(handler)

    def off(self, event: str, handler: EventHandler) -> None:
        handlers = self._listeners.get(event, [])
        if handler in handlers:
            handlers.remove(handler)

    def _emit(self, event: str, **detail: Any) -> None:
        for handler in list(self._listeners.get(event, [])):
            try:
                handler(**detail)
            except Exception:
                logger.exception("Error in %s listener", event)

    def wait_until_connected(self, timeout: Optional[float] = None) -> bool:
        """Block until the user is logged in (returns False if timeout elapses)."""
        if self.connected:
            return True
        return self._connected_event.wait(timeout)

    # --- properties ---
    @property
    def handle(self) -> Optional[str]:
        """User's handle, if known. May be available before login."""
        return self.store.handle

    @property
    def authorized_scopes(self) -> List[str]:
        credential = self.store.credential
        return list(credential.authorized_scopes) if credential else []

    # --- login / logout ---
    def login(
        self,
        token_catcher_url: Optional[str] = None,
        requested_role: str = "friends",
        handle: Optional[str] = None,
        registration: bool = False,
    ) -> str:
        """Connect to the user's profile via a popup OAuth flow; returns the token.

        Without a local immer the user's handle is required to find their home immer.
        """
        if requested_role not in ROLES:
            raise ValidationError(f"Unknown role {requested_role!r}, expected one of {ROLES}")
        redirect_uri = token_catcher_url or auth_config.TOKEN_CATCHER_URL
        handle = handle or self.store.handle
        self.state = SessionState.AUTHORIZING
        try:
            if self.local_origin:
                place = self.local_immer_place_object()
                result = self.auth_flow.request_authorization(
                    self.local_origin,
                    requested_role,
                    redirect_uri,
                    client_id=place.get("id") if place else None,
                    handle=handle,
                    deep_link="Register" if registration else None,
                )
            else:
                parsed = parse_handle(handle)
                if not parsed:
                    raise ValidationError("Invalid handle")
                result = self.auth_flow.request_authorization(
                    f"https://{parsed.immer}", requested_role, redirect_uri, handle=handle
                )
        except Exception:
            self.state = SessionState.LOGGED_OUT
            raise
        credential = Credential(
            token=result.token,
            home_immer=result.home_immer,
            authorized_scopes=result.authorized_scopes,
            session_info=result.session_info,
        )
        self.store.credential = credential
        self._setup_after_login(result.actor, credential)
        return result.token

    def login_with_token(
        self,
        token: str,
        home_immer: str,
        authorized_scopes: Union[str, List[str]],
        session_info: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Initialize with an existing credential, e.g. from a service account."""
        self.store.credential = Credential(
            token=token,
            home_immer=get_url_part(home_immer, "origin"),
            authorized_scopes=preprocess_scopes(authorized_scopes),
            session_info=dict(session_info or {}),
        )
        return self.restore_session()

    def restore_session(self) -> bool:
        """Reconnect with the stored credential. Never raises."""
        credential = self.store.credential
        if not credential:
            return False
        try:
            actor = token_to_actor(credential.token, credential.home_immer, self.http)
            if actor:
                self._setup_after_login(actor, credential)
                return True
        except Exception as e:
            logger.warning("Unable to restore session: %s", e)
        return False

    def _setup_after_login(self, actor: Dict[str, Any], credential: Credential) -> None:
        profile = profile_from_actor(actor, self.sanitize)
        place = self.place
        if isinstance(self._destination, Destination):
            # audience can include followers now that we know the actor
            local_place = None if self._destination.immer else self.local_immer_place_object()
            place = place_from_destination(self._destination, actor.get("followers"), local_place, self.sanitize)
        activities = Activities(
            actor,
            credential.home_immer,
            place,
            credential.token,
            self.local_origin,
            session=self.session_factory(),
        )
        streaming = self.socket_factory(credential.home_immer, credential.token)
        scopes = credential.authorized_scopes
        if SCOPES["viewFriends"] in scopes:
            streaming.on(FRIENDS_UPDATE, self._publish_friends_update)
            streaming.on(BLOCKED_UPDATE, self._publish_blocked_update)
        if SCOPES["viewPublic"] in scopes:
            streaming.on(INBOX_UPDATE, self._publish_incoming_message)
            streaming.on(OUTBOX_UPDATE, self._handle_outbox_update)

        self.store.handle = profile.handle
        with self._presence_lock:
            previous = self.streaming
            self.profile = profile
            self.activities = activities
            self.streaming = streaming
            self.place = place
            self.session_info = dict(credential.session_info)
            self.state = SessionState.LOGGED_IN
            self.connected = True
            self.present = False
            self._arrived_generation = None
        if previous is not None:
            previous.disconnect()
        self._connected_event.set()
        logger.info("Connected as %s", profile.handle)
        self._emit(CONNECTED, profile=profile)

        if SCOPES["viewFriends"] in scopes:
            self._publish_friends_update()
            self._publish_blocked_update()

    def disconnect(self) -> None:
        """Disconnect from the user's immer, retaining credentials to reconnect."""
        with self._presence_lock:
            streaming = self.streaming
            self.streaming = None
            self.activities = None
            self.profile = None
            self.connected = False
            self.present = False
            self._arrived_generation = None
            self.state = SessionState.LOGGED_OUT
            self._connected_event.clear()
        if streaming:
            streaming.disconnect()
        self._emit(DISCONNECTED)

    def logout(self, also_logout_from_immer: bool = False) -> None:
        """Disconnect and delete any traces of user identity.

        also_logout_from_immer terminates the login session on the local immer
        too, when the user's account lives there.
        """
        users_immer = self.profile.home_immer if self.profile else None
        self.store.clear()
        self.session_info = {}
        self._friends = None
        self._blocked = None
        self._handle_iris.clear()
        self._actors.clear()
        self._node_infos.clear()
        self.disconnect()
        if also_logout_from_immer and self.local_immer and self.local_immer == users_immer:
            try:
                self.http.post(f"{self.local_origin}{LOGOUT_PATH}", timeout=REQUEST_TIMEOUT)
            except requests.RequestException as e:
                logger.warning("Error logging out from immer: %s", e)

    # --- presence ---
    def _require_login(self) -> Activities:
        if not self.connected or self.activities is None:
            raise LoginRequired("Immers login required")
        return self.activities

    def _can_share_location(self) -> bool:
        if SCOPES["postLocation"] in self.authorized_scopes:
            return True
        logger.info("Not sharing location because not authorized")
        return False

    def enter(self, destination: Optional[DestinationDescription] = None) -> None:
        """Mark the user online here and share the location with their friends.

        If the realtime channel is not connected yet, Arrive is posted on the
        next connect (and on every reconnect until exit()).
        """
        if destination is not None:
            self.set_place(destination)
        with self._presence_lock:
            activities = self._require_login()
            if not self._can_share_location():
                return
            streaming = self.streaming
            generation = streaming.connection_id()
            if generation is not None:
                activities.arrive()
                streaming.prepare_leave_on_disconnect(activities.actor, self.place)
                self._arrived_generation = generation
            # also update on future (re)connections
            streaming.on(CONNECT, self._reenter, key=_REENTER_KEY)
            self.present = True

    def _reenter(self) -> None:
        with self._presence_lock:
            # exit() may have won the race with this reconnect
            if not self.present or not self.connected:
                return
            # one Arrive per connection, enter() may already have posted it
            if self._arrived_generation == self.streaming.connection_id():
                return
            self.enter()

    def move(self, destination: DestinationDescription) -> None:
        """Update the user's current location.

        If posting Leave fails, the error propagates and enter() is not
        attempted; the user is left absent.
        """
        with self._presence_lock:
            self._require_login()
            if not self._can_share_location():
                return
            self.exit()
            self.enter(destination)

    def exit(self) -> None:
        """Mark the user as no longer online here."""
        with self._presence_lock:
            activities = self._require_login()
            if not self._can_share_location():
                return
            streaming = self.streaming
            streaming.off(CONNECT, _REENTER_KEY)
            self.present = False
            self._arrived_generation = None
            try:
                activities.leave()
            finally:
                streaming.clear_leave_on_disconnect()

    def set_place(self, destination: DestinationDescription) -> None:
        """Set the place used for presence and as context of new posts."""
        if isinstance(destination, str):
            # url of a Place object, used as-is
            resp = self.http.get(destination, headers={"Accept": JSONLD_MIME}, timeout=REQUEST_TIMEOUT)
            if not resp.ok:
                raise FetchError(resp.status_code, resp.text)
            place = resp.json()
        elif isinstance(destination, dict) and destination.get("type"):
            # fully formed Place
            place = destination
        elif isinstance(destination, (Destination, dict)):
            if isinstance(destination, dict):
                try:
                    destination = Destination(**destination)
                except TypeError as e:
                    raise ValidationError(f"Invalid destination: {e}") from e
            followers = self.activities.actor.get("followers") if self.connected and self.activities else None
            local_place = None if destination.immer else self.local_immer_place_object()
            place = place_from_destination(destination, followers, local_place, self.sanitize)
        else:
            raise ValidationError(f"Invalid destination: {destination!r}")
        self._destination = destination
        self.place = place
        if self.activities:
            self.activities.place = place

    # --- social ---
    def friends_list(self) -> List[FriendStatus]:
        """Friends with online status and location, online first then most recent."""
        activities = self._require_login()
        items = activities.friends().get("orderedItems") or []
        self_id = activities.actor.get("id")
        # don't show ex-friends in list
        statuses = [friend_status_from_activity(a, self_id, self.sanitize) for a in items if a.get("type") != "Reject"]
        self._friends = sorted(statuses, key=friends_sort_key)
        return list(self._friends)

    def feed(self) -> List[Message]:
        """A page of recent inbox and outbox activity as Messages, newest first."""
        activities = self._require_login()
        inbox = activities.inbox().get("orderedItems") or []
        outbox = activities.outbox().get("orderedItems") or []
        messages = [message_from_activity(a, self.sanitize) for a in inbox + outbox]
        return sorted((m for m in messages if m), key=lambda m: m.timestamp, reverse=True)

    def block_list(self, force_refresh: bool = False) -> List[str]:
        """Profile ids of every user this user has blocked."""
        if not force_refresh and self._blocked is not None:
            return list(self._blocked)
        activities = self._require_login()
        self._blocked = activities.block_list()
        return list(self._blocked)

    def _user_id(self, handle: str) -> str:
        if handle.startswith(("https://", "http://")):
            return handle
        iri = self.resolve_profile_iri(handle)
        if not iri:
            raise ValidationError(f"Unable to resolve profile for {handle}")
        return iri

    def _find_friend(self, user_id: str, status: FriendStatusType) -> Optional[FriendStatus]:
        for friend in self._friends or []:
            if friend.profile.id == user_id and friend.status == status:
                return friend
        return None

    def add_friend(self, handle: str) -> Optional[str]:
        """Send a friend request, or accept one already received from this user."""
        activities = self._require_login()
        user_id = self._user_id(handle)
        pending = self._find_friend(user_id, FriendStatusType.REQUEST_RECEIVED)
        if pending:
            return activities.accept(pending.activity)
        return activities.follow(user_id)

    def remove_friend(self, handle: str) -> Optional[str]:
        """Remove a friend, reject their request, or cancel ours."""
        activities = self._require_login()
        user_id = self._user_id(handle)
        pending = self._find_friend(user_id, FriendStatusType.REQUEST_RECEIVED)
        if pending:
            return activities.reject(pending.activity["id"], user_id)
        outgoing = self._find_friend(user_id, FriendStatusType.REQUEST_SENT)
        if outgoing:
            return activities.undo(outgoing.activity)
        # the server resolves the original follow when given the friend's id
        return activities.reject(user_id, user_id)

    def block_user(self, handle: str) -> Optional[str]:
        activities = self._require_login()
        return activities.block(self._user_id(handle))

    def unblock_user(self, handle: str) -> Optional[str]:
        activities = self._require_login()
        user_id = self._user_id(handle)
        # this undo formation means different things depending on the
        # relationship, so the user must really be blocked
        if user_id not in (self._blocked or []) and user_id not in self.block_list(force_refresh=True):
            raise ValidationError(f"Unable to unblock {user_id}: User not found in block list")
        return activities.undo({"id": user_id})

    def _addressees(self, to: Iterable[str]) -> List[str]:
        return [self._user_id(addressee) for addressee in to]

    def send_chat_message(self, content: str, privacy: str, to: Iterable[str] = ()) -> Optional[str]:
        """Send a text/HTML message. direct: only `to`; friends: + friends; public: + anyone with the url."""
        activities = self._require_login()
        return activities.note(self.sanitize(content), self._addressees(to), privacy)

    def send_image(self, image: Union[str, UploadFile], privacy: str, to: Iterable[str] = ()) -> Optional[str]:
        """Upload (file) or share (url) an image."""
        activities = self._require_login()
        return activities.image(image, self._addressees(to), privacy)

    def send_video(self, video: Union[str, UploadFile], privacy: str, to: Iterable[str] = ()) -> Optional[str]:
        activities = self._require_login()
        return activities.video(video, self._addressees(to), privacy)

    def send_model(
        self,
        name: str,
        glb: UploadFile,
        icon: Optional[UploadFile] = None,
        privacy: str = "direct",
        to: Iterable[str] = (),
    ) -> Optional[str]:
        """Upload a 3D model (GLB preferred), optionally sharing a post about it."""
        activities = self._require_login()
        return activities.model(name, glb, icon, self._addressees(to), privacy)

    create_avatar = send_model

    def delete_message(self, source: Union[str, Dict[str, Any]]) -> Optional[str]:
        activities = self._require_login()
        activity = activities.get_object(source) if isinstance(source, str) else source
        activity_type = (activity.get("type") or "").lower()
        if activity_type in ("arrive", "leave"):
            return activities.undo(activity)
        if activity_type == "create":
            return activities.delete(activity.get("object"))
        raise ValidationError(f"Cannot delete {activity.get('type')} activity")

    def update_profile_info(self, display_name: Optional[str] = None, bio: Optional[str] = None) -> Optional[str]:
        activities = self._require_login()
        update = {}
        if display_name:
            update["name"] = display_name
        if bio:
            update["summary"] = bio
        if not update:
            return None
        return activities.update_profile(update)

    def add_avatar(self, source: Union[str, Dict[str, Any]]) -> Optional[str]:
        """Add an existing avatar to the user's avatar collection."""
        activities = self._require_login()
        return activities.add(source, self.profile.collections.get("avatars"))

    def use_avatar(self, avatar: Union[str, Dict[str, Any]]) -> Optional[str]:
        """Set the profile avatar from a Model object, its id, or an activity containing it."""
        activities = self._require_login()
        if isinstance(avatar, str):
            avatar = activities.get_object(avatar)
        if isinstance(avatar.get("object"), dict):
            avatar = avatar["object"]
        if not url_from_property(avatar.get("url")):
            raise ValidationError("Invalid avatar")
        update = {"avatar": avatar}
        if avatar.get("icon"):
            update["icon"] = avatar["icon"]
        return activities.update_profile(update)

    def remove_avatar(self, source: Union[str, Dict[str, Any]]) -> Optional[str]:
        activities = self._require_login()
        return activities.remove(source, self.profile.collections.get("avatars"))

    # --- discovery ---
    def cors_proxy_fetch(self, url: str, headers: Optional[Dict[str, str]] = None) -> requests.Response:
        """GET a cross-domain resource.

        Prefers the local immer (directly or via its proxy), then the user's
        home immer proxy, then a plain fetch.
        """
        headers = dict(headers or {})
        if self.local_origin:
            target = url if url_origin(url) == url_origin(self.local_origin) else f"{self.local_origin}/proxy/{url}"
            return self.http.get(target, headers=headers, timeout=REQUEST_TIMEOUT)
        home_proxy = self.activities.endpoints.get("proxyUrl") if self.activities else None
        credential = self.store.credential
        if home_proxy and credential:
            try:
                # this GET proxy differs from the ActivityPub POST proxy used for objects
                resp = self.http.get(
                    f"{home_proxy}/{url}",
                    headers=dict(headers, Authorization=f"Bearer {credential.token}"),
                    timeout=REQUEST_TIMEOUT,
                )
                if not resp.ok:
                    raise FetchError(resp.status_code, resp.text)
                return resp
            except (FetchError, requests.RequestException) as e:
                logger.info("Home immer CORS proxy failed: %s", e)
        logger.warning("No local immer nor user-provided proxy available, attempting normal fetch")
        return self.http.get(url, headers=headers, timeout=REQUEST_TIMEOUT)

    def _fetch_json(self, url: str, headers: Dict[str, str]) -> Optional[Dict[str, Any]]:
        try:
            resp = self.cors_proxy_fetch(url, headers)
            if not resp.ok:
                raise FetchError(resp.status_code, resp.text)
            return resp.json()
        except (ImmersError, requests.RequestException, ValueError) as e:
            logger.error("Could not fetch %s: %s", url, e)
            return None

    def resolve_profile_iri(self, handle: str) -> Optional[str]:
        """Profile IRI for a handle via webfinger, or None if it can't be resolved."""
        if handle in self._handle_iris:
            return self._handle_iris[handle]
        parsed = parse_handle(handle)
        if not parsed:
            logger.error("Could not resolve profile: invalid handle %s", handle)
            return None
        finger = self._fetch_json(
            f"https://{parsed.immer}/.well-known/webfinger?resource=acct:{parsed.username}@{parsed.immer}",
            {"Accept": "application/json"},
        )
        links = (finger or {}).get("links") or []
        iri = next((link.get("href") for link in links if link.get("rel") == "self"), None)
        if iri:
            self._handle_iris[handle] = iri
        return iri

    def get_profile(self, handle: str) -> Optional[Profile]:
        iri = self.resolve_profile_iri(handle)
        if not iri:
            return None
        actor = self._actors.get(iri)
        if actor is None and self.connected and self.activities:
            try:
                actor = self.activities.get_object(iri)
            except (ImmersError, requests.RequestException) as e:
                logger.debug("Actor fetch through home immer failed: %s", e)
        if actor is None:
            actor = self._fetch_json(iri, {"Accept": JSONLD_MIME})
        if not actor:
            return None
        self._actors[iri] = actor
        return profile_from_actor(actor, self.sanitize)

    def get_node_info(self, handle: str) -> Optional[Dict[str, Any]]:
        parsed = parse_handle(handle)
        if not parsed:
            return None
        if parsed.immer in self._node_infos:
            return self._node_infos[parsed.immer]
        headers = {"Accept": "application/json"}
        resource = self._fetch_json(f"https://{parsed.immer}/.well-known/nodeinfo", headers)
        links = (resource or {}).get("links") or []
        url = None
        for rel in (NODEINFO_V21, NODEINFO_V20):
            url = next((link.get("href") for link in links if link.get("rel") == rel), None)
            if url:
                break
        if not url:
            return None
        info = self._fetch_json(url, headers)
        if info:
            self._node_infos[parsed.immer] = info
        return info

    def local_immer_place_object(self) -> Optional[Dict[str, Any]]:
        """The local immer's Place object, from memory or the network."""
        if not self.local_origin:
            return None
        if self._local_place is not None:
            return self._local_place
        try:
            resp = self.http.get(
                f"{self.local_origin}{LOCAL_PLACE_PATH}",
                headers={"Accept": JSONLD_MIME},
                timeout=REQUEST_TIMEOUT,
            )
            if not resp.ok:
                raise FetchError(resp.status_code, resp.text)
            self._local_place = resp.json()
        except (FetchError, requests.RequestException, ValueError) as e:
            logger.warning("Unable to fetch local immer place: %s", e)
            return None
        return self._local_place

    def immer_link(self, href: str) -> str:
        """Link to another immer carrying the user's handle so they needn't retype it."""
        if not self.profile:
            return href
        return add_me_hash(href, self.profile.handle)

    # --- channel notifications ---
    def _publish_friends_update(self) -> None:
        try:
            friends = self.friends_list()
        except (ImmersError, requests.RequestException) as e:
            logger.warning("Unable to refresh friends list: %s", e)
            return
        self._emit(FRIENDS_UPDATED, friends=friends)

    def _publish_blocked_update(self) -> None:
        try:
            blocked = self.block_list(force_refresh=True)
        except ImmersError as e:
            logger.warning("Unable to refresh block list: %s", e)
            return
        self._emit(BLOCKED_UPDATED, blocked=blocked)

    def _publish_incoming_message(self, activity: Dict[str, Any]) -> None:
        message = message_from_activity(activity, self.sanitize)
        if not message:
            # activity type was not convertible to a message
            return
        self._emit(NEW_MESSAGE, message=message)

    def _handle_outbox_update(self, activity: Dict[str, Any]) -> None:
        obj = activity.get("object")
        if activity.get("type") != "Update" or not isinstance(obj, dict) or not self.profile:
            return
        if obj.get("id") != self.profile.id:
            return
        self.profile = profile_from_actor(obj, self.sanitize)
        if self.activities:
            self.activities.actor = obj
        self._emit(PROFILE_UPDATED, profile=self.profile)
