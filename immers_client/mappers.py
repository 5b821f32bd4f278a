"""
Pure conversions from ActivityPub objects to the client's view models.

Nothing here touches the network. HTML that ends up in a view model goes
through a sanitizer; the default uses nh3 with img/video allowed so media
messages survive.
"""
import functools
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Union
from urllib.parse import urlparse

import nh3

from .auth_config import PUBLIC_ADDRESS
from .data_models import Destination, FriendStatus, FriendStatusType, Message, MessageType, Privacy, Profile
from .utils import html_anchor_for_place

Sanitizer = Callable[[str], str]

_TAGS = set(nh3.ALLOWED_TAGS) | {"video"}
_ATTRIBUTES = {tag: set(attrs) for tag, attrs in nh3.ALLOWED_ATTRIBUTES.items()}
_ATTRIBUTES.setdefault("img", set()).update({"class", "crossorigin"})
_ATTRIBUTES["video"] = {"class", "controls", "autoplay", "muted", "playsinline", "src", "crossorigin"}
_MEDIA_CLASS = "immers-message-media"


def sanitize_html(html: Optional[str]) -> str:
    return nh3.clean(html or "", tags=_TAGS, attributes=_ATTRIBUTES)


def url_from_property(prop: Any) -> Optional[str]:
    """Links in ActivityPub objects take a variety of forms; find the URL string."""
    if prop is None or isinstance(prop, str):
        return prop
    if isinstance(prop, list):
        return url_from_property(prop[0]) if prop else None
    if isinstance(prop, dict):
        url = prop.get("url")
        if isinstance(url, dict):
            return url.get("href")
        if url is not None:
            return url_from_property(url)
        return prop.get("href")
    return None


def profile_from_actor(actor: Union[str, Dict[str, Any]], sanitize: Sanitizer = sanitize_html) -> Profile:
    if isinstance(actor, str):
        actor = {"id": actor}
    actor_id = actor.get("id")
    username = actor.get("preferredUsername")
    home_immer = urlparse(actor_id).netloc if actor_id else ""
    collections = dict(actor.get("streams") or {})
    collections.update(inbox=actor.get("inbox"), outbox=actor.get("outbox"))
    return Profile(
        id=actor_id,
        handle=f"{username}[{home_immer}]",
        home_immer=home_immer,
        display_name=actor.get("name"),
        username=username,
        bio=sanitize(actor.get("summary") or ""),
        avatar_image=url_from_property(actor.get("icon")),
        avatar_model=url_from_property(actor.get("avatar")),
        avatar_object=actor.get("avatar"),
        url=url_from_property(actor.get("url")) or actor_id,
        collections={k: v for k, v in collections.items() if v},
    )


def destination_from_place(place: Dict[str, Any], sanitize: Sanitizer = sanitize_html) -> Destination:
    context = place.get("context") if isinstance(place.get("context"), dict) else None
    dest = Destination(
        name=place.get("name"),
        url=place.get("url"),
        preview_image=url_from_property(place.get("icon") or (context or {}).get("icon")),
    )
    audience = place.get("audience") or []
    if isinstance(audience, str):
        audience = [audience]
    if PUBLIC_ADDRESS in audience:
        dest.privacy = "public"
    if place.get("summary"):
        dest.description = sanitize(place["summary"])
    if context:
        dest.immer = context
    return dest


def place_from_destination(
    destination: Destination,
    followers: Optional[str] = None,
    local_place: Optional[Dict[str, Any]] = None,
    sanitize: Sanitizer = sanitize_html,
) -> Dict[str, Any]:
    """Form an ActivityPub Place from a Destination description."""
    place: Dict[str, Any] = {"type": "Place", "audience": [], "name": destination.name, "url": destination.url}
    privacy = destination.privacy or Privacy.FRIENDS
    if privacy == Privacy.PUBLIC:
        place["audience"].append(PUBLIC_ADDRESS)
    if followers and privacy in (Privacy.PUBLIC, Privacy.FRIENDS):
        place["audience"].append(followers)
    if destination.description:
        place["summary"] = sanitize(destination.description)
    if destination.preview_image:
        place["icon"] = destination.preview_image
    if destination.immer:
        place["context"] = destination.immer
    elif local_place:
        place["context"] = local_place
    # avoid duplicate destination history entries from empty hashes
    if place["url"] and place["url"].endswith("#"):
        place["url"] = place["url"][:-1]
    return place


def friend_status_from_activity(
    activity: Dict[str, Any],
    self_id: Optional[str] = None,
    sanitize: Sanitizer = sanitize_html,
) -> FriendStatus:
    """Extract friend status information from their most recent activity."""
    target = activity.get("target") if isinstance(activity.get("target"), dict) else None
    location_name = target.get("name") if target else None
    location_url = target.get("url") if target else None
    status = FriendStatusType.NONE
    status_string = ""
    unsafe_html = "<span></span>"
    actor = activity.get("actor")
    obj = activity.get("object")
    activity_type = (activity.get("type") or "").lower()

    if activity_type == "arrive":
        status = FriendStatusType.FRIEND_ONLINE
        status_string = f"Online at {location_name} ({location_url})"
        unsafe_html = f"<span>Online at {html_anchor_for_place(target or {})}</span>"
    elif activity_type in ("leave", "accept"):
        status = FriendStatusType.FRIEND_OFFLINE
        status_string = "Offline"
        unsafe_html = f"<span>{status_string}</span>"
    elif activity_type == "follow":
        actor_id = actor.get("id") if isinstance(actor, dict) else actor
        outgoing = self_id is not None and actor_id == self_id
        if isinstance(actor, dict) and not outgoing:
            status = FriendStatusType.REQUEST_RECEIVED
            status_string = "Sent you a friend request"
            unsafe_html = f"<span>{status_string}</span>"
        elif isinstance(obj, dict) and obj.get("id"):
            # for outgoing request, current user is the actor; we're interested in the object
            actor = obj
            status = FriendStatusType.REQUEST_SENT
            status_string = "You sent a friend request"
            unsafe_html = f"<span>{status_string}</span>"

    return FriendStatus(
        profile=profile_from_actor(actor or {}, sanitize),
        status=status,
        is_online=status is FriendStatusType.FRIEND_ONLINE,
        location_name=location_name,
        location_url=location_url,
        destination=destination_from_place(target, sanitize) if target else None,
        status_string=status_string,
        unsafe_status_html=unsafe_html,
        status_html=sanitize(unsafe_html),
        activity=activity,
    )


def friends_sorter(a: FriendStatus, b: FriendStatus) -> int:
    """Online friends first, the rest by most recent activity."""
    a_online = a.status is FriendStatusType.FRIEND_ONLINE
    b_online = b.status is FriendStatusType.FRIEND_ONLINE
    if a_online and not b_online:
        return -1
    if b_online and not a_online:
        return 1
    a_published = a.activity.get("published") or ""
    b_published = b.activity.get("published") or ""
    if a_published == b_published:
        return 0
    return -1 if a_published > b_published else 1


friends_sort_key = functools.cmp_to_key(friends_sorter)


def parse_timestamp(value: Optional[str]) -> datetime:
    if not value:
        return datetime.now(timezone.utc)
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return datetime.now(timezone.utc)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def message_from_activity(activity: Dict[str, Any], sanitize: Sanitizer = sanitize_html) -> Optional[Message]:
    """Extract a Message from an activity, or None when it has no displayable content."""
    message = Message(
        id=activity.get("id"),
        sender=profile_from_actor(activity.get("actor") or {}, sanitize),
        timestamp=parse_timestamp(activity.get("published")),
        original_activity=activity,
    )
    context = activity.get("context")
    if isinstance(context, dict) and context.get("type") == "Place":
        message.destination = destination_from_place(context, sanitize)

    obj = activity.get("object") if isinstance(activity.get("object"), dict) else {}
    unsafe_html = obj.get("content") or activity.get("content")
    activity_type = activity.get("type")

    if activity_type == "Create":
        obj_type = obj.get("type")
        if obj_type == "Note":
            message.type = MessageType.CHAT
            unsafe_html = obj.get("content")
        elif obj_type in ("Image", "Video"):
            url = url_from_property(obj.get("url"))
            message.type = MessageType.MEDIA
            message.media_type = obj_type.lower()
            message.url = url
            if obj_type == "Image":
                unsafe_html = f'<img class="{_MEDIA_CLASS}" src="{url}" crossorigin="anonymous">'
            else:
                unsafe_html = (
                    f'<video class="{_MEDIA_CLASS}" controls autoplay muted playsinline '
                    f'src="{url}" crossorigin="anonymous"></video>'
                )
    elif activity_type in ("Arrive", "Leave"):
        message.type = MessageType.STATUS
        unsafe_html = activity.get("summary")
    elif activity_type == "Follow":
        # ignore automated follow-backs
        if not activity.get("inReplyTo"):
            message.type = MessageType.STATUS
            unsafe_html = activity.get("summary") or "<span>Sent you a friend request</span>"
    elif activity_type == "Accept":
        message.type = MessageType.STATUS
        unsafe_html = activity.get("summary") or "<span>Accepted your friend request</span>"
    else:
        unsafe_html = activity.get("summary")

    if not unsafe_html:
        return None
    message.unsafe_message_html = unsafe_html
    message.message_html = sanitize(unsafe_html)
    return message
