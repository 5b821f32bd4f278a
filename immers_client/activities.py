"""Low-level client-to-server ActivityPub API.

Activities talks to the user's home immer (and optionally the local immer)
with the user's bearer token. Objects on any other origin are fetched
through the home immer's object proxy so the token never leaves the trust
boundary.
"""
import json
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

import requests

from .auth_config import JSONLD_MIME, PUBLIC_ADDRESS, REQUEST_TIMEOUT
from .data_models import Privacy
from .errors import FetchError, InvalidAddress, PostError, ProxyUnavailable, ImmersError
from .log import get_logger
from .utils import object_id, url_origin

logger = get_logger("activities")

# (filename, content, mime) as accepted by requests' multipart encoder
UploadFile = Union[Tuple[str, Any, str], Tuple[str, Any], Any]

@dataclass
class CollectionCursor:
    """Position in a paginated collection.

    Not started until the root has been fetched; exhausted once a page
    arrives without a `next` link.
    """
    started: bool = False
    next_page: Optional[str] = None
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @property
    def exhausted(self) -> bool:
        return self.started and not self.next_page


class Activities:
    def __init__(
        self,
        actor: Dict[str, Any],
        home_immer: str,
        place: Optional[Dict[str, Any]] = None,
        token: Optional[str] = None,
        local_immer: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: Optional[float] = REQUEST_TIMEOUT,
    ):
        self.actor = actor
        self.home_immer = home_immer
        self.place = place
        self.local_immer = local_immer
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Accept": JSONLD_MIME})
        self.token = None
        if token:
            self.set_token(token)
        self._cursors = {"inbox": CollectionCursor(), "outbox": CollectionCursor()}

    # --- helpers ---
    def set_token(self, token: str) -> None:
        self.token = token
        self.session.headers.update({"Authorization": f"Bearer {self.token}"})

    def trusted_iri(self, iri: Optional[str]) -> bool:
        if not iri:
            return False
        origin = url_origin(iri)
        if origin is None:
            return False
        trusted = [url_origin(o) for o in (self.home_immer, self.local_immer) if o]
        return origin in trusted

    @property
    def endpoints(self) -> Dict[str, Any]:
        return self.actor.get("endpoints") or {}

    def get_object(self, iri: str) -> Dict[str, Any]:
        if self.trusted_iri(iri):
            resp = self.session.get(iri, timeout=self.timeout)
        elif self.endpoints.get("proxyUrl"):
            resp = self.session.post(self.endpoints["proxyUrl"], data={"id": iri}, timeout=self.timeout)
        else:
            raise ProxyUnavailable("Home immer does not support object fetch proxy")
        if not resp.ok:
            raise FetchError(resp.status_code, resp.text)
        return resp.json()

    def post_activity(self, activity: Dict[str, Any]) -> Optional[str]:
        """POST to the user's outbox; returns the new activity's IRI."""
        outbox = self.actor.get("outbox")
        if not self.trusted_iri(outbox):
            raise InvalidAddress("Invalid outbox address")
        resp = self.session.post(
            outbox,
            data=json.dumps(activity),
            headers={"Content-Type": JSONLD_MIME},
            timeout=self.timeout,
        )
        if not resp.ok:
            raise PostError(resp.status_code, resp.text)
        return resp.headers.get("Location")

    def post_media(self, activity: Dict[str, Any], file: UploadFile, icon: Optional[UploadFile] = None) -> Optional[str]:
        """Upload a file (and optional preview icon) with the activity describing it."""
        endpoint = self.endpoints.get("uploadMedia")
        if not self.trusted_iri(endpoint):
            raise InvalidAddress("Invalid media upload address")
        files = {"file": file}
        if icon is not None:
            files["icon"] = icon
        resp = self.session.post(
            endpoint,
            data={"object": json.dumps(activity)},
            files=files,
            timeout=self.timeout,
        )
        if not resp.ok:
            raise PostError(resp.status_code, resp.text)
        return resp.headers.get("Location")

    def _first_page(self, col: Dict[str, Any]) -> Dict[str, Any]:
        # summary-only collections link to their first page
        if col.get("orderedItems") or not col.get("first"):
            return col
        first = col["first"]
        if isinstance(first, dict) and "orderedItems" in first:
            return first
        return self.get_object(object_id(first))

    # --- collection fetchers ---
    def _page(self, name: str) -> Dict[str, Any]:
        cursor = self._cursors[name]
        with cursor.lock:
            if cursor.exhausted:
                return {"type": "OrderedCollectionPage", "orderedItems": []}
            if not cursor.started:
                col = self._first_page(self.get_object(self.actor[name]))
                cursor.started = True
            else:
                col = self.get_object(cursor.next_page)
            cursor.next_page = object_id(col.get("next"))
            return col

    def inbox(self) -> Dict[str, Any]:
        return self._page("inbox")

    def outbox(self) -> Dict[str, Any]:
        return self._page("outbox")

    def friends(self) -> Dict[str, Any]:
        friends_endpoint = self.endpoints.get("friends") or f"{self.actor['id']}/friends"
        return self.get_object(friends_endpoint)

    def block_list(self) -> List[str]:
        """IRIs of every blocked user; fetch failures yield what was gathered."""
        blocked: List[Any] = []
        # use blocklist IRI if specified, fallback to immers default
        streams = self.actor.get("streams") or {}
        blocked_iri = streams.get("blocked") or f"{self.home_immer}/blocked/{self.actor.get('preferredUsername')}"
        try:
            col = self._first_page(self.get_object(blocked_iri))
            items = col.get("orderedItems") or []
            blocked.extend(items)
            # fetch entire collection
            while items and col.get("next"):
                col = self.get_object(object_id(col["next"]))
                items = col.get("orderedItems") or []
                blocked.extend(items)
        except (ImmersError, requests.RequestException) as e:
            logger.warning("Unable to fetch blocklist: %s", e)
        return [object_id(b) for b in blocked]

    # --- addressing ---
    def _address(self, to: Iterable[str], audience: Optional[str]) -> List[str]:
        addressed = list(to)
        if audience in (Privacy.FRIENDS, Privacy.PUBLIC):
            addressed.append(self.actor.get("followers"))
        if audience == Privacy.PUBLIC:
            addressed.append(PUBLIC_ADDRESS)
        return addressed

    # --- activity-specific posting methods ---
    def accept(self, follow: Dict[str, Any]) -> Optional[str]:
        return self.post_activity({
            "type": "Accept",
            "actor": self.actor["id"],
            "object": follow["id"],
            "to": object_id(follow.get("actor")),
            "summary": "<span>Accepted your friend request</span>",
        })

    def add(self, obj: Union[str, Dict[str, Any]], target: str) -> Optional[str]:
        """'Add' object to the target collection"""
        return self.post_activity({
            "type": "Add",
            "actor": self.actor["id"],
            "object": object_id(obj),
            "target": target,
        })

    def remove(self, obj: Union[str, Dict[str, Any]], target: str) -> Optional[str]:
        return self.post_activity({
            "type": "Remove",
            "actor": self.actor["id"],
            "object": object_id(obj),
            "target": target,
        })

    def arrive(self, place: Optional[Dict[str, Any]] = None) -> Optional[str]:
        place = place or self.place
        return self.post_activity({
            "type": "Arrive",
            "actor": self.actor["id"],
            "target": place,
            "to": self.actor.get("followers"),
            "summary": f'<span>Arrived at <a href="{place.get("url")}">{place.get("name")}</a></span>',
        })

    def leave(self, place: Optional[Dict[str, Any]] = None) -> Optional[str]:
        place = place or self.place
        return self.post_activity({
            "type": "Leave",
            "actor": self.actor["id"],
            "target": place,
            "to": self.actor.get("followers"),
            "summary": f'<span>Left <a href="{place.get("url")}">{place.get("name")}</a></span>',
        })

    def block(self, blockee_id: str) -> Optional[str]:
        return self.post_activity({
            "type": "Block",
            "actor": self.actor["id"],
            "object": blockee_id,
        })

    def follow(self, target_id: str) -> Optional[str]:
        return self.post_activity({
            "type": "Follow",
            "actor": self.actor["id"],
            "object": target_id,
            "to": target_id,
            "summary": "<span>Sent you a friend request</span>",
        })

    def reject(self, object_iri: str, recipient_id: str) -> Optional[str]:
        return self.post_activity({
            "type": "Reject",
            "actor": self.actor["id"],
            "object": object_iri,
            "to": recipient_id,
        })

    def undo(self, activity: Dict[str, Any]) -> Optional[str]:
        undo = {
            "type": "Undo",
            "actor": self.actor["id"],
            "object": activity["id"],
        }
        if activity.get("to"):
            undo["to"] = activity["to"]
        return self.post_activity(undo)

    def create(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        """Wrap an object in a Create activity; returns the resulting activity."""
        location = self.post_activity({
            "type": "Create",
            "actor": self.actor["id"],
            "object": obj,
            "to": obj.get("to"),
        })
        return self.get_object(location)

    def delete(self, obj: Union[str, Dict[str, Any]]) -> Optional[str]:
        delete = {
            "type": "Delete",
            "actor": self.actor["id"],
            "object": object_id(obj),
        }
        if isinstance(obj, dict) and obj.get("to"):
            delete["to"] = obj["to"]
        return self.post_activity(delete)

    def update_profile(self, update: Dict[str, Any]) -> Optional[str]:
        update = dict(update, id=self.actor["id"])
        return self.post_activity({
            "type": "Update",
            "actor": self.actor["id"],
            "object": update,
            "to": self.actor.get("followers"),
        })

    def _content_object(self, obj_type: str, to: Iterable[str], audience: Optional[str], summary: Optional[str], **fields) -> Dict[str, Any]:
        obj = {
            "type": obj_type,
            "attributedTo": self.actor["id"],
            "context": self.place,
            "to": self._address(to, audience),
            **fields,
        }
        if summary:
            obj["summary"] = summary
        return obj

    def note(self, content: str, to: Iterable[str] = (), audience: Optional[str] = None, summary: Optional[str] = None) -> Optional[str]:
        return self.post_activity(self._content_object("Note", to, audience, summary, content=content))

    def _media(self, obj_type: str, media: Union[str, UploadFile], to, audience, summary) -> Optional[str]:
        if isinstance(media, str):
            # share an existing url without re-uploading
            return self.post_activity(self._content_object(obj_type, to, audience, summary, url=media))
        obj = self._content_object(obj_type, to, audience, summary)
        return self.post_media(self._wrap_create(obj), media)

    def image(self, image: Union[str, UploadFile], to: Iterable[str] = (), audience: Optional[str] = None, summary: Optional[str] = None) -> Optional[str]:
        return self._media("Image", image, to, audience, summary)

    def video(self, video: Union[str, UploadFile], to: Iterable[str] = (), audience: Optional[str] = None, summary: Optional[str] = None) -> Optional[str]:
        return self._media("Video", video, to, audience, summary)

    def model(self, name: str, glb: UploadFile, icon: Optional[UploadFile] = None, to: Iterable[str] = (), audience: Optional[str] = "direct") -> Optional[str]:
        obj = self._content_object("Model", to, audience, None, name=name)
        return self.post_media(self._wrap_create(obj), glb, icon)

    def _wrap_create(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "type": "Create",
            "actor": self.actor["id"],
            "object": obj,
            "to": obj["to"],
        }
