"""
Data models for the immers client.
These models define the view-model shapes handed to embedding applications.
Raw ActivityPub objects (actors, activities, places) stay plain dicts.
"""
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class FriendStatusType(str, Enum):
    FRIEND_ONLINE = "friend-online"
    FRIEND_OFFLINE = "friend-offline"
    REQUEST_RECEIVED = "request-received"
    REQUEST_SENT = "request-sent"
    NONE = "none"


class MessageType(str, Enum):
    CHAT = "chat"
    MEDIA = "media"
    STATUS = "status"
    OTHER = "other"


class Privacy(str, Enum):
    DIRECT = "direct"
    FRIENDS = "friends"
    PUBLIC = "public"


@dataclass(frozen=True)
class Handle:
    """Shareable identity: username plus home immer hostname."""
    username: str
    immer: str

    def __str__(self) -> str:
        return f"{self.username}[{self.immer}]"


@dataclass
class Credential:
    """Granted access token and what it is good for."""
    token: str
    home_immer: str
    authorized_scopes: List[str] = field(default_factory=list)
    session_info: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Credential":
        return cls(
            token=data["token"],
            home_immer=data["home_immer"],
            authorized_scopes=list(data.get("authorized_scopes") or []),
            session_info=dict(data.get("session_info") or {}),
        )


@dataclass
class AuthResult:
    actor: Dict[str, Any]
    token: str
    home_immer: str
    authorized_scopes: List[str]
    session_info: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Profile:
    """A user's profile, derived from their ActivityPub actor."""
    id: str
    handle: str
    home_immer: str
    display_name: Optional[str]
    username: Optional[str]
    bio: str = ""
    avatar_image: Optional[str] = None
    avatar_model: Optional[str] = None
    avatar_object: Optional[Dict[str, Any]] = None
    url: Optional[str] = None
    collections: Dict[str, str] = field(default_factory=dict)


@dataclass
class Destination:
    """Caller-facing description of a place to share presence at."""
    name: str
    url: str
    privacy: Optional[str] = None  # 'direct', 'friends' (default) or 'public'
    description: Optional[str] = None
    preview_image: Optional[str] = None
    immer: Optional[Dict[str, Any]] = None  # parent Place object


@dataclass
class FriendStatus:
    profile: Profile
    status: FriendStatusType
    is_online: bool = False
    location_name: Optional[str] = None
    location_url: Optional[str] = None
    destination: Optional[Destination] = None
    status_string: str = ""
    unsafe_status_html: str = "<span></span>"
    status_html: str = "<span></span>"
    # originating activity, needed to accept/reject/undo later
    activity: Dict[str, Any] = field(default_factory=dict, repr=False, compare=False)


@dataclass
class Message:
    id: Optional[str]
    sender: Profile
    timestamp: datetime
    type: MessageType = MessageType.OTHER
    message_html: str = ""
    unsafe_message_html: str = ""
    media_type: Optional[str] = None  # 'image' or 'video'
    url: Optional[str] = None
    destination: Optional[Destination] = None
    original_activity: Dict[str, Any] = field(default_factory=dict, repr=False, compare=False)
