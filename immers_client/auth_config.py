"""Client configuration and protocol constants"""
import os

from dotenv import load_dotenv

load_dotenv(override=False)

# OAuth endpoints (relative to an immer origin)
AUTHORIZE_PATH = "/auth/authorize"
ME_PATH = "/auth/me"
LOGOUT_PATH = "/auth/logout"
LOCAL_PLACE_PATH = "/o/immer"

# Popup handshake
AUTH_MESSAGE_TYPE = "ImmersAuth"
POPUP_NAME = "immersLoginPopup"
POPUP_WIDTH = 800
POPUP_HEIGHT = 800

# User account access roles that can be granted
SCOPES = {
    "viewProfile": "viewProfile",
    "viewPublic": "viewPublic",
    "viewFriends": "viewFriends",
    "postLocation": "postLocation",
    "viewPrivate": "viewPrivate",
    "creative": "creative",
    "addFriends": "addFriends",
    "addBlocks": "addBlocks",
    "destructive": "destructive",
}
ALL_SCOPES = list(SCOPES.values())

# Access levels that can be requested
ROLES = ["public", "friends", "modAdditive", "modFull"]

# ActivityPub
JSONLD_MIME = "application/activity+json"
PUBLIC_ADDRESS = "as:Public"
NODEINFO_V21 = "http://nodeinfo.diaspora.software/ns/schema/2.1"
NODEINFO_V20 = "http://nodeinfo.diaspora.software/ns/schema/2.0"

# Storage settings
KEYRING_SERVICE = "immers_client"
STORE_KEY = "_immers_client_store"


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str):
    raw = os.getenv(name)
    if not raw:
        return None
    try:
        return float(raw)
    except ValueError:
        return None


# Local settings
DEBUG = _env_flag("IMMERS_DEBUG")
LOCAL_IMMER = os.getenv("IMMERS_LOCAL_IMMER") or None
ALLOW_STORAGE = _env_flag("IMMERS_ALLOW_STORAGE")
TOKEN_CATCHER_URL = os.getenv("IMMERS_TOKEN_CATCHER_URL", "http://localhost:5173/callback")
# None means requests wait indefinitely; callers add their own deadline
REQUEST_TIMEOUT = _env_float("IMMERS_REQUEST_TIMEOUT")
