"""Client for Immers: decentralized profiles, presence and social for the immersive web."""
from .activities import Activities
from .auth import AuthFlow, MessageChannel, preprocess_scopes, token_to_actor
from .auth_storage import SessionStore
from .client import ImmersClient, SessionState
from .data_models import (
    AuthResult,
    Credential,
    Destination,
    FriendStatus,
    FriendStatusType,
    Handle,
    Message,
    MessageType,
    Privacy,
    Profile,
)
from .errors import (
    AuthorizationError,
    FetchError,
    ImmersError,
    InvalidAddress,
    LoginRequired,
    PostError,
    ProxyUnavailable,
    ValidationError,
)
from .oauth_server import catch_token
from .streaming import ImmersSocket
from .utils import parse_handle

__all__ = [
    "Activities",
    "AuthFlow",
    "AuthResult",
    "AuthorizationError",
    "Credential",
    "Destination",
    "FetchError",
    "FriendStatus",
    "FriendStatusType",
    "Handle",
    "ImmersClient",
    "ImmersError",
    "ImmersSocket",
    "InvalidAddress",
    "LoginRequired",
    "Message",
    "MessageChannel",
    "MessageType",
    "PostError",
    "Privacy",
    "Profile",
    "ProxyUnavailable",
    "SessionState",
    "SessionStore",
    "ValidationError",
    "catch_token",
    "parse_handle",
    "preprocess_scopes",
    "token_to_actor",
]
