import re
from typing import Any, Dict, Optional, Tuple
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from .data_models import Handle

# username[home.immer] or username@home.immer
_HANDLE_RE = re.compile(r"([^@\[]+)[@\[]([^\]]+)")


def parse_handle(handle: Optional[str]) -> Optional[Handle]:
    """Parse an immers handle into username and home immer hostname.

    Returns None when the string is not a valid handle.
    """
    if not handle:
        return None
    match = _HANDLE_RE.search(handle)
    if not match:
        return None
    return Handle(username=match.group(1), immer=match.group(2))


def get_url_part(url: str, part: str) -> str:
    """Return 'host' or 'origin' of a url; bare hostnames are treated as https."""
    if "://" not in url:
        url = f"https://{url}"
    parsed = urlsplit(url)
    if part == "host":
        return parsed.netloc
    if part == "origin":
        return f"{parsed.scheme}://{parsed.netloc}"
    raise ValueError(f"Unsupported url part: {part}")


def url_origin(iri: str) -> Optional[str]:
    parsed = urlsplit(iri)
    if not parsed.scheme or not parsed.netloc:
        return None
    return f"{parsed.scheme.lower()}://{parsed.netloc.lower()}"


def object_id(obj: Any) -> Optional[str]:
    """Normalize an inline object or bare IRI to its IRI."""
    if isinstance(obj, dict):
        return obj.get("id")
    return obj


def html_anchor_for_place(place: Dict[str, Any]) -> str:
    return f'<a href="{place.get("url")}">{place.get("name")}</a>'


def pop_me_hash(url: str) -> Tuple[Optional[str], str]:
    """Remove a ``me=<handle>`` param from the url fragment.

    Returns the handle (if any) and the url with the remaining fragment intact.
    """
    parts = urlsplit(url)
    params = parse_qsl(parts.fragment, keep_blank_values=True)
    handle = None
    remaining = []
    for key, value in params:
        if key == "me":
            handle = value
        else:
            remaining.append((key, value))
    if handle is None:
        return None, url
    fragment = urlencode(remaining)
    # a bare hash key (e.g. "#room") must not grow a trailing '='
    fragment = re.sub(r"=(&|$)", r"\1", fragment)
    return handle, urlunsplit(parts._replace(fragment=fragment))


def add_me_hash(href: str, handle: str) -> str:
    """Inject the user's handle into a link so the next immer can pre-fill it."""
    parts = urlsplit(href)
    params = [(k, v) for k, v in parse_qsl(parts.fragment, keep_blank_values=True) if k != "me"]
    params.append(("me", handle))
    return urlunsplit(parts._replace(fragment=urlencode(params)))
