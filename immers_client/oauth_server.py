"""
Token catcher: the popup side of the OAuth implicit-grant handshake.

The authorization server redirects the popup to the token catcher URL with
the grant in the fragment (`#access_token=...&issuer=...&scope=...`).
Fragments never reach an HTTP server, so the catcher page served here reads
`location.hash`, posts it back to `<path>/token`, and the handler passes it
to the opener as a structured `ImmersAuth` message.
"""
import json
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any, Callable, Dict, Optional, Tuple
from urllib.parse import parse_qsl, urlparse, urlsplit, urlunsplit

from .auth_config import AUTH_MESSAGE_TYPE
from .log import get_logger

logger = get_logger("oauth_server")

Opener = Callable[[Dict[str, Any]], None]

_CATCHER_PAGE = """<!DOCTYPE html>
<html><body style='font-family: system-ui; padding: 2em; text-align: center'>
  <h1 id="title">Completing login...</h1>
  <p id="detail"></p>
  <script>
    var fragment = window.location.hash.substring(1);
    history.replaceState(null, '', window.location.pathname + window.location.search);
    fetch('{token_path}?' + fragment, {{ method: 'POST' }})
      .then(function (res) {{ return res.json(); }})
      .then(function (body) {{
        document.getElementById('title').textContent = body.forwarded
          ? 'Login complete' : 'Login failed';
        document.getElementById('detail').textContent =
          'You can close this window and return to the application.';
      }});
  </script>
</body></html>
"""


def parse_token_fragment(fragment: str) -> Optional[Dict[str, Any]]:
    """Turn a redirect fragment into an ImmersAuth message.

    Returns None when the fragment carries neither a token nor an error.
    """
    params = dict(parse_qsl(fragment.lstrip("#"), keep_blank_values=True))
    if "access_token" in params:
        token = params.pop("access_token")
        home_immer = params.pop("issuer", None)
        scope = params.pop("scope", "")
        # other params may include: email, provider, isNewUser
        params.pop("error", None)
        return {
            "type": AUTH_MESSAGE_TYPE,
            "token": token,
            "homeImmer": home_immer,
            "authorizedScopes": scope.split(" ") if scope else [],
            "sessionInfo": params,
        }
    if "error" in params:
        return {"type": AUTH_MESSAGE_TYPE, "error": params["error"]}
    return None


def catch_token(location: str, opener: Optional[Opener] = None) -> Tuple[bool, str]:
    """Retrieve the grant from a redirect url and hand it to the opener.

    Returns (handled, location_without_fragment). `handled` is True only when
    a token was forwarded; without an opener the caller should carry on with
    normal page processing.
    """
    parts = urlsplit(location)
    message = parse_token_fragment(parts.fragment)
    if message is None:
        return False, location
    stripped = urlunsplit(parts._replace(fragment=""))
    if opener is None:
        logger.debug("catch_token: no opener; leaving grant for normal page processing")
        return False, stripped
    opener(message)
    return "token" in message, stripped


def _make_handler(callback_path: str, opener: Opener):
    """Return a handler class bound to the redirect path and opener.

    HTTPServer needs a class; this factory produces one that forwards caught
    grants through the given opener callable.
    """
    token_path = f"{callback_path.rstrip('/')}/token"

    class TokenCatcherHandler(BaseHTTPRequestHandler):
        def do_GET(self):
            path = urlparse(self.path).path
            if path != callback_path:
                self.send_response(404)
                self.end_headers()
                return
            page = _CATCHER_PAGE.format(token_path=token_path)
            self.send_response(200)
            self.send_header("Content-Type", "text/html; charset=utf-8")
            self.end_headers()
            self.wfile.write(page.encode("utf-8"))

        def do_POST(self):
            parsed = urlparse(self.path)
            if parsed.path != token_path:
                self.send_response(404)
                self.end_headers()
                return
            forwarded, _ = catch_token(f"{callback_path}#{parsed.query}", opener)
            self.send_response(200)
            self.send_header("Content-Type", "application/json")
            self.end_headers()
            self.wfile.write(json.dumps({"forwarded": forwarded}).encode("utf-8"))

        def log_message(self, format, *args):
            # suppress console logging from BaseHTTPRequestHandler
            return

    return TokenCatcherHandler


class _ReusableHTTPServer(HTTPServer):
    allow_reuse_address = True


class TokenCatcherServer:
    """Loopback HTTP server hosting the token catcher page for one flow."""

    def __init__(self, redirect_uri: str, opener: Opener):
        parsed = urlparse(redirect_uri)
        self.host = parsed.hostname or "localhost"
        # port 0 binds an ephemeral port, read back from the server after start
        self.port = parsed.port if parsed.port is not None else 80
        self.callback_path = parsed.path or "/"
        self.opener = opener
        self.server: Optional[HTTPServer] = None

    def start(self) -> None:
        self.server = _ReusableHTTPServer((self.host, self.port), _make_handler(self.callback_path, self.opener))
        self.port = self.server.server_address[1]
        thread = threading.Thread(target=self.server.serve_forever, daemon=True)
        thread.start()
        logger.debug("Token catcher listening on http://%s:%s%s", self.host, self.port, self.callback_path)

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}{self.callback_path}"

    def stop(self) -> None:
        if not self.server:
            return
        server, self.server = self.server, None
        # shutdown() waits for serve_forever to return; run it off-thread in
        # case stop is called from a request handler
        threading.Thread(target=lambda: (server.shutdown(), server.server_close()), daemon=True).start()
