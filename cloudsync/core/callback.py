"""OAuth redirect handling: one-shot callback channel, loopback listener, launchers.

The implicit grant returns the token in the URL fragment, which never reaches
a server. The loopback listener therefore serves a small relay page that reads
the fragment and forwards it to a same-origin relay endpoint. The relay
endpoint turns it into exactly one AUTH_SUCCESS or AUTH_ERROR message on the
waiting channel.
"""

import logging
import threading
import webbrowser
from concurrent.futures import Future, InvalidStateError
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Protocol
from urllib.parse import parse_qs, urlencode, urlsplit

import requests

logger = logging.getLogger(__name__)

AUTH_SUCCESS = "AUTH_SUCCESS"
AUTH_ERROR = "AUTH_ERROR"

RELAY_PATH = "/oauth-relay"
DEFAULT_EXPIRES_IN = 3600

RELAY_PAGE = """<!doctype html>
<html>
<head><meta charset="utf-8"><title>Completing sign in</title></head>
<body>
<p id="status">Completing sign in...</p>
<script>
  var raw = window.location.hash ? window.location.hash.substring(1)
                                  : window.location.search.substring(1);
  fetch("%(relay_path)s?" + raw, {credentials: "same-origin"})
    .then(function () {
      document.getElementById("status").textContent =
        "Sign in complete. You can close this window.";
      window.close();
    });
</script>
</body>
</html>
"""


@dataclass(frozen=True)
class AuthMessage:
    """Message relayed from the callback context to the initiator."""

    type: str
    access_token: str | None = None
    expires_in: int = DEFAULT_EXPIRES_IN
    email: str | None = None
    name: str | None = None
    error: str | None = None

    @property
    def is_success(self) -> bool:
        return self.type == AUTH_SUCCESS

    @classmethod
    def failure(cls, error: str) -> "AuthMessage":
        return cls(type=AUTH_ERROR, error=error)


class AuthCallbackChannel:
    """One-shot channel correlated by the OAuth ``state`` value.

    The first delivered message wins; later deliveries are ignored.
    """

    def __init__(self, state: str) -> None:
        self.state = state
        self._future: Future[AuthMessage] = Future()

    def deliver(self, message: AuthMessage) -> bool:
        """Deliver a message. Returns False if one was already delivered."""
        try:
            self._future.set_result(message)
        except InvalidStateError:
            logger.debug("Ignoring duplicate auth callback (%s)", message.type)
            return False
        return True

    def wait(self, timeout: float | None = None) -> AuthMessage | None:
        """Wait for the message; None if it did not arrive in time."""
        try:
            return self._future.result(timeout=timeout)
        except FutureTimeoutError:
            return None

    @property
    def delivered(self) -> bool:
        return self._future.done()


def fetch_user_info(
    access_token: str,
    userinfo_endpoint: str,
    timeout: float = 10.0,
) -> dict[str, Any]:
    """Fetch email and display name for a token. Empty dict on failure."""
    try:
        response = requests.get(
            userinfo_endpoint,
            headers={"Authorization": f"Bearer {access_token}"},
            timeout=timeout,
        )
        if response.status_code >= 400:
            logger.debug("Userinfo lookup failed with status %s", response.status_code)
            return {}
        return response.json()  # type: ignore[no-any-return]
    except (requests.RequestException, ValueError) as e:
        logger.debug("Userinfo lookup failed: %s", e)
        return {}


def message_from_params(params: dict[str, str], userinfo_endpoint: str) -> AuthMessage:
    """Turn redirect parameters into an auth message."""
    error = params.get("error")
    if error:
        return AuthMessage.failure(params.get("error_description") or error)

    access_token = params.get("access_token")
    if not access_token:
        return AuthMessage.failure("No access token received")

    try:
        expires_in = int(params.get("expires_in") or DEFAULT_EXPIRES_IN)
    except ValueError:
        expires_in = DEFAULT_EXPIRES_IN

    user_info = fetch_user_info(access_token, userinfo_endpoint)
    return AuthMessage(
        type=AUTH_SUCCESS,
        access_token=access_token,
        expires_in=expires_in,
        email=user_info.get("email"),
        name=user_info.get("name"),
    )


class _CallbackHandler(BaseHTTPRequestHandler):
    server: "CallbackServer"

    def do_GET(self) -> None:  # noqa: N802
        url = urlsplit(self.path)
        if url.path == self.server.callback_path:
            self._respond(200, RELAY_PAGE % {"relay_path": RELAY_PATH}, "text/html")
        elif url.path == RELAY_PATH:
            self._relay(url.query)
        else:
            self._respond(404, "Not found")

    def _relay(self, query: str) -> None:
        params = {key: values[0] for key, values in parse_qs(query).items()}
        channel = self.server.channel

        if params.get("state") != channel.state:
            logger.warning("Rejected auth callback with mismatched state")
            self._respond(400, "Invalid state")
            return

        message = message_from_params(params, self.server.userinfo_endpoint)
        channel.deliver(message)
        self._respond(200, "Sign in complete. You can close this window.")

    def _respond(self, status: int, body: str, content_type: str = "text/plain") -> None:
        encoded = body.encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", f"{content_type}; charset=utf-8")
        self.send_header("Content-Length", str(len(encoded)))
        self.send_header("Cache-Control", "no-store")
        self.end_headers()
        self.wfile.write(encoded)

    def log_message(self, format: str, *args: Any) -> None:
        # Request lines carry the access token; keep them out of logs
        logger.debug("callback listener: %s", args[1] if len(args) > 1 else "")


class CallbackServer(ThreadingHTTPServer):
    """Loopback HTTP listener for the OAuth redirect.

    Use as a context manager; it serves from a daemon thread until exit.
    """

    daemon_threads = True

    def __init__(
        self,
        host: str,
        port: int,
        callback_path: str,
        channel: AuthCallbackChannel,
        userinfo_endpoint: str,
    ) -> None:
        super().__init__((host, port), _CallbackHandler)
        self.callback_path = callback_path
        self.channel = channel
        self.userinfo_endpoint = userinfo_endpoint
        self._thread: threading.Thread | None = None

    @property
    def relay_url(self) -> str:
        host, port = self.server_address[:2]
        return f"http://{host}:{port}{RELAY_PATH}"

    def __enter__(self) -> "CallbackServer":
        self._thread = threading.Thread(target=self.serve_forever, name="oauth-callback", daemon=True)
        self._thread.start()
        return self

    def __exit__(self, *exc: Any) -> None:
        self.shutdown()
        self.server_close()
        if self._thread is not None:
            self._thread.join(timeout=5)


# -----------------------------------------------------------------------------
# Launchers
# -----------------------------------------------------------------------------


class AuthWindow(Protocol):
    """Handle on an opened authorization view."""

    @property
    def closed(self) -> bool: ...

    def close(self) -> None: ...


class AuthLauncher(Protocol):
    """Opens an authorization URL. Returns None if no view could be opened."""

    def open(self, url: str, relay_url: str) -> AuthWindow | None: ...


class BrowserWindow:
    """A browser tab. Its lifetime cannot be observed from here."""

    closed = False

    def close(self) -> None:
        pass


class BrowserLauncher:
    """Opens the consent page in the user's browser."""

    def open(self, url: str, relay_url: str) -> AuthWindow | None:
        try:
            opened = webbrowser.open(url, new=1)
        except webbrowser.Error as e:
            logger.debug("Browser launch failed: %s", e)
            return None
        return BrowserWindow() if opened else None


class HiddenWindow:
    """Background request standing in for a hidden iframe."""

    def __init__(self, thread: threading.Thread) -> None:
        self._thread = thread
        self._closed = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set() or not self._thread.is_alive()

    def close(self) -> None:
        self._closed.set()


class HiddenLauncher:
    """Runs a zero-prompt authorization request without any UI.

    The provider answers ``prompt=none`` with a redirect to the callback URL.
    The redirect is not followed; its fragment is forwarded to the relay
    endpoint the same way the browser relay page would.
    """

    def __init__(self, redirect_uri: str, timeout: float = 10.0) -> None:
        self.redirect_uri = redirect_uri
        self.timeout = timeout

    def open(self, url: str, relay_url: str) -> AuthWindow | None:
        thread = threading.Thread(
            target=self._run, args=(url, relay_url), name="oauth-silent", daemon=True
        )
        thread.start()
        return HiddenWindow(thread)

    def _run(self, url: str, relay_url: str) -> None:
        try:
            response = requests.get(url, allow_redirects=False, timeout=self.timeout)
            location = response.headers.get("Location", "")
            if not location.startswith(self.redirect_uri):
                logger.debug("Silent authorization did not redirect back (status %s)", response.status_code)
                return

            redirect = urlsplit(location)
            params = {key: values[0] for key, values in parse_qs(redirect.fragment or redirect.query).items()}
            requests.get(f"{relay_url}?{urlencode(params)}", timeout=self.timeout)
        except requests.RequestException as e:
            logger.debug("Silent authorization request failed: %s", e)
