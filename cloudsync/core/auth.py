"""OAuth credential sessions for the cloud store.

Tokens come from the provider's implicit grant. There is no refresh token:
"refreshing" means repeating the authorization request with ``prompt=none``.
Sessions are immutable values; the caller owns persisting them.
"""

import logging
import secrets
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any
from urllib.parse import urlencode

from ..models.config import ProviderSettings, SessionSettings
from ..models.snapshot import parse_timestamp
from .callback import (
    AuthCallbackChannel,
    AuthLauncher,
    AuthMessage,
    AuthWindow,
    BrowserLauncher,
    CallbackServer,
    HiddenLauncher,
)

logger = logging.getLogger(__name__)

# Seconds allowed on top of silent_timeout for a refresh to close its listener
LISTENER_RELEASE_GRACE = 5.0


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# -----------------------------------------------------------------------------
# Errors
# -----------------------------------------------------------------------------


class AuthError(Exception):
    """Base class for authentication failures."""


class AuthConfigError(AuthError):
    """The identity provider client id is not configured."""


class AuthPopupBlockedError(AuthError):
    """The consent view could not be opened."""


class AuthCancelledError(AuthError):
    """The user closed the consent view before completing sign in."""


class AuthProviderError(AuthError):
    """The identity provider returned an error."""


class AuthInProgressError(AuthError):
    """Another sign in or refresh is holding the callback listener."""


# -----------------------------------------------------------------------------
# Session values
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class Identity:
    """Basic profile of the signed-in account."""

    email: str | None = None
    display_name: str | None = None


@dataclass(frozen=True)
class CredentialSession:
    """An access token and when it stops working."""

    access_token: str
    expires_at: datetime
    identity: Identity = field(default_factory=Identity)

    @classmethod
    def from_message(
        cls,
        message: AuthMessage,
        now: datetime,
        fallback_identity: Identity | None = None,
    ) -> "CredentialSession":
        """Build a session from a successful callback message."""
        identity = Identity(email=message.email, display_name=message.name)
        if fallback_identity is not None and not identity.email:
            identity = fallback_identity
        return cls(
            access_token=message.access_token or "",
            expires_at=now + timedelta(seconds=message.expires_in),
            identity=identity,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for persistence."""
        return {
            "access_token": self.access_token,
            "expires_at": self.expires_at.isoformat(),
            "email": self.identity.email,
            "display_name": self.identity.display_name,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CredentialSession | None":
        """Create from a persisted dictionary; None if it is incomplete."""
        expires_at = parse_timestamp(data.get("expires_at"))
        if not data.get("access_token") or expires_at is None:
            return None
        return cls(
            access_token=data["access_token"],
            expires_at=expires_at,
            identity=Identity(email=data.get("email"), display_name=data.get("display_name")),
        )


# -----------------------------------------------------------------------------
# Session manager
# -----------------------------------------------------------------------------


class CredentialSessionManager:
    """Acquires, validates and silently renews credential sessions."""

    def __init__(
        self,
        provider: ProviderSettings | None = None,
        timing: SessionSettings | None = None,
        launcher: AuthLauncher | None = None,
        silent_launcher: AuthLauncher | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the manager.

        Args:
            provider: Identity provider settings
            timing: Validity margins, timeouts and polling intervals
            launcher: Opens the interactive consent view (browser by default)
            silent_launcher: Runs the zero-prompt request (hidden HTTP by default)
            clock: Returns the current aware UTC time
        """
        self.provider = provider or ProviderSettings()
        self.timing = timing or SessionSettings()
        self.launcher = launcher or BrowserLauncher()
        self.silent_launcher = silent_launcher or HiddenLauncher(
            self.provider.redirect_uri, timeout=self.timing.silent_timeout
        )
        self._clock = clock
        self._interactive_lock = threading.Lock()
        # Held by whichever flow has the callback listener bound
        self._listener_lock = threading.Lock()

    # -- validity -------------------------------------------------------------

    def is_valid(self, session: CredentialSession | None) -> bool:
        """True if the session has more than the safety margin left."""
        if session is None or not session.access_token:
            return False
        margin = timedelta(seconds=self.timing.validity_margin)
        return session.expires_at > self._clock() + margin

    def is_expiring_soon(self, session: CredentialSession | None) -> bool:
        """True inside the renewal window: not yet expired, but close."""
        if session is None:
            return False
        now = self._clock()
        window = timedelta(seconds=self.timing.refresh_window)
        return now < session.expires_at < now + window

    # -- authorization requests -----------------------------------------------

    def build_authorization_url(self, state: str, prompt: str, login_hint: str | None = None) -> str:
        """Build the implicit-grant authorization URL."""
        params = {
            "client_id": self.provider.client_id,
            "redirect_uri": self.provider.redirect_uri,
            "response_type": "token",
            "scope": " ".join(self.provider.scopes),
            "prompt": prompt,
            "state": state,
        }
        if login_hint:
            params["login_hint"] = login_hint
        return f"{self.provider.authorization_endpoint}?{urlencode(params)}"

    def _callback_server(self, channel: AuthCallbackChannel) -> CallbackServer:
        return CallbackServer(
            host=self.provider.redirect_host,
            port=self.provider.redirect_port,
            callback_path=self.provider.callback_path,
            channel=channel,
            userinfo_endpoint=self.provider.userinfo_endpoint,
        )

    def _await_interactive(self, channel: AuthCallbackChannel, window: AuthWindow) -> AuthMessage | None:
        """Poll for the callback message until it arrives or the view goes away."""
        deadline = self._clock() + timedelta(seconds=self.timing.interactive_timeout)
        while True:
            message = channel.wait(timeout=self.timing.poll_interval)
            if message is not None:
                return message
            if window.closed:
                logger.debug("Consent view closed before completion")
                return None
            if self._clock() >= deadline:
                logger.debug("Consent view timed out")
                return None

    def _run_interactive(self) -> AuthMessage | None:
        channel = AuthCallbackChannel(secrets.token_urlsafe(24))
        try:
            server = self._callback_server(channel)
        except OSError as e:
            raise AuthError(
                f"Could not listen for the sign in callback on port {self.provider.redirect_port}: {e}"
            ) from e

        with server:
            url = self.build_authorization_url(channel.state, prompt="select_account")
            window = self.launcher.open(url, server.relay_url)
            if window is None:
                raise AuthPopupBlockedError(
                    "Could not open the sign in window. Allow pop-ups or open a browser and retry."
                )
            try:
                return self._await_interactive(channel, window)
            finally:
                window.close()

    def authenticate_interactive(self) -> CredentialSession:
        """Sign in through the provider's consent view.

        Returns:
            A new CredentialSession

        Raises:
            AuthConfigError: No client id configured
            AuthInProgressError: Another interactive sign in is pending, or a
                silent refresh did not release the listener in time
            AuthPopupBlockedError: The consent view could not be opened
            AuthCancelledError: The view was closed before completion
            AuthProviderError: The provider returned an error
        """
        if not self.provider.client_id:
            raise AuthConfigError(
                "Google client id not configured. Set the GOOGLE_CLIENT_ID environment variable."
            )

        if not self._interactive_lock.acquire(blocking=False):
            raise AuthInProgressError("A sign in is already in progress")

        try:
            # A silent refresh gives the listener back within its own timeout
            if not self._listener_lock.acquire(timeout=self.timing.silent_timeout + LISTENER_RELEASE_GRACE):
                raise AuthInProgressError("A background session refresh is still running")
            try:
                message = self._run_interactive()
            finally:
                self._listener_lock.release()
        finally:
            self._interactive_lock.release()

        if message is None:
            logger.info("Sign in cancelled")
            raise AuthCancelledError("Authentication cancelled")
        if not message.is_success:
            raise AuthProviderError(message.error or "Authentication failed")

        session = CredentialSession.from_message(message, self._clock())
        logger.info("Signed in as %s", session.identity.email or "unknown account")
        return session

    def refresh_silently(self, session: CredentialSession) -> CredentialSession | None:
        """Try to extend a session without user interaction.

        Never raises: failures are expected here, and the old session simply
        stays in use until it expires.

        Returns:
            A new session, or None on timeout, provider error or while
            another refresh or an interactive sign in owns the listener
        """
        if not self.provider.client_id:
            return None

        if not self._listener_lock.acquire(blocking=False):
            logger.debug("Callback listener busy; skipping silent refresh")
            return None

        try:
            channel = AuthCallbackChannel(secrets.token_urlsafe(24))
            with self._callback_server(channel) as server:
                url = self.build_authorization_url(
                    channel.state, prompt="none", login_hint=session.identity.email
                )
                window = self.silent_launcher.open(url, server.relay_url)
                if window is None:
                    return None
                try:
                    message = channel.wait(timeout=self.timing.silent_timeout)
                finally:
                    window.close()
        except OSError as e:
            logger.warning("Silent refresh could not start: %s", e)
            return None
        finally:
            self._listener_lock.release()

        if message is None:
            logger.info("Silent refresh timed out")
            return None
        if not message.is_success:
            logger.info("Silent refresh rejected by provider: %s", message.error)
            return None

        return CredentialSession.from_message(message, self._clock(), fallback_identity=session.identity)


# -----------------------------------------------------------------------------
# Background monitor
# -----------------------------------------------------------------------------


class SessionMonitor:
    """Renews a session in the background before it expires.

    Checks once on start and then every ``monitor_interval`` seconds.
    """

    def __init__(
        self,
        manager: CredentialSessionManager,
        session: CredentialSession,
        on_change: Callable[[CredentialSession], None],
        interval: float | None = None,
    ) -> None:
        self.manager = manager
        self.on_change = on_change
        self.interval = interval if interval is not None else manager.timing.monitor_interval
        self._session = session
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def session(self) -> CredentialSession:
        with self._lock:
            return self._session

    def check(self) -> bool:
        """Run one renewal check. Returns True if the session was replaced."""
        current = self.session
        if not self.manager.is_expiring_soon(current):
            return False

        renewed = self.manager.refresh_silently(current)
        if renewed is None:
            return False

        with self._lock:
            self._session = renewed
        self.on_change(renewed)
        logger.info("Session renewed until %s", renewed.expires_at.isoformat())
        return True

    def _run(self) -> None:
        self.check()
        while not self._stop.wait(self.interval):
            self.check()

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="session-monitor", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=self.manager.timing.silent_timeout + 5)
            self._thread = None

    def __enter__(self) -> "SessionMonitor":
        self.start()
        return self

    def __exit__(self, *exc: Any) -> None:
        self.stop()
