"""
Server-side session storage.

The browser only ever holds a signed, opaque session ID. The session
contents (pending login state, token set) live in a SessionStore on the
server, so the cookie stays small whatever the size of the tokens and the
refresh token never leaves the server.

ServerSessionMiddleware exposes the stored dict as ``request.session``, so
code written against Starlette's SessionMiddleware works unchanged.
"""

import copy
import logging
import secrets
import threading
import time
from typing import Any, Dict, Optional, Protocol, Tuple

from itsdangerous import BadSignature, TimestampSigner
from starlette.datastructures import MutableHeaders
from starlette.requests import HTTPConnection
from starlette.types import ASGIApp, Message, Receive, Scope, Send

logger = logging.getLogger(__name__)

SESSION_ID_BYTES = 32


def generate_session_id() -> str:
    return secrets.token_urlsafe(SESSION_ID_BYTES)


# =============================================================================
# Stores
# =============================================================================

class SessionStore(Protocol):
    """Backend holding session dicts keyed by session ID."""

    async def load(self, session_id: str) -> Optional[Dict[str, Any]]:
        ...

    async def save(self, session_id: str, data: Dict[str, Any], max_age: int) -> None:
        ...

    async def delete(self, session_id: str) -> None:
        ...


class InMemorySessionStore:
    """
    Process-local session store with per-entry expiry.

    Suitable for a single worker. Deployments running several workers need
    a shared backend implementing SessionStore.
    """

    def __init__(self):
        self._sessions: Dict[str, Tuple[float, Dict[str, Any]]] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    async def load(self, session_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            entry = self._sessions.get(session_id)
            if entry is None:
                return None
            expires_at, data = entry
            if expires_at <= time.time():
                del self._sessions[session_id]
                return None
            return copy.deepcopy(data)

    async def save(self, session_id: str, data: Dict[str, Any], max_age: int) -> None:
        now = time.time()
        with self._lock:
            self._purge_expired(now)
            self._sessions[session_id] = (now + max_age, copy.deepcopy(data))

    async def delete(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)

    def _purge_expired(self, now: float) -> None:
        expired = [sid for sid, (expires_at, _) in self._sessions.items() if expires_at <= now]
        for sid in expired:
            del self._sessions[sid]


# =============================================================================
# Middleware
# =============================================================================

class ServerSessionMiddleware:
    """
    ASGI middleware loading ``scope["session"]`` from a SessionStore.

    The cookie value is the session ID signed with itsdangerous. A new ID is
    issued when a token set first appears in the session, so an ID handed
    out before login is never the one that ends up authenticated.
    """

    def __init__(
        self,
        app: ASGIApp,
        secret_key: str,
        store: Optional[SessionStore] = None,
        session_cookie: str = "session",
        max_age: int = 14 * 24 * 60 * 60,
        path: str = "/",
        same_site: str = "lax",
        https_only: bool = False,
        domain: Optional[str] = None,
    ):
        self.app = app
        self.signer = TimestampSigner(str(secret_key))
        self.store = store if store is not None else InMemorySessionStore()
        self.session_cookie = session_cookie
        self.max_age = max_age
        self.path = path
        self.security_flags = "httponly; samesite=" + same_site
        if https_only:
            self.security_flags += "; secure"
        if domain is not None:
            self.security_flags += f"; domain={domain}"

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] not in ("http", "websocket"):
            await self.app(scope, receive, send)
            return

        session_id = self._read_session_id(HTTPConnection(scope))
        initial: Dict[str, Any] = {}
        if session_id is not None:
            initial = await self.store.load(session_id) or {}
            if not initial:
                # Unknown or expired on the server; never reuse the client's ID.
                session_id = None

        scope["session"] = copy.deepcopy(initial)

        async def send_wrapper(message: Message) -> None:
            if message["type"] == "http.response.start":
                await self._commit(scope["session"], initial, session_id, MutableHeaders(scope=message))
            await send(message)

        await self.app(scope, receive, send_wrapper)

    def _read_session_id(self, connection: HTTPConnection) -> Optional[str]:
        cookie = connection.cookies.get(self.session_cookie)
        if not cookie:
            return None
        try:
            return self.signer.unsign(cookie.encode("utf-8"), max_age=self.max_age).decode("utf-8")
        except BadSignature:
            logger.debug("Ignoring session cookie with a bad or expired signature")
            return None

    async def _commit(
        self,
        session: Dict[str, Any],
        initial: Dict[str, Any],
        session_id: Optional[str],
        headers: MutableHeaders,
    ) -> None:
        if not session:
            if session_id is not None:
                await self.store.delete(session_id)
                headers.append("Set-Cookie", self._cookie("null", expire=True))
            return

        if session_id is None or ("tokenSet" in session and "tokenSet" not in initial):
            if session_id is not None:
                await self.store.delete(session_id)
            session_id = generate_session_id()

        await self.store.save(session_id, session, self.max_age)
        signed = self.signer.sign(session_id.encode("utf-8")).decode("utf-8")
        headers.append("Set-Cookie", self._cookie(signed))

    def _cookie(self, value: str, expire: bool = False) -> str:
        if expire:
            lifetime = "expires=Thu, 01 Jan 1970 00:00:00 GMT; "
        else:
            lifetime = f"Max-Age={self.max_age}; " if self.max_age else ""
        return f"{self.session_cookie}={value}; path={self.path}; {lifetime}{self.security_flags}"
