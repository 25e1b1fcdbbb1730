"""Anonymous session identity for this device.

The identity is the sole tenancy key for stored data. It is created on the
first sign-in, persisted to a local session file, and reused on every later
start until :meth:`AnonymousSessionProvider.sign_out` clears it.

Each identity carries a signed token (Fernet, keyed by ``SESSION_SECRET``)
which the recommendation proxy verifies to decide whether a caller is
authenticated.
"""

from __future__ import annotations

import itertools
import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

from cryptography.fernet import Fernet, InvalidToken

from navigator.core.storage.subscription import Subscription

logger = logging.getLogger(__name__)


class IdentityError(Exception):
    """Raised when an identity cannot be established or verified."""


class InvalidIdentityTokenError(IdentityError):
    """The token was not issued with this secret, or is malformed."""


@dataclass(frozen=True)
class Identity:
    """An anonymous per-device identity."""

    uid: str
    token: str = ""

    def __bool__(self) -> bool:
        return bool(self.uid)


class IdentityTokenSigner:
    """Issues and verifies identity tokens.

    Usage::

        signer = IdentityTokenSigner(IdentityTokenSigner.generate_secret())
        token = signer.issue("3f2a...")
        signer.verify(token)  # "3f2a..."
    """

    def __init__(self, secret: str) -> None:
        if not secret or not secret.strip():
            raise IdentityError("Session secret must not be empty")
        try:
            self._fernet = Fernet(secret.encode())
        except ValueError as exc:
            raise IdentityError(f"Invalid session secret: {exc}") from exc

    def issue(self, uid: str) -> str:
        claims = {"uid": uid, "iat": datetime.now(timezone.utc).isoformat()}
        return self._fernet.encrypt(json.dumps(claims).encode("utf-8")).decode("utf-8")

    def verify(self, token: str) -> str:
        """Return the uid a token was issued for.

        Raises:
            InvalidIdentityTokenError: If the token does not verify.
        """
        if not token:
            raise InvalidIdentityTokenError("Missing identity token")
        try:
            claims = json.loads(self._fernet.decrypt(token.encode("utf-8")))
        except (InvalidToken, json.JSONDecodeError, UnicodeError) as exc:
            raise InvalidIdentityTokenError("Identity token failed verification") from exc
        uid = claims.get("uid") if isinstance(claims, dict) else None
        if not isinstance(uid, str) or not uid:
            raise InvalidIdentityTokenError("Identity token carries no uid")
        return uid

    @staticmethod
    def generate_secret() -> str:
        return Fernet.generate_key().decode("utf-8")


IdentityListener = Callable[["Identity | None"], None]


class AnonymousSessionProvider:
    """Device-local anonymous sign-in with identity-change notifications.

    Usage::

        sessions = AnonymousSessionProvider(signer, "~/.navigator/session.json")
        sub = sessions.on_identity_changed(lambda ident: print(ident))
        sessions.sign_in_anonymously()
    """

    def __init__(self, signer: IdentityTokenSigner, session_path: str | None = None) -> None:
        self._signer = signer
        self._path = Path(session_path).expanduser() if session_path else None
        self._current: Identity | None = None
        self._ready = False
        self._listeners: dict[int, IdentityListener] = {}
        self._keys = itertools.count(1)

    @property
    def current(self) -> Identity | None:
        return self._current

    @property
    def is_ready(self) -> bool:
        """True once the sign-in state has been determined at least once."""
        return self._ready

    def sign_in_anonymously(self) -> Identity:
        """Resume the persisted session or create a new anonymous identity."""
        identity = self._load() or self._create()
        logger.info("Signed in anonymously")
        self._set(identity)
        return identity

    def sign_out(self) -> None:
        """Forget the identity and delete the local session state."""
        if self._path is not None and self._path.exists():
            self._path.unlink()
        self._set(None)

    def on_identity_changed(self, listener: IdentityListener) -> Subscription:
        """Register ``listener``; it is called now if the state is known, then on every change."""
        key = next(self._keys)
        self._listeners[key] = listener
        if self._ready:
            listener(self._current)
        return Subscription(lambda: self._listeners.pop(key, None), name="identity")

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _set(self, identity: Identity | None) -> None:
        changed = not self._ready or identity != self._current
        self._current = identity
        self._ready = True
        if not changed:
            return
        for listener in list(self._listeners.values()):
            try:
                listener(identity)
            except Exception:
                logger.exception("Identity listener raised")

    def _create(self) -> Identity:
        uid = uuid.uuid4().hex
        identity = Identity(uid=uid, token=self._signer.issue(uid))
        self._save(identity)
        return identity

    def _load(self) -> Identity | None:
        if self._path is None or not self._path.exists():
            return None
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
            uid = data["uid"]
            token = data.get("token") or ""
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as exc:
            logger.warning("Discarding unreadable session state at %s: %s", self._path, exc)
            return None
        if not isinstance(uid, str) or not uid:
            logger.warning("Discarding session state at %s: no uid", self._path)
            return None

        # The uid is the tenancy key and must outlive a rotated secret;
        # only the token is re-issued.
        try:
            if self._signer.verify(token) == uid:
                return Identity(uid=uid, token=token)
        except InvalidIdentityTokenError as exc:
            logger.info("Re-issuing identity token for resumed session: %s", exc)
        identity = Identity(uid=uid, token=self._signer.issue(uid))
        self._save(identity)
        return identity

    def _save(self, identity: Identity) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(
            json.dumps({"uid": identity.uid, "token": identity.token}),
            encoding="utf-8",
        )
