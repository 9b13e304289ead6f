# src/taskflow/core/session.py

"""
Session gate: the single authority for "who is signed in".

State machine:
    UNKNOWN -> {UNAUTHENTICATED, AUTHENTICATED}
    UNAUTHENTICATED -> AUTHENTICATED   (sign-up / sign-in / guest)
    AUTHENTICATED -> UNAUTHENTICATED   (sign-out / backend invalidation)

UNKNOWN is entered once at construction and never again. Observers get exactly one
notification per transition, with the new state.
"""

from __future__ import annotations

import logging
import re

from .errors import (
    BackendError,
    ClassifiedError,
    ErrorKind,
    Provider,
    classify,
    credential_error,
    validation_error,
)
from .models import Identity, SessionState, SessionStatus
from .observable import Observable, Observer, Unsubscribe
from .ports import AuthBackend

logger = logging.getLogger(__name__)

# Same shape check browsers apply to <input type="email">; the backend has the final word.
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

DEFAULT_MIN_PASSWORD_LENGTH = 6


def is_well_formed_email(email: str) -> bool:
    return bool(EMAIL_RE.match((email or "").strip()))


class SessionGate:
    def __init__(
        self,
        auth: AuthBackend,
        *,
        min_password_length: int = DEFAULT_MIN_PASSWORD_LENGTH,
    ) -> None:
        self._auth = auth
        self._min_password_length = max(1, int(min_password_length))
        self._state: Observable[SessionState] = Observable(SessionState())
        self._backend_unsubscribe: Unsubscribe | None = None

    # ---- read side ----

    @property
    def state(self) -> SessionState:
        return self._state.value

    @property
    def status(self) -> SessionStatus:
        return self._state.value.status

    @property
    def identity(self) -> Identity | None:
        return self._state.value.identity

    @property
    def error(self) -> ClassifiedError | None:
        return self._state.value.error

    def subscribe(self, observer: Observer[SessionState]) -> Unsubscribe:
        return self._state.subscribe(observer)

    # ---- lifecycle ----

    async def start(self) -> None:
        """Listen to the backend auth feed and resolve the persisted-session check."""
        if self._backend_unsubscribe is None:
            self._backend_unsubscribe = self._auth.on_state_change(self._on_backend_state)
        try:
            await self._auth.restore_session()
        except Exception as e:
            logger.exception("Session restore failed")
            self._transition(None, error=classify(e))
            return
        # A backend that reported nothing still settles the gate.
        if self.status is SessionStatus.UNKNOWN:
            self._transition(None)

    def close(self) -> None:
        if self._backend_unsubscribe is not None:
            self._backend_unsubscribe()
            self._backend_unsubscribe = None

    # ---- operations ----

    async def sign_up(self, email: str, password: str) -> Identity | ClassifiedError:
        email = (email or "").strip()
        if not is_well_formed_email(email):
            return self._fail(credential_error(ErrorKind.INVALID_CREDENTIAL_FORMAT))
        if len(password or "") < self._min_password_length:
            return self._fail(
                credential_error(
                    ErrorKind.WEAK_PASSWORD,
                    f"Password should be at least {self._min_password_length} characters.",
                )
            )

        logger.info("Sign-up requested email=%s", email)
        return await self._run(self._auth.sign_up(email, password), Provider.PASSWORD)

    async def sign_in(self, email: str, password: str) -> Identity | ClassifiedError:
        email = (email or "").strip()
        if not is_well_formed_email(email):
            return self._fail(credential_error(ErrorKind.INVALID_CREDENTIAL_FORMAT))
        if not password:
            return self._fail(
                credential_error(ErrorKind.INVALID_CREDENTIAL_FORMAT, "Please enter your password.")
            )

        logger.info("Sign-in requested email=%s", email)
        return await self._run(self._auth.sign_in(email, password), Provider.PASSWORD)

    async def sign_in_as_guest(self) -> Identity | ClassifiedError:
        logger.info("Guest sign-in requested")
        return await self._run(self._auth.sign_in_anonymously(), Provider.ANONYMOUS)

    async def sign_out(self) -> ClassifiedError | None:
        """
        Dependents observe UNAUTHENTICATED (and release their subscriptions) before the
        backend call is awaited. The local session is cleared even if the backend fails.
        """
        if self.status is not SessionStatus.AUTHENTICATED:
            return self._fail(validation_error("Not signed in."))

        previous = self.identity
        self._transition(None)
        logger.info("Signed out uid=%s", previous.uid if previous else None)

        try:
            await self._auth.sign_out()
        except Exception as e:
            if not isinstance(e, BackendError):
                logger.exception("Backend sign-out crashed")
            err = classify(e, context="Failed to sign out")
            logger.warning("Backend sign-out failed: %s", err.code or err.kind)
            return self._fail(err)
        return None

    # ---- internals ----

    async def _run(self, call, provider: Provider) -> Identity | ClassifiedError:
        try:
            identity = await call
        except Exception as e:
            if not isinstance(e, BackendError):
                logger.exception("Auth backend crashed provider=%s", provider)
            err = classify(e, provider=provider)
            logger.info("Auth failed provider=%s kind=%s code=%s", provider, err.kind, err.code)
            return self._fail(err)

        self._transition(identity)
        return identity

    def _on_backend_state(self, identity: Identity | None) -> None:
        # Backend reports: persisted session at startup, echoes of our own sign-ins,
        # and server-side invalidation (expired/revoked session).
        if identity is None and self.status is SessionStatus.AUTHENTICATED:
            logger.info("Session invalidated by backend uid=%s", self.identity.uid if self.identity else None)
        self._transition(identity)

    def _transition(self, identity: Identity | None, *, error: ClassifiedError | None = None) -> None:
        current = self._state.value
        status = SessionStatus.AUTHENTICATED if identity is not None else SessionStatus.UNAUTHENTICATED

        if current.status is status and current.identity == identity:
            if error is not None and current.error != error:
                self._state.publish(SessionState(status=status, identity=identity, error=error))
            return

        self._state.publish(SessionState(status=status, identity=identity, error=error))

    def _fail(self, err: ClassifiedError) -> ClassifiedError:
        current = self._state.value
        if current.status is SessionStatus.UNKNOWN:
            # Still waiting for the persisted-session check; keep status, record the error.
            self._state.publish(SessionState(status=current.status, identity=None, error=err))
        else:
            self._state.publish(
                SessionState(status=current.status, identity=current.identity, error=err)
            )
        return err
