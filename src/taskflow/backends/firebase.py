# src/taskflow/backends/firebase.py

"""
Firebase backend over the public REST APIs (Identity Toolkit, Secure Token, Firestore).

Authentication:
- accounts:signUp / accounts:signInWithPassword with the project's web API key
- ID tokens are refreshed through the Secure Token API before they expire
- session.json keeps the refresh token so the next start can restore the session;
  it holds a credential and must stay under a gitignored, private directory

Tasks live in the `todos` collection with the fields
text / completed / createdAt / userId / userEmail.

Change feed: one asyncio polling task per subscription running an owner-filtered
structured query. The full result set is pushed whenever it differs from the last one.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
import re
import secrets
import string
import time
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import httpx

from ..core.errors import BackendError, ErrorKind, kind_for_code, normalize_code
from ..core.models import Identity, NewTask, Task
from ..core.observable import Unsubscribe
from ..core.ports import AuthStateHandler, FeedErrorHandler, SnapshotHandler

logger = logging.getLogger(__name__)

# Refresh the ID token this many seconds before Firebase says it expires.
TOKEN_REFRESH_MARGIN_SECONDS = 60.0

# Refresh-token failures that end the session (anything else is retried later).
SESSION_ENDING_CODES = frozenset(
    {"TOKEN_EXPIRED", "USER_DISABLED", "USER_NOT_FOUND", "INVALID_REFRESH_TOKEN", "INVALID_GRANT_TYPE"}
)

_AUTO_ID_ALPHABET = string.ascii_letters + string.digits
_FRACTION_RE = re.compile(r"\.(\d+)")


def new_document_id() -> str:
    """20-character random id, same shape as the Firestore client SDKs generate."""
    return "".join(secrets.choice(_AUTO_ID_ALPHABET) for _ in range(20))


def parse_timestamp(raw: str | None) -> datetime | None:
    """Parse an RFC 3339 timestamp; Firestore may send nanoseconds, Python keeps micro."""
    if not raw:
        return None
    s = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), raw, count=1)
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        ts = datetime.fromisoformat(s)
    except ValueError:
        logger.warning("Unparseable timestamp %r", raw)
        return None
    return ts if ts.tzinfo is not None else ts.replace(tzinfo=UTC)


def format_timestamp(ts: datetime) -> str:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=UTC)
    return ts.astimezone(UTC).isoformat().replace("+00:00", "Z")


def decode_value(value: dict[str, Any]) -> Any:
    if "stringValue" in value:
        return value["stringValue"]
    if "booleanValue" in value:
        return bool(value["booleanValue"])
    if "timestampValue" in value:
        return parse_timestamp(value["timestampValue"])
    if "integerValue" in value:
        return int(value["integerValue"])
    if "doubleValue" in value:
        return float(value["doubleValue"])
    if "nullValue" in value:
        return None
    return None


def encode_value(value: Any) -> dict[str, Any]:
    if value is None:
        return {"nullValue": None}
    if isinstance(value, bool):
        return {"booleanValue": value}
    if isinstance(value, int):
        return {"integerValue": str(value)}
    if isinstance(value, float):
        return {"doubleValue": value}
    if isinstance(value, datetime):
        return {"timestampValue": format_timestamp(value)}
    return {"stringValue": str(value)}


def document_to_task(doc: dict[str, Any]) -> Task:
    fields = {k: decode_value(v) for k, v in (doc.get("fields") or {}).items()}
    created_at = fields.get("createdAt")
    return Task(
        id=str(doc.get("name", "")).rsplit("/", 1)[-1],
        text=str(fields.get("text") or ""),
        owner_id=str(fields.get("userId") or ""),
        completed=bool(fields.get("completed", False)),
        created_at=created_at if isinstance(created_at, datetime) else None,
        owner_email=fields.get("userEmail"),
    )


def _error_code(response: httpx.Response) -> tuple[str, str]:
    """
    Firebase error bodies: {"error": {"code": 400, "message": "EMAIL_EXISTS", "status": ...}}.
    Identity Toolkit puts the code in `message`, Firestore in `status`.
    """
    try:
        body = response.json()
    except ValueError:
        return f"HTTP_{response.status_code}", response.text[:200]

    err = body.get("error") if isinstance(body, dict) else None
    if isinstance(err, str):
        # Secure Token API: {"error": "invalid_grant", "error_description": "..."}
        return err.upper(), str(body.get("error_description") or err)
    if not isinstance(err, dict):
        return f"HTTP_{response.status_code}", response.text[:200]

    message = str(err.get("message") or "")
    status = str(err.get("status") or "")
    if status and status not in ("INVALID_ARGUMENT", "FAILED_PRECONDITION"):
        return status, message or status
    if message:
        return normalize_code(message), message
    return (status or f"HTTP_{response.status_code}"), status


class FirebaseSession:
    """Signed-in credentials for one principal."""

    __slots__ = ("identity", "id_token", "refresh_token", "expires_at")

    def __init__(self, identity: Identity, id_token: str, refresh_token: str, expires_at: float) -> None:
        self.identity = identity
        self.id_token = id_token
        self.refresh_token = refresh_token
        self.expires_at = expires_at

    def expired(self, now: float | None = None) -> bool:
        now = time.time() if now is None else now
        return now >= self.expires_at - TOKEN_REFRESH_MARGIN_SECONDS


class FirebaseBackend:
    """AuthBackend + TaskBackend against a Firebase project."""

    def __init__(self, settings, *, client: httpx.AsyncClient | None = None) -> None:
        api_key = (getattr(settings, "firebase_api_key", None) or "").strip()
        project_id = (getattr(settings, "firebase_project_id", None) or "").strip()
        if not api_key or not project_id:
            raise ValueError(
                "Firebase is not configured: set TASKFLOW_FIREBASE_API_KEY and TASKFLOW_FIREBASE_PROJECT_ID"
            )

        self._api_key = api_key
        self._project_id = project_id
        self._auth_url = str(getattr(settings, "firebase_auth_url", "https://identitytoolkit.googleapis.com/v1"))
        self._token_url = str(getattr(settings, "firebase_token_url", "https://securetoken.googleapis.com/v1"))
        firestore_url = str(getattr(settings, "firestore_url", "https://firestore.googleapis.com/v1"))
        self._collection = str(getattr(settings, "tasks_collection", "todos"))
        self._poll_seconds = float(getattr(settings, "feed_poll_seconds", 2.0))
        self._session_path: Path | None = (
            Path(settings.session_path) if getattr(settings, "session_path", None) else None
        )

        self._db_root = f"projects/{project_id}/databases/(default)/documents"
        self._documents_url = f"{firestore_url}/{self._db_root}"

        timeout = float(getattr(settings, "http_timeout_seconds", 10.0))
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))
        self._owns_client = client is None

        self._session: FirebaseSession | None = None
        self._auth_handlers: list[AuthStateHandler] = []
        self._feeds: set[asyncio.Task[None]] = set()
        self._refresh_lock = asyncio.Lock()

    # ---- HTTP helpers ----

    async def _request(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            logger.warning("Firebase request failed %s %s: %r", method, url.split("?")[0], e)
            raise BackendError("NETWORK_ERROR", str(e) or e.__class__.__name__) from e

        if response.is_error:
            code, message = _error_code(response)
            logger.info("Firebase error %s %s -> %s", method, url.split("?")[0], code)
            raise BackendError(code, message)

        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError as e:
            raise BackendError("BAD_RESPONSE", "Response is not JSON") from e
        return data if isinstance(data, dict) else {"items": data}

    async def _auth_call(self, endpoint: str, payload: dict[str, Any]) -> dict[str, Any]:
        return await self._request(
            "POST",
            f"{self._auth_url}/accounts:{endpoint}",
            params={"key": self._api_key},
            json=payload,
        )

    async def _authorized(self) -> dict[str, str]:
        token = await self._id_token()
        return {"Authorization": f"Bearer {token}"}

    # ---- AuthBackend ----

    async def sign_up(self, email: str, password: str) -> Identity:
        data = await self._auth_call(
            "signUp", {"email": email, "password": password, "returnSecureToken": True}
        )
        return self._start_session(data, anonymous=False)

    async def sign_in(self, email: str, password: str) -> Identity:
        data = await self._auth_call(
            "signInWithPassword", {"email": email, "password": password, "returnSecureToken": True}
        )
        return self._start_session(data, anonymous=False)

    async def sign_in_anonymously(self) -> Identity:
        data = await self._auth_call("signUp", {"returnSecureToken": True})
        return self._start_session(data, anonymous=True)

    async def sign_out(self) -> None:
        # Firebase has no server-side sign-out for client sessions: drop the local credentials.
        self._stop_feeds()
        self._session = None
        self._forget_session()
        self._notify_auth(None)

    def on_state_change(self, handler: AuthStateHandler) -> Unsubscribe:
        self._auth_handlers.append(handler)

        def _unsubscribe() -> None:
            if handler in self._auth_handlers:
                self._auth_handlers.remove(handler)

        return _unsubscribe

    async def restore_session(self) -> None:
        stored = self._load_session()
        if stored is None:
            self._notify_auth(None)
            return

        identity, refresh_token = stored
        self._session = FirebaseSession(identity, id_token="", refresh_token=refresh_token, expires_at=0.0)
        try:
            await self._refresh()
        except BackendError as e:
            if e.code in SESSION_ENDING_CODES or kind_for_code(e.code) is ErrorKind.ACCOUNT_NOT_FOUND:
                logger.info("Persisted session rejected (%s); signing out", e.code)
                self._session = None
                self._forget_session()
                self._notify_auth(None)
                return
            # Offline at startup: keep the session, the next request retries the refresh.
            logger.warning("Could not refresh persisted session (%s); will retry", e.code)

        logger.info("Restored session uid=%s anonymous=%s", identity.uid, identity.is_anonymous)
        self._notify_auth(identity)

    # ---- TaskBackend ----

    def subscribe(
        self,
        owner_id: str,
        on_snapshot: SnapshotHandler,
        on_error: FeedErrorHandler,
    ) -> Unsubscribe:
        active = {"on": True}

        def deliver(tasks: list[Task]) -> None:
            if active["on"]:
                on_snapshot(tasks)

        def fail(err: BackendError) -> None:
            if active["on"]:
                on_error(err)

        feed = asyncio.get_running_loop().create_task(
            self._run_feed(owner_id, deliver, fail), name=f"taskflow-feed-{owner_id}"
        )
        self._feeds.add(feed)
        feed.add_done_callback(self._feeds.discard)
        logger.info("Feed started uid=%s every %.1fs", owner_id, self._poll_seconds)

        def _unsubscribe() -> None:
            # Flag first: a poll already in flight must not deliver after this returns.
            active["on"] = False
            feed.cancel()
            logger.info("Feed stopped uid=%s", owner_id)

        return _unsubscribe

    async def create(self, task: NewTask) -> str:
        doc_id = new_document_id()
        fields = {
            "text": encode_value(task.text),
            "completed": encode_value(task.completed),
            "userId": encode_value(task.owner_id),
            "userEmail": encode_value(task.owner_email),
        }
        write: dict[str, Any] = {
            "update": {"name": f"{self._db_root}/{self._collection}/{doc_id}", "fields": fields},
            "currentDocument": {"exists": False},
        }
        if task.created_at is None:
            write["updateTransforms"] = [{"fieldPath": "createdAt", "setToServerValue": "REQUEST_TIME"}]
        else:
            fields["createdAt"] = encode_value(task.created_at)

        await self._request(
            "POST",
            f"{self._documents_url}:commit",
            headers=await self._authorized(),
            json={"writes": [write]},
        )
        return doc_id

    async def update(self, task_id: str, patch: dict[str, Any]) -> None:
        if not patch:
            return
        params: list[tuple[str, str]] = [("updateMask.fieldPaths", k) for k in patch]
        params.append(("currentDocument.exists", "true"))
        await self._request(
            "PATCH",
            f"{self._documents_url}/{self._collection}/{task_id}",
            params=params,
            headers=await self._authorized(),
            json={"fields": {k: encode_value(v) for k, v in patch.items()}},
        )

    async def delete(self, task_id: str) -> None:
        await self._request(
            "DELETE",
            f"{self._documents_url}/{self._collection}/{task_id}",
            headers=await self._authorized(),
        )

    async def aclose(self) -> None:
        self._stop_feeds()
        if self._owns_client:
            await self._client.aclose()

    # ---- change feed ----

    async def query_tasks(self, owner_id: str) -> tuple[list[Task], tuple[tuple[str, str], ...]]:
        """Run the owner-filtered query. Returns tasks and a (name, updateTime) fingerprint."""
        body = {
            "structuredQuery": {
                "from": [{"collectionId": self._collection}],
                "where": {
                    "fieldFilter": {
                        "field": {"fieldPath": "userId"},
                        "op": "EQUAL",
                        "value": {"stringValue": owner_id},
                    }
                },
            }
        }
        data = await self._request(
            "POST",
            f"{self._documents_url}:runQuery",
            headers=await self._authorized(),
            json=body,
        )
        tasks: list[Task] = []
        fingerprint: list[tuple[str, str]] = []
        for row in data.get("items", []):
            doc = row.get("document") if isinstance(row, dict) else None
            if not doc:
                continue
            tasks.append(document_to_task(doc))
            fingerprint.append((str(doc.get("name")), str(doc.get("updateTime", ""))))
        return tasks, tuple(sorted(fingerprint))

    async def _run_feed(self, owner_id: str, deliver, fail) -> None:
        """
        Poll until cancelled.

        - first successful query is always delivered (possibly empty)
        - later results only when the fingerprint changed
        - PERMISSION_DENIED ends the feed after reporting it
        - other failures (including malformed rows) are reported once per streak and retried
        - the first good result after a failure is always delivered, which clears the error
        """
        last: tuple[tuple[str, str], ...] | None = None
        failing = False

        while True:
            try:
                tasks, fingerprint = await self.query_tasks(owner_id)
            except BackendError as e:
                if kind_for_code(e.code) is ErrorKind.PERMISSION_DENIED:
                    logger.warning("Feed denied uid=%s; stopping", owner_id)
                    fail(e)
                    return
                if not failing:
                    logger.warning("Feed query failed uid=%s code=%s", owner_id, e.code)
                    fail(e)
                failing = True
                last = None
            except Exception as e:
                if not failing:
                    logger.exception("Feed poll crashed uid=%s", owner_id)
                    fail(BackendError("UNKNOWN", f"{e.__class__.__name__}: {e}"))
                failing = True
                last = None
            else:
                failing = False
                if fingerprint != last:
                    last = fingerprint
                    logger.debug("Feed snapshot uid=%s size=%d", owner_id, len(tasks))
                    deliver(tasks)

            await asyncio.sleep(self._poll_seconds)

    def _stop_feeds(self) -> None:
        for feed in list(self._feeds):
            feed.cancel()

    # ---- session handling ----

    def _start_session(self, data: dict[str, Any], *, anonymous: bool) -> Identity:
        try:
            uid = str(data["localId"])
            id_token = str(data["idToken"])
            refresh_token = str(data["refreshToken"])
        except KeyError as e:
            raise BackendError("BAD_RESPONSE", f"Missing {e.args[0]} in auth response") from e

        email = None if anonymous else (data.get("email") or None)
        identity = Identity(uid=uid, email=email, is_anonymous=anonymous)
        expires_in = float(data.get("expiresIn") or 3600)
        self._session = FirebaseSession(identity, id_token, refresh_token, time.time() + expires_in)
        self._save_session()
        logger.info("Signed in uid=%s anonymous=%s", uid, anonymous)
        self._notify_auth(identity)
        return identity

    async def _id_token(self) -> str:
        session = self._session
        if session is None:
            raise BackendError("PERMISSION_DENIED", "Not signed in.")
        if session.expired():
            await self._refresh()
        if self._session is None:
            # signed out while the refresh was in flight
            raise BackendError("PERMISSION_DENIED", "Not signed in.")
        return self._session.id_token

    async def _refresh(self) -> None:
        async with self._refresh_lock:
            session = self._session
            if session is None:
                raise BackendError("PERMISSION_DENIED", "Not signed in.")
            if session.id_token and not session.expired():
                return
            try:
                data = await self._request(
                    "POST",
                    f"{self._token_url}/token",
                    params={"key": self._api_key},
                    data={"grant_type": "refresh_token", "refresh_token": session.refresh_token},
                )
            except BackendError as e:
                if e.code in SESSION_ENDING_CODES and self._session is session and session.id_token:
                    logger.info("Session ended by backend uid=%s (%s)", session.identity.uid, e.code)
                    self._session = None
                    self._forget_session()
                    self._notify_auth(None)
                raise

            session.id_token = str(data.get("id_token") or "")
            session.refresh_token = str(data.get("refresh_token") or session.refresh_token)
            session.expires_at = time.time() + float(data.get("expires_in") or 3600)
            self._save_session()
            logger.debug("ID token refreshed uid=%s", session.identity.uid)

    def _notify_auth(self, identity: Identity | None) -> None:
        for handler in list(self._auth_handlers):
            try:
                handler(identity)
            except Exception:
                logger.exception("Auth state handler failed")

    def _save_session(self) -> None:
        path = self._session_path
        session = self._session
        if path is None or session is None:
            return
        data = {
            "uid": session.identity.uid,
            "email": session.identity.email,
            "is_anonymous": session.identity.is_anonymous,
            "refresh_token": session.refresh_token,
        }
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(".tmp")
            tmp.write_text(json.dumps(data, ensure_ascii=False), "utf-8")
            os.replace(tmp, path)
            with contextlib.suppress(Exception):
                # Best-effort: the refresh token is a credential.
                os.chmod(path, 0o600)
        except Exception:
            logger.exception("Failed to persist session to %s", path)

    def _load_session(self) -> tuple[Identity, str] | None:
        path = self._session_path
        if path is None or not path.exists():
            return None
        try:
            data = json.loads(path.read_text("utf-8"))
            identity = Identity(
                uid=str(data["uid"]),
                email=data.get("email") or None,
                is_anonymous=bool(data.get("is_anonymous", False)),
            )
            refresh_token = str(data["refresh_token"])
        except Exception:
            logger.warning("Ignoring unreadable session file %s", path, exc_info=True)
            return None
        return identity, refresh_token

    def _forget_session(self) -> None:
        path = self._session_path
        if path is None:
            return
        with contextlib.suppress(FileNotFoundError):
            path.unlink()
