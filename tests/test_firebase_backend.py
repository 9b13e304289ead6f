# tests/test_firebase_backend.py

from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime
from urllib.parse import parse_qs

import httpx
import pytest
import pytest_asyncio

from taskflow.backends.firebase import FirebaseBackend, new_document_id, parse_timestamp
from taskflow.core.errors import BackendError, ErrorKind
from taskflow.core.models import Identity, NewTask
from taskflow.tasks.task_list import TaskListStore


class FirebaseStub:
    """httpx.MockTransport handler: routes by URL suffix, records every request."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.routes: dict[str, httpx.Response] = {}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        for suffix, response in self.routes.items():
            if path.endswith(suffix):
                # fresh copy: the feed polls the same route repeatedly
                return httpx.Response(response.status_code, headers=response.headers, content=response.content)
        return httpx.Response(404, json={"error": {"code": 404, "message": "no route", "status": "NOT_FOUND"}})

    def last(self, suffix: str) -> httpx.Request:
        return [r for r in self.requests if r.url.path.endswith(suffix)][-1]


def _auth_ok(uid: str = "u1", email: str | None = "a@b.com") -> httpx.Response:
    body = {"localId": uid, "idToken": "tok-1", "refreshToken": "refresh-1", "expiresIn": "3600"}
    if email:
        body["email"] = email
    return httpx.Response(200, json=body)


def _auth_error(message: str) -> httpx.Response:
    return httpx.Response(400, json={"error": {"code": 400, "message": message, "status": "INVALID_ARGUMENT"}})


def _doc(doc_id: str, text: str, owner: str, created: str | None, update_time: str = "t0") -> dict:
    fields = {
        "text": {"stringValue": text},
        "completed": {"booleanValue": False},
        "userId": {"stringValue": owner},
        "userEmail": {"stringValue": "a@b.com"},
    }
    if created:
        fields["createdAt"] = {"timestampValue": created}
    return {
        "name": f"projects/demo-project/databases/(default)/documents/todos/{doc_id}",
        "fields": fields,
        "updateTime": update_time,
    }


@pytest.fixture()
def stub() -> FirebaseStub:
    return FirebaseStub()


@pytest_asyncio.fixture()
async def firebase(settings, stub: FirebaseStub):
    client = httpx.AsyncClient(transport=httpx.MockTransport(stub))
    fb = FirebaseBackend(settings, client=client)
    yield fb
    await fb.aclose()
    await client.aclose()


def test_requires_api_key_and_project(settings) -> None:
    settings.firebase_api_key = ""
    with pytest.raises(ValueError):
        FirebaseBackend(settings)


@pytest.mark.asyncio
async def test_sign_up_starts_and_persists_session(firebase, stub, settings) -> None:
    stub.routes["accounts:signUp"] = _auth_ok()
    seen: list[Identity | None] = []
    firebase.on_state_change(seen.append)

    identity = await firebase.sign_up("a@b.com", "secret1")

    assert identity == Identity(uid="u1", email="a@b.com")
    assert seen == [identity]
    request = stub.last("accounts:signUp")
    assert request.url.params["key"] == "test-key"
    assert json.loads(request.content) == {"email": "a@b.com", "password": "secret1", "returnSecureToken": True}

    stored = json.loads(settings.session_path.read_text("utf-8"))
    assert stored["uid"] == "u1"
    assert stored["refresh_token"] == "refresh-1"


@pytest.mark.asyncio
async def test_anonymous_sign_in_has_no_email(firebase, stub) -> None:
    stub.routes["accounts:signUp"] = _auth_ok(uid="anon", email=None)

    identity = await firebase.sign_in_anonymously()

    assert identity.is_anonymous is True
    assert identity.email is None
    assert json.loads(stub.last("accounts:signUp").content) == {"returnSecureToken": True}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("response", "code"),
    [
        (_auth_error("EMAIL_EXISTS"), "EMAIL_EXISTS"),
        (_auth_error("WEAK_PASSWORD : Password should be at least 6 characters"), "WEAK_PASSWORD"),
        (_auth_error("INVALID_LOGIN_CREDENTIALS"), "INVALID_LOGIN_CREDENTIALS"),
        (httpx.Response(400, json={"error": {"code": 400, "message": "CONFIGURATION_NOT_FOUND"}}), "CONFIGURATION_NOT_FOUND"),
        (httpx.Response(503, text="upstream unavailable"), "HTTP_503"),
    ],
)
async def test_auth_error_codes(firebase, stub, response: httpx.Response, code: str) -> None:
    stub.routes["accounts:signInWithPassword"] = response

    with pytest.raises(BackendError) as exc:
        await firebase.sign_in("a@b.com", "secret1")

    assert exc.value.code == code


@pytest.mark.asyncio
async def test_network_failure_is_backend_error(settings) -> None:
    def offline(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("offline", request=request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(offline))
    fb = FirebaseBackend(settings, client=client)

    with pytest.raises(BackendError) as exc:
        await fb.sign_in_anonymously()

    assert exc.value.code == "NETWORK_ERROR"
    await client.aclose()


@pytest.mark.asyncio
async def test_create_commits_with_server_timestamp(firebase, stub) -> None:
    stub.routes["accounts:signUp"] = _auth_ok()
    stub.routes[":commit"] = httpx.Response(200, json={"writeResults": [{}]})
    await firebase.sign_up("a@b.com", "secret1")

    task_id = await firebase.create(NewTask(text="Buy milk", owner_id="u1", owner_email="a@b.com"))

    request = stub.last(":commit")
    assert request.headers["Authorization"] == "Bearer tok-1"
    [write] = json.loads(request.content)["writes"]
    assert write["update"]["name"].endswith(f"/documents/todos/{task_id}")
    assert write["update"]["fields"] == {
        "text": {"stringValue": "Buy milk"},
        "completed": {"booleanValue": False},
        "userId": {"stringValue": "u1"},
        "userEmail": {"stringValue": "a@b.com"},
    }
    assert write["currentDocument"] == {"exists": False}
    assert write["updateTransforms"] == [{"fieldPath": "createdAt", "setToServerValue": "REQUEST_TIME"}]
    assert len(task_id) == 20


@pytest.mark.asyncio
async def test_update_sends_field_mask(firebase, stub) -> None:
    stub.routes["accounts:signUp"] = _auth_ok()
    stub.routes["/todos/abc"] = httpx.Response(200, json=_doc("abc", "x", "u1", None))
    await firebase.sign_up("a@b.com", "secret1")

    await firebase.update("abc", {"completed": True})

    request = stub.last("/todos/abc")
    assert request.method == "PATCH"
    assert request.url.params.get_list("updateMask.fieldPaths") == ["completed"]
    assert json.loads(request.content) == {"fields": {"completed": {"booleanValue": True}}}


@pytest.mark.asyncio
async def test_operations_without_session_are_denied(firebase) -> None:
    with pytest.raises(BackendError) as exc:
        await firebase.delete("abc")
    assert exc.value.code == "PERMISSION_DENIED"


@pytest.mark.asyncio
async def test_query_decodes_documents_and_skips_empty_rows(firebase, stub) -> None:
    stub.routes["accounts:signUp"] = _auth_ok()
    stub.routes[":runQuery"] = httpx.Response(
        200,
        json=[
            {"document": _doc("a", "first", "u1", "2024-05-01T12:00:00.123456789Z"), "readTime": "r"},
            {"document": _doc("b", "undated", "u1", None), "readTime": "r"},
            {"readTime": "r"},
        ],
    )
    await firebase.sign_up("a@b.com", "secret1")

    tasks, fingerprint = await firebase.query_tasks("u1")

    assert [t.id for t in tasks] == ["a", "b"]
    assert tasks[0].created_at == datetime(2024, 5, 1, 12, 0, 0, 123456, tzinfo=UTC)
    assert tasks[1].created_at is None
    assert tasks[0].owner_id == "u1"
    assert len(fingerprint) == 2
    where = json.loads(stub.last(":runQuery").content)["structuredQuery"]["where"]["fieldFilter"]
    assert where["field"] == {"fieldPath": "userId"}
    assert where["value"] == {"stringValue": "u1"}


@pytest.mark.asyncio
async def test_feed_delivers_then_stops_on_unsubscribe(firebase, stub) -> None:
    stub.routes["accounts:signUp"] = _auth_ok()
    stub.routes[":runQuery"] = httpx.Response(200, json=[{"document": _doc("a", "first", "u1", None)}])
    await firebase.sign_up("a@b.com", "secret1")
    snapshots: list[list] = []
    got = asyncio.Event()

    def on_snapshot(tasks) -> None:
        snapshots.append(tasks)
        got.set()

    unsubscribe = firebase.subscribe("u1", on_snapshot, lambda err: None)
    await asyncio.wait_for(got.wait(), timeout=2)
    await asyncio.sleep(0.05)  # unchanged results are not re-delivered
    unsubscribe()

    assert len(snapshots) == 1
    assert [t.text for t in snapshots[0]] == ["first"]


@pytest.mark.asyncio
async def test_feed_reports_permission_denied(firebase, stub) -> None:
    stub.routes["accounts:signUp"] = _auth_ok()
    stub.routes[":runQuery"] = httpx.Response(
        403,
        json={"error": {"code": 403, "message": "Missing or insufficient permissions.", "status": "PERMISSION_DENIED"}},
    )
    await firebase.sign_up("a@b.com", "secret1")
    errors: list[BackendError] = []
    got = asyncio.Event()

    def on_error(err: BackendError) -> None:
        errors.append(err)
        got.set()

    unsubscribe = firebase.subscribe("u1", lambda tasks: None, on_error)
    await asyncio.wait_for(got.wait(), timeout=2)
    unsubscribe()

    assert [e.code for e in errors] == ["PERMISSION_DENIED"]


async def _until(condition, timeout: float = 2.0) -> None:
    async def _poll() -> None:
        while not condition():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout=timeout)


@pytest.mark.asyncio
async def test_feed_recovery_clears_store_error(firebase, stub) -> None:
    stub.routes["accounts:signUp"] = _auth_ok()
    ok = httpx.Response(200, json=[{"document": _doc("a", "first", "u1", None)}])
    stub.routes[":runQuery"] = ok
    identity = await firebase.sign_up("a@b.com", "secret1")
    store = TaskListStore(firebase)
    store.bind(identity)
    await _until(lambda: len(store.tasks) == 1)

    stub.routes[":runQuery"] = httpx.Response(503, text="upstream unavailable")
    await _until(lambda: store.error is not None)
    assert store.error.kind is ErrorKind.TRANSIENT_BACKEND_FAILURE

    # Same documents as before the outage.
    stub.routes[":runQuery"] = ok
    await _until(lambda: store.error is None)

    assert [t.text for t in store.tasks] == ["first"]
    store.close()


@pytest.mark.asyncio
async def test_feed_survives_malformed_rows(firebase, stub) -> None:
    stub.routes["accounts:signUp"] = _auth_ok()
    stub.routes[":runQuery"] = httpx.Response(200, json=[{"document": ["not", "a", "dict"]}])
    identity = await firebase.sign_up("a@b.com", "secret1")
    store = TaskListStore(firebase)
    store.bind(identity)

    await _until(lambda: store.error is not None)
    assert store.error.kind is ErrorKind.TRANSIENT_BACKEND_FAILURE
    assert store.tasks == ()

    stub.routes[":runQuery"] = httpx.Response(200, json=[{"document": _doc("a", "first", "u1", None)}])
    await _until(lambda: len(store.tasks) == 1)

    assert store.error is None
    store.close()


@pytest.mark.asyncio
async def test_sign_out_during_token_refresh_is_denied(settings) -> None:
    holder: dict[str, FirebaseBackend] = {}

    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("accounts:signUp"):
            return _auth_ok()
        if request.url.path.endswith("/token"):
            await holder["fb"].sign_out()
            return httpx.Response(200, json={"id_token": "tok-2", "refresh_token": "r-2", "expires_in": "3600"})
        return httpx.Response(200, json={})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    fb = holder["fb"] = FirebaseBackend(settings, client=client)
    await fb.sign_up("a@b.com", "secret1")
    fb._session.expires_at = 0.0

    with pytest.raises(BackendError) as exc:
        await fb.delete("abc")

    assert exc.value.code == "PERMISSION_DENIED"
    await client.aclose()


@pytest.mark.asyncio
async def test_restore_session_refreshes_persisted_token(firebase, stub, settings) -> None:
    settings.session_path.write_text(
        json.dumps({"uid": "u1", "email": "a@b.com", "is_anonymous": False, "refresh_token": "refresh-1"}),
        "utf-8",
    )
    stub.routes["/token"] = httpx.Response(
        200, json={"id_token": "tok-2", "refresh_token": "refresh-2", "expires_in": "3600"}
    )
    seen: list[Identity | None] = []
    firebase.on_state_change(seen.append)

    await firebase.restore_session()

    assert seen == [Identity(uid="u1", email="a@b.com")]
    form = parse_qs(stub.last("/token").content.decode())
    assert form == {"grant_type": ["refresh_token"], "refresh_token": ["refresh-1"]}
    assert json.loads(settings.session_path.read_text("utf-8"))["refresh_token"] == "refresh-2"


@pytest.mark.asyncio
async def test_restore_session_drops_rejected_token(firebase, stub, settings) -> None:
    settings.session_path.write_text(
        json.dumps({"uid": "u1", "email": None, "is_anonymous": True, "refresh_token": "old"}), "utf-8"
    )
    stub.routes["/token"] = _auth_error("TOKEN_EXPIRED")
    seen: list[Identity | None] = []
    firebase.on_state_change(seen.append)

    await firebase.restore_session()

    assert seen == [None]
    assert not settings.session_path.exists()


@pytest.mark.asyncio
async def test_restore_without_file_reports_signed_out(firebase) -> None:
    seen: list[Identity | None] = []
    firebase.on_state_change(seen.append)

    await firebase.restore_session()

    assert seen == [None]


@pytest.mark.asyncio
async def test_sign_out_forgets_session(firebase, stub, settings) -> None:
    stub.routes["accounts:signUp"] = _auth_ok()
    await firebase.sign_up("a@b.com", "secret1")
    assert settings.session_path.exists()

    await firebase.sign_out()

    assert not settings.session_path.exists()


def test_timestamp_and_id_helpers() -> None:
    assert parse_timestamp("2024-05-01T12:00:00Z") == datetime(2024, 5, 1, 12, 0, tzinfo=UTC)
    assert parse_timestamp("2024-05-01T12:00:00.5Z") == datetime(2024, 5, 1, 12, 0, 0, 500000, tzinfo=UTC)
    assert parse_timestamp("garbage") is None
    assert parse_timestamp(None) is None
    ids = {new_document_id() for _ in range(50)}
    assert len(ids) == 50
    assert all(len(i) == 20 and i.isalnum() for i in ids)
