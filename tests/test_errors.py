# tests/test_errors.py

from __future__ import annotations

import pytest

from taskflow.core.errors import (
    BackendError,
    ErrorKind,
    Provider,
    classify,
    kind_for_code,
    normalize_code,
)


@pytest.mark.parametrize(
    ("code", "kind"),
    [
        ("EMAIL_EXISTS", ErrorKind.ACCOUNT_ALREADY_EXISTS),
        ("auth/email-already-in-use", ErrorKind.ACCOUNT_ALREADY_EXISTS),
        ("EMAIL_NOT_FOUND", ErrorKind.ACCOUNT_NOT_FOUND),
        ("auth/user-not-found", ErrorKind.ACCOUNT_NOT_FOUND),
        ("INVALID_PASSWORD", ErrorKind.WRONG_PASSWORD),
        ("INVALID_LOGIN_CREDENTIALS", ErrorKind.WRONG_PASSWORD),
        ("WEAK_PASSWORD : Password should be at least 6 characters", ErrorKind.WEAK_PASSWORD),
        ("INVALID_EMAIL", ErrorKind.INVALID_CREDENTIAL_FORMAT),
        ("CONFIGURATION_NOT_FOUND", ErrorKind.PROVIDER_MISCONFIGURED),
        ("ADMIN_ONLY_OPERATION", ErrorKind.PROVIDER_MISCONFIGURED),
        ("PERMISSION_DENIED", ErrorKind.PERMISSION_DENIED),
        ("NETWORK_ERROR", ErrorKind.TRANSIENT_BACKEND_FAILURE),
        ("", ErrorKind.TRANSIENT_BACKEND_FAILURE),
    ],
)
def test_kind_for_code(code: str, kind: ErrorKind) -> None:
    assert kind_for_code(code) is kind


def test_normalize_code_strips_detail() -> None:
    assert normalize_code("TOO_MANY_ATTEMPTS_TRY_LATER : Try again later.") == "TOO_MANY_ATTEMPTS_TRY_LATER"
    assert normalize_code("  EMAIL_EXISTS ") == "EMAIL_EXISTS"
    assert normalize_code(None) == "UNKNOWN"


def test_original_user_facing_messages() -> None:
    assert classify(BackendError("EMAIL_NOT_FOUND")).message == "No account found with this email."
    assert classify(BackendError("INVALID_PASSWORD")).message == "Incorrect password."
    assert classify(BackendError("INVALID_EMAIL")).message == "Please enter a valid email address."
    assert classify(BackendError("SOMETHING_NEW")).message == "An error occurred. Please try again."


def test_misconfiguration_message_depends_on_provider() -> None:
    err = BackendError("OPERATION_NOT_ALLOWED")
    password = classify(err, provider=Provider.PASSWORD)
    anonymous = classify(err, provider=Provider.ANONYMOUS)

    assert password.kind is anonymous.kind is ErrorKind.PROVIDER_MISCONFIGURED
    assert "Email/Password" in password.message
    assert "Anonymous" in anonymous.message
    assert password.message != anonymous.message


def test_non_backend_exception_is_transient_with_context() -> None:
    err = classify(RuntimeError("boom"), context="Failed to delete task")

    assert err.kind is ErrorKind.TRANSIENT_BACKEND_FAILURE
    assert err.code is None
    assert err.message == "Failed to delete task: An error occurred. Please try again."
    assert str(err) == err.message


def test_context_does_not_prefix_auth_messages() -> None:
    err = classify(BackendError("EMAIL_EXISTS"), context="Failed to add task")
    assert err.message == "An account with this email already exists."
