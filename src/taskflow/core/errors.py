# src/taskflow/core/errors.py

"""
Error taxonomy.

Backends raise BackendError carrying the provider's error code. The session gate and
the task list store classify those codes into a fixed set of kinds at their boundary,
so the presentation layer only ever sees ClassifiedError values.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class ErrorKind(StrEnum):
    INVALID_CREDENTIAL_FORMAT = "InvalidCredentialFormat"
    ACCOUNT_ALREADY_EXISTS = "AccountAlreadyExists"
    ACCOUNT_NOT_FOUND = "AccountNotFound"
    WRONG_PASSWORD = "WrongPassword"
    WEAK_PASSWORD = "WeakPassword"
    PROVIDER_MISCONFIGURED = "ProviderMisconfigured"
    PERMISSION_DENIED = "PermissionDenied"
    TRANSIENT_BACKEND_FAILURE = "TransientBackendFailure"
    VALIDATION_FAILURE = "ValidationFailure"


class Provider(StrEnum):
    """Sign-in provider an auth operation went through (selects the misconfiguration hint)."""

    PASSWORD = "password"
    ANONYMOUS = "anonymous"


@dataclass(frozen=True, slots=True)
class ClassifiedError:
    kind: ErrorKind
    message: str
    code: str | None = None

    def __str__(self) -> str:
        return self.message


class BackendError(Exception):
    """Raised by backend adapters; `code` is the provider's error code (e.g. EMAIL_EXISTS)."""

    def __init__(self, code: str, message: str | None = None) -> None:
        self.code = (code or "UNKNOWN").strip()
        self.message = message or self.code
        super().__init__(f"{self.code}: {self.message}" if message else self.code)


# Firebase REST codes plus the JS SDK spellings of the same failures.
_CODE_KINDS: dict[str, ErrorKind] = {
    "EMAIL_EXISTS": ErrorKind.ACCOUNT_ALREADY_EXISTS,
    "auth/email-already-in-use": ErrorKind.ACCOUNT_ALREADY_EXISTS,
    "EMAIL_NOT_FOUND": ErrorKind.ACCOUNT_NOT_FOUND,
    "USER_NOT_FOUND": ErrorKind.ACCOUNT_NOT_FOUND,
    "auth/user-not-found": ErrorKind.ACCOUNT_NOT_FOUND,
    "INVALID_PASSWORD": ErrorKind.WRONG_PASSWORD,
    "INVALID_LOGIN_CREDENTIALS": ErrorKind.WRONG_PASSWORD,
    "auth/wrong-password": ErrorKind.WRONG_PASSWORD,
    "auth/invalid-credential": ErrorKind.WRONG_PASSWORD,
    "WEAK_PASSWORD": ErrorKind.WEAK_PASSWORD,
    "auth/weak-password": ErrorKind.WEAK_PASSWORD,
    "INVALID_EMAIL": ErrorKind.INVALID_CREDENTIAL_FORMAT,
    "MISSING_EMAIL": ErrorKind.INVALID_CREDENTIAL_FORMAT,
    "MISSING_PASSWORD": ErrorKind.INVALID_CREDENTIAL_FORMAT,
    "auth/invalid-email": ErrorKind.INVALID_CREDENTIAL_FORMAT,
    "CONFIGURATION_NOT_FOUND": ErrorKind.PROVIDER_MISCONFIGURED,
    "OPERATION_NOT_ALLOWED": ErrorKind.PROVIDER_MISCONFIGURED,
    "ADMIN_ONLY_OPERATION": ErrorKind.PROVIDER_MISCONFIGURED,
    "PASSWORD_LOGIN_DISABLED": ErrorKind.PROVIDER_MISCONFIGURED,
    "auth/configuration-not-found": ErrorKind.PROVIDER_MISCONFIGURED,
    "auth/operation-not-allowed": ErrorKind.PROVIDER_MISCONFIGURED,
    "auth/admin-restricted-operation": ErrorKind.PROVIDER_MISCONFIGURED,
    "PERMISSION_DENIED": ErrorKind.PERMISSION_DENIED,
    "permission-denied": ErrorKind.PERMISSION_DENIED,
}

_KIND_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.INVALID_CREDENTIAL_FORMAT: "Please enter a valid email address.",
    ErrorKind.ACCOUNT_ALREADY_EXISTS: "An account with this email already exists.",
    ErrorKind.ACCOUNT_NOT_FOUND: "No account found with this email.",
    ErrorKind.WRONG_PASSWORD: "Incorrect password.",
    ErrorKind.WEAK_PASSWORD: "Password should be at least 6 characters.",
    ErrorKind.PERMISSION_DENIED: (
        "Database access was denied. Check the Firestore security rules for this project."
    ),
    ErrorKind.TRANSIENT_BACKEND_FAILURE: "An error occurred. Please try again.",
    ErrorKind.VALIDATION_FAILURE: "Invalid input.",
}

_MISCONFIGURED_MESSAGES: dict[Provider, str] = {
    Provider.PASSWORD: (
        "Email authentication is not enabled. Enable the Email/Password provider in the "
        "Firebase Console (Authentication > Sign-in method)."
    ),
    Provider.ANONYMOUS: (
        "Guest sign-in is not enabled. Enable the Anonymous provider in the "
        "Firebase Console (Authentication > Sign-in method)."
    ),
}


def normalize_code(raw: str | None) -> str:
    """
    Firebase REST messages look like "WEAK_PASSWORD : Password should be at least 6 characters".
    Keep only the leading code.
    """
    s = (raw or "").strip()
    if not s:
        return "UNKNOWN"
    return s.split(":", 1)[0].strip() if " :" in s else s.split()[0]


def kind_for_code(code: str | None) -> ErrorKind:
    return _CODE_KINDS.get(normalize_code(code), ErrorKind.TRANSIENT_BACKEND_FAILURE)


def classify(
    err: BaseException,
    *,
    provider: Provider | None = None,
    context: str | None = None,
) -> ClassifiedError:
    """
    Map an exception raised by a backend into a ClassifiedError.

    provider: which sign-in provider was used (picks the ProviderMisconfigured hint).
    context: prefix for non-auth failures, e.g. "Failed to add task".
    """
    if isinstance(err, BackendError):
        code = normalize_code(err.code)
        kind = kind_for_code(code)
    else:
        code = None
        kind = ErrorKind.TRANSIENT_BACKEND_FAILURE

    if kind is ErrorKind.PROVIDER_MISCONFIGURED:
        message = _MISCONFIGURED_MESSAGES[provider or Provider.PASSWORD]
    else:
        message = _KIND_MESSAGES[kind]
        if context and kind in (ErrorKind.PERMISSION_DENIED, ErrorKind.TRANSIENT_BACKEND_FAILURE):
            message = f"{context}: {message}"

    return ClassifiedError(kind=kind, message=message, code=code)


def validation_error(message: str) -> ClassifiedError:
    return ClassifiedError(kind=ErrorKind.VALIDATION_FAILURE, message=message)


def credential_error(kind: ErrorKind, message: str | None = None) -> ClassifiedError:
    """Pre-check failure for sign-up/sign-in input (detected before any backend call)."""
    return ClassifiedError(kind=kind, message=message or _KIND_MESSAGES[kind])
