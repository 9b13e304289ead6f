# config.example.py

"""
Documentation-only module (safe to commit).

The real configuration is loaded from environment variables (optionally via a local .env file).
Do NOT commit real secrets. Use:
- .env (local, gitignored)
- config_local.py (local safe overrides, gitignored)

This file exists to make the repo self-documenting even without opening .env.
"""

ENV_VARS = {
    # App / logging
    "TASKFLOW_APP_NAME": "App display name (default: TaskFlow).",
    "TASKFLOW_LOG_LEVEL": "Console logging level (default: WARNING; the log file gets everything).",
    "TASKFLOW_DATA_DIR": "Local data directory for logs and the session file (default: .local/taskflow).",
    # Backend
    "TASKFLOW_BACKEND": "auto | firebase | memory (default: auto = Firebase when configured).",
    # Firebase
    "TASKFLOW_FIREBASE_API_KEY": "Web API key of the Firebase project (FIREBASE_API_KEY also accepted).",
    "TASKFLOW_FIREBASE_PROJECT_ID": "Firebase project id (FIREBASE_PROJECT_ID also accepted).",
    "TASKFLOW_FIREBASE_AUTH_URL": "Identity Toolkit base URL (default: https://identitytoolkit.googleapis.com/v1).",
    "TASKFLOW_FIREBASE_TOKEN_URL": "Secure Token base URL (default: https://securetoken.googleapis.com/v1).",
    "TASKFLOW_FIRESTORE_URL": "Firestore REST base URL (default: https://firestore.googleapis.com/v1).",
    "TASKFLOW_TASKS_COLLECTION": "Firestore collection holding tasks (default: todos).",
    "TASKFLOW_SESSION_PATH": (
        "Persisted session (refresh token!) path (default: <data_dir>/session.json)."
    ),
    # Tuning
    "TASKFLOW_FEED_POLL_SECONDS": "Change feed polling interval in seconds (default: 2.0).",
    "TASKFLOW_HTTP_TIMEOUT_SECONDS": "HTTP timeout for backend calls (default: 10.0).",
    "TASKFLOW_MIN_PASSWORD_LENGTH": "Sign-up password length pre-check (default: 6).",
}
