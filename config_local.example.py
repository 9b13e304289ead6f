# config_local.example.py

"""
Per-machine overrides for TaskFlow, applied on top of the environment.

Copy to `config_local.py` (gitignored) and uncomment what you need.
API keys belong in `.env`; only BACKEND and FEED_POLL_SECONDS are read from here.
"""

# Run against the in-memory backend even when Firebase keys are set (nothing is saved).
# BACKEND = "memory"

# Seconds between Firestore change-feed polls (minimum 0.1).
# FEED_POLL_SECONDS = 5.0
