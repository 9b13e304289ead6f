"""
Backend adapters implementing core.ports.

- memory.py: in-process backend (offline demo fallback, tests)
- firebase.py: Firebase Auth + Firestore over their REST APIs
"""
