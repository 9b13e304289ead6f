"""
Core (backend-agnostic) layer.

Components:
- models.py: Identity, Task and the published state values
- errors.py: error kinds and classification of backend failures
- observable.py: current-value + subscribe primitive
- ports.py: backend Protocols
- session.py: session gate (who is signed in)
- state.py: AppState container wired by the CLI bootstrap
"""
