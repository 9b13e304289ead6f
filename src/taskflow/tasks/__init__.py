"""
Task subsystem.

Components:
- task_list.py: live, ordered task list for the bound identity
- task_api.py: small high-level helpers used by the presentation layer
"""
