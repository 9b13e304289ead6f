"""TaskFlow: personal task list kept in sync through a hosted backend."""

__version__ = "0.1.0"
