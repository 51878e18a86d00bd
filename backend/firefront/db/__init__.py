"""Project metadata persistence.

Repositories record every built project so it can be listed, exported and
deleted later. PostgresProjectRepository is used when a database URL is
configured; otherwise metadata lives in a process-wide in-memory store.

Example:
    Use in a service or FastAPI dependency:
        >>> from firefront.db import database
        >>> repo = database.get_project_repository(settings)
"""
