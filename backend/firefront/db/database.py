"""Database helpers and repositories for project metadata."""

from __future__ import annotations

import datetime
from typing import TYPE_CHECKING, Protocol, cast

import psycopg2
import psycopg2.extensions
import psycopg2.extras

from firefront.db import models as db_models

if TYPE_CHECKING:
    from collections.abc import Iterable

    from firefront.core import config


class ProjectRepositoryProtocol(Protocol):
    """Protocol interface for storing and retrieving project metadata.

    Implementations provide persistence for ProjectMetadata objects,
    supporting both in-memory (testing, single process) and PostgreSQL
    (production) backends.
    """

    def add(
        self,
        project: db_models.ProjectMetadata,
    ) -> db_models.ProjectMetadata: ...

    def get(self, project_id: str) -> db_models.ProjectMetadata | None: ...

    def get_by_name(self, name: str) -> db_models.ProjectMetadata | None: ...

    def all(self) -> Iterable[db_models.ProjectMetadata]: ...

    def delete(self, project_id: str) -> bool: ...


class InMemoryProjectRepository(ProjectRepositoryProtocol):
    """Simple in-memory store for tests and local development.

    Stores project metadata in a dictionary. Data is lost when the process
    exits.
    """

    def __init__(self) -> None:
        """Initialize an empty in-memory repository."""
        self._store: dict[str, db_models.ProjectMetadata] = {}

    def add(
        self, project: db_models.ProjectMetadata
    ) -> db_models.ProjectMetadata:
        """Add or update a project in the repository.

        Args:
            project: Project metadata to store.

        Returns:
            The stored project metadata.
        """
        self._store[project.id] = project
        return project

    def get(self, project_id: str) -> db_models.ProjectMetadata | None:
        return self._store.get(project_id)

    def get_by_name(self, name: str) -> db_models.ProjectMetadata | None:
        return next(
            (p for p in self._store.values() if p.name == name),
            None,
        )

    def all(self) -> Iterable[db_models.ProjectMetadata]:
        return sorted(
            self._store.values(),
            key=lambda p: p.created_at,
            reverse=True,
        )

    def delete(self, project_id: str) -> bool:
        """Remove a project.

        Returns:
            True if the project existed.
        """
        return self._store.pop(project_id, None) is not None


class PostgresProjectRepository(ProjectRepositoryProtocol):
    """PostgreSQL-backed repository for project metadata.

    Automatically creates the projects table on initialization.
    """

    CREATE_TABLE_SQL = """
    CREATE TABLE IF NOT EXISTS projects (
      id TEXT PRIMARY KEY,
      name TEXT NOT NULL UNIQUE,
      bbox_xmin DOUBLE PRECISION NOT NULL,
      bbox_ymin DOUBLE PRECISION NOT NULL,
      bbox_xmax DOUBLE PRECISION NOT NULL,
      bbox_ymax DOUBLE PRECISION NOT NULL,
      region_codes TEXT[] NOT NULL,
      canvas_path TEXT NOT NULL,
      thematic_path TEXT,
      photo_path TEXT,
      created_at TIMESTAMPTZ DEFAULT now()
    );
    """

    def __init__(self, settings: config.Settings) -> None:
        """Initialize repository with database settings.

        Args:
            settings: Application settings containing database connection URL.
        """
        self.settings = settings
        self._ensure_schema()

    def _connection(self) -> psycopg2.extensions.connection:
        return psycopg2.connect(
            cast(str, self.settings.database_url),
            cursor_factory=psycopg2.extras.RealDictCursor,
        )

    def _ensure_schema(self) -> None:
        with self._connection() as conn, conn.cursor() as cur:
            cur.execute(self.CREATE_TABLE_SQL)
            conn.commit()

    def add(
        self, project: db_models.ProjectMetadata
    ) -> db_models.ProjectMetadata:
        with self._connection() as conn, conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO projects (
                    id, name, bbox_xmin, bbox_ymin, bbox_xmax, bbox_ymax,
                    region_codes, canvas_path, thematic_path, photo_path,
                    created_at
                ) VALUES (%(id)s, %(name)s, %(bbox_xmin)s, %(bbox_ymin)s,
                    %(bbox_xmax)s, %(bbox_ymax)s, %(region_codes)s,
                    %(canvas_path)s, %(thematic_path)s, %(photo_path)s,
                    %(created_at)s)
                ON CONFLICT (id) DO UPDATE SET
                    name = EXCLUDED.name,
                    bbox_xmin = EXCLUDED.bbox_xmin,
                    bbox_ymin = EXCLUDED.bbox_ymin,
                    bbox_xmax = EXCLUDED.bbox_xmax,
                    bbox_ymax = EXCLUDED.bbox_ymax,
                    region_codes = EXCLUDED.region_codes,
                    canvas_path = EXCLUDED.canvas_path,
                    thematic_path = EXCLUDED.thematic_path,
                    photo_path = EXCLUDED.photo_path;
                """,
                self._to_row(project),
            )
            conn.commit()
        return project

    def get(self, project_id: str) -> db_models.ProjectMetadata | None:
        with self._connection() as conn, conn.cursor() as cur:
            cur.execute("SELECT * FROM projects WHERE id = %s", (project_id,))
            row = cur.fetchone()
            if row is None:
                return None
            return self._from_row(cast(dict[str, object], row))

    def get_by_name(self, name: str) -> db_models.ProjectMetadata | None:
        with self._connection() as conn, conn.cursor() as cur:
            cur.execute("SELECT * FROM projects WHERE name = %s", (name,))
            row = cur.fetchone()
            if row is None:
                return None
            return self._from_row(cast(dict[str, object], row))

    def all(self) -> Iterable[db_models.ProjectMetadata]:
        with self._connection() as conn, conn.cursor() as cur:
            cur.execute("SELECT * FROM projects ORDER BY created_at DESC")
            for row in cur.fetchall():
                yield self._from_row(cast(dict[str, object], row))

    def delete(self, project_id: str) -> bool:
        with self._connection() as conn, conn.cursor() as cur:
            cur.execute("DELETE FROM projects WHERE id = %s", (project_id,))
            deleted = cur.rowcount > 0
            conn.commit()
        return deleted

    @staticmethod
    def _to_row(project: db_models.ProjectMetadata) -> dict[str, object]:
        """Convert ProjectMetadata to a parameter dictionary for SQL."""
        xmin, ymin, xmax, ymax = project.bbox
        return {
            "id": project.id,
            "name": project.name,
            "bbox_xmin": xmin,
            "bbox_ymin": ymin,
            "bbox_xmax": xmax,
            "bbox_ymax": ymax,
            "region_codes": list(project.region_codes),
            "canvas_path": project.canvas_path,
            "thematic_path": project.thematic_path,
            "photo_path": project.photo_path,
            "created_at": project.created_at,
        }

    @staticmethod
    def _from_row(row: dict[str, object]) -> db_models.ProjectMetadata:
        """Convert a database row dictionary to ProjectMetadata."""
        bbox = (
            float(cast(float, row["bbox_xmin"])),
            float(cast(float, row["bbox_ymin"])),
            float(cast(float, row["bbox_xmax"])),
            float(cast(float, row["bbox_ymax"])),
        )
        region_codes = [str(code) for code in cast(list, row["region_codes"])]
        thematic_path = row.get("thematic_path")
        photo_path = row.get("photo_path")
        created_at = cast(
            datetime.datetime | None, row.get("created_at")
        ) or datetime.datetime.now(datetime.UTC)

        return db_models.ProjectMetadata(
            id=str(row["id"]),
            name=str(row["name"]),
            bbox=bbox,
            region_codes=region_codes,
            canvas_path=str(row["canvas_path"]),
            thematic_path=str(thematic_path) if thematic_path else None,
            photo_path=str(photo_path) if photo_path else None,
            created_at=created_at,
        )


_memory_repository = InMemoryProjectRepository()


def get_project_repository(
    settings: config.Settings,
) -> ProjectRepositoryProtocol:
    """Factory function to create a project repository.

    Args:
        settings: Application settings for database connection.

    Returns:
        PostgresProjectRepository when a database URL is configured,
        otherwise the process-wide in-memory repository.
    """
    if settings.database_url:
        return PostgresProjectRepository(settings)
    return _memory_repository
