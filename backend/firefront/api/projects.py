"""Project build, listing, export and deletion API endpoints.

Building and exporting run the whole pipeline synchronously; the endpoints
are plain functions so FastAPI executes them in its threadpool.

Example:
    Build a project, then slice its images:
        >>> response = client.post(
        ...     "/api/projects",
        ...     json={
        ...         "name": "massif",
        ...         "bbox": [1210000, 6070000, 1235000, 6095000],
        ...     },
        ... )
        >>> project_id = response.json()["id"]
        >>> client.post(f"/api/projects/{project_id}/export").json()
        >>> # Returns: {"tiles": 25, "failures": []}
"""

import dataclasses
from typing import Any

import fastapi
import pydantic

from firefront.api import regions as regions_api
from firefront.core import config
from firefront.core import geometry as geo
from firefront.db import database
from firefront.db import models as db_models
from firefront.services import pipeline, rendering
from firefront.services import regions as regions_mod
from firefront.services import toolkit as toolkit_mod

router = fastapi.APIRouter(prefix="/api/projects", tags=["projects"])


class ProjectRequest(pydantic.BaseModel):
    name: str
    bbox: tuple[float, float, float, float]
    overwrite: bool = False


def _get_repo(
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
) -> database.ProjectRepositoryProtocol:
    """Resolve the project repository dependency.

    Args:
        settings: Application settings (injected via FastAPI Depends).

    Returns:
        ProjectRepositoryProtocol implementation
            (PostgresProjectRepository when a database URL is set).
    """
    return database.get_project_repository(settings)


def get_toolkit(
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
) -> toolkit_mod.GeoToolkit:
    return toolkit_mod.GdalToolkit(settings.crs, settings.command_timeout)


def get_builder(
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
    graph: regions_mod.RegionGraph = fastapi.Depends(regions_api.get_graph),  # noqa: B008
    toolkit: toolkit_mod.GeoToolkit = fastapi.Depends(get_toolkit),  # noqa: B008
    repo: database.ProjectRepositoryProtocol = fastapi.Depends(_get_repo),  # noqa: B008
) -> pipeline.ProjectBuilder:
    """Assemble a ProjectBuilder from the injected collaborators."""
    return pipeline.ProjectBuilder(
        settings,
        graph,
        toolkit,
        repo,
        orthophoto=rendering.WmsOrthophotoSource(settings, toolkit),
    )


def _serialize(project: db_models.ProjectMetadata) -> dict[str, Any]:
    data = dataclasses.asdict(project)
    data["bbox"] = list(project.bbox)
    data["created_at"] = project.created_at.isoformat()
    return data


@router.post("", status_code=201)
def create_project(
    request: ProjectRequest,
    builder: pipeline.ProjectBuilder = fastapi.Depends(get_builder),  # noqa: B008
) -> dict[str, Any]:
    """Build a composite map project for a bounding box.

    Raises:
        ProjectError: Invalid name, existing project or no region (400).
        GeometryError: Invalid bounding box (400).
        CanvasDimensionError: Box does not tile exactly (400).
        LayerError: A layer failed to stage or composite (500).
    """
    bbox = geo.BoundingBox(*request.bbox)
    project = builder.build(request.name, bbox, overwrite=request.overwrite)
    return _serialize(project)


@router.get("")
def list_projects(
    repo: database.ProjectRepositoryProtocol = fastapi.Depends(_get_repo),  # noqa: B008
) -> list[dict[str, Any]]:
    return [_serialize(project) for project in repo.all()]


@router.get("/{project_id}")
def get_project(
    project_id: str,
    repo: database.ProjectRepositoryProtocol = fastapi.Depends(_get_repo),  # noqa: B008
) -> dict[str, Any]:
    project = repo.get(project_id)
    if project is None:
        raise fastapi.HTTPException(
            status_code=404,
            detail="Project not found",
        )
    return _serialize(project)


@router.delete("/{project_id}", status_code=204)
def delete_project(
    project_id: str,
    builder: pipeline.ProjectBuilder = fastapi.Depends(get_builder),  # noqa: B008
) -> fastapi.Response:
    builder.delete(project_id)
    return fastapi.Response(status_code=204)


@router.post("/{project_id}/export")
def export_project(
    project_id: str,
    builder: pipeline.ProjectBuilder = fastapi.Depends(get_builder),  # noqa: B008
) -> dict[str, Any]:
    """Slice the project images into kilometre-grid tiles.

    Returns:
        Number of tiles written and the (file, error) pairs that failed.
    """
    report = builder.export(project_id)
    return {
        "tiles": len(report.tiles),
        "failures": [
            {"file": name, "error": message}
            for name, message in report.failures
        ],
    }
