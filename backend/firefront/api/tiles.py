"""XYZ preview tiles of project canvases.

Tiles are rendered on demand from the composite GeoTIFF with rio-tiler,
which reprojects the EPSG:2154 canvas into Web Mercator tiles. Only the
three colour bands are rendered.

Example:
    Request a preview tile:
        >>> response = client.get("/tiles/projects/abc123/12/2120/1480.png")
        >>> # Returns PNG image bytes with Content-Type: image/png
"""

import fastapi
from fastapi import responses
from rio_tiler import errors as rio_tiler_errors
from rio_tiler import io as rio_tiler_io

from firefront.core import config
from firefront.db import database
from firefront.db import models as db_models

router = fastapi.APIRouter(prefix="/tiles", tags=["tiles"])


def _get_repo(
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
) -> database.ProjectRepositoryProtocol:
    return database.get_project_repository(settings)


@router.get("/projects/{project_id}/{z}/{x}/{y}.png")
def project_tile(
    project_id: str,
    z: int,
    x: int,
    y: int,
    repo: database.ProjectRepositoryProtocol = fastapi.Depends(_get_repo),  # noqa: B008
) -> responses.Response:
    """Render an XYZ tile of a project canvas as PNG.

    Args:
        project_id: Identifier of a built project.
        z: Zoom level.
        x: Tile X coordinate.
        y: Tile Y coordinate.
        repo: Project repository (injected via FastAPI Depends).

    Returns:
        PNG image response. Content-Type is image/png.

    Raises:
        HTTPException: If the project is unknown or the tile lies outside
            the canvas (404).
    """
    project: db_models.ProjectMetadata | None = repo.get(project_id)
    if not project:
        raise fastapi.HTTPException(
            status_code=404,
            detail="Project not found",
        )

    try:
        with rio_tiler_io.Reader(input=project.canvas_path) as reader:
            tile = reader.tile(x, y, z, indexes=(1, 2, 3))
    except rio_tiler_errors.TileOutsideBounds as exc:
        raise fastapi.HTTPException(status_code=404, detail=str(exc)) from exc

    return responses.Response(
        content=tile.render(img_format="PNG"),
        media_type="image/png",
    )
