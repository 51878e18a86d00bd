"""Data models for built project metadata.

This module defines the record a successful build leaves behind. The
ProjectMetadata dataclass encapsulates everything needed to find a project
again: its name, the requested bounding box, the regions it spans, and the
paths of the composite canvas and of the two rendered images. All bounding
boxes are stored in the deployment CRS (EPSG:2154 by default).

Example:
    Creating a ProjectMetadata instance:
        >>> from firefront.db.models import ProjectMetadata
        >>> project = ProjectMetadata(
        ...     id="9b2f...",
        ...     name="massif",
        ...     bbox=(1210000.0, 6070000.0, 1235000.0, 6095000.0),
        ...     region_codes=["38", "73"],
        ...     canvas_path="/projects/massif/massif.tiff",
        ...     thematic_path="/projects/massif/massif_VEGET.jpeg",
        ...     photo_path="/projects/massif/massif_ORTHO.jpeg",
        ... )
"""

from __future__ import annotations

import dataclasses
import datetime

BBox = tuple[float, float, float, float]


def _now() -> datetime.datetime:
    return datetime.datetime.now(tz=datetime.UTC)


@dataclasses.dataclass
class ProjectMetadata:
    """Represents a composite map project the app has built.

    Attributes:
        id: Unique identifier for the project (UUID string).
        name: Project name, also the name of its folder.
        bbox: Requested extent as (xmin, ymin, xmax, ymax).
        region_codes: Codes of the regions the extent spans, sorted.
        canvas_path: Path of the 4-band composite GeoTIFF.
        thematic_path: Path of the rendered thematic JPEG.
        photo_path: Path of the orthophoto JPEG, None if not rendered.
        created_at: Timestamp when the project was built.
    """

    id: str
    name: str
    bbox: BBox
    region_codes: list[str]
    canvas_path: str
    thematic_path: str | None
    photo_path: str | None
    created_at: datetime.datetime = dataclasses.field(default_factory=_now)
