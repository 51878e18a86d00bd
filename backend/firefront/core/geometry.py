"""Geometry primitives: bounding boxes, WKT round-trip and predicates.

All coordinates are expressed in the deployment's projected coordinate
reference system (EPSG:2154 by default). Geometries are shapely objects;
this module only adds the project's value types and converts shapely
parse failures into GeometryError.

Example:
    Build a box and test it against a region extent:
        >>> from firefront.core.geometry import BoundingBox, load_wkt
        >>> bbox = BoundingBox(1210000.0, 6070000.0, 1235000.0, 6095000.0)
        >>> bbox.width
        25000.0
        >>> extent = load_wkt("POLYGON((1200000 6060000, ...))")
        >>> intersects(extent, bbox)
"""

from __future__ import annotations

import dataclasses
import math
from typing import TYPE_CHECKING, Any

import shapely
import shapely.errors
import shapely.geometry
import shapely.wkt

from firefront.core import errors

if TYPE_CHECKING:
    from shapely.geometry.base import BaseGeometry

GeoTransform = tuple[float, float, float, float, float, float]


@dataclasses.dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned rectangle in projected coordinates.

    Attributes:
        xmin: Western edge.
        ymin: Southern edge.
        xmax: Eastern edge, strictly greater than xmin.
        ymax: Northern edge, strictly greater than ymin.

    Raises:
        GeometryError: If the box is empty, inverted or not finite.
    """

    xmin: float
    ymin: float
    xmax: float
    ymax: float

    def __post_init__(self) -> None:
        values = (self.xmin, self.ymin, self.xmax, self.ymax)
        if not all(math.isfinite(v) for v in values):
            raise errors.GeometryError(f"Non-finite bounding box {values}")
        if self.xmax <= self.xmin or self.ymax <= self.ymin:
            raise errors.GeometryError(
                f"Invalid bounding box {values}: max must exceed min"
            )

    @classmethod
    def from_geotransform(
        cls,
        geotransform: GeoTransform,
        width: int,
        height: int,
    ) -> BoundingBox:
        """Compute the extent covered by a north-up raster."""
        origin_x, pixel_w, _, origin_y, _, pixel_h = geotransform
        return cls(
            xmin=origin_x,
            ymin=origin_y + pixel_h * height,
            xmax=origin_x + pixel_w * width,
            ymax=origin_y,
        )

    @property
    def width(self) -> float:
        return self.xmax - self.xmin

    @property
    def height(self) -> float:
        return self.ymax - self.ymin

    @property
    def lower_left(self) -> tuple[float, float]:
        return (self.xmin, self.ymin)

    @property
    def upper_left(self) -> tuple[float, float]:
        return (self.xmin, self.ymax)

    def as_tuple(self) -> tuple[float, float, float, float]:
        """Return (xmin, ymin, xmax, ymax)."""
        return (self.xmin, self.ymin, self.xmax, self.ymax)

    def to_wkt(self) -> str:
        """Return the box as a closed five-point WKT polygon."""
        ring = [
            (self.xmin, self.ymin),
            (self.xmax, self.ymin),
            (self.xmax, self.ymax),
            (self.xmin, self.ymax),
            (self.xmin, self.ymin),
        ]
        points = ", ".join(f"{x} {y}" for x, y in ring)
        return f"POLYGON(({points}))"

    def to_geometry(self) -> shapely.geometry.Polygon:
        """Return the equivalent shapely polygon."""
        return shapely.geometry.box(self.xmin, self.ymin, self.xmax, self.ymax)


def load_wkt(wkt: str) -> BaseGeometry:
    """Parse WKT into a shapely geometry.

    Raises:
        GeometryError: If the text is not valid WKT.
    """
    try:
        return shapely.wkt.loads(wkt)
    except (shapely.errors.ShapelyError, TypeError, ValueError) as exc:
        raise errors.GeometryError(f"Invalid WKT: {exc}") from exc


def dump_wkt(geometry: BaseGeometry) -> str:
    return shapely.wkt.dumps(geometry)


def from_geojson(mapping: dict[str, Any]) -> BaseGeometry:
    """Build a shapely geometry from a GeoJSON geometry mapping.

    Raises:
        GeometryError: If the mapping is not a valid GeoJSON geometry.
    """
    try:
        geometry = shapely.geometry.shape(mapping)
    except (
        shapely.errors.ShapelyError,
        AttributeError,
        IndexError,
        KeyError,
        TypeError,
        ValueError,
    ) as exc:
        raise errors.GeometryError(f"Invalid GeoJSON geometry: {exc}") from exc
    if geometry.is_empty:
        raise errors.GeometryError("Empty GeoJSON geometry")
    return geometry


def intersects(geometry: BaseGeometry, bbox: BoundingBox) -> bool:
    return bool(geometry.intersects(bbox.to_geometry()))


def contains(geometry: BaseGeometry, bbox: BoundingBox) -> bool:
    return bool(geometry.contains(bbox.to_geometry()))


def adjacent(first: BaseGeometry, second: BaseGeometry) -> bool:
    """Return True when two extents overlap or share a boundary.

    Raises:
        GeometryError: If the predicate cannot be evaluated.
    """
    try:
        return bool(first.intersects(second) or first.touches(second))
    except shapely.errors.ShapelyError as exc:
        raise errors.GeometryError(f"Predicate evaluation failed: {exc}") from exc
