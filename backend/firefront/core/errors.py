"""Exception hierarchy shared by the map builder services.

Every failure raised by the core derives from FirefrontError so the HTTP
layer can translate it into a response. Toolkit invocation failures are
reported separately as gdal_helpers.CommandError; services wrap them in
LayerError when they need to attach the layer or region being processed.
"""

from __future__ import annotations


class FirefrontError(Exception):
    """Base class for map builder failures."""


class GeometryError(FirefrontError):
    """Invalid or unparseable geometry, or an invalid bounding box."""


class GraphIntegrityError(FirefrontError):
    """The region adjacency graph cannot answer a query."""


class RegionNotFoundError(GraphIntegrityError):
    """A region code is absent from the graph."""

    def __init__(self, code: str) -> None:
        super().__init__(f"Region code '{code}' not found in the graph")
        self.code = code


class DanglingNeighborError(GraphIntegrityError):
    """A region lists a neighbor code missing from the graph."""

    def __init__(self, code: str, neighbor: str) -> None:
        super().__init__(
            f"Region '{code}' references unknown neighbor '{neighbor}'"
        )
        self.code = code
        self.neighbor = neighbor


class GraphCacheError(GraphIntegrityError):
    """The graph cache artifact or its source dataset is unusable."""


class RasterError(FirefrontError):
    """A raster could not be created, read or written."""


class CanvasDimensionError(RasterError):
    """Canvas dimensions are not multiples of the slice factor."""

    def __init__(self, width: int, height: int, slice_factor: int) -> None:
        super().__init__(
            f"Canvas size {width}x{height} must be a multiple of "
            f"{slice_factor} pixels in both dimensions"
        )
        self.width = width
        self.height = height
        self.slice_factor = slice_factor


class LayerError(FirefrontError):
    """A thematic layer failed to stage or composite."""

    def __init__(
        self,
        layer: str,
        message: str,
        region: str | None = None,
    ) -> None:
        where = f" (region {region})" if region else ""
        super().__init__(f"Layer {layer}{where}: {message}")
        self.layer = layer
        self.region = region


class TilingError(FirefrontError):
    """Source images for slicing are unreadable or inconsistent."""


class ProjectError(FirefrontError):
    """A project build or lookup cannot proceed."""


class ProjectNotFoundError(ProjectError):
    """No project is registered under the requested identifier."""

    def __init__(self, project_id: str) -> None:
        super().__init__(f"Project '{project_id}' not found")
        self.project_id = project_id
