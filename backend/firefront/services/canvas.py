"""Fixed 4-band project raster.

A canvas is a north-up Byte GeoTIFF covering the project bounding box at the
configured ground resolution. Bands 1-3 hold the composited colour and band
4 is a constant 255 alpha. Both pixel dimensions are multiples of the slice
factor so the rendered images tile exactly.
"""

from __future__ import annotations

import dataclasses
import logging
import math
from typing import TYPE_CHECKING

from firefront.core import errors
from firefront.core import geometry as geo

if TYPE_CHECKING:
    import pathlib

    import numpy as np
    import numpy.typing as npt

    from firefront.core import config
    from firefront.services import toolkit as toolkit_mod

logger = logging.getLogger(__name__)

BAND_COUNT = 4
COLOR_BANDS = (1, 2, 3)
ALPHA_BAND = 4
INITIAL_FILL = (0, 0, 0, 255)


@dataclasses.dataclass(frozen=True)
class RasterCanvas:
    """Geometry of a project canvas on disk.

    Attributes:
        path: GeoTIFF location.
        geotransform: (originX, pixelW, 0, originY, 0, -pixelH).
        width: Pixel columns.
        height: Pixel rows.
        band_count: Always 4.
        crs: Coordinate reference system identifier.
    """

    path: pathlib.Path
    geotransform: geo.GeoTransform
    width: int
    height: int
    band_count: int = BAND_COUNT
    crs: str | None = None

    @property
    def bounds(self) -> geo.BoundingBox:
        """Real-world extent, used as the rasterization frame."""
        return geo.BoundingBox.from_geotransform(
            self.geotransform, self.width, self.height
        )

    @property
    def resolution(self) -> float:
        return self.geotransform[1]

    def read_band(
        self, toolkit: toolkit_mod.GeoToolkit, index: int
    ) -> npt.NDArray[np.uint8]:
        return toolkit.read_band(self.path, index)

    def write_band(
        self,
        toolkit: toolkit_mod.GeoToolkit,
        index: int,
        data: npt.NDArray[np.uint8],
    ) -> None:
        if data.shape != (self.height, self.width):
            raise errors.RasterError(
                f"Band shape {data.shape} does not match canvas "
                f"{self.height}x{self.width}"
            )
        toolkit.write_band(self.path, index, data)


def canvas_dimensions(
    bbox: geo.BoundingBox,
    resolution: float,
    slice_factor: int,
) -> tuple[int, int]:
    """Return (width, height) in pixels for a bounding box.

    Raises:
        CanvasDimensionError: If either dimension is not a multiple of the
            slice factor.
    """
    width = math.ceil(bbox.width / resolution)
    height = math.ceil(bbox.height / resolution)
    if width % slice_factor or height % slice_factor:
        raise errors.CanvasDimensionError(width, height, slice_factor)
    return width, height


def create_canvas(
    bbox: geo.BoundingBox,
    settings: config.Settings,
    path: pathlib.Path,
    toolkit: toolkit_mod.GeoToolkit,
) -> RasterCanvas:
    """Create the 4-band canvas for a bounding box.

    Args:
        bbox: Project extent.
        settings: Supplies resolution, slice factor and CRS.
        path: Output GeoTIFF path; replaced if it exists.
        toolkit: Raster backend.

    Returns:
        The canvas, with bands 1-3 set to 0 and band 4 set to 255.

    Raises:
        CanvasDimensionError: If the extent does not tile exactly.
        RasterError: If the raster cannot be written.
    """
    width, height = canvas_dimensions(
        bbox, settings.resolution, settings.slice_factor
    )
    res = settings.resolution
    geotransform: geo.GeoTransform = (bbox.xmin, res, 0.0, bbox.ymax, 0.0, -res)
    path.unlink(missing_ok=True)
    toolkit.create_raster(
        path,
        width=width,
        height=height,
        geotransform=geotransform,
        crs=settings.crs,
        fill=INITIAL_FILL,
    )
    logger.info("Created %dx%d canvas %s", width, height, path)
    return RasterCanvas(
        path=path,
        geotransform=geotransform,
        width=width,
        height=height,
        crs=settings.crs,
    )


def open_canvas(
    path: pathlib.Path, toolkit: toolkit_mod.GeoToolkit
) -> RasterCanvas:
    """Read canvas geometry back from an existing raster.

    Raises:
        RasterError: If the file is missing or is not a 4-band raster.
    """
    if not path.exists():
        raise errors.RasterError(f"Canvas not found: {path}")
    info = toolkit.raster_info(path)
    if info.band_count != BAND_COUNT:
        raise errors.RasterError(
            f"{path} has {info.band_count} bands, expected {BAND_COUNT}"
        )
    return RasterCanvas(
        path=path,
        geotransform=info.geotransform,
        width=info.width,
        height=info.height,
        crs=info.crs,
    )
