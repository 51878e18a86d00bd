"""Geospatial processing toolkit adapter.

The compositing engine, the canvas model and the staging step never call
GDAL directly. They depend on the narrow GeoToolkit protocol defined here:
vector conversion with reprojection, clipping, vector union, vector
description, rasterization with explicit burn values, raster creation and
whole-band read/write.

GdalToolkit fulfils the vector and rasterization capabilities with the GDAL
command-line utilities (through gdal_helpers.run_command) and the raster
capabilities in-process with rasterio. Raster bounds are read with rio-tiler.
Tests substitute an in-memory implementation of the same protocol.

Example:
    Rasterize a parcels layer over a 500x500 frame:
        >>> from firefront.core.geometry import BoundingBox
        >>> from firefront.services.toolkit import GdalToolkit
        >>> toolkit = GdalToolkit(crs="EPSG:2154")
        >>> info = toolkit.describe_vector(Path("PARCELLES_GRAPHIQUES.gpkg"))
        >>> toolkit.rasterize(
        ...     Path("PARCELLES_GRAPHIQUES.gpkg"),
        ...     Path("tmp/parcels.tif"),
        ...     layer=info.layer_name,
        ...     bounds=BoundingBox(0, 0, 5000, 5000),
        ...     width=500,
        ...     height=500,
        ...     burn=(25, 50, 60),
        ... )
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, NamedTuple, Protocol

import numpy as np
import rasterio
import rasterio.errors
import rasterio.transform
import rio_tiler.io as rio_tiler_io

from firefront.core import errors
from firefront.core import geometry as geo
from firefront.utils import gdal_helpers

if TYPE_CHECKING:
    import pathlib
    from collections.abc import Sequence

    import numpy.typing as npt

    RGB = tuple[int, int, int]

logger = logging.getLogger(__name__)


class VectorInfo(NamedTuple):
    """Summary of the first layer of a vector dataset."""

    layer_name: str
    feature_count: int
    geometry_type: str | None

    @property
    def is_linear(self) -> bool:
        """True for line and multi-line geometries."""
        if not self.geometry_type:
            return False
        normalized = self.geometry_type.replace(" ", "").lower()
        return normalized.endswith("linestring")


class RasterInfo(NamedTuple):
    width: int
    height: int
    band_count: int
    geotransform: geo.GeoTransform
    crs: str | None


class GeoToolkit(Protocol):
    """Capabilities the core requires from a geospatial toolkit."""

    def convert_vector(
        self, source: pathlib.Path, output: pathlib.Path
    ) -> None: ...

    def clip_vector(
        self,
        source: pathlib.Path,
        output: pathlib.Path,
        bbox: geo.BoundingBox,
    ) -> None: ...

    def merge_vectors(
        self, sources: Sequence[pathlib.Path], output: pathlib.Path
    ) -> None: ...

    def describe_vector(self, source: pathlib.Path) -> VectorInfo: ...

    def rasterize(
        self,
        source: pathlib.Path,
        output: pathlib.Path,
        *,
        layer: str,
        bounds: geo.BoundingBox,
        width: int,
        height: int,
        burn: RGB,
        where: str | None = None,
        all_touched: bool = False,
        background: int = 0,
    ) -> None: ...

    def create_raster(
        self,
        path: pathlib.Path,
        *,
        width: int,
        height: int,
        geotransform: geo.GeoTransform,
        crs: str,
        fill: Sequence[int],
    ) -> None: ...

    def raster_info(self, path: pathlib.Path) -> RasterInfo: ...

    def read_band(
        self, path: pathlib.Path, index: int
    ) -> npt.NDArray[np.uint8]: ...

    def write_band(
        self,
        path: pathlib.Path,
        index: int,
        data: npt.NDArray[np.uint8],
    ) -> None: ...

    def raster_bounds(self, path: pathlib.Path) -> geo.BoundingBox: ...


_OGR_GEOMETRY_CONFIG = (
    "--config",
    "OGR_GEOMETRY_ACCEPT_UNCLOSED_RING",
    "NO",
    "--config",
    "OGR_GEOMETRY_CORRECT_UNCLOSED_RINGS",
    "YES",
)


class GdalToolkit:
    """GeoToolkit backed by GDAL utilities, rasterio and rio-tiler.

    Args:
        crs: Target coordinate reference system for vector conversion.
        timeout: Optional timeout in seconds for each GDAL command.
    """

    def __init__(self, crs: str, timeout: float | None = None) -> None:
        self.crs = crs
        self.timeout = timeout

    def _run(self, command: Sequence[str | pathlib.Path]) -> str:
        return gdal_helpers.run_command(command, timeout=self.timeout)

    def convert_vector(
        self, source: pathlib.Path, output: pathlib.Path
    ) -> None:
        """Convert any OGR dataset to a GeoPackage in the deployment CRS.

        Raises:
            CommandError: If ogr2ogr fails.
        """
        output.parent.mkdir(parents=True, exist_ok=True)
        self._run(
            (
                "ogr2ogr",
                "-f",
                "GPKG",
                output,
                source,
                "-t_srs",
                self.crs,
                "-nlt",
                "PROMOTE_TO_MULTI",
                "-dim",
                "XY",
                "-overwrite",
                *_OGR_GEOMETRY_CONFIG,
                "--config",
                "OGR_ARC_STEPSIZE",
                "0.1",
            )
        )

    def clip_vector(
        self,
        source: pathlib.Path,
        output: pathlib.Path,
        bbox: geo.BoundingBox,
    ) -> None:
        """Clip a GeoPackage to a bounding box.

        Features whose geometry cannot be clipped are skipped by ogr2ogr.

        Raises:
            CommandError: If ogr2ogr fails.
        """
        output.parent.mkdir(parents=True, exist_ok=True)
        self._run(
            (
                "ogr2ogr",
                "-f",
                "GPKG",
                output,
                source,
                "-clipsrc",
                *(repr(value) for value in bbox.as_tuple()),
                "-nlt",
                "PROMOTE_TO_MULTI",
                "-skipfailures",
                "-overwrite",
                *_OGR_GEOMETRY_CONFIG,
                "--config",
                "OGR_ENABLE_PARTIAL_REPROJECTION",
                "YES",
            )
        )

    def merge_vectors(
        self, sources: Sequence[pathlib.Path], output: pathlib.Path
    ) -> None:
        """Union several GeoPackages into one by appending features.

        Every source is written into a single layer named after the first
        source's layer.

        Raises:
            ValueError: If no source is given.
            CommandError: If ogr2ogr fails on any source.
        """
        if not sources:
            raise ValueError("No datasets provided for merge")
        output.unlink(missing_ok=True)
        output.parent.mkdir(parents=True, exist_ok=True)
        first, *rest = sources
        layer = self.describe_vector(first).layer_name
        self._run(("ogr2ogr", "-f", "GPKG", "-nln", layer, output, first))
        for source in rest:
            self._run(
                (
                    "ogr2ogr",
                    "-f",
                    "GPKG",
                    "-append",
                    "-update",
                    "-nln",
                    layer,
                    output,
                    source,
                )
            )

    def describe_vector(self, source: pathlib.Path) -> VectorInfo:
        """Return name, feature count and geometry type of the first layer.

        Raises:
            CommandError: If ogrinfo cannot open the dataset or its report
                is not valid JSON.
        """
        report = self._run(("ogrinfo", "-json", "-so", "-al", source))
        try:
            layers = json.loads(report)["layers"]
        except (json.JSONDecodeError, KeyError, TypeError) as exc:
            raise gdal_helpers.CommandError(
                f"Unreadable ogrinfo report for {source}"
            ) from exc
        if not layers:
            raise gdal_helpers.CommandError(f"{source} has no layer")
        first = layers[0]
        geometry_fields = first.get("geometryFields") or [{}]
        return VectorInfo(
            layer_name=first["name"],
            feature_count=int(first.get("featureCount", 0)),
            geometry_type=geometry_fields[0].get("type"),
        )

    def rasterize(
        self,
        source: pathlib.Path,
        output: pathlib.Path,
        *,
        layer: str,
        bounds: geo.BoundingBox,
        width: int,
        height: int,
        burn: RGB,
        where: str | None = None,
        all_touched: bool = False,
        background: int = 0,
    ) -> None:
        """Burn a vector layer into a new 3-band Byte GeoTIFF.

        Raises:
            CommandError: If gdal_rasterize fails.
        """
        output.unlink(missing_ok=True)
        output.parent.mkdir(parents=True, exist_ok=True)
        command: list[str | pathlib.Path] = []
        for value in burn:
            command.extend(("-burn", str(value)))
        command.extend(
            (
                "-l",
                layer,
                "-ts",
                str(width),
                str(height),
                "-te",
                *(repr(value) for value in bounds.as_tuple()),
                "-ot",
                "Byte",
                "-of",
                "GTiff",
                "-a_srs",
                self.crs,
            )
        )
        if background:
            command.extend(("-init", str(background)))
        if all_touched:
            command.append("-at")
        if where:
            command.extend(("-where", where))
        self._run(("gdal_rasterize", *command, source, output))

    def create_raster(
        self,
        path: pathlib.Path,
        *,
        width: int,
        height: int,
        geotransform: geo.GeoTransform,
        crs: str,
        fill: Sequence[int],
    ) -> None:
        """Create a Byte GeoTIFF with one band per fill value.

        Raises:
            RasterError: If rasterio cannot create the file.
        """
        path.parent.mkdir(parents=True, exist_ok=True)
        profile = {
            "driver": "GTiff",
            "width": width,
            "height": height,
            "count": len(fill),
            "dtype": "uint8",
            "crs": crs,
            "transform": rasterio.transform.Affine.from_gdal(*geotransform),
        }
        try:
            with rasterio.open(path, "w", **profile) as dataset:
                for index, value in enumerate(fill, start=1):
                    dataset.write(
                        np.full((height, width), value, dtype=np.uint8),
                        index,
                    )
        except rasterio.errors.RasterioError as exc:
            raise errors.RasterError(f"Cannot create {path}: {exc}") from exc

    def raster_info(self, path: pathlib.Path) -> RasterInfo:
        try:
            with rasterio.open(path) as dataset:
                return RasterInfo(
                    width=dataset.width,
                    height=dataset.height,
                    band_count=dataset.count,
                    geotransform=tuple(dataset.transform.to_gdal()),
                    crs=dataset.crs.to_string() if dataset.crs else None,
                )
        except rasterio.errors.RasterioError as exc:
            raise errors.RasterError(f"Cannot open {path}: {exc}") from exc

    def read_band(
        self, path: pathlib.Path, index: int
    ) -> npt.NDArray[np.uint8]:
        """Read a whole band as uint8.

        Raises:
            RasterError: If the file or band cannot be read.
        """
        try:
            with rasterio.open(path) as dataset:
                return dataset.read(index).astype(np.uint8, copy=False)
        except (rasterio.errors.RasterioError, IndexError) as exc:
            raise errors.RasterError(
                f"Cannot read band {index} of {path}: {exc}"
            ) from exc

    def write_band(
        self,
        path: pathlib.Path,
        index: int,
        data: npt.NDArray[np.uint8],
    ) -> None:
        """Replace a whole band in place.

        Raises:
            RasterError: If the file or band cannot be written.
        """
        try:
            with rasterio.open(path, "r+") as dataset:
                dataset.write(data.astype(np.uint8, copy=False), index)
        except (rasterio.errors.RasterioError, IndexError, ValueError) as exc:
            raise errors.RasterError(
                f"Cannot write band {index} of {path}: {exc}"
            ) from exc

    def raster_bounds(self, path: pathlib.Path) -> geo.BoundingBox:
        """Extract the real-world extent of a raster using rio-tiler.

        Raises:
            RasterError: If the raster has no usable bounds.
        """
        try:
            with rio_tiler_io.Reader(input=str(path)) as reader:
                bounds = reader.bounds
        except rasterio.errors.RasterioError as exc:
            raise errors.RasterError(f"Cannot open {path}: {exc}") from exc
        if not bounds:
            raise errors.RasterError(f"No bounds for {path}")
        xmin, ymin, xmax, ymax = bounds
        return geo.BoundingBox(xmin, ymin, xmax, ymax)
