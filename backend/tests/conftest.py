"""Shared fixtures: an in-memory GeoToolkit and small-grid settings.

FakeToolkit keeps rasters as numpy stacks keyed by path. Vector files hold
their layer description as JSON, so a description follows its file through
a move. Rasterization burns the footprint registered for a (layer name,
where-clause) pair, so compositing can be exercised pixel by pixel without
GDAL. Every raster the toolkit "writes" is touched on disk so existence
checks behave as with the real toolkit.
"""

from __future__ import annotations

import dataclasses
import json
from typing import TYPE_CHECKING, Any

import numpy as np
import pytest

from firefront.core import config, errors
from firefront.core import geometry as geo
from firefront.services import toolkit as toolkit_mod
from firefront.utils import gdal_helpers

if TYPE_CHECKING:
    import pathlib
    from collections.abc import Callable, Sequence


@dataclasses.dataclass
class FakeRaster:
    data: np.ndarray
    geotransform: geo.GeoTransform
    crs: str | None


class FakeToolkit:
    """In-memory stand-in for GdalToolkit."""

    def __init__(self) -> None:
        self.rasters: dict[pathlib.Path, FakeRaster] = {}
        self.footprints: dict[tuple[str, str | None], np.ndarray] = {}
        self.operations: list[tuple[str, Any]] = []
        self.rasterize_calls: list[dict[str, Any]] = []
        self.failing_layers: set[str] = set()

    @staticmethod
    def _touch(path: pathlib.Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.touch()

    @staticmethod
    def _write_vector(
        path: pathlib.Path, info: toolkit_mod.VectorInfo
    ) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(
            json.dumps({"vector": info._asdict()}), encoding="utf-8"
        )

    def register_vector(
        self,
        path: pathlib.Path,
        layer_name: str | None = None,
        feature_count: int = 1,
        geometry_type: str | None = "Multi Polygon",
    ) -> toolkit_mod.VectorInfo:
        info = toolkit_mod.VectorInfo(
            layer_name or path.stem, feature_count, geometry_type
        )
        self._write_vector(path, info)
        return info

    def set_footprint(
        self,
        layer_name: str,
        mask: np.ndarray,
        where: str | None = None,
    ) -> None:
        self.footprints[(layer_name, where)] = np.asarray(mask, dtype=bool)

    def _info(self, path: pathlib.Path) -> toolkit_mod.VectorInfo:
        """Read the description stored in a vector file.

        A GeoJSON FeatureCollection is named after its ``name`` member,
        falling back to the file stem, as OGR does.
        """
        try:
            document = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            document = None
        if isinstance(document, dict):
            if "vector" in document:
                return toolkit_mod.VectorInfo(**document["vector"])
            if document.get("type") == "FeatureCollection":
                return toolkit_mod.VectorInfo(
                    document.get("name") or path.stem,
                    len(document.get("features") or []),
                    "Multi Polygon",
                )
        return toolkit_mod.VectorInfo(path.stem, 1, "Multi Polygon")

    def _copy_vector(
        self, source: pathlib.Path, output: pathlib.Path
    ) -> None:
        self._write_vector(output, self._info(source))

    def convert_vector(
        self, source: pathlib.Path, output: pathlib.Path
    ) -> None:
        self.operations.append(("convert", source.name))
        self._copy_vector(source, output)

    def clip_vector(
        self,
        source: pathlib.Path,
        output: pathlib.Path,
        bbox: geo.BoundingBox,
    ) -> None:
        self.operations.append(("clip", output.name))
        self._copy_vector(source, output)

    def merge_vectors(
        self, sources: Sequence[pathlib.Path], output: pathlib.Path
    ) -> None:
        if not sources:
            raise ValueError("No datasets provided for merge")
        self.operations.append(("merge", [s.name for s in sources]))
        infos = [self._info(source) for source in sources]
        self._write_vector(
            output,
            toolkit_mod.VectorInfo(
                infos[0].layer_name,
                sum(info.feature_count for info in infos),
                infos[0].geometry_type,
            ),
        )

    def describe_vector(
        self, source: pathlib.Path
    ) -> toolkit_mod.VectorInfo:
        return self._info(source)

    def rasterize(
        self,
        source: pathlib.Path,
        output: pathlib.Path,
        *,
        layer: str,
        bounds: geo.BoundingBox,
        width: int,
        height: int,
        burn: tuple[int, int, int],
        where: str | None = None,
        all_touched: bool = False,
        background: int = 0,
    ) -> None:
        self.rasterize_calls.append(
            {
                "layer": layer,
                "where": where,
                "burn": burn,
                "all_touched": all_touched,
                "background": background,
                "size": (width, height),
            }
        )
        if layer in self.failing_layers:
            raise gdal_helpers.CommandError(f"cannot rasterize {layer}")
        data = np.full((3, height, width), background, dtype=np.uint8)
        mask = self.footprints.get((layer, where))
        if mask is not None:
            for band, value in enumerate(burn):
                data[band][mask] = value
        geotransform = (
            bounds.xmin,
            bounds.width / width,
            0.0,
            bounds.ymax,
            0.0,
            -bounds.height / height,
        )
        self._touch(output)
        self.rasters[output] = FakeRaster(data, geotransform, None)

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
        data = np.stack(
            [np.full((height, width), value, dtype=np.uint8) for value in fill]
        )
        self._touch(path)
        self.rasters[path] = FakeRaster(data, geotransform, crs)

    def _raster(self, path: pathlib.Path) -> FakeRaster:
        try:
            return self.rasters[path]
        except KeyError:
            raise errors.RasterError(f"Cannot open {path}") from None

    def raster_info(self, path: pathlib.Path) -> toolkit_mod.RasterInfo:
        raster = self._raster(path)
        count, height, width = raster.data.shape
        return toolkit_mod.RasterInfo(
            width, height, count, raster.geotransform, raster.crs
        )

    def read_band(self, path: pathlib.Path, index: int) -> np.ndarray:
        return self._raster(path).data[index - 1].copy()

    def write_band(
        self, path: pathlib.Path, index: int, data: np.ndarray
    ) -> None:
        self._raster(path).data[index - 1] = data

    def raster_bounds(self, path: pathlib.Path) -> geo.BoundingBox:
        info = self.raster_info(path)
        return geo.BoundingBox.from_geotransform(
            info.geotransform, info.width, info.height
        )


@pytest.fixture
def fake_toolkit() -> FakeToolkit:
    return FakeToolkit()


@pytest.fixture
def settings(tmp_path: pathlib.Path) -> config.Settings:
    """Settings over tmp_path with 2 pixel tiles of 10 units."""
    return config.Settings(
        projects_dir=tmp_path / "projects",
        cache_dir=tmp_path / "cache",
        temp_dir=tmp_path / "tmp",
        resource_dir=tmp_path / "resources",
        regions_source=tmp_path / "resources" / "regions.geojson",
        regions_graph_path=tmp_path / "resources" / "regions_graph.json",
        staging_dir=tmp_path / "staging",
        resolution=10.0,
        slice_factor=2,
        orthophoto_retry_delay=0.0,
    )


def square(xmin: float, ymin: float, size: float) -> dict[str, Any]:
    """GeoJSON polygon of an axis-aligned square."""
    xmax, ymax = xmin + size, ymin + size
    return {
        "type": "Polygon",
        "coordinates": [
            [
                [xmin, ymin],
                [xmax, ymin],
                [xmax, ymax],
                [xmin, ymax],
                [xmin, ymin],
            ]
        ],
    }


def write_feature_collection(
    path: pathlib.Path, features: list[dict[str, Any]]
) -> pathlib.Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        json.dumps({"type": "FeatureCollection", "features": features}),
        encoding="utf-8",
    )
    return path


def region_feature(
    code: str | None, geometry: dict[str, Any] | None, **properties: Any
) -> dict[str, Any]:
    if code is not None:
        properties["code"] = code
    return {"type": "Feature", "properties": properties, "geometry": geometry}


@pytest.fixture
def write_regions() -> Callable[..., pathlib.Path]:
    """Return a writer of GeoJSON FeatureCollections."""
    return write_feature_collection


@pytest.fixture
def make_feature() -> Callable[..., dict[str, Any]]:
    """Return a factory of region features over square extents."""

    def factory(
        code: str | None,
        xmin: float,
        ymin: float,
        size: float,
        **properties: Any,
    ) -> dict[str, Any]:
        return region_feature(code, square(xmin, ymin, size), **properties)

    return factory


@pytest.fixture
def regions_source(tmp_path: pathlib.Path) -> pathlib.Path:
    """Four regions: 01 and 02 touch, 03 overlaps 02, 04 stands alone."""
    return write_feature_collection(
        tmp_path / "resources" / "regions.geojson",
        [
            region_feature("01", square(0, 0, 40), name="Ain"),
            region_feature("02", square(40, 0, 40), nom="Aisne"),
            region_feature("03", square(60, 20, 40)),
            region_feature("04", square(1000, 1000, 40), name="Allier"),
        ],
    )
