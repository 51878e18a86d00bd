"""Per-region layer staging.

Staging turns the raw vector datasets of one region into GeoPackages that
are reprojected to the deployment CRS and clipped to the project bounding
box. Regions are staged one at a time; between regions the scratch
directory is reset, keeping only the staged GeoPackages. Once every region
is staged, same-named layers are unioned into the project resources folder
(or simply moved there when the project spans a single region).
"""

from __future__ import annotations

import logging
import shutil
from typing import TYPE_CHECKING, Protocol

from firefront.core import errors
from firefront.services import layers as layers_mod
from firefront.utils import gdal_helpers

if TYPE_CHECKING:
    import pathlib
    from collections.abc import Mapping, Sequence

    from firefront.core import config
    from firefront.core import geometry as geo
    from firefront.services import regions as regions_mod
    from firefront.services import toolkit as toolkit_mod

logger = logging.getLogger(__name__)

SOURCE_SUFFIXES = (".shp", ".gpkg", ".geojson")


class LayerStager(Protocol):
    """Deliver clipped, reprojected GeoPackages for one region."""

    def stage_region(
        self,
        code: str,
        bbox: geo.BoundingBox,
        layers: Sequence[layers_mod.ThematicLayer],
    ) -> dict[str, pathlib.Path]: ...


def find_layer_source(
    root: pathlib.Path, layer_name: str
) -> pathlib.Path | None:
    """Search a directory tree for ``<layer_name>.<shp|gpkg|geojson>``.

    The walk uses an explicit stack and visits entries in sorted order, so
    the first match is deterministic. Returns None if nothing matches.
    """
    if not root.is_dir():
        return None
    wanted = {f"{layer_name}{suffix}".lower() for suffix in SOURCE_SUFFIXES}
    stack = [root]
    while stack:
        directory = stack.pop()
        subdirectories = []
        for entry in sorted(directory.iterdir()):
            if entry.is_dir():
                subdirectories.append(entry)
            elif entry.name.lower() in wanted:
                return entry
        stack.extend(reversed(subdirectories))
    return None


class DirectoryLayerStager:
    """Stage layers from ``<staging_dir>/<region code>/`` source trees.

    Args:
        toolkit: Vector backend.
        settings: Supplies the staging and scratch directories.
        graph: Region graph used to export the regional boundary.
    """

    def __init__(
        self,
        toolkit: toolkit_mod.GeoToolkit,
        settings: config.Settings,
        graph: regions_mod.RegionGraph,
    ) -> None:
        self.toolkit = toolkit
        self.settings = settings
        self.graph = graph

    @property
    def temp_dir(self) -> pathlib.Path:
        return self.settings.temp_dir

    def _clip(
        self,
        code: str,
        layer_name: str,
        source: pathlib.Path,
        bbox: geo.BoundingBox,
    ) -> pathlib.Path:
        converted = self.temp_dir / f"{code}_{layer_name}_full.gpkg"
        output = self.temp_dir / f"{code}_{layer_name}.gpkg"
        try:
            self.toolkit.convert_vector(source, converted)
            self.toolkit.clip_vector(converted, output, bbox)
        except gdal_helpers.CommandError as exc:
            raise errors.LayerError(layer_name, str(exc), region=code) from exc
        finally:
            converted.unlink(missing_ok=True)
        return output

    def stage_regional(
        self, code: str, bbox: geo.BoundingBox
    ) -> pathlib.Path:
        """Stage the boundary of a region as the regional layer."""
        boundary = self.temp_dir / f"{code}.geojson"
        self.graph.write_region_geojson(
            code,
            boundary,
            crs=self.settings.crs,
            layer_name=layers_mod.REGIONAL_LAYER,
        )
        return self._clip(code, layers_mod.REGIONAL_LAYER, boundary, bbox)

    def stage_region(
        self,
        code: str,
        bbox: geo.BoundingBox,
        layers: Sequence[layers_mod.ThematicLayer],
    ) -> dict[str, pathlib.Path]:
        """Stage every layer of one region.

        Returns:
            Staged GeoPackage per layer name. Optional layers without a
            source file are left out.

        Raises:
            RegionNotFoundError: If the region is not in the graph.
            LayerError: If a mandatory layer has no source file or the
                toolkit fails.
        """
        self.temp_dir.mkdir(parents=True, exist_ok=True)
        region_root = self.settings.staging_dir / code
        staged: dict[str, pathlib.Path] = {}
        for layer in layers:
            if layer.category is layers_mod.LayerCategory.REGIONAL:
                staged[layer.name] = self.stage_regional(code, bbox)
                continue
            source = find_layer_source(region_root, layer.name)
            if source is None:
                if layer.optional:
                    logger.info(
                        "No source for layer %s in region %s", layer.name, code
                    )
                    continue
                raise errors.LayerError(
                    layer.name,
                    f"no source file under {region_root}",
                    region=code,
                )
            staged[layer.name] = self._clip(code, layer.name, source, bbox)
        logger.info("Staged %d layers for region %s", len(staged), code)
        return staged


def clean_temp_except_gpkg(temp_dir: pathlib.Path) -> None:
    """Remove everything in the scratch directory except GeoPackages."""
    if not temp_dir.exists():
        return
    for entry in temp_dir.iterdir():
        if entry.is_dir():
            shutil.rmtree(entry)
        elif entry.suffix.lower() != ".gpkg":
            entry.unlink()


def merge_staged(
    toolkit: toolkit_mod.GeoToolkit,
    staged: Mapping[str, Sequence[pathlib.Path]],
    resources_dir: pathlib.Path,
) -> dict[str, pathlib.Path]:
    """Union same-named layers into the project resources folder.

    A layer staged for a single region is moved into place; layers staged
    for several regions are appended into one GeoPackage.

    Raises:
        LayerError: If the toolkit fails to merge a layer.
    """
    resources_dir.mkdir(parents=True, exist_ok=True)
    merged: dict[str, pathlib.Path] = {}
    for name, paths in staged.items():
        if not paths:
            continue
        output = resources_dir / f"{name}.gpkg"
        if len(paths) == 1:
            output.unlink(missing_ok=True)
            shutil.move(paths[0], output)
        else:
            try:
                toolkit.merge_vectors(list(paths), output)
            except gdal_helpers.CommandError as exc:
                raise errors.LayerError(name, str(exc)) from exc
        merged[name] = output
    return merged
