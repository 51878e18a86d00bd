"""Cut the two co-registered project images into coordinate-named tiles.

Tiles are square crops of ``slice_factor`` pixels. Each tile is named from
the kilometre coordinates of its lower-left corner in the deployment CRS,
so a tile grid lines up with the national kilometre grid. Rows are visited
from the bottom of the image upwards, giving ascending Y coordinates, and
columns from left to right. Positions whose footprint would exceed the
image are skipped.

Example:
    Slice a 1000x1000 pixel project whose lower-left corner is
    (1210000, 6070000) into 500 pixel tiles:
        >>> report = slice_images(
        ...     thematic, photo, out_dir,
        ...     lower_left=(1210000.0, 6070000.0),
        ...     slice_factor=500,
        ...     resolution=10.0,
        ... )
        >>> [(t.coord_x, t.coord_y) for t in report.tiles]
        [(1210, 6070), (1215, 6070), (1210, 6075), (1215, 6075)]
"""

from __future__ import annotations

import dataclasses
import logging
import math
import shutil
from typing import TYPE_CHECKING, NamedTuple

from PIL import Image

from firefront.core import errors

if TYPE_CHECKING:
    import pathlib

    from firefront.services import toolkit as toolkit_mod

logger = logging.getLogger(__name__)

KILOMETRE = 1000


class Tile(NamedTuple):
    coord_x: int
    coord_y: int
    size: int

    @property
    def thematic_name(self) -> str:
        return f"{self.coord_x}_{self.coord_y}_veget_{self.size}.jpeg"

    @property
    def photo_name(self) -> str:
        return f"{self.coord_x}_{self.coord_y}_{self.size}.jpeg"


@dataclasses.dataclass
class SliceReport:
    """Outcome of a slicing run.

    Attributes:
        tiles: Tiles whose two images were both written.
        failures: (file name, error message) of every failed write.
    """

    tiles: list[Tile] = dataclasses.field(default_factory=list)
    failures: list[tuple[str, str]] = dataclasses.field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


def base_coordinates(lower_left: tuple[float, float]) -> tuple[int, int]:
    """Return the kilometre coordinates of the lower-left corner."""
    x, y = lower_left
    return math.floor(x / KILOMETRE), math.floor(y / KILOMETRE)


def _open(path: pathlib.Path, kind: str) -> Image.Image:
    try:
        with Image.open(path) as image:
            image.load()
            return image.convert("RGB")
    except OSError as exc:
        raise errors.TilingError(
            f"Cannot read {kind} image {path}: {exc}"
        ) from exc


def _save(
    image: Image.Image,
    path: pathlib.Path,
    report: SliceReport,
) -> bool:
    try:
        image.save(path, format="JPEG")
    except OSError as exc:
        logger.error("Failed to save slice %s: %s", path.name, exc)
        report.failures.append((path.name, str(exc)))
        return False
    return True


def slice_images(
    thematic: pathlib.Path,
    photo: pathlib.Path,
    out_dir: pathlib.Path,
    lower_left: tuple[float, float],
    slice_factor: int,
    resolution: float,
) -> SliceReport:
    """Slice two co-registered images into tiles.

    Args:
        thematic: Thematic JPEG of the project.
        photo: Orthophoto JPEG of the project.
        out_dir: Output directory, created if needed.
        lower_left: Real-world lower-left corner of the images.
        slice_factor: Tile edge in pixels.
        resolution: Ground distance of one pixel.

    Returns:
        A SliceReport. Failed tile writes are collected, not raised.

    Raises:
        TilingError: If an image cannot be read or the two images differ
            in size.
    """
    thematic_image = _open(thematic, "thematic")
    photo_image = _open(photo, "photographic")
    if thematic_image.size != photo_image.size:
        raise errors.TilingError(
            f"Image sizes differ: {thematic_image.size} != {photo_image.size}"
        )

    out_dir.mkdir(parents=True, exist_ok=True)
    width, height = thematic_image.size
    base_x, base_y = base_coordinates(lower_left)
    step = resolution / KILOMETRE
    report = SliceReport()

    for img_y in reversed(range(0, height, slice_factor)):
        for img_x in range(0, width, slice_factor):
            if img_x + slice_factor > width or img_y + slice_factor > height:
                continue
            tile = Tile(
                coord_x=base_x + math.floor(img_x * step),
                coord_y=base_y
                + math.floor((height - img_y - slice_factor) * step),
                size=slice_factor,
            )
            box = (img_x, img_y, img_x + slice_factor, img_y + slice_factor)
            written = _save(
                thematic_image.crop(box), out_dir / tile.thematic_name, report
            )
            written = (
                _save(photo_image.crop(box), out_dir / tile.photo_name, report)
                and written
            )
            if written:
                report.tiles.append(tile)

    logger.info(
        "Sliced %d tiles into %s (%d failures)",
        len(report.tiles),
        out_dir,
        len(report.failures),
    )
    return report


def slice_project(
    project_dir: pathlib.Path,
    name: str,
    canvas_path: pathlib.Path,
    slice_factor: int,
    resolution: float,
    toolkit: toolkit_mod.GeoToolkit,
) -> SliceReport:
    """Slice the images of a built project into ``<project>/slices``.

    The slices directory is emptied first. The lower-left corner is read
    from the project canvas.

    Raises:
        TilingError: If an image is unreadable or sizes differ.
        RasterError: If the canvas bounds cannot be read.
    """
    slices_dir = project_dir / "slices"
    if slices_dir.exists():
        shutil.rmtree(slices_dir)
    slices_dir.mkdir(parents=True)
    bounds = toolkit.raster_bounds(canvas_path)
    return slice_images(
        project_dir / f"{name}_VEGET.jpeg",
        project_dir / f"{name}_ORTHO.jpeg",
        slices_dir,
        bounds.lower_left,
        slice_factor,
        resolution,
    )
