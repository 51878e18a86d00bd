"""Render project images: the thematic JPEG and the orthophoto JPEG.

The thematic image is the colour bands of the composite canvas. The
orthophoto is fetched from a WMS endpoint through a GDAL_WMS description
and gdal_translate, then resampled to the canvas size so both images are
co-registered pixel for pixel.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Protocol

import numpy as np
from PIL import Image

from firefront.core import errors
from firefront.services import canvas as canvas_mod
from firefront.utils import gdal_helpers

if TYPE_CHECKING:
    import pathlib
    from collections.abc import Callable

    from firefront.core import config
    from firefront.services import toolkit as toolkit_mod

logger = logging.getLogger(__name__)

JPEG_QUALITY = 95

WMS_TEMPLATE = """<GDAL_WMS>
  <Service name="WMS">
    <Version>1.3.0</Version>
    <ServerUrl>{url}</ServerUrl>
    <CRS>{crs}</CRS>
    <ImageFormat>image/jpeg</ImageFormat>
    <Layers>{layer}</Layers>
    <Styles></Styles>
  </Service>
  <DataWindow>
    <UpperLeftX>{xmin!r}</UpperLeftX>
    <UpperLeftY>{ymax!r}</UpperLeftY>
    <LowerRightX>{xmax!r}</LowerRightX>
    <LowerRightY>{ymin!r}</LowerRightY>
    <SizeX>{width}</SizeX>
    <SizeY>{height}</SizeY>
  </DataWindow>
  <BandsCount>3</BandsCount>
  <BlockSizeX>{block}</BlockSizeX>
  <BlockSizeY>{block}</BlockSizeY>
  <OverviewCount>0</OverviewCount>
  <ZeroBlockHttpCodes>204,400,404</ZeroBlockHttpCodes>
  <MaxConnections>5</MaxConnections>
  <Timeout>60</Timeout>
</GDAL_WMS>
"""


def _save_jpeg(rgb: np.ndarray, output: pathlib.Path) -> None:
    output.parent.mkdir(parents=True, exist_ok=True)
    image = Image.fromarray(np.ascontiguousarray(rgb))
    image.save(output, format="JPEG", quality=JPEG_QUALITY)


def export_thematic_jpeg(
    canvas: canvas_mod.RasterCanvas,
    output: pathlib.Path,
    toolkit: toolkit_mod.GeoToolkit,
) -> pathlib.Path:
    """Write the canvas colour bands as an RGB JPEG.

    Raises:
        RasterError: If a band cannot be read or the image not written.
    """
    bands = [
        canvas.read_band(toolkit, band) for band in canvas_mod.COLOR_BANDS
    ]
    try:
        _save_jpeg(np.dstack(bands), output)
    except OSError as exc:
        raise errors.RasterError(f"Cannot write {output}: {exc}") from exc
    logger.info("Thematic image written to %s", output)
    return output


class OrthophotoSource(Protocol):
    def fetch(
        self, canvas: canvas_mod.RasterCanvas, output: pathlib.Path
    ) -> pathlib.Path: ...


class WmsOrthophotoSource:
    """Orthophoto from a WMS endpoint, fetched with gdal_translate.

    Args:
        settings: Supplies the WMS URL and layer, the CRS, the retry policy
            and the scratch directory.
        toolkit: Used to read the downloaded GeoTIFF bands.
        sleep: Delay function between attempts.
    """

    def __init__(
        self,
        settings: config.Settings,
        toolkit: toolkit_mod.GeoToolkit,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings
        self.toolkit = toolkit
        self.sleep = sleep

    def describe(self, canvas: canvas_mod.RasterCanvas) -> str:
        """Return the GDAL_WMS XML covering the canvas frame."""
        bounds = canvas.bounds
        return WMS_TEMPLATE.format(
            url=self.settings.wms_url,
            crs=self.settings.crs,
            layer=self.settings.wms_layer,
            xmin=bounds.xmin,
            ymin=bounds.ymin,
            xmax=bounds.xmax,
            ymax=bounds.ymax,
            width=canvas.width,
            height=canvas.height,
            block=self.settings.slice_factor * 5,
        )

    def download(
        self, description: pathlib.Path, output: pathlib.Path
    ) -> None:
        """Translate the WMS description into a GeoTIFF, retrying.

        Raises:
            CommandError: When every attempt failed.
        """
        attempts = self.settings.orthophoto_attempts
        command = (
            "gdal_translate",
            "-of",
            "GTiff",
            "-b",
            "1",
            "-b",
            "2",
            "-b",
            "3",
            description,
            output,
        )
        for attempt in range(1, attempts + 1):
            try:
                gdal_helpers.run_command(
                    command, timeout=self.settings.command_timeout
                )
                return
            except gdal_helpers.CommandError as exc:
                logger.warning(
                    "Orthophoto download attempt %d/%d failed: %s",
                    attempt,
                    attempts,
                    exc,
                )
                if attempt == attempts:
                    raise
                self.sleep(self.settings.orthophoto_retry_delay)

    def fetch(
        self, canvas: canvas_mod.RasterCanvas, output: pathlib.Path
    ) -> pathlib.Path:
        """Fetch the orthophoto of the canvas frame as a JPEG.

        The result always has the canvas pixel size.

        Raises:
            RasterError: If the download fails or the image is unusable.
        """
        temp_dir = self.settings.temp_dir
        temp_dir.mkdir(parents=True, exist_ok=True)
        description = temp_dir / "wms_config.xml"
        downloaded = temp_dir / "orthophoto_temp.tif"
        description.write_text(self.describe(canvas), encoding="utf-8")
        try:
            self.download(description, downloaded)
            rgb = np.dstack(
                [
                    self.toolkit.read_band(downloaded, band)
                    for band in canvas_mod.COLOR_BANDS
                ]
            )
            image = Image.fromarray(np.ascontiguousarray(rgb))
            size = (canvas.width, canvas.height)
            if image.size != size:
                logger.info("Resizing orthophoto %s to %s", image.size, size)
                image = image.resize(size, Image.Resampling.BILINEAR)
            output.parent.mkdir(parents=True, exist_ok=True)
            image.save(output, format="JPEG", quality=JPEG_QUALITY)
        except gdal_helpers.CommandError as exc:
            raise errors.RasterError(
                f"Orthophoto download failed: {exc}"
            ) from exc
        except OSError as exc:
            raise errors.RasterError(f"Cannot write {output}: {exc}") from exc
        finally:
            description.unlink(missing_ok=True)
            downloaded.unlink(missing_ok=True)
        logger.info("Orthophoto written to %s", output)
        return output
