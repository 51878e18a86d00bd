"""Layer compositing engine.

Burns thematic layers onto a RasterCanvas in fixed priority order. For each
layer the engine rasterizes the layer's vector features through the
toolkit, merges classified sub-rasters, derives a per-pixel mask and writes
the masked pixels into the colour bands of the canvas. The alpha band is
never modified.

The merge, mask and overlay steps are plain numpy functions over
(3, height, width) stacks so they can be tested without touching disk.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np

from firefront.core import errors
from firefront.services import canvas as canvas_mod
from firefront.services import layers as layers_mod
from firefront.utils import gdal_helpers

if TYPE_CHECKING:
    import pathlib
    from collections.abc import Mapping, Sequence

    import numpy.typing as npt

    from firefront.core import config
    from firefront.services import progress as progress_mod
    from firefront.services import toolkit as toolkit_mod

    Stack = npt.NDArray[np.uint8]

logger = logging.getLogger(__name__)


def classify_merge(rasters: Sequence[Stack]) -> Stack:
    """Merge classified rasters, the first non-zero value winning.

    Args:
        rasters: Same-shaped stacks in precedence order.

    Returns:
        A stack holding, per pixel and band, the value of the first raster
        that is non-zero there, or 0.

    Raises:
        ValueError: If no raster is given or shapes differ.
    """
    if not rasters:
        raise ValueError("No raster to merge")
    shape = rasters[0].shape
    merged = np.zeros(shape, dtype=np.uint8)
    for raster in rasters:
        if raster.shape != shape:
            raise ValueError(f"Shape mismatch: {raster.shape} != {shape}")
        unset = merged == 0
        merged[unset] = raster[unset]
    return merged


def build_mask(stack: Stack, predicate: layers_mod.MaskPredicate) -> Stack:
    """Return a 2D boolean mask true where any band satisfies the predicate."""
    if predicate is layers_mod.MaskPredicate.NOT_WHITE:
        return np.any(stack != 255, axis=0)
    return np.any(stack > 0, axis=0)


def apply_overlay(
    colors: Stack,
    layer: Stack,
    mask: npt.NDArray[np.bool_],
    mode: layers_mod.OverlayMode,
) -> Stack:
    """Lay a layer over the canvas colour bands where the mask is set.

    Args:
        colors: Canvas bands 1-3 as a (3, h, w) stack.
        layer: Rasterized layer bands as a (3, h, w) stack.
        mask: (h, w) boolean mask.
        mode: COPY writes the layer value, BLANK writes 0.

    Returns:
        A new (3, h, w) stack; inputs are left unchanged.
    """
    result = colors.copy()
    if mode is layers_mod.OverlayMode.BLANK:
        result[:, mask] = 0
    else:
        result[:, mask] = layer[:, mask]
    return result


class LayerCompositor:
    """Burn thematic layers onto a canvas through a GeoToolkit.

    Args:
        toolkit: Vector and raster backend.
        settings: Supplies the scratch directory.
        reporter: Optional progress reporter.
    """

    def __init__(
        self,
        toolkit: toolkit_mod.GeoToolkit,
        settings: config.Settings,
        reporter: progress_mod.ProgressReporter | None = None,
    ) -> None:
        self.toolkit = toolkit
        self.settings = settings
        self.reporter = reporter

    def _scratch(
        self, layer: layers_mod.ThematicLayer, label: str
    ) -> pathlib.Path:
        return self.settings.temp_dir / f"temp_{layer.name.lower()}_{label}.tif"

    def _read_stack(self, path: pathlib.Path) -> Stack:
        return np.stack(
            [self.toolkit.read_band(path, band) for band in (1, 2, 3)]
        )

    def _rasterize(
        self,
        layer: layers_mod.ThematicLayer,
        source: pathlib.Path,
        layer_name: str,
        all_touched: bool,
        canvas: canvas_mod.RasterCanvas,
    ) -> Stack:
        if isinstance(layer.burn, layers_mod.ClassifiedBurn):
            passes = [
                (rule.label, rule.rgb, rule.where) for rule in layer.burn.rules
            ]
        else:
            passes = [("burn", layer.burn.rgb, None)]

        scratch_paths = []
        try:
            stacks = []
            for label, rgb, where in passes:
                scratch = self._scratch(layer, label)
                scratch_paths.append(scratch)
                self.toolkit.rasterize(
                    source,
                    scratch,
                    layer=layer_name,
                    bounds=canvas.bounds,
                    width=canvas.width,
                    height=canvas.height,
                    burn=rgb,
                    where=where,
                    all_touched=all_touched,
                    background=layer.category.background,
                )
                stacks.append(self._read_stack(scratch))
        finally:
            for scratch in scratch_paths:
                scratch.unlink(missing_ok=True)
        if len(stacks) == 1:
            return stacks[0]
        return classify_merge(stacks)

    def add_layer(
        self,
        canvas: canvas_mod.RasterCanvas,
        layer: layers_mod.ThematicLayer,
        source: pathlib.Path | None,
    ) -> bool:
        """Burn one layer onto the canvas.

        Args:
            canvas: Target canvas, modified in place.
            layer: Layer definition.
            source: Staged GeoPackage for the layer, or None if absent.

        Returns:
            True if the canvas was modified, False if the layer was empty
            and skipped.

        Raises:
            LayerError: If the source is missing for a mandatory layer, or
                the toolkit fails.
        """
        if source is None or not source.exists():
            if layer.optional:
                logger.info("Layer %s not staged, skipping", layer.name)
                return False
            raise errors.LayerError(layer.name, "staged file not found")

        try:
            info = self.toolkit.describe_vector(source)
            if info.feature_count == 0:
                logger.info("Layer %s is empty, skipping", layer.name)
                return False
            stack = self._rasterize(
                layer,
                source,
                info.layer_name,
                info.is_linear,
                canvas,
            )
            mask = build_mask(stack, layer.category.mask)
            colors = np.stack(
                [
                    canvas.read_band(self.toolkit, band)
                    for band in canvas_mod.COLOR_BANDS
                ]
            )
            result = apply_overlay(colors, stack, mask, layer.category.overlay)
            for offset, band in enumerate(canvas_mod.COLOR_BANDS):
                canvas.write_band(self.toolkit, band, result[offset])
        except gdal_helpers.CommandError as exc:
            raise errors.LayerError(layer.name, str(exc)) from exc
        except errors.RasterError as exc:
            raise errors.LayerError(layer.name, str(exc)) from exc

        logger.info(
            "Layer %s burned onto %s (%d pixels)",
            layer.name,
            canvas.path.name,
            int(mask.sum()),
        )
        return True

    def composite(
        self,
        canvas: canvas_mod.RasterCanvas,
        layer_paths: Mapping[str, pathlib.Path],
        layers: Sequence[layers_mod.ThematicLayer] | None = None,
    ) -> list[str]:
        """Burn every layer in priority order.

        Args:
            canvas: Target canvas.
            layer_paths: Staged GeoPackage per layer name.
            layers: Layer definitions in priority order; defaults to the
                standard catalogue.

        Returns:
            Names of the layers that modified the canvas, in order.
        """
        if layers is None:
            layers = layers_mod.default_layers(self.settings.regional_burn)
        self.settings.temp_dir.mkdir(parents=True, exist_ok=True)
        applied = []
        total = len(layers)
        for step, layer in enumerate(layers, start=1):
            if self.reporter is not None:
                self.reporter.emit(
                    "compositing", detail=layer.name, step=step, total=total
                )
            if self.add_layer(canvas, layer, layer_paths.get(layer.name)):
                applied.append(layer.name)
        return applied
