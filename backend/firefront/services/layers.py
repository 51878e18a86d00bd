"""Thematic layer catalogue and burn policies.

Each thematic layer belongs to a LayerCategory. The category, not the layer
name, decides how the layer is rasterized and how it is laid over the
canvas: the background the temporary raster starts from, the predicate that
turns the rasterized pixels into a mask, and whether masked canvas pixels
receive the layer colour (COPY) or are blanked to 0 (BLANK).

A layer burns either one flat colour or a ClassifiedBurn: an ordered list of
attribute rules, each rasterized separately, where earlier rules take
precedence where they overlap.
"""

from __future__ import annotations

import dataclasses
import enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

    from firefront.core.config import RGB


class OverlayMode(enum.Enum):
    COPY = "copy"
    BLANK = "blank"


class MaskPredicate(enum.Enum):
    """Pixel test deciding which canvas pixels a layer covers."""

    NON_ZERO = "non_zero"
    NOT_WHITE = "not_white"


class LayerCategory(enum.Enum):
    """Compositing behaviour shared by every layer of a kind."""

    REGIONAL = "regional"
    VEGETATION = "vegetation"
    PARCELS = "parcels"
    TOPOGRAPHIC = "topographic"

    @property
    def background(self) -> int:
        """Initial value of the temporary rasterization bands."""
        return 255 if self is LayerCategory.TOPOGRAPHIC else 0

    @property
    def mask(self) -> MaskPredicate:
        if self is LayerCategory.TOPOGRAPHIC:
            return MaskPredicate.NOT_WHITE
        return MaskPredicate.NON_ZERO

    @property
    def overlay(self) -> OverlayMode:
        if self is LayerCategory.TOPOGRAPHIC:
            return OverlayMode.BLANK
        return OverlayMode.COPY


@dataclasses.dataclass(frozen=True)
class FlatBurn:
    """Burn every feature with a single colour."""

    rgb: RGB


@dataclasses.dataclass(frozen=True)
class BurnRule:
    """One attribute-filtered colour of a ClassifiedBurn.

    Attributes:
        label: Short rule name used for temporary file names and logs.
        where: OGR SQL where-clause selecting the features of the rule.
        rgb: Colour burned for the selected features.
    """

    label: str
    where: str
    rgb: RGB


def _quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def in_clause(field: str, values: Sequence[str]) -> str:
    return f"{field} IN ({', '.join(_quote(v) for v in values)})"


def catch_all_clause(field: str, values: Sequence[str]) -> str:
    """Select every feature not matched by an IN clause over ``values``."""
    joined = ", ".join(_quote(v) for v in values)
    return f"{field} IS NULL OR {field} NOT IN ({joined})"


@dataclasses.dataclass(frozen=True)
class ClassifiedBurn:
    """Ordered attribute rules; rule order is precedence."""

    rules: tuple[BurnRule, ...]

    @classmethod
    def by_attribute(
        cls,
        field: str,
        classes: Sequence[tuple[str, Sequence[str], RGB]],
        fallback: tuple[str, RGB],
    ) -> ClassifiedBurn:
        """Build mutually exclusive rules over one attribute.

        Args:
            field: Attribute the rules filter on.
            classes: (label, values, rgb) for each explicit class, in
                precedence order.
            fallback: (label, rgb) of the catch-all rule matching every
                feature whose value belongs to no explicit class.
        """
        rules = [
            BurnRule(label=label, where=in_clause(field, values), rgb=rgb)
            for label, values, rgb in classes
        ]
        every_value = [value for _, values, _ in classes for value in values]
        label, rgb = fallback
        rules.append(
            BurnRule(
                label=label,
                where=catch_all_clause(field, every_value),
                rgb=rgb,
            )
        )
        return cls(rules=tuple(rules))


Burn = FlatBurn | ClassifiedBurn


@dataclasses.dataclass(frozen=True)
class ThematicLayer:
    """A named layer and how it is burned onto the canvas."""

    name: str
    category: LayerCategory
    burn: Burn
    optional: bool = False


REGIONAL_LAYER = "REGION"
VEGETATION_LAYER = "FORMATION_VEGETALE"
PARCELS_LAYER = "PARCELLES_GRAPHIQUES"

TOPOGRAPHIC_LAYERS = (
    "AERODROME",
    "CONSTRUCTION_SURFACIQUE",
    "EQUIPEMENT_DE_TRANSPORT",
    "RESERVOIR",
    "TERRAIN_DE_SPORT",
    "TRONCON_DE_VOIE_FERREE",
    "ZONE_D_ESTRAN",
    "BATIMENT",
    "COURS_D_EAU",
    "PLAN_D_EAU",
    "SURFACE_HYDROGRAPHIQUE",
    "TRONCON_DE_ROUTE",
    "VOIE_NOMMEE",
)

BROADLEAF_ESSENCES = (
    "Feuillus",
    "Châtaignier",
    "Chênes sempervirents",
    "Chênes décidus",
    "Hêtre",
)
UNCLASSIFIED_ESSENCES = ("NC", "NR")

BROADLEAF_RGB: RGB = (80, 200, 120)
UNCLASSIFIED_RGB: RGB = (25, 50, 60)
OTHER_VEGETATION_RGB: RGB = (50, 200, 80)
PARCELS_RGB: RGB = (25, 50, 60)
TOPOGRAPHIC_RGB: RGB = (0, 0, 0)

VEGETATION_BURN = ClassifiedBurn.by_attribute(
    "ESSENCE",
    classes=(
        ("broadleaf", BROADLEAF_ESSENCES, BROADLEAF_RGB),
        ("unclassified", UNCLASSIFIED_ESSENCES, UNCLASSIFIED_RGB),
    ),
    fallback=("other", OTHER_VEGETATION_RGB),
)


def default_layers(regional_burn: RGB = (0, 0, 0)) -> list[ThematicLayer]:
    """Return the thematic layers in compositing priority order."""
    layers = [
        ThematicLayer(
            REGIONAL_LAYER, LayerCategory.REGIONAL, FlatBurn(regional_burn)
        ),
        ThematicLayer(
            VEGETATION_LAYER, LayerCategory.VEGETATION, VEGETATION_BURN
        ),
        ThematicLayer(
            PARCELS_LAYER, LayerCategory.PARCELS, FlatBurn(PARCELS_RGB)
        ),
    ]
    layers.extend(
        ThematicLayer(
            name,
            LayerCategory.TOPOGRAPHIC,
            FlatBurn(TOPOGRAPHIC_RGB),
            optional=True,
        )
        for name in TOPOGRAPHIC_LAYERS
    )
    return layers
