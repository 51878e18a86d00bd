"""Region query API endpoints.

Regions are read from the adjacency graph loaded (or built on first use)
from the configured cache artifact. Coordinates are in the deployment CRS.

Example:
    List the regions a bounding box spans:
        >>> response = client.get(
        ...     "/api/regions",
        ...     params={"xmin": 1210000, "ymin": 6070000,
        ...             "xmax": 1235000, "ymax": 6095000},
        ... )
        >>> [r["code"] for r in response.json()]
        ['38', '73']
"""

import functools
import pathlib
from typing import Any

import fastapi

from firefront.core import config
from firefront.core import geometry as geo
from firefront.services import regions as regions_mod

router = fastapi.APIRouter(prefix="/api/regions", tags=["regions"])


@functools.lru_cache
def _load_graph(
    cache_path: pathlib.Path, source_path: pathlib.Path
) -> regions_mod.RegionGraph:
    return regions_mod.RegionGraph.load_or_build(cache_path, source_path)


def get_graph(
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
) -> regions_mod.RegionGraph:
    """Resolve the region graph dependency, loading it once per path."""
    return _load_graph(settings.regions_graph_path, settings.regions_source)


def _serialize(region: regions_mod.Region) -> dict[str, Any]:
    return {
        "code": region.code,
        "name": region.name,
        "bbox": list(region.extent.bounds),
        "neighbors": sorted(region.neighbors),
    }


@router.get("")
def list_intersecting_regions(
    xmin: float,
    ymin: float,
    xmax: float,
    ymax: float,
    graph: regions_mod.RegionGraph = fastapi.Depends(get_graph),  # noqa: B008
) -> list[dict[str, Any]]:
    """List every region whose extent intersects a bounding box.

    Returns:
        Region summaries sorted by code.

    Raises:
        GeometryError: If the box is empty or inverted (400).
    """
    bbox = geo.BoundingBox(xmin, ymin, xmax, ymax)
    return [_serialize(region) for region in graph.intersecting(bbox)]


@router.get("/{code}")
def get_region(
    code: str,
    graph: regions_mod.RegionGraph = fastapi.Depends(get_graph),  # noqa: B008
) -> dict[str, Any]:
    return _serialize(graph.get(code))


@router.get("/{code}/neighbors")
def get_region_neighbors(
    code: str,
    graph: regions_mod.RegionGraph = fastapi.Depends(get_graph),  # noqa: B008
) -> list[dict[str, Any]]:
    """List the regions adjacent to a region.

    Raises:
        RegionNotFoundError: If the code is unknown (404).
        DanglingNeighborError: If the graph is corrupt (500).
    """
    return [_serialize(region) for region in graph.neighbors(code)]
