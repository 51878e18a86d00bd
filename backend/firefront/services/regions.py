"""Region adjacency graph: build, persist, load and query.

The graph maps every administrative region code to its name, its extent
polygon and the codes of the regions it overlaps or touches. It is built
once from a GeoJSON FeatureCollection of all regions, persisted as a JSON
cache keyed by region code, and loaded wholesale for each query session.

Building evaluates the adjacency predicate for every unordered pair of
regions whose envelopes meet; an STRtree query filters out the pairs whose
bounding boxes are disjoint before any exact predicate is evaluated.

Example:
    Load (or build on first run) and query the graph:
        >>> from firefront.services.regions import RegionGraph
        >>> graph = RegionGraph.load_or_build(
        ...     cache_path=Path("resources/regions_graph.json"),
        ...     source_path=Path("resources/regions.geojson"),
        ... )
        >>> [r.code for r in graph.intersecting(bbox)]
        ['38', '73']
        >>> [r.code for r in graph.neighbors("73")]
"""

from __future__ import annotations

import dataclasses
import json
import logging
from typing import TYPE_CHECKING, Any

import pydantic
import shapely
import shapely.geometry

from firefront.core import errors
from firefront.core import geometry as geo

if TYPE_CHECKING:
    import pathlib
    from collections.abc import Iterable, Iterator

    from shapely.geometry.base import BaseGeometry

logger = logging.getLogger(__name__)

CACHE_CRS = "EPSG:2154"


@dataclasses.dataclass
class Region:
    """An administrative region and its adjacency list.

    Attributes:
        code: Unique region code.
        name: Human-readable region name.
        extent: Polygon or multipolygon covered by the region.
        neighbors: Codes of overlapping or touching regions.
    """

    code: str
    name: str
    extent: BaseGeometry
    neighbors: set[str] = dataclasses.field(default_factory=set)

    def add_neighbor(self, code: str) -> None:
        if code != self.code:
            self.neighbors.add(code)

    def intersects(self, bbox: geo.BoundingBox) -> bool:
        return geo.intersects(self.extent, bbox)

    def contains(self, bbox: geo.BoundingBox) -> bool:
        return geo.contains(self.extent, bbox)


class RegionRecord(pydantic.BaseModel):
    """Cache artifact entry for one region."""

    code: str
    name: str
    extent: str
    neighbors: list[str]


_CACHE_ADAPTER = pydantic.TypeAdapter(dict[str, RegionRecord])


def read_region_features(source_path: pathlib.Path) -> Iterator[Region]:
    """Yield regions from a GeoJSON FeatureCollection.

    Features without a ``code`` property or without geometry are skipped;
    features whose geometry cannot be parsed are logged and skipped. The
    name falls back from ``name`` to ``nom`` to the code itself.

    Raises:
        GraphCacheError: If the file is missing, unreadable, or not a
            FeatureCollection.
    """
    if not source_path.exists():
        raise errors.GraphCacheError(f"Input file not found: {source_path}")
    try:
        document = json.loads(source_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise errors.GraphCacheError(
            f"Cannot read regions source {source_path}: {exc}"
        ) from exc
    if not isinstance(document, dict) or document.get("type") != (
        "FeatureCollection"
    ):
        raise errors.GraphCacheError("GeoJSON is not a FeatureCollection")

    for feature in document.get("features") or []:
        properties = feature.get("properties") or {}
        code = properties.get("code")
        if code is None:
            continue
        code = str(code)
        name = str(properties.get("name") or properties.get("nom") or code)
        geometry = feature.get("geometry")
        if not geometry:
            continue
        try:
            extent = geo.from_geojson(geometry)
        except errors.GeometryError as exc:
            logger.warning(
                "Failed to convert geometry for region %s: %s", code, exc
            )
            continue
        yield Region(code=code, name=name, extent=extent)


class RegionGraph:
    """In-memory region adjacency graph keyed by region code."""

    def __init__(self, regions: dict[str, Region]) -> None:
        self._regions = regions

    def __len__(self) -> int:
        return len(self._regions)

    def __contains__(self, code: object) -> bool:
        return code in self._regions

    def __iter__(self) -> Iterator[Region]:
        return iter(self._regions.values())

    @property
    def codes(self) -> list[str]:
        return sorted(self._regions)

    @classmethod
    def build(cls, regions: Iterable[Region]) -> RegionGraph:
        """Build adjacency edges over all pairs of regions.

        Two regions are adjacent when their extents intersect or touch.
        Candidate pairs come from an STRtree envelope query, so pairs with
        disjoint bounding boxes are never evaluated exactly.
        """
        by_code: dict[str, Region] = {}
        for region in regions:
            if region.code in by_code:
                logger.warning("Duplicate region code %s ignored", region.code)
                continue
            by_code[region.code] = region

        ordered = [by_code[code] for code in sorted(by_code)]
        tree = shapely.STRtree([region.extent for region in ordered])
        for i, region in enumerate(ordered):
            for j in tree.query(region.extent):
                if j <= i:
                    continue
                other = ordered[int(j)]
                if geo.adjacent(region.extent, other.extent):
                    region.add_neighbor(other.code)
                    other.add_neighbor(region.code)
        logger.info("Built regions graph with %d regions", len(ordered))
        return cls(by_code)

    @classmethod
    def from_geojson(cls, source_path: pathlib.Path) -> RegionGraph:
        return cls.build(read_region_features(source_path))

    @classmethod
    def load(cls, cache_path: pathlib.Path) -> RegionGraph:
        """Load a graph from its JSON cache artifact.

        Raises:
            GraphCacheError: If the artifact is missing or malformed, or if
                its adjacency lists are inconsistent.
            DanglingNeighborError: If a neighbor code has no entry.
        """
        try:
            raw = cache_path.read_bytes()
        except OSError as exc:
            raise errors.GraphCacheError(
                f"Regions graph file not found: {cache_path}"
            ) from exc
        try:
            records = _CACHE_ADAPTER.validate_json(raw)
        except pydantic.ValidationError as exc:
            raise errors.GraphCacheError(
                f"Corrupt regions graph {cache_path}: {exc}"
            ) from exc

        for code, record in records.items():
            if record.code != code:
                raise errors.GraphCacheError(
                    f"Corrupt regions graph {cache_path}: entry '{code}' "
                    f"holds region '{record.code}'"
                )
        regions = {
            code: Region(
                code=record.code,
                name=record.name,
                extent=geo.load_wkt(record.extent),
                neighbors=set(record.neighbors),
            )
            for code, record in records.items()
        }
        graph = cls(regions)
        graph.validate()
        return graph

    @classmethod
    def load_or_build(
        cls,
        cache_path: pathlib.Path,
        source_path: pathlib.Path,
    ) -> RegionGraph:
        """Load the cached graph, building and saving it only if absent.

        An existing but corrupt cache is an error, never a trigger for a
        silent rebuild.
        """
        if cache_path.exists():
            logger.info("Loading regions graph from cache file: %s", cache_path)
            return cls.load(cache_path)
        graph = cls.from_geojson(source_path)
        graph.save(cache_path)
        return graph

    def save(self, cache_path: pathlib.Path) -> None:
        """Serialize the graph to its JSON cache artifact."""
        records = {
            code: RegionRecord(
                code=region.code,
                name=region.name,
                extent=geo.dump_wkt(region.extent),
                neighbors=sorted(region.neighbors),
            )
            for code, region in sorted(self._regions.items())
        }
        cache_path.parent.mkdir(parents=True, exist_ok=True)
        cache_path.write_bytes(_CACHE_ADAPTER.dump_json(records, indent=2))
        logger.info("Regions graph saved to: %s", cache_path)

    def validate(self) -> None:
        """Check that adjacency lists are closed, symmetric and irreflexive.

        Raises:
            DanglingNeighborError: On the first missing neighbor.
            GraphCacheError: If a region lists itself, or lists a neighbor
                that does not list it back.
        """
        for code in self.codes:
            for neighbor in sorted(self._regions[code].neighbors):
                if neighbor == code:
                    raise errors.GraphCacheError(
                        f"Region '{code}' lists itself as a neighbor"
                    )
                if neighbor not in self._regions:
                    raise errors.DanglingNeighborError(code, neighbor)
                if code not in self._regions[neighbor].neighbors:
                    raise errors.GraphCacheError(
                        f"Region '{code}' lists '{neighbor}' as a neighbor "
                        f"but '{neighbor}' does not list '{code}'"
                    )

    def get(self, code: str) -> Region:
        """Return a region by code.

        Raises:
            RegionNotFoundError: If the code is unknown.
        """
        try:
            return self._regions[code]
        except KeyError:
            raise errors.RegionNotFoundError(code) from None

    def neighbors(self, code: str) -> list[Region]:
        """Return the neighbor regions of a region, sorted by code.

        Raises:
            RegionNotFoundError: If the code is unknown.
            DanglingNeighborError: If a neighbor code is missing.
        """
        region = self.get(code)
        result = []
        for neighbor in sorted(region.neighbors):
            if neighbor not in self._regions:
                raise errors.DanglingNeighborError(code, neighbor)
            result.append(self._regions[neighbor])
        return result

    def intersecting(self, bbox: geo.BoundingBox) -> list[Region]:
        """Return every region whose extent intersects the box, by code."""
        return [
            self._regions[code]
            for code in self.codes
            if self._regions[code].intersects(bbox)
        ]

    def write_region_geojson(
        self,
        code: str,
        output_path: pathlib.Path,
        crs: str = CACHE_CRS,
        layer_name: str | None = None,
    ) -> None:
        """Write one region as a single-feature GeoJSON FeatureCollection.

        The collection is named ``layer_name`` when given, which OGR reads
        as the layer name; otherwise the layer is named after the file.

        Raises:
            RegionNotFoundError: If the code is unknown.
        """
        region = self.get(code)
        document: dict[str, Any] = {
            "type": "FeatureCollection",
            "crs": {"type": "name", "properties": {"name": crs}},
            "features": [
                {
                    "type": "Feature",
                    "geometry": shapely.geometry.mapping(region.extent),
                    "properties": {
                        "code": region.code,
                        "name": region.name,
                        "neighbors": sorted(region.neighbors),
                    },
                }
            ],
        }
        if layer_name is not None:
            document["name"] = layer_name
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(json.dumps(document), encoding="utf-8")
