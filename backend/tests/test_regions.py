"""Tests for the region adjacency graph.

Covers building from a GeoJSON FeatureCollection, adjacency symmetry,
intersection queries, the JSON cache round-trip and the failure modes of
a corrupt or inconsistent cache.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

import pytest

from firefront.core import errors
from firefront.core import geometry as geo
from firefront.services import regions as regions_mod

if TYPE_CHECKING:
    import pathlib
    from collections.abc import Callable


def test_build_adjacency(regions_source: pathlib.Path) -> None:
    graph = regions_mod.RegionGraph.from_geojson(regions_source)
    assert graph.codes == ["01", "02", "03", "04"]
    assert graph.get("01").neighbors == {"02"}
    assert graph.get("02").neighbors == {"01", "03"}
    assert graph.get("03").neighbors == {"02"}
    assert graph.get("04").neighbors == set()


def test_adjacency_is_symmetric(regions_source: pathlib.Path) -> None:
    graph = regions_mod.RegionGraph.from_geojson(regions_source)
    for region in graph:
        assert region.code not in region.neighbors
        for neighbor in region.neighbors:
            assert region.code in graph.get(neighbor).neighbors


def test_name_fallbacks(regions_source: pathlib.Path) -> None:
    graph = regions_mod.RegionGraph.from_geojson(regions_source)
    assert graph.get("01").name == "Ain"
    assert graph.get("02").name == "Aisne"
    assert graph.get("03").name == "03"


def test_features_without_code_or_geometry_are_skipped(
    tmp_path: pathlib.Path,
    write_regions: Callable[..., pathlib.Path],
    make_feature: Callable[..., dict[str, Any]],
) -> None:
    source = write_regions(
        tmp_path / "regions.geojson",
        [
            make_feature("01", 0, 0, 10),
            make_feature(None, 10, 0, 10),
            {"type": "Feature", "properties": {"code": "02"}, "geometry": None},
            {
                "type": "Feature",
                "properties": {"code": "03"},
                "geometry": {"type": "Blob", "coordinates": []},
            },
        ],
    )
    graph = regions_mod.RegionGraph.from_geojson(source)
    assert graph.codes == ["01"]


def test_numeric_codes_are_strings(
    tmp_path: pathlib.Path,
    write_regions: Callable[..., pathlib.Path],
    make_feature: Callable[..., dict[str, Any]],
) -> None:
    feature = make_feature(None, 0, 0, 10)
    feature["properties"]["code"] = 38
    graph = regions_mod.RegionGraph.from_geojson(
        write_regions(tmp_path / "r.geojson", [feature])
    )
    assert graph.codes == ["38"]


def test_non_feature_collection_is_fatal(tmp_path: pathlib.Path) -> None:
    source = tmp_path / "regions.geojson"
    source.write_text(json.dumps({"type": "Feature"}), encoding="utf-8")
    with pytest.raises(errors.GraphCacheError):
        regions_mod.RegionGraph.from_geojson(source)


def test_missing_source_is_fatal(tmp_path: pathlib.Path) -> None:
    with pytest.raises(errors.GraphCacheError):
        regions_mod.RegionGraph.load_or_build(
            tmp_path / "graph.json", tmp_path / "missing.geojson"
        )


def test_intersecting_sorted_by_code(regions_source: pathlib.Path) -> None:
    graph = regions_mod.RegionGraph.from_geojson(regions_source)
    found = graph.intersecting(geo.BoundingBox(30, 10, 70, 30))
    assert [region.code for region in found] == ["01", "02", "03"]
    assert graph.intersecting(geo.BoundingBox(500, 500, 600, 600)) == []


def test_intersecting_matches_extent_predicate(
    regions_source: pathlib.Path,
) -> None:
    graph = regions_mod.RegionGraph.from_geojson(regions_source)
    bbox = geo.BoundingBox(35, 35, 45, 45)
    box = bbox.to_geometry()
    expected = {r.code for r in graph if r.extent.intersects(box)}
    assert {r.code for r in graph.intersecting(bbox)} == expected


def test_neighbors_resolved_and_sorted(regions_source: pathlib.Path) -> None:
    graph = regions_mod.RegionGraph.from_geojson(regions_source)
    assert [r.code for r in graph.neighbors("02")] == ["01", "03"]


def test_unknown_code(regions_source: pathlib.Path) -> None:
    graph = regions_mod.RegionGraph.from_geojson(regions_source)
    with pytest.raises(errors.RegionNotFoundError):
        graph.get("99")
    with pytest.raises(errors.RegionNotFoundError):
        graph.neighbors("99")


def test_cache_round_trip(
    regions_source: pathlib.Path, tmp_path: pathlib.Path
) -> None:
    graph = regions_mod.RegionGraph.from_geojson(regions_source)
    cache = tmp_path / "cache" / "regions_graph.json"
    graph.save(cache)

    raw = json.loads(cache.read_text(encoding="utf-8"))
    assert raw["02"]["neighbors"] == ["01", "03"]
    assert raw["01"]["extent"].startswith("POLYGON")

    loaded = regions_mod.RegionGraph.load(cache)
    assert loaded.codes == graph.codes
    for region in graph:
        other = loaded.get(region.code)
        assert other.name == region.name
        assert other.neighbors == region.neighbors
        assert other.extent.equals(region.extent)


def test_load_or_build_writes_then_reuses_cache(
    regions_source: pathlib.Path, tmp_path: pathlib.Path
) -> None:
    cache = tmp_path / "regions_graph.json"
    built = regions_mod.RegionGraph.load_or_build(cache, regions_source)
    assert cache.exists()

    regions_source.unlink()
    loaded = regions_mod.RegionGraph.load_or_build(cache, regions_source)
    assert loaded.codes == built.codes


def test_corrupt_cache_is_fatal(
    regions_source: pathlib.Path, tmp_path: pathlib.Path
) -> None:
    cache = tmp_path / "regions_graph.json"
    cache.write_text("{not json", encoding="utf-8")
    with pytest.raises(errors.GraphCacheError):
        regions_mod.RegionGraph.load_or_build(cache, regions_source)
    assert cache.read_text(encoding="utf-8") == "{not json"


def test_dangling_neighbor_is_reported(tmp_path: pathlib.Path) -> None:
    cache = tmp_path / "regions_graph.json"
    cache.write_text(
        json.dumps(
            {
                "01": {
                    "code": "01",
                    "name": "Ain",
                    "extent": "POLYGON ((0 0, 1 0, 1 1, 0 1, 0 0))",
                    "neighbors": ["77"],
                }
            }
        ),
        encoding="utf-8",
    )
    with pytest.raises(errors.DanglingNeighborError) as excinfo:
        regions_mod.RegionGraph.load(cache)
    assert excinfo.value.neighbor == "77"


SQUARE_WKT = "POLYGON ((0 0, 1 0, 1 1, 0 1, 0 0))"


def _record(code: str, neighbors: list[str]) -> dict[str, Any]:
    return {
        "code": code,
        "name": code,
        "extent": SQUARE_WKT,
        "neighbors": neighbors,
    }


@pytest.mark.parametrize(
    ("records", "message"),
    [
        (
            {"A": _record("A", ["B"]), "B": _record("B", [])},
            "does not list 'A'",
        ),
        ({"A": _record("A", ["A"])}, "lists itself"),
        ({"A": _record("Z", [])}, "entry 'A' holds region 'Z'"),
    ],
    ids=["asymmetric", "self-neighbor", "key-mismatch"],
)
def test_inconsistent_cache_is_rejected(
    tmp_path: pathlib.Path, records: dict[str, Any], message: str
) -> None:
    cache = tmp_path / "regions_graph.json"
    cache.write_text(json.dumps(records), encoding="utf-8")
    with pytest.raises(errors.GraphCacheError, match=message):
        regions_mod.RegionGraph.load(cache)


def test_neighbors_reports_dangling_entry() -> None:
    region = regions_mod.Region(
        code="01",
        name="Ain",
        extent=geo.BoundingBox(0, 0, 1, 1).to_geometry(),
        neighbors={"02"},
    )
    graph = regions_mod.RegionGraph({"01": region})
    with pytest.raises(errors.DanglingNeighborError):
        graph.neighbors("01")


def test_write_region_geojson(
    regions_source: pathlib.Path, tmp_path: pathlib.Path
) -> None:
    graph = regions_mod.RegionGraph.from_geojson(regions_source)
    output = tmp_path / "out" / "02.geojson"
    graph.write_region_geojson("02", output, crs="EPSG:2154")
    document = json.loads(output.read_text(encoding="utf-8"))
    assert document["type"] == "FeatureCollection"
    assert document["crs"]["properties"]["name"] == "EPSG:2154"
    (feature,) = document["features"]
    assert feature["properties"] == {
        "code": "02",
        "name": "Aisne",
        "neighbors": ["01", "03"],
    }
    assert geo.from_geojson(feature["geometry"]).equals(
        graph.get("02").extent
    )


def test_write_region_geojson_names_layer(
    regions_source: pathlib.Path, tmp_path: pathlib.Path
) -> None:
    graph = regions_mod.RegionGraph.from_geojson(regions_source)
    unnamed = tmp_path / "01.geojson"
    named = tmp_path / "02.geojson"
    graph.write_region_geojson("01", unnamed)
    graph.write_region_geojson("02", named, layer_name="REGION")
    assert "name" not in json.loads(unnamed.read_text(encoding="utf-8"))
    assert json.loads(named.read_text(encoding="utf-8"))["name"] == "REGION"
