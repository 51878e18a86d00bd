"""Tests for per-region staging and the merge into project resources."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import pytest

from firefront.core import errors
from firefront.core import geometry as geo
from firefront.services import layers as layers_mod
from firefront.services import regions as regions_mod
from firefront.services import staging
from firefront.utils import gdal_helpers

if TYPE_CHECKING:
    import pathlib

    from conftest import FakeToolkit

    from firefront.core import config

BBOX = geo.BoundingBox(0, 0, 40, 40)


def _layer(
    name: str, optional: bool = False
) -> layers_mod.ThematicLayer:
    return layers_mod.ThematicLayer(
        name,
        layers_mod.LayerCategory.TOPOGRAPHIC,
        layers_mod.FlatBurn((0, 0, 0)),
        optional=optional,
    )


@pytest.fixture
def stager(
    settings: config.Settings,
    fake_toolkit: FakeToolkit,
    regions_source: pathlib.Path,
) -> staging.DirectoryLayerStager:
    graph = regions_mod.RegionGraph.from_geojson(regions_source)
    return staging.DirectoryLayerStager(fake_toolkit, settings, graph)


def test_find_layer_source_is_case_insensitive(
    tmp_path: pathlib.Path,
) -> None:
    nested = tmp_path / "BDTOPO" / "TRANSPORT"
    nested.mkdir(parents=True)
    target = nested / "troncon_de_route.SHP"
    target.touch()
    (nested / "troncon_de_route.dbf").touch()
    assert staging.find_layer_source(tmp_path, "TRONCON_DE_ROUTE") == target


def test_find_layer_source_sorted_first_match(tmp_path: pathlib.Path) -> None:
    for folder in ("b", "a"):
        (tmp_path / folder).mkdir()
        (tmp_path / folder / "BATIMENT.gpkg").touch()
    assert (
        staging.find_layer_source(tmp_path, "BATIMENT")
        == tmp_path / "a" / "BATIMENT.gpkg"
    )


def test_find_layer_source_missing(tmp_path: pathlib.Path) -> None:
    assert staging.find_layer_source(tmp_path, "BATIMENT") is None
    assert staging.find_layer_source(tmp_path / "nope", "BATIMENT") is None


def test_stage_region(
    stager: staging.DirectoryLayerStager,
    settings: config.Settings,
    fake_toolkit: FakeToolkit,
) -> None:
    source = settings.staging_dir / "01" / "BDTOPO" / "BATIMENT.shp"
    fake_toolkit.register_vector(source, layer_name="batiment")

    layers = [
        layers_mod.default_layers()[0],
        _layer("BATIMENT"),
        _layer("AERODROME", optional=True),
    ]
    staged = stager.stage_region("01", BBOX, layers)

    assert staged == {
        "REGION": settings.temp_dir / "01_REGION.gpkg",
        "BATIMENT": settings.temp_dir / "01_BATIMENT.gpkg",
    }
    assert all(path.exists() for path in staged.values())
    assert not (settings.temp_dir / "01_BATIMENT_full.gpkg").exists()
    assert fake_toolkit.describe_vector(staged["BATIMENT"]).layer_name == (
        "batiment"
    )

    boundary = json.loads(
        (settings.temp_dir / "01.geojson").read_text(encoding="utf-8")
    )
    assert boundary["features"][0]["properties"]["code"] == "01"
    assert boundary["crs"]["properties"]["name"] == settings.crs
    assert boundary["name"] == layers_mod.REGIONAL_LAYER
    assert fake_toolkit.describe_vector(staged["REGION"]).layer_name == (
        layers_mod.REGIONAL_LAYER
    )


def test_regional_layers_merge_into_one_layer(
    stager: staging.DirectoryLayerStager,
    settings: config.Settings,
    fake_toolkit: FakeToolkit,
    tmp_path: pathlib.Path,
) -> None:
    regional = layers_mod.default_layers()[:1]
    staged = [
        stager.stage_region(code, BBOX, regional)["REGION"]
        for code in ("01", "02")
    ]
    merged = staging.merge_staged(
        fake_toolkit, {"REGION": staged}, tmp_path / "resources"
    )
    info = fake_toolkit.describe_vector(merged["REGION"])
    assert info.layer_name == layers_mod.REGIONAL_LAYER
    assert info.feature_count == 2


def test_stage_region_missing_mandatory_layer(
    stager: staging.DirectoryLayerStager,
) -> None:
    with pytest.raises(errors.LayerError) as excinfo:
        stager.stage_region("02", BBOX, [_layer("BATIMENT")])
    assert excinfo.value.layer == "BATIMENT"
    assert excinfo.value.region == "02"


def test_stage_region_unknown_region(
    stager: staging.DirectoryLayerStager,
) -> None:
    with pytest.raises(errors.RegionNotFoundError):
        stager.stage_region("99", BBOX, layers_mod.default_layers()[:1])


def test_stage_region_toolkit_failure(
    stager: staging.DirectoryLayerStager,
    settings: config.Settings,
    fake_toolkit: FakeToolkit,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    fake_toolkit.register_vector(settings.staging_dir / "01" / "BATIMENT.shp")

    def broken(*args: object, **kwargs: object) -> None:
        raise gdal_helpers.CommandError("ogr2ogr exploded")

    monkeypatch.setattr(fake_toolkit, "clip_vector", broken)
    with pytest.raises(errors.LayerError, match="ogr2ogr exploded"):
        stager.stage_region("01", BBOX, [_layer("BATIMENT")])
    assert not (settings.temp_dir / "01_BATIMENT_full.gpkg").exists()


def test_clean_temp_except_gpkg(tmp_path: pathlib.Path) -> None:
    (tmp_path / "keep.gpkg").touch()
    (tmp_path / "drop.geojson").touch()
    (tmp_path / "drop.tif").touch()
    (tmp_path / "nested").mkdir()
    (tmp_path / "nested" / "inner.gpkg").touch()
    staging.clean_temp_except_gpkg(tmp_path)
    assert [p.name for p in tmp_path.iterdir()] == ["keep.gpkg"]
    staging.clean_temp_except_gpkg(tmp_path / "missing")


def test_merge_staged(
    tmp_path: pathlib.Path, fake_toolkit: FakeToolkit
) -> None:
    temp = tmp_path / "tmp"
    single = temp / "01_REGION.gpkg"
    single.parent.mkdir()
    single.write_text("region")
    first = fake_toolkit.register_vector(temp / "01_BATIMENT.gpkg")
    fake_toolkit.register_vector(temp / "02_BATIMENT.gpkg", feature_count=4)
    resources = tmp_path / "resources"

    merged = staging.merge_staged(
        fake_toolkit,
        {
            "REGION": [single],
            "BATIMENT": [temp / "01_BATIMENT.gpkg", temp / "02_BATIMENT.gpkg"],
            "AERODROME": [],
        },
        resources,
    )

    assert merged == {
        "REGION": resources / "REGION.gpkg",
        "BATIMENT": resources / "BATIMENT.gpkg",
    }
    assert not single.exists()
    assert (resources / "REGION.gpkg").read_text() == "region"
    info = fake_toolkit.describe_vector(resources / "BATIMENT.gpkg")
    assert info.feature_count == first.feature_count + 4


def test_merge_staged_move_keeps_layer_description(
    tmp_path: pathlib.Path, fake_toolkit: FakeToolkit
) -> None:
    staged = fake_toolkit.register_vector(
        tmp_path / "tmp" / "01_BATIMENT.gpkg", layer_name="batiment"
    )
    merged = staging.merge_staged(
        fake_toolkit,
        {"BATIMENT": [tmp_path / "tmp" / "01_BATIMENT.gpkg"]},
        tmp_path / "resources",
    )
    assert fake_toolkit.describe_vector(merged["BATIMENT"]) == staged


def test_merge_staged_failure(
    tmp_path: pathlib.Path,
    fake_toolkit: FakeToolkit,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def broken(*args: object, **kwargs: object) -> None:
        raise gdal_helpers.CommandError("append failed")

    monkeypatch.setattr(fake_toolkit, "merge_vectors", broken)
    with pytest.raises(errors.LayerError, match="BATIMENT"):
        staging.merge_staged(
            fake_toolkit,
            {"BATIMENT": [tmp_path / "a.gpkg", tmp_path / "b.gpkg"]},
            tmp_path / "resources",
        )
