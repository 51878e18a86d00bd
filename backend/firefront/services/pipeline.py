"""Project build pipeline.

A build runs the stages strictly in sequence:

1. resolve the regions intersecting the requested bounding box;
2. stage the layers of each region, one region at a time, resetting the
   scratch directory between regions;
3. union same-named layers into ``<project>/resources``;
4. create the canvas and burn every layer in priority order;
5. render the thematic JPEG and, when a source is configured, the
   orthophoto JPEG;
6. record the project metadata.

Exporting a project slices its two images into ``<project>/slices``.
"""

from __future__ import annotations

import collections
import logging
import pathlib
import re
import shutil
import uuid
from typing import TYPE_CHECKING

from firefront.core import errors
from firefront.db import models as db_models
from firefront.services import canvas as canvas_mod
from firefront.services import compositing
from firefront.services import layers as layers_mod
from firefront.services import progress as progress_mod
from firefront.services import rendering, slicing, staging

if TYPE_CHECKING:
    from firefront.core import config
    from firefront.core import geometry as geo
    from firefront.db import database
    from firefront.services import regions as regions_mod
    from firefront.services import toolkit as toolkit_mod

logger = logging.getLogger(__name__)

_PROJECT_NAME = re.compile(r"^[\w][\w.-]*$")


def validate_project_name(name: str) -> str:
    """Return the name if it is usable as a folder name.

    Raises:
        ProjectError: If the name is empty or contains path separators.
    """
    if not _PROJECT_NAME.match(name) or name in {".", ".."}:
        raise errors.ProjectError(f"Invalid project name: {name!r}")
    return name


class ProjectBuilder:
    """Build, export and delete composite map projects.

    Args:
        settings: Frozen application settings.
        graph: Loaded region adjacency graph.
        toolkit: Geospatial backend.
        repository: Project metadata store.
        stager: Layer stager; defaults to a DirectoryLayerStager.
        orthophoto: Orthophoto source, or None to skip the photo image.
        reporter: Progress reporter; defaults to logging.
    """

    def __init__(
        self,
        settings: config.Settings,
        graph: regions_mod.RegionGraph,
        toolkit: toolkit_mod.GeoToolkit,
        repository: database.ProjectRepositoryProtocol,
        stager: staging.LayerStager | None = None,
        orthophoto: rendering.OrthophotoSource | None = None,
        reporter: progress_mod.ProgressReporter | None = None,
    ) -> None:
        self.settings = settings
        self.graph = graph
        self.toolkit = toolkit
        self.repository = repository
        self.stager = stager or staging.DirectoryLayerStager(
            toolkit, settings, graph
        )
        self.orthophoto = orthophoto
        self.reporter = reporter or progress_mod.LoggingProgressReporter()

    def _stage(
        self,
        codes: list[str],
        bbox: geo.BoundingBox,
        layers: list[layers_mod.ThematicLayer],
    ) -> dict[str, list[pathlib.Path]]:
        temp_dir = self.settings.temp_dir
        staged: dict[str, list[pathlib.Path]] = collections.defaultdict(list)
        staging.clean_temp_except_gpkg(temp_dir)
        for step, code in enumerate(codes, start=1):
            self.reporter.emit(
                "staging", detail=code, step=step, total=len(codes)
            )
            region_layers = self.stager.stage_region(code, bbox, layers)
            for name, path in region_layers.items():
                staged[name].append(path)
            staging.clean_temp_except_gpkg(temp_dir)
        return staged

    def build(
        self,
        name: str,
        bbox: geo.BoundingBox,
        overwrite: bool = False,
    ) -> db_models.ProjectMetadata:
        """Build a project for a bounding box.

        Args:
            name: Project name, also its folder name.
            bbox: Requested extent in the deployment CRS.
            overwrite: Replace an existing project of the same name. The
                previous project is removed first, so a failed rebuild
                leaves neither its folder nor its record behind.

        Returns:
            The recorded project metadata.

        Raises:
            ProjectError: If the name is invalid, the project exists and
                overwrite is False, or no region intersects the box.
            CanvasDimensionError: If the box does not tile exactly.
            LayerError: If staging or compositing a layer fails.
        """
        validate_project_name(name)
        project_dir = self.settings.project_dir(name)
        existing = self.repository.get_by_name(name)
        if (existing or project_dir.exists()) and not overwrite:
            raise errors.ProjectError(f"Project '{name}' already exists")

        canvas_mod.canvas_dimensions(
            bbox, self.settings.resolution, self.settings.slice_factor
        )
        codes = [region.code for region in self.graph.intersecting(bbox)]
        if not codes:
            raise errors.ProjectError(
                f"No region intersects the bounding box {bbox.as_tuple()}"
            )
        logger.info("Building project %s over regions %s", name, codes)

        if project_dir.exists():
            shutil.rmtree(project_dir)
        try:
            project = self._build_into(
                project_dir, name, bbox, codes, existing
            )
        except Exception:
            shutil.rmtree(project_dir, ignore_errors=True)
            if existing is not None:
                self.repository.delete(existing.id)
                logger.warning(
                    "Rebuild of project %s failed; its previous record was "
                    "removed",
                    name,
                )
            raise
        self.repository.add(project)
        self.reporter.emit("done", detail=name)
        return project

    def _build_into(
        self,
        project_dir: pathlib.Path,
        name: str,
        bbox: geo.BoundingBox,
        codes: list[str],
        existing: db_models.ProjectMetadata | None,
    ) -> db_models.ProjectMetadata:
        (project_dir / "slices").mkdir(parents=True)
        layers = layers_mod.default_layers(self.settings.regional_burn)
        staged = self._stage(codes, bbox, layers)
        self.reporter.emit("merging", detail=f"{len(staged)} layers")
        resources = staging.merge_staged(
            self.toolkit, staged, project_dir / "resources"
        )
        staging.clean_temp_except_gpkg(self.settings.temp_dir)
        for paths in staged.values():
            for path in paths:
                path.unlink(missing_ok=True)

        self.reporter.emit("canvas", detail=name)
        canvas = canvas_mod.create_canvas(
            bbox, self.settings, project_dir / f"{name}.tiff", self.toolkit
        )
        compositor = compositing.LayerCompositor(
            self.toolkit, self.settings, self.reporter
        )
        compositor.composite(canvas, resources, layers)

        self.reporter.emit("rendering", detail="thematic")
        thematic = rendering.export_thematic_jpeg(
            canvas, project_dir / f"{name}_VEGET.jpeg", self.toolkit
        )
        photo = None
        if self.orthophoto is not None:
            self.reporter.emit("rendering", detail="orthophoto")
            photo = self.orthophoto.fetch(
                canvas, project_dir / f"{name}_ORTHO.jpeg"
            )

        return db_models.ProjectMetadata(
            id=existing.id if existing else uuid.uuid4().hex,
            name=name,
            bbox=bbox.as_tuple(),
            region_codes=codes,
            canvas_path=str(canvas.path),
            thematic_path=str(thematic),
            photo_path=str(photo) if photo else None,
        )

    def get(self, project_id: str) -> db_models.ProjectMetadata:
        project = self.repository.get(project_id)
        if project is None:
            raise errors.ProjectNotFoundError(project_id)
        return project

    def export(self, project_id: str) -> slicing.SliceReport:
        """Slice the images of a project.

        Raises:
            ProjectNotFoundError: If the project is unknown.
            ProjectError: If the project has no orthophoto.
            TilingError: If an image is unreadable.
        """
        project = self.get(project_id)
        if not project.photo_path:
            raise errors.ProjectError(
                f"Project '{project.name}' has no orthophoto to slice"
            )
        self.reporter.emit("slicing", detail=project.name)
        canvas = canvas_mod.open_canvas(
            pathlib.Path(project.canvas_path), self.toolkit
        )
        return slicing.slice_project(
            self.settings.project_dir(project.name),
            project.name,
            canvas.path,
            self.settings.slice_factor,
            self.settings.resolution,
            self.toolkit,
        )

    def delete(self, project_id: str) -> None:
        """Remove a project folder and its record.

        Raises:
            ProjectNotFoundError: If the project is unknown.
        """
        project = self.get(project_id)
        project_dir = self.settings.project_dir(project.name)
        if project_dir.exists():
            shutil.rmtree(project_dir)
        self.repository.delete(project_id)
        logger.info("Deleted project %s", project.name)
