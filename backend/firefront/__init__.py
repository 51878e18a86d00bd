"""Backend package for the Firefront composite map builder.

The package builds composite raster maps for rectangular areas of the
country from administrative regions, forest formations, agricultural
parcels and topographic features, then slices the rendered images into
kilometre-grid tiles.

- A region adjacency graph resolves which regions an area spans
- Per-region vector layers are staged, reprojected to EPSG:2154 and clipped
- Layers are burned onto a fixed 4-band canvas in priority order
- The canvas is rendered to a thematic JPEG next to a WMS orthophoto
- Both images are cut into coordinate-named tiles on export

See module docstrings for details on each stage.
"""
