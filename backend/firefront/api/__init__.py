"""API router subpackage for the map builder backend.

Each module exposes its own APIRouter for composition in the application's
main FastAPI instance.

Submodules:
    - regions: Region lookup, intersection and adjacency queries.
    - projects: Building, listing, exporting and deleting projects.
    - tiles: XYZ preview tiles of project canvases rendered by rio-tiler.
"""
