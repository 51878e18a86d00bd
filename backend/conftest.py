"""Pytest configuration to expose the backend package for imports.

Working directories default to a throwaway location so importing the
application never writes into the checkout.
"""

import os
import pathlib
import sys
import tempfile

BACKEND_ROOT = pathlib.Path(__file__).resolve().parent

if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

_WORKDIR = pathlib.Path(tempfile.mkdtemp(prefix="firefront-tests-"))
for _name, _sub in (
    ("FIREFRONT_PROJECTS_DIR", "projects"),
    ("FIREFRONT_CACHE_DIR", "cache"),
    ("FIREFRONT_TEMP_DIR", "tmp"),
    ("FIREFRONT_STAGING_DIR", "staging"),
):
    os.environ.setdefault(_name, str(_WORKDIR / _sub))
