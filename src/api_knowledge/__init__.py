"""API documentation knowledge store.

Pure functions live under this package; CLI wrappers live under ../scripts.
"""

from . import codegen as codegen
from . import config as config
from . import db as db
from . import errors as errors
from . import extract as extract
from . import ingest as ingest
from . import quirks as quirks
from . import scrape as scrape
from . import store as store
from . import workflows as workflows

__version__ = "0.1.0"

__all__ = ["codegen", "config", "db", "errors", "extract", "ingest", "quirks", "scrape", "store", "workflows"]
