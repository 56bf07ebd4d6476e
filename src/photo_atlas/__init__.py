"""photo-atlas - catalog photos and videos by time, place and tag."""

__version__ = "0.1.0"
__author__ = "photo-atlas contributors"
__license__ = "MIT"

import logging

from .catalog.catalog_store import CatalogStore
from .catalog.ingest import Ingestor
from .catalog.matcher import EventMatcher

__all__ = [
    "__version__",
    "__author__",
    "__license__",
    "CatalogStore",
    "Ingestor",
    "EventMatcher",
]

logging.getLogger(__name__).addHandler(logging.NullHandler())
