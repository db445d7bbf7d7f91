"""Models package."""

from .user import User
from .catalog_item import CatalogItem
from .bookmark import Bookmark
from .submission import Submission
