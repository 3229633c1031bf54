"""feedcursor - Checkpointed reader for partitioned change feeds."""

from feedcursor.core.config import Settings
from feedcursor.core.exceptions import FeedCursorError

__version__ = "1.0.0"
__all__ = ["Settings", "FeedCursorError", "__version__"]
