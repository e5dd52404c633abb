"""
musicstore - an embedded SQLite metadata store for a music library.

The store owns the on-disk schema, the connection/transaction lifecycle and the
`Song` domain model that normalizes raw tag data before it is written.
"""

__version__ = "0.1.0"
__license__ = "GPL-2.0"

from musicstore.core.music_db import MusicDatabase
from musicstore.core.song import Song

__all__ = ["MusicDatabase", "Song", "__version__"]
