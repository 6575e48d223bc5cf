"""Models package for readcast."""

from .book import (
    BookKind,
    AudioFileInfo,
    PlaylistTrack,
    SyncPar,
    CatalogEntry,
)
from .task import (
    TaskType,
    TaskStatus,
    Task,
    TRANSITIONS,
)

__all__ = [
    'BookKind',
    'AudioFileInfo',
    'PlaylistTrack',
    'SyncPar',
    'CatalogEntry',
    'TaskType',
    'TaskStatus',
    'Task',
    'TRANSITIONS',
]
