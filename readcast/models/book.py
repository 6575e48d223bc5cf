"""Catalog entry model and the records produced while ingesting a book."""

import json
import os
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Optional, List, Dict, Any


class BookKind(Enum):
    """What kind of content a catalog entry holds."""
    TEXT = "text"                        # EPUB without media overlays
    TEXT_WITH_AUDIO = "text_with_audio"  # EPUB with SMIL overlays and a playlist
    AUDIO_ONLY = "audio_only"            # Folder of audio files


@dataclass
class AudioFileInfo:
    """Probed technical info and tags for one audio file."""
    file_path: str
    duration: float = 0.0
    bitrate: Optional[int] = None
    sample_rate: Optional[int] = None
    codec: Optional[str] = None
    title: Optional[str] = None
    artist: Optional[str] = None
    album: Optional[str] = None
    album_artist: Optional[str] = None
    year: Optional[str] = None
    rel_path: Optional[str] = None  # Relative to the book root (sidecar dir or audio folder)

    @property
    def basename(self) -> str:
        return os.path.basename(self.file_path)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AudioFileInfo':
        return cls(**data)


@dataclass
class PlaylistTrack:
    """One playable track, in playback order."""
    file_path: str
    rel_path: str
    title: str
    duration: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PlaylistTrack':
        return cls(**data)


@dataclass
class SyncPar:
    """A SMIL <par>: one text fragment paired with one audio clip.

    After path rewriting ``text_src`` is relative to the OPF directory and
    ``audio_src`` is relative to the package root.
    """
    text_src: str
    audio_src: str
    text_id: Optional[str] = None
    clip_begin: float = 0.0
    clip_end: float = 0.0
    id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SyncPar':
        return cls(**data)


@dataclass
class CatalogEntry:
    """A persisted book: one EPUB file or one folder of audio files.

    ``(mtime, size)`` of ``path`` is the change-detection fingerprint used
    by the library scan. ``mtime`` is whole milliseconds.
    """
    library_id: str
    kind: BookKind
    path: str
    mtime: int
    size: int
    title: str
    folder_path: Optional[str] = None
    opf: Optional[str] = None
    smil: Optional[str] = None
    audios: List[AudioFileInfo] = field(default_factory=list)
    playlist: List[PlaylistTrack] = field(default_factory=list)
    author: Optional[str] = None
    narrator: Optional[str] = None
    isbn: Optional[str] = None
    language: Optional[str] = None
    cover_path: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    genre: List[str] = field(default_factory=list)
    id: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def duration(self) -> float:
        """Total playlist duration in seconds."""
        return sum(track.duration for track in self.playlist)

    @property
    def has_audio(self) -> bool:
        return len(self.playlist) > 0

    def same_fingerprint(self, other: 'CatalogEntry') -> bool:
        return self.mtime == other.mtime and self.size == other.size

    def to_row(self) -> Dict[str, Any]:
        """Column values for the books table (JSON columns serialized)."""
        return {
            'id': self.id,
            'library_id': self.library_id,
            'kind': self.kind.value,
            'path': self.path,
            'mtime': self.mtime,
            'size': self.size,
            'folder_path': self.folder_path,
            'opf': self.opf,
            'smil': self.smil,
            'audios': json.dumps([a.to_dict() for a in self.audios]),
            'playlist': json.dumps([t.to_dict() for t in self.playlist]),
            'duration': self.duration,
            'title': self.title,
            'author': self.author,
            'narrator': self.narrator,
            'isbn': self.isbn,
            'language': self.language,
            'cover_path': self.cover_path,
            'tags': json.dumps(self.tags),
            'genre': json.dumps(self.genre),
        }

    @classmethod
    def from_row(cls, row) -> 'CatalogEntry':
        """Build from a sqlite3.Row (or dict) of the books table."""
        data = dict(row)
        return cls(
            id=data['id'],
            library_id=data['library_id'],
            kind=BookKind(data['kind']),
            path=data['path'],
            mtime=data['mtime'],
            size=data['size'],
            folder_path=data.get('folder_path'),
            opf=data.get('opf'),
            smil=data.get('smil'),
            audios=[AudioFileInfo.from_dict(a) for a in json.loads(data.get('audios') or '[]')],
            playlist=[PlaylistTrack.from_dict(t) for t in json.loads(data.get('playlist') or '[]')],
            title=data['title'],
            author=data.get('author'),
            narrator=data.get('narrator'),
            isbn=data.get('isbn'),
            language=data.get('language'),
            cover_path=data.get('cover_path'),
            tags=json.loads(data.get('tags') or '[]'),
            genre=json.loads(data.get('genre') or '[]'),
            created_at=data.get('created_at'),
            updated_at=data.get('updated_at'),
        )

    def to_dict(self) -> Dict[str, Any]:
        """JSON-serializable view for the CLI and API callers."""
        row = self.to_row()
        row['audios'] = [a.to_dict() for a in self.audios]
        row['playlist'] = [t.to_dict() for t in self.playlist]
        row['tags'] = list(self.tags)
        row['genre'] = list(self.genre)
        row['created_at'] = self.created_at
        row['updated_at'] = self.updated_at
        return row
