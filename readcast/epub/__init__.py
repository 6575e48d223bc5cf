"""EPUB handling: extraction cache, OPF and SMIL parsing, playlists."""

from readcast.epub.extractor import (
    EpubExtractor,
    ExtractionLocks,
    ExtractRecord,
    sidecar_dir_for,
)
from readcast.epub.opf import (
    PackageIndex,
    load_package,
    find_cover_path,
)
from readcast.epub.smil import (
    parse_sync_pars,
    read_merged_smil,
)
from readcast.epub.playlist import (
    build_playlist,
    build_folder_playlist,
    total_duration,
)
from readcast.epub.ingest import EpubBook, ingest_epub

__all__ = [
    # extractor
    'EpubExtractor',
    'ExtractionLocks',
    'ExtractRecord',
    'sidecar_dir_for',
    # opf
    'PackageIndex',
    'load_package',
    'find_cover_path',
    # smil
    'parse_sync_pars',
    'read_merged_smil',
    # playlist
    'build_playlist',
    'build_folder_playlist',
    'total_duration',
    # ingest
    'EpubBook',
    'ingest_epub',
]
