"""Library scanning and catalog reconciliation.

A scan walks every registered folder of a library, turns each EPUB file and
each audio folder into a candidate CatalogEntry, then diffs the candidates
against the stored catalog by path:

- stored path no longer found          -> delete
- found but (mtime, size) changed      -> delete stored, insert candidate
- found with the same (mtime, size)    -> leave alone

Deletes and inserts are applied in one transaction.
"""

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

from readcast.database import apply_scan_changes, get_books_by_library, get_library, update_library
from readcast.epub.extractor import EpubExtractor, ExtractionLocks
from readcast.epub.ingest import ingest_epub
from readcast.epub.playlist import build_folder_playlist
from readcast.errors import LibraryNotFoundError, PackageError
from readcast.models.book import BookKind, CatalogEntry
from readcast.utils.audio import AUDIO_EXTENSIONS, PACKAGE_EXTENSIONS, probe_audio_file, list_audio_files
from readcast.utils.path_safety import is_hidden, relative_to

logger = logging.getLogger(__name__)


def _mtime_ms(stats) -> int:
    """Modification time in whole milliseconds."""
    return stats.st_mtime_ns // 1_000_000


@dataclass
class ScanResult:
    """Outcome of one reconciliation."""
    unchanged: int = 0
    deleted: int = 0
    inserted: int = 0
    skipped: List[str] = field(default_factory=list)  # Files that failed to ingest

    def summary(self) -> str:
        return f"{self.unchanged} unchanged, {self.deleted} deleted, {self.inserted} added"


class LibraryScanner:
    """Walks a library's folders and produces candidate catalog entries."""

    def __init__(self, library_id, config: dict = None, locks: ExtractionLocks = None,
                 probe: Callable = probe_audio_file):
        self.library_id = library_id
        self.config = config or {}
        self.locks = locks or ExtractionLocks()
        self.probe = probe
        self.package_extensions = {e.lower() for e in self.config.get('package_extensions') or PACKAGE_EXTENSIONS}
        self.audio_extensions = {e.lower() for e in self.config.get('audio_extensions') or AUDIO_EXTENSIONS}
        self.skipped: List[str] = []

    def scan_folders(self, folders) -> List[CatalogEntry]:
        """Scan every library folder; a path reached through two overlapping folders is kept once."""
        scanned: List[CatalogEntry] = []
        for folder in folders:
            if not os.path.isdir(folder):
                logger.warning(f"Library folder missing or not a directory: {folder}")
                continue
            self.scan_folder(os.path.abspath(folder), scanned)

        unique: List[CatalogEntry] = []
        seen = set()
        for entry in scanned:
            if entry.path in seen:
                logger.debug(f"Already scanned through another folder: {entry.path}")
                continue
            seen.add(entry.path)
            unique.append(entry)
        self.skipped = list(dict.fromkeys(self.skipped))
        return unique

    def scan_folder(self, folder_path, scanned: List[CatalogEntry]) -> None:
        """Recursively collect EPUBs and audio folders under ``folder_path``.

        Each subdirectory that directly holds readable audio becomes one
        audio-only entry; any other subdirectory is scanned in turn.
        """
        logger.debug(f"Scanning folder: {folder_path}")
        try:
            names = sorted(os.listdir(folder_path))
        except OSError as e:
            logger.error(f"Cannot list {folder_path}: {e}")
            return

        for name in names:
            if is_hidden(name):
                continue
            item_path = os.path.join(folder_path, name)
            try:
                stats = os.stat(item_path)
            except OSError as e:
                logger.warning(f"Cannot stat {item_path}: {e}")
                continue

            if os.path.isfile(item_path):
                if os.path.splitext(name)[1].lower() in self.package_extensions:
                    entry = self.collect_epub(item_path, stats)
                    if entry is not None:
                        scanned.append(entry)
            elif os.path.isdir(item_path):
                entry = self.collect_audio_folder(item_path, stats)
                if entry is not None:
                    scanned.append(entry)
                else:
                    self.scan_folder(item_path, scanned)

    def collect_epub(self, epub_path, stats) -> Optional[CatalogEntry]:
        """Ingest one EPUB; a broken one is logged, its sidecar cleared, and skipped."""
        try:
            book = ingest_epub(epub_path, locks=self.locks, config=self.config, probe=self.probe)
        except (PackageError, OSError) as e:
            logger.error(f"Fail to extract the EPUB {epub_path}: {e}", exc_info=True)
            self.skipped.append(epub_path)
            try:
                EpubExtractor(epub_path, locks=self.locks, config=self.config).clear()
            except OSError as clear_error:
                logger.warning(f"Could not clear extracted data for {epub_path}: {clear_error}")
            return None

        return CatalogEntry(
            library_id=self.library_id,
            kind=book.kind,
            path=epub_path,
            mtime=_mtime_ms(stats),
            size=stats.st_size,
            title=book.title,
            opf=book.opf,
            smil=book.smil,
            audios=book.audios,
            playlist=book.playlist,
            author=book.author,
            narrator=book.narrator,
            isbn=book.isbn,
            language=book.language,
            cover_path=book.cover_path,
        )

    def collect_audio_folder(self, folder_path, stats) -> Optional[CatalogEntry]:
        """An audio-only entry for a folder with directly contained audio, else None."""
        try:
            files = list_audio_files(folder_path, self.audio_extensions)
        except OSError as e:
            logger.error(f"Cannot list audio in {folder_path}: {e}")
            return None

        audios = []
        for file_path in files:
            info = self.probe(file_path)
            if info is None:
                logger.error(f"Failed to parse {file_path}")
                continue
            info.rel_path = relative_to(file_path, folder_path)
            audios.append(info)
        if not audios:
            return None

        audios.sort(key=lambda a: a.file_path)
        playlist = build_folder_playlist(audios)
        first = audios[0]

        logger.debug(f"Audiobook (audio folder) parsed [{folder_path}]: {len(playlist)} tracks")
        return CatalogEntry(
            library_id=self.library_id,
            kind=BookKind.AUDIO_ONLY,
            path=folder_path,
            mtime=_mtime_ms(stats),
            size=stats.st_size,
            title=os.path.basename(folder_path),
            folder_path=folder_path,
            audios=audios,
            playlist=playlist,
            author=first.album_artist or first.artist,
        )


def compare_books(existing: List[CatalogEntry],
                  scanned: List[CatalogEntry]) -> Tuple[List[CatalogEntry], List[CatalogEntry]]:
    """Diff stored entries against scanned candidates by path.

    Returns:
        (to_delete, to_insert) - stored entries to drop, candidates to add
    """
    scanned_by_path: Dict[str, CatalogEntry] = {book.path: book for book in scanned}
    paths_to_insert = set(scanned_by_path)
    to_delete = []

    for old in existing:
        new = scanned_by_path.get(old.path)
        if new is None:
            logger.debug(f"{old.path} no longer exists")
            to_delete.append(old)
        elif not old.same_fingerprint(new):
            logger.debug(f"{old.path} changed since last scan")
            to_delete.append(old)
        else:
            logger.debug(f"{old.path} unchanged")
            paths_to_insert.discard(old.path)

    to_insert = [book for book in scanned if book.path in paths_to_insert]
    return to_delete, to_insert


def scan_library(library_id, get_db: Callable, config: dict = None, locks: ExtractionLocks = None,
                 probe: Callable = probe_audio_file) -> ScanResult:
    """Scan a library's folders and reconcile its catalog.

    Raises:
        LibraryNotFoundError: no such library
        StorageError: the catalog update failed and was rolled back
    """
    conn = get_db()
    try:
        library = get_library(conn, library_id)
        if not library:
            logger.warning(f"library id [{library_id}] not exist")
            raise LibraryNotFoundError(f"library id [{library_id}] not exist")
        folders = library['folders']
    finally:
        conn.close()

    logger.info(f"Scanning library '{library['name']}' ({library_id}): {len(folders)} folders")
    scanner = LibraryScanner(library_id, config=config, locks=locks, probe=probe)
    scanned = scanner.scan_folders(folders)
    logger.debug(f"Found {len(scanned)} books during scan")

    conn = get_db()
    try:
        existing = get_books_by_library(conn, library_id)
        to_delete, to_insert = compare_books(existing, scanned)

        result = ScanResult(unchanged=len(existing) - len(to_delete), skipped=scanner.skipped)
        if to_delete or to_insert:
            result.deleted, result.inserted = apply_scan_changes(
                conn, [book.id for book in to_delete], to_insert)
        update_library(conn, library_id, last_scan=datetime.now().isoformat())
    finally:
        conn.close()

    logger.info(f"Scan of library {library_id} finished: {result.summary()}")
    return result


__all__ = ['ScanResult', 'LibraryScanner', 'compare_books', 'scan_library']
