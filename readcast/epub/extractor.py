"""
EPUB Extractor - unpacks an EPUB next to its source and keeps it fresh.

Layout for /books/Dune.epub:
  /books/.Dune/                      full archive contents
  /books/.Dune/.readcast-meta.json   extraction record (source fingerprint)
  /books/.Dune/.readcast-smil.json   merged SMIL pars (written by the parser)

Extraction is skipped only when the record matches the source's current
(mtime, ctime, size), plus the content hash when hash checking is on.
Any drift deletes the sidecar and unpacks again from scratch.
"""

import json
import hashlib
import logging
import os
import shutil
import threading
import time
import zipfile
import zlib
from contextlib import contextmanager
from dataclasses import dataclass, asdict
from typing import Optional

from readcast.errors import ExtractionError

logger = logging.getLogger(__name__)

META_FILE = '.readcast-meta.json'
MERGED_SMIL_FILE = '.readcast-smil.json'
DEFAULT_FORMAT_VERSION = '1.1'


@dataclass
class ExtractRecord:
    """Fingerprint of the source file at the time it was extracted."""

    src_path: str
    src_mtime_ns: int
    src_ctime_ns: int
    src_size: int
    version: str
    src_hash: Optional[str] = None
    unzip_time: Optional[float] = None  # Epoch seconds, informational only

    def matches(self, other: "ExtractRecord") -> bool:
        """True when ``other`` describes the same source bytes (unzip_time ignored)."""
        if (self.src_path, self.src_mtime_ns, self.src_ctime_ns, self.src_size, self.version) != (
            other.src_path, other.src_mtime_ns, other.src_ctime_ns, other.src_size, other.version
        ):
            return False
        if other.src_hash:
            return self.src_hash == other.src_hash
        return True

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "ExtractRecord":
        return cls(**data)


class ExtractionLocks:
    """Per-source-path lock registry.

    Two scans (or a scan and a manual retry) that reach the same archive at
    once serialize on its lock; the second then finds a fresh record and
    skips the unpack. Locks are re-entrant and dropped once nobody holds or
    waits on them.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[str, list] = {}  # path -> [RLock, holders]

    @contextmanager
    def hold(self, path):
        key = os.path.abspath(str(path))
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = [threading.RLock(), 0]
                self._locks[key] = entry
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def in_flight(self, path) -> bool:
        key = os.path.abspath(str(path))
        with self._guard:
            return key in self._locks


def file_sha256(path, chunk_size=1024 * 1024) -> str:
    digest = hashlib.sha256()
    with open(path, 'rb') as f:
        for chunk in iter(lambda: f.read(chunk_size), b''):
            digest.update(chunk)
    return digest.hexdigest()


def sidecar_dir_for(epub_path) -> str:
    """Hidden directory beside the source, named from its base name."""
    epub_path = str(epub_path)
    base = os.path.basename(epub_path)
    stem, ext = os.path.splitext(base)
    if ext.lower() != '.epub':
        stem = base
    return os.path.join(os.path.dirname(epub_path), f'.{stem}')


class EpubExtractor:
    """Guarantees an up-to-date extracted copy of one EPUB."""

    def __init__(self, epub_path, locks: ExtractionLocks = None, config: dict = None):
        config = config or {}
        self.epub_path = os.path.abspath(str(epub_path))
        self.extract_dir = sidecar_dir_for(self.epub_path)
        self.meta_path = os.path.join(self.extract_dir, META_FILE)
        self.smil_path = os.path.join(self.extract_dir, MERGED_SMIL_FILE)
        self.locks = locks or ExtractionLocks()
        self.verify_hash = bool(config.get('extract_verify_hash', False))
        self.version = str(config.get('extract_format_version', DEFAULT_FORMAT_VERSION))

    def locked(self):
        """Hold this source's lock (re-entrant) across extract + parse."""
        return self.locks.hold(self.epub_path)

    def current_record(self) -> ExtractRecord:
        stats = os.stat(self.epub_path)
        return ExtractRecord(
            src_path=self.epub_path,
            src_mtime_ns=stats.st_mtime_ns,
            src_ctime_ns=stats.st_ctime_ns,
            src_size=stats.st_size,
            version=self.version,
            src_hash=file_sha256(self.epub_path) if self.verify_hash else None,
        )

    def load_record(self) -> Optional[ExtractRecord]:
        """Read the stored record; an unreadable one counts as missing."""
        if not (os.path.isdir(self.extract_dir) and os.path.isfile(self.meta_path)):
            return None
        try:
            with open(self.meta_path, 'r', encoding='utf-8') as f:
                return ExtractRecord.from_dict(json.load(f))
        except (OSError, ValueError, TypeError) as e:
            logger.warning(f"Extraction record unreadable, re-extracting: {self.meta_path} ({e})")
            return None

    def is_fresh(self, record: ExtractRecord = None) -> bool:
        existing = self.load_record()
        if existing is None:
            return False
        return existing.matches(record or self.current_record())

    def ensure_extracted(self, overwrite: bool = False) -> bool:
        """Make the sidecar directory match the source.

        Returns:
            True if the archive was unpacked, False if the cache was reused

        Raises:
            ExtractionError: the source is missing, not a zip, or unpacking failed
        """
        with self.locked():
            try:
                record = self.current_record()
            except OSError as e:
                raise ExtractionError(f"Cannot stat {self.epub_path}: {e}") from e

            if not overwrite and self.is_fresh(record):
                logger.debug(f"EPUB extraction skipped, cache is fresh: {self.epub_path}")
                return False

            logger.debug(f"Unzip epub [{self.epub_path}] to [{self.extract_dir}]")
            try:
                if os.path.exists(self.extract_dir):
                    shutil.rmtree(self.extract_dir)
                os.makedirs(self.extract_dir)
                with zipfile.ZipFile(self.epub_path) as zf:
                    zf.extractall(self.extract_dir)

                record.unzip_time = time.time()
                with open(self.meta_path, 'w', encoding='utf-8') as f:
                    json.dump(record.to_dict(), f, indent=2)
            except (zipfile.BadZipFile, zipfile.LargeZipFile, zlib.error, EOFError, NotImplementedError,
                    OSError, RuntimeError) as e:
                shutil.rmtree(self.extract_dir, ignore_errors=True)
                raise ExtractionError(f"Failed to extract {self.epub_path}: {e}") from e

            logger.debug(f"EPUB unzipped: {self.epub_path}")
            return True

    def clear(self) -> None:
        """Remove the record, the merged SMIL cache and the extracted tree."""
        with self.locked():
            for path in (self.meta_path, self.smil_path):
                if os.path.isfile(path):
                    os.remove(path)
            if os.path.exists(self.extract_dir):
                shutil.rmtree(self.extract_dir, ignore_errors=True)
            logger.debug(f"Cleared extracted data for {self.epub_path}")


__all__ = [
    'META_FILE', 'MERGED_SMIL_FILE', 'ExtractRecord', 'ExtractionLocks',
    'EpubExtractor', 'sidecar_dir_for', 'file_sha256',
]
