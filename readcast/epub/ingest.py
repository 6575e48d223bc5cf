"""Single-EPUB ingestion: extract, parse, probe and build the playlist."""

import logging
import os
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from readcast.epub.extractor import EpubExtractor, ExtractionLocks
from readcast.epub.opf import PackageIndex, load_package, find_cover_path
from readcast.epub.playlist import build_playlist
from readcast.epub.smil import parse_sync_pars, write_merged_smil
from readcast.models.book import AudioFileInfo, BookKind, PlaylistTrack, SyncPar
from readcast.utils.audio import probe_audio_file
from readcast.utils.path_safety import relative_to

logger = logging.getLogger(__name__)


@dataclass
class EpubBook:
    """What one EPUB contributes to its catalog entry."""
    path: str
    kind: BookKind
    title: str
    opf: str                       # Relative to the sidecar dir
    smil: Optional[str] = None     # Relative to the sidecar dir, when pars exist
    audios: List[AudioFileInfo] = field(default_factory=list)
    playlist: List[PlaylistTrack] = field(default_factory=list)
    pars: List[SyncPar] = field(default_factory=list)
    author: Optional[str] = None
    narrator: Optional[str] = None
    isbn: Optional[str] = None
    language: Optional[str] = None
    cover_path: Optional[str] = None


def probe_manifest_audio(index: PackageIndex, probe: Callable = probe_audio_file) -> List[AudioFileInfo]:
    """Probe every audio item declared in the manifest.

    Unreadable or missing files are logged and left out.
    """
    audios = []
    for item in index.audio_items():
        audio_path = index.resolve(item)
        if not os.path.isfile(audio_path):
            logger.warning(f"Manifest audio {item.href} not found at {audio_path}")
            continue
        info = probe(audio_path)
        if info is None:
            logger.warning(f"Failed to probe manifest audio {audio_path}")
            continue
        info.rel_path = relative_to(audio_path, index.root_dir)
        audios.append(info)
    return audios


def ingest_epub(epub_path, locks: ExtractionLocks = None, config: dict = None,
                probe: Callable = probe_audio_file) -> EpubBook:
    """Turn an EPUB file into an EpubBook.

    The extraction lock is held for the whole call so a concurrent clear or
    re-extract cannot pull the tree out from under the parsers.

    Raises:
        PackageError: extraction failed or the container/OPF/SMIL is unusable
    """
    extractor = EpubExtractor(epub_path, locks=locks, config=config)
    if extractor.locks.in_flight(extractor.epub_path):
        logger.debug(f"Waiting for in-flight extraction of {extractor.epub_path}")
    with extractor.locked():
        extractor.ensure_extracted()
        index = load_package(extractor.extract_dir)

        audios = probe_manifest_audio(index, probe)
        pars = parse_sync_pars(index)

        smil_rel = None
        if pars:
            write_merged_smil(pars, extractor.smil_path)
            smil_rel = relative_to(extractor.smil_path, extractor.extract_dir)

        playlist = build_playlist(pars, audios)
        kind = BookKind.TEXT_WITH_AUDIO if (playlist and pars) else BookKind.TEXT

        cover = find_cover_path(index)
        meta = index.metadata
        stem = os.path.splitext(os.path.basename(extractor.epub_path))[0]

        logger.debug(f"Ingested {extractor.epub_path}: {kind.value}, "
                     f"{len(pars)} pars, {len(playlist)} tracks")
        return EpubBook(
            path=extractor.epub_path,
            kind=kind,
            title=meta.title or stem,
            opf=relative_to(index.opf_path, extractor.extract_dir),
            smil=smil_rel,
            audios=audios,
            playlist=playlist,
            pars=pars,
            author=meta.author,
            narrator=meta.narrator,
            isbn=meta.isbn,
            language=meta.language,
            cover_path=cover,
        )


__all__ = ['EpubBook', 'probe_manifest_audio', 'ingest_epub']
